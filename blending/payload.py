"""Field parsers shared by the blending services.

Each parser records a message in ``errors`` instead of raising so that a
service can report every bad field of a payload at once.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError

from .quantities import quantize


def strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
    else:
        value = str(value).strip()
    return value or None


def parse_uuid(value: Any, field: str, errors: Dict[str, str], *, required: bool = True) -> Optional[uuid.UUID]:
    if value in (None, ""):
        if required:
            errors[field] = "This field is required."
        return None
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except (ValueError, TypeError):
        errors[field] = "Invalid identifier."
        return None


def parse_date(value: Any, field: str, errors: Dict[str, str], *, required: bool = True) -> Optional[date]:
    if not value:
        if required:
            errors[field] = "This field is required."
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            errors[field] = "Invalid date. Use YYYY-MM-DD."
            return None
    errors[field] = "Invalid date."
    return None


def parse_int(value: Any, field: str, errors: Dict[str, str], *, minimum: Optional[int] = None) -> Optional[int]:
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        errors[field] = "Enter a whole number."
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        errors[field] = "Enter a whole number."
        return None
    if minimum is not None and number < minimum:
        errors[field] = f"Must be greater than or equal to {minimum}."
        return None
    return number


def decimal_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = True,
    minimum: Optional[Decimal] = None,
    exclusive_minimum: Optional[Decimal] = None,
    maximum: Optional[Decimal] = None,
    quant: Optional[Decimal] = None,
    default: Optional[Decimal] = None,
) -> Optional[Decimal]:
    if value in (None, ""):
        if default is not None:
            numeric = default
        elif required:
            errors[field] = "This field is required."
            return None
        else:
            return None
    elif isinstance(value, bool):
        errors[field] = "Enter a valid number."
        return None
    else:
        try:
            numeric = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            errors[field] = "Enter a valid number."
            return None
        if not numeric.is_finite():
            errors[field] = "Enter a valid number."
            return None

    if minimum is not None and numeric < minimum:
        errors[field] = f"Must be greater than or equal to {minimum}."
        return None
    if exclusive_minimum is not None and numeric <= exclusive_minimum:
        errors[field] = f"Must be greater than {exclusive_minimum}."
        return None
    if maximum is not None and numeric > maximum:
        errors[field] = f"Must be less than or equal to {maximum}."
        return None

    if quant is not None:
        if numeric != numeric.quantize(quant):
            errors[field] = f"At most {-quant.as_tuple().exponent} decimal places."
            return None
        numeric = quantize(numeric, quant)
    return numeric


def is_unique_violation(exc: IntegrityError, *keywords: str) -> bool:
    """Return ``True`` if ``exc`` looks like a unique violation on ``keywords``."""

    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)
    message_detail = getattr(diag, "message_detail", None)

    haystacks: list[str] = []
    if constraint_name:
        haystacks.append(constraint_name.lower())
    if message_detail:
        haystacks.append(message_detail.lower())
    haystacks.append(str(orig if orig is not None else exc).lower())

    lowered_keywords = [keyword.lower() for keyword in keywords]
    return any(
        haystack and all(keyword in haystack for keyword in lowered_keywords)
        for haystack in haystacks
    )
