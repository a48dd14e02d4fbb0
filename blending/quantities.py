"""Decimal helpers shared by the blending, stock and progress code.

Every weight, percentage and ratio is a :class:`~decimal.Decimal`. Floats
only appear when a figure is handed to a chart or a JSON payload for display.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")

KG_QUANT = Decimal("0.001")
PERCENT_QUANT = Decimal("0.01")
RATIO_QUANT = Decimal("0.0001")


def quantize(value: Decimal, quant: Decimal = KG_QUANT) -> Decimal:
    return value.quantize(quant, rounding=ROUND_HALF_UP)


def to_decimal(value: object, *, default: Optional[str] = "0") -> Optional[Decimal]:
    """Parse ``value`` without going through ``float``.

    Returns ``Decimal(default)`` (or ``None`` when ``default`` is ``None``) for
    blanks and unparsable input.
    """

    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(default) if default is not None else None
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal(default) if default is not None else None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal(default) if default is not None else None
    if not result.is_finite():
        return Decimal(default) if default is not None else None
    return result


def percent_of(quantity: Decimal, percentage: Decimal) -> Decimal:
    """Return ``quantity * percentage / 100``."""

    return quantity * percentage / HUNDRED


def ratio_percent(part: Decimal, whole: Decimal) -> Decimal:
    """Return ``part / whole * 100`` or zero when ``whole`` is not positive."""

    if whole is None or whole <= ZERO:
        return ZERO
    return part / whole * HUNDRED


def total(values: Iterable[Decimal]) -> Decimal:
    return sum((value for value in values if value is not None), ZERO)


def to_display_float(value: Optional[Decimal], quant: Optional[Decimal] = None) -> Optional[float]:
    if value is None:
        return None
    if quant is not None:
        value = quantize(value, quant)
    return float(value)
