"""Blend recipes and the rules that keep their percentages consistent.

Incremental edits (adding or re-weighting one fibre) may leave a blend below
100%, but never above it. Full replacements, and blends created together
with a composition, must add up to exactly 100%. A rejected edit writes
nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from models import Blend, BlendFibre, Order, RawCottonLot

from .errors import (
    BlendInUseError,
    BlendNotFoundError,
    BlendingValidationError,
    CompositionMismatchError,
    CompositionOverflowError,
    DuplicateFibreError,
    FibreNotFoundError,
)
from .payload import decimal_field, is_unique_violation, parse_uuid, strip_or_none
from .quantities import HUNDRED, KG_QUANT, PERCENT_QUANT, ZERO, quantize, to_decimal, total
from .storage import BlendingStore, coerce_uuid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompositionCheck:
    valid: bool
    total_percentage: Decimal


@dataclass
class FibreEntry:
    fibre_id: Any
    percentage: Decimal


@dataclass
class RawCottonEntry:
    lot_number: str
    percentage: Decimal
    grade: Optional[str] = None
    source: Optional[str] = None
    stock_kg: Decimal = ZERO
    notes: Optional[str] = None


def _percentage_of(entry: Any) -> Decimal:
    if isinstance(entry, Mapping):
        value = entry.get("percentage")
    else:
        value = getattr(entry, "percentage", None)
    return to_decimal(value)


def validate_composition(
    fibre_entries: Iterable[Any],
    raw_cotton_entries: Iterable[Any] = (),
) -> CompositionCheck:
    """Sum both entry lists and report whether they make exactly 100%."""

    combined = total(_percentage_of(entry) for entry in fibre_entries)
    combined += total(_percentage_of(entry) for entry in raw_cotton_entries)
    return CompositionCheck(valid=combined == HUNDRED, total_percentage=combined)


def _parse_percentage(value: Any, field: str, errors: Dict[str, str]) -> Optional[Decimal]:
    return decimal_field(
        value,
        field,
        errors,
        minimum=ZERO,
        maximum=HUNDRED,
        quant=PERCENT_QUANT,
    )


def parse_fibre_entries(raw_entries: Any, errors: Dict[str, str]) -> List[FibreEntry]:
    if raw_entries in (None, ""):
        return []
    if not isinstance(raw_entries, (list, tuple)):
        errors["fibres"] = "Provide a list of fibres."
        return []

    entries: List[FibreEntry] = []
    for index, item in enumerate(raw_entries):
        if isinstance(item, FibreEntry):
            entries.append(item)
            continue
        if not isinstance(item, Mapping):
            errors[f"fibres.{index}"] = "Invalid fibre entry."
            continue
        fibre_id = parse_uuid(item.get("fibre_id"), f"fibres.{index}.fibre_id", errors)
        percentage = _parse_percentage(item.get("percentage"), f"fibres.{index}.percentage", errors)
        if fibre_id is not None and percentage is not None:
            entries.append(FibreEntry(fibre_id=fibre_id, percentage=percentage))
    return entries


def parse_raw_cotton_entries(raw_entries: Any, errors: Dict[str, str]) -> List[RawCottonEntry]:
    if raw_entries in (None, ""):
        return []
    if not isinstance(raw_entries, (list, tuple)):
        errors["raw_cotton_lots"] = "Provide a list of raw cotton lots."
        return []

    entries: List[RawCottonEntry] = []
    seen_lots: set[str] = set()
    for index, item in enumerate(raw_entries):
        if isinstance(item, RawCottonEntry):
            entries.append(item)
            continue
        if not isinstance(item, Mapping):
            errors[f"raw_cotton_lots.{index}"] = "Invalid raw cotton entry."
            continue
        prefix = f"raw_cotton_lots.{index}"
        lot_number = strip_or_none(item.get("lot_number"))
        if not lot_number:
            errors[f"{prefix}.lot_number"] = "Lot number is required."
        elif lot_number in seen_lots:
            errors[f"{prefix}.lot_number"] = "Lot number is repeated in this blend."
        percentage = _parse_percentage(item.get("percentage"), f"{prefix}.percentage", errors)
        stock_kg = decimal_field(
            item.get("stock_kg"),
            f"{prefix}.stock_kg",
            errors,
            required=False,
            default=ZERO,
            quant=KG_QUANT,
        )
        if lot_number and lot_number not in seen_lots and percentage is not None and stock_kg is not None:
            seen_lots.add(lot_number)
            entries.append(
                RawCottonEntry(
                    lot_number=lot_number,
                    percentage=percentage,
                    grade=strip_or_none(item.get("grade")),
                    source=strip_or_none(item.get("source")),
                    stock_kg=stock_kg,
                    notes=strip_or_none(item.get("notes")),
                )
            )
    return entries


def _require_blend(store: BlendingStore, blend_id: Any) -> Blend:
    blend = store.get_blend(blend_id)
    if blend is None:
        raise BlendNotFoundError("Blend not found.")
    return blend


def _find_entry(blend: Blend, fibre_id: Any) -> Optional[BlendFibre]:
    key = coerce_uuid(fibre_id)
    if key is None:
        return None
    for entry in blend.fibres:
        if entry.fibre_id == key:
            return entry
    return None


def _existing_total(blend: Blend, *, exclude: Optional[BlendFibre] = None) -> Decimal:
    fibres = total(entry.percentage for entry in blend.fibres if entry is not exclude)
    return fibres + total(lot.percentage for lot in blend.raw_cotton_lots)


def _check_fibres_exist(store: BlendingStore, entries: Sequence[FibreEntry]) -> None:
    seen = set()
    for entry in entries:
        key = coerce_uuid(entry.fibre_id)
        if key in seen:
            raise DuplicateFibreError(f"Fibre {key} appears more than once in the composition.")
        seen.add(key)
        if store.get_fibre(key) is None:
            raise FibreNotFoundError(f"Fibre {entry.fibre_id} not found.")


def _commit(store: BlendingStore) -> None:
    session = store.session
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_unique_violation(exc, "blend_fibre"):
            raise DuplicateFibreError("Fibre is already part of this blend.") from exc
        if is_unique_violation(exc, "lot_number"):
            raise BlendingValidationError({"raw_cotton_lots": "Lot number is repeated in this blend."}) from exc
        if is_unique_violation(exc, "blend_code"):
            raise BlendingValidationError({"blend_code": "A blend with this code already exists."}) from exc
        raise


def add_fibre(store: BlendingStore, blend_id: Any, fibre_id: Any, percentage: Any) -> BlendFibre:
    """Append ``fibre_id`` to the blend without pushing the total past 100%."""

    blend = _require_blend(store, blend_id)

    errors: Dict[str, str] = {}
    key = parse_uuid(fibre_id, "fibre_id", errors)
    share = _parse_percentage(percentage, "percentage", errors)
    if errors:
        raise BlendingValidationError(errors)

    if store.get_fibre(key) is None:
        raise FibreNotFoundError(f"Fibre {key} not found.")
    if _find_entry(blend, key) is not None:
        raise DuplicateFibreError("Fibre is already part of this blend.")

    existing = _existing_total(blend)
    if existing + share > HUNDRED:
        raise CompositionOverflowError(
            f"Adding {share}% would take the blend to {existing + share}%, above 100%.",
            errors={"percentage": f"At most {HUNDRED - existing}% is still available."},
        )

    position = max((entry.position for entry in blend.fibres), default=-1) + 1
    entry = BlendFibre(fibre_id=key, percentage=share, position=position)
    blend.fibres.append(entry)
    _commit(store)
    logger.info("Added fibre %s to blend %s at %s%%", key, blend.blend_code, share)
    return entry


def update_fibre_percentage(store: BlendingStore, blend_id: Any, fibre_id: Any, new_percentage: Any) -> BlendFibre:
    blend = _require_blend(store, blend_id)

    errors: Dict[str, str] = {}
    share = _parse_percentage(new_percentage, "percentage", errors)
    if errors:
        raise BlendingValidationError(errors)

    entry = _find_entry(blend, fibre_id)
    if entry is None:
        raise FibreNotFoundError("Fibre is not part of this blend.")

    others = _existing_total(blend, exclude=entry)
    if others + share > HUNDRED:
        raise CompositionOverflowError(
            f"Setting {share}% would take the blend to {others + share}%, above 100%.",
            errors={"percentage": f"At most {HUNDRED - others}% is available for this fibre."},
        )

    entry.percentage = share
    _commit(store)
    return entry


def remove_fibre(store: BlendingStore, blend_id: Any, fibre_id: Any) -> None:
    blend = _require_blend(store, blend_id)
    entry = _find_entry(blend, fibre_id)
    if entry is None:
        raise FibreNotFoundError("Fibre is not part of this blend.")
    blend.fibres.remove(entry)
    _commit(store)


def _apply_composition(
    store: BlendingStore,
    blend: Blend,
    fibre_entries: Sequence[FibreEntry],
    raw_cotton_entries: Sequence[RawCottonEntry],
) -> None:
    blend.fibres.clear()
    blend.raw_cotton_lots.clear()
    # Old rows must be gone before the unique (blend, fibre) rows are re-inserted.
    store.session.flush()

    for position, entry in enumerate(fibre_entries):
        blend.fibres.append(
            BlendFibre(fibre_id=coerce_uuid(entry.fibre_id), percentage=entry.percentage, position=position)
        )
    for position, lot in enumerate(raw_cotton_entries):
        blend.raw_cotton_lots.append(
            RawCottonLot(
                lot_number=lot.lot_number,
                percentage=lot.percentage,
                grade=lot.grade,
                source=lot.source,
                stock_kg=lot.stock_kg,
                notes=lot.notes,
                position=position,
            )
        )


def _checked_entries(
    store: BlendingStore,
    fibre_entries: Any,
    raw_cotton_entries: Any,
) -> Tuple[List[FibreEntry], List[RawCottonEntry]]:
    errors: Dict[str, str] = {}
    fibres = parse_fibre_entries(fibre_entries, errors)
    lots = parse_raw_cotton_entries(raw_cotton_entries, errors)
    if errors:
        raise BlendingValidationError(errors)

    _check_fibres_exist(store, fibres)

    check = validate_composition(fibres, lots)
    if not check.valid:
        raise CompositionMismatchError(
            f"Fibre and raw cotton percentages add up to {check.total_percentage}%, expected exactly 100%.",
            errors={"total_percentage": str(check.total_percentage)},
        )
    return fibres, lots


def replace_composition(
    store: BlendingStore,
    blend_id: Any,
    fibre_entries: Any,
    raw_cotton_entries: Any = None,
) -> Blend:
    """Swap the whole recipe in one go; the result must total exactly 100%."""

    blend = _require_blend(store, blend_id)
    fibres, lots = _checked_entries(store, fibre_entries, raw_cotton_entries)

    try:
        _apply_composition(store, blend, fibres, lots)
    except Exception:
        store.rollback()
        raise
    _commit(store)
    logger.info("Replaced composition of blend %s (%d fibres, %d lots)", blend.blend_code, len(fibres), len(lots))
    return blend


def _has_composition(payload: Mapping[str, Any]) -> bool:
    return bool(payload.get("fibres")) or bool(payload.get("raw_cotton_lots"))


def create_blend(store: BlendingStore, payload: Mapping[str, Any]) -> Blend:
    errors: Dict[str, str] = {}
    blend_code = strip_or_none(payload.get("blend_code"))
    if not blend_code:
        errors["blend_code"] = "Blend code is required."
    if errors:
        raise BlendingValidationError(errors)

    session = store.session
    duplicate = session.execute(select(Blend.id).where(Blend.blend_code == blend_code)).first()
    if duplicate is not None:
        raise BlendingValidationError({"blend_code": "A blend with this code already exists."})

    fibres: List[FibreEntry] = []
    lots: List[RawCottonEntry] = []
    if _has_composition(payload):
        fibres, lots = _checked_entries(store, payload.get("fibres"), payload.get("raw_cotton_lots"))

    blend = Blend(
        blend_code=blend_code,
        name=strip_or_none(payload.get("name")),
        description=strip_or_none(payload.get("description")),
    )
    session.add(blend)
    try:
        _apply_composition(store, blend, fibres, lots)
    except Exception:
        store.rollback()
        raise
    _commit(store)
    logger.info("Created blend %s", blend.blend_code)
    return blend


def update_blend(store: BlendingStore, blend_id: Any, payload: Mapping[str, Any]) -> Blend:
    """Update blend details; a supplied composition replaces the old one."""

    blend = _require_blend(store, blend_id)

    errors: Dict[str, str] = {}
    if "blend_code" in payload:
        blend_code = strip_or_none(payload.get("blend_code"))
        if not blend_code:
            errors["blend_code"] = "Blend code is required."
        else:
            clash = store.session.execute(
                select(Blend.id).where(Blend.blend_code == blend_code, Blend.id != blend.id)
            ).first()
            if clash is not None:
                errors["blend_code"] = "A blend with this code already exists."
    if errors:
        raise BlendingValidationError(errors)

    fibres: Optional[List[FibreEntry]] = None
    lots: List[RawCottonEntry] = []
    if "fibres" in payload or "raw_cotton_lots" in payload:
        fibres, lots = _checked_entries(store, payload.get("fibres"), payload.get("raw_cotton_lots"))

    if "blend_code" in payload:
        blend.blend_code = strip_or_none(payload.get("blend_code"))
    if "name" in payload:
        blend.name = strip_or_none(payload.get("name"))
    if "description" in payload:
        blend.description = strip_or_none(payload.get("description"))

    if fibres is not None:
        try:
            _apply_composition(store, blend, fibres, lots)
        except Exception:
            store.rollback()
            raise
    _commit(store)
    return blend


def delete_blend(store: BlendingStore, blend_id: Any) -> None:
    blend = _require_blend(store, blend_id)
    session = store.session
    in_use = session.execute(select(func.count(Order.id)).where(Order.blend_id == blend.id)).scalar_one()
    if in_use:
        raise BlendInUseError(f"Blend {blend.blend_code} is used by {in_use} order(s).")
    session.delete(blend)
    _commit(store)
    logger.info("Deleted blend %s", blend.blend_code)


def get_blend(store: BlendingStore, blend_id: Any) -> Blend:
    composition = store.get_blend_composition(blend_id)
    if composition is None:
        raise BlendNotFoundError("Blend not found.")
    return composition.blend


def list_blends(store: BlendingStore, *, search: Optional[str] = None) -> List[Blend]:
    stmt = select(Blend).order_by(Blend.blend_code)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(Blend.blend_code.ilike(like), Blend.name.ilike(like)))
    return list(store.session.execute(stmt).scalars())


def blend_summary(blend: Blend) -> Dict[str, Any]:
    """Composition health and the yarn the current fibre stock could make."""

    fibres = sorted(
        (
            {
                "fibre_id": str(entry.fibre_id),
                "fibre_code": entry.fibre.fibre_code if entry.fibre else None,
                "fibre_name": entry.fibre.fibre_name if entry.fibre else None,
                "percentage": entry.percentage,
                "stock_kg": entry.fibre.stock_kg if entry.fibre else ZERO,
            }
            for entry in blend.fibres
        ),
        key=lambda item: item["percentage"],
        reverse=True,
    )
    check = validate_composition(blend.fibres, blend.raw_cotton_lots)

    producible = [
        item["stock_kg"] * HUNDRED / item["percentage"]
        for item in fibres
        if item["percentage"] > ZERO
    ]
    return {
        "blend_id": str(blend.id),
        "blend_code": blend.blend_code,
        "name": blend.name,
        "description": blend.description,
        "total_percentage": check.total_percentage,
        "is_valid": check.valid,
        "producible_kg": quantize(min(producible)) if producible else None,
        "fibres": fibres,
        "raw_cotton_lots": [
            {"lot_number": lot.lot_number, "percentage": lot.percentage}
            for lot in blend.raw_cotton_lots
        ],
    }


def list_blend_summaries(store: BlendingStore) -> List[Dict[str, Any]]:
    return [blend_summary(blend) for blend in list_blends(store)]
