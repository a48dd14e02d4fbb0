"""Production log entries and the per-order progress report built from them."""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select

from models import ProductionLogEntry

from .errors import BlendingValidationError, OrderNotFoundError, ProductionLogNotFoundError
from .payload import decimal_field, parse_date, parse_uuid, strip_or_none
from .quantities import KG_QUANT, ZERO, percent_of, ratio_percent, total
from .storage import BlendingStore

TEXT_FIELDS = ("machine", "section", "shift", "remarks")


def _parse_log_fields(payload: Mapping[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    errors: Dict[str, str] = {}
    values: Dict[str, Any] = {}

    if not partial or "date" in payload:
        values["date"] = parse_date(payload.get("date"), "date", errors)
    if not partial or "production_kg" in payload:
        values["production_kg"] = decimal_field(
            payload.get("production_kg"), "production_kg", errors, minimum=ZERO, quant=KG_QUANT
        )
    if not partial or "required_qty" in payload:
        values["required_qty"] = decimal_field(
            payload.get("required_qty"), "required_qty", errors, required=False, minimum=ZERO, quant=KG_QUANT
        )
    for field in TEXT_FIELDS:
        if not partial or field in payload:
            values[field] = strip_or_none(payload.get(field))

    if errors:
        raise BlendingValidationError(errors)
    return values


def record_production_log(store: BlendingStore, order_id: Any, payload: Mapping[str, Any]) -> ProductionLogEntry:
    order = store.get_order(order_id)
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found.")

    entry = ProductionLogEntry(order_id=order.id, **_parse_log_fields(payload))
    session = store.session
    session.add(entry)
    session.commit()
    return entry


def list_production_logs(store: BlendingStore, order_id: Any) -> List[ProductionLogEntry]:
    if store.get_order(order_id) is None:
        raise OrderNotFoundError(f"Order {order_id} not found.")
    return store.list_production_logs(order_id)


def _require_log(store: BlendingStore, order_id: Any, log_id: Any) -> ProductionLogEntry:
    order = store.get_order(order_id)
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found.")
    try:
        key = int(str(log_id).strip())
    except (TypeError, ValueError):
        key = None
    entry = store.session.get(ProductionLogEntry, key) if key is not None else None
    if entry is None or entry.order_id != order.id:
        raise ProductionLogNotFoundError(f"Production log {log_id} not found for order {order.order_number}.")
    return entry


def update_production_log(
    store: BlendingStore, order_id: Any, log_id: Any, payload: Mapping[str, Any]
) -> ProductionLogEntry:
    """Correct a recorded entry; only the fields present in ``payload`` change."""

    entry = _require_log(store, order_id, log_id)
    for field, value in _parse_log_fields(payload, partial=True).items():
        setattr(entry, field, value)
    store.session.commit()
    return entry


def delete_production_log(store: BlendingStore, order_id: Any, log_id: Any) -> None:
    entry = _require_log(store, order_id, log_id)
    session = store.session
    session.delete(entry)
    session.commit()


def machine_totals(store: BlendingStore, *, order_id: Any = None) -> List[Dict[str, Any]]:
    """Production per machine across all orders, or for one order.

    Efficiency averages only the entries that carry a ``required_qty``; a
    machine without any such entry reports ``None``.
    """

    stmt = select(ProductionLogEntry).order_by(ProductionLogEntry.date.asc(), ProductionLogEntry.id.asc())
    if order_id not in (None, ""):
        errors: Dict[str, str] = {}
        key = parse_uuid(order_id, "order_id", errors)
        if errors:
            raise BlendingValidationError(errors)
        if store.get_order(key) is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")
        stmt = stmt.where(ProductionLogEntry.order_id == key)

    per_machine: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for entry in store.session.execute(stmt).scalars():
        machine = entry.machine or "unassigned"
        stats = per_machine.setdefault(
            machine,
            {"machine": machine, "production_kg": ZERO, "entries": 0, "days": set(), "efficiencies": []},
        )
        stats["production_kg"] += entry.production_kg or ZERO
        stats["entries"] += 1
        stats["days"].add(entry.date)
        if entry.required_qty is not None and entry.required_qty > ZERO:
            stats["efficiencies"].append(_entry_efficiency(entry))

    rows = []
    for stats in sorted(per_machine.values(), key=lambda item: item["machine"]):
        efficiencies = stats.pop("efficiencies")
        stats["days"] = len(stats["days"])
        stats["average_efficiency"] = total(efficiencies) / len(efficiencies) if efficiencies else None
        rows.append(stats)
    return rows


def _entry_row(entry: ProductionLogEntry) -> Dict[str, Any]:
    return {
        "date": entry.date,
        "machine": entry.machine,
        "section": entry.section,
        "shift": entry.shift,
        "production_kg": entry.production_kg,
        "remarks": entry.remarks,
    }


def _entry_efficiency(entry: ProductionLogEntry) -> Decimal:
    required = entry.required_qty
    if required is None or required <= ZERO:
        return ZERO
    return ratio_percent(entry.production_kg or ZERO, required)


class ProgressAggregator:
    """Read-only progress report for one order.

    ``actual_consumed`` per fibre is reported as zero; stock draws are kept
    in the usage log and are not tied back into this report.
    """

    def __init__(self, store: BlendingStore):
        self.store = store

    def report(self, order_id: Any) -> Dict[str, Any]:
        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")

        entries = self.store.list_production_logs(order.id)
        composition = self.store.get_blend_composition(order.blend_id)

        required_qty = order.quantity_kg or ZERO
        produced_qty = total(entry.production_kg for entry in entries)
        balance_qty = required_qty - produced_qty

        timeline = [_entry_row(entry) for entry in entries]
        daily_chart = [{"date": row["date"], "production_kg": row["production_kg"]} for row in timeline]

        return {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "status": order.status.value,
            "kpis": {
                "required_qty": required_qty,
                "produced_qty": produced_qty,
                "balance_qty": balance_qty,
                "progress_percent": ratio_percent(produced_qty, required_qty),
            },
            "timeline": timeline,
            "daily_chart": daily_chart,
            "section_progress": self._section_totals(entries),
            "fiber_summary": self._fibre_summary(required_qty, composition),
            "insights": {
                "average_efficiency": self._average_efficiency(entries),
                "top_production_day": self._top_day(entries),
            },
        }

    @staticmethod
    def _section_totals(entries: List[ProductionLogEntry]) -> List[Dict[str, Any]]:
        per_section: "OrderedDict[str, Decimal]" = OrderedDict()
        for entry in entries:
            key = entry.section or "unassigned"
            per_section[key] = per_section.get(key, ZERO) + (entry.production_kg or ZERO)
        return [{"section": section, "production_kg": produced} for section, produced in per_section.items()]

    @staticmethod
    def _fibre_summary(required_qty: Decimal, composition) -> List[Dict[str, Any]]:
        if composition is None:
            return []

        rows: List[Dict[str, Any]] = []
        for entry in composition.fibres:
            fibre = entry.fibre
            rows.append(
                {
                    "type": "fibre",
                    "id": str(entry.fibre_id),
                    "code": fibre.fibre_code if fibre else None,
                    "name": fibre.fibre_name if fibre else None,
                    "percentage": entry.percentage,
                    "required_qty": percent_of(required_qty, entry.percentage),
                    "actual_consumed": ZERO,
                    "current_stock": fibre.stock_kg if fibre else ZERO,
                }
            )
        for lot in composition.raw_cotton_lots:
            rows.append(
                {
                    "type": "raw_cotton",
                    "id": str(lot.id),
                    "code": lot.lot_number,
                    "name": lot.grade or lot.lot_number,
                    "percentage": lot.percentage,
                    "required_qty": percent_of(required_qty, lot.percentage),
                    "actual_consumed": ZERO,
                    "current_stock": lot.stock_kg or ZERO,
                }
            )
        return rows

    @staticmethod
    def _average_efficiency(entries: List[ProductionLogEntry]) -> Decimal:
        if not entries:
            return ZERO
        return total(_entry_efficiency(entry) for entry in entries) / len(entries)

    @staticmethod
    def _top_day(entries: List[ProductionLogEntry]) -> Optional[Dict[str, Any]]:
        best: Optional[ProductionLogEntry] = None
        for entry in entries:
            # Strict comparison keeps the first entry on ties.
            if best is None or (entry.production_kg or ZERO) > (best.production_kg or ZERO):
                best = entry
        return _entry_row(best) if best is not None else None
