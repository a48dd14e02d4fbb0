"""Production orders and buyers."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from flask import current_app, has_app_context
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from models import Buyer, FibreUsageLog, Order, OrderStatus

from .consumption import OrderConsumptionEngine, parse_status
from .errors import BlendNotFoundError, BlendingValidationError, BuyerNotFoundError, OrderNotFoundError
from .payload import decimal_field, is_unique_violation, parse_date, parse_int, parse_uuid, strip_or_none
from .quantities import HUNDRED, KG_QUANT, PERCENT_QUANT, ZERO, quantize, to_decimal, total
from .storage import BlendingStore

logger = logging.getLogger(__name__)

DEFAULT_ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_ATTEMPTS = 5

# Fields that feed the consumption maths; frozen once stock has been drawn.
CONSUMPTION_FIELDS = ("blend_id", "quantity_kg", "realisation")


def _order_number_prefix() -> str:
    if has_app_context():
        return current_app.config.get("ORDER_NUMBER_PREFIX") or DEFAULT_ORDER_NUMBER_PREFIX
    return DEFAULT_ORDER_NUMBER_PREFIX


def _next_sequence(last_number: Optional[str]) -> int:
    if not last_number:
        return 1
    match = re.search(r"(\d+)$", last_number)
    if not match:
        return 1
    return int(match.group(1)) + 1


def next_order_number(store: BlendingStore, prefix: Optional[str] = None) -> str:
    prefix = prefix or _order_number_prefix()
    last_number = store.session.execute(
        select(func.max(Order.order_number)).where(Order.order_number.like(f"{prefix}%"))
    ).scalar()
    return f"{prefix}{_next_sequence(last_number):05d}"


def list_buyers(store: BlendingStore, *, search: Optional[str] = None) -> List[Buyer]:
    stmt = select(Buyer).order_by(Buyer.name)
    if search:
        stmt = stmt.where(Buyer.name.ilike(f"%{search.strip()}%"))
    return list(store.session.execute(stmt).scalars())


def create_buyer(store: BlendingStore, payload: Mapping[str, Any]) -> Buyer:
    name = strip_or_none(payload.get("name"))
    if not name:
        raise BlendingValidationError({"name": "Buyer name is required."})

    session = store.session
    buyer = Buyer(
        name=name,
        contact_person=strip_or_none(payload.get("contact_person")),
        phone=strip_or_none(payload.get("phone")),
        email=strip_or_none(payload.get("email")),
    )
    session.add(buyer)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_unique_violation(exc, "buyers", "name"):
            raise BlendingValidationError({"name": "A buyer with this name already exists."}) from exc
        raise
    return buyer


def list_orders(
    store: BlendingStore,
    *,
    status: Any = None,
    buyer_id: Any = None,
    search: Optional[str] = None,
) -> List[Order]:
    stmt = (
        select(Order)
        .options(selectinload(Order.buyer), selectinload(Order.blend))
        .order_by(Order.created_at.desc(), Order.order_number.desc())
    )
    errors: Dict[str, str] = {}
    if status:
        try:
            stmt = stmt.where(Order.status == parse_status(status))
        except BlendingValidationError as exc:
            errors.update(exc.errors)
    if buyer_id:
        key = parse_uuid(buyer_id, "buyer_id", errors)
        if key is not None:
            stmt = stmt.where(Order.buyer_id == key)
    if errors:
        raise BlendingValidationError(errors)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.outerjoin(Order.buyer).where(or_(Order.order_number.ilike(like), Buyer.name.ilike(like)))
    return list(store.session.execute(stmt).scalars())


def get_order(store: BlendingStore, order_id: Any) -> Order:
    order = store.get_order(order_id)
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found.")
    return order


def _parse_order_fields(
    store: BlendingStore,
    payload: Mapping[str, Any],
    errors: Dict[str, str],
    *,
    partial: bool,
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}

    if not partial or "buyer_id" in payload:
        buyer_id = parse_uuid(payload.get("buyer_id"), "buyer_id", errors)
        if buyer_id is not None:
            if store.get_buyer(buyer_id) is None:
                raise BuyerNotFoundError(f"Buyer {buyer_id} not found.")
            values["buyer_id"] = buyer_id

    if not partial or "blend_id" in payload:
        blend_id = parse_uuid(payload.get("blend_id"), "blend_id", errors)
        if blend_id is not None:
            if store.get_blend(blend_id) is None:
                raise BlendNotFoundError(f"Blend {blend_id} not found.")
            values["blend_id"] = blend_id

    if not partial or "quantity_kg" in payload:
        quantity = decimal_field(
            payload.get("quantity_kg"), "quantity_kg", errors, exclusive_minimum=ZERO, quant=KG_QUANT
        )
        if quantity is not None:
            values["quantity_kg"] = quantity

    if "realisation" in payload:
        values["realisation"] = decimal_field(
            payload.get("realisation"),
            "realisation",
            errors,
            required=False,
            exclusive_minimum=ZERO,
            maximum=HUNDRED,
            quant=PERCENT_QUANT,
        )

    if "count" in payload:
        values["count"] = parse_int(payload.get("count"), "count", errors, minimum=1)

    if not partial or "delivery_date" in payload:
        delivery_date = parse_date(payload.get("delivery_date"), "delivery_date", errors)
        if delivery_date is not None:
            values["delivery_date"] = delivery_date

    if "notes" in payload:
        values["notes"] = strip_or_none(payload.get("notes"))

    return values


def create_order(store: BlendingStore, payload: Mapping[str, Any]) -> Order:
    """Create a pending order with a generated order number."""

    errors: Dict[str, str] = {}
    if "status" in payload and payload.get("status") not in (None, "", OrderStatus.pending.value):
        errors["status"] = "New orders always start as pending."

    values = _parse_order_fields(store, payload, errors, partial=False)
    if errors:
        raise BlendingValidationError(errors)

    session = store.session
    order = Order(status=OrderStatus.pending, order_number=next_order_number(store), **values)
    session.add(order)

    attempts = 0
    while True:
        try:
            session.commit()
            break
        except IntegrityError as exc:
            session.rollback()
            if is_unique_violation(exc, "order_number"):
                attempts += 1
                if attempts >= ORDER_NUMBER_ATTEMPTS:
                    raise BlendingValidationError(
                        {"order_number": "Unable to assign an order number. Please try again."}
                    ) from exc
                order.order_number = next_order_number(store)
                session.add(order)
                continue
            raise

    logger.info("Created order %s for %s kg", order.order_number, order.quantity_kg)
    return order


def update_order(
    store: BlendingStore,
    order_id: Any,
    payload: Mapping[str, Any],
    *,
    engine: Optional[OrderConsumptionEngine] = None,
) -> Order:
    """Edit an order. A status change goes through the consumption engine.

    Field edits and the status change share one transaction, so a failed
    transition leaves the order untouched.
    """

    order = get_order(store, order_id)

    errors: Dict[str, str] = {}
    target = None
    if "status" in payload:
        try:
            target = parse_status(payload.get("status"))
        except BlendingValidationError as exc:
            errors.update(exc.errors)

    values = _parse_order_fields(store, payload, errors, partial=True)
    if order.status is not OrderStatus.pending:
        for field in CONSUMPTION_FIELDS:
            if field in values and values[field] != getattr(order, field):
                errors[field] = "Only pending orders can change blend, quantity or realisation."
    if errors:
        raise BlendingValidationError(errors)

    for field, value in values.items():
        setattr(order, field, value)

    if target is not None and target is not order.status:
        engine = engine or OrderConsumptionEngine(store)
        try:
            return engine.transition(order.id, target)
        except Exception:
            store.rollback()
            raise

    session = store.session
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise
    return order


def delete_order(store: BlendingStore, order_id: Any) -> None:
    """Delete an order. Stock already drawn is not credited back."""

    order = get_order(store, order_id)
    session = store.session
    session.execute(
        update(FibreUsageLog)
        .where(FibreUsageLog.order_id == order.id)
        .values(order_id=None)
        .execution_options(synchronize_session=False)
    )
    session.delete(order)
    session.commit()
    logger.info("Deleted order %s", order.order_number)


def order_statistics(store: BlendingStore) -> Dict[str, Any]:
    session = store.session
    counts = {status: 0 for status in OrderStatus}
    quantities = {status: ZERO for status in OrderStatus}
    rows = session.execute(
        select(Order.status, func.count(Order.id), func.sum(Order.quantity_kg)).group_by(Order.status)
    )
    for status, count, quantity in rows:
        counts[status] = int(count or 0)
        quantities[status] = quantize(to_decimal(quantity))

    return {
        "total_orders": sum(counts.values()),
        "pending_orders": counts[OrderStatus.pending],
        "in_progress_orders": counts[OrderStatus.in_progress],
        "completed_orders": counts[OrderStatus.completed],
        "total_quantity_kg": quantize(total(quantities.values())),
        "open_quantity_kg": quantize(quantities[OrderStatus.pending] + quantities[OrderStatus.in_progress]),
    }
