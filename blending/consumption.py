"""Order status machine and the fibre consumption it triggers.

Moving an order from ``pending`` to ``in_progress`` consumes every fibre of
its blend in proportion to the order quantity grossed up by the realisation
(yarn yield) percentage::

    total_input = quantity_kg / realisation * 100
    required    = total_input * percentage / 100

All checks run before anything is written. The status flip is a
compare-and-swap on ``status = 'pending'`` so two concurrent requests can
never consume the same order twice, and the debits commit together with the
status change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from models import Blend, BlendFibre, Order, OrderStatus

from .errors import (
    BlendNotFoundError,
    BlendingValidationError,
    FibreNotFoundError,
    InvalidStatusTransitionError,
    MissingRealisationError,
    OrderNotFoundError,
)
from .ledger import StockLedger
from .quantities import HUNDRED, KG_QUANT, ZERO, percent_of, quantize
from .storage import BlendComposition, BlendingStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    (OrderStatus.pending, OrderStatus.in_progress),
    (OrderStatus.in_progress, OrderStatus.completed),
}


@dataclass(frozen=True)
class FibreDraw:
    fibre_id: Any
    percentage: Decimal
    required_kg: Decimal


def parse_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    text = str(value or "").strip().lower()
    try:
        return OrderStatus(text)
    except ValueError as exc:
        allowed = ", ".join(status.value for status in OrderStatus)
        raise BlendingValidationError({"status": f"Status must be one of: {allowed}."}) from exc


def required_input_kg(quantity_kg: Decimal, realisation: Decimal) -> Decimal:
    """Raw material needed to spin ``quantity_kg`` of yarn at ``realisation`` %."""

    return quantity_kg / realisation * HUNDRED


def plan_draws(total_input: Decimal, composition: BlendComposition) -> List[FibreDraw]:
    """Split ``total_input`` into whole-gram draws, one per fibre.

    Rounding is applied to the running total rather than to each share, so
    the draws always add up to the rounded input of the fibre share and the
    remainder lands on the later fibres.
    """

    draws: List[FibreDraw] = []
    cumulative_percentage = ZERO
    drawn = ZERO
    for entry in composition.fibres:
        cumulative_percentage += entry.percentage
        running = quantize(percent_of(total_input, cumulative_percentage), KG_QUANT)
        draws.append(FibreDraw(fibre_id=entry.fibre_id, percentage=entry.percentage, required_kg=running - drawn))
        drawn = running
    return draws


class OrderConsumptionEngine:
    def __init__(self, store: BlendingStore, ledger: Optional[StockLedger] = None):
        self.store = store
        self.ledger = ledger or StockLedger(store)

    def transition(self, order_id: Any, new_status: Any) -> Order:
        target = parse_status(new_status)
        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")

        current = order.status
        if (current, target) not in ALLOWED_TRANSITIONS:
            raise InvalidStatusTransitionError(
                f"Cannot move order {order.order_number} from {current.value} to {target.value}."
            )

        if target is OrderStatus.in_progress:
            return self._start_production(order)
        return self._swap_status(order, current, target)

    def _swap_status(self, order: Order, current: OrderStatus, target: OrderStatus) -> Order:
        with self.store.atomic():
            if not self.store.update_order_status(order.id, target, expected_status=current):
                raise InvalidStatusTransitionError(
                    f"Order {order.order_number} is no longer {current.value}."
                )
        logger.info("Order %s moved from %s to %s", order.order_number, current.value, target.value)
        return order

    def _start_production(self, order: Order) -> Order:
        realisation = order.realisation
        if realisation is None or realisation <= ZERO:
            raise MissingRealisationError(
                f"Order {order.order_number} has no realisation percentage; set it before starting production.",
                errors={"realisation": "Realisation must be greater than 0."},
            )

        composition = self.store.get_blend_composition(order.blend_id)
        if composition is None:
            raise BlendNotFoundError(f"Blend for order {order.order_number} not found.")

        total_input = required_input_kg(order.quantity_kg, realisation)
        draws = plan_draws(total_input, composition)
        order_id = order.id
        order_number = order.order_number

        for draw in draws:
            try:
                available = self.ledger.balance(draw.fibre_id)
            except FibreNotFoundError as exc:
                raise FibreNotFoundError(
                    f"Fibre {draw.fibre_id} in blend {composition.blend.blend_code} not found."
                ) from exc
            if available < draw.required_kg:
                logger.warning(
                    "Order %s draws %s kg of fibre %s with only %s kg in stock",
                    order_number,
                    draw.required_kg,
                    draw.fibre_id,
                    available,
                )

        logger.info(
            "Starting order %s: %s kg yarn at %s%% realisation needs %s kg input",
            order_number,
            order.quantity_kg,
            realisation,
            quantize(total_input, KG_QUANT),
        )

        try:
            with self.store.atomic():
                if not self.store.update_order_status(
                    order_id, OrderStatus.in_progress, expected_status=OrderStatus.pending
                ):
                    raise InvalidStatusTransitionError(f"Order {order_number} is no longer pending.")
                for draw in draws:
                    self.ledger.debit(draw.fibre_id, draw.required_kg, order_id=order_id)
        except Exception:
            logger.warning("Consumption for order %s rolled back", order_number, exc_info=True)
            raise

        logger.info("Order %s in progress, %d fibre(s) consumed", order_number, len(draws))
        return self.store.get_order(order_id)

    def fibre_requirements(self, order_id: Any) -> Dict[str, Any]:
        """Preview what starting the order would draw from stock. Writes nothing."""

        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found.")

        composition = self.store.get_blend_composition(order.blend_id)
        if composition is None:
            raise BlendNotFoundError(f"Blend for order {order.order_number} not found.")

        assumed = order.realisation is None or order.realisation <= ZERO
        realisation = HUNDRED if assumed else order.realisation
        total_input = required_input_kg(order.quantity_kg, realisation)

        fibres = []
        for entry, draw in zip(composition.fibres, plan_draws(total_input, composition)):
            required = draw.required_kg
            available = entry.fibre.stock_kg if entry.fibre is not None else ZERO
            shortage = required - available if available < required else ZERO
            fibres.append(
                {
                    "fibre_id": str(entry.fibre_id),
                    "fibre_code": entry.fibre.fibre_code if entry.fibre else None,
                    "fibre_name": entry.fibre.fibre_name if entry.fibre else None,
                    "percentage": entry.percentage,
                    "required_kg": required,
                    "available_kg": available,
                    "shortage_kg": shortage,
                    "sufficient": shortage == ZERO,
                }
            )

        raw_cotton = [
            {
                "lot_number": lot.lot_number,
                "percentage": lot.percentage,
                "required_kg": quantize(percent_of(total_input, lot.percentage), KG_QUANT),
                "available_kg": lot.stock_kg,
            }
            for lot in composition.raw_cotton_lots
        ]

        return {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "status": order.status.value,
            "quantity_kg": order.quantity_kg,
            "realisation": realisation,
            "realisation_assumed": assumed,
            "total_input_kg": quantize(total_input, KG_QUANT),
            "fibres": fibres,
            "raw_cotton_lots": raw_cotton,
            "can_start": all(item["sufficient"] for item in fibres),
        }

    def count_fibre_shortages(self) -> int:
        """Distinct fibres that cannot cover at least one open order."""

        orders = self.store.session.execute(
            select(Order)
            .options(selectinload(Order.blend).selectinload(Blend.fibres).selectinload(BlendFibre.fibre))
            .where(Order.status.in_([OrderStatus.pending, OrderStatus.in_progress]))
        ).scalars()

        short: set = set()
        for order in orders:
            realisation = order.realisation if order.realisation and order.realisation > ZERO else HUNDRED
            total_input = required_input_kg(order.quantity_kg, realisation)
            for entry in order.blend.fibres if order.blend else []:
                if entry.fibre is None:
                    continue
                if entry.fibre.stock_kg < percent_of(total_input, entry.percentage):
                    short.add(entry.fibre_id)
        return len(short)
