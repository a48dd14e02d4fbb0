"""Fibre stock ledger: atomic debits plus the usage audit trail."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from models import Fibre, FibreUsageLog

from .errors import BlendingValidationError, FibreNotFoundError
from .quantities import KG_QUANT, ZERO, quantize, to_decimal
from .storage import BlendingStore

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = Decimal("200")


class StockLedger:
    """Debits fibre stock and keeps the append-only usage log.

    ``debit`` does not commit; the caller owns the transaction so that a
    multi-fibre consumption either lands completely or not at all.
    """

    def __init__(self, store: BlendingStore):
        self.store = store

    def balance(self, fibre_id: Any) -> Decimal:
        fibre = self.store.get_fibre(fibre_id)
        if fibre is None:
            raise FibreNotFoundError(f"Fibre {fibre_id} not found.")
        return fibre.stock_kg

    def debit(self, fibre_id: Any, amount: Any, *, order_id: Any = None) -> Decimal:
        """Subtract ``amount`` kg from the fibre and return the new balance.

        The balance may go negative. A failure to write the usage log is
        logged and does not undo the debit.
        """

        quantity = to_decimal(amount, default=None)
        if quantity is None or quantity < ZERO:
            raise BlendingValidationError({"amount": "Debit amount must be a non-negative number."})
        if quantity != quantity.quantize(KG_QUANT):
            raise BlendingValidationError({"amount": "Debit amount must be in whole grams (at most 3 decimal places)."})

        new_balance = self.store.debit_fibre(fibre_id, quantity)
        if new_balance is None:
            raise FibreNotFoundError(f"Fibre {fibre_id} not found.")

        session = self.store.session
        try:
            with session.begin_nested():
                self.store.append_usage_log(fibre_id, quantity, order_id=order_id)
        except SQLAlchemyError:
            logger.warning(
                "Usage log for fibre %s (%s kg, order %s) could not be written",
                fibre_id,
                quantity,
                order_id,
                exc_info=True,
            )

        logger.info("Debited %s kg from fibre %s, balance now %s kg", quantity, fibre_id, new_balance)
        return new_balance

    def usage_logs(self, fibre_id: Any, *, limit: Optional[int] = None) -> List[FibreUsageLog]:
        fibre = self.store.get_fibre(fibre_id)
        if fibre is None:
            raise FibreNotFoundError(f"Fibre {fibre_id} not found.")
        stmt = (
            select(FibreUsageLog)
            .where(FibreUsageLog.fibre_id == fibre.id)
            .order_by(FibreUsageLog.timestamp.desc(), FibreUsageLog.id.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.store.session.execute(stmt).scalars())

    def usage_trend(self, fibre_id: Any, *, days: Optional[int] = None) -> List[Dict[str, Any]]:
        """Kilograms used per calendar day, oldest day first."""

        fibre = self.store.get_fibre(fibre_id)
        if fibre is None:
            raise FibreNotFoundError(f"Fibre {fibre_id} not found.")

        stmt = (
            select(FibreUsageLog.timestamp, FibreUsageLog.used_kg)
            .where(FibreUsageLog.fibre_id == fibre.id)
            .order_by(FibreUsageLog.timestamp.asc())
        )
        if days:
            stmt = stmt.where(FibreUsageLog.timestamp >= datetime.utcnow() - timedelta(days=days))

        per_day: "OrderedDict[Any, Decimal]" = OrderedDict()
        for timestamp, used_kg in self.store.session.execute(stmt):
            day = timestamp.date()
            per_day[day] = per_day.get(day, ZERO) + (used_kg or ZERO)

        return [{"date": day, "used_kg": used} for day, used in per_day.items()]

    def usage_totals(self) -> List[Dict[str, Any]]:
        stmt = (
            select(
                Fibre.id,
                Fibre.fibre_code,
                Fibre.fibre_name,
                Fibre.stock_kg,
                func.coalesce(func.sum(FibreUsageLog.used_kg), 0),
                func.count(FibreUsageLog.id),
            )
            .outerjoin(FibreUsageLog, FibreUsageLog.fibre_id == Fibre.id)
            .group_by(Fibre.id, Fibre.fibre_code, Fibre.fibre_name, Fibre.stock_kg)
            .order_by(Fibre.fibre_code)
        )
        rows = []
        for fibre_id, code, name, stock_kg, used, entries in self.store.session.execute(stmt):
            rows.append(
                {
                    "fibre_id": str(fibre_id),
                    "fibre_code": code,
                    "fibre_name": name,
                    "stock_kg": stock_kg,
                    "used_kg": quantize(to_decimal(used)),
                    "entries": int(entries or 0),
                }
            )
        rows.sort(key=lambda row: row["used_kg"], reverse=True)
        return rows

    def low_stock_fibres(self, threshold: Any = None) -> List[Fibre]:
        limit = to_decimal(threshold, default=None)
        if limit is None:
            limit = DEFAULT_LOW_STOCK_THRESHOLD
        stmt = select(Fibre).where(Fibre.stock_kg < limit).order_by(Fibre.stock_kg.asc(), Fibre.fibre_code)
        return list(self.store.session.execute(stmt).scalars())
