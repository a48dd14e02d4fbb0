"""Storage port used by the ledger, consumption and progress services.

The services never reach for ``db.session`` themselves; they receive a
:class:`BlendingStore` that is built once in ``create_app`` and kept in
``app.extensions``. Tests build their own store around a plain session.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator, List, Optional

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from models import (
    Blend,
    BlendFibre,
    Buyer,
    Fibre,
    FibreUsageLog,
    Order,
    OrderStatus,
    ProductionLogEntry,
    RawCottonLot,
)


class BlendingStoreUnavailable(RuntimeError):
    """Raised when the store has not been initialised for the app."""

    pass


def coerce_uuid(value: object) -> Optional[uuid.UUID]:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError):
        return None


@dataclass
class BlendComposition:
    blend: Blend
    fibres: List[BlendFibre] = field(default_factory=list)
    raw_cotton_lots: List[RawCottonLot] = field(default_factory=list)


@dataclass
class BlendingStore:
    session_factory: Callable[[], Session]

    @property
    def session(self) -> Session:
        return self.session_factory()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def atomic(self) -> Iterator[Session]:
        """Commit everything done inside the block, or nothing at all."""

        session = self.session
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise

    # -- fibres -------------------------------------------------------------

    def get_fibre(self, fibre_id: object) -> Optional[Fibre]:
        key = coerce_uuid(fibre_id)
        if key is None:
            return None
        return self.session.get(Fibre, key)

    def debit_fibre(self, fibre_id: object, amount: Decimal) -> Optional[Decimal]:
        """Atomically subtract ``amount`` and return the new balance.

        Returns ``None`` when the fibre does not exist. The subtraction runs
        in the database so concurrent debits of the same fibre cannot lose
        an update.
        """

        key = coerce_uuid(fibre_id)
        if key is None:
            return None

        result = self.session.execute(
            update(Fibre)
            .where(Fibre.id == key)
            .values(stock_kg=Fibre.stock_kg - amount, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None

        fibre = self.session.get(Fibre, key, populate_existing=True)
        return fibre.stock_kg if fibre is not None else None

    def append_usage_log(
        self,
        fibre_id: object,
        used_kg: Decimal,
        *,
        order_id: object = None,
        timestamp: Optional[datetime] = None,
    ) -> FibreUsageLog:
        entry = FibreUsageLog(
            fibre_id=coerce_uuid(fibre_id),
            order_id=coerce_uuid(order_id),
            used_kg=used_kg,
            timestamp=timestamp or datetime.utcnow(),
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    # -- blends -------------------------------------------------------------

    def get_blend(self, blend_id: object) -> Optional[Blend]:
        key = coerce_uuid(blend_id)
        if key is None:
            return None
        return self.session.get(Blend, key)

    def get_blend_composition(self, blend_id: object) -> Optional[BlendComposition]:
        key = coerce_uuid(blend_id)
        if key is None:
            return None
        blend = self.session.execute(
            select(Blend)
            .options(
                selectinload(Blend.fibres).selectinload(BlendFibre.fibre),
                selectinload(Blend.raw_cotton_lots),
            )
            .where(Blend.id == key)
        ).scalar_one_or_none()
        if blend is None:
            return None
        return BlendComposition(
            blend=blend,
            fibres=list(blend.fibres),
            raw_cotton_lots=list(blend.raw_cotton_lots),
        )

    # -- orders -------------------------------------------------------------

    def get_buyer(self, buyer_id: object) -> Optional[Buyer]:
        key = coerce_uuid(buyer_id)
        if key is None:
            return None
        return self.session.get(Buyer, key)

    def get_order(self, order_id: object) -> Optional[Order]:
        key = coerce_uuid(order_id)
        if key is None:
            return None
        return self.session.get(Order, key)

    def update_order_status(
        self,
        order_id: object,
        new_status: OrderStatus,
        *,
        expected_status: OrderStatus,
    ) -> bool:
        """Compare-and-swap the order status.

        Returns ``False`` when the stored status no longer matches
        ``expected_status`` (another request got there first).
        """

        key = coerce_uuid(order_id)
        if key is None:
            return False

        result = self.session.execute(
            update(Order)
            .where(Order.id == key, Order.status == expected_status)
            .values(status=new_status, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        self.session.get(Order, key, populate_existing=True)
        return True

    def list_production_logs(self, order_id: object) -> List[ProductionLogEntry]:
        """Entries by date, then by the autoincrement ``id`` so same-day ties keep insertion order."""

        key = coerce_uuid(order_id)
        if key is None:
            return []
        return list(
            self.session.execute(
                select(ProductionLogEntry)
                .where(ProductionLogEntry.order_id == key)
                .order_by(ProductionLogEntry.date.asc(), ProductionLogEntry.id.asc())
            ).scalars()
        )


def init_blending_store(app, session_factory: Optional[Callable[[], Session]] = None) -> BlendingStore:
    """Build the store once per application and register it."""

    if session_factory is None:
        from extensions import db

        session_factory = db.session

    store = BlendingStore(session_factory=session_factory)
    app.extensions["blending_store"] = store
    return store


def get_blending_store(app=None) -> BlendingStore:
    target_app = app or current_app
    store: BlendingStore | None = None
    if target_app:
        store = target_app.extensions.get("blending_store")

    if not store:
        raise BlendingStoreUnavailable("Blending store has not been initialized.")
    return store
