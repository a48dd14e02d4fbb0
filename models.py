import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlalchemy.types import CHAR, TypeDecorator

from extensions import db
from werkzeug.security import generate_password_hash, check_password_hash


class GUID(TypeDecorator):
    """Platform-independent GUID type."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):  # pragma: no cover - SQLAlchemy hook
        # Bind as CHAR(36) everywhere so SQLite and PostgreSQL share one schema.
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):  # pragma: no cover - SQLAlchemy hook
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):  # pragma: no cover - SQLAlchemy hook
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class RoleEnum(str, Enum):
    admin = "admin"
    production_manager = "production_manager"
    store_keeper = "store_keeper"
    viewer = "viewer"


class OrderStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.production_manager)
    active = db.Column(db.Boolean, default=True)

    def set_password(self, pw): self.password_hash = generate_password_hash(pw)
    def check_password(self, pw): return check_password_hash(self.password_hash, pw)


class Buyer(db.Model):
    __tablename__ = "buyers"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(255), unique=True, nullable=False)
    contact_person = db.Column(db.String(120))
    phone = db.Column(db.String(40))
    email = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    orders = db.relationship("Order", back_populates="buyer")


class FibreCategory(db.Model):
    __tablename__ = "fibre_categories"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    fibres = db.relationship("Fibre", back_populates="category")


class Fibre(db.Model):
    __tablename__ = "fibres"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    fibre_code = db.Column(db.String(60), unique=True, nullable=False)
    fibre_name = db.Column(db.String(255), nullable=False)
    category_id = db.Column(GUID(), db.ForeignKey("fibre_categories.id", ondelete="SET NULL"))
    description = db.Column(db.Text)
    stock_kg = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    closing_stock = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    inward_stock = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    outward_stock = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    consumed_stock = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    category = db.relationship("FibreCategory", back_populates="fibres")
    blend_fibres = db.relationship("BlendFibre", back_populates="fibre")
    usage_logs = db.relationship("FibreUsageLog", back_populates="fibre", order_by="FibreUsageLog.timestamp")

    def __repr__(self):
        return f"<Fibre {self.fibre_code} stock={self.stock_kg}>"


class Blend(db.Model):
    """A shade recipe: fibres and raw-cotton lots adding up to 100%."""

    __tablename__ = "blends"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    blend_code = db.Column(db.String(60), unique=True, nullable=False)
    name = db.Column(db.String(255))
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    fibres = db.relationship(
        "BlendFibre",
        back_populates="blend",
        cascade="all, delete-orphan",
        order_by="BlendFibre.position",
    )
    raw_cotton_lots = db.relationship(
        "RawCottonLot",
        back_populates="blend",
        cascade="all, delete-orphan",
        order_by="RawCottonLot.position",
    )
    orders = db.relationship("Order", back_populates="blend")

    def __repr__(self):
        return f"<Blend {self.blend_code}>"


class BlendFibre(db.Model):
    __tablename__ = "blend_fibres"

    id = db.Column(db.Integer, primary_key=True)
    blend_id = db.Column(GUID(), db.ForeignKey("blends.id", ondelete="CASCADE"), nullable=False)
    fibre_id = db.Column(GUID(), db.ForeignKey("fibres.id"), nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    blend = db.relationship("Blend", back_populates="fibres")
    fibre = db.relationship("Fibre", back_populates="blend_fibres")

    __table_args__ = (
        UniqueConstraint("blend_id", "fibre_id", name="uq_blend_fibre"),
        CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_blend_fibre_percentage_range"),
    )


class RawCottonLot(db.Model):
    __tablename__ = "raw_cotton_lots"

    id = db.Column(db.Integer, primary_key=True)
    blend_id = db.Column(GUID(), db.ForeignKey("blends.id", ondelete="CASCADE"), nullable=False)
    lot_number = db.Column(db.String(80), nullable=False)
    percentage = db.Column(db.Numeric(5, 2), nullable=False)
    grade = db.Column(db.String(60))
    source = db.Column(db.String(120))
    stock_kg = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    notes = db.Column(db.Text)
    position = db.Column(db.Integer, nullable=False, default=0)

    blend = db.relationship("Blend", back_populates="raw_cotton_lots")

    __table_args__ = (
        UniqueConstraint("blend_id", "lot_number", name="uq_raw_cotton_lot_blend_lot"),
        CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_raw_cotton_lot_percentage_range"),
    )


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    order_number = db.Column(db.String(40), unique=True, nullable=False)
    buyer_id = db.Column(GUID(), db.ForeignKey("buyers.id"), nullable=False)
    blend_id = db.Column(GUID(), db.ForeignKey("blends.id"), nullable=False)
    quantity_kg = db.Column(db.Numeric(14, 3), nullable=False)
    realisation = db.Column(db.Numeric(6, 2))
    count = db.Column(db.Integer)
    status = db.Column(db.Enum(OrderStatus), nullable=False, default=OrderStatus.pending, index=True)
    delivery_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    buyer = db.relationship("Buyer", back_populates="orders")
    blend = db.relationship("Blend", back_populates="orders")
    production_logs = db.relationship(
        "ProductionLogEntry",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="ProductionLogEntry.date",
    )

    __table_args__ = (
        CheckConstraint("quantity_kg > 0", name="ck_order_quantity_positive"),
    )

    def __repr__(self):
        return f"<Order {self.order_number} status={self.status}>"


class FibreUsageLog(db.Model):
    """Append-only audit trail of stock debits."""

    __tablename__ = "fibre_usage_logs"

    id = db.Column(db.Integer, primary_key=True)
    fibre_id = db.Column(GUID(), db.ForeignKey("fibres.id"), nullable=False, index=True)
    order_id = db.Column(GUID(), db.ForeignKey("orders.id", ondelete="SET NULL"), index=True)
    used_kg = db.Column(db.Numeric(14, 3), nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    fibre = db.relationship("Fibre", back_populates="usage_logs")

    def __repr__(self):
        return f"<FibreUsageLog fibre={self.fibre_id} used={self.used_kg}>"


class ProductionLogEntry(db.Model):
    __tablename__ = "production_logs"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(GUID(), db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    machine = db.Column(db.String(120))
    section = db.Column(db.String(60))
    shift = db.Column(db.String(20))
    production_kg = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0.000"))
    required_qty = db.Column(db.Numeric(14, 3))
    remarks = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    order = db.relationship("Order", back_populates="production_logs")

    __table_args__ = (
        CheckConstraint("production_kg >= 0", name="ck_production_log_kg_non_negative"),
    )
