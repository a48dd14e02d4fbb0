"""Fibre master data and categories."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from models import BlendFibre, Fibre, FibreCategory, FibreUsageLog

from .errors import BlendingValidationError, FibreCategoryNotFoundError, FibreInUseError, FibreNotFoundError
from .payload import decimal_field, is_unique_violation, parse_uuid, strip_or_none
from .quantities import KG_QUANT, ZERO
from .storage import BlendingStore

STOCK_COLUMNS = ("closing_stock", "inward_stock", "outward_stock", "consumed_stock")


def list_categories(store: BlendingStore) -> List[FibreCategory]:
    return list(store.session.execute(select(FibreCategory).order_by(FibreCategory.name)).scalars())


def create_category(store: BlendingStore, payload: Mapping[str, Any]) -> FibreCategory:
    name = strip_or_none(payload.get("name"))
    if not name:
        raise BlendingValidationError({"name": "Category name is required."})

    session = store.session
    category = FibreCategory(name=name)
    session.add(category)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_unique_violation(exc, "fibre_categories", "name"):
            raise BlendingValidationError({"name": "A category with this name already exists."}) from exc
        raise
    return category


def _require_category(store: BlendingStore, category_id: Any) -> FibreCategory:
    errors: Dict[str, str] = {}
    key = parse_uuid(category_id, "category_id", errors)
    category = store.session.get(FibreCategory, key) if key is not None else None
    if category is None:
        raise FibreCategoryNotFoundError(f"Fibre category {category_id} not found.")
    return category


def update_category(store: BlendingStore, category_id: Any, payload: Mapping[str, Any]) -> FibreCategory:
    category = _require_category(store, category_id)
    name = strip_or_none(payload.get("name"))
    if not name:
        raise BlendingValidationError({"name": "Category name is required."})

    session = store.session
    category.name = name
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_unique_violation(exc, "fibre_categories", "name"):
            raise BlendingValidationError({"name": "A category with this name already exists."}) from exc
        raise
    return category


def delete_category(store: BlendingStore, category_id: Any) -> None:
    """Delete a category. Its fibres stay and become uncategorised."""

    category = _require_category(store, category_id)
    session = store.session
    for fibre in list(category.fibres):
        fibre.category_id = None
    session.delete(category)
    session.commit()


def _resolve_category(store: BlendingStore, value: Any, errors: Dict[str, str]) -> Optional[FibreCategory]:
    category_id = parse_uuid(value, "category_id", errors, required=False)
    if category_id is None:
        return None
    category = store.session.get(FibreCategory, category_id)
    if category is None:
        errors["category_id"] = "Category not found."
    return category


def list_fibres(
    store: BlendingStore,
    *,
    search: Optional[str] = None,
    category_id: Any = None,
) -> List[Fibre]:
    stmt = select(Fibre).order_by(Fibre.fibre_code)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(Fibre.fibre_code.ilike(like), Fibre.fibre_name.ilike(like)))
    if category_id:
        errors: Dict[str, str] = {}
        key = parse_uuid(category_id, "category_id", errors)
        if errors:
            raise BlendingValidationError(errors)
        stmt = stmt.where(Fibre.category_id == key)
    return list(store.session.execute(stmt).scalars())


def get_fibre(store: BlendingStore, fibre_id: Any) -> Fibre:
    fibre = store.get_fibre(fibre_id)
    if fibre is None:
        raise FibreNotFoundError(f"Fibre {fibre_id} not found.")
    return fibre


def create_fibre(store: BlendingStore, payload: Mapping[str, Any]) -> Fibre:
    """Register a fibre; ``stock_kg`` is its opening balance."""

    errors: Dict[str, str] = {}
    fibre_code = strip_or_none(payload.get("fibre_code"))
    if not fibre_code:
        errors["fibre_code"] = "Fibre code is required."
    fibre_name = strip_or_none(payload.get("fibre_name"))
    if not fibre_name:
        errors["fibre_name"] = "Fibre name is required."

    stock_kg = decimal_field(payload.get("stock_kg"), "stock_kg", errors, required=False, default=ZERO, quant=KG_QUANT)
    stock_values = {
        column: decimal_field(payload.get(column), column, errors, required=False, default=ZERO, quant=KG_QUANT)
        for column in STOCK_COLUMNS
    }
    category = _resolve_category(store, payload.get("category_id"), errors)

    if errors:
        raise BlendingValidationError(errors)

    session = store.session
    fibre = Fibre(
        fibre_code=fibre_code,
        fibre_name=fibre_name,
        description=strip_or_none(payload.get("description")),
        category=category,
        stock_kg=stock_kg,
        **stock_values,
    )
    session.add(fibre)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_unique_violation(exc, "fibre_code"):
            raise BlendingValidationError({"fibre_code": "A fibre with this code already exists."}) from exc
        raise
    return fibre


def update_fibre(store: BlendingStore, fibre_id: Any, payload: Mapping[str, Any]) -> Fibre:
    """Edit fibre details. The running balance can only move through the ledger."""

    fibre = get_fibre(store, fibre_id)
    errors: Dict[str, str] = {}

    if "stock_kg" in payload:
        errors["stock_kg"] = "Stock balance is maintained by the stock ledger."

    updates: Dict[str, Any] = {}
    for field, label in (("fibre_code", "Fibre code"), ("fibre_name", "Fibre name")):
        if field in payload:
            value = strip_or_none(payload.get(field))
            if not value:
                errors[field] = f"{label} is required."
            updates[field] = value
    if "description" in payload:
        updates["description"] = strip_or_none(payload.get("description"))
    for column in STOCK_COLUMNS:
        if column in payload:
            updates[column] = decimal_field(payload.get(column), column, errors, quant=KG_QUANT)
    if "category_id" in payload:
        updates["category"] = _resolve_category(store, payload.get("category_id"), errors)

    if errors:
        raise BlendingValidationError(errors)

    for field, value in updates.items():
        setattr(fibre, field, value)

    session = store.session
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if is_unique_violation(exc, "fibre_code"):
            raise BlendingValidationError({"fibre_code": "A fibre with this code already exists."}) from exc
        raise
    return fibre


def delete_fibre(store: BlendingStore, fibre_id: Any) -> None:
    fibre = get_fibre(store, fibre_id)
    session = store.session

    in_blends = session.execute(select(func.count(BlendFibre.id)).where(BlendFibre.fibre_id == fibre.id)).scalar_one()
    if in_blends:
        raise FibreInUseError(f"Fibre {fibre.fibre_code} is used in {in_blends} blend(s).")
    logged = session.execute(select(func.count(FibreUsageLog.id)).where(FibreUsageLog.fibre_id == fibre.id)).scalar_one()
    if logged:
        raise FibreInUseError(f"Fibre {fibre.fibre_code} has usage history and cannot be deleted.")

    session.delete(fibre)
    session.commit()
