"""Blend composition, fibre stock and order consumption."""

from .errors import (
    BlendInUseError,
    BlendingError,
    BlendingValidationError,
    BlendNotFoundError,
    BuyerNotFoundError,
    CompositionMismatchError,
    CompositionOverflowError,
    DuplicateFibreError,
    FibreCategoryNotFoundError,
    FibreInUseError,
    FibreNotFoundError,
    InvalidStatusTransitionError,
    MissingRealisationError,
    OrderNotFoundError,
    ProductionLogNotFoundError,
)
from .storage import BlendingStore, get_blending_store, init_blending_store
from .composition import (
    CompositionCheck,
    add_fibre,
    blend_summary,
    create_blend,
    delete_blend,
    get_blend,
    list_blend_summaries,
    list_blends,
    remove_fibre,
    replace_composition,
    update_blend,
    update_fibre_percentage,
    validate_composition,
)
from .ledger import StockLedger
from .consumption import OrderConsumptionEngine, required_input_kg
from .fibres import (
    create_category,
    create_fibre,
    delete_category,
    delete_fibre,
    get_fibre,
    list_categories,
    list_fibres,
    update_category,
    update_fibre,
)
from .orders import (
    create_buyer,
    create_order,
    delete_order,
    get_order,
    list_buyers,
    list_orders,
    next_order_number,
    order_statistics,
    update_order,
)
from .production import (
    ProgressAggregator,
    delete_production_log,
    list_production_logs,
    machine_totals,
    record_production_log,
    update_production_log,
)

__all__ = [
    "BlendInUseError",
    "BlendingError",
    "BlendingValidationError",
    "BlendNotFoundError",
    "BuyerNotFoundError",
    "CompositionMismatchError",
    "CompositionOverflowError",
    "DuplicateFibreError",
    "FibreCategoryNotFoundError",
    "FibreInUseError",
    "FibreNotFoundError",
    "InvalidStatusTransitionError",
    "MissingRealisationError",
    "OrderNotFoundError",
    "ProductionLogNotFoundError",
    "BlendingStore",
    "get_blending_store",
    "init_blending_store",
    "CompositionCheck",
    "add_fibre",
    "blend_summary",
    "create_blend",
    "delete_blend",
    "get_blend",
    "list_blend_summaries",
    "list_blends",
    "remove_fibre",
    "replace_composition",
    "update_blend",
    "update_fibre_percentage",
    "validate_composition",
    "StockLedger",
    "OrderConsumptionEngine",
    "required_input_kg",
    "create_category",
    "create_fibre",
    "delete_category",
    "delete_fibre",
    "get_fibre",
    "list_categories",
    "list_fibres",
    "update_category",
    "update_fibre",
    "create_buyer",
    "create_order",
    "delete_order",
    "get_order",
    "list_buyers",
    "list_orders",
    "next_order_number",
    "order_statistics",
    "update_order",
    "ProgressAggregator",
    "delete_production_log",
    "list_production_logs",
    "machine_totals",
    "record_production_log",
    "update_production_log",
]
