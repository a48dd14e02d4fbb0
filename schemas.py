from decimal import ROUND_HALF_UP

from marshmallow import Schema, fields

from blending.composition import validate_composition
from blending.quantities import PERCENT_QUANT, to_display_float


def _weight(**kwargs):
    return fields.Decimal(as_string=True, places=3, rounding=ROUND_HALF_UP, **kwargs)


def _percentage(**kwargs):
    return fields.Decimal(as_string=True, places=2, rounding=ROUND_HALF_UP, **kwargs)


def _enum_value(value):
    return getattr(value, "value", value)


class UserSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    email = fields.Str()
    role = fields.Method("get_role")

    def get_role(self, obj):
        return _enum_value(obj.role)


class BuyerSchema(Schema):
    id = fields.UUID()
    name = fields.Str(required=True)
    contact_person = fields.Str(allow_none=True)
    phone = fields.Str(allow_none=True)
    email = fields.Str(allow_none=True)
    created_at = fields.DateTime(dump_only=True)


class FibreCategorySchema(Schema):
    id = fields.UUID()
    name = fields.Str(required=True)


class FibreSchema(Schema):
    id = fields.UUID()
    fibre_code = fields.Str(required=True)
    fibre_name = fields.Str(required=True)
    description = fields.Str(allow_none=True)
    category_id = fields.UUID(allow_none=True)
    category = fields.Nested(FibreCategorySchema, allow_none=True)
    stock_kg = _weight()
    closing_stock = _weight()
    inward_stock = _weight()
    outward_stock = _weight()
    consumed_stock = _weight()
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)


class BlendFibreSchema(Schema):
    id = fields.Int()
    fibre_id = fields.UUID()
    fibre_code = fields.Method("get_fibre_code")
    fibre_name = fields.Method("get_fibre_name")
    percentage = _percentage()
    position = fields.Int()

    def get_fibre_code(self, obj):
        return obj.fibre.fibre_code if obj.fibre else None

    def get_fibre_name(self, obj):
        return obj.fibre.fibre_name if obj.fibre else None


class RawCottonLotSchema(Schema):
    id = fields.Int()
    lot_number = fields.Str()
    percentage = _percentage()
    grade = fields.Str(allow_none=True)
    source = fields.Str(allow_none=True)
    stock_kg = _weight()
    notes = fields.Str(allow_none=True)
    position = fields.Int()


class BlendSchema(Schema):
    id = fields.UUID()
    blend_code = fields.Str(required=True)
    name = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    fibres = fields.Nested(BlendFibreSchema, many=True)
    raw_cotton_lots = fields.Nested(RawCottonLotSchema, many=True)
    total_percentage = fields.Method("get_total_percentage")
    is_valid = fields.Method("get_is_valid")
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)

    def get_total_percentage(self, obj):
        check = validate_composition(obj.fibres, obj.raw_cotton_lots)
        return f"{check.total_percentage.quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP):f}"

    def get_is_valid(self, obj):
        return validate_composition(obj.fibres, obj.raw_cotton_lots).valid


class CompositionCheckSchema(Schema):
    valid = fields.Bool()
    total_percentage = _percentage()


class BlendSummaryFibreSchema(Schema):
    fibre_id = fields.Str()
    fibre_code = fields.Str(allow_none=True)
    fibre_name = fields.Str(allow_none=True)
    percentage = _percentage()
    stock_kg = _weight()


class BlendSummaryLotSchema(Schema):
    lot_number = fields.Str()
    percentage = _percentage()


class BlendSummarySchema(Schema):
    blend_id = fields.Str()
    blend_code = fields.Str()
    name = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    total_percentage = _percentage()
    is_valid = fields.Bool()
    producible_kg = _weight(allow_none=True)
    fibres = fields.Nested(BlendSummaryFibreSchema, many=True)
    raw_cotton_lots = fields.Nested(BlendSummaryLotSchema, many=True)


class OrderSchema(Schema):
    id = fields.UUID()
    order_number = fields.Str()
    buyer_id = fields.UUID()
    blend_id = fields.UUID()
    quantity_kg = _weight()
    realisation = _percentage(allow_none=True)
    count = fields.Int(allow_none=True)
    status = fields.Method("get_status")
    delivery_date = fields.Date()
    notes = fields.Str(allow_none=True)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)

    buyer = fields.Nested(BuyerSchema, allow_none=True)
    blend = fields.Nested(BlendSchema, allow_none=True)

    def get_status(self, obj):
        return _enum_value(obj.status)


class OrderStatisticsSchema(Schema):
    total_orders = fields.Int()
    pending_orders = fields.Int()
    in_progress_orders = fields.Int()
    completed_orders = fields.Int()
    total_quantity_kg = _weight()
    open_quantity_kg = _weight()
    fibre_shortages = fields.Int()


class FibreRequirementSchema(Schema):
    fibre_id = fields.Str()
    fibre_code = fields.Str(allow_none=True)
    fibre_name = fields.Str(allow_none=True)
    percentage = _percentage()
    required_kg = _weight()
    available_kg = _weight()
    shortage_kg = _weight()
    sufficient = fields.Bool()


class RawCottonRequirementSchema(Schema):
    lot_number = fields.Str()
    percentage = _percentage()
    required_kg = _weight()
    available_kg = _weight()


class FibreRequirementsSchema(Schema):
    order_id = fields.Str()
    order_number = fields.Str()
    status = fields.Str()
    quantity_kg = _weight()
    realisation = _percentage()
    realisation_assumed = fields.Bool()
    total_input_kg = _weight()
    fibres = fields.Nested(FibreRequirementSchema, many=True)
    raw_cotton_lots = fields.Nested(RawCottonRequirementSchema, many=True)
    can_start = fields.Bool()


class UsageLogSchema(Schema):
    id = fields.Int()
    fibre_id = fields.UUID()
    order_id = fields.UUID(allow_none=True)
    used_kg = _weight()
    timestamp = fields.DateTime()


class UsageTrendSchema(Schema):
    date = fields.Date()
    used_kg = _weight()


class UsageTotalSchema(Schema):
    fibre_id = fields.Str()
    fibre_code = fields.Str()
    fibre_name = fields.Str()
    stock_kg = _weight()
    used_kg = _weight()
    entries = fields.Int()


class ProductionLogSchema(Schema):
    id = fields.Int()
    order_id = fields.UUID()
    date = fields.Date()
    machine = fields.Str(allow_none=True)
    section = fields.Str(allow_none=True)
    shift = fields.Str(allow_none=True)
    production_kg = _weight()
    required_qty = _weight(allow_none=True)
    remarks = fields.Str(allow_none=True)
    created_at = fields.DateTime(dump_only=True)


class MachineTotalSchema(Schema):
    machine = fields.Str()
    production_kg = _weight()
    entries = fields.Int()
    days = fields.Int()
    average_efficiency = fields.Method("get_average_efficiency")

    def get_average_efficiency(self, obj):
        return to_display_float(obj["average_efficiency"], PERCENT_QUANT)


# --- progress report --------------------------------------------------------


class ProgressKpiSchema(Schema):
    required_qty = _weight(data_key="requiredQty")
    produced_qty = _weight(data_key="producedQty")
    balance_qty = _weight(data_key="balanceQty")
    progress_percent = fields.Method("get_progress_percent", data_key="progressPercent")

    def get_progress_percent(self, obj):
        return to_display_float(obj["progress_percent"], PERCENT_QUANT)


class TimelineEntrySchema(Schema):
    date = fields.Date()
    machine = fields.Str(allow_none=True)
    section = fields.Str(allow_none=True)
    shift = fields.Str(allow_none=True)
    production_kg = _weight()
    remarks = fields.Str(allow_none=True)


class DailyChartPointSchema(Schema):
    date = fields.Date()
    production_kg = _weight()


class SectionProgressSchema(Schema):
    section = fields.Str()
    production_kg = _weight()


class FibreSummarySchema(Schema):
    type = fields.Str()
    id = fields.Str()
    code = fields.Str(allow_none=True)
    name = fields.Str(allow_none=True)
    percentage = fields.Method("get_percentage")
    required_qty = _weight(data_key="requiredQty")
    actual_consumed = _weight(data_key="actualConsumed")
    current_stock = _weight(data_key="currentStock")

    def get_percentage(self, obj):
        return to_display_float(obj["percentage"], PERCENT_QUANT)


class InsightsSchema(Schema):
    average_efficiency = fields.Method("get_average_efficiency", data_key="averageEfficiency")
    top_production_day = fields.Nested(TimelineEntrySchema, allow_none=True, data_key="topProductionDay")

    def get_average_efficiency(self, obj):
        return to_display_float(obj["average_efficiency"], PERCENT_QUANT)


class ProgressReportSchema(Schema):
    order_id = fields.Str(data_key="orderId")
    order_number = fields.Str(data_key="orderNumber")
    status = fields.Str()
    kpis = fields.Nested(ProgressKpiSchema)
    timeline = fields.Nested(TimelineEntrySchema, many=True)
    daily_chart = fields.Nested(DailyChartPointSchema, many=True, data_key="dailyChart")
    section_progress = fields.Nested(SectionProgressSchema, many=True, data_key="sectionProgress")
    fiber_summary = fields.Nested(FibreSummarySchema, many=True, data_key="fiberSummary")
    insights = fields.Nested(InsightsSchema)

    class Meta:
        ordered = True
