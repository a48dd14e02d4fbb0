"""Production orders: CRUD, status changes, consumption preview and progress."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from blending import (
    OrderConsumptionEngine,
    ProgressAggregator,
    create_order,
    delete_order,
    delete_production_log,
    get_order,
    list_orders,
    list_production_logs,
    machine_totals,
    order_statistics,
    record_production_log,
    update_order,
    update_production_log,
)
from routes.common import MANAGER_ROLES, forbidden, require_role, store
from schemas import (
    FibreRequirementsSchema,
    MachineTotalSchema,
    OrderSchema,
    OrderStatisticsSchema,
    ProductionLogSchema,
    ProgressReportSchema,
)

bp = Blueprint("orders", __name__, url_prefix="/api/orders")

order_schema = OrderSchema()
orders_schema = OrderSchema(many=True, exclude=("blend",))
statistics_schema = OrderStatisticsSchema()
requirements_schema = FibreRequirementsSchema()
production_log_schema = ProductionLogSchema()
production_logs_schema = ProductionLogSchema(many=True)
progress_schema = ProgressReportSchema()
machine_totals_schema = MachineTotalSchema(many=True)


@bp.get("")
@jwt_required()
def order_list():
    orders = list_orders(
        store(),
        status=request.args.get("status"),
        buyer_id=request.args.get("buyer_id"),
        search=request.args.get("search"),
    )
    return jsonify(orders_schema.dump(orders))


@bp.post("")
@jwt_required()
def order_create():
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can create orders.")

    payload = request.get_json(silent=True) or {}
    order = create_order(store(), payload)
    return jsonify(order_schema.dump(order)), 201


@bp.get("/statistics")
@jwt_required()
def order_statistics_view():
    data = order_statistics(store())
    data["fibre_shortages"] = OrderConsumptionEngine(store()).count_fibre_shortages()
    return jsonify(statistics_schema.dump(data))


@bp.get("/machine-totals")
@jwt_required()
def order_machine_totals():
    rows = machine_totals(store(), order_id=request.args.get("order_id"))
    return jsonify(machine_totals_schema.dump(rows))


@bp.get("/<string:order_id>")
@jwt_required()
def order_detail(order_id: str):
    return jsonify(order_schema.dump(get_order(store(), order_id)))


@bp.put("/<string:order_id>")
@jwt_required()
def order_update(order_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit orders.")

    payload = request.get_json(silent=True) or {}
    order = update_order(store(), order_id, payload)
    return jsonify(order_schema.dump(order))


@bp.delete("/<string:order_id>")
@jwt_required()
def order_delete(order_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can delete orders.")

    delete_order(store(), order_id)
    return "", 204


@bp.patch("/<string:order_id>/status")
@jwt_required()
def order_status(order_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can change order status.")

    payload = request.get_json(silent=True) or {}
    order = OrderConsumptionEngine(store()).transition(order_id, payload.get("status") or payload.get("new_status"))
    current_app.logger.info("Order %s is now %s", order.order_number, order.status.value)
    return jsonify(order_schema.dump(order))


@bp.get("/<string:order_id>/fibre-requirements")
@jwt_required()
def order_fibre_requirements(order_id: str):
    preview = OrderConsumptionEngine(store()).fibre_requirements(order_id)
    return jsonify(requirements_schema.dump(preview))


@bp.get("/<string:order_id>/progress")
@jwt_required()
def order_progress(order_id: str):
    report = ProgressAggregator(store()).report(order_id)
    return jsonify(progress_schema.dump(report))


@bp.get("/<string:order_id>/production-logs")
@jwt_required()
def order_production_logs(order_id: str):
    return jsonify(production_logs_schema.dump(list_production_logs(store(), order_id)))


@bp.post("/<string:order_id>/production-logs")
@jwt_required()
def order_add_production_log(order_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("You do not have permission to record production.")

    payload = request.get_json(silent=True) or {}
    entry = record_production_log(store(), order_id, payload)
    return jsonify(production_log_schema.dump(entry)), 201


@bp.put("/<string:order_id>/production-logs/<string:log_id>")
@jwt_required()
def order_update_production_log(order_id: str, log_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("You do not have permission to edit production entries.")

    payload = request.get_json(silent=True) or {}
    entry = update_production_log(store(), order_id, log_id, payload)
    return jsonify(production_log_schema.dump(entry))


@bp.delete("/<string:order_id>/production-logs/<string:log_id>")
@jwt_required()
def order_delete_production_log(order_id: str, log_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("You do not have permission to delete production entries.")

    delete_production_log(store(), order_id, log_id)
    current_app.logger.info("Production entry %s removed from order %s", log_id, order_id)
    return "", 204
