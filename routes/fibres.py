"""Fibre master data, stock balances and usage history."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from blending import (
    StockLedger,
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
from routes.common import MANAGER_ROLES, forbidden, query_int, require_role, store
from schemas import (
    FibreCategorySchema,
    FibreSchema,
    UsageLogSchema,
    UsageTotalSchema,
    UsageTrendSchema,
)

bp = Blueprint("fibres", __name__, url_prefix="/api/fibres")

fibre_schema = FibreSchema()
fibres_schema = FibreSchema(many=True)
categories_schema = FibreCategorySchema(many=True)
category_schema = FibreCategorySchema()
usage_logs_schema = UsageLogSchema(many=True)
usage_trend_schema = UsageTrendSchema(many=True)
usage_totals_schema = UsageTotalSchema(many=True)


@bp.get("")
@jwt_required()
def fibre_list():
    fibres = list_fibres(
        store(),
        search=request.args.get("search"),
        category_id=request.args.get("category_id"),
    )
    return jsonify(fibres_schema.dump(fibres))


@bp.post("")
@jwt_required()
def fibre_create():
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can add fibres.")

    payload = request.get_json(silent=True) or {}
    fibre = create_fibre(store(), payload)
    current_app.logger.info("Fibre %s created with opening stock %s kg", fibre.fibre_code, fibre.stock_kg)
    return jsonify(fibre_schema.dump(fibre)), 201


@bp.get("/low-stock")
@jwt_required()
def fibre_low_stock():
    threshold = request.args.get("threshold") or current_app.config.get("LOW_STOCK_THRESHOLD_KG")
    fibres = StockLedger(store()).low_stock_fibres(threshold)
    return jsonify(fibres_schema.dump(fibres))


@bp.get("/usage-totals")
@jwt_required()
def fibre_usage_totals():
    return jsonify(usage_totals_schema.dump(StockLedger(store()).usage_totals()))


@bp.get("/categories")
@jwt_required()
def category_list():
    return jsonify(categories_schema.dump(list_categories(store())))


@bp.post("/categories")
@jwt_required()
def category_create():
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can add fibre categories.")

    payload = request.get_json(silent=True) or {}
    category = create_category(store(), payload)
    return jsonify(category_schema.dump(category)), 201


@bp.put("/categories/<string:category_id>")
@jwt_required()
def category_update(category_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit fibre categories.")

    payload = request.get_json(silent=True) or {}
    category = update_category(store(), category_id, payload)
    return jsonify(category_schema.dump(category))


@bp.delete("/categories/<string:category_id>")
@jwt_required()
def category_delete(category_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can delete fibre categories.")

    delete_category(store(), category_id)
    return "", 204


@bp.get("/<string:fibre_id>")
@jwt_required()
def fibre_detail(fibre_id: str):
    return jsonify(fibre_schema.dump(get_fibre(store(), fibre_id)))


@bp.put("/<string:fibre_id>")
@jwt_required()
def fibre_update(fibre_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit fibres.")

    payload = request.get_json(silent=True) or {}
    fibre = update_fibre(store(), fibre_id, payload)
    return jsonify(fibre_schema.dump(fibre))


@bp.delete("/<string:fibre_id>")
@jwt_required()
def fibre_delete(fibre_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can delete fibres.")

    delete_fibre(store(), fibre_id)
    return "", 204


@bp.get("/<string:fibre_id>/usage")
@jwt_required()
def fibre_usage(fibre_id: str):
    limit = query_int(request.args.get("limit"))
    logs = StockLedger(store()).usage_logs(fibre_id, limit=limit)
    return jsonify(usage_logs_schema.dump(logs))


@bp.get("/<string:fibre_id>/usage-trend")
@jwt_required()
def fibre_usage_trend(fibre_id: str):
    days = query_int(request.args.get("days"))
    trend = StockLedger(store()).usage_trend(fibre_id, days=days)
    return jsonify(usage_trend_schema.dump(trend))
