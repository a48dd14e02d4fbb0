"""Blend (shade) recipes and their composition."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from blending import (
    add_fibre,
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
from blending.composition import parse_fibre_entries, parse_raw_cotton_entries
from blending.errors import BlendingValidationError
from routes.common import MANAGER_ROLES, forbidden, require_role, store
from schemas import BlendFibreSchema, BlendSchema, BlendSummarySchema, CompositionCheckSchema

bp = Blueprint("blends", __name__, url_prefix="/api/blends")

blend_schema = BlendSchema()
blends_schema = BlendSchema(many=True)
blend_fibre_schema = BlendFibreSchema()
summary_schema = BlendSummarySchema(many=True)
check_schema = CompositionCheckSchema()


@bp.get("")
@jwt_required()
def blend_list():
    return jsonify(blends_schema.dump(list_blends(store(), search=request.args.get("search"))))


@bp.post("")
@jwt_required()
def blend_create():
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can create blends.")

    payload = request.get_json(silent=True) or {}
    blend = create_blend(store(), payload)
    return jsonify(blend_schema.dump(blend)), 201


@bp.post("/validate")
@jwt_required()
def blend_validate():
    """Check a composition without saving it."""

    payload = request.get_json(silent=True) or {}
    errors = {}
    fibres = parse_fibre_entries(payload.get("fibres"), errors)
    lots = parse_raw_cotton_entries(payload.get("raw_cotton_lots"), errors)
    if errors:
        raise BlendingValidationError(errors)
    return jsonify(check_schema.dump(validate_composition(fibres, lots)))


@bp.get("/summary")
@jwt_required()
def blend_summary_list():
    return jsonify(summary_schema.dump(list_blend_summaries(store())))


@bp.get("/<string:blend_id>")
@jwt_required()
def blend_detail(blend_id: str):
    return jsonify(blend_schema.dump(get_blend(store(), blend_id)))


@bp.put("/<string:blend_id>")
@jwt_required()
def blend_update(blend_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit blends.")

    payload = request.get_json(silent=True) or {}
    blend = update_blend(store(), blend_id, payload)
    return jsonify(blend_schema.dump(blend))


@bp.delete("/<string:blend_id>")
@jwt_required()
def blend_delete(blend_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can delete blends.")

    delete_blend(store(), blend_id)
    return "", 204


@bp.put("/<string:blend_id>/composition")
@jwt_required()
def blend_replace_composition(blend_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit blends.")

    payload = request.get_json(silent=True) or {}
    blend = replace_composition(store(), blend_id, payload.get("fibres"), payload.get("raw_cotton_lots"))
    return jsonify(blend_schema.dump(blend))


@bp.post("/<string:blend_id>/fibres")
@jwt_required()
def blend_add_fibre(blend_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit blends.")

    payload = request.get_json(silent=True) or {}
    entry = add_fibre(store(), blend_id, payload.get("fibre_id"), payload.get("percentage"))
    return jsonify(blend_fibre_schema.dump(entry)), 201


@bp.put("/<string:blend_id>/fibres/<string:fibre_id>")
@jwt_required()
def blend_update_fibre(blend_id: str, fibre_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit blends.")

    payload = request.get_json(silent=True) or {}
    entry = update_fibre_percentage(store(), blend_id, fibre_id, payload.get("percentage"))
    return jsonify(blend_fibre_schema.dump(entry))


@bp.delete("/<string:blend_id>/fibres/<string:fibre_id>")
@jwt_required()
def blend_remove_fibre(blend_id: str, fibre_id: str):
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can edit blends.")

    remove_fibre(store(), blend_id, fibre_id)
    return "", 204
