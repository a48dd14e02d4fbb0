from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from blending import create_buyer, list_buyers
from routes.common import MANAGER_ROLES, forbidden, require_role, store
from schemas import BuyerSchema

bp = Blueprint("buyers", __name__, url_prefix="/api/buyers")

buyer_schema = BuyerSchema()
buyers_schema = BuyerSchema(many=True)


@bp.get("")
@jwt_required()
def buyer_list():
    return jsonify(buyers_schema.dump(list_buyers(store(), search=request.args.get("search"))))


@bp.post("")
@jwt_required()
def buyer_create():
    if not require_role(*MANAGER_ROLES):
        return forbidden("Only Production Managers or Admins can add buyers.")

    payload = request.get_json(silent=True) or {}
    buyer = create_buyer(store(), payload)
    return jsonify(buyer_schema.dump(buyer)), 201
