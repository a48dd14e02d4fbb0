"""Helpers shared by the API blueprints."""

from __future__ import annotations

from flask import current_app, jsonify
from flask_jwt_extended import get_jwt

from blending import BlendingError, get_blending_store
from extensions import db
from models import RoleEnum

MANAGER_ROLES = (RoleEnum.admin, RoleEnum.production_manager)


def require_role(*roles: RoleEnum) -> bool:
    """Return ``True`` if the current JWT belongs to one of the roles."""

    claims = get_jwt()
    try:
        current_role = RoleEnum(claims.get("role"))
    except (ValueError, TypeError):
        return False
    return current_role in roles


def forbidden(message: str):
    return jsonify({"msg": message}), 403


def store():
    return get_blending_store()


def handle_blending_error(exc: BlendingError):
    db.session.rollback()
    if exc.status_code >= 500:
        current_app.logger.error("%s: %s", exc.kind, exc.message)
    else:
        current_app.logger.info("%s: %s", exc.kind, exc.message)
    return jsonify({"error": exc.to_dict()}), exc.status_code


def query_int(value, default=None):
    try:
        return int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default
