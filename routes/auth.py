from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import create_access_token, set_access_cookies, unset_jwt_cookies
from sqlalchemy import func

from models import User

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@bp.post("/login")
def login():
    payload = request.get_json(silent=True)
    if not payload:
        payload = request.form.to_dict() if request.form else {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""

    if not email or not password:
        return jsonify({"msg": "Email and password are required"}), 400

    u = User.query.filter(func.lower(User.email) == email).first()
    if not u or not u.check_password(password) or not u.active:
        current_app.logger.info("Rejected login for %s", email)
        return jsonify({"msg": "Invalid email or password"}), 401

    token = create_access_token(identity=str(u.id), additional_claims={"role": u.role.value})
    response = jsonify(
        access_token=token,
        user={"id": u.id, "name": u.name, "role": u.role.value},
    )
    set_access_cookies(response, token)
    return response


@bp.post("/logout")
def logout():
    response = jsonify({"msg": "Logged out"})
    unset_jwt_cookies(response)
    return response
