from flask import Blueprint, current_app, jsonify, request, session

import users
from auth import admin_required, current_user, login_required, login_user
from errors import ValidationError
from sql_db import SessionLocal

auth_bp = Blueprint("auth", __name__, url_prefix="/api")


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object body.")
    return data


# -----------------------
# Auth
# -----------------------
@auth_bp.post("/auth/register")
def register():
    data = dict(_body())
    # self sign-up is always a customer account
    data["role"] = "customer"
    with SessionLocal() as s:
        u = users.create_user(s, data)
        return jsonify(u.to_dict()), 201


@auth_bp.post("/auth/login")
def login():
    data = _body()
    with SessionLocal() as s:
        u = users.authenticate(s, data.get("email"), data.get("password"))
        login_user(u)
        return jsonify(u.to_dict())


@auth_bp.post("/auth/logout")
def logout():
    session.clear()
    return jsonify({"message": "Logged out."})


@auth_bp.get("/auth/me")
@login_required
def me():
    with SessionLocal() as s:
        u = current_user(s)
        if u is None:
            session.clear()
            return jsonify({"success": False, "error": "Please login first."}), 401
        return jsonify(u.to_dict())


@auth_bp.put("/auth/password")
@login_required
def change_password():
    data = _body()
    with SessionLocal() as s:
        users.change_password(s, session["user_id"], data.get("current_password"), data.get("new_password"))
    return jsonify({"message": "Password updated."})


@auth_bp.post("/auth/forgot-password")
def forgot_password():
    email = _body().get("email", "")
    reset_base_url = current_app.config.get("RESET_URL_BASE") or f"{request.host_url}reset-password"
    with SessionLocal() as s:
        token = users.request_password_reset(
            s, email, reset_base_url,
            minutes=current_app.config["RESET_TOKEN_MINUTES"],
            timeout=current_app.config["NOTIFY_TIMEOUT_SECONDS"],
        )
    body = {"message": "If that email is registered, a password reset email has been sent."}
    if token and current_app.config.get("EXPOSE_RESET_TOKEN"):
        body["reset_token"] = token
    return jsonify(body)


@auth_bp.post("/auth/reset-password/<token>")
def reset_password(token: str):
    with SessionLocal() as s:
        users.reset_password(s, token, _body().get("password"))
    return jsonify({"message": "Password has been reset."})


# -----------------------
# Admin: users
# -----------------------
@auth_bp.get("/users")
@admin_required
def user_list():
    with SessionLocal() as s:
        return jsonify([u.to_dict() for u in users.list_users(s)])


@auth_bp.post("/users")
@admin_required
def user_create():
    with SessionLocal() as s:
        u = users.create_user(s, _body(), default_role="waiter")
        return jsonify(u.to_dict()), 201


@auth_bp.get("/users/<int:user_id>")
@admin_required
def user_detail(user_id: int):
    with SessionLocal() as s:
        return jsonify(users.get_user(s, user_id).to_dict())


@auth_bp.put("/users/<int:user_id>")
@admin_required
def user_update(user_id: int):
    with SessionLocal() as s:
        return jsonify(users.update_user(s, user_id, _body()).to_dict())


@auth_bp.delete("/users/<int:user_id>")
@admin_required
def user_delete(user_id: int):
    if user_id == session.get("user_id"):
        raise ValidationError("You cannot delete your own account.")
    with SessionLocal() as s:
        users.delete_user(s, user_id)
    return jsonify({"message": "User removed"})
