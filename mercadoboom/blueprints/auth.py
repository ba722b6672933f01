from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, session

from mercadoboom.blueprints.common import (
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import serialize_user
from mercadoboom.database import get_db
from mercadoboom.schemas import (
    LoginRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    ProfileUpdate,
    RegisterRequest,
)
from mercadoboom.services.notification_service import NotificationDeliveryError
from mercadoboom.services.user_service import UserService

auth_bp = Blueprint("auth", __name__)
logger = logging.getLogger(__name__)


def _get_user_service() -> UserService:
    return UserService(get_db())


def _log_in(user) -> None:
    session.clear()
    session["user_id"] = user.id
    g.current_user = user


@auth_bp.route("/api/register", methods=["POST"])
def register():
    data, error = parse_body(RegisterRequest)
    if error:
        return error

    success, message, user = _get_user_service().register(
        username=data.username,
        email=str(data.email),
        password=data.password,
        full_name=data.full_name,
        phone=data.phone,
    )
    if not success:
        return json_error(message, 400)

    _log_in(user)
    return jsonify({"success": True, "message": message, "user": serialize_user(user)}), 201


@auth_bp.route("/api/login", methods=["POST"])
def login():
    data, error = parse_body(LoginRequest)
    if error:
        return error

    success, message, user = _get_user_service().authenticate(data.username, data.password)
    if not success:
        return json_error(message, 401)

    _log_in(user)
    logger.info("User logged in", extra={"user_id": user.id})
    return jsonify({"success": True, "message": message, "user": serialize_user(user)})


@auth_bp.route("/api/logout", methods=["POST"])
def logout():
    session.clear()
    g.current_user = None
    return jsonify({"success": True, "message": "Sesión cerrada"})


@auth_bp.route("/api/user", methods=["GET"])
def get_current_user():
    denied = ensure_authenticated()
    if denied:
        return denied
    return jsonify(serialize_user(current_user()))


@auth_bp.route("/api/user/profile", methods=["PATCH"])
def update_profile():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(ProfileUpdate)
    if error:
        return error

    changes = data.model_dump(exclude_unset=True)
    if "email" in changes and changes["email"] is not None:
        changes["email"] = str(changes["email"])
    success, message, user = _get_user_service().update_profile(current_user(), changes)
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, "user": serialize_user(user)})


@auth_bp.route("/api/password-reset/request", methods=["POST"])
def request_password_reset():
    data, error = parse_body(PasswordResetRequest)
    if error:
        return error

    try:
        success, message, channel = _get_user_service().request_password_reset(data.identifier, data.method)
    except NotificationDeliveryError as exc:
        logger.error("Password reset delivery failed: %s", exc)
        return json_error("No se pudo enviar el token de recuperación", 502)

    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, "channel": channel})


@auth_bp.route("/api/password-reset/confirm", methods=["POST"])
def confirm_password_reset():
    data, error = parse_body(PasswordResetConfirm)
    if error:
        return error

    success, message, _ = _get_user_service().confirm_password_reset(
        data.identifier, data.method, data.reset_token, data.new_password
    )
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message})
