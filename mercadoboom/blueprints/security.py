from __future__ import annotations

from flask import Blueprint, jsonify, request

from mercadoboom.blueprints.common import (
    client_ip,
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import serialize_user
from mercadoboom.database import get_db
from mercadoboom.schemas import (
    SecurityActionRequest,
    UpdateTwoFactorRequest,
    VerifyCodeRequest,
    VerifyContactRequest,
)
from mercadoboom.services.verification_service import VerificationService

security_bp = Blueprint("security", __name__, url_prefix="/api/security")


def _get_verification_service() -> VerificationService:
    return VerificationService(get_db())


@security_bp.route("/send-code", methods=["POST"])
def send_code():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(SecurityActionRequest)
    if error:
        return error

    success, message, method = _get_verification_service().send_verification_code(current_user(), data.action)
    if not success:
        # A method means the code was generated but every channel failed
        return json_error(message, 502 if method else 400)
    return jsonify({"success": True, "message": message, "method": method})


@security_bp.route("/verify-code", methods=["POST"])
def verify_code():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(VerifyCodeRequest)
    if error:
        return error

    success, message, _ = _get_verification_service().verify_code(
        current_user(),
        data.code,
        data.action,
        ip_address=client_ip(),
        user_agent=request.headers.get("User-Agent"),
    )
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message})


@security_bp.route("/update-2fa", methods=["POST"])
def update_two_factor():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(UpdateTwoFactorRequest)
    if error:
        return error

    success, message, user = _get_verification_service().update_two_factor_settings(
        current_user(), data.enabled, data.method
    )
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, "user": serialize_user(user)})


@security_bp.route("/check-required", methods=["POST"])
def check_required():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(SecurityActionRequest)
    if error:
        return error
    required = _get_verification_service().requires_verification(current_user(), data.action)
    return jsonify({"required": required})


@security_bp.route("/verify-contact", methods=["POST"])
def verify_contact():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(VerifyContactRequest)
    if error:
        return error

    success, message, user = _get_verification_service().verify_contact(current_user(), data.type, data.code)
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, "user": serialize_user(user)})
