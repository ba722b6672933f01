from __future__ import annotations

from typing import Any, Optional, Tuple, Type, TypeVar

from flask import g, jsonify, request
from pydantic import BaseModel, ValidationError

from mercadoboom.models import User

NOT_AUTHENTICATED = "Usuario no autenticado"
ADMIN_REQUIRED = "Acceso de administrador requerido"

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def json_error(message: str, status: int, **extra: Any):
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


def current_user() -> Optional[User]:
    return getattr(g, "current_user", None)


def ensure_authenticated():
    """Return a 401 response when nobody is logged in, else None."""
    if current_user() is None:
        return json_error(NOT_AUTHENTICATED, 401)
    return None


def ensure_admin():
    denied = ensure_authenticated()
    if denied:
        return denied
    if not current_user().is_admin:
        return json_error(ADMIN_REQUIRED, 403)
    return None


def parse_body(schema: Type[SchemaT]) -> Tuple[Optional[SchemaT], Any]:
    """Validate the JSON body against ``schema``; returns (model, None) or (None, 400 response)."""
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    try:
        return schema.model_validate(payload), None
    except ValidationError as exc:
        details = exc.errors(include_url=False, include_context=False, include_input=False)
        return None, json_error("Datos inválidos", 400, details=details)


def query_flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


def client_ip() -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr
