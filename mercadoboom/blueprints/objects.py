from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request, send_file

from mercadoboom.blueprints.common import (
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.schemas import NormalizeObjectRequest
from mercadoboom.services.storage_service import ObjectStorageService

objects_bp = Blueprint("objects", __name__)
logger = logging.getLogger(__name__)


def _get_storage() -> ObjectStorageService:
    return ObjectStorageService(
        root=current_app.config["OBJECT_STORAGE_DIR"],
        secret_key=current_app.config["SECRET_KEY"],
    )


def _send(found, max_age: int):
    path, content_type = found
    return send_file(path, mimetype=content_type or "application/octet-stream", max_age=max_age)


@objects_bp.route("/api/objects/upload", methods=["POST"])
def request_upload_url():
    denied = ensure_authenticated()
    if denied:
        return denied
    upload_url = _get_storage().create_upload_url(owner_id=current_user().id)
    return jsonify({"upload_url": upload_url})


@objects_bp.route("/api/objects/upload/<token>", methods=["PUT"])
def upload_object(token: str):
    storage = _get_storage()
    object_id = storage.resolve_upload_token(token)
    if object_id is None:
        return json_error("URL de carga inválida o expirada", 403)

    stored = storage.store_upload(object_id, request.stream, request.content_type)
    if stored is None:
        return json_error("Esta URL de carga ya fue utilizada", 409)
    logger.info("Object stored", extra={"object_path": stored})
    return jsonify({"object_path": stored}), 201


@objects_bp.route("/api/objects/normalize", methods=["POST"])
def normalize_object():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(NormalizeObjectRequest)
    if error:
        return error
    return jsonify({"object_path": _get_storage().normalize_object_path(data.url)})


@objects_bp.route("/objects/<path:object_path>", methods=["GET"])
def get_object(object_path: str):
    found = _get_storage().get_object_file(object_path)
    if found is None:
        return json_error("Objeto no encontrado", 404)
    return _send(found, max_age=3600)


@objects_bp.route("/public-objects/<path:file_path>", methods=["GET"])
def get_public_object(file_path: str):
    found = _get_storage().search_public_object(file_path)
    if found is None:
        return json_error("Archivo no encontrado", 404)
    return _send(found, max_age=3600)
