from __future__ import annotations

from flask import Blueprint, jsonify, request

from mercadoboom.blueprints.common import json_error, query_flag
from mercadoboom.blueprints.serializers import serialize_category, serialize_product
from mercadoboom.database import get_db
from mercadoboom.services.catalog_service import CatalogService

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _get_catalog_service() -> CatalogService:
    return CatalogService(get_db())


@catalog_bp.route("/categories", methods=["GET"])
def list_categories():
    categories = _get_catalog_service().list_categories(active_only=True)
    return jsonify([serialize_category(category) for category in categories])


@catalog_bp.route("/products", methods=["GET"])
def list_products():
    products = _get_catalog_service().list_products(
        featured=query_flag("featured"),
        category_id=request.args.get("category") or None,
        search=request.args.get("search") or None,
    )
    return jsonify([serialize_product(product) for product in products])


@catalog_bp.route("/products/<product_id>", methods=["GET"])
def get_product(product_id: str):
    product = _get_catalog_service().get_product(product_id)
    if product is None:
        return json_error("Producto no encontrado", 404)
    return jsonify(serialize_product(product))
