from __future__ import annotations

from flask import Blueprint, jsonify

from mercadoboom.blueprints.common import (
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import serialize_order
from mercadoboom.database import get_db
from mercadoboom.models import PaymentType
from mercadoboom.schemas import OrderCreate
from mercadoboom.services.catalog_service import CatalogService
from mercadoboom.services.order_service import OrderService

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _get_order_service() -> OrderService:
    return OrderService(get_db())


@orders_bp.route("", methods=["POST"])
def create_order():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(OrderCreate)
    if error:
        return error

    product = CatalogService(get_db()).get_product(data.product_id)
    if product is None:
        return json_error("Producto no encontrado", 404)

    success, message, order = _get_order_service().create_order(
        current_user(),
        product,
        data.quantity,
        shipping_address_id=data.shipping_address_id,
        payment_type=PaymentType.MERCADOPAGO,
    )
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, "order": serialize_order(order)}), 201


@orders_bp.route("", methods=["GET"])
def list_orders():
    denied = ensure_authenticated()
    if denied:
        return denied
    orders = _get_order_service().list_user_orders(current_user().id)
    return jsonify([serialize_order(order) for order in orders])


@orders_bp.route("/<order_id>", methods=["GET"])
def get_order(order_id: str):
    denied = ensure_authenticated()
    if denied:
        return denied
    order = _get_order_service().get_user_order(current_user().id, order_id)
    if order is None:
        return json_error("Pedido no encontrado", 404)
    return jsonify(serialize_order(order))
