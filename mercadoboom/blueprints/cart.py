from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, jsonify, session

from mercadoboom.blueprints.common import (
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import serialize_order, serialize_product
from mercadoboom.database import get_db
from mercadoboom.models import PaymentConfigKey, PaymentType
from mercadoboom.schemas import CartItemAdd, CartItemUpdate, CheckoutRequest
from mercadoboom.services.cart_service import CartService
from mercadoboom.services.payment_config_service import PaymentConfigService
from mercadoboom.services.payment_service import (
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentService,
    get_gateway,
)
from mercadoboom.services.transfer_service import TransferService

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")
logger = logging.getLogger(__name__)


def _load_cart() -> CartService:
    return CartService(get_db(), items=session.get("cart") or {})


def _save_cart(cart: CartService) -> None:
    session["cart"] = dict(cart.items)


def _cart_response(cart: CartService, message: Optional[str] = None, status: int = 200):
    summary = cart.summary()
    _save_cart(cart)
    body: Dict[str, Any] = {
        **summary,
        "items": [
            {**line, "product": serialize_product(line["product"])}
            for line in summary["items"]
        ],
    }
    if message:
        body["message"] = message
    return jsonify(body), status


@cart_bp.route("", methods=["GET"])
def get_cart():
    return _cart_response(_load_cart())


@cart_bp.route("", methods=["DELETE"])
def clear_cart():
    cart = _load_cart()
    cart.clear()
    return _cart_response(cart, "Carrito vaciado")


@cart_bp.route("/items", methods=["POST"])
def add_item():
    data, error = parse_body(CartItemAdd)
    if error:
        return error
    cart = _load_cart()
    success, message = cart.add_item(data.product_id, data.quantity)
    if not success:
        return json_error(message, 400)
    return _cart_response(cart, message)


@cart_bp.route("/items/<product_id>", methods=["PATCH"])
def update_item(product_id: str):
    data, error = parse_body(CartItemUpdate)
    if error:
        return error
    cart = _load_cart()
    success, message = cart.set_quantity(product_id, data.quantity)
    if not success:
        _save_cart(cart)
        return json_error(message, 404)
    return _cart_response(cart, message)


@cart_bp.route("/items/<product_id>", methods=["DELETE"])
def remove_item(product_id: str):
    cart = _load_cart()
    if not cart.remove_item(product_id):
        return json_error("El producto no está en el carrito", 404)
    return _cart_response(cart, "Producto eliminado del carrito")


@cart_bp.route("/checkout", methods=["POST"])
def checkout():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(CheckoutRequest)
    if error:
        return error

    db = get_db()
    payment_type = PaymentType(data.payment_type)
    configs = PaymentConfigService(db)
    gateway = None
    if payment_type == PaymentType.MERCADOPAGO:
        if not configs.is_method_active(PaymentConfigKey.MERCADOPAGO):
            return json_error("MercadoPago no está disponible en este momento", 400)
        gateway = get_gateway()
        if gateway is None:
            return json_error("MercadoPago no está configurado", 503)
    elif not configs.is_method_active(PaymentConfigKey.BANK_TRANSFER):
        return json_error("La transferencia bancaria no está disponible en este momento", 400)

    cart = _load_cart()
    user = current_user()
    success, message, result = cart.checkout(user, payment_type, data.shipping_address_id)
    if not success:
        return json_error(message, 400)
    reference, orders = result

    body: Dict[str, Any] = {"success": True, "checkout_reference": reference}
    if payment_type == PaymentType.MERCADOPAGO:
        try:
            body["payment"] = PaymentService(db, gateway=gateway).create_preference(user, orders, reference)
        except PaymentGatewayNotConfigured as exc:
            return json_error(str(exc), 503)
        except PaymentGatewayError as exc:
            logger.error("Preference for checkout %s failed: %s", reference, exc)
            return json_error("Error al crear la preferencia de pago. Inténtalo de nuevo.", 502)
    else:
        body.update(TransferService(db, payment_configs=configs).transfer_details(orders, reference))
    body["orders"] = [serialize_order(order) for order in orders]

    cart.clear()
    _save_cart(cart)
    return jsonify(body), 201
