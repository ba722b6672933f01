from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from flask import Blueprint, jsonify, redirect, request

from mercadoboom.blueprints.common import (
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import serialize_order, serialize_transfer_discount
from mercadoboom.config import Config
from mercadoboom.database import get_db
from mercadoboom.models import Order, PaymentConfigKey, PaymentType
from mercadoboom.observability import increment_counter
from mercadoboom.schemas import OrderCreate, UploadReceiptRequest
from mercadoboom.services.catalog_service import CatalogService
from mercadoboom.services.payment_config_service import PaymentConfigService
from mercadoboom.services.payment_service import (
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentService,
    get_gateway,
    verify_webhook_signature,
)
from mercadoboom.services.order_service import OrderService
from mercadoboom.services.transfer_service import TransferService

payments_bp = Blueprint("payments", __name__)
logger = logging.getLogger(__name__)

RESULT_KINDS = ("success", "failure", "pending")


def _get_payment_service() -> PaymentService:
    return PaymentService(get_db(), gateway=get_gateway())


def _get_transfer_service() -> TransferService:
    return TransferService(get_db())


@payments_bp.route("/api/payments/create-preference", methods=["POST"])
def create_preference():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(OrderCreate)
    if error:
        return error

    db = get_db()
    if not PaymentConfigService(db).is_method_active(PaymentConfigKey.MERCADOPAGO):
        return json_error("MercadoPago no está disponible en este momento", 400)
    product = CatalogService(db).get_product(data.product_id)
    if product is None:
        return json_error("Producto no encontrado", 404)

    payment_service = _get_payment_service()
    if payment_service.gateway is None:
        return json_error("MercadoPago no está configurado", 503)

    user = current_user()
    success, message, order = payment_service.order_service.create_order(
        user,
        product,
        data.quantity,
        shipping_address_id=data.shipping_address_id,
        payment_type=PaymentType.MERCADOPAGO,
    )
    if not success:
        return json_error(message, 400)

    try:
        preference = payment_service.create_preference(user, [order], order.id)
    except PaymentGatewayNotConfigured as exc:
        return json_error(str(exc), 503)
    except PaymentGatewayError as exc:
        logger.error("Preference for order %s failed: %s", order.order_number, exc)
        return json_error("Error al crear la preferencia de pago. Inténtalo de nuevo.", 502)
    return jsonify(preference)


@payments_bp.route("/api/payments/webhook", methods=["POST"])
def payment_webhook():
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    # Older IPN notifications put the fields in the query string
    notification_type = payload.get("type") or payload.get("topic") or request.args.get("type") or request.args.get("topic")
    data_id = data.get("id") or request.args.get("data.id") or request.args.get("id")

    if not verify_webhook_signature(request.headers, str(data_id) if data_id else None, Config.MERCADOPAGO_WEBHOOK_SECRET):
        increment_counter("payment_webhooks_total", labels={"result": "bad_signature"})
        logger.warning("Webhook rejected: invalid signature", extra={"data_id": data_id})
        return json_error("Firma inválida", 401)

    if notification_type != "payment" or not data_id:
        increment_counter("payment_webhooks_total", labels={"result": "ignored"})
        return jsonify({"status": "ignored"})

    try:
        success, message, _ = _get_payment_service().process_payment(str(data_id))
    except PaymentGatewayNotConfigured as exc:
        return json_error(str(exc), 503)
    except PaymentGatewayError as exc:
        increment_counter("payment_webhooks_total", labels={"result": "gateway_error"})
        logger.error("Could not fetch payment %s: %s", data_id, exc)
        return json_error("No se pudo consultar el pago", 502)

    if not success:
        increment_counter("payment_webhooks_total", labels={"result": "not_found"})
        return json_error(message, 404)
    increment_counter("payment_webhooks_total", labels={"result": "processed"})
    return jsonify({"status": "processed"})


@payments_bp.route("/api/payments/config", methods=["GET"])
def payment_config():
    return jsonify(
        {
            "public_key": Config.MERCADOPAGO_PUBLIC_KEY,
            "env": Config.APP_ENV,
            "active_payment_methods": PaymentConfigService(get_db()).active_methods(),
        }
    )


@payments_bp.route("/payment/<kind>", methods=["GET"])
def payment_result(kind: str):
    if kind not in RESULT_KINDS:
        return json_error("Página no encontrada", 404)

    order_ref: Optional[str] = request.args.get("order") or request.args.get("external_reference")
    payment_id = request.args.get("payment_id") or request.args.get("collection_id")
    if kind == "success" and payment_id:
        try:
            _get_payment_service().process_payment(payment_id)
        except PaymentGatewayError as exc:
            # The webhook will still deliver the final state
            logger.warning("Could not reconcile payment %s on return: %s", payment_id, exc)

    params = {"payment": kind}
    if order_ref:
        params["order"] = order_ref
    return redirect(f"/user-dashboard?{urlencode(params)}")


@payments_bp.route("/api/payments/create-direct-transfer", methods=["POST"])
def create_direct_transfer():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(OrderCreate)
    if error:
        return error

    db = get_db()
    if not PaymentConfigService(db).is_method_active(PaymentConfigKey.BANK_TRANSFER):
        return json_error("La transferencia bancaria no está disponible en este momento", 400)
    product = CatalogService(db).get_product(data.product_id)
    if product is None:
        return json_error("Producto no encontrado", 404)

    success, message, result = _get_transfer_service().create_direct_transfer(
        current_user(), product, data.quantity, data.shipping_address_id
    )
    if not success:
        return json_error(message, 400)
    return jsonify(
        {
            "success": True,
            "message": message,
            "order": serialize_order(result["order"]),
            "bank_details": result["bank_details"],
            "discount": result["discount"],
        }
    ), 201


@payments_bp.route("/api/upload-receipt", methods=["POST"])
def upload_receipt():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(UploadReceiptRequest)
    if error:
        return error

    order: Optional[Order] = OrderService(get_db()).get_user_order(current_user().id, data.order_id)
    if order is None:
        return json_error("Pedido no encontrado", 404)

    success, message, order = _get_transfer_service().upload_receipt(order, data.receipt_url)
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, "order": serialize_order(order)})


@payments_bp.route("/api/transfer-discount", methods=["GET"])
def public_transfer_discount():
    row = PaymentConfigService(get_db()).effective_transfer_discount()
    return jsonify(serialize_transfer_discount(row))
