from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import mercadopago
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mercadoboom.config import Config
from mercadoboom.models import Order, OrderStatus, PaymentStatus, User, utcnow
from mercadoboom.observability import increment_counter, observe_latency, record_event
from mercadoboom.services.order_service import OrderService

# Gateway payment status -> our payment_status
GATEWAY_STATUS_MAP: Dict[str, PaymentStatus] = {
    "approved": PaymentStatus.APPROVED,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
}


class PaymentGatewayError(RuntimeError):
    """The payment provider failed or answered with an error status."""

    def __init__(self, message: str, status: Optional[int] = None, response: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.response = response


class PaymentGatewayNotConfigured(PaymentGatewayError):
    pass


class MercadoPagoGateway:
    """Thin wrapper over the MercadoPago SDK that turns error answers into exceptions."""

    def __init__(self, access_token: str, sdk: Any = None) -> None:
        self.sdk = sdk or mercadopago.SDK(access_token)
        self.logger = logging.getLogger(__name__)

    def create_preference(self, preference_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("preference.create", lambda: self.sdk.preference().create(preference_data))

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._call("payment.get", lambda: self.sdk.payment().get(payment_id))

    def _call(self, operation: str, request) -> Dict[str, Any]:
        started = utcnow()
        try:
            result = request()
        except Exception as exc:
            increment_counter("payment_gateway_errors_total", labels={"operation": operation})
            self.logger.exception("MercadoPago %s failed", operation)
            raise PaymentGatewayError(f"Error de comunicación con MercadoPago: {exc}") from exc
        finally:
            elapsed_ms = (utcnow() - started).total_seconds() * 1000
            observe_latency("payment_gateway_latency_ms", elapsed_ms, labels={"operation": operation})

        status = result.get("status")
        response = result.get("response")
        if status not in (200, 201):
            increment_counter("payment_gateway_errors_total", labels={"operation": operation})
            self.logger.error(
                "MercadoPago %s answered %s", operation, status, extra={"response": response}
            )
            raise PaymentGatewayError(f"MercadoPago respondió con estado {status}", status=status, response=response)
        return response or {}


_gateway: Optional[MercadoPagoGateway] = None


def get_gateway() -> Optional[MercadoPagoGateway]:
    """Shared gateway, or None when no access token is configured."""
    global _gateway
    if _gateway is None and Config.MERCADOPAGO_ACCESS_TOKEN:
        _gateway = MercadoPagoGateway(Config.MERCADOPAGO_ACCESS_TOKEN)
    return _gateway


def set_gateway(gateway: Optional[MercadoPagoGateway]) -> None:
    global _gateway
    _gateway = gateway


def verify_webhook_signature(
    headers: Mapping[str, str],
    data_id: Optional[str],
    secret: Optional[str],
) -> bool:
    """
    Check MercadoPago's ``x-signature`` header.

    The header looks like ``ts=1704908010,v1=<hex>``; ``v1`` is an HMAC-SHA256
    of ``id:<data.id>;request-id:<x-request-id>;ts:<ts>;`` keyed with the
    webhook secret. Without a secret every notification is accepted.
    """
    if not secret:
        return True
    header = headers.get("x-signature") or ""
    parts = {}
    for chunk in header.split(","):
        key, _, value = chunk.strip().partition("=")
        if key:
            parts[key] = value
    ts, received = parts.get("ts"), parts.get("v1")
    if not ts or not received:
        return False

    manifest = ""
    if data_id:
        manifest += f"id:{str(data_id).lower()};"
    request_id = headers.get("x-request-id")
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


class PaymentService:
    """Checkout preferences and payment notifications for MercadoPago."""

    def __init__(
        self,
        db_session: Session,
        gateway: Optional[MercadoPagoGateway] = None,
        order_service: Optional[OrderService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.gateway = gateway
        self.config = config
        self.order_service = order_service or OrderService(db_session, config=config)
        self.logger = logging.getLogger(__name__)

    def _require_gateway(self) -> MercadoPagoGateway:
        if self.gateway is None:
            raise PaymentGatewayNotConfigured("MercadoPago no está configurado")
        return self.gateway

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------
    def build_preference(self, user: User, orders: Sequence[Order], reference: str) -> Dict[str, Any]:
        base_url = self.config.APP_URL
        currency = self.config.CURRENCY_ID
        items: List[Dict[str, Any]] = []
        shipping_total = Decimal("0.00")
        for order in orders:
            product = order.product
            items.append(
                {
                    "id": product.id,
                    "title": product.name,
                    "description": (product.description or product.name)[:250],
                    "quantity": order.quantity,
                    "currency_id": currency,
                    "unit_price": float(product.price),
                    "picture_url": product.image_url or None,
                }
            )
            shipping_total += Decimal(order.shipping_cost or 0)
        if shipping_total > 0:
            items.append(
                {
                    "id": "shipping",
                    "title": "Envío",
                    "quantity": 1,
                    "currency_id": currency,
                    "unit_price": float(shipping_total),
                }
            )

        now = utcnow()
        expires_at = now + timedelta(minutes=self.config.PREFERENCE_EXPIRATION_MINUTES)
        first = orders[0]
        return {
            "items": items,
            "payer": {"name": user.full_name, "email": user.email},
            "back_urls": {
                kind: f"{base_url}/payment/{kind}?order={reference}"
                for kind in ("success", "failure", "pending")
            },
            "auto_return": "approved",
            "notification_url": f"{base_url}/api/payments/webhook",
            "statement_descriptor": self.config.STATEMENT_DESCRIPTOR,
            "external_reference": reference,
            "expires": True,
            "expiration_date_from": now.isoformat(timespec="milliseconds"),
            "expiration_date_to": expires_at.isoformat(timespec="milliseconds"),
            "metadata": {
                "order_id": first.id if len(orders) == 1 else None,
                "order_number": first.order_number,
                "checkout_reference": reference,
                "user_id": user.id,
            },
        }

    def create_preference(self, user: User, orders: Sequence[Order], reference: str) -> Dict[str, Any]:
        """Create the preference and link it to the orders. Raises PaymentGatewayError."""
        gateway = self._require_gateway()
        preference = gateway.create_preference(self.build_preference(user, orders, reference))
        preference_id = preference.get("id")
        for order in orders:
            order.preference_id = preference_id
        self.db.commit()

        amount = sum((Decimal(order.total_amount) for order in orders), Decimal("0.00"))
        increment_counter("payment_preferences_created_total")
        record_event(
            "payment_preference_created",
            {"preference_id": preference_id, "reference": reference, "orders": len(orders)},
        )
        self.logger.info(
            "Preference %s created for %s", preference_id, reference, extra={"amount": str(amount)}
        )
        first = orders[0]
        return {
            "preference_id": preference_id,
            "init_point": preference.get("init_point"),
            "sandbox_init_point": preference.get("sandbox_init_point"),
            "order_id": first.id,
            "order_number": first.order_number,
            "checkout_reference": reference,
            "amount": float(amount),
        }

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def process_payment(self, payment_id: str) -> Tuple[bool, str, List[Order]]:
        """
        Fetch a payment from the gateway and apply it to the orders named by
        its ``external_reference``. Safe to call repeatedly for the same payment.
        """
        payment = self._require_gateway().get_payment(str(payment_id))
        reference = str(payment.get("external_reference") or "")
        orders = self.order_service.find_by_reference(reference)
        if not orders:
            self.logger.warning(
                "Payment %s references unknown orders", payment_id, extra={"external_reference": reference}
            )
            return False, "Pedido no encontrado", []

        gateway_status = str(payment.get("status") or "")
        payment_status = GATEWAY_STATUS_MAP.get(gateway_status, PaymentStatus.PENDING)
        newly_paid: List[Order] = []
        try:
            for order in orders:
                if not _applies_to(order, str(payment_id), payment_status):
                    self.logger.info(
                        "Ignoring %s payment %s for settled order %s",
                        gateway_status,
                        payment_id,
                        order.order_number,
                    )
                    continue
                order.payment_id = str(payment_id)
                method = payment.get("payment_method_id") or payment.get("payment_type_id")
                if method:
                    order.payment_method = method
                order.payment_status = payment_status
                if payment_status == PaymentStatus.APPROVED:
                    if self.order_service.mark_paid(order, note=f"Pago MercadoPago {payment_id} aprobado"):
                        newly_paid.append(order)
                elif payment_status == PaymentStatus.REFUNDED:
                    self.order_service.inventory_service.restore_order_stock(order)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to apply payment %s", payment_id)
            raise

        increment_counter("payment_notifications_total", labels={"status": payment_status.value})
        record_event(
            "payment_processed",
            {"payment_id": str(payment_id), "reference": reference, "status": payment_status.value},
        )
        self.logger.info(
            "Payment %s (%s) applied to %d order(s)", payment_id, gateway_status, len(orders)
        )
        self.order_service.notify_paid(newly_paid)
        return True, "Pago procesado", orders


def _applies_to(order: Order, payment_id: str, payment_status: PaymentStatus) -> bool:
    """
    Whether a payment notification may touch ``order``.

    A preference can collect several attempts whose notifications arrive in
    any order. Once an order is settled (it left PENDIENTE or was approved or
    refunded) only its own payment may move it, and only to approved or
    refunded.
    """
    settled = order.status != OrderStatus.PENDIENTE or order.payment_status in (
        PaymentStatus.APPROVED,
        PaymentStatus.REFUNDED,
    )
    if not settled:
        return True
    if order.payment_id and order.payment_id != payment_id:
        return False
    return payment_status in (PaymentStatus.APPROVED, PaymentStatus.REFUNDED)
