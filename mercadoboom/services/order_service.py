from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc, or_
from sqlalchemy.orm import Session

from mercadoboom.config import Config
from mercadoboom.models import (
    Address,
    Order,
    OrderStatus,
    PaymentStatus,
    PaymentType,
    Product,
    User,
)
from mercadoboom.observability import increment_counter, record_event
from mercadoboom.services.inventory_service import InventoryService
from mercadoboom.services.notification_service import NotificationService, get_notifier
from mercadoboom.services.payment_config_service import PaymentConfigService

_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_order_number(payment_type: PaymentType = PaymentType.MERCADOPAGO) -> str:
    prefix = "MB-TF" if payment_type == PaymentType.DIRECT_TRANSFER else "MB"
    return f"{prefix}-{int(time.time() * 1000)}-{_random_suffix(6)}"


def generate_checkout_reference() -> str:
    return f"CHK-{int(time.time() * 1000)}-{_random_suffix(6)}"


@dataclass(frozen=True)
class PriceQuote:
    unit_price: Decimal
    quantity: int
    original_amount: Decimal
    discount_applied: Decimal
    discount_percentage: Decimal
    shipping_cost: Decimal
    total_amount: Decimal


class OrderService:
    """Order placement, pricing and the status lifecycle."""

    def __init__(
        self,
        db_session: Session,
        inventory_service: Optional[InventoryService] = None,
        payment_configs: Optional[PaymentConfigService] = None,
        notifier: Optional[NotificationService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.config = config
        self.inventory_service = inventory_service or InventoryService(db_session)
        self.payment_configs = payment_configs or PaymentConfigService(db_session, config=config)
        self.notifier = notifier or get_notifier()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------
    def quote(self, product: Product, quantity: int, payment_type: PaymentType | str) -> PriceQuote:
        """
        original = price x qty; shipping is the flat rate unless the product
        ships free or the subtotal reaches its free-shipping threshold. Direct
        transfers get the configured discount when the product allows it.
        """
        payment_type = PaymentType(payment_type)
        original = product.subtotal_for(quantity)
        shipping = product.shipping_for(original, self.config.SHIPPING_COST)

        discount = Decimal("0.00")
        percentage = Decimal("0.00")
        if payment_type == PaymentType.DIRECT_TRANSFER and product.allow_transfer_discount:
            discount_config = self.payment_configs.effective_transfer_discount()
            if discount_config.is_active:
                percentage = Decimal(discount_config.discount_percentage)
                discount = discount_config.discount_for(original)

        return PriceQuote(
            unit_price=Decimal(product.price),
            quantity=quantity,
            original_amount=original,
            discount_applied=discount,
            discount_percentage=percentage,
            shipping_cost=shipping,
            total_amount=original - discount + shipping,
        )

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------
    def create_order(
        self,
        user: User,
        product: Product,
        quantity: int,
        shipping_address_id: Optional[str] = None,
        payment_type: PaymentType | str = PaymentType.MERCADOPAGO,
        checkout_reference: Optional[str] = None,
        commit: bool = True,
    ) -> Tuple[bool, str, Optional[Order]]:
        payment_type = PaymentType(payment_type)
        if product is None or not product.is_active:
            return False, "Producto no encontrado", None
        if product.is_affiliate:
            return False, "Este producto se compra directamente en la tienda afiliada", None
        if quantity < 1:
            return False, "La cantidad debe ser mayor a 0", None
        if not self.inventory_service.has_stock(product, quantity):
            return False, f"Stock insuficiente: quedan {product.stock or 0} unidades", None

        if shipping_address_id:
            address = self.db.get(Address, shipping_address_id)
            if address is None or address.user_id != user.id:
                return False, "Dirección de envío inválida", None

        quote = self.quote(product, quantity, payment_type)
        order = Order(
            order_number=generate_order_number(payment_type),
            checkout_reference=checkout_reference,
            user_id=user.id,
            product_id=product.id,
            quantity=quantity,
            original_amount=quote.original_amount,
            discount_applied=quote.discount_applied,
            shipping_cost=quote.shipping_cost,
            total_amount=quote.total_amount,
            payment_status=PaymentStatus.PENDING,
            payment_type=payment_type,
            payment_method="direct_transfer" if payment_type == PaymentType.DIRECT_TRANSFER else None,
            shipping_address_id=shipping_address_id,
            status_history=[],
        )
        order.product = product
        order.user = user
        order.change_status(OrderStatus.PENDIENTE, changed_by=user.id, note="Pedido creado")
        self.db.add(order)
        if commit:
            self.db.commit()
        else:
            self.db.flush()

        increment_counter("orders_created_total", labels={"payment_type": payment_type.value})
        record_event(
            "order_created",
            {"order_id": order.id, "order_number": order.order_number, "user_id": user.id},
        )
        self.logger.info(
            "Order %s created",
            order.order_number,
            extra={"order_id": order.id, "total": str(order.total_amount), "payment_type": payment_type.value},
        )
        return True, "Pedido creado", order

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_user_orders(self, user_id: str) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(desc(Order.created_at))
            .all()
        )

    def get_user_order(self, user_id: str, order_id: str) -> Optional[Order]:
        order = self.db.get(Order, order_id)
        if order is None or order.user_id != user_id:
            return None
        return order

    def list_all_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        query = self.db.query(Order)
        if status is not None:
            query = query.filter(Order.status == status)
        return query.order_by(desc(Order.created_at)).all()

    def find_by_reference(self, reference: str) -> List[Order]:
        """Orders addressed by a gateway ``external_reference``: one order id or a cart checkout."""
        if not reference:
            return []
        return (
            self.db.query(Order)
            .filter(or_(Order.id == reference, Order.checkout_reference == reference))
            .order_by(Order.created_at)
            .all()
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def update_status(
        self,
        order: Order,
        new_status: OrderStatus | str,
        changed_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Order]]:
        new_status = OrderStatus(new_status)
        was_pending = OrderStatus(order.status) == OrderStatus.PENDIENTE
        if not order.change_status(new_status, changed_by=changed_by, note=note):
            return True, "El pedido ya tiene ese estado", order

        if was_pending and new_status != OrderStatus.PENDIENTE:
            self.inventory_service.commit_order_stock(order)
        elif new_status == OrderStatus.PENDIENTE:
            self.inventory_service.restore_order_stock(order)

        self.db.commit()
        increment_counter("order_status_changes_total", labels={"status": new_status.value})
        record_event(
            "order_status_changed",
            {"order_id": order.id, "status": new_status.value, "changed_by": changed_by},
        )
        if was_pending and new_status == OrderStatus.PAGADO:
            self._notify_paid(order)
        return True, "Estado del pedido actualizado", order

    def mark_paid(self, order: Order, changed_by: Optional[str] = None, note: Optional[str] = None) -> bool:
        """
        Move a pending order to PAGADO and take its stock. Orders that already
        left PENDIENTE are not touched, so replayed notifications are harmless.
        Does not commit.
        """
        if OrderStatus(order.status) != OrderStatus.PENDIENTE:
            return False
        order.change_status(OrderStatus.PAGADO, changed_by=changed_by, note=note)
        self.inventory_service.commit_order_stock(order)
        increment_counter("orders_paid_total", labels={"payment_type": PaymentType(order.payment_type).value})
        return True

    def update_shipping(self, order: Order, changes: Dict[str, Any]) -> Tuple[bool, str, Optional[Order]]:
        for field_name in ("tracking_number", "courier_service", "estimated_delivery"):
            if field_name in changes:
                setattr(order, field_name, changes[field_name])
        self.db.commit()
        return True, "Datos de envío actualizados", order

    def notify_paid(self, orders: List[Order]) -> None:
        for order in orders:
            self._notify_paid(order)

    def _notify_paid(self, order: Order) -> None:
        delivered, error = self.notifier.send_order_confirmation(order)
        if not delivered:
            self.logger.warning(
                "Order confirmation for %s was not delivered: %s", order.order_number, error
            )
