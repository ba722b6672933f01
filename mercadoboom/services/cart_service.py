from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from mercadoboom.models import Order, PaymentType, Product, User
from mercadoboom.observability import increment_counter, record_event
from mercadoboom.services.order_service import OrderService, generate_checkout_reference


class CartService:
    """
    Shopping cart kept in the client session as ``{product_id: quantity}``.

    The service works on a plain dict; callers load it from and store it back
    into ``flask.session``. Quantities are always capped at the current stock.
    """

    def __init__(
        self,
        db_session: Session,
        items: Optional[Dict[str, int]] = None,
        order_service: Optional[OrderService] = None,
    ) -> None:
        self.db = db_session
        self.items: Dict[str, int] = {str(k): int(v) for k, v in (items or {}).items()}
        self.order_service = order_service or OrderService(db_session)
        self.logger = logging.getLogger(__name__)

    def _product(self, product_id: str) -> Optional[Product]:
        product = self.db.get(Product, product_id)
        if product is None or not product.is_active:
            return None
        return product

    def add_item(self, product_id: str, quantity: int) -> Tuple[bool, str]:
        product = self._product(product_id)
        if product is None:
            return False, "Producto no encontrado"
        if product.is_affiliate:
            return False, "Este producto se compra directamente en la tienda afiliada"
        if (product.stock or 0) < 1:
            return False, "Producto agotado"
        wanted = self.items.get(product_id, 0) + quantity
        self.items[product_id] = min(wanted, product.stock)
        if wanted > product.stock:
            return True, f"Solo hay {product.stock} unidades disponibles"
        return True, "Producto agregado al carrito"

    def set_quantity(self, product_id: str, quantity: int) -> Tuple[bool, str]:
        if product_id not in self.items:
            return False, "El producto no está en el carrito"
        if quantity <= 0:
            self.items.pop(product_id, None)
            return True, "Producto eliminado del carrito"
        product = self._product(product_id)
        if product is None:
            self.items.pop(product_id, None)
            return False, "Producto no encontrado"
        self.items[product_id] = min(quantity, product.stock or 0)
        if self.items[product_id] <= 0:
            self.items.pop(product_id, None)
        return True, "Carrito actualizado"

    def remove_item(self, product_id: str) -> bool:
        return self.items.pop(product_id, None) is not None

    def clear(self) -> None:
        self.items.clear()

    def summary(self) -> Dict[str, Any]:
        lines: List[Dict[str, Any]] = []
        subtotal = shipping = transfer_discount = Decimal("0.00")
        for product_id, quantity in list(self.items.items()):
            product = self._product(product_id)
            if product is None:
                # Product was removed or deactivated since it was added
                self.items.pop(product_id, None)
                continue
            card_quote = self.order_service.quote(product, quantity, PaymentType.MERCADOPAGO)
            transfer_quote = self.order_service.quote(product, quantity, PaymentType.DIRECT_TRANSFER)
            lines.append(
                {
                    "product": product,
                    "quantity": quantity,
                    "subtotal": float(card_quote.original_amount),
                    "shipping_cost": float(card_quote.shipping_cost),
                    "transfer_discount": float(transfer_quote.discount_applied),
                }
            )
            subtotal += card_quote.original_amount
            shipping += card_quote.shipping_cost
            transfer_discount += transfer_quote.discount_applied

        total = subtotal + shipping
        return {
            "items": lines,
            "item_count": sum(line["quantity"] for line in lines),
            "subtotal": float(subtotal),
            "shipping_cost": float(shipping),
            "transfer_discount": float(transfer_discount),
            "total": float(total),
            "total_with_transfer": float(total - transfer_discount),
        }

    def checkout(
        self,
        user: User,
        payment_type: PaymentType | str,
        shipping_address_id: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Tuple[str, List[Order]]]]:
        """Create one pending order per line, all sharing a checkout reference."""
        if not self.items:
            return False, "El carrito está vacío", None

        payment_type = PaymentType(payment_type)
        reference = generate_checkout_reference()
        orders: List[Order] = []
        for product_id, quantity in self.items.items():
            product = self._product(product_id)
            if product is None:
                self.db.rollback()
                return False, "Un producto del carrito ya no está disponible", None
            success, message, order = self.order_service.create_order(
                user,
                product,
                quantity,
                shipping_address_id=shipping_address_id,
                payment_type=payment_type,
                checkout_reference=reference,
                commit=False,
            )
            if not success:
                self.db.rollback()
                return False, f"{product.name}: {message}", None
            orders.append(order)
        self.db.commit()

        increment_counter("cart_checkouts_total", labels={"payment_type": payment_type.value})
        record_event("cart_checkout", {"reference": reference, "orders": len(orders), "user_id": user.id})
        self.logger.info("Checkout %s created %d order(s)", reference, len(orders))
        return True, "Pedidos creados", (reference, orders)
