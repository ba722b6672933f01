from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from mercadoboom.models import Order, Product
from mercadoboom.observability import increment_counter, record_event, set_gauge


class InventoryService:
    """
    Stock adjustments driven by the order lifecycle.

    Stock is only checked when an order is placed; it is taken when the order
    is first paid and given back if a paid order is refunded. The
    ``stock_committed`` flag on the order makes both operations idempotent.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def has_stock(self, product: Product, quantity: int) -> bool:
        return (product.stock or 0) >= quantity

    def commit_order_stock(self, order: Order) -> Optional[int]:
        """Decrease stock for a newly paid order. Returns the new level, or None if already applied."""
        if order.stock_committed:
            return None
        product = order.product or self.db.get(Product, order.product_id)
        if product is None:
            return None

        old_stock = product.stock or 0
        new_stock = max(0, old_stock - order.quantity)
        product.stock = new_stock
        order.stock_committed = True
        self._publish(product, old_stock, new_stock, reason="sale", order=order)
        if old_stock < order.quantity:
            self.logger.warning(
                "Order %s paid with insufficient stock for product %s (%d < %d)",
                order.order_number,
                product.id,
                old_stock,
                order.quantity,
            )
        return new_stock

    def restore_order_stock(self, order: Order) -> Optional[int]:
        """Give back the stock taken by a paid order that was refunded."""
        if not order.stock_committed:
            return None
        product = order.product or self.db.get(Product, order.product_id)
        if product is None:
            return None

        old_stock = product.stock or 0
        new_stock = old_stock + order.quantity
        product.stock = new_stock
        order.stock_committed = False
        self._publish(product, old_stock, new_stock, reason="refund", order=order)
        return new_stock

    def _publish(self, product: Product, old_stock: int, new_stock: int, reason: str, order: Order) -> None:
        increment_counter("inventory_adjustments_total", labels={"reason": reason})
        set_gauge("product_stock_level", new_stock, labels={"product_id": product.id})
        record_event(
            "inventory_updated",
            {
                "product_id": product.id,
                "order_id": order.id,
                "old_stock": old_stock,
                "new_stock": new_stock,
                "reason": reason,
            },
        )
        self.logger.info(
            "Stock for product %s: %d -> %d (%s)",
            product.id,
            old_stock,
            new_stock,
            reason,
        )
