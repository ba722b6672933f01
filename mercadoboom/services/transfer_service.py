from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from mercadoboom.models import Order, PaymentStatus, PaymentType, Product, User, utcnow
from mercadoboom.observability import increment_counter, record_event
from mercadoboom.services.order_service import OrderService
from mercadoboom.services.payment_config_service import PaymentConfigService
from mercadoboom.services.storage_service import ObjectStorageService


def transfer_instructions(reference: str) -> List[str]:
    return [
        "Realiza la transferencia usando la CLABE interbancaria",
        f"Usa como referencia el número de pedido: {reference}",
        "Sube tu comprobante desde la sección Mis pedidos",
        "El pedido se procesa al confirmar el pago (24-48 hrs)",
    ]


class TransferService:
    """Manual SPEI transfers: order creation, receipts and admin verification."""

    def __init__(
        self,
        db_session: Session,
        order_service: Optional[OrderService] = None,
        payment_configs: Optional[PaymentConfigService] = None,
        storage: Optional[ObjectStorageService] = None,
    ) -> None:
        self.db = db_session
        self.payment_configs = payment_configs or PaymentConfigService(db_session)
        self.order_service = order_service or OrderService(db_session, payment_configs=self.payment_configs)
        self.storage = storage or ObjectStorageService()
        self.logger = logging.getLogger(__name__)

    def create_direct_transfer(
        self,
        user: User,
        product: Product,
        quantity: int,
        shipping_address_id: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        success, message, order = self.order_service.create_order(
            user,
            product,
            quantity,
            shipping_address_id=shipping_address_id,
            payment_type=PaymentType.DIRECT_TRANSFER,
        )
        if not success:
            return False, message, None

        increment_counter("direct_transfers_created_total")
        return True, "Pedido creado, pendiente de transferencia", {
            "order": order,
            **self.transfer_details([order], order.order_number),
        }

    def transfer_details(self, orders: Sequence[Order], reference: str) -> Dict[str, Any]:
        """Bank details and discount summary for one or more transfer orders paid together."""
        amount = sum((Decimal(order.total_amount) for order in orders), Decimal("0.00"))
        discount_amount = sum((Decimal(order.discount_applied or 0) for order in orders), Decimal("0.00"))
        discount_config = self.payment_configs.effective_transfer_discount()

        bank_details: Dict[str, Any] = dict(self.payment_configs.bank_details())
        bank_details.update(
            {
                "reference": reference,
                "amount": float(amount),
                "instructions": transfer_instructions(reference),
            }
        )
        return {
            "bank_details": bank_details,
            "discount": {
                "percentage": float(discount_config.discount_percentage) if discount_config.is_active else 0.0,
                "text": discount_config.discount_text,
                "amount": float(discount_amount),
            },
        }

    def upload_receipt(self, order: Order, receipt_url: str) -> Tuple[bool, str, Optional[Order]]:
        if PaymentType(order.payment_type) != PaymentType.DIRECT_TRANSFER:
            return False, "El pedido no es de transferencia directa", None
        if PaymentStatus(order.payment_status) in (PaymentStatus.VERIFIED, PaymentStatus.APPROVED):
            return False, "La transferencia de este pedido ya fue verificada", None

        order.transfer_receipt_url = self.storage.normalize_object_path(receipt_url)
        order.payment_status = PaymentStatus.PENDING_VERIFICATION
        self.db.commit()
        record_event("transfer_receipt_uploaded", {"order_id": order.id})
        self.logger.info("Receipt uploaded for order %s", order.order_number)
        return True, "Comprobante recibido, en espera de verificación", order

    def verify_transfer(
        self,
        admin: User,
        order: Order,
        verified: bool,
        notes: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Order]]:
        if PaymentType(order.payment_type) != PaymentType.DIRECT_TRANSFER:
            return False, "El pedido no es de transferencia directa", None

        if notes is not None:
            order.transfer_notes = notes
        newly_paid = False
        if verified:
            order.payment_status = PaymentStatus.VERIFIED
            order.transfer_verified_at = utcnow()
            order.transfer_verified_by = admin.id
            newly_paid = self.order_service.mark_paid(
                order, changed_by=admin.id, note=notes or "Transferencia verificada"
            )
            message = "Transferencia verificada"
        else:
            order.payment_status = PaymentStatus.REJECTED
            message = "Transferencia rechazada"
        self.db.commit()

        increment_counter("transfer_verifications_total", labels={"verified": str(bool(verified)).lower()})
        record_event(
            "transfer_verified" if verified else "transfer_rejected",
            {"order_id": order.id, "admin_id": admin.id},
        )
        self.logger.info("%s for order %s by %s", message, order.order_number, admin.username)
        if newly_paid:
            self.order_service.notify_paid([order])
        return True, message, order

    def pending_transfers(self) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.payment_type == PaymentType.DIRECT_TRANSFER,
                Order.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.PENDING_VERIFICATION]),
            )
            .order_by(desc(Order.created_at))
            .all()
        )
