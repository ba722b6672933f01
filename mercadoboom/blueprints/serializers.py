from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from mercadoboom.models import (
    Address,
    Banner,
    Category,
    Order,
    PaymentConfig,
    Product,
    SpecialOffer,
    SupportTicket,
    TicketMessage,
    TransferDiscountConfig,
    User,
    as_utc,
)
from mercadoboom.services.payment_config_service import parse_config_json


def serialize_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return as_utc(value).isoformat()


def enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def serialize_user(user: User) -> Dict[str, Any]:
    # Never expose password hash, reset token or pending codes
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "phone": user.phone,
        "is_admin": bool(user.is_admin),
        "two_factor_enabled": bool(user.two_factor_enabled),
        "two_factor_method": enum_value(user.two_factor_method),
        "is_email_verified": bool(user.is_email_verified),
        "is_phone_verified": bool(user.is_phone_verified),
        "is_blocked": bool(user.is_blocked),
        "block_reason": user.block_reason,
        "blocked_at": serialize_dt(user.blocked_at),
        "blocked_by": user.blocked_by,
        "created_at": serialize_dt(user.created_at),
    }


def serialize_category(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "emoji": category.emoji,
        "is_active": bool(category.is_active),
    }


def serialize_product(product: Product) -> Dict[str, Any]:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": money(product.price),
        "original_price": money(product.original_price),
        "category_id": product.category_id,
        "category": serialize_category(product.category) if product.category else None,
        "image_url": product.image_url,
        "images": list(product.images or []),
        "stock": product.stock,
        "rating": money(product.rating),
        "review_count": product.review_count,
        "promotion_type": product.promotion_type,
        "is_active": bool(product.is_active),
        "is_featured": bool(product.is_featured),
        "is_affiliate": bool(product.is_affiliate),
        "affiliate_url": product.affiliate_url,
        "affiliate_store": product.affiliate_store,
        "shipping_method": product.shipping_method,
        "delivery_time": product.delivery_time,
        "free_shipping": bool(product.free_shipping),
        "free_shipping_min_amount": money(product.free_shipping_min_amount),
        "allow_transfer_discount": bool(product.allow_transfer_discount),
        "transfer_discount_percent": money(product.transfer_discount_percent),
        "is_imported": bool(product.is_imported),
        "import_delivery_days": product.import_delivery_days,
        "import_description": product.import_description,
        "created_at": serialize_dt(product.created_at),
    }


def serialize_address(address: Optional[Address]) -> Optional[Dict[str, Any]]:
    if address is None:
        return None
    return {
        "id": address.id,
        "user_id": address.user_id,
        "title": address.title,
        "street": address.street,
        "city": address.city,
        "state": address.state,
        "postal_code": address.postal_code,
        "country": address.country,
        "is_default": bool(address.is_default),
    }


def serialize_order(order: Order, include_user: bool = False) -> Dict[str, Any]:
    body = {
        "id": order.id,
        "order_number": order.order_number,
        "checkout_reference": order.checkout_reference,
        "user_id": order.user_id,
        "product_id": order.product_id,
        "product": serialize_product(order.product) if order.product else None,
        "quantity": order.quantity,
        "original_amount": money(order.original_amount),
        "discount_applied": money(order.discount_applied),
        "shipping_cost": money(order.shipping_cost),
        "total_amount": money(order.total_amount),
        "status": enum_value(order.status),
        "payment_status": enum_value(order.payment_status),
        "payment_type": enum_value(order.payment_type),
        "payment_id": order.payment_id,
        "preference_id": order.preference_id,
        "payment_method": order.payment_method,
        "transfer_receipt_url": order.transfer_receipt_url,
        "transfer_verified_at": serialize_dt(order.transfer_verified_at),
        "transfer_verified_by": order.transfer_verified_by,
        "transfer_notes": order.transfer_notes,
        "shipping_address_id": order.shipping_address_id,
        "shipping_address": serialize_address(order.shipping_address),
        "tracking_number": order.tracking_number,
        "courier_service": order.courier_service,
        "estimated_delivery": serialize_dt(order.estimated_delivery),
        "actual_delivery": serialize_dt(order.actual_delivery),
        "status_history": list(order.status_history or []),
        "created_at": serialize_dt(order.created_at),
        "updated_at": serialize_dt(order.updated_at),
    }
    if include_user:
        body["user"] = serialize_user(order.user) if order.user else None
    return body


def serialize_ticket(ticket: SupportTicket) -> Dict[str, Any]:
    return {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "user_id": ticket.user_id,
        "email": ticket.email,
        "name": ticket.name,
        "subject": ticket.subject,
        "description": ticket.description,
        "category": enum_value(ticket.category),
        "priority": enum_value(ticket.priority),
        "status": enum_value(ticket.status),
        "order_id": ticket.order_id,
        "attachments": list(ticket.attachments or []),
        "assigned_to": ticket.assigned_to,
        "admin_notes": ticket.admin_notes,
        "resolution": ticket.resolution,
        "created_at": serialize_dt(ticket.created_at),
        "updated_at": serialize_dt(ticket.updated_at),
        "resolved_at": serialize_dt(ticket.resolved_at),
    }


def serialize_message(message: TicketMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "ticket_id": message.ticket_id,
        "sender_id": message.sender_id,
        "sender_type": enum_value(message.sender_type),
        "sender_name": message.sender_name,
        "sender_email": message.sender_email,
        "message": message.message,
        "attachments": list(message.attachments or []),
        "is_internal": bool(message.is_internal),
        "created_at": serialize_dt(message.created_at),
    }


def _schedule(item) -> Dict[str, Any]:
    return {
        "is_active": bool(item.is_active),
        "display_order": item.display_order,
        "start_date": serialize_dt(item.start_date),
        "end_date": serialize_dt(item.end_date),
        "created_at": serialize_dt(item.created_at),
        "updated_at": serialize_dt(item.updated_at),
    }


def serialize_banner(banner: Banner) -> Dict[str, Any]:
    return {
        "id": banner.id,
        "title": banner.title,
        "subtitle": banner.subtitle,
        "image_url": banner.image_url,
        "button_text": banner.button_text,
        "button_link": banner.button_link,
        "background_color": banner.background_color,
        "text_color": banner.text_color,
        "is_transparent": bool(banner.is_transparent),
        **_schedule(banner),
    }


def serialize_offer(offer: SpecialOffer) -> Dict[str, Any]:
    return {
        "id": offer.id,
        "title": offer.title,
        "description": offer.description,
        "discount_percentage": offer.discount_percentage,
        "original_price": offer.original_price,
        "offer_price": offer.offer_price,
        "image_url": offer.image_url,
        "product_id": offer.product_id,
        "offer_type": offer.offer_type,
        **_schedule(offer),
    }


def serialize_payment_config(row: PaymentConfig) -> Dict[str, Any]:
    return {
        "id": row.id,
        "config_key": enum_value(row.config_key),
        "display_name": row.display_name,
        "is_active": bool(row.is_active),
        "config": parse_config_json(row.config),
        "created_at": serialize_dt(row.created_at),
        "updated_at": serialize_dt(row.updated_at),
    }


def serialize_transfer_discount(row: TransferDiscountConfig) -> Dict[str, Any]:
    return {
        "id": row.id,
        "discount_percentage": money(row.discount_percentage),
        "discount_text": row.discount_text,
        "is_active": bool(row.is_active),
        "updated_by": row.updated_by,
        "updated_at": serialize_dt(row.updated_at),
    }
