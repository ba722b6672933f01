"""
Request schemas.

Every JSON body accepted by the API is validated with one of these pydantic
models. Field names are snake_case; the camelCase spelling used by the web
client (``productId``, ``shippingAddressId``...) is accepted as an alias.
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool, field_validator
from pydantic.alias_generators import to_camel

from mercadoboom.models import (
    OrderStatus,
    PaymentConfigKey,
    PaymentType,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    TwoFactorMethod,
)

ResetMethod = Literal["username", "email", "phone"]


class RequestSchema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
class RegisterRequest(RequestSchema):
    username: str = Field(min_length=3, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str = Field(min_length=1, max_length=255)
    phone: Optional[str] = None

    normalize_phone = field_validator("phone", mode="before")(_blank_to_none)


class LoginRequest(RequestSchema):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class PasswordResetRequest(RequestSchema):
    identifier: str = Field(min_length=1)
    method: ResetMethod


class PasswordResetConfirm(RequestSchema):
    identifier: str = Field(min_length=1)
    method: ResetMethod
    reset_token: str = Field(min_length=1)
    new_password: str = Field(min_length=8)


class ProfileUpdate(RequestSchema):
    username: Optional[str] = Field(default=None, min_length=3, max_length=255)
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = None


class AdminPasswordUpdate(RequestSchema):
    new_password: str = Field(min_length=6)


class BlockUserRequest(RequestSchema):
    reason: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Security / two-factor
# ---------------------------------------------------------------------------
class SecurityActionRequest(RequestSchema):
    action: str = Field(min_length=1, max_length=100)


class VerifyCodeRequest(RequestSchema):
    code: str = Field(min_length=1, max_length=12)
    action: str = Field(min_length=1, max_length=100)


class UpdateTwoFactorRequest(RequestSchema):
    enabled: StrictBool
    method: Optional[TwoFactorMethod] = None


class VerifyContactRequest(RequestSchema):
    type: Literal["email", "phone"]
    code: str = Field(min_length=1, max_length=12)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
class CategoryCreate(RequestSchema):
    name: str = Field(min_length=1, max_length=255)
    emoji: Optional[str] = None
    is_active: bool = True


class CategoryUpdate(RequestSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    emoji: Optional[str] = None
    is_active: Optional[bool] = None


class ProductCreate(RequestSchema):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    original_price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    stock: int = Field(default=0, ge=0)
    promotion_type: Optional[Literal["BOOM", "OFERTA", "RELAMPAGO", "NUEVO"]] = None
    is_active: bool = True
    is_featured: bool = False
    is_affiliate: bool = False
    affiliate_url: Optional[str] = None
    affiliate_store: Optional[str] = None
    shipping_method: str = "Envío Estándar"
    delivery_time: str = "3-5 días hábiles"
    free_shipping: bool = False
    free_shipping_min_amount: Optional[Decimal] = Field(default=Decimal("999"), ge=0)
    allow_transfer_discount: bool = True
    transfer_discount_percent: Decimal = Field(default=Decimal("3.50"), ge=0, le=100)
    is_imported: bool = False
    import_delivery_days: int = Field(default=15, ge=0)
    import_description: str = "Producto de importación"

    normalize_blank = field_validator("category_id", "image_url", "promotion_type", mode="before")(_blank_to_none)


class ProductUpdate(RequestSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    original_price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    stock: Optional[int] = Field(default=None, ge=0)
    promotion_type: Optional[Literal["BOOM", "OFERTA", "RELAMPAGO", "NUEVO"]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    is_affiliate: Optional[bool] = None
    affiliate_url: Optional[str] = None
    affiliate_store: Optional[str] = None
    shipping_method: Optional[str] = None
    delivery_time: Optional[str] = None
    free_shipping: Optional[bool] = None
    free_shipping_min_amount: Optional[Decimal] = Field(default=None, ge=0)
    allow_transfer_discount: Optional[bool] = None
    transfer_discount_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    is_imported: Optional[bool] = None
    import_delivery_days: Optional[int] = Field(default=None, ge=0)
    import_description: Optional[str] = None

    normalize_blank = field_validator("category_id", "image_url", "promotion_type", mode="before")(_blank_to_none)


# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------
class AddressCreate(RequestSchema):
    title: str = Field(min_length=1, max_length=255)
    street: str = Field(min_length=1)
    city: str = Field(min_length=1, max_length=255)
    state: str = Field(min_length=1, max_length=255)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = "México"
    is_default: bool = False


class AddressUpdate(RequestSchema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    street: Optional[str] = Field(default=None, min_length=1)
    city: Optional[str] = Field(default=None, min_length=1, max_length=255)
    state: Optional[str] = Field(default=None, min_length=1, max_length=255)
    postal_code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    country: Optional[str] = None
    is_default: Optional[bool] = None


# ---------------------------------------------------------------------------
# Cart, orders and payments
# ---------------------------------------------------------------------------
class OrderCreate(RequestSchema):
    product_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    shipping_address_id: Optional[str] = None

    normalize_address = field_validator("shipping_address_id", mode="before")(_blank_to_none)


class CartItemAdd(RequestSchema):
    product_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(RequestSchema):
    quantity: int


class CheckoutRequest(RequestSchema):
    payment_type: PaymentType = PaymentType.MERCADOPAGO
    shipping_address_id: Optional[str] = None

    normalize_address = field_validator("shipping_address_id", mode="before")(_blank_to_none)


class OrderStatusUpdate(RequestSchema):
    status: OrderStatus
    note: Optional[str] = None


class ShippingUpdate(RequestSchema):
    tracking_number: Optional[str] = None
    courier_service: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class UploadReceiptRequest(RequestSchema):
    order_id: str = Field(min_length=1)
    receipt_url: str = Field(min_length=1)

    @field_validator("receipt_url")
    @classmethod
    def check_receipt_location(cls, value: str) -> str:
        if value.startswith(("http://", "https://", "/objects/")):
            return value
        raise ValueError("URL del comprobante inválida")


class VerifyTransferRequest(RequestSchema):
    order_id: str = Field(min_length=1)
    verified: StrictBool
    notes: Optional[str] = None


def _config_as_json_text(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, str):
        try:
            json.loads(value)
        except ValueError as exc:
            raise ValueError("La configuración debe ser JSON válido") from exc
    return value


class PaymentConfigCreate(RequestSchema):
    config_key: PaymentConfigKey
    display_name: str = Field(min_length=1, max_length=255)
    is_active: bool = True
    config: str = Field(min_length=1)

    normalize_config = field_validator("config", mode="before")(_config_as_json_text)


class PaymentConfigUpdate(RequestSchema):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_active: Optional[bool] = None
    config: Optional[str] = None

    normalize_config = field_validator("config", mode="before")(_config_as_json_text)


class TransferDiscountUpdate(RequestSchema):
    discount_percentage: Decimal = Field(ge=0, le=100, max_digits=5, decimal_places=2)
    discount_text: Optional[str] = Field(default=None, min_length=1)
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Banners and special offers
# ---------------------------------------------------------------------------
class BannerCreate(RequestSchema):
    title: str = Field(min_length=1, max_length=200)
    subtitle: Optional[str] = Field(default=None, max_length=300)
    image_url: Optional[str] = Field(default=None, max_length=500)
    button_text: Optional[str] = Field(default=None, max_length=100)
    button_link: Optional[str] = Field(default=None, max_length=500)
    background_color: str = Field(default="#ff4444", max_length=50)
    text_color: str = Field(default="#ffffff", max_length=50)
    is_transparent: bool = False
    is_active: bool = True
    display_order: int = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    normalize_blank = field_validator("image_url", "start_date", "end_date", mode="before")(_blank_to_none)


class BannerUpdate(RequestSchema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    subtitle: Optional[str] = Field(default=None, max_length=300)
    image_url: Optional[str] = Field(default=None, max_length=500)
    button_text: Optional[str] = Field(default=None, max_length=100)
    button_link: Optional[str] = Field(default=None, max_length=500)
    background_color: Optional[str] = Field(default=None, max_length=50)
    text_color: Optional[str] = Field(default=None, max_length=50)
    is_transparent: Optional[bool] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    normalize_blank = field_validator("image_url", "start_date", "end_date", mode="before")(_blank_to_none)


class SpecialOfferCreate(RequestSchema):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    original_price: Optional[str] = Field(default=None, max_length=50)
    offer_price: Optional[str] = Field(default=None, max_length=50)
    image_url: Optional[str] = Field(default=None, max_length=500)
    product_id: Optional[str] = None
    offer_type: Literal["BOOM", "OFERTA", "RELAMPAGO", "ESPECIAL"] = "BOOM"
    is_active: bool = True
    display_order: int = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    normalize_blank = field_validator("image_url", "product_id", "start_date", "end_date", mode="before")(_blank_to_none)


class SpecialOfferUpdate(RequestSchema):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    discount_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    original_price: Optional[str] = Field(default=None, max_length=50)
    offer_price: Optional[str] = Field(default=None, max_length=50)
    image_url: Optional[str] = Field(default=None, max_length=500)
    product_id: Optional[str] = None
    offer_type: Optional[Literal["BOOM", "OFERTA", "RELAMPAGO", "ESPECIAL"]] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    normalize_blank = field_validator("image_url", "product_id", "start_date", "end_date", mode="before")(_blank_to_none)


# ---------------------------------------------------------------------------
# Support
# ---------------------------------------------------------------------------
class TicketCreate(RequestSchema):
    subject: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=10)
    category: TicketCategory
    priority: TicketPriority = TicketPriority.MEDIO
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    order_id: Optional[str] = None
    attachments: List[str] = Field(default_factory=list)

    normalize_blank = field_validator("email", "name", "order_id", mode="before")(_blank_to_none)


class TicketMessageCreate(RequestSchema):
    message: str = Field(min_length=1)
    is_internal: bool = False
    attachments: List[str] = Field(default_factory=list)


class TicketUpdate(RequestSchema):
    status: TicketStatus
    assigned_to: Optional[str] = None
    admin_notes: Optional[str] = None
    resolution: Optional[str] = None


# ---------------------------------------------------------------------------
# Object storage
# ---------------------------------------------------------------------------
class NormalizeObjectRequest(RequestSchema):
    url: str = Field(min_length=1)
