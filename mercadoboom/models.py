# mercadoboom/models.py
import uuid
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    JSON,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
from mercadoboom.database import Base

CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_id() -> str:
    return str(uuid.uuid4())


class OrderStatus(str, Enum):
    PENDIENTE = "PENDIENTE"
    PAGADO = "PAGADO"
    EN_PREPARACION = "EN_PREPARACION"
    RECOGIDO = "RECOGIDO"
    ENVIADO = "ENVIADO"
    EN_RUTA = "EN_RUTA"
    ENTREGADO = "ENTREGADO"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"


class PaymentType(str, Enum):
    MERCADOPAGO = "mercadopago"
    DIRECT_TRANSFER = "direct_transfer"


class PaymentConfigKey(str, Enum):
    MERCADOPAGO = "mercadopago"
    BANK_TRANSFER = "bank_transfer"
    CONEKTA = "conekta"


class TwoFactorMethod(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    EMAIL_SMS = "email_sms"
    EMAIL_WHATSAPP = "email_whatsapp"
    SMS_WHATSAPP = "sms_whatsapp"
    ALL = "all"

    @property
    def channels(self) -> tuple:
        if self is TwoFactorMethod.ALL:
            return ("email", "sms", "whatsapp")
        return tuple(self.value.split("_"))


class TicketCategory(str, Enum):
    PEDIDO = "PEDIDO"
    PAGO = "PAGO"
    TECNICO = "TECNICO"
    DEVOLUCION = "DEVOLUCION"
    OTRO = "OTRO"


class TicketPriority(str, Enum):
    BAJO = "BAJO"
    MEDIO = "MEDIO"
    ALTO = "ALTO"
    URGENTE = "URGENTE"


class TicketStatus(str, Enum):
    ABIERTO = "ABIERTO"
    EN_PROCESO = "EN_PROCESO"
    ESPERANDO_CLIENTE = "ESPERANDO_CLIENTE"
    RESUELTO = "RESUELTO"
    CERRADO = "CERRADO"


class SenderType(str, Enum):
    CLIENTE = "CLIENTE"
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = 'users'
    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50))
    is_admin = Column(Boolean, default=False, nullable=False)

    reset_token = Column(String(128))
    reset_token_expiry = Column(DateTime(timezone=True))

    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    two_factor_method = Column(
        SAEnum(TwoFactorMethod, name="two_factor_method", native_enum=False, validate_strings=True,
               values_callable=lambda enum: [member.value for member in enum]),
    )
    verification_code = Column(String(12))
    verification_code_expiry = Column(DateTime(timezone=True))
    is_phone_verified = Column(Boolean, default=False, nullable=False)
    is_email_verified = Column(Boolean, default=False, nullable=False)

    is_blocked = Column(Boolean, default=False, nullable=False)
    block_reason = Column(Text)
    blocked_at = Column(DateTime(timezone=True))
    blocked_by = Column(String(36), ForeignKey('users.id'))

    created_at = Column(DateTime(timezone=True), default=utcnow)

    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")
    orders = relationship("Order", back_populates="user", foreign_keys="Order.user_id")

    def reset_token_is_valid(self, token: str, now: Optional[datetime] = None) -> bool:
        if not self.reset_token or not token or self.reset_token != token:
            return False
        expiry = as_utc(self.reset_token_expiry)
        return expiry is not None and (now or utcnow()) <= expiry


class SecurityLog(Base):
    __tablename__ = 'security_logs'
    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    action = Column(String(100), nullable=False)
    method = Column(String(50), nullable=False)
    code = Column(String(12), nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    ip_address = Column(String(100))
    user_agent = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    verified_at = Column(DateTime(timezone=True))


class Category(Base):
    __tablename__ = 'categories'
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    emoji = Column(String(16))
    is_active = Column(Boolean, default=True, nullable=False)

    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = 'products'
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2))
    category_id = Column(String(36), ForeignKey('categories.id'))
    image_url = Column(Text)
    images = Column(JSON, default=list)
    stock = Column(Integer, default=0, nullable=False)
    rating = Column(Numeric(3, 2), default=Decimal("0"))
    review_count = Column(Integer, default=0)
    promotion_type = Column(String(50))
    is_active = Column(Boolean, default=True, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    is_affiliate = Column(Boolean, default=False, nullable=False)
    affiliate_url = Column(Text)
    affiliate_store = Column(String(255))
    shipping_method = Column(String(255), default="Envío Estándar")
    delivery_time = Column(String(255), default="3-5 días hábiles")
    free_shipping = Column(Boolean, default=False, nullable=False)
    free_shipping_min_amount = Column(Numeric(10, 2), default=Decimal("999"))
    allow_transfer_discount = Column(Boolean, default=True, nullable=False)
    transfer_discount_percent = Column(Numeric(5, 2), default=Decimal("3.50"))
    is_imported = Column(Boolean, default=False, nullable=False)
    import_delivery_days = Column(Integer, default=15)
    import_description = Column(Text, default="Producto de importación")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    category = relationship("Category", back_populates="products")

    def subtotal_for(self, quantity: int) -> Decimal:
        return (Decimal(self.price) * quantity).quantize(CENT, rounding=ROUND_HALF_UP)

    def shipping_for(self, subtotal: Decimal, flat_rate: Decimal) -> Decimal:
        if self.free_shipping:
            return Decimal("0.00")
        threshold = self.free_shipping_min_amount
        if threshold is not None and subtotal >= Decimal(threshold):
            return Decimal("0.00")
        return Decimal(flat_rate).quantize(CENT, rounding=ROUND_HALF_UP)


class Address(Base):
    __tablename__ = 'addresses'
    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    title = Column(String(255), nullable=False)
    street = Column(Text, nullable=False)
    city = Column(String(255), nullable=False)
    state = Column(String(255), nullable=False)
    postal_code = Column(String(20), nullable=False)
    country = Column(String(100), default="México")
    is_default = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="addresses")


class Order(Base):
    __tablename__ = 'orders'
    id = Column(String(36), primary_key=True, default=_new_id)
    order_number = Column(String(64), unique=True, nullable=False)
    checkout_reference = Column(String(64), index=True)
    user_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    original_amount = Column(Numeric(10, 2))
    discount_applied = Column(Numeric(10, 2), default=Decimal("0"))
    shipping_cost = Column(Numeric(10, 2), default=Decimal("0"))
    total_amount = Column(Numeric(10, 2), nullable=False)

    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True),
        default=OrderStatus.PENDIENTE,
        nullable=False,
    )
    payment_status = Column(
        SAEnum(PaymentStatus, name="payment_status", native_enum=False, validate_strings=True,
               values_callable=lambda enum: [member.value for member in enum]),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_type = Column(
        SAEnum(PaymentType, name="payment_type", native_enum=False, validate_strings=True,
               values_callable=lambda enum: [member.value for member in enum]),
        default=PaymentType.MERCADOPAGO,
        nullable=False,
    )
    payment_id = Column(String(64))
    preference_id = Column(String(128))
    payment_method = Column(String(64))
    stock_committed = Column(Boolean, default=False, nullable=False)

    transfer_receipt_url = Column(Text)
    transfer_verified_at = Column(DateTime(timezone=True))
    transfer_verified_by = Column(String(36), ForeignKey('users.id'))
    transfer_notes = Column(Text)

    shipping_address_id = Column(String(36), ForeignKey('addresses.id'))
    tracking_number = Column(String(128))
    courier_service = Column(String(128))
    estimated_delivery = Column(DateTime(timezone=True))
    actual_delivery = Column(DateTime(timezone=True))

    status_history = Column(JSON, default=list, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="orders", foreign_keys=[user_id])
    product = relationship("Product")
    shipping_address = relationship("Address")
    verifier = relationship("User", foreign_keys=[transfer_verified_by])

    def change_status(
        self,
        new_status: OrderStatus,
        changed_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool:
        """Set the status and append an entry to the history. Returns False when unchanged."""
        new_status = OrderStatus(new_status)
        if self.status is not None and OrderStatus(self.status) == new_status:
            return False
        now = utcnow()
        entry = {
            "status": new_status.value,
            "changed_at": now.isoformat(),
            "changed_by": changed_by,
            "note": note,
        }
        # Reassign so SQLAlchemy notices the JSON change
        self.status_history = list(self.status_history or []) + [entry]
        self.status = new_status
        if new_status == OrderStatus.ENTREGADO:
            self.actual_delivery = now
        return True


class SupportTicket(Base):
    __tablename__ = 'support_tickets'
    id = Column(String(36), primary_key=True, default=_new_id)
    ticket_number = Column(String(64), unique=True, nullable=False)
    user_id = Column(String(36), ForeignKey('users.id'))
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(
        SAEnum(TicketCategory, name="ticket_category", native_enum=False, validate_strings=True),
        nullable=False,
    )
    priority = Column(
        SAEnum(TicketPriority, name="ticket_priority", native_enum=False, validate_strings=True),
        default=TicketPriority.MEDIO,
        nullable=False,
    )
    status = Column(
        SAEnum(TicketStatus, name="ticket_status", native_enum=False, validate_strings=True),
        default=TicketStatus.ABIERTO,
        nullable=False,
    )
    order_id = Column(String(36), ForeignKey('orders.id'))
    attachments = Column(JSON, default=list)
    assigned_to = Column(String(36), ForeignKey('users.id'))
    admin_notes = Column(Text)
    resolution = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    resolved_at = Column(DateTime(timezone=True))

    messages = relationship(
        "TicketMessage",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketMessage.created_at",
    )


class TicketMessage(Base):
    __tablename__ = 'ticket_messages'
    id = Column(String(36), primary_key=True, default=_new_id)
    ticket_id = Column(String(36), ForeignKey('support_tickets.id', ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), ForeignKey('users.id'))
    sender_type = Column(
        SAEnum(SenderType, name="sender_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    sender_name = Column(String(255), nullable=False)
    sender_email = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    attachments = Column(JSON, default=list)
    is_internal = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    ticket = relationship("SupportTicket", back_populates="messages")


class Banner(Base):
    __tablename__ = 'banners'
    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(200), nullable=False)
    subtitle = Column(String(300))
    image_url = Column(String(500))
    button_text = Column(String(100))
    button_link = Column(String(500))
    background_color = Column(String(50), default="#ff4444")
    text_color = Column(String(50), default="#ffffff")
    is_transparent = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class SpecialOffer(Base):
    __tablename__ = 'special_offers'
    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(200), nullable=False)
    description = Column(String(500))
    discount_percentage = Column(Integer)
    original_price = Column(String(50))
    offer_price = Column(String(50))
    image_url = Column(String(500))
    product_id = Column(String(36), ForeignKey('products.id'))
    offer_type = Column(String(50), default="BOOM")
    is_active = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)
    start_date = Column(DateTime(timezone=True))
    end_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class PaymentConfig(Base):
    __tablename__ = 'payment_config'
    id = Column(String(36), primary_key=True, default=_new_id)
    config_key = Column(
        SAEnum(PaymentConfigKey, name="payment_config_key", native_enum=False, validate_strings=True,
               values_callable=lambda enum: [member.value for member in enum]),
        unique=True,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    display_name = Column(String(255), nullable=False)
    config = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class TransferDiscountConfig(Base):
    __tablename__ = 'transfer_discount_config'
    id = Column(String(36), primary_key=True, default=_new_id)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=Decimal("3.50"))
    discount_text = Column(Text, nullable=False, default="por evitar comisiones")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    updated_by = Column(String(36), ForeignKey('users.id'))

    def discount_for(self, amount: Decimal) -> Decimal:
        if not self.is_active:
            return Decimal("0.00")
        percentage = Decimal(self.discount_percentage or 0)
        return (Decimal(amount) * percentage / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
