from .notification_service import NotificationService, NotificationDeliveryError
from .storage_service import ObjectStorageService
from .user_service import UserService
from .verification_service import VerificationService
from .catalog_service import CatalogService
from .inventory_service import InventoryService
from .payment_config_service import PaymentConfigService
from .order_service import OrderService
from .payment_service import (
    MercadoPagoGateway,
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentService,
)
from .transfer_service import TransferService
from .cart_service import CartService
from .promotion_service import PromotionService
from .support_service import SupportService

__all__ = [
    "NotificationService",
    "NotificationDeliveryError",
    "ObjectStorageService",
    "UserService",
    "VerificationService",
    "CatalogService",
    "InventoryService",
    "PaymentConfigService",
    "OrderService",
    "MercadoPagoGateway",
    "PaymentGatewayError",
    "PaymentGatewayNotConfigured",
    "PaymentService",
    "TransferService",
    "CartService",
    "PromotionService",
    "SupportService",
]
