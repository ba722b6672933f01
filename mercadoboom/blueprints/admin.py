from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Type

from flask import Blueprint, jsonify
from pydantic import BaseModel
from sqlalchemy import desc

from mercadoboom.blueprints.common import (
    current_user,
    ensure_admin,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import (
    serialize_banner,
    serialize_category,
    serialize_offer,
    serialize_order,
    serialize_payment_config,
    serialize_product,
    serialize_ticket,
    serialize_transfer_discount,
    serialize_user,
)
from mercadoboom.config import Config
from mercadoboom.database import get_db
from mercadoboom.models import (
    Banner,
    Category,
    Order,
    PaymentConfig,
    Product,
    SpecialOffer,
    User,
)
from mercadoboom.observability import get_metrics_snapshot
from mercadoboom.observability.business_metrics import (
    compute_sales_series,
    compute_store_stats,
    trailing_window,
)
from mercadoboom.schemas import (
    AdminPasswordUpdate,
    BannerCreate,
    BannerUpdate,
    BlockUserRequest,
    CategoryCreate,
    CategoryUpdate,
    OrderStatusUpdate,
    PaymentConfigCreate,
    PaymentConfigUpdate,
    ProductCreate,
    ProductUpdate,
    ShippingUpdate,
    SpecialOfferCreate,
    SpecialOfferUpdate,
    TicketUpdate,
    TransferDiscountUpdate,
    VerifyTransferRequest,
)
from mercadoboom.services.catalog_service import CatalogService
from mercadoboom.services.order_service import OrderService
from mercadoboom.services.payment_config_service import PaymentConfigService
from mercadoboom.services.promotion_service import PromotionService
from mercadoboom.services.support_service import SupportService
from mercadoboom.services.transfer_service import TransferService
from mercadoboom.services.user_service import UserService

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")
logger = logging.getLogger(__name__)

CLEARABLE_PRODUCT_FIELDS = frozenset(
    {
        "description",
        "original_price",
        "category_id",
        "image_url",
        "promotion_type",
        "affiliate_url",
        "affiliate_store",
        "free_shipping_min_amount",
    }
)
CLEARABLE_PROMOTION_FIELDS = frozenset(
    {
        "subtitle",
        "description",
        "image_url",
        "button_text",
        "button_link",
        "discount_percentage",
        "original_price",
        "offer_price",
        "product_id",
        "start_date",
        "end_date",
    }
)


@admin_bp.before_request
def require_admin():
    return ensure_admin()


def _changes(data: BaseModel, clearable: Iterable[str] = ()) -> Dict[str, Any]:
    """Fields sent in a partial update; explicit nulls only survive for clearable columns."""
    clearable = set(clearable)
    return {
        key: value
        for key, value in data.model_dump(exclude_unset=True).items()
        if value is not None or key in clearable
    }


def _result(success: bool, message: str, key: str, obj: Any, serializer, status: int = 200):
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, key: serializer(obj) if obj is not None else None}), status


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@admin_bp.route("/users", methods=["GET"])
def list_users():
    users = get_db().query(User).order_by(desc(User.created_at)).all()
    return jsonify([serialize_user(user) for user in users])


def _user_or_404(user_id: str):
    user = get_db().get(User, user_id)
    if user is None:
        return None, json_error("Usuario no encontrado", 404)
    return user, None


@admin_bp.route("/users/<user_id>/password", methods=["PUT"])
def set_user_password(user_id: str):
    user, missing = _user_or_404(user_id)
    if missing:
        return missing
    data, error = parse_body(AdminPasswordUpdate)
    if error:
        return error
    success, message, user = UserService(get_db()).set_password(user, data.new_password)
    return _result(success, message, "user", user, serialize_user)


@admin_bp.route("/users/<user_id>/block", methods=["POST"])
def block_user(user_id: str):
    user, missing = _user_or_404(user_id)
    if missing:
        return missing
    data, error = parse_body(BlockUserRequest)
    if error:
        return error
    success, message, user = UserService(get_db()).block_user(current_user(), user, data.reason)
    return _result(success, message, "user", user, serialize_user)


@admin_bp.route("/users/<user_id>/unblock", methods=["POST"])
def unblock_user(user_id: str):
    user, missing = _user_or_404(user_id)
    if missing:
        return missing
    success, message, user = UserService(get_db()).unblock_user(user)
    return _result(success, message, "user", user, serialize_user)


# ---------------------------------------------------------------------------
# Orders, stats and metrics
# ---------------------------------------------------------------------------
@admin_bp.route("/orders", methods=["GET"])
def list_orders():
    orders = OrderService(get_db()).list_all_orders()
    return jsonify([serialize_order(order, include_user=True) for order in orders])


@admin_bp.route("/orders/<order_id>/status", methods=["PATCH"])
def update_order_status(order_id: str):
    order = get_db().get(Order, order_id)
    if order is None:
        return json_error("Pedido no encontrado", 404)
    data, error = parse_body(OrderStatusUpdate)
    if error:
        return error
    success, message, order = OrderService(get_db()).update_status(
        order, data.status, changed_by=current_user().id, note=data.note
    )
    return _result(success, message, "order", order, serialize_order)


@admin_bp.route("/orders/<order_id>/shipping", methods=["PATCH"])
def update_order_shipping(order_id: str):
    order = get_db().get(Order, order_id)
    if order is None:
        return json_error("Pedido no encontrado", 404)
    data, error = parse_body(ShippingUpdate)
    if error:
        return error
    success, message, order = OrderService(get_db()).update_shipping(order, data.model_dump(exclude_unset=True))
    return _result(success, message, "order", order, serialize_order)


@admin_bp.route("/stats", methods=["GET"])
def store_stats():
    db = get_db()
    stats = compute_store_stats(db)
    sales = compute_sales_series(db, trailing_window(Config.STATS_SALES_WINDOW_DAYS))
    stats["sales_by_day"] = sales["series"]
    return jsonify(stats)


@admin_bp.route("/metrics", methods=["GET"])
def metrics():
    return jsonify(get_metrics_snapshot())


# ---------------------------------------------------------------------------
# Direct transfers and payment configuration
# ---------------------------------------------------------------------------
@admin_bp.route("/verify-transfer", methods=["POST"])
def verify_transfer():
    data, error = parse_body(VerifyTransferRequest)
    if error:
        return error
    order = get_db().get(Order, data.order_id)
    if order is None:
        return json_error("Pedido no encontrado", 404)
    success, message, order = TransferService(get_db()).verify_transfer(
        current_user(), order, data.verified, data.notes
    )
    return _result(success, message, "order", order, serialize_order)


@admin_bp.route("/pending-transfers", methods=["GET"])
def pending_transfers():
    orders = TransferService(get_db()).pending_transfers()
    return jsonify([serialize_order(order, include_user=True) for order in orders])


@admin_bp.route("/transfer-discount-config", methods=["GET"])
def get_transfer_discount_config():
    row = PaymentConfigService(get_db()).get_transfer_discount_config(create=True)
    return jsonify(serialize_transfer_discount(row))


@admin_bp.route("/transfer-discount-config", methods=["PUT"])
def update_transfer_discount_config():
    data, error = parse_body(TransferDiscountUpdate)
    if error:
        return error
    success, message, row = PaymentConfigService(get_db()).update_transfer_discount(
        data.model_dump(exclude_unset=True), updated_by=current_user().id
    )
    return _result(success, message, "config", row, serialize_transfer_discount)


@admin_bp.route("/payment-config", methods=["GET"])
def list_payment_configs():
    rows = PaymentConfigService(get_db()).list_configs()
    return jsonify([serialize_payment_config(row) for row in rows])


@admin_bp.route("/payment-config", methods=["POST"])
def create_payment_config():
    data, error = parse_body(PaymentConfigCreate)
    if error:
        return error
    success, message, row = PaymentConfigService(get_db()).create_config(data.model_dump())
    return _result(success, message, "config", row, serialize_payment_config, status=201)


@admin_bp.route("/payment-config/<config_id>", methods=["PATCH"])
def update_payment_config(config_id: str):
    row = get_db().get(PaymentConfig, config_id)
    if row is None:
        return json_error("Configuración no encontrada", 404)
    data, error = parse_body(PaymentConfigUpdate)
    if error:
        return error
    success, message, row = PaymentConfigService(get_db()).update_config(row, _changes(data))
    return _result(success, message, "config", row, serialize_payment_config)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
@admin_bp.route("/products", methods=["GET"])
def list_all_products():
    products = get_db().query(Product).order_by(desc(Product.created_at)).all()
    return jsonify([serialize_product(product) for product in products])


@admin_bp.route("/products", methods=["POST"])
def create_product():
    data, error = parse_body(ProductCreate)
    if error:
        return error
    success, message, product = CatalogService(get_db()).create_product(data.model_dump())
    return _result(success, message, "product", product, serialize_product, status=201)


@admin_bp.route("/products/<product_id>", methods=["PATCH"])
def update_product(product_id: str):
    product = get_db().get(Product, product_id)
    if product is None:
        return json_error("Producto no encontrado", 404)
    data, error = parse_body(ProductUpdate)
    if error:
        return error
    success, message, product = CatalogService(get_db()).update_product(
        product, _changes(data, CLEARABLE_PRODUCT_FIELDS)
    )
    return _result(success, message, "product", product, serialize_product)


@admin_bp.route("/products/<product_id>", methods=["DELETE"])
def delete_product(product_id: str):
    product = get_db().get(Product, product_id)
    if product is None:
        return json_error("Producto no encontrado", 404)
    success, message, product = CatalogService(get_db()).delete_product(product)
    return _result(success, message, "product", product, serialize_product)


@admin_bp.route("/categories", methods=["GET"])
def list_all_categories():
    categories = CatalogService(get_db()).list_categories(active_only=False)
    return jsonify([serialize_category(category) for category in categories])


@admin_bp.route("/categories", methods=["POST"])
def create_category():
    data, error = parse_body(CategoryCreate)
    if error:
        return error
    success, message, category = CatalogService(get_db()).create_category(data.model_dump())
    return _result(success, message, "category", category, serialize_category, status=201)


@admin_bp.route("/categories/<category_id>", methods=["PATCH"])
def update_category(category_id: str):
    category = get_db().get(Category, category_id)
    if category is None:
        return json_error("Categoría no encontrada", 404)
    data, error = parse_body(CategoryUpdate)
    if error:
        return error
    success, message, category = CatalogService(get_db()).update_category(category, _changes(data, {"emoji"}))
    return _result(success, message, "category", category, serialize_category)


# ---------------------------------------------------------------------------
# Banners and special offers
# ---------------------------------------------------------------------------
PROMOTION_ROUTES = (
    ("banners", Banner, BannerCreate, BannerUpdate, serialize_banner, "banner", "Banner no encontrado"),
    ("special-offers", SpecialOffer, SpecialOfferCreate, SpecialOfferUpdate, serialize_offer, "offer", "Oferta no encontrada"),
)


def _register_promotion_routes(
    path: str,
    model: Type,
    create_schema: Type[BaseModel],
    update_schema: Type[BaseModel],
    serializer,
    key: str,
    not_found: str,
) -> None:
    endpoint = path.replace("-", "_")

    def list_items():
        items = PromotionService(get_db()).list_all(model)
        return jsonify([serializer(item) for item in items])

    def create_item():
        data, error = parse_body(create_schema)
        if error:
            return error
        success, message, item = PromotionService(get_db()).create(model, data.model_dump())
        return _result(success, message, key, item, serializer, status=201)

    def update_item(item_id: str):
        service = PromotionService(get_db())
        item = service.get(model, item_id)
        if item is None:
            return json_error(not_found, 404)
        data, error = parse_body(update_schema)
        if error:
            return error
        success, message, item = service.update(item, _changes(data, CLEARABLE_PROMOTION_FIELDS))
        return _result(success, message, key, item, serializer)

    def delete_item(item_id: str):
        service = PromotionService(get_db())
        item = service.get(model, item_id)
        if item is None:
            return json_error(not_found, 404)
        service.delete(item)
        return jsonify({"success": True, "message": "Eliminado correctamente"})

    admin_bp.add_url_rule(f"/{path}", f"list_{endpoint}", list_items, methods=["GET"])
    admin_bp.add_url_rule(f"/{path}", f"create_{endpoint}", create_item, methods=["POST"])
    admin_bp.add_url_rule(f"/{path}/<item_id>", f"update_{endpoint}", update_item, methods=["PUT", "PATCH"])
    admin_bp.add_url_rule(f"/{path}/<item_id>", f"delete_{endpoint}", delete_item, methods=["DELETE"])


for _route in PROMOTION_ROUTES:
    _register_promotion_routes(*_route)


# ---------------------------------------------------------------------------
# Support
# ---------------------------------------------------------------------------
@admin_bp.route("/support/tickets/<ticket_id>", methods=["PATCH"])
def update_ticket(ticket_id: str):
    service = SupportService(get_db())
    ticket = service.get_ticket(ticket_id)
    if ticket is None:
        return json_error("Ticket no encontrado", 404)
    data, error = parse_body(TicketUpdate)
    if error:
        return error
    success, message, ticket = service.admin_update(ticket, data.model_dump(exclude_unset=True))
    return _result(success, message, "ticket", ticket, serialize_ticket)


@admin_bp.route("/support/stats", methods=["GET"])
def support_stats():
    return jsonify(SupportService(get_db()).stats())
