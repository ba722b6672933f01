from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from mercadoboom.models import Category, Order, Product
from mercadoboom.observability import increment_counter, record_event
from mercadoboom.services.storage_service import ObjectStorageService


class CatalogService:
    """Categories and products, including the admin write paths."""

    def __init__(self, db_session: Session, storage: Optional[ObjectStorageService] = None) -> None:
        self.db = db_session
        self.storage = storage or ObjectStorageService()
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------
    def list_categories(self, active_only: bool = True) -> List[Category]:
        query = self.db.query(Category)
        if active_only:
            query = query.filter(Category.is_active.is_(True))
        return query.order_by(Category.name).all()

    def create_category(self, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Category]]:
        category = Category(**data)
        self.db.add(category)
        self.db.commit()
        return True, "Categoría creada", category

    def update_category(self, category: Category, changes: Dict[str, Any]) -> Tuple[bool, str, Optional[Category]]:
        for field_name, value in changes.items():
            if field_name == "name" and not value:
                continue
            setattr(category, field_name, value)
        self.db.commit()
        return True, "Categoría actualizada", category

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------
    def list_products(
        self,
        featured: bool = False,
        category_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Product]:
        query = self.db.query(Product).filter(Product.is_active.is_(True))
        if featured:
            query = query.filter(Product.is_featured.is_(True))
        if category_id:
            query = query.filter(Product.category_id == category_id)
        if search:
            query = query.filter(func.lower(Product.name).contains(search.strip().lower()))
        return query.order_by(desc(Product.created_at)).all()

    def get_product(self, product_id: str, active_only: bool = True) -> Optional[Product]:
        product = self.db.get(Product, product_id)
        if product is None or (active_only and not product.is_active):
            return None
        return product

    def create_product(self, data: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        if data.get("category_id") and not self.db.get(Category, data["category_id"]):
            return False, "La categoría no existe", None

        product = Product(**self._normalize_images(data))
        self.db.add(product)
        self.db.commit()
        increment_counter("products_created_total")
        self.logger.info("Product %s created", product.id, extra={"product_name": product.name})
        return True, "Producto creado", product

    def update_product(self, product: Product, changes: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        if changes.get("category_id") and not self.db.get(Category, changes["category_id"]):
            return False, "La categoría no existe", None

        for field_name, value in self._normalize_images(changes).items():
            setattr(product, field_name, value)
        self.db.commit()
        return True, "Producto actualizado", product

    def delete_product(self, product: Product) -> Tuple[bool, str, Optional[Product]]:
        """Delete a product; products with orders are only deactivated."""
        has_orders = self.db.query(Order.id).filter(Order.product_id == product.id).first() is not None
        if has_orders:
            product.is_active = False
            self.db.commit()
            record_event("product_deactivated", {"product_id": product.id})
            return True, "El producto tiene pedidos y fue desactivado", product

        self.db.delete(product)
        self.db.commit()
        record_event("product_deleted", {"product_id": product.id})
        return True, "Producto eliminado", None

    def _normalize_images(self, data: Dict[str, Any]) -> Dict[str, Any]:
        normalized = dict(data)
        if normalized.get("image_url"):
            normalized["image_url"] = self.storage.normalize_object_path(normalized["image_url"])
        if normalized.get("images"):
            normalized["images"] = [self.storage.normalize_object_path(url) for url in normalized["images"] if url]
        return normalized
