from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session

from mercadoboom.models import Banner, Product, SpecialOffer, as_utc, utcnow
from mercadoboom.observability import record_event
from mercadoboom.services.storage_service import ObjectStorageService

Promotion = Union[Banner, SpecialOffer]


class PromotionService:
    """Homepage banners and special offers."""

    def __init__(self, db_session: Session, storage: Optional[ObjectStorageService] = None) -> None:
        self.db = db_session
        self.storage = storage or ObjectStorageService()
        self.logger = logging.getLogger(__name__)

    def active(self, model: Type[Promotion], now: Optional[datetime] = None) -> List[Promotion]:
        """Active items whose schedule includes ``now``; missing dates leave that end open."""
        now = now or utcnow()
        return (
            self.db.query(model)
            .filter(model.is_active.is_(True))
            .filter(or_(model.start_date.is_(None), model.start_date <= now))
            .filter(or_(model.end_date.is_(None), model.end_date >= now))
            .order_by(model.display_order, model.created_at)
            .all()
        )

    def list_all(self, model: Type[Promotion]) -> List[Promotion]:
        return self.db.query(model).order_by(model.display_order, model.created_at).all()

    def get(self, model: Type[Promotion], item_id: str) -> Optional[Promotion]:
        return self.db.get(model, item_id)

    def create(self, model: Type[Promotion], data: Dict[str, Any]) -> Tuple[bool, str, Optional[Promotion]]:
        problem = self._check(model, data)
        if problem:
            return False, problem, None
        item = model(**self._normalize(data))
        self.db.add(item)
        self.db.commit()
        record_event(f"{model.__tablename__}_created", {"id": item.id})
        self.logger.info("%s %s created", model.__name__, item.id)
        return True, "Creado correctamente", item

    def update(self, item: Promotion, changes: Dict[str, Any]) -> Tuple[bool, str, Optional[Promotion]]:
        merged = {
            "start_date": changes.get("start_date", item.start_date),
            "end_date": changes.get("end_date", item.end_date),
            **({"product_id": changes["product_id"]} if changes.get("product_id") else {}),
        }
        problem = self._check(type(item), merged)
        if problem:
            return False, problem, None
        for field_name, value in self._normalize(changes).items():
            setattr(item, field_name, value)
        item.updated_at = utcnow()
        self.db.commit()
        return True, "Actualizado correctamente", item

    def delete(self, item: Promotion) -> None:
        self.db.delete(item)
        self.db.commit()
        record_event(f"{item.__tablename__}_deleted", {"id": item.id})

    def _check(self, model: Type[Promotion], data: Dict[str, Any]) -> Optional[str]:
        start, end = data.get("start_date"), data.get("end_date")
        if start is not None and end is not None and _as_utc(end) < _as_utc(start):
            return "La fecha de fin debe ser posterior a la de inicio"
        if model is SpecialOffer and data.get("product_id") and self.db.get(Product, data["product_id"]) is None:
            return "El producto de la oferta no existe"
        return None

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        normalized = dict(data)
        if normalized.get("image_url"):
            normalized["image_url"] = self.storage.normalize_object_path(normalized["image_url"])
        # Stored without offset on some backends, so keep everything in UTC
        for field_name in ("start_date", "end_date"):
            if normalized.get(field_name) is not None:
                normalized[field_name] = _as_utc(normalized[field_name])
        return normalized


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value).astimezone(timezone.utc) if value is not None else None
