from __future__ import annotations

from flask import Blueprint, jsonify

from mercadoboom.blueprints.serializers import serialize_banner, serialize_offer
from mercadoboom.database import get_db
from mercadoboom.models import Banner, SpecialOffer
from mercadoboom.services.promotion_service import PromotionService

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api")


def _get_promotion_service() -> PromotionService:
    return PromotionService(get_db())


@promotions_bp.route("/banners", methods=["GET"])
def active_banners():
    banners = _get_promotion_service().active(Banner)
    return jsonify([serialize_banner(banner) for banner in banners])


@promotions_bp.route("/special-offers", methods=["GET"])
def active_offers():
    offers = _get_promotion_service().active(SpecialOffer)
    return jsonify([serialize_offer(offer) for offer in offers])
