"""Startup data every installation needs: the admin account and payment settings."""

import logging

from sqlalchemy.orm import Session

from mercadoboom.services.payment_config_service import PaymentConfigService
from mercadoboom.services.user_service import UserService

logger = logging.getLogger(__name__)


def seed_defaults(session: Session) -> None:
    admin = UserService(session).ensure_admin_account()
    configs = PaymentConfigService(session)
    created = configs.seed_defaults()
    configs.get_transfer_discount_config(create=True)
    logger.info(
        "Startup data ready",
        extra={"admin_username": admin.username, "payment_configs_created": created},
    )
