from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mercadoboom.config import Config
from mercadoboom.models import PaymentConfig, PaymentConfigKey, TransferDiscountConfig

DEFAULT_PAYMENT_CONFIGS: Tuple[Dict[str, Any], ...] = (
    {
        "config_key": PaymentConfigKey.MERCADOPAGO,
        "display_name": "MercadoPago",
        "is_active": True,
        "config": {"environment": "sandbox", "currency": Config.CURRENCY_ID},
    },
    {
        "config_key": PaymentConfigKey.BANK_TRANSFER,
        "display_name": "Transferencia bancaria",
        "is_active": True,
        "config": {
            "bank_name": Config.BANK_NAME,
            "clabe": Config.BANK_CLABE,
            "account_holder": Config.BANK_ACCOUNT_HOLDER,
        },
    },
    {
        "config_key": PaymentConfigKey.CONEKTA,
        "display_name": "Conekta",
        "is_active": False,
        "config": {},
    },
)


class PaymentConfigService:
    """Admin-managed payment method switches and the direct-transfer discount."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Payment methods
    # ------------------------------------------------------------------
    def seed_defaults(self) -> int:
        created = 0
        for default in DEFAULT_PAYMENT_CONFIGS:
            if self.get_config(default["config_key"]) is not None:
                continue
            self.db.add(
                PaymentConfig(
                    config_key=default["config_key"],
                    display_name=default["display_name"],
                    is_active=default["is_active"],
                    config=json.dumps(default["config"], ensure_ascii=False),
                )
            )
            created += 1
        if created:
            self.db.commit()
            self.logger.info("Seeded %d default payment configurations", created)
        return created

    def list_configs(self) -> List[PaymentConfig]:
        return self.db.query(PaymentConfig).order_by(PaymentConfig.created_at).all()

    def get_config(self, key: PaymentConfigKey | str) -> Optional[PaymentConfig]:
        return self.db.query(PaymentConfig).filter(PaymentConfig.config_key == PaymentConfigKey(key)).first()

    def is_method_active(self, key: PaymentConfigKey | str) -> bool:
        """A method without a configuration row is considered available."""
        row = self.get_config(key)
        return True if row is None else bool(row.is_active)

    def active_methods(self) -> List[str]:
        return [PaymentConfigKey(row.config_key).value for row in self.list_configs() if row.is_active]

    def create_config(self, data: Dict[str, Any]) -> Tuple[bool, str, Optional[PaymentConfig]]:
        if self.get_config(data["config_key"]) is not None:
            return False, "Ya existe una configuración para este método de pago", None
        row = PaymentConfig(**data)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, "Ya existe una configuración para este método de pago", None
        self.logger.info("Payment config %s created", row.config_key)
        return True, "Configuración creada", row

    def update_config(self, row: PaymentConfig, changes: Dict[str, Any]) -> Tuple[bool, str, Optional[PaymentConfig]]:
        for field_name, value in changes.items():
            if value is not None:
                setattr(row, field_name, value)
        self.db.commit()
        self.logger.info(
            "Payment config %s updated", row.config_key, extra={"is_active": row.is_active}
        )
        return True, "Configuración actualizada", row

    def bank_details(self) -> Dict[str, str]:
        details = {
            "bank_name": self.config.BANK_NAME,
            "clabe": self.config.BANK_CLABE,
            "account_holder": self.config.BANK_ACCOUNT_HOLDER,
        }
        row = self.get_config(PaymentConfigKey.BANK_TRANSFER)
        if row is not None:
            stored = parse_config_json(row.config)
            details.update({key: str(stored[key]) for key in details if stored.get(key)})
        return details

    # ------------------------------------------------------------------
    # Transfer discount
    # ------------------------------------------------------------------
    def get_transfer_discount_config(self, create: bool = True) -> Optional[TransferDiscountConfig]:
        row = self.db.query(TransferDiscountConfig).order_by(TransferDiscountConfig.created_at).first()
        if row is None and create:
            row = TransferDiscountConfig(
                discount_percentage=self.config.DEFAULT_TRANSFER_DISCOUNT_PERCENT,
                discount_text=self.config.DEFAULT_TRANSFER_DISCOUNT_TEXT,
                is_active=True,
            )
            self.db.add(row)
            self.db.commit()
            self.logger.info("Default transfer discount configuration created")
        return row

    def effective_transfer_discount(self) -> TransferDiscountConfig:
        """The stored discount, or an unsaved default when none has been configured yet."""
        row = self.get_transfer_discount_config(create=False)
        if row is not None:
            return row
        return TransferDiscountConfig(
            discount_percentage=self.config.DEFAULT_TRANSFER_DISCOUNT_PERCENT,
            discount_text=self.config.DEFAULT_TRANSFER_DISCOUNT_TEXT,
            is_active=True,
        )

    def update_transfer_discount(
        self, data: Dict[str, Any], updated_by: Optional[str]
    ) -> Tuple[bool, str, Optional[TransferDiscountConfig]]:
        row = self.get_transfer_discount_config(create=True)
        row.discount_percentage = data["discount_percentage"]
        if data.get("discount_text"):
            row.discount_text = data["discount_text"]
        if data.get("is_active") is not None:
            row.is_active = data["is_active"]
        row.updated_by = updated_by
        self.db.commit()
        self.logger.info(
            "Transfer discount set to %s%% (active=%s)", row.discount_percentage, row.is_active
        )
        return True, "Configuración de descuento actualizada", row


def parse_config_json(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}
