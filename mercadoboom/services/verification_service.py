from __future__ import annotations

import hmac
import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from mercadoboom.config import Config
from mercadoboom.models import SecurityLog, TwoFactorMethod, User, as_utc, utcnow
from mercadoboom.observability import increment_counter
from mercadoboom.services.notification_service import NotificationService, get_notifier

HIGH_SECURITY_ACTIONS = frozenset({"admin_access", "large_order", "profile_change", "payment_update"})

_CHANNEL_LABELS = {"email": "email", "sms": "SMS", "whatsapp": "WhatsApp"}


def _describe(channels) -> str:
    labels = [_CHANNEL_LABELS.get(channel, channel) for channel in channels]
    if len(labels) <= 1:
        return "".join(labels)
    return ", ".join(labels[:-1]) + " y " + labels[-1]


class VerificationService:
    """Six-digit security codes for two-factor checks on sensitive actions."""

    def __init__(
        self,
        db_session: Session,
        notifier: Optional[NotificationService] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.notifier = notifier or get_notifier()
        self.config = config
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def generate_code() -> str:
        return f"{secrets.randbelow(1_000_000):06d}"

    def send_verification_code(self, user: User, action: str) -> Tuple[bool, str, Optional[str]]:
        method = TwoFactorMethod(user.two_factor_method or TwoFactorMethod.EMAIL)
        channels = method.channels

        if "sms" in channels and not user.phone:
            return False, "No hay número de teléfono registrado para verificación SMS", None
        if "whatsapp" in channels and not user.phone:
            return False, "No hay número de teléfono registrado para verificación WhatsApp", None

        code = self.generate_code()
        user.verification_code = code
        user.verification_code_expiry = utcnow() + timedelta(minutes=self.config.VERIFICATION_CODE_TTL_MINUTES)
        self.db.commit()

        sent, failed = self.notifier.send_verification_code(user, code, action, channels)
        increment_counter("verification_codes_sent_total", labels={"method": method.value, "action": action})
        if failed and not sent:
            self.logger.warning("Verification code for user %s could not be delivered", user.id)
            return False, f"Error al enviar código por {_describe(failed)}", method.value
        return True, f"Código de verificación enviado por {_describe(sent)}", method.value

    def verify_code(
        self,
        user: User,
        code: str,
        action: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[SecurityLog]]:
        method = (user.two_factor_method or TwoFactorMethod.EMAIL)
        method_value = TwoFactorMethod(method).value

        if not user.verification_code or not hmac.compare_digest(user.verification_code, code):
            self.db.add(
                SecurityLog(
                    user_id=user.id,
                    action=action,
                    method=method_value,
                    code=code[:12],
                    verified=False,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
            self.db.commit()
            increment_counter("verification_failures_total", labels={"action": action})
            return False, "Código de verificación incorrecto", None

        expiry = as_utc(user.verification_code_expiry)
        if expiry is None or utcnow() > expiry:
            return False, "Código de verificación expirado", None

        user.verification_code = None
        user.verification_code_expiry = None
        log = SecurityLog(
            user_id=user.id,
            action=action,
            method=method_value,
            code=code,
            verified=True,
            ip_address=ip_address,
            user_agent=user_agent,
            verified_at=utcnow(),
        )
        self.db.add(log)
        self.db.commit()
        increment_counter("verification_success_total", labels={"action": action})
        return True, "Código verificado correctamente", log

    def requires_verification(self, user: User, action: str) -> bool:
        return bool(user.two_factor_enabled) and action in HIGH_SECURITY_ACTIONS

    def update_two_factor_settings(
        self, user: User, enabled: bool, method: Optional[TwoFactorMethod] = None
    ) -> Tuple[bool, str, Optional[User]]:
        if method is not None:
            method = TwoFactorMethod(method)
            if any(channel in ("sms", "whatsapp") for channel in method.channels) and not user.phone:
                return False, "Registra un número de teléfono antes de usar este método", None
            user.two_factor_method = method

        user.two_factor_enabled = enabled
        self.db.commit()
        if enabled:
            active = TwoFactorMethod(user.two_factor_method or TwoFactorMethod.EMAIL).value
            return True, f"Verificación en dos pasos activada con método: {active}", user
        return True, "Verificación en dos pasos desactivada", user

    def verify_contact(self, user: User, contact_type: str, code: str) -> Tuple[bool, str, Optional[User]]:
        success, message, _ = self.verify_code(user, code, f"verify_{contact_type}")
        if not success:
            return False, message, None
        if contact_type == "email":
            user.is_email_verified = True
        else:
            user.is_phone_verified = True
        self.db.commit()
        label = "Email" if contact_type == "email" else "Teléfono"
        return True, f"{label} verificado correctamente", user
