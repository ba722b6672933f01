from __future__ import annotations

import hmac
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from mercadoboom.config import Config
from mercadoboom.models import User, utcnow
from mercadoboom.observability import increment_counter, record_event
from mercadoboom.services.notification_service import (
    NotificationDeliveryError,
    NotificationService,
    get_notifier,
)

BLOCKED_MESSAGE = "Tu cuenta ha sido bloqueada. Contacta con el administrador."
INVALID_CREDENTIALS = "Credenciales inválidas"
INVALID_RESET_TOKEN = "Token de recuperación inválido o expirado"
RESET_SENT_MESSAGES = {
    "email": "Si la cuenta existe, te enviamos un correo con el token de recuperación.",
    "sms": "Si la cuenta existe, te enviamos un SMS con el token de recuperación.",
}


class UserService:
    """Accounts: registration, login, password recovery, profile and admin moderation."""

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

    # ------------------------------------------------------------------
    # Registration & login
    # ------------------------------------------------------------------
    def register(
        self,
        username: str,
        email: str,
        password: str,
        full_name: str,
        phone: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[User]]:
        if self._find_by_username(username):
            return False, "El nombre de usuario ya existe", None
        if self._find_by_email(email):
            return False, "El email ya está registrado", None

        user = User(
            username=username,
            email=email.lower(),
            password_hash=generate_password_hash(password),
            full_name=full_name,
            phone=phone,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, "El nombre de usuario o email ya está registrado", None

        increment_counter("users_registered_total")
        self.logger.info("User %s registered", user.id, extra={"username": username})
        return True, "Usuario registrado", user

    def authenticate(self, username: str, password: str) -> Tuple[bool, str, Optional[User]]:
        user = self._find_by_username(username)
        if user and user.is_blocked:
            increment_counter("login_failures_total", labels={"reason": "blocked"})
            self.logger.warning("Blocked user %s attempted to log in", user.id)
            return False, BLOCKED_MESSAGE, None
        if not user or not check_password_hash(user.password_hash, password):
            increment_counter("login_failures_total", labels={"reason": "credentials"})
            return False, INVALID_CREDENTIALS, None

        increment_counter("logins_total")
        return True, "Sesión iniciada", user

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------
    def request_password_reset(self, identifier: str, method: str) -> Tuple[bool, str, Optional[str]]:
        """
        Issue a reset token and deliver it by email or SMS.

        Unknown identifiers still report success so the endpoint cannot be used
        to enumerate accounts. Raises NotificationDeliveryError when the
        provider fails. The answer and channel depend only on
        the requested method, never on whether the account exists.
        """
        channel = "sms" if method == "phone" else "email"
        message = RESET_SENT_MESSAGES[channel]
        user = self.find_by_identifier(identifier, method)
        if not user:
            self.logger.info("Password reset requested for unknown %s", method)
            return True, message, channel

        if channel == "sms" and not user.phone:
            return False, "No hay número de teléfono registrado para esta cuenta", None

        user.reset_token = secrets.token_hex(32)
        user.reset_token_expiry = utcnow() + timedelta(hours=self.config.RESET_TOKEN_TTL_HOURS)
        self.db.commit()

        delivered, error = self.notifier.send_password_reset(user, user.reset_token, channel)
        if not delivered:
            record_event("password_reset_delivery_failed", {"user_id": user.id, "channel": channel})
            raise NotificationDeliveryError(error or "No se pudo enviar el token de recuperación")

        increment_counter("password_resets_requested_total", labels={"channel": channel})
        return True, message, channel

    def confirm_password_reset(
        self,
        identifier: str,
        method: str,
        reset_token: str,
        new_password: str,
    ) -> Tuple[bool, str, Optional[User]]:
        user = self.find_by_identifier(identifier, method)
        if not user or not user.reset_token:
            return False, INVALID_RESET_TOKEN, None
        if not hmac.compare_digest(user.reset_token, reset_token) or not user.reset_token_is_valid(reset_token):
            return False, INVALID_RESET_TOKEN, None

        user.password_hash = generate_password_hash(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        self.db.commit()
        increment_counter("password_resets_completed_total")
        self.logger.info("Password reset completed for user %s", user.id)
        return True, "Contraseña actualizada correctamente", user

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------
    def update_profile(self, user: User, changes: Dict[str, Any]) -> Tuple[bool, str, Optional[User]]:
        username = changes.get("username")
        if username and username != user.username:
            existing = self._find_by_username(username)
            if existing and existing.id != user.id:
                return False, "El nombre de usuario ya está en uso", None

        email = changes.get("email")
        if email:
            email = email.lower()
            changes["email"] = email
            existing = self._find_by_email(email)
            if existing and existing.id != user.id:
                return False, "El email ya está en uso", None
            if email != user.email:
                user.is_email_verified = False

        if "phone" in changes and changes["phone"] != user.phone:
            user.is_phone_verified = False

        for field_name in ("username", "email", "full_name"):
            if changes.get(field_name):
                setattr(user, field_name, changes[field_name])
        if "phone" in changes:
            user.phone = changes["phone"] or None

        self.db.commit()
        return True, "Perfil actualizado", user

    # ------------------------------------------------------------------
    # Admin moderation
    # ------------------------------------------------------------------
    def set_password(self, user: User, new_password: str) -> Tuple[bool, str, Optional[User]]:
        if len(new_password or "") < self.config.MIN_PASSWORD_LENGTH:
            return False, f"La contraseña debe tener al menos {self.config.MIN_PASSWORD_LENGTH} caracteres", None
        user.password_hash = generate_password_hash(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        self.db.commit()
        self.logger.info("Password for user %s reset by an administrator", user.id)
        return True, "Contraseña actualizada correctamente", user

    def block_user(self, admin: User, user: User, reason: str) -> Tuple[bool, str, Optional[User]]:
        if not reason or not reason.strip():
            return False, "El motivo del bloqueo es requerido", None
        if admin.id == user.id:
            return False, "No puedes bloquear tu propia cuenta", None

        user.is_blocked = True
        user.block_reason = reason.strip()
        user.blocked_at = utcnow()
        user.blocked_by = admin.id
        self.db.commit()
        increment_counter("users_blocked_total")
        record_event("user_blocked", {"user_id": user.id, "blocked_by": admin.id})
        return True, "Usuario bloqueado correctamente", user

    def unblock_user(self, user: User) -> Tuple[bool, str, Optional[User]]:
        user.is_blocked = False
        user.block_reason = None
        user.blocked_at = None
        user.blocked_by = None
        self.db.commit()
        record_event("user_unblocked", {"user_id": user.id})
        return True, "Usuario desbloqueado correctamente", user

    def ensure_admin_account(self) -> User:
        """Create or promote the configured administrator account."""
        admin = self._find_by_username(self.config.ADMIN_USERNAME)
        if admin is None:
            admin = User(
                username=self.config.ADMIN_USERNAME,
                email=self.config.ADMIN_EMAIL.lower(),
                password_hash=generate_password_hash(self.config.ADMIN_PASSWORD),
                full_name=self.config.ADMIN_FULL_NAME,
                is_admin=True,
            )
            self.db.add(admin)
            self.logger.info("Administrator account %s created", self.config.ADMIN_USERNAME)
        elif not admin.is_admin:
            admin.is_admin = True
            self.logger.info("Existing user %s promoted to administrator", admin.username)
        self.db.commit()
        return admin

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def find_by_identifier(self, identifier: str, method: str) -> Optional[User]:
        identifier = (identifier or "").strip()
        if method == "email":
            return self._find_by_email(identifier)
        if method == "phone":
            return self.db.query(User).filter(User.phone == identifier).first()
        return self._find_by_username(identifier)

    def _find_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(func.lower(User.email) == (email or "").lower()).first()
