"""
Outbound customer notifications.

Email goes through Resend and SMS/WhatsApp through Twilio. When a provider
is not configured the message is only logged and reported as delivered.

A single process-wide ``NotificationService`` is shared by the blueprints;
``set_notifier`` swaps it (tests inject stub senders this way).
"""
from __future__ import annotations

import logging
from threading import Lock
from typing import Iterable, List, Optional, Tuple

import bleach
import resend
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

from mercadoboom.config import Config
from mercadoboom.models import Order, User
from mercadoboom.observability import increment_counter, record_event

SendResult = Tuple[bool, Optional[str]]


class NotificationDeliveryError(RuntimeError):
    """Raised when a provider refused or failed to deliver a required message."""


class EmailSender:
    """Thin wrapper over ``resend.Emails.send``."""

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None) -> None:
        self.api_key = (api_key if api_key is not None else Config.RESEND_API_KEY).strip()
        self.sender = sender or Config.EMAIL_FROM
        self.logger = logging.getLogger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> SendResult:
        if not self.configured:
            self.logger.info("Email delivery simulated", extra={"to": to, "subject": subject})
            return True, None

        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        if text:
            payload["text"] = text

        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:  # resend raises its own errors plus transport errors
            self.logger.exception("Resend rejected email to %s", to)
            return False, str(exc)

        if not isinstance(response, dict) or not response.get("id"):
            return False, str(response)
        self.logger.info("Email sent", extra={"to": to, "subject": subject, "email_id": response["id"]})
        return True, None


class SmsSender:
    """SMS and WhatsApp delivery through the Twilio REST client."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        messaging_service_sid: Optional[str] = None,
        whatsapp_number: Optional[str] = None,
        client: Optional[TwilioClient] = None,
    ) -> None:
        self.account_sid = account_sid if account_sid is not None else Config.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else Config.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else Config.TWILIO_PHONE_NUMBER
        self.messaging_service_sid = (
            messaging_service_sid if messaging_service_sid is not None else Config.TWILIO_MESSAGING_SERVICE_SID
        )
        self.whatsapp_number = whatsapp_number if whatsapp_number is not None else Config.TWILIO_WHATSAPP_NUMBER
        self._client = client
        self.logger = logging.getLogger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self._client or (self.account_sid and self.auth_token))

    @property
    def client(self) -> TwilioClient:
        if self._client is None:
            self._client = TwilioClient(self.account_sid, self.auth_token)
        return self._client

    def send_sms(self, to: str, body: str) -> SendResult:
        if not self.configured:
            self.logger.info("SMS delivery simulated", extra={"to": to})
            return True, None

        options = {"body": body, "to": to}
        if self.messaging_service_sid:
            options["messaging_service_sid"] = self.messaging_service_sid
        elif self.from_number:
            options["from_"] = self.from_number
        else:
            return False, "No hay número de origen ni servicio de mensajería configurado"
        return self._create(options)

    def send_whatsapp(self, to: str, body: str) -> SendResult:
        if not self.configured:
            self.logger.info("WhatsApp delivery simulated", extra={"to": to})
            return True, None

        sender = self.whatsapp_number or self.from_number
        if not sender:
            return False, "No hay número de WhatsApp configurado"
        return self._create({"body": body, "to": _whatsapp(to), "from_": _whatsapp(sender)})

    def _create(self, options: dict) -> SendResult:
        try:
            message = self.client.messages.create(**options)
        except TwilioRestException as exc:
            self.logger.error(
                "Twilio error %s while messaging %s: %s", exc.code, options.get("to"), exc.msg
            )
            return False, f"Twilio {exc.code}: {exc.msg}"
        self.logger.info("Message sent", extra={"to": options.get("to"), "sid": message.sid})
        return True, None


def _whatsapp(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


def _plain(value: Optional[str]) -> str:
    """Customer-supplied text with any markup stripped, safe to embed in email HTML."""
    return bleach.clean(value or "", tags=[], strip=True)


class NotificationService:
    """Composes MercadoBoom messages and routes them to the right channel."""

    def __init__(self, email_sender: Optional[EmailSender] = None, sms_sender: Optional[SmsSender] = None) -> None:
        self.email_sender = email_sender or EmailSender()
        self.sms_sender = sms_sender or SmsSender()
        self.logger = logging.getLogger(__name__)

    def send_password_reset(self, user: User, token: str, channel: str) -> SendResult:
        hours = Config.RESET_TOKEN_TTL_HOURS
        if channel == "sms":
            if not user.phone:
                return False, "El usuario no tiene teléfono registrado"
            body = (
                f"MercadoBoom: tu código de recuperación es {token}. "
                f"Válido por {hours} horas. Si no lo solicitaste, ignora este mensaje."
            )
            result = self.sms_sender.send_sms(user.phone, body)
        else:
            reset_link = f"{Config.APP_URL}/auth?reset=1&token={token}"
            html = (
                f"<h2>Hola {_plain(user.full_name)},</h2>"
                "<p>Recibimos una solicitud para restablecer la contraseña de tu cuenta MercadoBoom.</p>"
                f"<p>Tu token de recuperación es:</p><p><strong>{token}</strong></p>"
                f'<p>También puedes usar este enlace: <a href="{reset_link}">{reset_link}</a></p>'
                f"<p>El token expira en {hours} horas. Si no solicitaste el cambio, ignora este correo.</p>"
            )
            result = self.email_sender.send(
                user.email,
                "Recupera tu contraseña de MercadoBoom",
                html,
                text=f"Tu token de recuperación de MercadoBoom es {token}. Expira en {hours} horas.",
            )
        self._track("password_reset", channel, result)
        return result

    def send_verification_code(
        self, user: User, code: str, action: str, channels: Iterable[str]
    ) -> Tuple[List[str], List[str]]:
        """Deliver a security code on each channel. Returns (sent, failed)."""
        minutes = Config.VERIFICATION_CODE_TTL_MINUTES
        sent: List[str] = []
        failed: List[str] = []
        for channel in channels:
            if channel == "email":
                result = self.email_sender.send(
                    user.email,
                    "Código de seguridad MercadoBoom",
                    f"<p>Tu código de seguridad para <strong>{_plain(action)}</strong> es:</p>"
                    f"<h1>{code}</h1><p>Este código expira en {minutes} minutos.</p>",
                    text=f"Tu código de seguridad para {action} es {code}. Expira en {minutes} minutos.",
                )
            elif channel == "sms":
                result = self.sms_sender.send_sms(
                    user.phone or "", f"MercadoBoom - Código de seguridad: {code}. Expira en {minutes} minutos."
                )
            elif channel == "whatsapp":
                result = self.sms_sender.send_whatsapp(
                    user.phone or "",
                    f"MercadoBoom - Tu código de seguridad es: {code}. Válido por {minutes} minutos.",
                )
            else:
                result = (False, f"Canal desconocido: {channel}")
            self._track("verification_code", channel, result)
            (sent if result[0] else failed).append(channel)
        return sent, failed

    def send_order_confirmation(self, order: Order) -> SendResult:
        user = order.user
        if user is None:
            return False, "Pedido sin usuario"
        product_name = order.product.name if order.product else "tu producto"
        html = (
            f"<h2>¡Gracias por tu compra, {_plain(user.full_name)}!</h2>"
            f"<p>Confirmamos el pago de tu pedido <strong>{order.order_number}</strong>.</p>"
            f"<p>{order.quantity} × {_plain(product_name)}, total ${order.total_amount} MXN.</p>"
            f"<p>Puedes seguir el estado de tu pedido en {Config.APP_URL}/user-dashboard.</p>"
        )
        result = self.email_sender.send(user.email, f"Pedido {order.order_number} confirmado", html)
        self._track("order_confirmation", "email", result)
        return result

    def _track(self, kind: str, channel: str, result: SendResult) -> None:
        outcome = "sent" if result[0] else "failed"
        increment_counter("notifications_total", labels={"kind": kind, "channel": channel, "outcome": outcome})
        if not result[0]:
            record_event("notification_failed", {"kind": kind, "channel": channel, "error": result[1]})


_notifier: Optional[NotificationService] = None
_notifier_lock = Lock()


def get_notifier() -> NotificationService:
    global _notifier
    if _notifier is None:
        with _notifier_lock:
            if _notifier is None:
                _notifier = NotificationService()
    return _notifier


def set_notifier(notifier: Optional[NotificationService]) -> None:
    """Replace the shared notifier; ``None`` rebuilds it from Config on next use."""
    global _notifier
    with _notifier_lock:
        _notifier = notifier
