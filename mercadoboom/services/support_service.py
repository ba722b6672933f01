from __future__ import annotations

import logging
import secrets
import string
import time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from mercadoboom.models import (
    Order,
    SenderType,
    SupportTicket,
    TicketCategory,
    TicketMessage,
    TicketPriority,
    TicketStatus,
    User,
    utcnow,
)
from mercadoboom.observability import increment_counter, record_event
from mercadoboom.observability.business_metrics import compute_support_summary

CLOSING_STATUSES = (TicketStatus.RESUELTO, TicketStatus.CERRADO)
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_ticket_number() -> str:
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(5))
    return f"TICKET-{int(time.time() * 1000)}-{suffix}"


class SupportService:
    """Customer support tickets and their message threads."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def create_ticket(self, data: Dict[str, Any], user: Optional[User] = None) -> Tuple[bool, str, Optional[SupportTicket]]:
        email = data.get("email") or (user.email if user else None)
        name = data.get("name") or (user.full_name if user else None)
        if not email or not name:
            return False, "El email y el nombre son obligatorios", None

        order_id = data.get("order_id")
        if order_id:
            order = self.db.get(Order, order_id)
            if order is None or (user is not None and order.user_id != user.id and not user.is_admin):
                return False, "El pedido indicado no existe", None

        ticket = SupportTicket(
            ticket_number=generate_ticket_number(),
            user_id=user.id if user else None,
            email=str(email).lower(),
            name=name,
            subject=data["subject"],
            description=data["description"],
            category=data["category"],
            priority=data.get("priority") or TicketPriority.MEDIO,
            status=TicketStatus.ABIERTO,
            order_id=order_id,
            attachments=list(data.get("attachments") or []),
        )
        self.db.add(ticket)
        self.db.commit()

        increment_counter("support_tickets_created_total", labels={"category": TicketCategory(ticket.category).value})
        record_event("ticket_created", {"ticket_id": ticket.id, "ticket_number": ticket.ticket_number})
        self.logger.info("Support ticket %s opened", ticket.ticket_number, extra={"user_id": ticket.user_id})
        return True, "Ticket creado", ticket

    def list_tickets(self, user: User) -> List[SupportTicket]:
        query = self.db.query(SupportTicket)
        if not user.is_admin:
            query = query.filter(SupportTicket.user_id == user.id)
        return query.order_by(desc(SupportTicket.created_at)).all()

    def get_ticket(self, ticket_id: str) -> Optional[SupportTicket]:
        return self.db.get(SupportTicket, ticket_id)

    @staticmethod
    def can_access(user: Optional[User], ticket: SupportTicket) -> bool:
        return user is not None and (user.is_admin or ticket.user_id == user.id)

    def visible_messages(self, user: User, ticket: SupportTicket) -> List[TicketMessage]:
        if user.is_admin:
            return list(ticket.messages)
        return [message for message in ticket.messages if not message.is_internal]

    def add_message(
        self,
        user: User,
        ticket: SupportTicket,
        message: str,
        is_internal: bool = False,
        attachments: Optional[List[str]] = None,
    ) -> Tuple[bool, str, Optional[TicketMessage]]:
        if is_internal and not user.is_admin:
            return False, "Solo los administradores pueden enviar notas internas", None

        sender_type = SenderType.ADMIN if user.is_admin else SenderType.CLIENTE
        entry = TicketMessage(
            ticket_id=ticket.id,
            sender_id=user.id,
            sender_type=sender_type,
            sender_name=user.full_name,
            sender_email=user.email,
            message=message,
            attachments=list(attachments or []),
            is_internal=bool(is_internal),
        )
        self.db.add(entry)
        # Customer replies put the ticket back in the team queue
        if sender_type == SenderType.CLIENTE and ticket.status == TicketStatus.ESPERANDO_CLIENTE:
            ticket.status = TicketStatus.EN_PROCESO
        ticket.updated_at = utcnow()
        self.db.commit()

        increment_counter("support_messages_total", labels={"sender": sender_type.value})
        return True, "Mensaje enviado", entry

    def admin_update(self, ticket: SupportTicket, changes: Dict[str, Any]) -> Tuple[bool, str, Optional[SupportTicket]]:
        if changes.get("assigned_to"):
            assignee = self.db.get(User, changes["assigned_to"])
            if assignee is None or not assignee.is_admin:
                return False, "El ticket solo puede asignarse a un administrador", None
            ticket.assigned_to = assignee.id

        new_status = TicketStatus(changes["status"])
        previous = ticket.status
        ticket.status = new_status
        for field_name in ("admin_notes", "resolution"):
            if changes.get(field_name) is not None:
                setattr(ticket, field_name, changes[field_name])
        if new_status in CLOSING_STATUSES and ticket.resolved_at is None:
            ticket.resolved_at = utcnow()
        self.db.commit()

        record_event(
            "ticket_updated",
            {"ticket_id": ticket.id, "from": TicketStatus(previous).value if previous else None, "to": new_status.value},
        )
        self.logger.info("Ticket %s moved to %s", ticket.ticket_number, new_status.value)
        return True, "Ticket actualizado", ticket

    def stats(self) -> Dict[str, Optional[float]]:
        return compute_support_summary(self.db)
