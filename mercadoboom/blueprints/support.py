from __future__ import annotations

from flask import Blueprint, jsonify

from mercadoboom.blueprints.common import (
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import serialize_message, serialize_ticket
from mercadoboom.database import get_db
from mercadoboom.schemas import TicketCreate, TicketMessageCreate
from mercadoboom.services.support_service import SupportService

support_bp = Blueprint("support", __name__, url_prefix="/api/support")


def _get_support_service() -> SupportService:
    return SupportService(get_db())


def _accessible_ticket(service: SupportService, ticket_id: str):
    """Returns (ticket, None) or (None, error response)."""
    ticket = service.get_ticket(ticket_id)
    if ticket is None:
        return None, json_error("Ticket no encontrado", 404)
    if not service.can_access(current_user(), ticket):
        return None, json_error("No tienes acceso a este ticket", 403)
    return ticket, None


@support_bp.route("/tickets", methods=["POST"])
def create_ticket():
    data, error = parse_body(TicketCreate)
    if error:
        return error

    payload = data.model_dump()
    if payload.get("email") is not None:
        payload["email"] = str(payload["email"])
    success, message, ticket = _get_support_service().create_ticket(payload, user=current_user())
    if not success:
        return json_error(message, 400)
    return jsonify({"success": True, "message": message, "ticket": serialize_ticket(ticket)}), 201


@support_bp.route("/tickets", methods=["GET"])
def list_tickets():
    denied = ensure_authenticated()
    if denied:
        return denied
    tickets = _get_support_service().list_tickets(current_user())
    return jsonify([serialize_ticket(ticket) for ticket in tickets])


@support_bp.route("/tickets/<ticket_id>", methods=["GET"])
def get_ticket(ticket_id: str):
    denied = ensure_authenticated()
    if denied:
        return denied
    service = _get_support_service()
    ticket, error = _accessible_ticket(service, ticket_id)
    if error:
        return error
    messages = service.visible_messages(current_user(), ticket)
    return jsonify(
        {
            "ticket": serialize_ticket(ticket),
            "messages": [serialize_message(message) for message in messages],
        }
    )


@support_bp.route("/tickets/<ticket_id>/messages", methods=["POST"])
def add_message(ticket_id: str):
    denied = ensure_authenticated()
    if denied:
        return denied
    service = _get_support_service()
    ticket, error = _accessible_ticket(service, ticket_id)
    if error:
        return error
    data, error = parse_body(TicketMessageCreate)
    if error:
        return error

    success, message, entry = service.add_message(
        current_user(), ticket, data.message, is_internal=data.is_internal, attachments=data.attachments
    )
    if not success:
        return json_error(message, 403)
    return jsonify({"success": True, "message": message, "ticket_message": serialize_message(entry)}), 201
