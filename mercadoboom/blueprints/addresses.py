from __future__ import annotations

from typing import Optional

from flask import Blueprint, jsonify
from sqlalchemy import desc

from mercadoboom.blueprints.common import (
    current_user,
    ensure_authenticated,
    json_error,
    parse_body,
)
from mercadoboom.blueprints.serializers import serialize_address
from mercadoboom.database import get_db
from mercadoboom.models import Address, Order
from mercadoboom.schemas import AddressCreate, AddressUpdate

addresses_bp = Blueprint("addresses", __name__, url_prefix="/api/addresses")


def _owned_address(address_id: str) -> Optional[Address]:
    address = get_db().get(Address, address_id)
    if address is None or address.user_id != current_user().id:
        return None
    return address


def _clear_other_defaults(address: Address) -> None:
    db = get_db()
    (
        db.query(Address)
        .filter(Address.user_id == address.user_id, Address.id != address.id)
        .update({Address.is_default: False}, synchronize_session="fetch")
    )


@addresses_bp.route("", methods=["GET"])
def list_addresses():
    denied = ensure_authenticated()
    if denied:
        return denied
    addresses = (
        get_db()
        .query(Address)
        .filter(Address.user_id == current_user().id)
        .order_by(desc(Address.is_default), Address.title)
        .all()
    )
    return jsonify([serialize_address(address) for address in addresses])


@addresses_bp.route("", methods=["POST"])
def create_address():
    denied = ensure_authenticated()
    if denied:
        return denied
    data, error = parse_body(AddressCreate)
    if error:
        return error

    db = get_db()
    address = Address(user_id=current_user().id, **data.model_dump())
    db.add(address)
    db.flush()
    if address.is_default:
        _clear_other_defaults(address)
    db.commit()
    return jsonify(serialize_address(address)), 201


@addresses_bp.route("/<address_id>", methods=["PATCH"])
def update_address(address_id: str):
    denied = ensure_authenticated()
    if denied:
        return denied
    address = _owned_address(address_id)
    if address is None:
        return json_error("Dirección no encontrada", 404)
    data, error = parse_body(AddressUpdate)
    if error:
        return error

    for field_name, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(address, field_name, value)
    if address.is_default:
        _clear_other_defaults(address)
    get_db().commit()
    return jsonify(serialize_address(address))


@addresses_bp.route("/<address_id>", methods=["DELETE"])
def delete_address(address_id: str):
    denied = ensure_authenticated()
    if denied:
        return denied
    address = _owned_address(address_id)
    if address is None:
        return json_error("Dirección no encontrada", 404)

    db = get_db()
    if db.query(Order.id).filter(Order.shipping_address_id == address.id).first() is not None:
        return json_error("La dirección está asociada a pedidos y no puede eliminarse", 400)
    db.delete(address)
    db.commit()
    return jsonify({"success": True, "message": "Dirección eliminada"})
