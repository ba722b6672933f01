"""Direct bank transfer orders, receipts and admin verification."""
from mercadoboom.config import Config
from mercadoboom.models import Order, OrderStatus, PaymentConfig, PaymentConfigKey, PaymentStatus, Product


def _create_transfer(client, product, quantity=2):
    return client.post(
        "/api/payments/create-direct-transfer", json={"productId": product.id, "quantity": quantity}
    )


def test_direct_transfer_returns_bank_details_and_discount(client, login, customer, product):
    login(customer)
    response = _create_transfer(client, product)
    assert response.status_code == 201
    body = response.get_json()

    order = body["order"]
    assert order["order_number"].startswith("MB-TF-")
    assert order["payment_type"] == "direct_transfer"
    assert order["original_amount"] == 1000.0
    assert order["discount_applied"] == 35.0
    assert order["total_amount"] == 965.0

    bank = body["bank_details"]
    assert bank["clabe"] == Config.BANK_CLABE
    assert bank["reference"] == order["order_number"]
    assert bank["amount"] == 965.0
    assert len(bank["instructions"]) == 4
    assert body["discount"] == {"percentage": 3.5, "text": "por evitar comisiones", "amount": 35.0}


def test_direct_transfer_uses_stored_bank_account(client, login, customer, product, db_session):
    row = db_session.query(PaymentConfig).filter_by(config_key=PaymentConfigKey.BANK_TRANSFER).one()
    row.config = '{"bank_name": "Banorte", "clabe": "072180000000000001", "account_holder": "Boom SA"}'
    db_session.commit()

    login(customer)
    bank = _create_transfer(client, product).get_json()["bank_details"]
    assert bank["bank_name"] == "Banorte"
    assert bank["clabe"] == "072180000000000001"


def test_direct_transfer_disabled(client, login, customer, product, db_session):
    row = db_session.query(PaymentConfig).filter_by(config_key=PaymentConfigKey.BANK_TRANSFER).one()
    row.is_active = False
    db_session.commit()

    login(customer)
    assert _create_transfer(client, product).status_code == 400


def test_upload_receipt_moves_order_to_verification(client, login, customer, other_customer, product):
    login(customer)
    order_id = _create_transfer(client, product).get_json()["order"]["id"]

    bad_url = client.post("/api/upload-receipt", json={"orderId": order_id, "receiptUrl": "ftp://x"})
    assert bad_url.status_code == 400

    response = client.post(
        "/api/upload-receipt",
        json={"orderId": order_id, "receiptUrl": "https://cdn.example.com/recibo.pdf"},
    )
    assert response.status_code == 200
    order = response.get_json()["order"]
    assert order["payment_status"] == "pending_verification"
    assert order["transfer_receipt_url"] == "https://cdn.example.com/recibo.pdf"

    login(other_customer)
    foreign = client.post(
        "/api/upload-receipt",
        json={"orderId": order_id, "receiptUrl": "https://cdn.example.com/otro.pdf"},
    )
    assert foreign.status_code == 404


def test_upload_receipt_only_for_transfer_orders(client, login, customer, product, gateway):
    login(customer)
    order_id = client.post(
        "/api/payments/create-preference", json={"productId": product.id}
    ).get_json()["order_id"]
    response = client.post(
        "/api/upload-receipt", json={"orderId": order_id, "receiptUrl": "https://cdn.example.com/r.pdf"}
    )
    assert response.status_code == 400


def test_admin_verifies_transfer(client, login, customer, admin, product, db_session, notifier):
    login(customer)
    order_id = _create_transfer(client, product).get_json()["order"]["id"]

    login(admin)
    pending = client.get("/api/admin/pending-transfers").get_json()
    assert [order["id"] for order in pending] == [order_id]
    assert pending[0]["user"]["username"] == customer.username

    assert client.post("/api/admin/verify-transfer", json={"orderId": order_id, "verified": "yes"}).status_code == 400

    response = client.post(
        "/api/admin/verify-transfer",
        json={"orderId": order_id, "verified": True, "notes": "SPEI recibido"},
    )
    assert response.status_code == 200
    body = response.get_json()["order"]
    assert body["payment_status"] == "verified"
    assert body["status"] == "PAGADO"
    assert body["transfer_verified_by"] == admin.id
    assert body["transfer_notes"] == "SPEI recibido"

    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 8
    assert client.get("/api/admin/pending-transfers").get_json() == []
    assert notifier.email_sender.outbox[-1]["to"] == customer.email

    # Verifying twice does not take stock again
    client.post("/api/admin/verify-transfer", json={"orderId": order_id, "verified": True})
    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 8


def test_admin_rejects_transfer(client, login, customer, admin, product, db_session):
    login(customer)
    order_id = _create_transfer(client, product).get_json()["order"]["id"]

    login(admin)
    response = client.post(
        "/api/admin/verify-transfer",
        json={"orderId": order_id, "verified": False, "notes": "Monto incorrecto"},
    )
    assert response.status_code == 200
    db_session.expire_all()
    order = db_session.get(Order, order_id)
    assert order.payment_status == PaymentStatus.REJECTED
    assert order.status == OrderStatus.PENDIENTE
    assert db_session.get(Product, product.id).stock == 10

    assert client.post(
        "/api/admin/verify-transfer", json={"orderId": "missing", "verified": True}
    ).status_code == 404


def test_verified_transfer_refuses_new_receipt(client, login, customer, admin, product):
    login(customer)
    order_id = _create_transfer(client, product).get_json()["order"]["id"]
    login(admin)
    client.post("/api/admin/verify-transfer", json={"orderId": order_id, "verified": True})

    login(customer)
    response = client.post(
        "/api/upload-receipt", json={"orderId": order_id, "receiptUrl": "https://cdn.example.com/r2.pdf"}
    )
    assert response.status_code == 400


def test_transfer_discount_configuration(client, login, admin, customer, product):
    assert client.get("/api/transfer-discount").get_json()["discount_percentage"] == 3.5

    login(admin)
    invalid = client.put("/api/admin/transfer-discount-config", json={"discountPercentage": 150})
    assert invalid.status_code == 400

    response = client.put(
        "/api/admin/transfer-discount-config",
        json={"discountPercentage": 5, "discountText": "pago directo", "isActive": True},
    )
    assert response.status_code == 200
    config = response.get_json()["config"]
    assert config["discount_percentage"] == 5.0
    assert config["updated_by"] == admin.id

    login(customer)
    order = _create_transfer(client, product).get_json()["order"]
    assert order["discount_applied"] == 50.0
    assert order["total_amount"] == 950.0


def test_transfer_discount_update_keeps_omitted_fields(client, login, admin):
    login(admin)
    client.put(
        "/api/admin/transfer-discount-config",
        json={"discountPercentage": 4, "discountText": "promoción de temporada", "isActive": False},
    )

    response = client.put("/api/admin/transfer-discount-config", json={"discountPercentage": 6})
    config = response.get_json()["config"]
    assert config["discount_percentage"] == 6.0
    assert config["discount_text"] == "promoción de temporada"
    assert config["is_active"] is False
