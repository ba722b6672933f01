"""Back-office endpoints under /api/admin."""
from mercadoboom.models import Order, OrderStatus, PaymentStatus, PaymentType, Product, User
from mercadoboom.services.order_service import OrderService


def test_admin_routes_require_admin(client, login, customer):
    assert client.get("/api/admin/users").status_code == 401
    login(customer)
    response = client.get("/api/admin/stats")
    assert response.status_code == 403
    assert response.get_json()["error"] == "Acceso de administrador requerido"


def test_block_and_unblock_user(client, login, admin, customer, db_session):
    login(admin)
    assert client.post(f"/api/admin/users/{customer.id}/block", json={"reason": ""}).status_code == 400

    response = client.post(f"/api/admin/users/{customer.id}/block", json={"reason": "Contracargos"})
    assert response.status_code == 200
    user = response.get_json()["user"]
    assert user["is_blocked"] is True
    assert user["block_reason"] == "Contracargos"
    assert user["blocked_by"] == admin.id

    listed = {item["id"]: item for item in client.get("/api/admin/users").get_json()}
    assert listed[customer.id]["is_blocked"] is True
    assert "password_hash" not in listed[customer.id]

    response = client.post(f"/api/admin/users/{customer.id}/unblock")
    assert response.get_json()["user"]["is_blocked"] is False
    db_session.expire_all()
    assert db_session.get(User, customer.id).blocked_at is None


def test_admin_cannot_block_self(client, login, admin):
    login(admin)
    response = client.post(f"/api/admin/users/{admin.id}/block", json={"reason": "prueba"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "No puedes bloquear tu propia cuenta"
    assert client.post("/api/admin/users/missing/block", json={"reason": "x"}).status_code == 404


def test_admin_sets_user_password(client, login, admin, customer):
    login(admin)
    short = client.put(f"/api/admin/users/{customer.id}/password", json={"newPassword": "123"})
    assert short.status_code == 400

    assert client.put(f"/api/admin/users/{customer.id}/password", json={"newPassword": "cambiada1"}).status_code == 200
    client.post("/api/logout")
    login_response = client.post("/api/login", json={"username": customer.username, "password": "cambiada1"})
    assert login_response.status_code == 200


def test_order_status_and_shipping_updates(client, login, admin, customer, product, db_session):
    _, _, order = OrderService(db_session).create_order(customer, product, 2)
    login(admin)

    invalid = client.patch(f"/api/admin/orders/{order.id}/status", json={"status": "PERDIDO"})
    assert invalid.status_code == 400

    response = client.patch(f"/api/admin/orders/{order.id}/status", json={"status": "PAGADO", "note": "Pago en tienda"})
    assert response.status_code == 200
    body = response.get_json()["order"]
    assert body["status"] == "PAGADO"
    assert body["status_history"][-1]["changed_by"] == admin.id
    assert body["status_history"][-1]["note"] == "Pago en tienda"

    shipping = client.patch(
        f"/api/admin/orders/{order.id}/shipping",
        json={"trackingNumber": "DHL123", "courierService": "DHL", "estimatedDelivery": "2026-11-02T18:00:00Z"},
    )
    assert shipping.status_code == 200
    assert shipping.get_json()["order"]["tracking_number"] == "DHL123"

    db_session.expire_all()
    assert db_session.get(Product, product.id).stock == 8
    assert client.patch("/api/admin/orders/missing/status", json={"status": "PAGADO"}).status_code == 404

    orders = client.get("/api/admin/orders").get_json()
    assert orders[0]["user"]["id"] == customer.id


def test_store_stats(client, login, admin, customer, product, db_session):
    service = OrderService(db_session)
    _, _, paid = service.create_order(customer, product, 1)
    service.create_order(customer, product, 1, payment_type=PaymentType.DIRECT_TRANSFER)
    service.update_status(paid, OrderStatus.PAGADO)

    login(admin)
    stats = client.get("/api/admin/stats").get_json()
    # The seeded administrator counts too
    assert stats["total_users"] == 3
    assert stats["total_orders"] == 2
    assert stats["pending_orders"] == 1
    assert stats["total_sales"] == 599.0
    assert len(stats["sales_by_day"]) == 30
    assert sum(day["orders"] for day in stats["sales_by_day"]) == 1


def test_refunded_orders_leave_sales_totals(client, login, admin, customer, product, db_session):
    service = OrderService(db_session)
    _, _, kept = service.create_order(customer, product, 1)
    _, _, refunded = service.create_order(customer, product, 2)
    service.update_status(kept, OrderStatus.PAGADO)
    service.update_status(refunded, OrderStatus.PAGADO)
    refunded.payment_status = PaymentStatus.REFUNDED
    db_session.commit()

    login(admin)
    stats = client.get("/api/admin/stats").get_json()
    assert stats["total_sales"] == 599.0
    assert sum(day["orders"] for day in stats["sales_by_day"]) == 1
    assert sum(day["revenue"] for day in stats["sales_by_day"]) == 599.0


def test_metrics_endpoint(client, login, admin):
    login(admin)
    client.get("/api/products")
    snapshot = client.get("/api/admin/metrics").get_json()
    assert "http_requests_total" in snapshot["counters"]


def test_payment_config_management(client, login, admin):
    login(admin)
    configs = client.get("/api/admin/payment-config").get_json()
    assert {row["config_key"] for row in configs} == {"mercadopago", "bank_transfer", "conekta"}

    duplicate = client.post(
        "/api/admin/payment-config",
        json={"configKey": "mercadopago", "displayName": "MP", "config": {}},
    )
    assert duplicate.status_code == 400

    invalid_json = client.post(
        "/api/admin/payment-config",
        json={"configKey": "conekta", "displayName": "Conekta", "config": "{no es json"},
    )
    assert invalid_json.status_code == 400

    conekta = next(row for row in configs if row["config_key"] == "conekta")
    response = client.patch(
        f"/api/admin/payment-config/{conekta['id']}",
        json={"isActive": True, "config": {"public_key": "key_test"}},
    )
    assert response.status_code == 200
    assert response.get_json()["config"]["config"] == {"public_key": "key_test"}
    assert "conekta" in client.get("/api/payments/config").get_json()["active_payment_methods"]


def test_product_crud(client, login, admin, category, db_session):
    login(admin)
    created = client.post(
        "/api/admin/products",
        json={"name": "Smartwatch", "price": "1299.90", "stock": 5, "categoryId": category.id, "isFeatured": True},
    )
    assert created.status_code == 201
    product = created.get_json()["product"]
    assert product["price"] == 1299.9
    assert product["category"]["name"] == "Electrónica"

    assert client.post("/api/admin/products", json={"name": "Sin precio"}).status_code == 400
    assert client.post(
        "/api/admin/products", json={"name": "X", "price": 10, "categoryId": "missing"}
    ).status_code == 400

    updated = client.patch(
        f"/api/admin/products/{product['id']}", json={"stock": 12, "description": None, "name": None}
    )
    assert updated.status_code == 200
    assert updated.get_json()["product"]["stock"] == 12
    assert updated.get_json()["product"]["name"] == "Smartwatch"

    deleted = client.delete(f"/api/admin/products/{product['id']}")
    assert deleted.get_json()["message"] == "Producto eliminado"
    assert db_session.get(Product, product["id"]) is None


def test_deleting_product_with_orders_deactivates_it(client, login, admin, customer, product, db_session):
    OrderService(db_session).create_order(customer, product, 1)
    login(admin)

    response = client.delete(f"/api/admin/products/{product.id}")
    assert response.status_code == 200
    assert response.get_json()["product"]["is_active"] is False
    db_session.expire_all()
    assert db_session.query(Order).count() == 1
    assert client.get(f"/api/products/{product.id}").status_code == 404
    assert product.id in {row["id"] for row in client.get("/api/admin/products").get_json()}


def test_category_management(client, login, admin):
    login(admin)
    created = client.post("/api/admin/categories", json={"name": "Hogar", "emoji": "🏠"})
    assert created.status_code == 201
    category_id = created.get_json()["category"]["id"]

    client.patch(f"/api/admin/categories/{category_id}", json={"isActive": False})
    assert client.get("/api/categories").get_json() == []
    assert len(client.get("/api/admin/categories").get_json()) == 1
