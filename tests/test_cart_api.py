from decimal import Decimal

from mercadoboom.models import Order, OrderStatus, Product


def _add(client, product, quantity=1):
    return client.post("/api/cart/items", json={"productId": product.id, "quantity": quantity})


def test_cart_totals(client, product, make_product):
    cable = make_product(name="Cable", price=Decimal("150.00"), free_shipping=True)
    _add(client, product)
    response = _add(client, cable, 2)
    assert response.status_code == 200

    cart = response.get_json()
    assert cart["item_count"] == 3
    assert cart["subtotal"] == 800.0
    assert cart["shipping_cost"] == 99.0
    assert cart["total"] == 899.0
    assert cart["transfer_discount"] == 28.0
    assert cart["total_with_transfer"] == 871.0
    assert {line["product"]["name"] for line in cart["items"]} == {"Audífonos Boom", "Cable"}


def test_add_is_capped_at_stock(client, make_product):
    scarce = make_product(name="Edición limitada", stock=2)
    _add(client, scarce, 1)
    response = _add(client, scarce, 5)
    assert response.status_code == 200
    assert response.get_json()["message"] == "Solo hay 2 unidades disponibles"
    assert response.get_json()["items"][0]["quantity"] == 2


def test_add_rejects_unavailable_products(client, make_product):
    assert _add(client, make_product(name="Agotado", stock=0)).status_code == 400
    assert _add(client, make_product(name="Afiliado", is_affiliate=True)).status_code == 400
    assert client.post("/api/cart/items", json={"productId": "missing"}).status_code == 400


def test_update_and_remove_lines(client, product):
    _add(client, product, 1)
    response = client.patch(f"/api/cart/items/{product.id}", json={"quantity": 3})
    assert response.get_json()["items"][0]["quantity"] == 3

    response = client.patch(f"/api/cart/items/{product.id}", json={"quantity": 0})
    assert response.status_code == 200
    assert response.get_json()["items"] == []

    assert client.patch(f"/api/cart/items/{product.id}", json={"quantity": 1}).status_code == 404
    assert client.delete(f"/api/cart/items/{product.id}").status_code == 404

    _add(client, product, 1)
    assert client.delete("/api/cart").get_json()["item_count"] == 0


def test_checkout_requires_items_and_login(client, login, customer, gateway):
    assert client.post("/api/cart/checkout", json={}).status_code == 401
    login(customer)
    response = client.post("/api/cart/checkout", json={"paymentType": "mercadopago"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "El carrito está vacío"


def test_checkout_with_mercadopago_groups_orders(client, login, customer, product, make_product, gateway, db_session):
    speaker = make_product(name="Bocina", price=Decimal("250.00"))
    login(customer)
    _add(client, product)
    _add(client, speaker, 2)

    response = client.post("/api/cart/checkout", json={"paymentType": "mercadopago"})
    assert response.status_code == 201
    body = response.get_json()
    reference = body["checkout_reference"]
    assert reference.startswith("CHK-")
    assert len(body["orders"]) == 2
    assert body["payment"]["checkout_reference"] == reference
    assert body["payment"]["amount"] == 599.0 + 599.0

    preference = gateway.preferences[0]
    assert preference["external_reference"] == reference
    assert preference["items"][-1] == {
        "id": "shipping",
        "title": "Envío",
        "quantity": 1,
        "currency_id": "MXN",
        "unit_price": 198.0,
    }

    assert client.get("/api/cart").get_json()["items"] == []

    # One approved payment settles every order in the checkout
    gateway.add_payment("60001", reference)
    client.post("/api/payments/webhook", json={"type": "payment", "data": {"id": "60001"}})
    db_session.expire_all()
    orders = db_session.query(Order).filter_by(checkout_reference=reference).all()
    assert {order.status for order in orders} == {OrderStatus.PAGADO}
    assert db_session.get(Product, speaker.id).stock == 8


def test_checkout_by_transfer_returns_bank_details(client, login, customer, product):
    login(customer)
    _add(client, product, 2)
    response = client.post("/api/cart/checkout", json={"paymentType": "direct_transfer"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["bank_details"]["reference"] == body["checkout_reference"]
    assert body["bank_details"]["amount"] == 965.0
    assert body["discount"]["amount"] == 35.0
    assert body["orders"][0]["payment_type"] == "direct_transfer"


def test_checkout_without_gateway_keeps_cart(client, login, customer, product, db_session):
    login(customer)
    _add(client, product)
    response = client.post("/api/cart/checkout", json={"paymentType": "mercadopago"})
    assert response.status_code == 503
    assert db_session.query(Order).count() == 0
    assert client.get("/api/cart").get_json()["item_count"] == 1


def test_checkout_rolls_back_when_a_line_fails(client, login, customer, product, make_product, db_session):
    scarce = make_product(name="Último", stock=1)
    login(customer)
    _add(client, product)
    _add(client, scarce)

    scarce.stock = 0
    db_session.commit()

    response = client.post("/api/cart/checkout", json={"paymentType": "direct_transfer"})
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("Último:")
    assert db_session.query(Order).count() == 0
