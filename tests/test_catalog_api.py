"""Public catalog, promotions and customer addresses."""
from datetime import timedelta

from mercadoboom.models import Banner, Category, SpecialOffer, utcnow
from mercadoboom.services.order_service import OrderService


def test_product_listing_filters(client, make_product, category):
    make_product(name="Laptop Gamer", category_id=category.id, is_featured=True)
    make_product(name="Mouse inalámbrico", category_id=category.id)
    make_product(name="Sartén", is_active=False)

    names = {item["name"] for item in client.get("/api/products").get_json()}
    assert names == {"Laptop Gamer", "Mouse inalámbrico"}

    featured = client.get("/api/products?featured=true").get_json()
    assert [item["name"] for item in featured] == ["Laptop Gamer"]

    by_category = client.get(f"/api/products?category={category.id}").get_json()
    assert len(by_category) == 2
    assert by_category[0]["category"]["emoji"] == "🔌"

    searched = client.get("/api/products?search=MOUSE").get_json()
    assert [item["name"] for item in searched] == ["Mouse inalámbrico"]


def test_product_detail(client, product, make_product):
    body = client.get(f"/api/products/{product.id}").get_json()
    assert body["price"] == 500.0
    assert body["allow_transfer_discount"] is True
    assert body["free_shipping_min_amount"] == 999.0

    hidden = make_product(name="Oculto", is_active=False)
    assert client.get(f"/api/products/{hidden.id}").status_code == 404
    assert client.get("/api/products/missing").status_code == 404


def test_categories_only_active(client, db_session, category):
    db_session.add(Category(name="Archivada", is_active=False))
    db_session.commit()
    assert [item["name"] for item in client.get("/api/categories").get_json()] == ["Electrónica"]


def test_active_banners_respect_schedule(client, db_session):
    now = utcnow()
    db_session.add_all(
        [
            Banner(title="Buen Fin", display_order=2),
            Banner(title="Hot Sale", display_order=1, start_date=now - timedelta(days=1), end_date=now + timedelta(days=1)),
            Banner(title="Navidad", start_date=now + timedelta(days=10)),
            Banner(title="Verano", end_date=now - timedelta(days=1)),
            Banner(title="Pausado", is_active=False),
        ]
    )
    db_session.commit()

    titles = [item["title"] for item in client.get("/api/banners").get_json()]
    assert titles == ["Hot Sale", "Buen Fin"]


def test_admin_promotions_crud(client, login, admin, product):
    login(admin)
    backwards = client.post(
        "/api/admin/banners",
        json={"title": "Mal", "startDate": "2026-12-01T00:00:00Z", "endDate": "2026-11-01T00:00:00Z"},
    )
    assert backwards.status_code == 400

    created = client.post("/api/admin/special-offers", json={"title": "Boom", "productId": product.id, "discountPercentage": 30})
    assert created.status_code == 201
    offer = created.get_json()["offer"]
    assert offer["offer_type"] == "BOOM"

    missing_product = client.post("/api/admin/special-offers", json={"title": "X", "productId": "missing"})
    assert missing_product.status_code == 400

    updated = client.put(f"/api/admin/special-offers/{offer['id']}", json={"isActive": False})
    assert updated.get_json()["offer"]["is_active"] is False
    assert client.get("/api/special-offers").get_json() == []
    assert len(client.get("/api/admin/special-offers").get_json()) == 1

    assert client.delete(f"/api/admin/special-offers/{offer['id']}").status_code == 200
    assert client.delete(f"/api/admin/special-offers/{offer['id']}").status_code == 404
    assert client.patch("/api/admin/banners/missing", json={"title": "x"}).status_code == 404


def test_offer_lookup_through_active_list(client, db_session, product):
    db_session.add(SpecialOffer(title="Relámpago", product_id=product.id, offer_type="RELAMPAGO"))
    db_session.commit()
    offers = client.get("/api/special-offers").get_json()
    assert offers[0]["product_id"] == product.id


def test_address_book(client, login, customer, other_customer):
    login(customer)
    first = client.post(
        "/api/addresses",
        json={"title": "Casa", "street": "Calle 1", "city": "Puebla", "state": "Puebla", "postalCode": "72000", "isDefault": True},
    ).get_json()
    second = client.post(
        "/api/addresses",
        json={"title": "Oficina", "street": "Calle 2", "city": "Puebla", "state": "Puebla", "postalCode": "72001", "isDefault": True},
    )
    assert second.status_code == 201

    listed = client.get("/api/addresses").get_json()
    defaults = [item["title"] for item in listed if item["is_default"]]
    assert defaults == ["Oficina"]
    assert listed[0]["title"] == "Oficina"

    client.patch(f"/api/addresses/{first['id']}", json={"isDefault": True, "city": "Cholula"})
    listed = {item["title"]: item for item in client.get("/api/addresses").get_json()}
    assert listed["Casa"]["is_default"] is True
    assert listed["Casa"]["city"] == "Cholula"
    assert listed["Oficina"]["is_default"] is False

    login(other_customer)
    assert client.get("/api/addresses").get_json() == []
    assert client.patch(f"/api/addresses/{first['id']}", json={"city": "x"}).status_code == 404
    assert client.delete(f"/api/addresses/{first['id']}").status_code == 404


def test_address_used_by_orders_cannot_be_deleted(client, login, customer, product, address, db_session):
    OrderService(db_session).create_order(customer, product, 1, shipping_address_id=address.id)
    login(customer)
    response = client.delete(f"/api/addresses/{address.id}")
    assert response.status_code == 400

    spare = client.post(
        "/api/addresses",
        json={"title": "Temporal", "street": "Calle 3", "city": "León", "state": "Guanajuato", "postalCode": "37000"},
    ).get_json()
    assert client.delete(f"/api/addresses/{spare['id']}").status_code == 200
