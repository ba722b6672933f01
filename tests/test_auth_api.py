"""Registration, login, profile and password recovery endpoints."""
from datetime import timedelta

from werkzeug.security import check_password_hash

from mercadoboom.models import User, utcnow


def _register(client, **overrides):
    payload = {
        "username": "ana_boom",
        "email": "Ana@Example.com",
        "password": "secreto123",
        "fullName": "Ana Pérez",
        "phone": "+5215500000000",
    }
    payload.update(overrides)
    return client.post("/api/register", json=payload)


def test_register_creates_account_and_session(client, db_session):
    response = _register(client)
    assert response.status_code == 201
    body = response.get_json()
    assert body["success"] is True
    assert body["user"]["email"] == "ana@example.com"
    assert body["user"]["full_name"] == "Ana Pérez"
    assert "password_hash" not in body["user"]

    me = client.get("/api/user")
    assert me.status_code == 200
    assert me.get_json()["username"] == "ana_boom"

    stored = db_session.query(User).filter_by(username="ana_boom").one()
    assert check_password_hash(stored.password_hash, "secreto123")


def test_register_rejects_duplicates_and_invalid_data(client, customer):
    assert _register(client, username=customer.username).status_code == 400
    duplicate_email = _register(client, email=customer.email.upper())
    assert duplicate_email.status_code == 400
    assert duplicate_email.get_json()["error"] == "El email ya está registrado"

    invalid = _register(client, email="no-es-email", password="123")
    assert invalid.status_code == 400
    assert invalid.get_json()["error"] == "Datos inválidos"
    assert invalid.get_json()["details"]


def test_login_and_logout(client, customer):
    bad = client.post("/api/login", json={"username": "maria", "password": "incorrecta"})
    assert bad.status_code == 401
    assert bad.get_json()["error"] == "Credenciales inválidas"

    ok = client.post("/api/login", json={"username": "maria", "password": "password123"})
    assert ok.status_code == 200
    assert ok.get_json()["user"]["id"] == customer.id

    assert client.post("/api/logout").status_code == 200
    assert client.get("/api/user").status_code == 401


def test_blocked_user_cannot_log_in(client, db_session, customer):
    customer.is_blocked = True
    customer.block_reason = "Fraude"
    db_session.commit()

    response = client.post("/api/login", json={"username": "maria", "password": "password123"})
    assert response.status_code == 401
    assert "bloqueada" in response.get_json()["error"]


def test_blocked_user_loses_existing_session(client, db_session, login, customer):
    login(customer)
    assert client.get("/api/user").status_code == 200

    customer.is_blocked = True
    db_session.commit()
    assert client.get("/api/user").status_code == 401


def test_profile_update_checks_uniqueness(client, login, customer, other_customer, db_session):
    login(customer)
    taken = client.patch("/api/user/profile", json={"email": other_customer.email})
    assert taken.status_code == 400

    response = client.patch("/api/user/profile", json={"fullName": "María L.", "phone": "+5215599999999"})
    assert response.status_code == 200
    user = response.get_json()["user"]
    assert user["full_name"] == "María L."
    assert user["phone"] == "+5215599999999"
    assert user["is_phone_verified"] is False


def test_password_reset_by_email(client, db_session, customer, notifier):
    response = client.post(
        "/api/password-reset/request", json={"identifier": customer.email, "method": "email"}
    )
    assert response.status_code == 200
    assert response.get_json()["channel"] == "email"

    db_session.expire_all()
    token = db_session.get(User, customer.id).reset_token
    assert token
    sent = notifier.email_sender.outbox[-1]
    assert sent["to"] == customer.email
    assert token in sent["html"]

    wrong = client.post(
        "/api/password-reset/confirm",
        json={"identifier": customer.email, "method": "email", "resetToken": "x" * 64, "newPassword": "nuevaClave1"},
    )
    assert wrong.status_code == 400

    confirm = client.post(
        "/api/password-reset/confirm",
        json={"identifier": customer.email, "method": "email", "resetToken": token, "newPassword": "nuevaClave1"},
    )
    assert confirm.status_code == 200

    db_session.expire_all()
    user = db_session.get(User, customer.id)
    assert user.reset_token is None
    assert check_password_hash(user.password_hash, "nuevaClave1")

    # Tokens are single use
    replay = client.post(
        "/api/password-reset/confirm",
        json={"identifier": customer.email, "method": "email", "resetToken": token, "newPassword": "otraClave22"},
    )
    assert replay.status_code == 400


def test_password_reset_token_expires(client, db_session, customer):
    customer.reset_token = "a" * 64
    customer.reset_token_expiry = utcnow() - timedelta(minutes=1)
    db_session.commit()

    response = client.post(
        "/api/password-reset/confirm",
        json={"identifier": "maria", "method": "username", "resetToken": "a" * 64, "newPassword": "nuevaClave1"},
    )
    assert response.status_code == 400
    assert response.get_json()["error"] == "Token de recuperación inválido o expirado"


def test_password_reset_unknown_account_does_not_leak(client, customer, notifier):
    unknown = client.post(
        "/api/password-reset/request", json={"identifier": "nadie@example.com", "method": "email"}
    )
    assert unknown.status_code == 200
    assert notifier.email_sender.outbox == []

    known = client.post(
        "/api/password-reset/request", json={"identifier": customer.email, "method": "email"}
    )
    assert known.status_code == 200
    assert len(notifier.email_sender.outbox) == 1
    assert known.get_json() == unknown.get_json()
    assert unknown.get_json()["channel"] == "email"


def test_password_reset_by_phone(client, customer, other_customer, notifier):
    response = client.post(
        "/api/password-reset/request", json={"identifier": customer.phone, "method": "phone"}
    )
    assert response.status_code == 200
    assert response.get_json()["channel"] == "sms"
    assert notifier.sms_sender.sms[-1]["to"] == customer.phone

    without_phone = client.post(
        "/api/password-reset/request", json={"identifier": other_customer.username, "method": "username"}
    )
    # Username lookups fall back to email delivery
    assert without_phone.status_code == 200
    assert without_phone.get_json()["channel"] == "email"


def test_password_reset_delivery_failure_returns_502(client, customer, notifier):
    notifier.email_sender.fail = True
    response = client.post(
        "/api/password-reset/request", json={"identifier": customer.email, "method": "email"}
    )
    assert response.status_code == 502
