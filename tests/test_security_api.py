"""Two-factor codes and contact verification."""
from datetime import timedelta

from mercadoboom.models import SecurityLog, TwoFactorMethod, User, utcnow


def _pending_code(db_session, user_id):
    db_session.expire_all()
    return db_session.get(User, user_id).verification_code


def test_send_and_verify_code_by_email(client, login, customer, db_session, notifier):
    login(customer)
    response = client.post("/api/security/send-code", json={"action": "profile_change"})
    assert response.status_code == 200
    assert response.get_json()["method"] == "email"
    assert response.get_json()["message"] == "Código de verificación enviado por email"

    code = _pending_code(db_session, customer.id)
    assert len(code) == 6 and code.isdigit()
    assert code in notifier.email_sender.outbox[-1]["html"]

    verified = client.post(
        "/api/security/verify-code",
        json={"code": code, "action": "profile_change"},
        headers={"User-Agent": "pytest-browser", "X-Forwarded-For": "203.0.113.7"},
    )
    assert verified.status_code == 200

    log = db_session.query(SecurityLog).filter_by(user_id=customer.id).one()
    assert log.verified is True
    assert log.ip_address == "203.0.113.7"
    assert log.user_agent == "pytest-browser"
    assert _pending_code(db_session, customer.id) is None


def test_wrong_code_is_logged(client, login, customer, db_session):
    login(customer)
    client.post("/api/security/send-code", json={"action": "payment_update"})
    response = client.post("/api/security/verify-code", json={"code": "000000x", "action": "payment_update"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Código de verificación incorrecto"

    failed = db_session.query(SecurityLog).filter_by(user_id=customer.id).one()
    assert failed.verified is False


def test_expired_code_is_rejected(client, login, customer, db_session):
    customer.verification_code = "123456"
    customer.verification_code_expiry = utcnow() - timedelta(seconds=1)
    db_session.commit()

    login(customer)
    response = client.post("/api/security/verify-code", json={"code": "123456", "action": "admin_access"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Código de verificación expirado"


def test_sms_method_requires_phone(client, login, other_customer, db_session):
    other_customer.two_factor_method = TwoFactorMethod.SMS
    db_session.commit()

    login(other_customer)
    response = client.post("/api/security/send-code", json={"action": "admin_access"})
    assert response.status_code == 400


def test_delivery_failure_on_every_channel(client, login, customer, db_session, notifier):
    customer.two_factor_method = TwoFactorMethod.EMAIL_SMS
    db_session.commit()
    notifier.email_sender.fail = True
    notifier.sms_sender.fail = True

    login(customer)
    response = client.post("/api/security/send-code", json={"action": "admin_access"})
    assert response.status_code == 502
    assert response.get_json()["error"] == "Error al enviar código por email y SMS"


def test_partial_delivery_counts_as_sent(client, login, customer, db_session, notifier):
    customer.two_factor_method = TwoFactorMethod.ALL
    db_session.commit()
    notifier.sms_sender.fail = True

    login(customer)
    response = client.post("/api/security/send-code", json={"action": "admin_access"})
    assert response.status_code == 200
    assert response.get_json()["method"] == "all"
    assert notifier.sms_sender.whatsapp[-1]["to"] == customer.phone


def test_update_two_factor_settings(client, login, customer, other_customer):
    login(customer)
    assert client.post("/api/security/update-2fa", json={"enabled": "si"}).status_code == 400

    response = client.post("/api/security/update-2fa", json={"enabled": True, "method": "email_whatsapp"})
    assert response.status_code == 200
    user = response.get_json()["user"]
    assert user["two_factor_enabled"] is True
    assert user["two_factor_method"] == "email_whatsapp"

    login(other_customer)
    response = client.post("/api/security/update-2fa", json={"enabled": True, "method": "sms"})
    assert response.status_code == 400


def test_check_required_only_for_sensitive_actions(client, login, customer, db_session):
    login(customer)
    assert client.post("/api/security/check-required", json={"action": "admin_access"}).get_json() == {
        "required": False
    }

    customer.two_factor_enabled = True
    db_session.commit()
    assert client.post("/api/security/check-required", json={"action": "large_order"}).get_json()["required"] is True
    assert client.post("/api/security/check-required", json={"action": "view_orders"}).get_json()["required"] is False


def test_verify_contact_marks_email(client, login, customer, db_session):
    login(customer)
    client.post("/api/security/send-code", json={"action": "verify_email"})
    code = _pending_code(db_session, customer.id)

    response = client.post("/api/security/verify-contact", json={"type": "email", "code": code})
    assert response.status_code == 200
    assert response.get_json()["user"]["is_email_verified"] is True

    again = client.post("/api/security/verify-contact", json={"type": "phone", "code": code})
    assert again.status_code == 400
