import pytest
from twilio.base.exceptions import TwilioRestException

from mercadoboom.db_wait import wait_for_database
from mercadoboom.observability.metrics import get_counter_total
from mercadoboom.services.notification_service import EmailSender, NotificationService, SmsSender
from mercadoboom.services.order_service import OrderService
from mercadoboom.services.payment_service import MercadoPagoGateway, PaymentGatewayError


class FakeMessage:
    sid = "SM123"


class FakeMessages:
    def __init__(self, error=None):
        self.created = []
        self.error = error

    def create(self, **options):
        self.created.append(options)
        if self.error:
            raise self.error
        return FakeMessage()


class FakeTwilioClient:
    def __init__(self, error=None):
        self.messages = FakeMessages(error)


def test_unconfigured_senders_simulate_delivery():
    assert EmailSender(api_key="").send("ana@example.com", "Hola", "<p>Hola</p>") == (True, None)
    sms = SmsSender(account_sid="", auth_token="")
    assert sms.configured is False
    assert sms.send_sms("+5215500000000", "hola") == (True, None)
    assert sms.send_whatsapp("+5215500000000", "hola") == (True, None)


def test_sms_uses_messaging_service_when_present():
    client = FakeTwilioClient()
    sender = SmsSender(messaging_service_sid="MG1", from_number="+15550001111", client=client)
    assert sender.send_sms("+5215512345678", "código 123456") == (True, None)
    assert client.messages.created[-1] == {
        "body": "código 123456",
        "to": "+5215512345678",
        "messaging_service_sid": "MG1",
    }


def test_whatsapp_prefixes_numbers():
    client = FakeTwilioClient()
    sender = SmsSender(messaging_service_sid="", from_number="", whatsapp_number="+14155238886", client=client)
    assert sender.send_whatsapp("+5215512345678", "hola") == (True, None)
    created = client.messages.created[-1]
    assert created["to"] == "whatsapp:+5215512345678"
    assert created["from_"] == "whatsapp:+14155238886"


def test_sms_without_sender_number_fails():
    sender = SmsSender(messaging_service_sid="", from_number="", client=FakeTwilioClient())
    ok, error = sender.send_sms("+5215512345678", "hola")
    assert ok is False
    assert "número de origen" in error


def test_twilio_errors_are_reported():
    error = TwilioRestException(400, "/Messages", msg="Invalid 'To' number", code=21211)
    sender = SmsSender(messaging_service_sid="MG1", client=FakeTwilioClient(error))
    assert sender.send_sms("123", "hola") == (False, "Twilio 21211: Invalid 'To' number")


def test_failed_notifications_are_counted(customer, notifier):
    notifier.email_sender.fail = True
    ok, _ = notifier.send_password_reset(customer, "token", "email")
    assert ok is False
    assert get_counter_total("notifications_total") == 1


def test_verification_code_on_unknown_channel(customer):
    service = NotificationService(email_sender=EmailSender(api_key=""), sms_sender=SmsSender(account_sid="", auth_token=""))
    sent, failed = service.send_verification_code(customer, "123456", "admin_access", ["email", "fax"])
    assert sent == ["email"]
    assert failed == ["fax"]


class FakeEndpoint:
    def __init__(self, result):
        self.result = result

    def create(self, data):
        return self.result

    def get(self, payment_id):
        return self.result


class FakeSdk:
    def __init__(self, result):
        self.result = result

    def preference(self):
        return FakeEndpoint(self.result)

    def payment(self):
        return FakeEndpoint(self.result)


def test_gateway_unwraps_sdk_responses():
    gateway = MercadoPagoGateway("TEST-token", sdk=FakeSdk({"status": 201, "response": {"id": "pref-1"}}))
    assert gateway.create_preference({"items": []}) == {"id": "pref-1"}


def test_gateway_raises_on_error_status():
    gateway = MercadoPagoGateway("TEST-token", sdk=FakeSdk({"status": 500, "response": {"message": "boom"}}))
    with pytest.raises(PaymentGatewayError) as excinfo:
        gateway.get_payment("123")
    assert excinfo.value.status == 500
    assert get_counter_total("payment_gateway_errors_total") == 1


def test_wait_for_database_skips_sqlite():
    assert wait_for_database("sqlite:///:memory:") == 0


def test_customer_text_is_stripped_from_email_html(make_user, make_product, notifier, db_session):
    user = make_user(full_name='<a href="http://phish.test">Haz clic</a>')
    notifier.send_password_reset(user, "token-123", "email")
    html = notifier.email_sender.outbox[-1]["html"]
    assert html.startswith("<h2>Hola Haz clic,</h2>")
    assert "phish.test" not in html

    product = make_product(name="<img src=x onerror=alert(1)>Bocina")
    order = OrderService(db_session).create_order(user, product, 1)[2]
    notifier.send_order_confirmation(order)
    html = notifier.email_sender.outbox[-1]["html"]
    assert "<img" not in html
    assert "× Bocina" in html
