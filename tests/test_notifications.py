import smtplib
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import requests

from db.schemas import OrderItemOut, OrderOut
from services.notifications import EmailSender, Notifier, SMSSender


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


@pytest.fixture
def live(settings):
    return settings.model_copy(update={"DEBUG": False, "SMS_API_KEY": "key", "SMTP_HOST": "smtp.example.com"})


def make_order(**overrides):
    data = dict(
        id=1, order_number="KK20261017ABCD", user_id=1,
        total_amount=Decimal("1200"), discount_amount=Decimal("0"),
        shipping_amount=Decimal("20"), final_amount=Decimal("1220"),
        payment_method="cod", status="pending", payment_status="pending",
        shipping_address="12 Mandi Road, Jaipur", created_at=datetime.now(timezone.utc),
        customer_name="Asha <b>Verma</b>", customer_mobile="9876543210", customer_email="asha@example.com",
        item_count=1,
        items=[OrderItemOut(id=1, product_id=1, product_name="Ghee", product_weight="500g",
                            price=Decimal("600"), quantity=2, total_amount=Decimal("1200"))],
    )
    data.update(overrides)
    return OrderOut(**data)


def test_debug_mode_only_logs(settings, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("no network in debug mode")

    monkeypatch.setattr(requests, "post", fail)
    monkeypatch.setattr(smtplib, "SMTP", fail)
    assert SMSSender(settings).send("9876543210", "hello") is True
    assert EmailSender(settings).send("asha@example.com", "Hi", "<p>hi</p>") is True
    assert SMSSender(settings).delivery_status("abc") is None


def test_sms_posts_national_number(live, monkeypatch):
    calls = []

    def fake_post(url, data, timeout):
        calls.append((url, data))
        return FakeResponse({"status": "success"})

    monkeypatch.setattr(requests, "post", fake_post)
    assert SMSSender(live).send("+91 98765 43210", "Your code is 123456") is True
    url, data = calls[0]
    assert url == live.SMS_API_URL
    assert data["numbers"] == "9876543210"
    assert data["apikey"] == "key"


def test_sms_gateway_errors_are_reported_not_raised(live, monkeypatch):
    def down(*args, **kwargs):
        raise requests.ConnectionError("gateway unreachable")

    monkeypatch.setattr(requests, "post", down)
    assert SMSSender(live).send("9876543210", "hello") is False

    monkeypatch.setattr(requests, "post", lambda *a, **k: FakeResponse({"status": "failure", "errors": [{"message": "bad"}]}))
    assert SMSSender(live).send("9876543210", "hello") is False

    monkeypatch.setattr(requests, "post", lambda *a, **k: FakeResponse({}, status=503))
    assert SMSSender(live).send("9876543210", "hello") is False


def test_sms_bulk_and_status(live, monkeypatch):
    def fake_post(url, data, timeout):
        if url == live.SMS_STATUS_URL:
            return FakeResponse({"status": "success", "message": {"status": "D"}})
        ok = data["numbers"] != "9812345678"
        return FakeResponse({"status": "success" if ok else "failure"})

    monkeypatch.setattr(requests, "post", fake_post)
    sender = SMSSender(live)
    assert sender.send_bulk(["9876543210", "9812345678", "12345"], "sale") == {
        "9876543210": True, "9812345678": False, "12345": False,
    }
    assert sender.delivery_status("m-1") == {"status": "D"}


def test_email_failure_is_reported_not_raised(live, monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "busy")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    assert EmailSender(live).send("asha@example.com", "Hi", "<p>hi</p>") is False


def test_email_builds_multipart_message(live, monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            assert (host, port) == ("smtp.example.com", live.SMTP_PORT)

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            pass

        def login(self, user, password):
            raise AssertionError("no credentials configured")

        def send_message(self, msg):
            sent.append(msg)

    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    assert EmailSender(live).send("asha@example.com", "Order", "<p>Thanks <b>Asha</b></p>") is True
    msg = sent[0]
    assert msg["To"] == "asha@example.com"
    assert msg.get_body(("plain",)).get_content().strip() == "Thanks Asha"
    assert "<b>Asha</b>" in msg.get_body(("html",)).get_content()


class Recorder:
    def __init__(self, result=True, error=None):
        self.calls = []
        self.result = result
        self.error = error

    def send(self, *args):
        self.calls.append(args)
        if self.error:
            raise self.error
        return self.result


def test_notifier_swallows_sender_exceptions(settings):
    notifier = Notifier(settings, sms=Recorder(error=RuntimeError("boom")), email=Recorder(error=OSError("down")))
    assert notifier.otp("9876543210", "123456") is False
    assert notifier.order_placed(make_order()) is False
    assert notifier.newsletter_welcome("asha@example.com") is False


def test_order_placed_messages(settings):
    sms, email = Recorder(), Recorder()
    assert Notifier(settings, sms=sms, email=email).order_placed(make_order()) is True

    mobile, text = sms.calls[0]
    assert mobile == "9876543210"
    assert "KK20261017ABCD" in text and "₹1220" in text
    to, subject, html = email.calls[0]
    assert to == "asha@example.com"
    assert subject.startswith("Order Confirmation - KK20261017ABCD")
    assert "Asha &lt;b&gt;Verma&lt;/b&gt;" in html


def test_status_change_skips_missing_contacts(settings):
    sms, email = Recorder(), Recorder()
    order = make_order(customer_email=None)
    assert Notifier(settings, sms=sms, email=email).order_status_changed(order, "cancelled") is True
    assert "cancelled as requested" in sms.calls[0][1]
    assert email.calls == []


def test_contact_goes_to_company_inbox(settings):
    email = Recorder()
    Notifier(settings, sms=Recorder(), email=email).contact_received(
        {"name": "Ravi", "email": "ravi@example.com", "mobile": None,
         "subject": "Bulk order", "message": "Need 40 litres of oil"}
    )
    to, subject, html = email.calls[0]
    assert to == settings.COMPANY_EMAIL
    assert subject == "New Contact Form Submission - Bulk order"
