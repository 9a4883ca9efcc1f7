import json

import httpx
import pytest

from darktides.application.errors import NotificationError
from darktides.application.notifications import Notifier, render_order_email
from darktides.infrastructure.resend import ResendClient

ORDER = {
    "order_number": "DT-ABC123",
    "created_at": "2024-05-01T12:00:00",
    "customer": {
        "phone": "555-0100",
        "address": "1 Analytical Way",
        "city": "London",
        "state": "CA",
        "zip": "90210",
        "order_notes": "<b>leave at door</b>",
    },
    "customer_name": "Ada Lovelace",
    "customer_email": "ada@example.com",
    "subtotal": "80.00",
    "shipping_cost": "0.00",
    "discount_code": "SAVE10",
    "discount_amount": "10.00",
    "total": "70.00",
    "payment_method": "venmo",
    "coinbase_charge_code": None,
    "items": [{"name": "BPC-157 <10mg>", "sku": "DT-BPC-010", "quantity": 2, "price": "40.00"}],
}

class Recorder:
    """MockTransport handler that replays a list of status codes."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        if status == 200:
            return httpx.Response(200, json={"id": f"email_{len(self.requests)}"})
        return httpx.Response(status, json={"message": "nope"})

def make_notifier(settings, recorder):
    client = ResendClient(settings, transport=httpx.MockTransport(recorder))
    return Notifier(settings, client, sleep=lambda seconds: None)

def test_resend_request_shape(settings):
    recorder = Recorder(200)
    message_id = ResendClient(settings, transport=httpx.MockTransport(recorder)).send(
        "orders@darktides.test", "Hello", "<p>hi</p>", reply_to="ada@example.com",
    )
    assert message_id == "email_1"
    request = recorder.requests[0]
    assert request.url.path == "/emails"
    assert request.headers["Authorization"] == "Bearer re_test_key"
    body = json.loads(request.content)
    assert body["to"] == ["orders@darktides.test"]
    assert body["reply_to"] == "ada@example.com"
    assert body["from"] == settings.EMAIL_FROM

def test_resend_errors_raise(settings):
    client = ResendClient(settings, transport=httpx.MockTransport(Recorder(422)))
    with pytest.raises(NotificationError):
        client.send("orders@darktides.test", "Hello", "<p>hi</p>")

def test_resend_transport_failure_raises(settings):
    def boom(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(NotificationError):
        ResendClient(settings, transport=httpx.MockTransport(boom)).send("a@b.test", "Hello", "<p>hi</p>")

def test_order_notification_retries_once(settings):
    recorder = Recorder(500, 200)
    assert make_notifier(settings, recorder).send_order_notification(ORDER) is True
    assert len(recorder.requests) == 2
    body = json.loads(recorder.requests[-1].content)
    assert body["to"] == ["orders@darktides.test"]
    assert body["subject"] == "NEW ORDER RECEIVED DT-ABC123 - $70.00"

def test_notification_gives_up_without_raising(settings):
    recorder = Recorder(500, 500, 500)
    assert make_notifier(settings, recorder).send_order_notification(ORDER) is False
    assert len(recorder.requests) == settings.NOTIFICATION_RETRY_ATTEMPTS

def test_payment_confirmed_subject(settings):
    recorder = Recorder(200)
    confirmation = {"method": "crypto", "network": "ethereum", "transaction_id": "0xabc", "confirmed_at": "now"}
    make_notifier(settings, recorder).send_order_notification(dict(ORDER, payment_method="crypto"), confirmation)
    body = json.loads(recorder.requests[0].content)
    assert body["subject"] == "PAYMENT CONFIRMED DT-ABC123 - $70.00"
    assert "0xabc" in body["html"]
    assert "Crypto payment confirmed" in body["html"]

def test_contact_message_replies_to_sender(settings):
    recorder = Recorder(200)
    assert make_notifier(settings, recorder).send_contact_message(
        "Ada", "ada@example.com", "Bulk pricing", "Line one\nLine <two>",
    )
    body = json.loads(recorder.requests[0].content)
    assert body["to"] == ["contact@darktides.test"]
    assert body["subject"] == "[Contact Form] Bulk pricing"
    assert body["reply_to"] == "ada@example.com"
    assert "Line one<br>Line &lt;two&gt;" in body["html"]

def test_order_email_escapes_customer_input():
    html = render_order_email(ORDER)
    assert "&lt;b&gt;leave at door&lt;/b&gt;" in html
    assert "BPC-157 &lt;10mg&gt;" in html
    assert "<td>$80.00</td>" in html
    assert "Venmo" in html
    assert "laboratory research use only" in html

def test_contact_endpoint_queues_email(client, notifier):
    resp = client.post("/contact", json={
        "name": "Ada", "email": "ada@example.com", "subject": "Hi", "message": "Question",
    })
    assert resp.status_code == 202
    assert notifier.contacts == [{"name": "Ada", "email": "ada@example.com", "subject": "Hi", "message": "Question"}]

def test_contact_endpoint_validates_email(client, notifier):
    resp = client.post("/contact", json={"name": "Ada", "email": "nope", "subject": "Hi", "message": "Q"})
    assert resp.status_code == 422
    assert notifier.contacts == []
