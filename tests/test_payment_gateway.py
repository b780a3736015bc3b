import pytest
import requests

from exceptions import PaymentGatewayError, PaymentGatewayNotConfigured
from services import payment_gateway
from services.payment_gateway import RazorpayGateway


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def fake_request(method, url, json=None, auth=None, timeout=None):
        recorded.append({"method": method, "url": url, "json": json, "auth": auth, "timeout": timeout})
        if url.endswith("/orders"):
            return FakeResponse(200, {"id": "order_1", "amount": json["amount"], "currency": json["currency"]})
        return FakeResponse(200, {"id": "pay_1", "method": "card"})

    monkeypatch.setattr(payment_gateway.requests, "request", fake_request)
    return recorded


def test_create_order_uses_minor_units_and_basic_auth(calls):
    gateway = RazorpayGateway("key", "secret", "https://rzp.test/v1/", timeout=5)

    order = gateway.create_order(1500, "INR", "RCP-ABC-1234")

    assert order["amount"] == 150000
    assert calls[0]["url"] == "https://rzp.test/v1/orders"
    assert calls[0]["auth"] == ("key", "secret")
    assert calls[0]["timeout"] == 5
    assert calls[0]["json"]["payment_capture"] == 1
    assert calls[0]["json"]["receipt"] == "RCP-ABC-1234"


def test_refund_amount_is_converted(calls):
    gateway = RazorpayGateway("key", "secret")

    gateway.refund_payment("pay_1", 980.5)
    gateway.refund_payment("pay_2")

    assert calls[0]["url"].endswith("/payments/pay_1/refund")
    assert calls[0]["json"] == {"amount": 98050}
    assert calls[1]["json"] == {}


def test_fetch_payment_details(calls):
    details = RazorpayGateway("key", "secret").fetch_payment_details("pay_1")

    assert details["method"] == "card"
    assert calls[0]["method"] == "GET"


def test_missing_credentials():
    gateway = RazorpayGateway(None, None)

    assert not gateway.is_configured
    with pytest.raises(PaymentGatewayNotConfigured):
        gateway.create_order(100, "INR", "r")
    with pytest.raises(PaymentGatewayNotConfigured):
        gateway.signature_secret


def test_http_error_is_wrapped(monkeypatch):
    monkeypatch.setattr(
        payment_gateway.requests, "request", lambda *a, **kw: FakeResponse(400, text="bad amount")
    )

    with pytest.raises(PaymentGatewayError) as excinfo:
        RazorpayGateway("key", "secret").create_order(100, "INR", "r")
    assert excinfo.value.details["status"] == 400


def test_transport_error_is_wrapped(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(payment_gateway.requests, "request", boom)

    with pytest.raises(PaymentGatewayError):
        RazorpayGateway("key", "secret").fetch_payment_details("pay_1")
