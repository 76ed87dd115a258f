import json

import httpx
import pytest

from campus_market.core.errors import GatewayError
from campus_market.services.payment_gateway import PaymentGateway

from conftest import KEY_SECRET, WEBHOOK_SECRET, checkout_signature, webhook_signature


def make_gateway(handler):
    return PaymentGateway(
        key_id="rzp_test_key",
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        api_url="https://gateway.test/v1",
        transport=httpx.MockTransport(handler),
    )


async def test_create_checkout_session_posts_amount_and_receipt():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_remote_1", "amount": 45000, "currency": "INR"})

    session = await make_gateway(handler).create_checkout_session(45000, "local-order-1")

    assert session.gateway_order_id == "order_remote_1"
    assert session.amount == 45000
    assert session.currency == "INR"
    assert seen["path"] == "/v1/orders"
    assert seen["auth"].startswith("Basic ")
    assert seen["body"] == {"amount": 45000, "currency": "INR", "receipt": "local-order-1"}

async def test_timeout_becomes_gateway_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GatewayError) as exc_info:
        await make_gateway(handler).create_checkout_session(100, "o1")
    assert exc_info.value.message == "Payment gateway timed out"
    assert exc_info.value.status_code == 502

async def test_connection_error_becomes_gateway_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayError) as exc_info:
        await make_gateway(handler).create_checkout_session(100, "o1")
    assert exc_info.value.message == "Payment gateway unavailable"

async def test_rejected_request_becomes_gateway_error():
    def handler(request):
        return httpx.Response(401, json={"error": {"description": "Authentication failed"}})

    with pytest.raises(GatewayError) as exc_info:
        await make_gateway(handler).create_checkout_session(100, "o1")
    assert exc_info.value.message == "Failed to create payment order"

async def test_malformed_body_becomes_gateway_error():
    def handler(request):
        return httpx.Response(200, json={"status": "created"})

    with pytest.raises(GatewayError):
        await make_gateway(handler).create_checkout_session(100, "o1")


def test_verify_signature_accepts_valid_and_rejects_tampered():
    gateway = PaymentGateway(key_id="k", key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)
    signature = checkout_signature("order_1", "pay_1")

    assert gateway.verify_signature("order_1", "pay_1", signature)
    assert not gateway.verify_signature("order_1", "pay_2", signature)
    assert not gateway.verify_signature("order_1", "pay_1", checkout_signature("order_1", "pay_1", secret="other"))
    assert not gateway.verify_signature("order_1", "pay_1", "")
    assert not gateway.verify_signature("order_1", "pay_1", None)

def test_verify_signature_fails_closed_without_secret():
    gateway = PaymentGateway(key_id="k", key_secret="", webhook_secret="")
    signature = checkout_signature("order_1", "pay_1", secret="")

    assert not gateway.verify_signature("order_1", "pay_1", signature)

def test_verify_webhook_signature_uses_exact_bytes():
    gateway = PaymentGateway(key_id="k", key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)
    raw = b'{"event": "payment.captured"}'
    signature = webhook_signature(raw)

    assert gateway.verify_webhook_signature(raw, signature)
    # Same JSON, different bytes
    assert not gateway.verify_webhook_signature(b'{"event":"payment.captured"}', signature)
    assert not gateway.verify_webhook_signature(raw, None)
