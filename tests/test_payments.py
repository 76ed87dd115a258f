import logging

import pytest
from sqlalchemy import select

from campus_market.core.errors import GatewayError
from campus_market.db.models import (
    Order,
    PaymentStatus,
    PaymentTransaction,
    Product,
    ProductStatus,
    TransactionStatus,
)

from conftest import auth, checkout_signature, webhook_body, webhook_signature


@pytest.fixture
def transactions_for(session_factory):
    async def _transactions_for(order_id):
        async with session_factory() as session:
            result = await session.execute(
                select(PaymentTransaction).where(PaymentTransaction.order_id == order_id)
            )
            return list(result.scalars().all())
    return _transactions_for

@pytest.fixture
async def placed_order(client, seller, buyer, make_product):
    product = await make_product(seller, price_cents=45000)
    response = await client.post("/api/orders", json={"productId": product.id}, headers=auth(buyer))
    return response.json()["order"]

async def open_checkout(client, buyer, order_id):
    response = await client.post("/api/payments/create-order", json={"orderId": order_id}, headers=auth(buyer))
    assert response.status_code == 200
    return response.json()["gatewayOrderId"]

async def confirm(client, buyer, order_id, gateway_order_id, payment_id="pay_client_1", signature=None):
    body = {
        "gatewayOrderId": gateway_order_id,
        "gatewayPaymentId": payment_id,
        "signature": signature or checkout_signature(gateway_order_id, payment_id),
        "orderId": order_id,
    }
    return await client.post("/api/payments/verify", json=body, headers=auth(buyer))

async def deliver_webhook(client, raw_body, signature=None):
    headers = {
        "Content-Type": "application/json",
        "X-Razorpay-Signature": signature if signature is not None else webhook_signature(raw_body),
    }
    return await client.post("/api/payments/webhook", content=raw_body, headers=headers)


# Checkout

async def test_checkout_records_created_transaction(client, buyer, placed_order, transactions_for):
    response = await client.post(
        "/api/payments/create-order", json={"orderId": placed_order["id"]}, headers=auth(buyer)
    )

    assert response.status_code == 200
    assert response.json() == {
        "gatewayOrderId": "order_gw_1",
        "amount": 45000,
        "currency": "INR",
        "orderId": placed_order["id"],
    }
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.gateway_order_id == "order_gw_1"
    assert transaction.amount == 45000
    assert transaction.status == TransactionStatus.CREATED

async def test_checkout_retry_replaces_unpaid_attempt(client, buyer, placed_order, transactions_for):
    await open_checkout(client, buyer, placed_order["id"])
    second = await open_checkout(client, buyer, placed_order["id"])

    assert second == "order_gw_2"
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.gateway_order_id == "order_gw_2"

async def test_checkout_retry_logs_replaced_gateway_order(client, buyer, placed_order, caplog):
    caplog.set_level(logging.WARNING, logger="campus_market.services.order")
    first = await open_checkout(client, buyer, placed_order["id"])

    second = await open_checkout(client, buyer, placed_order["id"])

    replaced = [r for r in caplog.records if r.levelno == logging.WARNING and first in r.getMessage()]
    assert len(replaced) == 1
    assert second in replaced[0].getMessage()

async def test_only_buyer_can_checkout(client, seller, placed_order, transactions_for):
    response = await client.post(
        "/api/payments/create-order", json={"orderId": placed_order["id"]}, headers=auth(seller)
    )

    assert response.status_code == 403
    assert response.json() == {"error": "Not authorized"}
    assert await transactions_for(placed_order["id"]) == []

async def test_gateway_failure_leaves_no_transaction(client, buyer, gateway, placed_order, transactions_for):
    gateway.error = GatewayError("Payment gateway timed out")

    response = await client.post(
        "/api/payments/create-order", json={"orderId": placed_order["id"]}, headers=auth(buyer)
    )

    assert response.status_code == 502
    assert response.json() == {"error": "Payment gateway timed out"}
    assert await transactions_for(placed_order["id"]) == []

async def test_paid_order_cannot_be_checked_out_again(client, buyer, placed_order):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])
    await confirm(client, buyer, placed_order["id"], gateway_order_id)

    response = await client.post(
        "/api/payments/create-order", json={"orderId": placed_order["id"]}, headers=auth(buyer)
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Order already paid"}


# Client confirmation

async def test_confirm_marks_order_paid_and_product_sold(client, buyer, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])

    response = await confirm(client, buyer, placed_order["id"], gateway_order_id, payment_id="pay_42")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["order"]["paymentStatus"] == "paid"

    order = await fetch(Order, placed_order["id"])
    product = await fetch(Product, placed_order["productId"])
    [transaction] = await transactions_for(placed_order["id"])
    assert order.payment_status == PaymentStatus.PAID
    assert product.status == ProductStatus.SOLD
    assert transaction.status == TransactionStatus.PAID
    assert transaction.gateway_payment_id == "pay_42"
    assert transaction.signature == checkout_signature(gateway_order_id, "pay_42")

async def test_confirm_replay_is_idempotent(client, buyer, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])
    first = await confirm(client, buyer, placed_order["id"], gateway_order_id)

    second = await confirm(client, buyer, placed_order["id"], gateway_order_id)

    assert first.status_code == second.status_code == 200
    assert second.json()["order"]["paymentStatus"] == "paid"
    assert (await fetch(Product, placed_order["productId"])).status == ProductStatus.SOLD
    assert len(await transactions_for(placed_order["id"])) == 1

async def test_bad_signature_changes_nothing(client, buyer, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])

    response = await confirm(client, buyer, placed_order["id"], gateway_order_id, signature="0" * 64)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid payment signature"}
    assert (await fetch(Order, placed_order["id"])).payment_status == PaymentStatus.PENDING
    assert (await fetch(Product, placed_order["productId"])).status == ProductStatus.AVAILABLE
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.status == TransactionStatus.CREATED

async def test_confirm_on_failed_order_is_rejected(client, buyer, admin, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])
    await client.put(f"/api/admin/orders/{placed_order['id']}/payment-failed", headers=auth(admin))

    response = await confirm(client, buyer, placed_order["id"], gateway_order_id)

    assert response.status_code == 400
    assert response.json() == {"error": "Order payment has failed"}
    assert (await fetch(Order, placed_order["id"])).payment_status == PaymentStatus.FAILED
    assert (await fetch(Product, placed_order["productId"])).status == ProductStatus.AVAILABLE
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.status == TransactionStatus.CREATED
    assert transaction.gateway_payment_id is None

async def test_confirm_requires_matching_order(client, buyer, seller, make_product, placed_order):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])
    other_product = await make_product(seller, title="Lab Coat")
    other = await client.post("/api/orders", json={"productId": other_product.id}, headers=auth(buyer))

    response = await confirm(client, buyer, other.json()["order"]["id"], gateway_order_id)

    assert response.status_code == 404
    assert response.json() == {"error": "Payment transaction not found"}

async def test_confirm_accepts_checkout_widget_field_names(client, buyer, placed_order):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])
    body = {
        "razorpayOrderId": gateway_order_id,
        "razorpayPaymentId": "pay_widget",
        "razorpaySignature": checkout_signature(gateway_order_id, "pay_widget"),
        "orderId": placed_order["id"],
    }

    response = await client.post("/api/payments/verify", json=body, headers=auth(buyer))

    assert response.status_code == 200
    assert response.json()["order"]["paymentStatus"] == "paid"


# Webhook

async def test_captured_webhook_settles_order(client, buyer, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])

    response = await deliver_webhook(client, webhook_body("payment.captured", gateway_order_id, "pay_hook_9"))

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert (await fetch(Order, placed_order["id"])).payment_status == PaymentStatus.PAID
    assert (await fetch(Product, placed_order["productId"])).status == ProductStatus.SOLD
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.status == TransactionStatus.PAID
    assert transaction.gateway_payment_id == "pay_hook_9"

async def test_failed_webhook_only_fails_the_attempt(client, buyer, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])

    response = await deliver_webhook(client, webhook_body("payment.failed", gateway_order_id))

    assert response.status_code == 200
    assert (await fetch(Order, placed_order["id"])).payment_status == PaymentStatus.PENDING
    assert (await fetch(Product, placed_order["productId"])).status == ProductStatus.AVAILABLE
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.status == TransactionStatus.FAILED

async def test_tampered_webhook_is_rejected(client, buyer, placed_order, fetch):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])
    raw = webhook_body("payment.captured", gateway_order_id)
    signature = webhook_signature(raw)
    tampered = raw.replace(b"pay_hook_1", b"pay_hook_2")

    response = await deliver_webhook(client, tampered, signature=signature)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid webhook signature"}
    assert (await fetch(Order, placed_order["id"])).payment_status == PaymentStatus.PENDING

async def test_webhook_without_signature_is_rejected(client):
    response = await client.post(
        "/api/payments/webhook", content=b"{}", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400

async def test_unknown_events_and_orders_are_acknowledged(client, buyer, placed_order, fetch):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])

    refunded = await deliver_webhook(client, webhook_body("refund.processed", gateway_order_id))
    unknown = await deliver_webhook(client, webhook_body("payment.captured", "order_never_issued"))

    assert refunded.json() == {"received": True}
    assert unknown.json() == {"received": True}
    assert (await fetch(Order, placed_order["id"])).payment_status == PaymentStatus.PENDING

async def test_webhook_then_confirm_settles_once(client, buyer, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])

    await deliver_webhook(client, webhook_body("payment.captured", gateway_order_id, "pay_same"))
    response = await confirm(client, buyer, placed_order["id"], gateway_order_id, payment_id="pay_same")

    assert response.status_code == 200
    assert response.json()["order"]["paymentStatus"] == "paid"
    assert (await fetch(Product, placed_order["productId"])).status == ProductStatus.SOLD
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.status == TransactionStatus.PAID

async def test_confirm_then_webhook_is_a_no_op(client, buyer, placed_order, fetch, transactions_for):
    gateway_order_id = await open_checkout(client, buyer, placed_order["id"])
    await confirm(client, buyer, placed_order["id"], gateway_order_id, payment_id="pay_same")

    response = await deliver_webhook(client, webhook_body("payment.captured", gateway_order_id, "pay_same"))
    failed = await deliver_webhook(client, webhook_body("payment.failed", gateway_order_id, "pay_same"))

    assert response.status_code == failed.status_code == 200
    assert (await fetch(Order, placed_order["id"])).payment_status == PaymentStatus.PAID
    [transaction] = await transactions_for(placed_order["id"])
    assert transaction.status == TransactionStatus.PAID
    assert transaction.signature == checkout_signature(gateway_order_id, "pay_same")

async def test_second_paid_order_does_not_resell_product(client, seller, buyer, make_user, make_product, fetch):
    product = await make_product(seller)
    other_buyer = await make_user(name="Second Buyer")
    first = (await client.post("/api/orders", json={"productId": product.id}, headers=auth(buyer))).json()["order"]
    second = (await client.post("/api/orders", json={"productId": product.id}, headers=auth(other_buyer))).json()["order"]

    first_checkout = await open_checkout(client, buyer, first["id"])
    second_checkout = await open_checkout(client, other_buyer, second["id"])
    await confirm(client, buyer, first["id"], first_checkout)
    await deliver_webhook(client, webhook_body("payment.captured", second_checkout))

    assert (await fetch(Order, first["id"])).payment_status == PaymentStatus.PAID
    assert (await fetch(Order, second["id"])).payment_status == PaymentStatus.PAID
    assert (await fetch(Product, product.id)).status == ProductStatus.SOLD


async def test_listing_to_sale_end_to_end(client, seller, buyer, admin):
    created = await client.post(
        "/api/products",
        json={"title": "Casio fx-991EX Calculator", "priceCents": 90000, "condition": "like-new"},
        headers=auth(seller),
    )
    assert created.status_code == 201
    product = created.json()["product"]
    assert product["status"] == "pending"
    assert product["slug"] == f"casio-fx-991ex-calculator-{product['id'][:8]}"

    # Not purchasable until approved
    blocked = await client.post("/api/orders", json={"productId": product["id"]}, headers=auth(buyer))
    assert blocked.status_code == 404

    approved = await client.put(
        f"/api/admin/products/{product['id']}/approve", json={"approved": True}, headers=auth(admin)
    )
    assert approved.json()["product"]["status"] == "available"

    order = (await client.post("/api/orders", json={"productId": product["id"]}, headers=auth(buyer))).json()["order"]
    gateway_order_id = await open_checkout(client, buyer, order["id"])
    paid = await confirm(client, buyer, order["id"], gateway_order_id)
    assert paid.json()["order"]["paymentStatus"] == "paid"

    listing = await client.get(f"/api/products/{product['id']}")
    assert listing.json()["product"]["status"] == "sold"

    search = await client.get("/api/products")
    assert search.json()["products"] == []

    stats = (await client.get("/api/admin/stats", headers=auth(admin))).json()["stats"]
    assert stats["paidOrders"] == 1
    assert stats["pendingProducts"] == 0

    replay = await confirm(client, buyer, order["id"], gateway_order_id)
    assert replay.status_code == 200
