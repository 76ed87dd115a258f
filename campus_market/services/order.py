"""Order and payment lifecycle.

Two independent lifecycles hang off an order:

* ``payment_status``: ``pending -> paid`` (valid signature or captured
  webhook) and ``pending -> failed`` (administrative). ``paid`` and
  ``failed`` are absorbing.
* ``status``: ``placed -> confirmed -> delivered`` and
  ``placed|confirmed -> cancelled``, driven only by administrators.

The client confirmation and the gateway webhook both funnel into
``_settle_paid_order``. It flips ``payment_status`` with a conditional
update and only the caller that wins that update marks the product sold,
so replays and races between the two entry points are harmless.
"""
from typing import Any, Dict, List, Optional
import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.errors import Forbidden, InvalidOperation, InvalidSignature, NotFound
from campus_market.db import functions as queries
from campus_market.db.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    ProductStatus,
    TransactionStatus,
)
from campus_market.services.payment_gateway import CheckoutSession, PaymentGateway

logger = logging.getLogger(__name__)

ORDER_STATUS_TRANSITIONS = {
    OrderStatus.PLACED: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"


async def create_order(db: AsyncSession, buyer_id: str, product_id: str) -> Order:
    product = await queries.get_available_product(db, product_id)
    if not product:
        raise NotFound("Product not available")

    if product.user_id == buyer_id:
        raise InvalidOperation("Cannot buy your own product")

    order = Order(
        product_id=product.id,
        buyer_id=buyer_id,
        seller_id=product.user_id,
        total_amount=product.price_cents,
        status=OrderStatus.PLACED,
        payment_status=PaymentStatus.PENDING,
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)

    logger.info(f"Order {order.id} placed by {buyer_id} for product {product.id} ({order.total_amount})")
    return order

async def list_user_orders(db: AsyncSession, user_id: str) -> List[Order]:
    return await queries.list_orders_for_user(db, user_id)

async def get_order(db: AsyncSession, order_id: str, requester_id: str, requester_is_admin: bool) -> Order:
    order = await queries.get_order_detail(db, order_id)
    if not order:
        raise NotFound("Order not found")

    if not requester_is_admin and requester_id not in (order.buyer_id, order.seller_id):
        raise Forbidden("Not authorized to view this order")

    return order

async def start_checkout(
    db: AsyncSession,
    gateway: PaymentGateway,
    order_id: str,
    requester_id: str,
) -> CheckoutSession:
    order = await queries.get_order_by_id(db, order_id)
    if not order:
        raise NotFound("Order not found")

    if order.buyer_id != requester_id:
        raise Forbidden("Not authorized")

    if order.payment_status == PaymentStatus.PAID:
        raise InvalidOperation("Order already paid")

    if order.payment_status == PaymentStatus.FAILED:
        raise InvalidOperation("Order payment has failed")

    if order.status == OrderStatus.CANCELLED:
        raise InvalidOperation("Order is cancelled")

    # Remote call first: a timeout or gateway error must not leave a local row behind
    session = await gateway.create_checkout_session(order.total_amount, order.id)

    # One authoritative attempt per order: a retry overwrites the unpaid attempt
    transaction = await queries.get_unpaid_transaction_for_order(db, order.id)
    if transaction is None:
        transaction = PaymentTransaction(order_id=order.id)
        db.add(transaction)
    elif transaction.gateway_order_id:
        # A capture on the replaced checkout no longer matches any transaction
        logger.warning(
            f"Order {order.id} checkout {transaction.gateway_order_id} replaced by {session.gateway_order_id}"
        )
    transaction.gateway_order_id = session.gateway_order_id
    transaction.gateway_payment_id = None
    transaction.signature = None
    transaction.amount = order.total_amount
    transaction.status = TransactionStatus.CREATED
    await db.commit()

    logger.info(f"Checkout {session.gateway_order_id} opened for order {order.id}")
    return session

async def _settle_paid_order(db: AsyncSession, order_id: str) -> bool:
    """Flip the order to paid and claim its product; True if this call did it."""
    if not await queries.set_order_payment_status(db, order_id, PaymentStatus.PAID):
        return False

    order = await queries.get_order_by_id(db, order_id)
    if order.product_id:
        claimed = await queries.set_product_status(
            db, order.product_id, ProductStatus.SOLD, expected_status=ProductStatus.AVAILABLE
        )
        if not claimed:
            logger.warning(f"Order {order_id} paid but product {order.product_id} was no longer available")
    return True

async def confirm_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    order_id: str,
) -> Order:
    if not gateway.verify_signature(gateway_order_id, gateway_payment_id, signature):
        logger.warning(f"Invalid payment signature for gateway order {gateway_order_id}")
        raise InvalidSignature("Invalid payment signature")

    transaction = await queries.get_transaction_by_gateway_order_id(db, gateway_order_id)
    if transaction is None or transaction.order_id != order_id:
        raise NotFound("Payment transaction not found")

    order = await queries.get_order_by_id(db, order_id)
    if order.payment_status == PaymentStatus.FAILED:
        logger.warning(f"Confirmation {gateway_payment_id} rejected, order {order_id} payment already failed")
        raise InvalidOperation("Order payment has failed")

    await queries.mark_transaction_paid(db, gateway_order_id, gateway_payment_id, signature)
    settled = await _settle_paid_order(db, order_id)
    await db.commit()

    order = await queries.get_order_detail(db, order_id)
    if settled:
        logger.info(f"Order {order_id} paid via client confirmation ({gateway_payment_id})")
    elif order.payment_status == PaymentStatus.PAID:
        logger.info(f"Order {order_id} already settled; confirmation replay ignored")
    else:
        logger.warning(f"Captured payment {gateway_payment_id} for order {order_id} in state {order.payment_status.value}")

    return order

def _payment_entity(payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        entity = payload["payment"]["entity"]
    except (KeyError, TypeError):
        return {}
    return entity if isinstance(entity, dict) else {}

async def reconcile_webhook(
    db: AsyncSession,
    gateway: PaymentGateway,
    raw_body: bytes,
    signature_header: Optional[str],
) -> Dict[str, bool]:
    """Apply a gateway webhook delivery.

    The signature is checked against ``raw_body`` before anything is parsed.
    Unknown events and unknown gateway orders are acknowledged untouched so
    the gateway stops redelivering them.
    """
    if not gateway.verify_webhook_signature(raw_body, signature_header):
        logger.warning("Rejected webhook with invalid signature")
        raise InvalidSignature("Invalid webhook signature")

    try:
        envelope = json.loads(raw_body)
    except ValueError:
        raise InvalidOperation("Invalid webhook payload")
    if not isinstance(envelope, dict):
        raise InvalidOperation("Invalid webhook payload")

    event = envelope.get("event")
    entity = _payment_entity(envelope.get("payload"))
    gateway_order_id = entity.get("order_id")
    gateway_payment_id = entity.get("id")

    if event not in (PAYMENT_CAPTURED, PAYMENT_FAILED):
        logger.info(f"Ignoring webhook event {event}")
        return {"received": True}

    if not gateway_order_id:
        logger.warning(f"Webhook {event} without a gateway order id")
        return {"received": True}

    transaction = await queries.get_transaction_by_gateway_order_id(db, gateway_order_id)
    if transaction is None:
        logger.warning(f"Webhook {event} for unknown gateway order {gateway_order_id}")
        return {"received": True}

    if event == PAYMENT_CAPTURED:
        await queries.mark_transaction_paid(db, gateway_order_id, gateway_payment_id)
        settled = await _settle_paid_order(db, transaction.order_id)
        await db.commit()
        if settled:
            logger.info(f"Order {transaction.order_id} paid via webhook ({gateway_payment_id})")
        else:
            order = await queries.get_order_by_id(db, transaction.order_id)
            if order.payment_status == PaymentStatus.FAILED:
                logger.warning(
                    f"Captured payment {gateway_payment_id} for order {order.id} whose payment had failed"
                )
    else:
        # Only the attempt fails; the order stays pending for the client or an admin
        failed = await queries.mark_transaction_failed(db, gateway_order_id, gateway_payment_id)
        await db.commit()
        if failed:
            logger.info(f"Payment attempt {gateway_order_id} failed for order {transaction.order_id}")

    return {"received": True}

async def update_order_status(db: AsyncSession, order_id: str, new_status: OrderStatus) -> Order:
    order = await queries.get_order_by_id(db, order_id)
    if not order:
        raise NotFound("Order not found")

    current = order.status
    if new_status not in ORDER_STATUS_TRANSITIONS[current]:
        raise InvalidOperation(f"Cannot change order status from {current.value} to {new_status.value}")

    if not await queries.set_order_status(db, order_id, new_status, expected_status=current):
        # Another admin moved it first
        raise InvalidOperation("Order status changed concurrently, reload and retry")
    await db.commit()

    logger.info(f"Order {order_id} status {current.value} -> {new_status.value}")
    return await queries.get_order_detail(db, order_id)

async def mark_payment_failed(db: AsyncSession, order_id: str) -> Order:
    order = await queries.get_order_by_id(db, order_id)
    if not order:
        raise NotFound("Order not found")

    if not await queries.set_order_payment_status(db, order_id, PaymentStatus.FAILED):
        raise InvalidOperation(f"Payment is already {order.payment_status.value}")
    await db.commit()

    logger.info(f"Order {order_id} payment marked failed by administrator")
    return await queries.get_order_detail(db, order_id)
