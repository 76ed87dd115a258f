"""Razorpay checkout adapter.

Everything that talks to the payment processor or checks its signatures
lives here, so the order service only sees ``CheckoutSession`` values,
booleans and ``GatewayError``.
"""
from dataclasses import dataclass
from typing import Optional, Union
import hashlib
import hmac
import logging

import httpx

from campus_market.core.config import settings
from campus_market.core.errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    gateway_order_id: str
    amount: int
    currency: str


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        api_url: str = "https://api.razorpay.com/v1",
        currency: str = "INR",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.api_url = api_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout
        self._transport = transport

    async def create_checkout_session(self, amount: int, order_id: str) -> CheckoutSession:
        """Create a remote order for ``amount`` minor units, receipt = our order id.

        Bounded by ``timeout``; any failure surfaces as ``GatewayError`` and is
        not retried here.
        """
        payload = {"amount": amount, "currency": self.currency, "receipt": order_id}
        try:
            async with httpx.AsyncClient(
                base_url=self.api_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/orders", json=payload)
        except httpx.TimeoutException:
            logger.warning(f"Payment gateway timed out creating order for {order_id}")
            raise GatewayError("Payment gateway timed out")
        except httpx.HTTPError as e:
            logger.error(f"Payment gateway unreachable for order {order_id}: {str(e)}")
            raise GatewayError("Payment gateway unavailable")

        if response.status_code >= 400:
            logger.error(
                f"Payment gateway rejected order {order_id}: {response.status_code} {response.text[:200]}"
            )
            raise GatewayError("Failed to create payment order")

        try:
            body = response.json()
            return CheckoutSession(
                gateway_order_id=body["id"],
                amount=int(body.get("amount", amount)),
                currency=body.get("currency", self.currency),
            )
        except (ValueError, KeyError, TypeError):
            logger.error(f"Payment gateway returned a malformed order for {order_id}")
            raise GatewayError("Failed to create payment order")

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: Optional[str]) -> bool:
        """Check the checkout signature: HMAC-SHA256 of ``order_id|payment_id`` with the key secret."""
        if not signature or not self.key_secret:
            return False
        message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
        expected = _hmac_sha256_hex(self.key_secret, message)
        return hmac.compare_digest(expected, signature.strip())

    def verify_webhook_signature(self, raw_body: Union[bytes, bytearray], signature_header: Optional[str]) -> bool:
        """Check a webhook delivery against the exact bytes received."""
        if not signature_header or not self.webhook_secret:
            return False
        expected = _hmac_sha256_hex(self.webhook_secret, bytes(raw_body))
        return hmac.compare_digest(expected, signature_header.strip())


_gateway: Optional[PaymentGateway] = None

def get_payment_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
            api_url=settings.RAZORPAY_API_URL,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        )
    return _gateway
