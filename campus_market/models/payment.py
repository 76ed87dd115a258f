from pydantic import AliasChoices, Field
from typing import Optional
from datetime import datetime
import uuid

from campus_market.db.models import TransactionStatus
from campus_market.models.base import ApiModel

class PaymentTransaction(ApiModel):
    id: str
    order_id: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    amount: int
    status: TransactionStatus
    signature: Optional[str] = None
    created_at: datetime

class CheckoutRequest(ApiModel):
    order_id: uuid.UUID

class CheckoutSessionResponse(ApiModel):
    gateway_order_id: str
    amount: int
    currency: str
    order_id: str

class PaymentVerifyRequest(ApiModel):
    # The gateway's checkout widget reports its own key names
    gateway_order_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("gatewayOrderId", "razorpayOrderId", "gateway_order_id")
    )
    gateway_payment_id: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("gatewayPaymentId", "razorpayPaymentId", "gateway_payment_id")
    )
    signature: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("signature", "razorpaySignature")
    )
    order_id: uuid.UUID = Field(..., validation_alias=AliasChoices("orderId", "order_id"))
