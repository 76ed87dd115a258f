from typing import List, Optional
from datetime import datetime
import uuid

from campus_market.db.models import OrderStatus, PaymentStatus
from campus_market.models.base import ApiModel
from campus_market.models.payment import PaymentTransaction
from campus_market.models.product import Product
from campus_market.models.user import UserSummary

class Order(ApiModel):
    id: str
    product_id: Optional[str] = None
    buyer_id: str
    seller_id: str
    status: OrderStatus
    total_amount: int
    payment_status: PaymentStatus
    created_at: datetime
    updated_at: datetime

class OrderWithParties(Order):
    product: Optional[Product] = None
    buyer: Optional[UserSummary] = None
    seller: Optional[UserSummary] = None

class OrderDetail(OrderWithParties):
    payment_transactions: List[PaymentTransaction] = []

class OrderCreate(ApiModel):
    product_id: uuid.UUID

class OrderStatusUpdate(ApiModel):
    status: OrderStatus
