from datetime import datetime
import uuid

from campus_market.models.base import ApiModel
from campus_market.models.product import ProductWithSeller

class WishlistItem(ApiModel):
    id: str
    user_id: str
    product_id: str
    created_at: datetime

class WishlistEntry(WishlistItem):
    product: ProductWithSeller

class WishlistAdd(ApiModel):
    product_id: uuid.UUID
