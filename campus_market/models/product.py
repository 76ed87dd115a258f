from pydantic import Field
from typing import List, Literal, Optional
from datetime import datetime

from campus_market.db.models import ProductCondition, ProductStatus
from campus_market.models.base import ApiModel
from campus_market.models.user import UserPublic, UserSummary

ProductSort = Literal["newest", "price-low", "price-high"]

class Product(ApiModel):
    id: str
    user_id: str
    title: str
    slug: str
    description: Optional[str] = None
    price_cents: int
    currency: str
    category: Optional[str] = None
    condition: Optional[str] = None
    images: List[str] = []
    location: Optional[str] = None
    status: ProductStatus
    views_count: int = 0
    created_at: datetime
    updated_at: datetime

class ProductWithSeller(Product):
    user: Optional[UserPublic] = None

class ProductWithOwner(Product):
    user: Optional[UserSummary] = None

class ProductCreate(ApiModel):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    price_cents: int = Field(..., gt=0)
    category: Optional[str] = Field(None, max_length=100)
    condition: ProductCondition
    location: Optional[str] = Field(None, max_length=255)
    images: List[str] = Field(default_factory=list, max_length=10)

class ProductEdit(ApiModel):
    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = None
    price_cents: Optional[int] = Field(None, gt=0)
    category: Optional[str] = Field(None, max_length=100)
    condition: Optional[ProductCondition] = None
    location: Optional[str] = Field(None, max_length=255)
    images: Optional[List[str]] = Field(None, max_length=10)

class ProductApproval(ApiModel):
    approved: bool  # true = available, false = rejected
