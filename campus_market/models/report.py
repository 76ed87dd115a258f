from pydantic import Field
from typing import Literal, Optional
from datetime import datetime
import uuid

from campus_market.db.models import ReportStatus
from campus_market.models.base import ApiModel
from campus_market.models.product import Product
from campus_market.models.user import UserSummary

class Report(ApiModel):
    id: str
    product_id: str
    reported_by: Optional[str] = None
    reason: str
    status: ReportStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

class ReportWithRelations(Report):
    product: Optional[Product] = None
    reporter: Optional[UserSummary] = None

class ReportCreate(ApiModel):
    product_id: uuid.UUID
    reason: str = Field(..., min_length=10)

class ReportResolve(ApiModel):
    action: Literal["approve", "remove", "warn"]
    note: Optional[str] = None
