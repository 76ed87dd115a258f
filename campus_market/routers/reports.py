from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from campus_market.db import functions as queries
from campus_market.db.models import Report as ReportRow
from campus_market.db.session import get_db
from campus_market.models.report import Report, ReportCreate
from campus_market.services.auth import CurrentUser, get_current_user
from campus_market.services.user import get_or_create_local_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reports", tags=["reports"])

@router.post("", status_code=201)
async def create_report(
    body: ReportCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    product_id = str(body.product_id)
    if not await queries.get_product_by_id(db, product_id):
        raise HTTPException(status_code=404, detail="Product not found")

    await get_or_create_local_user(db, current_user)
    report = ReportRow(product_id=product_id, reported_by=current_user.id, reason=body.reason)
    db.add(report)
    await db.commit()
    await db.refresh(report)

    logger.info(f"Product {product_id} reported by {current_user.id}")
    return {"report": Report.model_validate(report)}
