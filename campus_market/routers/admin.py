from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from datetime import datetime, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.db import functions as queries
from campus_market.db.models import OrderStatus, PaymentStatus, ProductStatus, ReportStatus
from campus_market.db.session import get_db
from campus_market.models.order import OrderDetail, OrderStatusUpdate, OrderWithParties
from campus_market.models.product import ProductApproval, ProductWithOwner
from campus_market.models.report import ReportResolve, ReportWithRelations
from campus_market.models.user import User
from campus_market.services import order as order_service
from campus_market.services.auth import CurrentUser, get_admin_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

# Dashboard

@router.get("/stats")
async def get_admin_stats(admin_user: CurrentUser = Depends(get_admin_user), db: AsyncSession = Depends(get_db)):
    return {
        "stats": {
            "totalUsers": await queries.count_users(db),
            "totalProducts": await queries.count_products(db),
            "totalOrders": await queries.count_orders(db),
            "pendingProducts": await queries.count_products(db, ProductStatus.PENDING),
            "paidOrders": await queries.count_orders(db, PaymentStatus.PAID),
        }
    }

# User management

@router.get("/users")
async def get_all_users(admin_user: CurrentUser = Depends(get_admin_user), db: AsyncSession = Depends(get_db)):
    users = await queries.list_users(db)
    return {"users": [User.model_validate(user) for user in users]}

@router.put("/users/{user_id}/toggle-block")
async def toggle_user_block(
    user_id: str,
    admin_user: CurrentUser = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    user = await queries.get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if user.id == admin_user.id:
        raise HTTPException(status_code=400, detail="Cannot block yourself")

    if user.is_admin:
        raise HTTPException(status_code=400, detail="Cannot block admin users")

    user.is_blocked = not user.is_blocked
    await db.commit()
    await db.refresh(user)

    logger.info(f"Admin {admin_user.id} set blocked={user.is_blocked} on user {user_id}")
    return {"user": User.model_validate(user)}

# Product management

@router.get("/products")
async def get_all_products(
    status: Optional[ProductStatus] = None,
    admin_user: CurrentUser = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    products = await queries.list_products_for_admin(db, status)
    return {"products": [ProductWithOwner.model_validate(product) for product in products]}

@router.put("/products/{product_id}/approve")
async def approve_product(
    product_id: str,
    body: ProductApproval,
    admin_user: CurrentUser = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    product = await queries.get_product_by_id(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    new_status = ProductStatus.AVAILABLE if body.approved else ProductStatus.REJECTED
    # Only listings awaiting review; a sold product must never be relisted here
    if not await queries.set_product_status(db, product_id, new_status, expected_status=ProductStatus.PENDING):
        raise HTTPException(status_code=400, detail=f"Product is {product.status.value}, not pending review")
    await db.commit()

    logger.info(f"Admin {admin_user.id} moved product {product_id} to {new_status.value}")
    product = await queries.get_product_with_seller(db, product_id)
    return {"product": ProductWithOwner.model_validate(product)}

# Order management

@router.get("/orders")
async def get_all_orders(
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    order_status: Optional[OrderStatus] = Query(None, alias="orderStatus"),
    admin_user: CurrentUser = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    orders = await queries.list_orders_for_admin(db, payment_status, order_status)
    return {"orders": [OrderWithParties.model_validate(order) for order in orders]}

@router.put("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    admin_user: CurrentUser = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.update_order_status(db, order_id, body.status)
    return {"order": OrderDetail.model_validate(order)}

@router.put("/orders/{order_id}/payment-failed")
async def mark_order_payment_failed(
    order_id: str,
    admin_user: CurrentUser = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.mark_payment_failed(db, order_id)
    return {"order": OrderDetail.model_validate(order)}

# Reports management

@router.get("/reports")
async def get_all_reports(admin_user: CurrentUser = Depends(get_admin_user), db: AsyncSession = Depends(get_db)):
    reports = await queries.list_reports(db)
    return {"reports": [ReportWithRelations.model_validate(report) for report in reports]}

@router.put("/reports/{report_id}/resolve")
async def resolve_report(
    report_id: str,
    body: ReportResolve,
    admin_user: CurrentUser = Depends(get_admin_user),
    db: AsyncSession = Depends(get_db),
):
    report = await queries.get_report_by_id(db, report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")

    report.status = ReportStatus.RESOLVED
    report.resolved_at = datetime.now(timezone.utc)
    report.resolved_by = admin_user.id

    if body.action == "remove" and report.product_id:
        await queries.reject_listing(db, report.product_id)
    await db.commit()

    logger.info(f"Report {report_id} resolved by {admin_user.id} with action {body.action}")
    return {"message": "Report resolved successfully"}
