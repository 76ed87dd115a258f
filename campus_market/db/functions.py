"""Named queries over the marketplace tables.

Each function is one statement (or one read plus its eager loads) so the
services above compose them without building SQL conditions at runtime.
Conditional updates return whether a row actually changed.
"""
from typing import List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from campus_market.db.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    PaymentTransaction,
    Product,
    ProductStatus,
    Report,
    TransactionStatus,
    User,
    WishlistItem,
)

# Users

async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()

async def list_users(db: AsyncSession) -> List[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return list(result.scalars().all())

async def count_users(db: AsyncSession) -> int:
    return await db.scalar(select(func.count()).select_from(User))

# Products

async def get_product_by_id(db: AsyncSession, product_id: str) -> Optional[Product]:
    result = await db.execute(
        select(Product).where(Product.id == product_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def get_product_with_seller(db: AsyncSession, product_id: str) -> Optional[Product]:
    result = await db.execute(
        select(Product)
        .where(Product.id == product_id)
        .options(selectinload(Product.user))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def get_available_product(db: AsyncSession, product_id: str) -> Optional[Product]:
    result = await db.execute(
        select(Product).where(Product.id == product_id, Product.status == ProductStatus.AVAILABLE)
    )
    return result.scalar_one_or_none()

async def search_available_products(
    db: AsyncSession,
    q: Optional[str] = None,
    category: Optional[str] = None,
    condition: Optional[str] = None,
    min_price: Optional[int] = None,
    max_price: Optional[int] = None,
    sort: str = "newest",
    limit: int = 20,
    offset: int = 0,
) -> List[Product]:
    stmt = (
        select(Product)
        .where(Product.status == ProductStatus.AVAILABLE)
        .options(selectinload(Product.user))
    )
    if q:
        pattern = f"%{q}%"
        stmt = stmt.where(or_(Product.title.ilike(pattern), Product.description.ilike(pattern)))
    if category:
        stmt = stmt.where(Product.category == category)
    if condition:
        stmt = stmt.where(Product.condition == condition)
    if min_price is not None:
        stmt = stmt.where(Product.price_cents >= min_price)
    if max_price is not None:
        stmt = stmt.where(Product.price_cents <= max_price)

    if sort == "price-low":
        stmt = stmt.order_by(Product.price_cents.asc())
    elif sort == "price-high":
        stmt = stmt.order_by(Product.price_cents.desc())
    else:
        stmt = stmt.order_by(Product.created_at.desc())

    result = await db.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())

async def list_products_by_owner(db: AsyncSession, user_id: str) -> List[Product]:
    result = await db.execute(
        select(Product).where(Product.user_id == user_id).order_by(Product.created_at.desc())
    )
    return list(result.scalars().all())

async def list_products_for_admin(db: AsyncSession, status: Optional[ProductStatus] = None) -> List[Product]:
    stmt = select(Product).options(selectinload(Product.user)).order_by(Product.created_at.desc())
    if status is not None:
        stmt = stmt.where(Product.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())

async def count_products(db: AsyncSession, status: Optional[ProductStatus] = None) -> int:
    stmt = select(func.count()).select_from(Product)
    if status is not None:
        stmt = stmt.where(Product.status == status)
    return await db.scalar(stmt)

async def increment_product_views(db: AsyncSession, product_id: str):
    await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(views_count=Product.views_count + 1)
        .execution_options(synchronize_session=False)
    )

async def set_product_status(
    db: AsyncSession,
    product_id: str,
    new_status: ProductStatus,
    expected_status: ProductStatus,
) -> bool:
    """Compare-and-set on product status."""
    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.status == expected_status)
        .values(status=new_status)
    )
    return result.rowcount == 1

async def reject_listing(db: AsyncSession, product_id: str) -> bool:
    """Take a listing down unless it has already been sold."""
    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.status != ProductStatus.SOLD)
        .values(status=ProductStatus.REJECTED)
    )
    return result.rowcount == 1

async def delete_product(db: AsyncSession, product_id: str):
    await db.execute(delete(Product).where(Product.id == product_id))

# Orders

def _order_with_parties():
    return (
        selectinload(Order.product),
        selectinload(Order.buyer),
        selectinload(Order.seller),
    )

async def get_order_by_id(db: AsyncSession, order_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def get_order_detail(db: AsyncSession, order_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(*_order_with_parties(), selectinload(Order.payment_transactions))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()

async def list_orders_for_user(db: AsyncSession, user_id: str) -> List[Order]:
    result = await db.execute(
        select(Order)
        .where(or_(Order.buyer_id == user_id, Order.seller_id == user_id))
        .options(*_order_with_parties())
        .order_by(Order.created_at.desc())
    )
    return list(result.scalars().all())

async def list_orders_for_admin(
    db: AsyncSession,
    payment_status: Optional[PaymentStatus] = None,
    order_status: Optional[OrderStatus] = None,
) -> List[Order]:
    stmt = select(Order).options(*_order_with_parties()).order_by(Order.created_at.desc())
    if payment_status is not None:
        stmt = stmt.where(Order.payment_status == payment_status)
    if order_status is not None:
        stmt = stmt.where(Order.status == order_status)
    result = await db.execute(stmt)
    return list(result.scalars().all())

async def count_orders(db: AsyncSession, payment_status: Optional[PaymentStatus] = None) -> int:
    stmt = select(func.count()).select_from(Order)
    if payment_status is not None:
        stmt = stmt.where(Order.payment_status == payment_status)
    return await db.scalar(stmt)

async def set_order_payment_status(
    db: AsyncSession,
    order_id: str,
    new_status: PaymentStatus,
) -> bool:
    """Move payment status out of pending; a no-op once paid or failed."""
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_status == PaymentStatus.PENDING)
        .values(payment_status=new_status)
    )
    return result.rowcount == 1

async def set_order_status(
    db: AsyncSession,
    order_id: str,
    new_status: OrderStatus,
    expected_status: OrderStatus,
) -> bool:
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == expected_status)
        .values(status=new_status)
    )
    return result.rowcount == 1

# Payment transactions

async def get_transaction_by_gateway_order_id(db: AsyncSession, gateway_order_id: str) -> Optional[PaymentTransaction]:
    result = await db.execute(
        select(PaymentTransaction)
        .where(PaymentTransaction.gateway_order_id == gateway_order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()

async def get_unpaid_transaction_for_order(db: AsyncSession, order_id: str) -> Optional[PaymentTransaction]:
    result = await db.execute(
        select(PaymentTransaction)
        .where(
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.status != TransactionStatus.PAID,
        )
        .order_by(PaymentTransaction.created_at.desc())
    )
    return result.scalars().first()

async def mark_transaction_paid(
    db: AsyncSession,
    gateway_order_id: str,
    gateway_payment_id: Optional[str],
    signature: Optional[str] = None,
) -> bool:
    values = {"status": TransactionStatus.PAID}
    if gateway_payment_id:
        values["gateway_payment_id"] = gateway_payment_id
    if signature is not None:
        values["signature"] = signature
    result = await db.execute(
        update(PaymentTransaction)
        .where(
            PaymentTransaction.gateway_order_id == gateway_order_id,
            PaymentTransaction.status != TransactionStatus.PAID,
        )
        .values(**values)
    )
    return result.rowcount > 0

async def mark_transaction_failed(
    db: AsyncSession,
    gateway_order_id: str,
    gateway_payment_id: Optional[str] = None,
) -> bool:
    values = {"status": TransactionStatus.FAILED}
    if gateway_payment_id:
        values["gateway_payment_id"] = gateway_payment_id
    result = await db.execute(
        update(PaymentTransaction)
        .where(
            PaymentTransaction.gateway_order_id == gateway_order_id,
            PaymentTransaction.status == TransactionStatus.CREATED,
        )
        .values(**values)
    )
    return result.rowcount > 0

# Wishlist

async def get_wishlist_item(db: AsyncSession, user_id: str, product_id: str) -> Optional[WishlistItem]:
    result = await db.execute(
        select(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
    )
    return result.scalar_one_or_none()

async def list_wishlist(db: AsyncSession, user_id: str) -> List[WishlistItem]:
    result = await db.execute(
        select(WishlistItem)
        .where(WishlistItem.user_id == user_id)
        .options(selectinload(WishlistItem.product).selectinload(Product.user))
        .order_by(WishlistItem.created_at.desc())
    )
    return list(result.scalars().all())

async def delete_wishlist_item(db: AsyncSession, user_id: str, product_id: str) -> bool:
    result = await db.execute(
        delete(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
    )
    return result.rowcount > 0

# Reports

async def get_report_by_id(db: AsyncSession, report_id: str) -> Optional[Report]:
    result = await db.execute(select(Report).where(Report.id == report_id))
    return result.scalar_one_or_none()

async def list_reports(db: AsyncSession) -> List[Report]:
    result = await db.execute(
        select(Report)
        .options(selectinload(Report.product), selectinload(Report.reporter))
        .order_by(Report.created_at.desc())
    )
    return list(result.scalars().all())
