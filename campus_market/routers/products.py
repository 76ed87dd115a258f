from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.config import settings
from campus_market.db import functions as queries
from campus_market.db.models import Product as ProductRow, ProductCondition, ProductStatus, new_id
from campus_market.db.session import get_db
from campus_market.models.product import Product, ProductCreate, ProductEdit, ProductSort, ProductWithSeller
from campus_market.services.auth import CurrentUser, get_current_user
from campus_market.services.product import generate_unique_slug
from campus_market.services.user import get_or_create_local_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/products", tags=["products"])

@router.post("", status_code=201)
async def create_product(
    body: ProductCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    # Products reference a local user row
    await get_or_create_local_user(db, current_user)

    product_id = new_id()
    product = ProductRow(
        id=product_id,
        user_id=current_user.id,
        title=body.title,
        slug=generate_unique_slug(body.title, product_id),
        description=body.description,
        price_cents=body.price_cents,
        currency=settings.PAYMENT_CURRENCY,
        category=body.category,
        condition=body.condition.value,
        location=body.location,
        images=body.images,
        status=ProductStatus.PENDING,  # Admin approval required
    )
    db.add(product)
    await db.commit()
    await db.refresh(product)

    logger.info(f"Product {product.id} listed by {current_user.id}, awaiting approval")
    return {"product": Product.model_validate(product)}

@router.get("")
async def get_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    condition: Optional[ProductCondition] = None,
    min_price: Optional[int] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[int] = Query(None, alias="maxPrice", ge=0),
    sort: ProductSort = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    products = await queries.search_available_products(
        db,
        q=q,
        category=category,
        condition=condition.value if condition else None,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return {
        "products": [ProductWithSeller.model_validate(product) for product in products],
        "page": page,
        "limit": limit,
    }

@router.get("/me")
async def get_my_products(current_user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    products = await queries.list_products_by_owner(db, current_user.id)
    return {"products": [Product.model_validate(product) for product in products]}

@router.get("/{product_id}")
async def get_product(product_id: str, db: AsyncSession = Depends(get_db)):
    await queries.increment_product_views(db, product_id)
    await db.commit()

    product = await queries.get_product_with_seller(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": ProductWithSeller.model_validate(product)}

async def _get_owned_product(db: AsyncSession, product_id: str, current_user: CurrentUser, verb: str) -> ProductRow:
    product = await queries.get_product_by_id(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    if product.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=403, detail=f"Not authorized to {verb} this product")
    return product

@router.put("/{product_id}")
async def update_product(
    product_id: str,
    body: ProductEdit,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    product = await _get_owned_product(db, product_id, current_user, "update")

    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if "condition" in updates:
        updates["condition"] = updates["condition"].value
    if "title" in updates:
        updates["slug"] = generate_unique_slug(updates["title"], product.id)
    for field, value in updates.items():
        setattr(product, field, value)
    await db.commit()
    await db.refresh(product)

    return {"product": Product.model_validate(product)}

@router.delete("/{product_id}")
async def delete_product(
    product_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _get_owned_product(db, product_id, current_user, "delete")

    await queries.delete_product(db, product_id)
    await db.commit()

    logger.info(f"Product {product_id} deleted by {current_user.id}")
    return {"message": "Product deleted successfully"}
