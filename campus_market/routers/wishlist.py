from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.db import functions as queries
from campus_market.db.models import WishlistItem as WishlistRow
from campus_market.db.session import get_db
from campus_market.models.wishlist import WishlistAdd, WishlistEntry, WishlistItem
from campus_market.services.auth import CurrentUser, get_current_user
from campus_market.services.user import get_or_create_local_user

router = APIRouter(prefix="/wishlist", tags=["wishlist"])

@router.post("", status_code=201)
async def add_to_wishlist(
    body: WishlistAdd,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Add a product to the user's wishlist"""
    product_id = str(body.product_id)
    product = await queries.get_product_by_id(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    if await queries.get_wishlist_item(db, current_user.id, product_id):
        raise HTTPException(status_code=400, detail="Product already in wishlist")

    await get_or_create_local_user(db, current_user)
    item = WishlistRow(user_id=current_user.id, product_id=product_id)
    db.add(item)
    await db.commit()
    await db.refresh(item)

    return {"wishlistItem": WishlistItem.model_validate(item)}

@router.get("")
async def get_wishlist(current_user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Get the user's wishlisted products with their sellers"""
    items = await queries.list_wishlist(db, current_user.id)
    return {"wishlist": [WishlistEntry.model_validate(item) for item in items]}

@router.delete("/{product_id}")
async def remove_from_wishlist(
    product_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    removed = await queries.delete_wishlist_item(db, current_user.id, product_id)
    await db.commit()

    if not removed:
        return {"message": "Product was not in wishlist"}
    return {"message": "Removed from wishlist"}
