from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.db.session import get_db
from campus_market.models.order import Order, OrderCreate, OrderDetail, OrderWithParties
from campus_market.services import order as order_service
from campus_market.services.auth import CurrentUser, get_current_user
from campus_market.services.user import get_or_create_local_user

router = APIRouter(prefix="/orders", tags=["orders"])

@router.post("", status_code=201)
async def create_order(
    body: OrderCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    # orders.buyer_id references a local user row
    await get_or_create_local_user(db, current_user)
    order = await order_service.create_order(db, current_user.id, str(body.product_id))
    return {"order": Order.model_validate(order)}

@router.get("")
async def get_user_orders(current_user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    orders = await order_service.list_user_orders(db, current_user.id)
    return {"orders": [OrderWithParties.model_validate(order) for order in orders]}

@router.get("/{order_id}")
async def get_order(
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_order(db, order_id, current_user.id, current_user.is_admin)
    return {"order": OrderDetail.model_validate(order)}
