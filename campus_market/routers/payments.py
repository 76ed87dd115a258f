from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.db.session import get_db
from campus_market.models.order import OrderDetail
from campus_market.models.payment import CheckoutRequest, CheckoutSessionResponse, PaymentVerifyRequest
from campus_market.services import order as order_service
from campus_market.services.auth import CurrentUser, get_current_user
from campus_market.services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/payments", tags=["payments"])

WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"

@router.post("/create-order", response_model=CheckoutSessionResponse)
async def create_payment_order(
    body: CheckoutRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    order_id = str(body.order_id)
    session = await order_service.start_checkout(db, gateway, order_id, current_user.id)
    return CheckoutSessionResponse(
        gateway_order_id=session.gateway_order_id,
        amount=session.amount,
        currency=session.currency,
        order_id=order_id,
    )

@router.post("/verify")
async def verify_payment(
    body: PaymentVerifyRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    order = await order_service.confirm_payment(
        db,
        gateway,
        gateway_order_id=body.gateway_order_id,
        gateway_payment_id=body.gateway_payment_id,
        signature=body.signature,
        order_id=str(body.order_id),
    )
    return {"success": True, "order": OrderDetail.model_validate(order)}

@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    # Signed over the exact bytes, so read them before any JSON parsing
    raw_body = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)
    return await order_service.reconcile_webhook(db, gateway, raw_body, signature)
