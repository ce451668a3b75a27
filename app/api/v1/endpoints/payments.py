import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import (
    get_current_user,
    get_payment_service,
    get_redis,
    get_settlement_service,
)
from app.core.limiter import PAYMENT_LIMIT, limiter
from app.db.sessions import get_async_session
from app.models.user import User
from app.schemas.payment import (
    PaymentIntentResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
)
from app.services.payment_service import PaymentService
from app.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


# --------------------------------------------------
# CREATE PAYMENT INTENT
# --------------------------------------------------
@router.post("/orders/{order_id}/intent", response_model=PaymentIntentResponse)
@limiter.limit(PAYMENT_LIMIT)
async def create_payment_intent(
    request: Request,
    order_id: UUID,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await service.create_payment_intent(
        user_id=current_user.id,
        order_id=order_id,
    )


# --------------------------------------------------
# CLIENT CALLBACK VERIFICATION
# --------------------------------------------------
@router.post("/verify", response_model=PaymentVerifyResponse)
@limiter.limit(PAYMENT_LIMIT)
async def verify_payment(
    request: Request,
    payload: PaymentVerifyRequest,
    current_user: User = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    order = await service.verify_payment(
        user_id=current_user.id,
        order_id=payload.order_id,
        razorpay_order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
    )

    return {
        "order_id": order.id,
        "status": order.status,
        "payment_status": order.payment_status,
    }


# --------------------------------------------------
# RAZORPAY WEBHOOK
# --------------------------------------------------
@router.post("/webhooks/razorpay")
async def razorpay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    redis: Redis = Depends(get_redis),
):
    """
    Always answers 200: any other status makes the provider retry.
    The outcome is only visible in the logs.
    """
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        logger.error("Webhook received but payment gateway is not configured")
        return {"status": "ok"}

    body = await request.body()

    service = SettlementService(db, gateway, redis)
    await service.handle_webhook(
        body=body,
        signature=request.headers.get("x-razorpay-signature"),
        event_id=request.headers.get("x-razorpay-event-id"),
    )

    return {"status": "ok"}
