import json
import logging
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    InvalidSignatureError,
    OrderNotFoundError,
    SessionMismatchError,
)
from app.crud.order import SETTLED_PAYMENT_STATUSES, OrderCRUD
from app.db.enums import PaymentStatus, WebhookEvent
from app.models.order import Order
from app.services.gateway.base import PaymentGateway

logger = logging.getLogger(__name__)

WEBHOOK_EVENT_TTL = 60 * 60 * 24

WEBHOOK_RESULTS = {
    WebhookEvent.PAYMENT_CAPTURED.value: PaymentStatus.PAID,
    WebhookEvent.PAYMENT_FAILED.value: PaymentStatus.FAILED,
}


def _payment_entity(payload: dict) -> dict:
    """payload.payment.entity, or an empty dict when any level is missing."""
    node = payload
    for key in ("payload", "payment", "entity"):
        node = node.get(key) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


class SettlementService:
    """
    The only writer of orders.payment_status.

    Both entry points (the client callback and the provider webhook) end in
    `_apply_settlement`, whose UPDATE refuses to touch an order that is
    already paid or refunded.
    """

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, redis: Redis | None = None):
        self.db = db
        self.gateway = gateway
        self.redis = redis
        self.order_crud = OrderCRUD(db)

    # PATH A: CLIENT CALLBACK
    async def verify_payment(
        self,
        *,
        user_id: UUID,
        order_id: UUID,
        razorpay_order_id: str,
        payment_id: str,
        signature: str,
    ) -> Order:
        if not self.gateway.verify_payment_signature(
            razorpay_order_id=razorpay_order_id,
            payment_id=payment_id,
            signature=signature,
        ):
            logger.warning(
                "Payment signature rejected",
                extra={"order_id": order_id, "user_id": user_id},
            )
            raise InvalidSignatureError()

        order = await self.order_crud.get_owned(order_id, user_id)
        if not order:
            raise OrderNotFoundError()

        if order.razorpay_order_id != razorpay_order_id:
            # Valid signature, but for a session this order does not hold
            logger.warning(
                f"Payment session mismatch: presented {razorpay_order_id}",
                extra={"order_id": order_id, "user_id": user_id},
            )
            raise SessionMismatchError()

        if order.payment_status in SETTLED_PAYMENT_STATUSES:
            return order

        await self._apply_settlement(
            order_id=order.id,
            payment_status=PaymentStatus.PAID,
            razorpay_order_id=razorpay_order_id,
            payment_id=payment_id,
            source="callback",
        )

        await self.db.refresh(order)
        return order

    # PATH B: PROVIDER WEBHOOK
    async def handle_webhook(
        self,
        *,
        body: bytes,
        signature: str | None,
        event_id: str | None = None,
    ) -> str:
        """
        Process one webhook delivery and return what happened to it.

        Never raises: the provider must always receive an acknowledgment,
        so every failure is logged and reported as an outcome string.
        """
        if not self.gateway.verify_webhook_signature(body=body, signature=signature):
            logger.warning("Webhook signature rejected", extra={"outcome": "invalid_signature"})
            return "invalid_signature"

        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Webhook body is not valid JSON")
            return "invalid_payload"

        if not isinstance(payload, dict):
            return "invalid_payload"

        event = payload.get("event")
        payment_status = WEBHOOK_RESULTS.get(event) if isinstance(event, str) else None
        if payment_status is None:
            return "ignored"

        entity = _payment_entity(payload)
        payment_id = entity.get("id")
        razorpay_order_id = entity.get("order_id")
        if not payment_id or not razorpay_order_id:
            logger.warning("Webhook payment entity incomplete", extra={"event": event})
            return "invalid_payload"

        if not await self._claim_event(event_id):
            return "duplicate"

        try:
            outcome = await self._settle_from_webhook(
                payment_status=payment_status,
                razorpay_order_id=razorpay_order_id,
                payment_id=payment_id,
            )
        except Exception:
            await self.db.rollback()
            await self._release_event(event_id)
            logger.exception("Webhook processing failed", extra={"event": event})
            return "error"

        logger.info(f"Webhook {event} processed", extra={"event": event, "outcome": outcome})
        return outcome

    async def _settle_from_webhook(
        self,
        *,
        payment_status: PaymentStatus,
        razorpay_order_id: str,
        payment_id: str,
    ) -> str:
        # No user context here: the webhook signature is the only authorization
        order = await self.order_crud.get_by_razorpay_order_id(razorpay_order_id)
        if not order:
            return "unknown_order"

        if order.payment_status in SETTLED_PAYMENT_STATUSES:
            return "already_paid"

        applied = await self._apply_settlement(
            order_id=order.id,
            payment_status=payment_status,
            razorpay_order_id=razorpay_order_id,
            payment_id=payment_id,
            source="webhook",
        )
        return "settled" if applied else "already_paid"

    # SHARED STATE TRANSITION
    async def _apply_settlement(
        self,
        *,
        order_id: UUID,
        payment_status: PaymentStatus,
        razorpay_order_id: str,
        payment_id: str,
        source: str,
    ) -> bool:
        try:
            applied = await self.order_crud.apply_payment_result(
                order_id=order_id,
                payment_status=payment_status,
                razorpay_order_id=razorpay_order_id,
                payment_id=payment_id,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if applied:
            logger.info(
                f"Order payment marked {payment_status.value} via {source}",
                extra={"order_id": order_id},
            )
        else:
            logger.info(
                f"Order already paid, {source} settlement skipped",
                extra={"order_id": order_id},
            )
        return applied

    # DELIVERY DE-DUPLICATION
    async def _claim_event(self, event_id: str | None) -> bool:
        if not event_id or self.redis is None:
            return True

        try:
            claimed = await self.redis.set(
                f"webhook:event:{event_id}", "1", ex=WEBHOOK_EVENT_TTL, nx=True
            )
        except RedisError as e:
            # payment_status guard still prevents double settlement
            logger.warning(f"Webhook de-duplication unavailable: {e}")
            return True

        return bool(claimed)

    async def _release_event(self, event_id: str | None) -> None:
        if not event_id or self.redis is None:
            return
        try:
            await self.redis.delete(f"webhook:event:{event_id}")
        except RedisError as e:
            logger.warning(f"Could not release webhook event {event_id}: {e}")
