import logging
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AlreadyPaidError, OrderNotFoundError
from app.crud.order import SETTLED_PAYMENT_STATUSES, OrderCRUD
from app.services.gateway.base import PaymentGateway

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal, factor: int) -> int:
    """Exact conversion to the provider's integer minor unit (paise, cents)."""
    return int((Decimal(amount) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentService:

    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.order_crud = OrderCRUD(db)

    # CREATE PAYMENT INTENT
    async def create_payment_intent(
        self,
        *,
        user_id: UUID,
        order_id: UUID,
    ) -> dict:
        """
        Open a provider payment session for an unpaid order.

        The provider reference is stored on the order straight away so the
        verification step has something to cross-check. Calling this again
        replaces it; only the latest session can be settled by the client
        callback.
        """
        order = await self.order_crud.get_owned(order_id, user_id)

        if not order:
            raise OrderNotFoundError()

        if order.payment_status in SETTLED_PAYMENT_STATUSES:
            raise AlreadyPaidError()

        amount = to_minor_units(order.total, self.gateway.minor_unit_factor)

        razorpay_order_id = await self.gateway.create_order(
            amount=amount,
            receipt=order.order_number,
            notes={"order_id": str(order.id)},
        )

        # A settlement may have landed during the provider call
        stored = await self.order_crud.set_payment_session(
            order_id=order.id, razorpay_order_id=razorpay_order_id
        )
        if not stored:
            await self.db.rollback()
            logger.warning(
                f"Order settled while session {razorpay_order_id} was opening; discarded",
                extra={"order_id": order_id, "user_id": user_id},
            )
            raise AlreadyPaidError()
        await self.db.commit()

        logger.info(
            f"Payment session {razorpay_order_id} opened for {amount} {self.gateway.currency}",
            extra={"order_id": order_id, "user_id": user_id},
        )

        return {
            "order_id": order_id,
            "razorpay_order_id": razorpay_order_id,
            "amount": amount,
            "currency": self.gateway.currency,
            "key_id": self.gateway.key_id,
        }
