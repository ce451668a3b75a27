from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import case, exists, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.db.enums import OrderStatus, PaymentStatus
from app.models.order import Order
from app.models.order_item import OrderItem

# Payment states no later payment event may overwrite
SETTLED_PAYMENT_STATUSES = (PaymentStatus.PAID, PaymentStatus.REFUNDED)


class OrderCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_user(self, order_id: UUID, user_id: UUID) -> Order | None:
        """Order with its lines and their products, scoped to the owner."""
        result = await self.session.execute(
            select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .where(Order.id == order_id, Order.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_customer_orders(self, user_id: UUID):
        result = await self.session.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_owned(self, order_id: UUID, user_id: UUID) -> Order | None:
        return await self.session.scalar(
            select(Order)
            .where(Order.id == order_id, Order.user_id == user_id)
            .execution_options(populate_existing=True)
        )

    async def get_by_razorpay_order_id(self, razorpay_order_id: str) -> Order | None:
        return await self.session.scalar(
            select(Order)
            .where(Order.razorpay_order_id == razorpay_order_id)
            .execution_options(populate_existing=True)
        )

    async def order_number_exists(self, order_number: str) -> bool:
        return bool(
            await self.session.scalar(
                select(exists().where(Order.order_number == order_number))
            )
        )

    async def apply_payment_result(
        self,
        *,
        order_id: UUID,
        payment_status: PaymentStatus,
        razorpay_order_id: str,
        payment_id: str,
    ) -> bool:
        """
        Single guarded UPDATE that moves an unpaid order to `payment_status`.

        The predicate excludes paid and refunded orders, so a second delivery
        of the same result, or a late capture on a refunded order, matches
        zero rows. A capture also advances a pending order to confirmed.
        Returns True when a row changed.
        """
        values = {
            "payment_status": payment_status,
            "razorpay_order_id": razorpay_order_id,
            "payment_id": payment_id,
        }

        if payment_status == PaymentStatus.PAID:
            values["paid_at"] = datetime.now(timezone.utc)
            values["status"] = case(
                (
                    Order.status == OrderStatus.PENDING,
                    literal(OrderStatus.CONFIRMED, type_=Order.status.type),
                ),
                else_=Order.status,
            )

        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_status.notin_(SETTLED_PAYMENT_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_payment_session(self, *, order_id: UUID, razorpay_order_id: str) -> bool:
        """
        Store a new provider session reference unless the order has settled.

        Returns False when a settlement landed first and nothing was written.
        """
        result = await self.session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_status.notin_(SETTLED_PAYMENT_STATUSES),
            )
            .values(razorpay_order_id=razorpay_order_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
