import logging
import secrets
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AddressNotFoundError,
    CartChangedError,
    DataIntegrityError,
    EmptyCartError,
    InsufficientStockError,
    OrderNumberCollisionError,
    ProductUnavailableError,
)
from app.crud.address import AddressCRUD
from app.crud.cart import CartCRUD
from app.crud.order import OrderCRUD
from app.crud.product import CRUDProduct
from app.db.enums import OrderStatus, PaymentStatus
from app.models.order import Order
from app.models.order_item import OrderItem

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def generate_order_number(prefix: str, now: datetime | None = None) -> str:
    """
    PREFIX + YYYYMMDD + 8 random upper-case hex digits, e.g. SFR20261019A3B9C2D1.

    Collisions are improbable, not impossible; the unique index on
    orders.order_number is the final arbiter.
    """
    now = now or datetime.now(timezone.utc)
    return f"{prefix}{now:%Y%m%d}{secrets.token_hex(4).upper()}"


def compute_order_total(lines: Iterable[tuple[Decimal, int]]) -> Decimal:
    """Sum of unit_price * quantity rounded half-up to 2 decimals."""
    total = sum((Decimal(price) * quantity for price, quantity in lines), Decimal("0"))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


class OrderService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.order_crud = OrderCRUD(session)
        self.cart_crud = CartCRUD(session)
        self.product_crud = CRUDProduct(session)
        self.address_crud = AddressCRUD(session)

    async def list_customer_orders(self, user_id: UUID):
        return await self.order_crud.get_customer_orders(user_id)

    async def get_customer_order(self, *, user_id: UUID, order_id: UUID) -> Order | None:
        return await self.order_crud.get_for_user(order_id, user_id)

    async def create_order(self, *, user_id: UUID, address_id: UUID) -> Order:
        """
        Turn the user's cart into an order in one transaction.

        The user's cart rows are locked first, then product rows in
        ascending id order before stock is checked. Stock is decremented
        and the cart cleared in the same transaction as the order insert;
        any failure rolls all of it back.
        """
        try:
            # Cart rows first, then products; prices and stock are read under lock below
            cart_lines = await self.cart_crud.lock_order_lines(user_id)
            if not cart_lines:
                raise EmptyCartError()

            locked = await self.product_crud.lock_for_order(
                line.product_id for line in cart_lines
            )

            for line in cart_lines:
                product = locked.get(line.product_id)
                if product is None or not product.is_active:
                    raise ProductUnavailableError(line.name)
                if line.quantity > product.stock:
                    raise InsufficientStockError(product.name, product.stock)

            address = await self.address_crud.get_for_user(user_id, address_id)
            if not address:
                raise AddressNotFoundError()

            total = compute_order_total(
                (locked[line.product_id].price, line.quantity) for line in cart_lines
            )

            order = Order(
                user_id=user_id,
                order_number=await self._allocate_order_number(),
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                total=total,
                shipping_name=address.name,
                shipping_line1=address.line1,
                shipping_line2=address.line2,
                shipping_city=address.city,
                shipping_state=address.state,
                shipping_pincode=address.pincode,
                shipping_phone=address.phone,
            )
            self.session.add(order)
            await self.session.flush()

            await self.session.execute(
                insert(OrderItem),
                [
                    {
                        "order_id": order.id,
                        "product_id": line.product_id,
                        "quantity": line.quantity,
                        "unit_price": locked[line.product_id].price,
                    }
                    for line in cart_lines
                ],
            )

            for line in cart_lines:
                await self.product_crud.decrement_stock(
                    product_id=line.product_id,
                    quantity=line.quantity,
                )

            # The lines read above must be exactly the lines removed
            cleared = await self.cart_crud.clear(user_id)
            if cleared != len(cart_lines):
                logger.warning(
                    f"Cart changed under order assembly: read {len(cart_lines)} line(s), cleared {cleared}",
                    extra={"user_id": user_id},
                )
                if cleared == 0:
                    raise EmptyCartError()
                raise CartChangedError()

            await self.session.commit()

        except IntegrityError as e:
            await self.session.rollback()
            if "order_number" in str(e.orig):
                logger.error("Order number collided on insert", extra={"user_id": user_id})
                raise OrderNumberCollisionError() from e
            raise

        except Exception:
            await self.session.rollback()
            raise

        order_id = order.id
        logger.info(
            f"Order {order.order_number} created with {len(cart_lines)} line(s), total {total}",
            extra={"order_id": order_id, "user_id": user_id},
        )

        # Committed; a plain read assembles the response
        created = await self.order_crud.get_for_user(order_id, user_id)
        if created is None:
            logger.error("Order committed but not readable", extra={"order_id": order_id})
            raise DataIntegrityError()

        return created

    async def _allocate_order_number(self) -> str:
        for _ in range(settings.order_number_attempts):
            order_number = generate_order_number(settings.order_number_prefix)
            if not await self.order_crud.order_number_exists(order_number):
                return order_number
            logger.warning(f"Order number {order_number} already taken, regenerating")

        raise OrderNumberCollisionError()
