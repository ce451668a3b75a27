import logging
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    CartItemNotFoundError,
    InsufficientStockError,
    ProductNotFoundError,
    ProductUnavailableError,
    ValidationError,
)
from app.crud.cart import CartCRUD
from app.crud.product import CRUDProduct
from app.models.cart import CartItem

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class CartService:

    def __init__(self, session: AsyncSession):
        self.cart_crud = CartCRUD(session)
        self.product_crud = CRUDProduct(session)
        self.session = session

    async def get_snapshot(self, user_id: UUID) -> list[dict]:
        """
        Cart lines joined with each product's current state.

        Read-only. The order assembler re-reads and locks products on its
        own, so this view may already be stale when an order is placed.
        """
        rows = await self.cart_crud.get_lines_with_products(user_id)

        return [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "product": {
                    "name": product.name,
                    "slug": product.slug,
                    "price": product.price,
                    "images": list(product.images or []),
                    "stock": product.stock,
                    "is_active": product.is_active,
                },
            }
            for item, product in rows
        ]

    async def get_cart(self, user_id: UUID) -> dict:
        items = await self.get_snapshot(user_id)
        total = sum(
            (Decimal(i["product"]["price"]) * i["quantity"] for i in items),
            Decimal("0"),
        )

        return {
            "items": items,
            "total": total.quantize(CENTS, rounding=ROUND_HALF_UP),
            "item_count": sum(i["quantity"] for i in items),
        }

    async def add_item(self, *, user_id: UUID, product_id: UUID, quantity: int) -> dict:
        """
        Add `quantity` units of a product, merging with an existing line.
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be a positive integer")

        product = await self.product_crud.get(product_id)
        if not product:
            raise ProductNotFoundError()
        if not product.is_active:
            raise ProductUnavailableError(product.name)

        line = await self.cart_crud.get_line(user_id, product_id)
        current_qty = line.quantity if line else 0

        if current_qty + quantity > product.stock:
            can_add = max(product.stock - current_qty, 0)
            raise InsufficientStockError(
                product.name,
                can_add,
                message=(
                    f'"{product.name}" is out of stock'
                    if product.stock == 0
                    else f'Only {can_add} more unit(s) of "{product.name}" can be added'
                ),
            )

        if line:
            line.quantity = current_qty + quantity
        else:
            self.session.add(
                CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
            )

        await self.session.commit()
        return await self.get_cart(user_id)

    async def update_item(self, *, user_id: UUID, product_id: UUID, quantity: int) -> dict:
        """
        Set the quantity of a line already in the cart.
        If quantity == 0 → remove item.
        """
        if quantity < 0:
            raise ValidationError("Quantity must be a non-negative integer")

        if quantity == 0:
            return await self.remove_item(user_id=user_id, product_id=product_id)

        product = await self.product_crud.get(product_id)
        if not product:
            raise ProductNotFoundError()
        if not product.is_active:
            raise ProductUnavailableError(product.name)

        line = await self.cart_crud.get_line(user_id, product_id)
        if not line:
            raise CartItemNotFoundError()

        if quantity > product.stock:
            raise InsufficientStockError(product.name, product.stock)

        line.quantity = quantity
        await self.session.commit()
        return await self.get_cart(user_id)

    async def remove_item(self, *, user_id: UUID, product_id: UUID) -> dict:
        # No error when the line is already gone
        await self.cart_crud.delete_line(user_id, product_id)
        await self.session.commit()
        return await self.get_cart(user_id)
