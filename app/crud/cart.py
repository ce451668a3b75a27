from uuid import UUID

from sqlalchemy import Select, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.cart import CartItem
from app.models.product import Product


def build_cart_lock_statement(user_id: UUID) -> Select:
    """The user's cart lines joined with product names, locking cart rows only."""
    return (
        select(CartItem.product_id, CartItem.quantity, Product.name)
        .join(Product, Product.id == CartItem.product_id)
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.created_at.asc(), CartItem.id.asc())
        .with_for_update(of=CartItem)
    )


class CartCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_lines_with_products(self, user_id: UUID):
        """Cart lines joined with the live product row, oldest line first."""
        result = await self.session.execute(
            select(CartItem, Product)
            .join(Product, Product.id == CartItem.product_id)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.created_at.asc(), CartItem.id.asc())
            .execution_options(populate_existing=True)
        )
        return result.all()

    async def lock_order_lines(self, user_id: UUID):
        """
        Lock the user's cart rows and return what they intend to buy.

        Only this user's cart_items rows are locked (FOR UPDATE OF cart_items),
        so a concurrent order from the same user waits here and then finds
        the cart already cleared. Product rows are left to `lock_for_order`.

        Returns rows of (product_id, quantity, name).
        """
        result = await self.session.execute(build_cart_lock_statement(user_id))
        return result.all()

    async def get_line(self, user_id: UUID, product_id: UUID) -> CartItem | None:
        return await self.session.scalar(
            select(CartItem).where(
                CartItem.user_id == user_id,
                CartItem.product_id == product_id,
            )
        )

    async def delete_line(self, user_id: UUID, product_id: UUID) -> None:
        await self.session.execute(
            delete(CartItem).where(
                CartItem.user_id == user_id,
                CartItem.product_id == product_id,
            )
        )

    async def clear(self, user_id: UUID) -> int:
        """Delete every line in the user's cart and return how many went."""
        result = await self.session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        return result.rowcount
