from uuid import UUID
from typing import Iterable

from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.product import Product


def build_lock_statement(product_ids: Iterable[UUID]) -> Select:
    """
    SELECT ... FOR UPDATE over the given products in ascending id order.

    Every order transaction acquires its product locks through this one
    statement, so two transactions touching overlapping products always
    queue on them in the same order and cannot deadlock.
    """
    ordered_ids = sorted(set(product_ids))
    return (
        select(
            Product.id,
            Product.name,
            Product.price,
            Product.stock,
            Product.is_active,
        )
        .where(Product.id.in_(ordered_ids))
        .order_by(Product.id.asc())
        .with_for_update()
    )


class CRUDProduct:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, id: UUID) -> Product | None:
        """Fetch a product by ID, always re-reading the row."""
        return await self.session.get(Product, id, populate_existing=True)

    async def lock_for_order(self, product_ids: Iterable[UUID]) -> dict:
        """
        Lock the product rows and return them keyed by id.

        Rows are plain column tuples rather than ORM instances, so the
        values are always the ones read under the lock and never a copy
        cached earlier in the session.
        """
        result = await self.session.execute(build_lock_statement(product_ids))
        return {row.id: row for row in result.all()}

    async def decrement_stock(self, *, product_id: UUID, quantity: int) -> None:
        await self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
