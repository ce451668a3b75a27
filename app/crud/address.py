from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.address import Address


class AddressCRUD:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_user(self, user_id: UUID, address_id: UUID) -> Address | None:
        """An address owned by someone else is reported exactly like a missing one."""
        return await self.session.scalar(
            select(Address).where(
                Address.id == address_id,
                Address.user_id == user_id,
            )
        )
