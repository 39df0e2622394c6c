from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.database.models import AssitPolicy
from portal.repositories.base_repository import BaseRepository


class PolicyRepository(BaseRepository[AssitPolicy]):
    """Read-only access to policies mirrored from ASSIT."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AssitPolicy)

    async def get_by_membership_id(self, membership_id: str) -> Optional[AssitPolicy]:
        query = select(AssitPolicy).where(AssitPolicy.membership_id == membership_id.strip())
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def exists(self, membership_id: str) -> bool:
        return await self.get_by_membership_id(membership_id) is not None
