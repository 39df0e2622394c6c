"""Repository for allocation requests.

Every state change is a single UPDATE whose WHERE clause carries the
required source state, so concurrent callers can never move a request out
of a state it has already left.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import cast, func, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.exceptions import ConflictError
from portal.database.models import AllocationRequest
from portal.repositories.base_repository import BaseRepository
from portal.schemas.enums import (
    INACTIVE_STATUSES,
    TERMINAL_STATUSES,
    AllocationRequestStatus,
    TransactionFamily,
)

ACTIVE_CONFLICT_MESSAGE = "An allocation request already exists for this transaction"


def _values(statuses: Iterable[AllocationRequestStatus]) -> List[str]:
    return sorted(s.value for s in statuses)


class AllocationRequestRepository(BaseRepository[AllocationRequest]):
    """Repository for managing allocation request records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, AllocationRequest)

    async def get_in_family(self, id: uuid.UUID, family: TransactionFamily) -> Optional[AllocationRequest]:
        """Get a request by ID, only if it belongs to ``family``."""
        query = (
            select(AllocationRequest)
            .where(AllocationRequest.id == id, AllocationRequest.type == family.value)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_active_for_transaction(self, transaction_id: uuid.UUID) -> Optional[AllocationRequest]:
        """Get the request currently holding ``transaction_id``, if any."""
        query = select(AllocationRequest).where(
            AllocationRequest.transaction_id == transaction_id,
            AllocationRequest.status.notin_(_values(INACTIVE_STATUSES)),
        )
        result = await self.session.execute(query)
        return result.scalars().first()

    async def create_request(self, **fields: Any) -> AllocationRequest:
        """Insert a new request.

        Raises:
            ConflictError: If another active request won the race for the transaction
        """
        try:
            return await self.create(**fields)
        except IntegrityError as e:
            self.logger.warning(
                f"Active request already exists for transaction {fields.get('transaction_id')}",
                extra={"transaction_id": str(fields.get("transaction_id"))},
            )
            raise ConflictError(ACTIVE_CONFLICT_MESSAGE, original_error=e) from e

    async def apply_review(
        self,
        id: uuid.UUID,
        family: TransactionFamily,
        values: Dict[str, Any],
        note: Optional[str] = None,
    ) -> Optional[AllocationRequest]:
        """Apply a review decision unless the request is terminal.

        Args:
            id: Request ID
            family: Family the request must belong to
            values: Column values to set (status and actor stamps)
            note: Optional note appended to the request's notes

        Returns:
            The updated request, or None when no non-terminal request matched

        Raises:
            ConflictError: If reactivating would give the transaction a second active request
        """
        values = {**values, "updated_at": datetime.now(timezone.utc)}
        if note:
            values["notes"] = AllocationRequest.notes.op("||")(cast([note], JSONB))

        stmt = (
            update(AllocationRequest)
            .where(
                AllocationRequest.id == id,
                AllocationRequest.type == family.value,
                AllocationRequest.status.notin_(_values(TERMINAL_STATUSES)),
            )
            .values(**values)
            .returning(AllocationRequest.id)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            updated_id = result.scalar_one_or_none()
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(ACTIVE_CONFLICT_MESSAGE, original_error=e) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error reviewing allocation request {id}: {e}", exc_info=True)
            raise

        if updated_id is None:
            return None
        return await self.get_in_family(updated_id, family)

    async def bulk_transition(
        self,
        ids: Sequence[uuid.UUID],
        family: TransactionFamily,
        from_status: AllocationRequestStatus,
        to_status: AllocationRequestStatus,
        stamp: Dict[str, Any],
    ) -> Tuple[int, int]:
        """Move every listed request that is currently in ``from_status``.

        Args:
            ids: Request IDs; duplicates are ignored
            family: Only requests of this family are touched
            from_status: Required current status
            to_status: New status
            stamp: Actor/timestamp columns to set alongside the status

        Returns:
            (matched, modified): requests found in the family, requests moved
        """
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return 0, 0

        in_family = (
            AllocationRequest.id.in_(unique_ids),
            AllocationRequest.type == family.value,
        )
        stmt = (
            update(AllocationRequest)
            .where(*in_family, AllocationRequest.status == from_status.value)
            .values(status=to_status.value, updated_at=datetime.now(timezone.utc), **stamp)
            .execution_options(synchronize_session=False)
        )

        try:
            matched = await self.session.scalar(
                select(func.count()).select_from(AllocationRequest).where(*in_family)
            )
            result = await self.session.execute(stmt)
            modified = result.rowcount
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error moving {family.value} allocation requests {from_status.value} -> {to_status.value}: {e}",
                exc_info=True,
            )
            raise

        return int(matched or 0), int(modified or 0)

    async def list_requests(
        self,
        family: TransactionFamily,
        offset: int = 0,
        limit: int = 20,
        status: Optional[AllocationRequestStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[List[AllocationRequest], int]:
        """List a family's requests newest first.

        Returns:
            (items, total) where total ignores offset and limit
        """
        conditions = [AllocationRequest.type == family.value]
        if status is not None:
            conditions.append(AllocationRequest.status == status.value)
        if start is not None:
            conditions.append(AllocationRequest.created_at >= start)
        if end is not None:
            conditions.append(AllocationRequest.created_at <= end)

        total = await self.session.scalar(
            select(func.count()).select_from(AllocationRequest).where(*conditions)
        )
        query = (
            select(AllocationRequest)
            .where(*conditions)
            .order_by(AllocationRequest.created_at.desc(), AllocationRequest.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), int(total or 0)

    async def count_by_status(self, family: TransactionFamily) -> Dict[AllocationRequestStatus, int]:
        """Count a family's requests per status; statuses with no requests are omitted."""
        query = (
            select(AllocationRequest.status, func.count())
            .where(AllocationRequest.type == family.value)
            .group_by(AllocationRequest.status)
        )
        result = await self.session.execute(query)
        return {AllocationRequestStatus(status): count for status, count in result.all()}

    async def list_by_status(
        self, family: TransactionFamily, status: AllocationRequestStatus
    ) -> List[AllocationRequest]:
        query = (
            select(AllocationRequest)
            .where(AllocationRequest.type == family.value, AllocationRequest.status == status.value)
            .order_by(AllocationRequest.created_at)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
