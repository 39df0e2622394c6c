"""Dependency factories for the API layer."""

from typing import Annotated

from fastapi import Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.database import get_async_session
from portal.core.exceptions import NotFoundError
from portal.schemas.enums import TransactionFamily
from portal.services.allocation_service import AllocationRequestService


async def get_allocation_service(
    db_session: Annotated[AsyncSession, Depends(get_async_session)]
) -> AllocationRequestService:
    """Get allocation request service instance.

    Args:
        db_session: Database session from dependency injection

    Returns:
        AllocationRequestService: Workflow service bound to the request's session
    """
    return AllocationRequestService(db_session)


async def get_family(
    family: Annotated[str, Path(description="Transaction family: eft or easypay")]
) -> TransactionFamily:
    """Resolve the ``{family}`` path segment; unknown families are 404."""
    try:
        return TransactionFamily.from_slug(family)
    except ValueError:
        raise NotFoundError(f"Unknown transaction family: {family}") from None
