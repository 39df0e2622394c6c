from typing import Annotated

from fastapi import APIRouter, Depends

from portal.core.auth import get_current_user
from portal.schemas.auth import CurrentUser, UserProfile
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


@router.get(
    "/whoami",
    response_model=UserProfile,
    summary="Get current user profile",
    description="Get the authenticated actor's identity and the roles the allocation workflow sees",
    operation_id="get_current_user_profile",
)
async def get_current_user_profile(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> UserProfile:
    """Get current user profile, including effective roles."""
    LOGGER.info(f"User profile retrieved for user: {current_user.id}")
    return UserProfile(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name,
        role=current_user.role,
        effective_roles=sorted(current_user.effective_roles),
    )
