"""Authentication dependencies for FastAPI routes."""

from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from portal.core.exceptions import AppError, UnauthorizedError
from portal.core.jwt import jwt_verifier
from portal.schemas.auth import CurrentUser
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Get the current authenticated user from the bearer token.

    Args:
        credentials: HTTP Authorization credentials (automatically injected)

    Returns:
        CurrentUser: Authenticated user with role and role list

    Raises:
        UnauthorizedError: If token is missing, invalid, or expired
    """
    if not credentials:
        LOGGER.warning("No authorization credentials provided")
        raise UnauthorizedError("Unauthorized")

    try:
        claims = await jwt_verifier.verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        LOGGER.warning(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid authentication token", original_error=e) from e
    except Exception as e:
        LOGGER.error(f"Unexpected authentication error: {e}")
        raise AppError("Authentication service error", original_error=e) from e

    user = jwt_verifier.to_current_user(claims)
    LOGGER.debug(f"Authenticated user: {user.id} ({user.email})")
    return user
