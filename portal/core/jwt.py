"""JWT verification for portal access tokens.

Tokens are issued elsewhere; this module only decodes and validates them
with PyJWT and turns the claims into the actor shape the workflow needs.
"""

from typing import Any, Optional

import jwt

from portal.core.config import settings
from portal.schemas.auth import CurrentUser, JWTClaims
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)


class JWTVerifier:
    """Verifier for shared-secret signed access tokens.

    This class handles:
    - JWT decoding with signature verification
    - Claims validation (exp, and iss/aud when configured)
    - Mapping claims to a CurrentUser with role and role list
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        """Initialize JWT verifier.

        Args:
            secret: Shared signing secret
            algorithm: Signing algorithm
            audience: Expected audience, skipped when None
            issuer: Expected issuer, skipped when None
        """
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.issuer = issuer

    async def verify_token(self, token: str) -> JWTClaims:
        """Verify and decode an access token.

        Args:
            token: JWT access token from Authorization header

        Returns:
            Decoded and validated JWT claims

        Raises:
            jwt.InvalidTokenError: If token is invalid, expired or misconfigured
        """
        if not self.secret:
            LOGGER.error("JWT_SECRET is not configured; rejecting token")
            raise jwt.InvalidTokenError("Token verification is not configured")

        options: dict[str, Any] = {
            "verify_exp": True,
            "verify_aud": self.audience is not None,
            "verify_iss": self.issuer is not None,
            "require": ["sub", "exp"],
        }

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
            claims = JWTClaims(**payload)
            LOGGER.debug(f"Successfully verified token for user: {claims.sub}")
            return claims

        except jwt.ExpiredSignatureError as e:
            LOGGER.warning(f"Token expired: {e}")
            raise jwt.InvalidTokenError("Token has expired") from e
        except jwt.InvalidIssuerError as e:
            LOGGER.warning(f"Invalid issuer: {e}")
            raise jwt.InvalidTokenError("Invalid token issuer") from e
        except jwt.InvalidSignatureError as e:
            LOGGER.warning(f"Invalid signature: {e}")
            raise jwt.InvalidTokenError("Invalid token signature") from e
        except jwt.InvalidTokenError as e:
            LOGGER.warning(f"Invalid token: {e}")
            raise
        except Exception as e:
            LOGGER.error(f"Unexpected error during token verification: {e}")
            raise jwt.InvalidTokenError("Token verification failed") from e

    @staticmethod
    def to_current_user(claims: JWTClaims) -> CurrentUser:
        """Build the actor from claims.

        Roles may arrive top-level or inside app_metadata; both are merged.
        """
        metadata = claims.app_metadata or {}
        role = claims.role or metadata.get("role")
        roles = list(claims.roles)
        for extra in metadata.get("roles") or []:
            if extra not in roles:
                roles.append(extra)

        return CurrentUser(
            id=claims.sub,
            email=claims.email,
            name=claims.name,
            role=role,
            roles=roles,
        )


jwt_verifier = JWTVerifier(
    secret=settings.auth.jwt_secret,
    algorithm=settings.auth.jwt_algorithm,
    audience=settings.auth.jwt_audience,
    issuer=settings.auth.jwt_issuer,
)
