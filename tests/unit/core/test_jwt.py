"""Unit tests for access token verification."""

import time

import jwt
import pytest
from fastapi.security import HTTPAuthorizationCredentials

from portal.core.auth import get_current_user
from portal.core.exceptions import UnauthorizedError
from portal.core.jwt import JWTVerifier
from portal.schemas.auth import JWTClaims

SECRET = "unit-test-secret-value-long-enough"


def sign(payload: dict, secret: str = SECRET) -> str:
    return jwt.encode(payload, secret, algorithm="HS256")


def claims(**overrides) -> dict:
    now = int(time.time())
    return {"sub": "user-1", "exp": now + 600, "iat": now, **overrides}


@pytest.fixture
def verifier() -> JWTVerifier:
    return JWTVerifier(secret=SECRET)


class TestJWTVerifier:
    @pytest.mark.asyncio
    async def test_valid_token(self, verifier):
        result = await verifier.verify_token(sign(claims(role="eft_reviewer", roles=["easypay_reviewer"])))

        assert result.sub == "user-1"
        assert result.role == "eft_reviewer"
        assert result.roles == ["easypay_reviewer"]

    @pytest.mark.asyncio
    async def test_expired_token(self, verifier):
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            await verifier.verify_token(sign(claims(exp=int(time.time()) - 60)))

    @pytest.mark.asyncio
    async def test_wrong_secret(self, verifier):
        with pytest.raises(jwt.InvalidTokenError, match="signature"):
            await verifier.verify_token(sign(claims(), secret="another-secret-value-entirely"))

    @pytest.mark.asyncio
    async def test_missing_subject(self, verifier):
        payload = claims()
        del payload["sub"]

        with pytest.raises(jwt.InvalidTokenError):
            await verifier.verify_token(sign(payload))

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects_everything(self):
        with pytest.raises(jwt.InvalidTokenError, match="not configured"):
            await JWTVerifier(secret="").verify_token(sign(claims()))

    @pytest.mark.asyncio
    async def test_issuer_checked_when_configured(self):
        verifier = JWTVerifier(secret=SECRET, issuer="https://auth.example.com")

        with pytest.raises(jwt.InvalidTokenError, match="issuer"):
            await verifier.verify_token(sign(claims(iss="https://elsewhere.example.com")))

    def test_roles_merged_from_app_metadata(self):
        token_claims = JWTClaims(
            sub="user-1",
            exp=int(time.time()) + 60,
            roles=["eft_reviewer"],
            app_metadata={"role": "admin", "roles": ["eft_reviewer", "easypay_allocator"]},
        )

        user = JWTVerifier.to_current_user(token_claims)

        assert user.role == "admin"
        assert user.roles == ["eft_reviewer", "easypay_allocator"]
        assert user.effective_roles == {"admin", "eft_reviewer", "easypay_allocator"}

    def test_top_level_role_wins(self):
        token_claims = JWTClaims(
            sub="user-1", exp=int(time.time()) + 60, role="eft_allocator", app_metadata={"role": "admin"}
        )

        assert JWTVerifier.to_current_user(token_claims).role == "eft_allocator"


class TestGetCurrentUser:
    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(UnauthorizedError):
            await get_current_user(None)

    @pytest.mark.asyncio
    async def test_invalid_token(self):
        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="not-a-jwt")

        with pytest.raises(UnauthorizedError, match="Invalid authentication token"):
            await get_current_user(credentials)

    @pytest.mark.asyncio
    async def test_valid_token(self, make_token):
        credentials = HTTPAuthorizationCredentials(
            scheme="Bearer", credentials=make_token(sub="user-9", role="eft_reviewer")
        )

        user = await get_current_user(credentials)

        assert user.id == "user-9"
        assert user.role == "eft_reviewer"
