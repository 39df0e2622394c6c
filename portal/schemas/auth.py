"""Authentication schemas.

Pydantic models for bearer token claims and the authenticated actor.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class JWTClaims(BaseModel):
    """Claims extracted from a verified access token."""

    sub: str = Field(..., description="Subject (user ID)")
    email: Optional[EmailStr] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="Display name")
    role: Optional[str] = Field(None, description="Primary role")
    roles: List[str] = Field(default_factory=list, description="Additional roles")
    exp: int = Field(..., description="Expiration timestamp")
    iat: Optional[int] = Field(None, description="Issued at timestamp")
    iss: Optional[str] = Field(None, description="Token issuer")
    aud: Optional[str] = Field(None, description="Audience")
    app_metadata: Optional[Dict[str, Any]] = Field(None, description="Application metadata")


class CurrentUser(BaseModel):
    """Current authenticated user information."""

    id: str = Field(..., description="User ID")
    email: Optional[EmailStr] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="Display name")
    role: Optional[str] = Field(None, description="Primary role")
    roles: List[str] = Field(default_factory=list, description="Additional roles")

    @property
    def effective_roles(self) -> frozenset[str]:
        """Union of the primary role and the role list."""
        return frozenset(r for r in [self.role, *self.roles] if r)

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


class UserProfile(BaseModel):
    """User profile information for API responses."""

    id: str = Field(..., description="User ID")
    email: Optional[EmailStr] = Field(None, description="User email")
    name: Optional[str] = Field(None, description="Display name")
    role: Optional[str] = Field(None, description="Primary role")
    effective_roles: List[str] = Field(default_factory=list, description="Primary role plus role list")


__all__ = [
    "JWTClaims",
    "CurrentUser",
    "UserProfile",
]
