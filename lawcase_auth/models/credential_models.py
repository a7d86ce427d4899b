"""
Credential Models
-----------------
Pydantic models for the entities owned by the credential store: accounts,
roles, permissions, refresh tokens, blacklist entries and password resets.
Field names match the columns in ``database/init.sql``.
"""

from datetime import datetime, timezone
from typing import FrozenSet, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Permission(BaseModel):
    """A single grantable action on a resource, named ``resource:action``."""

    permission_id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., description="Unique permission name, e.g. cases:write")
    resource: str
    action: str
    description: Optional[str] = None

    model_config = {"frozen": True}


class Role(BaseModel):
    """Named bundle of permissions assigned to accounts."""

    role_id: UUID = Field(default_factory=uuid4)
    name: str
    description: str = ""
    permissions: List[Permission] = Field(default_factory=list)

    @property
    def permission_names(self) -> FrozenSet[str]:
        return frozenset(permission.name for permission in self.permissions)


class Account(BaseModel):
    """
    Stored account record.

    Holds the password hash and the embedded two-factor material, so it is
    never returned to clients directly; use ``AccountResponse`` for that.
    """

    account_id: UUID = Field(default_factory=uuid4)
    email: str
    username: str
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    is_verified: bool = False
    two_factor_enabled: bool = False
    two_factor_secret: Optional[str] = None
    backup_codes: List[str] = Field(default_factory=list)
    last_login_at: Optional[datetime] = None
    role_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def validate_two_factor_material(self) -> "Account":
        """An account with two-factor enabled must carry a secret."""
        if self.two_factor_enabled and not self.two_factor_secret:
            raise ValueError("two_factor_enabled requires a two_factor_secret")
        return self


class RefreshTokenRecord(BaseModel):
    """Opaque refresh token persisted for rotate-on-use."""

    token: str
    account_id: UUID
    expires_at: datetime
    is_revoked: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class BlacklistEntry(BaseModel):
    """Access token rejected before its natural expiry."""

    token: str
    account_id: Optional[UUID] = None
    expires_at: datetime
    reason: str = "logout"
    created_at: datetime = Field(default_factory=utc_now)


class PasswordResetRecord(BaseModel):
    """Single-use password reset token."""

    token: str
    account_id: UUID
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
