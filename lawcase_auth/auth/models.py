"""
Authentication Models
---------------------
Pydantic models for token claims, authenticated identities and the
request/response bodies of the ``/auth`` endpoints.
"""

import re
from datetime import datetime
from typing import FrozenSet, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from lawcase_auth.models.credential_models import Account, Role


# ============================================================================
# TOKEN CLAIMS AND IDENTITY
# ============================================================================


class AccessTokenClaims(BaseModel):
    """
    Decoded access token payload.

    Security Note: Only include non-sensitive data in JWT payloads.
    The role is carried as an identifier; permissions are always read from
    the store at authentication time.
    """

    account_id: UUID = Field(..., description="Subject (account identifier)")
    email: str
    username: str
    role_id: Optional[UUID] = None
    type: str = Field(default="access", description="Token type")
    issued_at: datetime
    expires_at: datetime
    token_id: str = Field(..., description="Unique token identifier (jti)")


class Identity(BaseModel):
    """Authenticated caller, resolved against the store by the auth gate."""

    account_id: UUID
    email: str
    username: str
    role_id: Optional[UUID] = None
    role_name: Optional[str] = None
    permissions: FrozenSet[str] = Field(default_factory=frozenset)

    model_config = {"frozen": True}


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class RoleResponse(BaseModel):
    role_id: UUID
    name: str
    permissions: List[str] = Field(default_factory=list)


class AccountResponse(BaseModel):
    """Account view returned to clients - password hash and 2FA material stripped."""

    account_id: UUID
    email: str
    username: str
    first_name: str
    last_name: str
    is_active: bool
    is_verified: bool
    two_factor_enabled: bool
    last_login_at: Optional[datetime] = None
    role_id: Optional[UUID] = None
    role: Optional[RoleResponse] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(
        cls, account: Account, role: Optional[Role] = None
    ) -> "AccountResponse":
        role_view = None
        if role is not None:
            role_view = RoleResponse(
                role_id=role.role_id,
                name=role.name,
                permissions=sorted(role.permission_names),
            )
        return cls(
            account_id=account.account_id,
            email=account.email,
            username=account.username,
            first_name=account.first_name,
            last_name=account.last_name,
            is_active=account.is_active,
            is_verified=account.is_verified,
            two_factor_enabled=account.two_factor_enabled,
            last_login_at=account.last_login_at,
            role_id=account.role_id,
            role=role_view,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class AuthResponse(BaseModel):
    """Returned by register, login and refresh."""

    account: AccountResponse
    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="Opaque refresh token")
    token_type: str = Field(default="bearer", description="Token type (always 'bearer')")
    expires_in: int = Field(..., description="Access token lifetime in seconds")

    class Config:
        json_schema_extra = {
            "example": {
                "account": {
                    "account_id": "550e8400-e29b-41d4-a716-446655440000",
                    "email": "alice@example.com",
                    "username": "alice",
                },
                "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                "refresh_token": "kM2v9uQ4...",
                "token_type": "bearer",
                "expires_in": 900,
            }
        }


class TwoFactorSetupResponse(BaseModel):
    secret: str = Field(..., description="Base32 shared secret for manual entry")
    provisioning_uri: str = Field(..., description="otpauth:// URI")
    qr_code: str = Field(..., description="PNG data URL of the provisioning URI")
    backup_codes: List[str]


class MessageResponse(BaseModel):
    message: str


class PurgeResponse(BaseModel):
    refresh_tokens_deleted: int
    blacklist_entries_deleted: int
    password_resets_deleted: int


# ============================================================================
# REQUEST MODELS
# ============================================================================


class RegisterRequest(BaseModel):
    """Self-registration request. Password strength is checked by the service."""

    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=1, max_length=256)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: EmailStr) -> EmailStr:
        return v.lower().strip()

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        # Only alphanumeric, underscore, and hyphen
        if not re.match(r"^[a-zA-Z0-9_-]+$", v):
            raise ValueError(
                "Username can only contain letters, numbers, underscore, and hyphen"
            )
        return v.lower().strip()

    class Config:
        json_schema_extra = {
            "example": {
                "email": "alice@example.com",
                "username": "alice",
                "password": "TestPassword123!",
                "first_name": "Alice",
                "last_name": "Doe",
            }
        }


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    two_factor_code: Optional[str] = Field(
        default=None, description="TOTP code or backup code when 2FA is enabled"
    )

    class Config:
        json_schema_extra = {
            "example": {"email": "alice@example.com", "password": "TestPassword123!"}
        }


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordConfirmationRequest(BaseModel):
    """Body for operations that only re-verify the current password."""

    password: str = Field(..., min_length=1)


class TwoFactorEnableRequest(BaseModel):
    password: str = Field(..., min_length=1)
    two_factor_code: str = Field(..., min_length=6, max_length=10)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("New passwords do not match")
        return self


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirmRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)
    confirm_password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_passwords_match(self) -> "PasswordResetConfirmRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class EmailVerificationRequest(BaseModel):
    token: str = Field(..., min_length=1)
