"""
Authentication Errors and Results
---------------------------------
Error taxonomy shared by every credential operation.

Components below the session façade raise ``AuthError``; the façade turns
them into ``AuthResult`` values so callers branch on ``AuthErrorKind``
instead of matching message strings. Sub-steps that are allowed to fail
declare a ``StepPolicy`` and run through ``run_step``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Generic, Optional, TypeVar

from loguru import logger

T = TypeVar("T")


class AuthErrorKind(str, Enum):
    """Caller-facing failure kinds."""

    VALIDATION_FAILED = "validation_failed"
    DUPLICATE_IDENTITY = "duplicate_identity"
    INVALID_CREDENTIALS = "invalid_credentials"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    TWO_FACTOR_INVALID = "two_factor_invalid"
    ACCOUNT_INACTIVE = "account_inactive"
    ACCOUNT_NOT_FOUND = "account_not_found"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    PERMISSION_DENIED = "permission_denied"


class AuthError(Exception):
    """Raised inside the credential core for an expected, classified failure."""

    def __init__(self, kind: AuthErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"


@dataclass(frozen=True)
class AuthResult(Generic[T]):
    """Outcome of a session operation: a value, or an error kind with a message."""

    value: Optional[T] = None
    error: Optional[AuthErrorKind] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "AuthResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: AuthErrorKind, message: str) -> "AuthResult[T]":
        return cls(error=kind, message=message)

    @classmethod
    def from_error(cls, error: AuthError) -> "AuthResult[T]":
        return cls(error=error.kind, message=error.message)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise AuthError(self.error, self.message or self.error.value)
        return self.value


class StepPolicy(str, Enum):
    """How a failing sub-step affects the operation that runs it."""

    MUST_SUCCEED = "must_succeed"  # failure aborts the operation
    BEST_EFFORT = "best_effort"  # failure is logged, the operation continues


async def run_step(
    step_name: str, policy: StepPolicy, awaitable: Awaitable[T]
) -> Optional[T]:
    """
    Await one named sub-step under its declared policy.

    Args:
        step_name: Stable name used in logs (e.g. ``logout.revoke_refresh_token``)
        policy: StepPolicy for the step
        awaitable: The work to run

    Returns:
        The step's result, or None when a best-effort step failed

    Raises:
        Exception: Whatever a MUST_SUCCEED step raised
    """
    if policy is StepPolicy.MUST_SUCCEED:
        return await awaitable

    try:
        return await awaitable
    except Exception as error:
        logger.warning(f"Best-effort step '{step_name}' failed: {error!r}")
        return None
