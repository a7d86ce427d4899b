"""
JWT Utilities
-------------
Token issuance and verification for the session core.

Access tokens are short-lived HS256 JWTs; refresh tokens are opaque random
strings whose state lives in the credential store. TokenService holds no
mutable state: it only knows the signing secret and the lifetimes.

Security Best Practices:
- Use python-jose[cryptography] for cryptographic operations
- Always validate token expiration and signature
- Include token type in payload to prevent token confusion attacks
- Follow RFC 8725 JWT Best Current Practices
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from jose import ExpiredSignatureError, JWTError, jwt
from loguru import logger

from lawcase_auth.auth.errors import AuthError, AuthErrorKind
from lawcase_auth.auth.models import AccessTokenClaims
from lawcase_auth.core.config_manager import settings

ACCESS_TOKEN_TYPE = "access"
EMAIL_VERIFICATION_TOKEN_TYPE = "email_verification"

REQUIRED_ACCESS_CLAIMS = ("sub", "email", "username", "type", "iat", "exp", "jti")


class TokenService:
    """Mints and verifies access tokens, mints opaque refresh tokens."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_token_lifetime: Optional[timedelta] = None,
        refresh_token_lifetime: Optional[timedelta] = None,
        email_verification_lifetime: Optional[timedelta] = None,
    ):
        self._secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.access_token_lifetime = (
            access_token_lifetime or settings.access_token_lifetime
        )
        self.refresh_token_lifetime = (
            refresh_token_lifetime or settings.refresh_token_lifetime
        )
        self.email_verification_lifetime = email_verification_lifetime or timedelta(
            hours=settings.email_verification_expire_hours
        )

        if self.access_token_lifetime <= timedelta(0):
            raise ValueError("Access token lifetime must be positive")
        if self.refresh_token_lifetime <= self.access_token_lifetime:
            raise ValueError(
                "Refresh token lifetime must be longer than access token lifetime"
            )

    @property
    def access_token_expires_in(self) -> int:
        """Access token lifetime in seconds, as reported to clients."""
        return int(self.access_token_lifetime.total_seconds())

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(
        self,
        account_id: UUID,
        email: str,
        username: str,
        role_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Create a signed access token.

        Args:
            account_id: Subject of the token
            email: Account email
            username: Account username
            role_id: Role identifier, if the account has one
            now: Issue time (defaults to the current UTC time)

        Returns:
            JWT access token string
        """
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(account_id),
            "email": email,
            "username": username,
            "role_id": str(role_id) if role_id else None,
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + self.access_token_lifetime,
            "jti": uuid4().hex,
        }

        try:
            token: str = jwt.encode(payload, self._secret_key, algorithm=self.algorithm)
        except JWTError as e:
            logger.error(f"Failed to create access token: {e}")
            raise

        logger.debug(f"Access token created for account {account_id}")
        return token

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        """
        Decode and validate an access token.

        Checks signature, expiry, structure and token type. The blacklist is
        not consulted here.

        Raises:
            AuthError: TOKEN_EXPIRED or TOKEN_INVALID
        """
        payload = self._decode(token, verify_exp=True)
        return self._to_claims(payload)

    def decode_ignoring_expiry(self, token: str) -> AccessTokenClaims:
        """Signature-checked decode that accepts expired access tokens."""
        payload = self._decode(token, verify_exp=False)
        return self._to_claims(payload)

    def read_token_expiry(self, token: str) -> datetime:
        """Return the ``exp`` of a correctly signed access token, expired or not."""
        return self.decode_ignoring_expiry(token).expires_at

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(self) -> str:
        """Opaque random refresh token; its state lives in the credential store."""
        return secrets.token_urlsafe(48)

    def refresh_token_expiry(self, now: Optional[datetime] = None) -> datetime:
        return (now or datetime.now(timezone.utc)) + self.refresh_token_lifetime

    # ------------------------------------------------------------------
    # Email verification tokens
    # ------------------------------------------------------------------

    def issue_email_verification_token(
        self, account_id: UUID, email: str, now: Optional[datetime] = None
    ) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(account_id),
            "email": email,
            "type": EMAIL_VERIFICATION_TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + self.email_verification_lifetime,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def verify_email_verification_token(self, token: str) -> UUID:
        """
        Validate an email verification token and return the account id.

        Raises:
            AuthError: TOKEN_EXPIRED or TOKEN_INVALID
        """
        payload = self._decode(token, verify_exp=True)
        if payload.get("type") != EMAIL_VERIFICATION_TOKEN_TYPE:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid verification token")
        try:
            return UUID(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid verification token")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decode(self, token: str, verify_exp: bool) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": verify_exp},
            )
        except ExpiredSignatureError:
            logger.debug("Rejected expired token")
            raise AuthError(AuthErrorKind.TOKEN_EXPIRED, "Token has expired")
        except JWTError as e:
            logger.debug(f"JWT decode failed: {e}")
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid token")

    @staticmethod
    def _to_claims(payload: Dict[str, Any]) -> AccessTokenClaims:
        missing = [claim for claim in REQUIRED_ACCESS_CLAIMS if claim not in payload]
        if missing:
            logger.debug(f"Token missing claims: {missing}")
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid token")

        # Prevent token confusion: only access tokens authenticate requests
        if payload["type"] != ACCESS_TOKEN_TYPE:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid token type")

        try:
            return AccessTokenClaims(
                account_id=UUID(payload["sub"]),
                email=payload["email"],
                username=payload["username"],
                role_id=UUID(payload["role_id"]) if payload.get("role_id") else None,
                type=payload["type"],
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                token_id=payload["jti"],
            )
        except (TypeError, ValueError) as e:
            logger.debug(f"Token payload validation failed: {e}")
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid token")
