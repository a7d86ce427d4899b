"""
Access token blacklist.

An access token is a bearer credential that stays valid until its ``exp``.
Logging out puts the exact token string on the blacklist until that moment;
after it the entry is logically absent and is purged.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from loguru import logger

from lawcase_auth.auth.credential_store import CredentialStore
from lawcase_auth.auth.jwt_utils import TokenService
from lawcase_auth.core.logger_setup import redact_token
from lawcase_auth.models.credential_models import BlacklistEntry


class BlacklistService:
    """Revokes access tokens before their natural expiry."""

    def __init__(self, store: CredentialStore, token_service: TokenService):
        self.store = store
        self.token_service = token_service

    async def blacklist(
        self,
        access_token: str,
        reason: str = "logout",
        account_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Blacklist a token until its own expiry.

        Args:
            access_token: The exact token string presented by the client
            reason: Audit reason stored with the entry
            account_id: Owner; read from the token when not given
            now: Current time (defaults to UTC now)

        Returns:
            True if an entry was stored, False if the token had already expired

        Raises:
            AuthError: TOKEN_INVALID if the token is not correctly signed
        """
        now = now or datetime.now(timezone.utc)
        claims = self.token_service.decode_ignoring_expiry(access_token)

        if claims.expires_at <= now:
            logger.debug(f"Token {redact_token(access_token)} already expired")
            return False

        await self.store.add_blacklist_entry(
            BlacklistEntry(
                token=access_token,
                account_id=account_id or claims.account_id,
                expires_at=claims.expires_at,
                reason=reason,
            )
        )
        logger.info(
            f"Token {redact_token(access_token)} blacklisted "
            f"for account {claims.account_id} (reason={reason})"
        )
        return True

    async def is_blacklisted(
        self, access_token: str, now: Optional[datetime] = None
    ) -> bool:
        """Check whether a token is blacklisted.

        Fail closed: if the store cannot answer, the token is treated as
        blacklisted.
        """
        now = now or datetime.now(timezone.utc)
        try:
            return await self.store.is_token_blacklisted(access_token, now)
        except Exception as e:
            logger.warning(f"Blacklist lookup failed, rejecting token: {e!r}")
            return True

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Remove entries whose token has expired."""
        removed = await self.store.delete_expired_blacklist_entries(
            now or datetime.now(timezone.utc)
        )
        if removed:
            logger.info(f"Purged {removed} expired blacklist entries")
        return removed
