"""
Role-based access control.

``authenticate`` turns a bearer token into an Identity through an ordered
series of checks: signature and expiry, blacklist, account state. The
authorization checks are exact matches against the role and permission
names the Identity was loaded with.
"""

from typing import Iterable, Optional

from loguru import logger

from lawcase_auth.auth.blacklist import BlacklistService
from lawcase_auth.auth.credential_store import CredentialStore
from lawcase_auth.auth.errors import AuthError, AuthErrorKind, AuthResult
from lawcase_auth.auth.jwt_utils import TokenService
from lawcase_auth.auth.models import Identity


class RBACEnforcer:
    def __init__(
        self,
        store: CredentialStore,
        token_service: TokenService,
        blacklist_service: BlacklistService,
    ):
        self.store = store
        self.token_service = token_service
        self.blacklist_service = blacklist_service

    async def authenticate(self, bearer_token: Optional[str]) -> AuthResult[Identity]:
        """
        Resolve a bearer token to the calling Identity.

        Returns:
            AuthResult with the Identity, or TOKEN_INVALID, TOKEN_EXPIRED,
            TOKEN_REVOKED or ACCOUNT_INACTIVE
        """
        if not bearer_token:
            return AuthResult.failure(AuthErrorKind.TOKEN_INVALID, "Access token required")

        try:
            claims = self.token_service.verify_access_token(bearer_token)
        except AuthError as e:
            return AuthResult.from_error(e)

        if await self.blacklist_service.is_blacklisted(bearer_token):
            return AuthResult.failure(AuthErrorKind.TOKEN_REVOKED, "Token has been revoked")

        account = await self.store.get_account_by_id(claims.account_id)
        if account is None or not account.is_active:
            logger.info(f"Rejected token for missing or inactive account {claims.account_id}")
            return AuthResult.failure(
                AuthErrorKind.ACCOUNT_INACTIVE, "User not found or inactive"
            )

        role = None
        if account.role_id is not None:
            role = await self.store.get_role_by_id(account.role_id)

        return AuthResult.success(
            Identity(
                account_id=account.account_id,
                email=account.email,
                username=account.username,
                role_id=account.role_id,
                role_name=role.name if role else None,
                permissions=role.permission_names if role else frozenset(),
            )
        )

    @staticmethod
    def authorize(identity: Identity, permission_name: str) -> bool:
        """True iff the identity's role grants exactly ``permission_name``."""
        return permission_name in identity.permissions

    @staticmethod
    def require_role(identity: Identity, role_name: str) -> bool:
        return identity.role_name is not None and identity.role_name == role_name

    @staticmethod
    def require_any_role(identity: Identity, role_names: Iterable[str]) -> bool:
        return identity.role_name is not None and identity.role_name in set(role_names)
