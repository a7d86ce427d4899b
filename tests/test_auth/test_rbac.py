"""
RBAC Enforcer Tests
-------------------
Test bearer token authentication and role/permission checks.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from lawcase_auth.auth.blacklist import BlacklistService
from lawcase_auth.auth.credential_store import CredentialStore
from lawcase_auth.auth.errors import AuthErrorKind
from lawcase_auth.auth.models import Identity
from lawcase_auth.auth.rbac import RBACEnforcer
from lawcase_auth.models.credential_models import Account


class TestAuthenticate:
    """Test cases for RBACEnforcer.authenticate."""

    async def _account(self, store, role_name="Lawyer", **overrides):
        role = await store.get_role_by_name(role_name)
        data = {
            "email": "lawyer@lawfirm.com",
            "username": "lawyer",
            "password_hash": "unused",
            "role_id": role.role_id,
        }
        data.update(overrides)
        return await store.create_account(Account(**data))

    def _token(self, token_service, account, now=None):
        return token_service.issue_access_token(
            account.account_id, account.email, account.username, account.role_id, now=now
        )

    @pytest.mark.asyncio
    async def test_valid_token_resolves_identity(
        self, rbac_enforcer, credential_store, token_service
    ):
        account = await self._account(credential_store)

        result = await rbac_enforcer.authenticate(self._token(token_service, account))

        assert result.ok
        identity = result.value
        assert identity.account_id == account.account_id
        assert identity.role_name == "Lawyer"
        assert "cases:write" in identity.permissions
        assert "system:admin" not in identity.permissions

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token(self, rbac_enforcer, token):
        result = await rbac_enforcer.authenticate(token)

        assert result.error is AuthErrorKind.TOKEN_INVALID
        assert result.message == "Access token required"

    @pytest.mark.asyncio
    async def test_garbage_token(self, rbac_enforcer):
        result = await rbac_enforcer.authenticate("not-a-token")

        assert result.error is AuthErrorKind.TOKEN_INVALID

    @pytest.mark.asyncio
    async def test_expired_token(self, rbac_enforcer, credential_store, token_service):
        account = await self._account(credential_store)
        token = self._token(
            token_service, account, now=datetime.now(timezone.utc) - timedelta(hours=1)
        )

        result = await rbac_enforcer.authenticate(token)

        assert result.error is AuthErrorKind.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_blacklisted_token(
        self, rbac_enforcer, credential_store, token_service, blacklist_service
    ):
        account = await self._account(credential_store)
        token = self._token(token_service, account)
        await blacklist_service.blacklist(token)

        result = await rbac_enforcer.authenticate(token)

        assert result.error is AuthErrorKind.TOKEN_REVOKED
        assert result.message == "Token has been revoked"

    @pytest.mark.asyncio
    async def test_blacklist_checked_before_account_state(
        self, rbac_enforcer, credential_store, token_service, blacklist_service
    ):
        account = await self._account(credential_store, is_active=False)
        token = self._token(token_service, account)
        await blacklist_service.blacklist(token)

        result = await rbac_enforcer.authenticate(token)

        assert result.error is AuthErrorKind.TOKEN_REVOKED

    @pytest.mark.asyncio
    async def test_expired_token_never_reaches_store(self, token_service):
        store = MagicMock(spec=CredentialStore)
        store.is_token_blacklisted = AsyncMock(return_value=True)
        store.get_account_by_id = AsyncMock()
        enforcer = RBACEnforcer(store, token_service, BlacklistService(store, token_service))
        account = Account(email="old@lawfirm.com", username="old", password_hash="x")
        token = self._token(
            token_service, account, now=datetime.now(timezone.utc) - timedelta(hours=1)
        )

        result = await enforcer.authenticate(token)

        assert result.error is AuthErrorKind.TOKEN_EXPIRED
        store.is_token_blacklisted.assert_not_awaited()
        store.get_account_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_inactive_account(self, rbac_enforcer, credential_store, token_service):
        account = await self._account(credential_store, is_active=False)

        result = await rbac_enforcer.authenticate(self._token(token_service, account))

        assert result.error is AuthErrorKind.ACCOUNT_INACTIVE
        assert result.message == "User not found or inactive"

    @pytest.mark.asyncio
    async def test_deleted_account(self, rbac_enforcer, token_service):
        ghost = Account(email="ghost@lawfirm.com", username="ghost", password_hash="x")

        result = await rbac_enforcer.authenticate(self._token(token_service, ghost))

        assert result.error is AuthErrorKind.ACCOUNT_INACTIVE

    @pytest.mark.asyncio
    async def test_role_change_applies_to_existing_tokens(
        self, rbac_enforcer, credential_store, token_service
    ):
        """Permissions are read from the store, not from the token."""
        account = await self._account(credential_store)
        token = self._token(token_service, account)
        marketer = await credential_store.get_role_by_name("Marketer")
        await credential_store.update_account(account.account_id, role_id=marketer.role_id)

        identity = (await rbac_enforcer.authenticate(token)).value

        assert identity.role_name == "Marketer"
        assert "cases:write" not in identity.permissions

    @pytest.mark.asyncio
    async def test_account_without_role(self, rbac_enforcer, credential_store, token_service):
        account = await credential_store.create_account(
            Account(email="norole@lawfirm.com", username="norole", password_hash="x")
        )

        identity = (await rbac_enforcer.authenticate(self._token(token_service, account))).value

        assert identity.role_name is None
        assert identity.permissions == frozenset()


class TestAuthorization:
    """Test cases for the static authorization checks."""

    def setup_method(self):
        self.lawyer = Identity(
            account_id="00000000-0000-0000-0000-000000000001",
            email="lawyer@lawfirm.com",
            username="lawyer",
            role_name="Lawyer",
            permissions=frozenset({"cases:read", "cases:write"}),
        )
        self.marketer = Identity(
            account_id="00000000-0000-0000-0000-000000000002",
            email="marketer@lawfirm.com",
            username="marketer",
            role_name="Marketer",
            permissions=frozenset({"cases:read"}),
        )
        self.roleless = Identity(
            account_id="00000000-0000-0000-0000-000000000003",
            email="new@lawfirm.com",
            username="new",
        )

    def test_authorize_exact_permission(self):
        assert RBACEnforcer.authorize(self.lawyer, "cases:write")
        assert not RBACEnforcer.authorize(self.marketer, "cases:write")

    def test_authorize_has_no_wildcards(self):
        assert not RBACEnforcer.authorize(self.lawyer, "cases:*")
        assert not RBACEnforcer.authorize(self.lawyer, "cases")

    def test_require_role(self):
        assert RBACEnforcer.require_role(self.lawyer, "Lawyer")
        assert not RBACEnforcer.require_role(self.lawyer, "lawyer")
        assert not RBACEnforcer.require_role(self.roleless, "Lawyer")

    def test_require_any_role(self):
        assert RBACEnforcer.require_any_role(self.marketer, ["Lawyer", "Marketer"])
        assert not RBACEnforcer.require_any_role(self.marketer, ["Admin"])
        assert not RBACEnforcer.require_any_role(self.roleless, [])
