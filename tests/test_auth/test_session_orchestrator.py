"""
Session Orchestrator Tests
==========================
Account and session lifecycle exercised end to end against the in-memory
credential store.

Test Coverage:
- Registration and duplicate identities
- Login, account state and the second factor
- Refresh token rotation and reuse
- Logout
- Password change, reset and email verification
- Credential purge and notification dispatch
"""

import asyncio
import smtplib
import time
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pyotp
import pytest

from lawcase_auth.auth.errors import AuthErrorKind
from lawcase_auth.auth.session_orchestrator import (
    PASSWORD_RESET_REQUESTED_MESSAGE,
    SessionOrchestrator,
)
from lawcase_auth.models.credential_models import (
    PasswordResetRecord,
    RefreshTokenRecord,
    utc_now,
)

PASSWORD = "TestPassword123!"
NEW_PASSWORD = "NewPassword456?"


def invalid_code_for(secret: str) -> str:
    totp = pyotp.TOTP(secret)
    now = time.time()
    accepted = {totp.at(now, counter_offset=offset) for offset in range(-3, 4)}
    return next(d * 6 for d in "0123456789" if d * 6 not in accepted)


async def register(orchestrator, email="alice@lawfirm.com", username="alice", password=PASSWORD):
    result = await orchestrator.register(email, username, password, "Alice", "Doe")
    assert result.ok, result.message
    return result.value


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_returns_session(self, session_orchestrator, token_service):
        session = await register(session_orchestrator, email="Alice@LawFirm.com")

        assert session.account.email == "alice@lawfirm.com"
        assert session.account.role.name == "User"
        assert session.account.is_verified is False
        assert session.token_type == "bearer"
        assert session.expires_in == 900
        claims = token_service.verify_access_token(session.access_token)
        assert claims.account_id == session.account.account_id

    @pytest.mark.asyncio
    async def test_password_hash_not_exposed(self, session_orchestrator):
        session = await register(session_orchestrator)

        assert "password_hash" not in session.model_dump_json()
        assert "two_factor_secret" not in session.model_dump_json()

    @pytest.mark.asyncio
    async def test_duplicate_email(self, session_orchestrator):
        await register(session_orchestrator)

        result = await session_orchestrator.register(
            "alice@lawfirm.com", "alice2", PASSWORD, "A", "D"
        )

        assert result.error is AuthErrorKind.DUPLICATE_IDENTITY
        assert result.message == "User with this email already exists"

    @pytest.mark.asyncio
    async def test_duplicate_username(self, session_orchestrator):
        await register(session_orchestrator)

        result = await session_orchestrator.register(
            "other@lawfirm.com", "alice", PASSWORD, "A", "D"
        )

        assert result.error is AuthErrorKind.DUPLICATE_IDENTITY
        assert result.message == "Username already taken"

    @pytest.mark.asyncio
    async def test_weak_password(self, session_orchestrator, credential_store):
        result = await session_orchestrator.register(
            "alice@lawfirm.com", "alice", "Short1!", "A", "D"
        )

        assert result.error is AuthErrorKind.VALIDATION_FAILED
        assert result.message.startswith("Password validation failed")
        assert await credential_store.get_account_by_email("alice@lawfirm.com") is None

    @pytest.mark.asyncio
    async def test_missing_default_role_is_an_error(
        self,
        credential_store,
        token_service,
        password_hasher,
        two_factor_service,
        blacklist_service,
    ):
        orchestrator = SessionOrchestrator(
            credential_store,
            token_service,
            password_hasher,
            two_factor_service,
            blacklist_service,
            default_role_name="Paralegal",
        )

        with pytest.raises(RuntimeError, match="Default role 'Paralegal' not found"):
            await orchestrator.register("a@lawfirm.com", "alice", PASSWORD, "A", "D")

    @pytest.mark.asyncio
    async def test_verification_email_sent(self, session_orchestrator, fake_notifier):
        session = await register(session_orchestrator)
        await session_orchestrator.drain_notifications()

        fake_notifier.send_verification_email.assert_awaited_once()
        args = fake_notifier.send_verification_email.call_args
        assert args.args[0] == session.account.email
        assert args.kwargs["expires_in_hours"] == 24

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_registration(
        self, session_orchestrator, fake_notifier
    ):
        fake_notifier.send_verification_email = AsyncMock(
            side_effect=smtplib.SMTPException("relay down")
        )

        await register(session_orchestrator)
        await session_orchestrator.drain_notifications()

        fake_notifier.send_verification_email.assert_awaited_once()


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_success(self, session_orchestrator, credential_store):
        registered = await register(session_orchestrator)

        result = await session_orchestrator.login("ALICE@lawfirm.com", PASSWORD)

        assert result.ok
        assert result.value.refresh_token != registered.refresh_token
        account = await credential_store.get_account_by_id(registered.account.account_id)
        assert account.last_login_at is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "email,password",
        [("alice@lawfirm.com", "WrongPassword1!"), ("nobody@lawfirm.com", PASSWORD)],
    )
    async def test_invalid_credentials_are_indistinguishable(
        self, session_orchestrator, email, password
    ):
        await register(session_orchestrator)

        result = await session_orchestrator.login(email, password)

        assert result.error is AuthErrorKind.INVALID_CREDENTIALS
        assert result.message == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_inactive_account(self, session_orchestrator, credential_store):
        session = await register(session_orchestrator)
        await credential_store.update_account(session.account.account_id, is_active=False)

        right = await session_orchestrator.login("alice@lawfirm.com", PASSWORD)
        wrong = await session_orchestrator.login("alice@lawfirm.com", "WrongPassword1!")

        assert right.error is AuthErrorKind.ACCOUNT_INACTIVE
        assert right.message == "Account is disabled"
        assert wrong.error is AuthErrorKind.INVALID_CREDENTIALS


class TestTwoFactorFlow:
    async def _enable(self, orchestrator):
        session = await register(orchestrator)
        account_id = session.account.account_id
        setup = (await orchestrator.setup_two_factor(account_id, PASSWORD)).unwrap()
        code = pyotp.TOTP(setup.secret).now()
        result = await orchestrator.enable_two_factor(account_id, PASSWORD, code)
        assert result.ok, result.message
        return account_id, setup

    @pytest.mark.asyncio
    async def test_setup_is_pending_until_enabled(self, session_orchestrator, credential_store):
        session = await register(session_orchestrator)
        account_id = session.account.account_id

        setup = (await session_orchestrator.setup_two_factor(account_id, PASSWORD)).unwrap()

        account = await credential_store.get_account_by_id(account_id)
        assert account.two_factor_secret == setup.secret
        assert account.two_factor_enabled is False
        assert (await session_orchestrator.login("alice@lawfirm.com", PASSWORD)).ok

    @pytest.mark.asyncio
    async def test_setup_requires_password(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.setup_two_factor(
            session.account.account_id, "WrongPassword1!"
        )

        assert result.error is AuthErrorKind.INVALID_CREDENTIALS
        assert result.message == "Invalid password"

    @pytest.mark.asyncio
    async def test_enable_without_setup(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.enable_two_factor(
            session.account.account_id, PASSWORD, "123456"
        )

        assert result.error is AuthErrorKind.VALIDATION_FAILED
        assert result.message == "Two-factor authentication not set up"

    @pytest.mark.asyncio
    async def test_enable_with_wrong_code(self, session_orchestrator):
        session = await register(session_orchestrator)
        account_id = session.account.account_id
        setup = (await session_orchestrator.setup_two_factor(account_id, PASSWORD)).unwrap()

        result = await session_orchestrator.enable_two_factor(
            account_id, PASSWORD, invalid_code_for(setup.secret)
        )

        assert result.error is AuthErrorKind.TWO_FACTOR_INVALID

    @pytest.mark.asyncio
    async def test_login_requires_code(self, session_orchestrator):
        await self._enable(session_orchestrator)

        result = await session_orchestrator.login("alice@lawfirm.com", PASSWORD)

        assert result.error is AuthErrorKind.TWO_FACTOR_REQUIRED
        assert result.message == "Two-factor authentication code required"

    @pytest.mark.asyncio
    async def test_login_with_totp(self, session_orchestrator):
        _, setup = await self._enable(session_orchestrator)

        result = await session_orchestrator.login(
            "alice@lawfirm.com", PASSWORD, pyotp.TOTP(setup.secret).now()
        )

        assert result.ok

    @pytest.mark.asyncio
    async def test_login_with_wrong_code_keeps_backup_codes(
        self, session_orchestrator, credential_store
    ):
        account_id, setup = await self._enable(session_orchestrator)

        result = await session_orchestrator.login(
            "alice@lawfirm.com", PASSWORD, invalid_code_for(setup.secret)
        )

        assert result.error is AuthErrorKind.TWO_FACTOR_INVALID
        account = await credential_store.get_account_by_id(account_id)
        assert account.backup_codes == setup.backup_codes

    @pytest.mark.asyncio
    async def test_login_with_non_ascii_code(self, session_orchestrator, credential_store):
        account_id, setup = await self._enable(session_orchestrator)

        result = await session_orchestrator.login("alice@lawfirm.com", PASSWORD, "ÄBCDEFGH")

        assert result.error is AuthErrorKind.TWO_FACTOR_INVALID
        account = await credential_store.get_account_by_id(account_id)
        assert account.backup_codes == setup.backup_codes

    @pytest.mark.asyncio
    async def test_backup_code_is_single_use(self, session_orchestrator, credential_store):
        account_id, setup = await self._enable(session_orchestrator)
        backup_code = setup.backup_codes[0]

        first = await session_orchestrator.login("alice@lawfirm.com", PASSWORD, backup_code)
        second = await session_orchestrator.login("alice@lawfirm.com", PASSWORD, backup_code)

        assert first.ok
        assert second.error is AuthErrorKind.TWO_FACTOR_INVALID
        account = await credential_store.get_account_by_id(account_id)
        assert backup_code not in account.backup_codes
        assert len(account.backup_codes) == len(setup.backup_codes) - 1

    @pytest.mark.asyncio
    async def test_setup_rejected_when_enabled(self, session_orchestrator):
        account_id, _ = await self._enable(session_orchestrator)

        result = await session_orchestrator.setup_two_factor(account_id, PASSWORD)

        assert result.error is AuthErrorKind.VALIDATION_FAILED
        assert result.message == "Two-factor authentication is already enabled"

    @pytest.mark.asyncio
    async def test_disable_clears_material(self, session_orchestrator, credential_store):
        account_id, _ = await self._enable(session_orchestrator)

        result = await session_orchestrator.disable_two_factor(account_id, PASSWORD)

        assert result.ok
        account = await credential_store.get_account_by_id(account_id)
        assert account.two_factor_enabled is False
        assert account.two_factor_secret is None
        assert account.backup_codes == []
        assert (await session_orchestrator.login("alice@lawfirm.com", PASSWORD)).ok
        # Disabling again is harmless
        assert (await session_orchestrator.disable_two_factor(account_id, PASSWORD)).ok


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_rotates_token(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.refresh(session.refresh_token)

        assert result.ok
        assert result.value.refresh_token != session.refresh_token
        assert result.value.account.account_id == session.account.account_id

    @pytest.mark.asyncio
    async def test_reused_refresh_token_rejected(self, session_orchestrator):
        session = await register(session_orchestrator)
        await session_orchestrator.refresh(session.refresh_token)

        result = await session_orchestrator.refresh(session.refresh_token)

        assert result.error is AuthErrorKind.TOKEN_REVOKED
        assert result.message == "Refresh token has been revoked"

    @pytest.mark.asyncio
    async def test_concurrent_refresh_has_one_winner(self, session_orchestrator):
        session = await register(session_orchestrator)

        results = await asyncio.gather(
            session_orchestrator.refresh(session.refresh_token),
            session_orchestrator.refresh(session.refresh_token),
        )

        assert sum(1 for r in results if r.ok) == 1
        assert [r.error for r in results if not r.ok] == [AuthErrorKind.TOKEN_REVOKED]

    @pytest.mark.asyncio
    async def test_unknown_refresh_token(self, session_orchestrator):
        result = await session_orchestrator.refresh("never-issued")

        assert result.error is AuthErrorKind.TOKEN_INVALID
        assert result.message == "Invalid refresh token"

    @pytest.mark.asyncio
    async def test_expired_refresh_token(self, session_orchestrator, credential_store):
        session = await register(session_orchestrator)
        await credential_store.create_refresh_token(
            RefreshTokenRecord(
                token="stale",
                account_id=session.account.account_id,
                expires_at=utc_now() - timedelta(minutes=1),
            )
        )

        result = await session_orchestrator.refresh("stale")

        assert result.error is AuthErrorKind.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_refresh_for_disabled_account(self, session_orchestrator, credential_store):
        session = await register(session_orchestrator)
        await credential_store.update_account(session.account.account_id, is_active=False)

        result = await session_orchestrator.refresh(session.refresh_token)

        assert result.error is AuthErrorKind.ACCOUNT_INACTIVE


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_revokes_both_tokens(self, session_orchestrator, rbac_enforcer):
        session = await register(session_orchestrator)

        result = await session_orchestrator.logout(session.access_token, session.refresh_token)

        assert result.ok
        gate = await rbac_enforcer.authenticate(session.access_token)
        assert gate.error is AuthErrorKind.TOKEN_REVOKED
        refreshed = await session_orchestrator.refresh(session.refresh_token)
        assert refreshed.error is AuthErrorKind.TOKEN_REVOKED

    @pytest.mark.asyncio
    async def test_logout_cannot_revoke_another_accounts_refresh_token(
        self, session_orchestrator
    ):
        alice = await register(session_orchestrator)
        bob = await register(session_orchestrator, email="bob@lawfirm.com", username="bob")

        result = await session_orchestrator.logout(alice.access_token, bob.refresh_token)

        assert result.ok
        assert (await session_orchestrator.refresh(bob.refresh_token)).ok

    @pytest.mark.asyncio
    async def test_logout_with_unreadable_token_still_succeeds(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.logout("garbage", session.refresh_token)

        assert result.ok
        assert (await session_orchestrator.refresh(session.refresh_token)).ok

    @pytest.mark.asyncio
    async def test_logout_survives_store_failure(
        self, session_orchestrator, credential_store
    ):
        session = await register(session_orchestrator)
        credential_store.revoke_refresh_token = AsyncMock(side_effect=ConnectionError("down"))

        result = await session_orchestrator.logout(session.access_token, session.refresh_token)

        assert result.ok


class TestChangePassword:
    @pytest.mark.asyncio
    async def test_change_password_revokes_sessions(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.change_password(
            session.account.account_id, PASSWORD, NEW_PASSWORD
        )

        assert result.ok
        assert (await session_orchestrator.refresh(session.refresh_token)).error is (
            AuthErrorKind.TOKEN_REVOKED
        )
        assert (await session_orchestrator.login("alice@lawfirm.com", PASSWORD)).error is (
            AuthErrorKind.INVALID_CREDENTIALS
        )
        assert (await session_orchestrator.login("alice@lawfirm.com", NEW_PASSWORD)).ok

    @pytest.mark.asyncio
    async def test_sessions_kept_when_configured(
        self,
        credential_store,
        token_service,
        password_hasher,
        two_factor_service,
        blacklist_service,
    ):
        orchestrator = SessionOrchestrator(
            credential_store,
            token_service,
            password_hasher,
            two_factor_service,
            blacklist_service,
            default_role_name="User",
            revoke_sessions_on_password_change=False,
        )
        session = await register(orchestrator)

        await orchestrator.change_password(session.account.account_id, PASSWORD, NEW_PASSWORD)

        assert (await orchestrator.refresh(session.refresh_token)).ok

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.change_password(
            session.account.account_id, "WrongPassword1!", NEW_PASSWORD
        )

        assert result.error is AuthErrorKind.INVALID_CREDENTIALS
        assert result.message == "Current password is incorrect"

    @pytest.mark.asyncio
    async def test_weak_new_password(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.change_password(
            session.account.account_id, PASSWORD, "alllowercase123!"
        )

        assert result.error is AuthErrorKind.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_unknown_account(self, session_orchestrator):
        result = await session_orchestrator.change_password(uuid4(), PASSWORD, NEW_PASSWORD)

        assert result.error is AuthErrorKind.ACCOUNT_NOT_FOUND


class TestPasswordReset:
    async def _request_token(self, orchestrator, notifier):
        result = await orchestrator.request_password_reset("alice@lawfirm.com")
        await orchestrator.drain_notifications()
        assert result.value == PASSWORD_RESET_REQUESTED_MESSAGE
        return notifier.send_password_reset_email.call_args.args[2]

    @pytest.mark.asyncio
    async def test_unknown_email_gets_same_answer(self, session_orchestrator, fake_notifier):
        result = await session_orchestrator.request_password_reset("nobody@lawfirm.com")
        await session_orchestrator.drain_notifications()

        assert result.ok
        assert result.value == PASSWORD_RESET_REQUESTED_MESSAGE
        fake_notifier.send_password_reset_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reset_flow(self, session_orchestrator, fake_notifier):
        session = await register(session_orchestrator)
        token = await self._request_token(session_orchestrator, fake_notifier)

        result = await session_orchestrator.confirm_password_reset(token, NEW_PASSWORD)

        assert result.ok
        assert (await session_orchestrator.login("alice@lawfirm.com", NEW_PASSWORD)).ok
        assert (await session_orchestrator.refresh(session.refresh_token)).error is (
            AuthErrorKind.TOKEN_REVOKED
        )
        assert fake_notifier.send_password_reset_email.call_args.kwargs[
            "expires_in_minutes"
        ] == 60

    @pytest.mark.asyncio
    async def test_reset_token_single_use(self, session_orchestrator, fake_notifier):
        await register(session_orchestrator)
        token = await self._request_token(session_orchestrator, fake_notifier)
        await session_orchestrator.confirm_password_reset(token, NEW_PASSWORD)

        result = await session_orchestrator.confirm_password_reset(token, "Another789#x")

        assert result.error is AuthErrorKind.TOKEN_INVALID
        assert result.message == "Invalid or expired reset token"

    @pytest.mark.asyncio
    async def test_weak_password_does_not_burn_token(self, session_orchestrator, fake_notifier):
        await register(session_orchestrator)
        token = await self._request_token(session_orchestrator, fake_notifier)

        weak = await session_orchestrator.confirm_password_reset(token, "weak")
        strong = await session_orchestrator.confirm_password_reset(token, NEW_PASSWORD)

        assert weak.error is AuthErrorKind.VALIDATION_FAILED
        assert strong.ok

    @pytest.mark.asyncio
    async def test_expired_reset_token(self, session_orchestrator, credential_store):
        session = await register(session_orchestrator)
        await credential_store.create_password_reset(
            PasswordResetRecord(
                token="old-reset",
                account_id=session.account.account_id,
                expires_at=utc_now() - timedelta(minutes=1),
            )
        )

        result = await session_orchestrator.confirm_password_reset("old-reset", NEW_PASSWORD)

        assert result.error is AuthErrorKind.TOKEN_INVALID


class TestVerifyEmail:
    @pytest.mark.asyncio
    async def test_verify_email(self, session_orchestrator, fake_notifier, credential_store):
        session = await register(session_orchestrator)
        await session_orchestrator.drain_notifications()
        token = fake_notifier.send_verification_email.call_args.args[2]

        result = await session_orchestrator.verify_email(token)

        assert result.ok
        assert result.value.is_verified is True
        account = await credential_store.get_account_by_id(session.account.account_id)
        assert account.is_verified is True
        # Verifying twice is harmless
        assert (await session_orchestrator.verify_email(token)).ok

    @pytest.mark.asyncio
    async def test_verify_email_rejects_access_token(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.verify_email(session.access_token)

        assert result.error is AuthErrorKind.TOKEN_INVALID


class TestProfileAndMaintenance:
    @pytest.mark.asyncio
    async def test_get_profile(self, session_orchestrator):
        session = await register(session_orchestrator)

        result = await session_orchestrator.get_profile(session.account.account_id)

        assert result.value.username == "alice"
        assert result.value.role.name == "User"

    @pytest.mark.asyncio
    async def test_get_profile_unknown_account(self, session_orchestrator):
        result = await session_orchestrator.get_profile(uuid4())

        assert result.error is AuthErrorKind.ACCOUNT_NOT_FOUND
        assert result.message == "User not found"

    @pytest.mark.asyncio
    async def test_purge_expired_credentials(self, session_orchestrator, credential_store):
        session = await register(session_orchestrator)
        account_id = session.account.account_id
        past = utc_now() - timedelta(minutes=1)
        await credential_store.create_refresh_token(
            RefreshTokenRecord(token="stale", account_id=account_id, expires_at=past)
        )
        await credential_store.create_password_reset(
            PasswordResetRecord(token="stale-reset", account_id=account_id, expires_at=past)
        )

        result = await session_orchestrator.purge_expired_credentials()

        assert result.value.refresh_tokens_deleted == 1
        assert result.value.password_resets_deleted == 1
        assert result.value.blacklist_entries_deleted == 0
        assert (await session_orchestrator.refresh(session.refresh_token)).ok
