"""
Session Orchestrator
--------------------
Account and session lifecycle: register, login, refresh, logout, password
change and reset, email verification and the two-factor setup flow.

Every public operation returns an ``AuthResult``. Expected failures are
raised internally as ``AuthError`` and converted at the public boundary;
anything else (store or transport errors on a must-succeed step)
propagates to the caller.
"""

import asyncio
import secrets
from datetime import timedelta
from typing import Awaitable, Dict, Optional, Set, TypeVar
from uuid import UUID

from loguru import logger

from lawcase_auth.auth.blacklist import BlacklistService
from lawcase_auth.auth.credential_store import CredentialStore
from lawcase_auth.auth.errors import (
    AuthError,
    AuthErrorKind,
    AuthResult,
    StepPolicy,
    run_step,
)
from lawcase_auth.auth.jwt_utils import TokenService
from lawcase_auth.auth.models import AccountResponse, AuthResponse, PurgeResponse
from lawcase_auth.auth.two_factor import TwoFactorService, TwoFactorSetup
from lawcase_auth.core.config_manager import settings
from lawcase_auth.core.logger_setup import redact_email
from lawcase_auth.models.credential_models import (
    Account,
    PasswordResetRecord,
    RefreshTokenRecord,
    Role,
    utc_now,
)
from lawcase_auth.services.email_notifier import EmailNotifier
from lawcase_auth.utils.password_hashing import (
    PasswordHasher,
    validate_password_strength,
)

T = TypeVar("T")

PASSWORD_RESET_REQUESTED_MESSAGE = "If this email exists, a reset link will be sent"
INVALID_LOGIN_MESSAGE = "Invalid email or password"

# Sub-steps whose failure must not abort the operation running them
STEP_POLICIES: Dict[str, StepPolicy] = {
    "logout.blacklist_access_token": StepPolicy.BEST_EFFORT,
    "logout.revoke_refresh_token": StepPolicy.BEST_EFFORT,
    "register.send_verification_email": StepPolicy.BEST_EFFORT,
    "password_reset.send_reset_email": StepPolicy.BEST_EFFORT,
    "change_password.revoke_refresh_tokens": StepPolicy.MUST_SUCCEED,
    "password_reset.revoke_refresh_tokens": StepPolicy.MUST_SUCCEED,
}


class SessionOrchestrator:
    """Façade over the credential store, token, blacklist and two-factor services."""

    def __init__(
        self,
        store: CredentialStore,
        token_service: TokenService,
        password_hasher: PasswordHasher,
        two_factor_service: TwoFactorService,
        blacklist_service: BlacklistService,
        notifier: Optional[EmailNotifier] = None,
        default_role_name: Optional[str] = None,
        revoke_sessions_on_password_change: Optional[bool] = None,
        password_reset_lifetime: Optional[timedelta] = None,
    ):
        self.store = store
        self.token_service = token_service
        self.password_hasher = password_hasher
        self.two_factor_service = two_factor_service
        self.blacklist_service = blacklist_service
        self.notifier = notifier
        self.default_role_name = default_role_name or settings.default_role_name
        self.revoke_sessions_on_password_change = (
            settings.revoke_sessions_on_password_change
            if revoke_sessions_on_password_change is None
            else revoke_sessions_on_password_change
        )
        self.password_reset_lifetime = password_reset_lifetime or timedelta(
            minutes=settings.password_reset_expire_minutes
        )
        # Unknown emails are checked against this so both login failures cost a bcrypt verify
        self._dummy_hash = password_hasher.hash_password(secrets.token_urlsafe(16))
        self._pending_notifications: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> AuthResult[AuthResponse]:
        return await self._as_result(
            "register",
            self._register(email, username, password, first_name, last_name),
        )

    async def login(
        self, email: str, password: str, two_factor_code: Optional[str] = None
    ) -> AuthResult[AuthResponse]:
        return await self._as_result(
            "login", self._login(email, password, two_factor_code)
        )

    async def refresh(self, refresh_token: str) -> AuthResult[AuthResponse]:
        return await self._as_result("refresh", self._refresh(refresh_token))

    async def logout(self, access_token: str, refresh_token: str) -> AuthResult[None]:
        """Blacklist the access token and revoke the refresh token.

        Both sub-steps are best effort; logout always reports success.
        """
        owner: Optional[UUID] = None
        try:
            owner = self.token_service.decode_ignoring_expiry(access_token).account_id
        except AuthError as e:
            logger.info(f"Logout with unreadable access token: {e.kind.value}")

        if owner is not None:
            await self._step(
                "logout.blacklist_access_token",
                self.blacklist_service.blacklist(access_token, reason="logout"),
            )
            await self._step(
                "logout.revoke_refresh_token",
                self.store.revoke_refresh_token(refresh_token, owner),
            )
            logger.info(f"Account {owner} logged out")

        return AuthResult.success(None)

    async def get_profile(self, account_id: UUID) -> AuthResult[AccountResponse]:
        return await self._as_result("get_profile", self._get_profile(account_id))

    async def change_password(
        self, account_id: UUID, current_password: str, new_password: str
    ) -> AuthResult[None]:
        return await self._as_result(
            "change_password",
            self._change_password(account_id, current_password, new_password),
        )

    async def setup_two_factor(
        self, account_id: UUID, password: str
    ) -> AuthResult[TwoFactorSetup]:
        return await self._as_result(
            "setup_two_factor", self._setup_two_factor(account_id, password)
        )

    async def enable_two_factor(
        self, account_id: UUID, password: str, code: str
    ) -> AuthResult[None]:
        return await self._as_result(
            "enable_two_factor", self._enable_two_factor(account_id, password, code)
        )

    async def disable_two_factor(
        self, account_id: UUID, password: str
    ) -> AuthResult[None]:
        return await self._as_result(
            "disable_two_factor", self._disable_two_factor(account_id, password)
        )

    async def request_password_reset(self, email: str) -> AuthResult[str]:
        """Start a password reset. The result is the same whether or not the email exists."""
        return await self._as_result(
            "request_password_reset", self._request_password_reset(email)
        )

    async def confirm_password_reset(
        self, token: str, new_password: str
    ) -> AuthResult[None]:
        return await self._as_result(
            "confirm_password_reset", self._confirm_password_reset(token, new_password)
        )

    async def verify_email(self, token: str) -> AuthResult[AccountResponse]:
        return await self._as_result("verify_email", self._verify_email(token))

    async def purge_expired_credentials(self) -> AuthResult[PurgeResponse]:
        """Delete expired refresh tokens, blacklist entries and reset tokens."""
        now = utc_now()
        refresh_deleted = await self.store.delete_expired_refresh_tokens(now)
        blacklist_deleted = await self.blacklist_service.purge_expired(now)
        resets_deleted = await self.store.delete_expired_password_resets(now)
        logger.info(
            f"Purged expired credentials: refresh_tokens={refresh_deleted} "
            f"blacklist={blacklist_deleted} password_resets={resets_deleted}"
        )
        return AuthResult.success(
            PurgeResponse(
                refresh_tokens_deleted=refresh_deleted,
                blacklist_entries_deleted=blacklist_deleted,
                password_resets_deleted=resets_deleted,
            )
        )

    async def drain_notifications(self) -> None:
        """Wait for in-flight notification tasks (called at shutdown)."""
        if self._pending_notifications:
            logger.info(
                f"Waiting for {len(self._pending_notifications)} pending notifications"
            )
            await asyncio.gather(*list(self._pending_notifications))

    # ------------------------------------------------------------------
    # Operation bodies
    # ------------------------------------------------------------------

    async def _register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> AuthResponse:
        email = email.lower().strip()
        username = username.strip()
        self._check_password_policy(password)

        if await self.store.get_account_by_email(email):
            raise AuthError(
                AuthErrorKind.DUPLICATE_IDENTITY, "User with this email already exists"
            )
        if await self.store.get_account_by_username(username):
            raise AuthError(AuthErrorKind.DUPLICATE_IDENTITY, "Username already taken")

        role = await self.store.get_role_by_name(self.default_role_name)
        if role is None:
            raise RuntimeError(
                f"Default role '{self.default_role_name}' not found; seed roles first"
            )

        password_hash = await self.password_hasher.hash_password_async(password)
        account = await self.store.create_account(
            Account(
                email=email,
                username=username,
                password_hash=password_hash,
                first_name=first_name,
                last_name=last_name,
                role_id=role.role_id,
            )
        )
        logger.info(f"Registered account {account.account_id} ({redact_email(email)})")

        session = await self._issue_session(account, role)

        if self.notifier is not None:
            verification_token = self.token_service.issue_email_verification_token(
                account.account_id, account.email
            )
            self._dispatch_notification(
                "register.send_verification_email",
                self.notifier.send_verification_email(
                    account.email,
                    account.first_name,
                    verification_token,
                    expires_in_hours=int(
                        self.token_service.email_verification_lifetime.total_seconds()
                        // 3600
                    ),
                ),
            )
        return session

    async def _login(
        self, email: str, password: str, two_factor_code: Optional[str]
    ) -> AuthResponse:
        account = await self.store.get_account_by_email(email.lower().strip())
        if account is None:
            await self.password_hasher.verify_password_async(password, self._dummy_hash)
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, INVALID_LOGIN_MESSAGE)

        if not await self.password_hasher.verify_password_async(
            password, account.password_hash
        ):
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, INVALID_LOGIN_MESSAGE)

        # Checked only after the password so account state is not revealed to guessers
        if not account.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE, "Account is disabled")

        if account.two_factor_enabled:
            await self._check_second_factor(account, two_factor_code)

        updated = await self.store.update_account(
            account.account_id, last_login_at=utc_now()
        )
        account = updated or account
        logger.info(f"Account {account.account_id} logged in")
        return await self._issue_session(account)

    async def _check_second_factor(self, account: Account, code: Optional[str]) -> None:
        if not code:
            raise AuthError(
                AuthErrorKind.TWO_FACTOR_REQUIRED,
                "Two-factor authentication code required",
            )

        if self.two_factor_service.verify_code(account.two_factor_secret, code):
            return

        if self.two_factor_service.match_backup_code(account.backup_codes, code):
            consumed = await self.store.consume_backup_code(
                account.account_id,
                self.two_factor_service.normalize_backup_code(code),
            )
            if consumed:
                logger.info(
                    f"Backup code used by account {account.account_id}; "
                    f"{len(account.backup_codes) - 1} remaining"
                )
                return

        raise AuthError(
            AuthErrorKind.TWO_FACTOR_INVALID, "Invalid two-factor authentication code"
        )

    async def _refresh(self, refresh_token: str) -> AuthResponse:
        now = utc_now()
        record = await self.store.get_refresh_token(refresh_token)
        if record is None:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid refresh token")
        if record.is_revoked:
            logger.warning(f"Revoked refresh token presented for account {record.account_id}")
            raise AuthError(AuthErrorKind.TOKEN_REVOKED, "Refresh token has been revoked")
        if record.is_expired(now):
            raise AuthError(AuthErrorKind.TOKEN_EXPIRED, "Refresh token expired")

        account = await self.store.get_account_by_id(record.account_id)
        if account is None or not account.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE, "User not found or inactive")

        new_record = RefreshTokenRecord(
            token=self.token_service.issue_refresh_token(),
            account_id=account.account_id,
            expires_at=self.token_service.refresh_token_expiry(now),
        )
        if not await self.store.rotate_refresh_token(refresh_token, new_record, now):
            # Another request rotated or revoked this token first
            raise AuthError(AuthErrorKind.TOKEN_REVOKED, "Refresh token has been revoked")

        logger.debug(f"Refresh token rotated for account {account.account_id}")
        return await self._build_session(account, new_record.token)

    async def _get_profile(self, account_id: UUID) -> AccountResponse:
        account = await self._require_account(account_id)
        return AccountResponse.from_account(account, await self._load_role(account))

    async def _change_password(
        self, account_id: UUID, current_password: str, new_password: str
    ) -> None:
        account = await self._require_account(account_id)
        if not await self.password_hasher.verify_password_async(
            current_password, account.password_hash
        ):
            raise AuthError(
                AuthErrorKind.INVALID_CREDENTIALS, "Current password is incorrect"
            )
        self._check_password_policy(new_password)

        password_hash = await self.password_hasher.hash_password_async(new_password)
        await self.store.update_account(account_id, password_hash=password_hash)
        logger.info(f"Password changed for account {account_id}")

        if self.revoke_sessions_on_password_change:
            revoked = await self._step(
                "change_password.revoke_refresh_tokens",
                self.store.revoke_all_refresh_tokens(account_id),
            )
            logger.info(f"Revoked {revoked} refresh tokens for account {account_id}")

    async def _setup_two_factor(self, account_id: UUID, password: str) -> TwoFactorSetup:
        account = await self._require_password(account_id, password)
        if account.two_factor_enabled:
            raise AuthError(
                AuthErrorKind.VALIDATION_FAILED,
                "Two-factor authentication is already enabled",
            )

        setup = self.two_factor_service.setup(account.email)
        await self.store.update_account(
            account_id,
            two_factor_enabled=False,
            two_factor_secret=setup.secret,
            backup_codes=setup.backup_codes,
        )
        logger.info(f"Two-factor setup started for account {account_id}")
        return setup

    async def _enable_two_factor(self, account_id: UUID, password: str, code: str) -> None:
        account = await self._require_password(account_id, password)
        if account.two_factor_enabled:
            raise AuthError(
                AuthErrorKind.VALIDATION_FAILED,
                "Two-factor authentication is already enabled",
            )
        if not account.two_factor_secret:
            raise AuthError(
                AuthErrorKind.VALIDATION_FAILED, "Two-factor authentication not set up"
            )
        if not self.two_factor_service.verify_code(account.two_factor_secret, code):
            raise AuthError(
                AuthErrorKind.TWO_FACTOR_INVALID,
                "Invalid two-factor authentication code",
            )

        await self.store.update_account(account_id, two_factor_enabled=True)
        logger.info(f"Two-factor authentication enabled for account {account_id}")

    async def _disable_two_factor(self, account_id: UUID, password: str) -> None:
        await self._require_password(account_id, password)
        await self.store.update_account(
            account_id,
            two_factor_enabled=False,
            two_factor_secret=None,
            backup_codes=[],
        )
        logger.info(f"Two-factor authentication disabled for account {account_id}")

    async def _request_password_reset(self, email: str) -> str:
        account = await self.store.get_account_by_email(email.lower().strip())
        if account is None or not account.is_active:
            logger.info(f"Password reset requested for unknown or inactive {redact_email(email)}")
            return PASSWORD_RESET_REQUESTED_MESSAGE

        record = PasswordResetRecord(
            token=secrets.token_urlsafe(32),
            account_id=account.account_id,
            expires_at=utc_now() + self.password_reset_lifetime,
        )
        await self.store.create_password_reset(record)
        logger.info(f"Password reset token issued for account {account.account_id}")

        if self.notifier is not None:
            self._dispatch_notification(
                "password_reset.send_reset_email",
                self.notifier.send_password_reset_email(
                    account.email,
                    account.first_name,
                    record.token,
                    expires_in_minutes=int(
                        self.password_reset_lifetime.total_seconds() // 60
                    ),
                ),
            )
        return PASSWORD_RESET_REQUESTED_MESSAGE

    async def _confirm_password_reset(self, token: str, new_password: str) -> None:
        self._check_password_policy(new_password)

        record = await self.store.consume_password_reset(token, utc_now())
        if record is None:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "Invalid or expired reset token")

        account = await self.store.get_account_by_id(record.account_id)
        if account is None or not account.is_active:
            raise AuthError(AuthErrorKind.ACCOUNT_INACTIVE, "User not found or inactive")

        password_hash = await self.password_hasher.hash_password_async(new_password)
        await self.store.update_account(account.account_id, password_hash=password_hash)
        revoked = await self._step(
            "password_reset.revoke_refresh_tokens",
            self.store.revoke_all_refresh_tokens(account.account_id),
        )
        logger.info(
            f"Password reset completed for account {account.account_id}; "
            f"revoked {revoked} refresh tokens"
        )

    async def _verify_email(self, token: str) -> AccountResponse:
        account_id = self.token_service.verify_email_verification_token(token)
        account = await self._require_account(account_id)
        if not account.is_verified:
            account = await self.store.update_account(account_id, is_verified=True) or account
            logger.info(f"Email verified for account {account_id}")
        return AccountResponse.from_account(account, await self._load_role(account))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _issue_session(
        self, account: Account, role: Optional[Role] = None
    ) -> AuthResponse:
        """Persist a new refresh token for the account and return a token pair."""
        refresh_token = self.token_service.issue_refresh_token()
        await self.store.create_refresh_token(
            RefreshTokenRecord(
                token=refresh_token,
                account_id=account.account_id,
                expires_at=self.token_service.refresh_token_expiry(),
            )
        )
        return await self._build_session(account, refresh_token, role)

    async def _build_session(
        self, account: Account, refresh_token: str, role: Optional[Role] = None
    ) -> AuthResponse:
        access_token = self.token_service.issue_access_token(
            account.account_id, account.email, account.username, account.role_id
        )
        if role is None:
            role = await self._load_role(account)
        return AuthResponse(
            account=AccountResponse.from_account(account, role),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.token_service.access_token_expires_in,
        )

    async def _load_role(self, account: Account) -> Optional[Role]:
        if account.role_id is None:
            return None
        return await self.store.get_role_by_id(account.role_id)

    async def _require_account(self, account_id: UUID) -> Account:
        account = await self.store.get_account_by_id(account_id)
        if account is None:
            raise AuthError(AuthErrorKind.ACCOUNT_NOT_FOUND, "User not found")
        return account

    async def _require_password(self, account_id: UUID, password: str) -> Account:
        account = await self._require_account(account_id)
        if not await self.password_hasher.verify_password_async(
            password, account.password_hash
        ):
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "Invalid password")
        return account

    @staticmethod
    def _check_password_policy(password: str) -> None:
        errors = validate_password_strength(password)
        if errors:
            raise AuthError(
                AuthErrorKind.VALIDATION_FAILED,
                f"Password validation failed: {', '.join(errors)}",
            )

    @staticmethod
    async def _step(step_name: str, awaitable: Awaitable[T]) -> Optional[T]:
        return await run_step(step_name, STEP_POLICIES[step_name], awaitable)

    @staticmethod
    async def _as_result(operation: str, awaitable: Awaitable[T]) -> AuthResult[T]:
        try:
            return AuthResult.success(await awaitable)
        except AuthError as e:
            logger.info(f"{operation} rejected: {e.kind.value}")
            return AuthResult.from_error(e)

    def _dispatch_notification(self, step_name: str, awaitable: Awaitable[bool]) -> None:
        task = asyncio.create_task(self._step(step_name, awaitable))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)
