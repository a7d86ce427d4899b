"""
Credential Store
----------------
Durable storage contract for accounts, roles, refresh tokens, blacklist
entries and password resets, plus an in-memory backend.

Both backends share the same semantics. The operations that must be atomic
(refresh rotation, backup-code consumption, password-reset consumption) are
single calls on the store so no caller can interleave a read and a write.
"""

import asyncio
import hmac
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from loguru import logger

from lawcase_auth.auth.errors import AuthError, AuthErrorKind
from lawcase_auth.models.credential_models import (
    Account,
    BlacklistEntry,
    PasswordResetRecord,
    RefreshTokenRecord,
    Role,
    utc_now,
)

# Account columns that update_account may change
UPDATABLE_ACCOUNT_FIELDS = frozenset(
    {
        "password_hash",
        "first_name",
        "last_name",
        "is_active",
        "is_verified",
        "two_factor_enabled",
        "two_factor_secret",
        "backup_codes",
        "last_login_at",
        "role_id",
    }
)


class CredentialStore(ABC):
    """Persistence contract used by the session core."""

    # Accounts

    @abstractmethod
    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]: ...

    @abstractmethod
    async def get_account_by_email(self, email: str) -> Optional[Account]: ...

    @abstractmethod
    async def get_account_by_username(self, username: str) -> Optional[Account]: ...

    @abstractmethod
    async def create_account(self, account: Account) -> Account:
        """Insert an account. Raises AuthError(DUPLICATE_IDENTITY) on a unique clash."""

    @abstractmethod
    async def update_account(self, account_id: UUID, **fields) -> Optional[Account]:
        """Update the given columns and return the new row, or None if absent."""

    # Roles

    @abstractmethod
    async def get_role_by_id(self, role_id: UUID) -> Optional[Role]: ...

    @abstractmethod
    async def get_role_by_name(self, name: str) -> Optional[Role]: ...

    @abstractmethod
    async def seed_roles(self, roles: Iterable[Role]) -> int:
        """Insert missing roles and permissions. Returns the number of roles added."""

    # Refresh tokens

    @abstractmethod
    async def create_refresh_token(self, record: RefreshTokenRecord) -> None: ...

    @abstractmethod
    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]: ...

    @abstractmethod
    async def rotate_refresh_token(
        self, old_token: str, new_record: RefreshTokenRecord, now: datetime
    ) -> bool:
        """
        Revoke ``old_token`` and insert ``new_record`` as one unit.

        The revoke only applies while the old token is unrevoked, unexpired and
        owned by ``new_record.account_id``. Returns False (and inserts nothing)
        when that condition no longer holds.
        """

    @abstractmethod
    async def revoke_refresh_token(self, token: str, account_id: UUID) -> bool: ...

    @abstractmethod
    async def revoke_all_refresh_tokens(self, account_id: UUID) -> int: ...

    @abstractmethod
    async def delete_expired_refresh_tokens(self, now: datetime) -> int: ...

    # Blacklist

    @abstractmethod
    async def add_blacklist_entry(self, entry: BlacklistEntry) -> None: ...

    @abstractmethod
    async def is_token_blacklisted(self, token: str, now: datetime) -> bool: ...

    @abstractmethod
    async def delete_expired_blacklist_entries(self, now: datetime) -> int: ...

    # Two-factor

    @abstractmethod
    async def consume_backup_code(self, account_id: UUID, code: str) -> bool:
        """Remove ``code`` from the account's backup codes if present."""

    # Password resets

    @abstractmethod
    async def create_password_reset(self, record: PasswordResetRecord) -> None: ...

    @abstractmethod
    async def consume_password_reset(
        self, token: str, now: datetime
    ) -> Optional[PasswordResetRecord]:
        """Mark an unused, unexpired reset token as used and return it."""

    @abstractmethod
    async def delete_expired_password_resets(self, now: datetime) -> int: ...


class InMemoryCredentialStore(CredentialStore):
    """
    Process-local store for development and tests.

    Records are copied on the way in and out so callers never share state
    with the store, mirroring a database round trip.
    """

    def __init__(self, roles: Optional[Iterable[Role]] = None):
        self._accounts: Dict[UUID, Account] = {}
        self._roles: Dict[UUID, Role] = {}
        self._refresh_tokens: Dict[str, RefreshTokenRecord] = {}
        self._blacklist: Dict[str, BlacklistEntry] = {}
        self._password_resets: Dict[str, PasswordResetRecord] = {}
        self._lock = asyncio.Lock()
        for role in roles or []:
            self._roles[role.role_id] = role.model_copy(deep=True)

    # Accounts

    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        email = email.lower().strip()
        for account in self._accounts.values():
            if account.email == email:
                return account.model_copy(deep=True)
        return None

    async def get_account_by_username(self, username: str) -> Optional[Account]:
        for account in self._accounts.values():
            if account.username == username:
                return account.model_copy(deep=True)
        return None

    async def create_account(self, account: Account) -> Account:
        async with self._lock:
            for existing in self._accounts.values():
                if existing.email == account.email:
                    raise AuthError(
                        AuthErrorKind.DUPLICATE_IDENTITY,
                        "User with this email already exists",
                    )
                if existing.username == account.username:
                    raise AuthError(
                        AuthErrorKind.DUPLICATE_IDENTITY,
                        "User with this username already exists",
                    )
            self._accounts[account.account_id] = account.model_copy(deep=True)
        logger.debug(f"Account created: {account.account_id}")
        return account.model_copy(deep=True)

    async def update_account(self, account_id: UUID, **fields) -> Optional[Account]:
        unknown = set(fields) - UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update account fields: {sorted(unknown)}")

        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            data = account.model_dump()
            data.update(fields)
            data["updated_at"] = utc_now()
            # Re-validate so the two-factor invariant holds on every write
            updated = Account.model_validate(data)
            self._accounts[account_id] = updated
        return updated.model_copy(deep=True)

    # Roles

    async def get_role_by_id(self, role_id: UUID) -> Optional[Role]:
        role = self._roles.get(role_id)
        return role.model_copy(deep=True) if role else None

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        for role in self._roles.values():
            if role.name == name:
                return role.model_copy(deep=True)
        return None

    async def seed_roles(self, roles: Iterable[Role]) -> int:
        added = 0
        async with self._lock:
            existing_names = {role.name for role in self._roles.values()}
            for role in roles:
                if role.name in existing_names:
                    continue
                self._roles[role.role_id] = role.model_copy(deep=True)
                existing_names.add(role.name)
                added += 1
        return added

    # Refresh tokens

    async def create_refresh_token(self, record: RefreshTokenRecord) -> None:
        async with self._lock:
            if record.token in self._refresh_tokens:
                raise ValueError("Refresh token already exists")
            self._refresh_tokens[record.token] = record.model_copy()

    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        record = self._refresh_tokens.get(token)
        return record.model_copy() if record else None

    async def rotate_refresh_token(
        self, old_token: str, new_record: RefreshTokenRecord, now: datetime
    ) -> bool:
        async with self._lock:
            old = self._refresh_tokens.get(old_token)
            if (
                old is None
                or old.is_revoked
                or old.is_expired(now)
                or old.account_id != new_record.account_id
            ):
                return False
            if new_record.token in self._refresh_tokens:
                raise ValueError("Refresh token already exists")
            self._refresh_tokens[old_token] = old.model_copy(update={"is_revoked": True})
            self._refresh_tokens[new_record.token] = new_record.model_copy()
        return True

    async def revoke_refresh_token(self, token: str, account_id: UUID) -> bool:
        async with self._lock:
            record = self._refresh_tokens.get(token)
            if record is None or record.account_id != account_id or record.is_revoked:
                return False
            self._refresh_tokens[token] = record.model_copy(update={"is_revoked": True})
        return True

    async def revoke_all_refresh_tokens(self, account_id: UUID) -> int:
        revoked = 0
        async with self._lock:
            for token, record in self._refresh_tokens.items():
                if record.account_id == account_id and not record.is_revoked:
                    self._refresh_tokens[token] = record.model_copy(
                        update={"is_revoked": True}
                    )
                    revoked += 1
        return revoked

    async def delete_expired_refresh_tokens(self, now: datetime) -> int:
        async with self._lock:
            expired = [t for t, r in self._refresh_tokens.items() if r.is_expired(now)]
            for token in expired:
                del self._refresh_tokens[token]
        return len(expired)

    # Blacklist

    async def add_blacklist_entry(self, entry: BlacklistEntry) -> None:
        async with self._lock:
            # Re-blacklisting the same token keeps the first entry
            self._blacklist.setdefault(entry.token, entry.model_copy())

    async def is_token_blacklisted(self, token: str, now: datetime) -> bool:
        entry = self._blacklist.get(token)
        return entry is not None and entry.expires_at > now

    async def delete_expired_blacklist_entries(self, now: datetime) -> int:
        async with self._lock:
            expired = [t for t, e in self._blacklist.items() if e.expires_at <= now]
            for token in expired:
                del self._blacklist[token]
        return len(expired)

    # Two-factor

    async def consume_backup_code(self, account_id: UUID, code: str) -> bool:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return False
            remaining: List[str] = []
            matched = False
            for stored in account.backup_codes:
                if not matched and hmac.compare_digest(stored.encode(), code.encode()):
                    matched = True
                    continue
                remaining.append(stored)
            if not matched:
                return False
            self._accounts[account_id] = account.model_copy(
                update={"backup_codes": remaining, "updated_at": utc_now()}
            )
        return True

    # Password resets

    async def create_password_reset(self, record: PasswordResetRecord) -> None:
        async with self._lock:
            self._password_resets[record.token] = record.model_copy()

    async def consume_password_reset(
        self, token: str, now: datetime
    ) -> Optional[PasswordResetRecord]:
        async with self._lock:
            record = self._password_resets.get(token)
            if record is None or record.used_at is not None or record.expires_at <= now:
                return None
            used = record.model_copy(update={"used_at": now})
            self._password_resets[token] = used
        return used.model_copy()

    async def delete_expired_password_resets(self, now: datetime) -> int:
        async with self._lock:
            expired = [
                t for t, r in self._password_resets.items() if r.expires_at <= now
            ]
            for token in expired:
                del self._password_resets[token]
        return len(expired)
