"""
PostgreSQL Credential Store
---------------------------
Database service backing the session core: accounts, roles and permissions,
refresh tokens, the access-token blacklist and password reset tokens.

Schema: ``database/init.sql``. Operations that must be atomic run as a
single conditional statement (or two statements in one session) so the
database arbitrates concurrent callers:
- refresh rotation: conditional UPDATE ... RETURNING, then INSERT
- backup-code consumption: array_remove guarded by ``= ANY``
- password reset consumption: UPDATE ... WHERE used_at IS NULL
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from lawcase_auth.auth.credential_store import (
    UPDATABLE_ACCOUNT_FIELDS,
    CredentialStore,
)
from lawcase_auth.auth.errors import AuthError, AuthErrorKind
from lawcase_auth.core.database_connection import DatabaseManager
from lawcase_auth.models.credential_models import (
    Account,
    BlacklistEntry,
    PasswordResetRecord,
    Permission,
    RefreshTokenRecord,
    Role,
)
from lawcase_auth.psql_db_services.base_service import BaseDatabaseService

ACCOUNT_COLUMNS = """
    account_id, email, username, password_hash, first_name, last_name,
    is_active, is_verified, two_factor_enabled, two_factor_secret,
    backup_codes, last_login_at, role_id, created_at, updated_at
"""

ROLE_WITH_PERMISSIONS_QUERY = """
    SELECT r.role_id, r.name, r.description,
           p.permission_id, p.name AS permission_name, p.resource, p.action,
           p.description AS permission_description
    FROM roles r
    LEFT JOIN role_permissions rp ON rp.role_id = r.role_id
    LEFT JOIN permissions p ON p.permission_id = rp.permission_id
    WHERE {where_clause}
    ORDER BY p.name
"""


def _account_from_row(row: Dict[str, Any]) -> Account:
    data = dict(row)
    data["backup_codes"] = list(data.get("backup_codes") or [])
    data["first_name"] = data.get("first_name") or ""
    data["last_name"] = data.get("last_name") or ""
    return Account.model_validate(data)


class CredentialStoreService(BaseDatabaseService, CredentialStore):
    """
    PostgreSQL implementation of the credential store.

    Inherits session management from BaseDatabaseService; every public
    method opens its own session, i.e. its own transaction.
    """

    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        super().__init__(database_manager)

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    async def _fetch_account(
        self, where_clause: str, params: Dict[str, Any]
    ) -> Optional[Account]:
        async with self.get_session() as session:
            sql_query = f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE {where_clause}"
            result = await session.execute(text(sql_query), params)
            row = result.mappings().one_or_none()
            return _account_from_row(row) if row else None

    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]:
        self.validate_uuid(account_id, "account_id")
        return await self._fetch_account("account_id = :account_id", {"account_id": account_id})

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        return await self._fetch_account(
            "email = :email", {"email": email.lower().strip()}
        )

    async def get_account_by_username(self, username: str) -> Optional[Account]:
        return await self._fetch_account("username = :username", {"username": username})

    async def create_account(self, account: Account) -> Account:
        """
        Insert an account row.

        Raises:
            AuthError: DUPLICATE_IDENTITY when email or username is taken
        """
        sql_query = f"""
            INSERT INTO accounts ({ACCOUNT_COLUMNS})
            VALUES (
                :account_id, :email, :username, :password_hash, :first_name, :last_name,
                :is_active, :is_verified, :two_factor_enabled, :two_factor_secret,
                :backup_codes, :last_login_at, :role_id, :created_at, :updated_at
            )
            RETURNING {ACCOUNT_COLUMNS}
        """
        try:
            async with self.get_session() as session:
                result = await session.execute(text(sql_query), account.model_dump())
                created = result.mappings().one_or_none()
                if not created:
                    raise RuntimeError("Failed to create account record")
        except IntegrityError as e:
            message = str(e.orig)
            if "accounts_email_key" in message:
                raise AuthError(
                    AuthErrorKind.DUPLICATE_IDENTITY,
                    "User with this email already exists",
                ) from e
            if "accounts_username_key" in message:
                raise AuthError(
                    AuthErrorKind.DUPLICATE_IDENTITY, "Username already taken"
                ) from e
            raise

        self.log_operation("CREATE", account.account_id)
        return _account_from_row(created)

    async def update_account(self, account_id: UUID, **fields) -> Optional[Account]:
        self.validate_uuid(account_id, "account_id")
        unknown = set(fields) - UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update account fields: {sorted(unknown)}")

        sql_query, params = self.build_dynamic_update_query(
            "accounts", fields, "account_id = :account_id", {"account_id": account_id}
        )
        async with self.get_session() as session:
            result = await session.execute(text(sql_query), params)
            row = result.mappings().one_or_none()
            # Validation runs before the session commits, so a row breaking the
            # two-factor invariant rolls the update back
            return _account_from_row(row) if row else None

    # ========================================================================
    # ROLES
    # ========================================================================

    async def _fetch_role(
        self, where_clause: str, params: Dict[str, Any]
    ) -> Optional[Role]:
        async with self.get_session() as session:
            sql_query = ROLE_WITH_PERMISSIONS_QUERY.format(where_clause=where_clause)
            result = await session.execute(text(sql_query), params)
            rows = result.mappings().all()

        if not rows:
            return None

        first = rows[0]
        permissions = [
            Permission(
                permission_id=row["permission_id"],
                name=row["permission_name"],
                resource=row["resource"],
                action=row["action"],
                description=row["permission_description"],
            )
            for row in rows
            if row["permission_id"] is not None
        ]
        return Role(
            role_id=first["role_id"],
            name=first["name"],
            description=first["description"] or "",
            permissions=permissions,
        )

    async def get_role_by_id(self, role_id: UUID) -> Optional[Role]:
        return await self._fetch_role("r.role_id = :role_id", {"role_id": role_id})

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        return await self._fetch_role("r.name = :name", {"name": name})

    async def seed_roles(self, roles: Iterable[Role]) -> int:
        """Insert missing roles and their permissions. Existing roles are left untouched."""
        added = 0
        async with self.get_session() as session:
            for role in roles:
                for permission in role.permissions:
                    await session.execute(
                        text(
                            """
                            INSERT INTO permissions (permission_id, name, resource, action, description)
                            VALUES (:permission_id, :name, :resource, :action, :description)
                            ON CONFLICT (name) DO NOTHING
                            """
                        ),
                        permission.model_dump(),
                    )

                result = await session.execute(
                    text(
                        """
                        INSERT INTO roles (role_id, name, description)
                        VALUES (:role_id, :name, :description)
                        ON CONFLICT (name) DO NOTHING
                        RETURNING role_id
                        """
                    ),
                    {
                        "role_id": role.role_id,
                        "name": role.name,
                        "description": role.description,
                    },
                )
                if result.first() is None:
                    continue

                added += 1
                for permission in role.permissions:
                    await session.execute(
                        text(
                            """
                            INSERT INTO role_permissions (role_id, permission_id)
                            SELECT :role_id, p.permission_id FROM permissions p
                            WHERE p.name = :permission_name
                            ON CONFLICT DO NOTHING
                            """
                        ),
                        {"role_id": role.role_id, "permission_name": permission.name},
                    )

        logger.info(f"{self._service_name}: seeded {added} roles")
        return added

    # ========================================================================
    # REFRESH TOKENS
    # ========================================================================

    async def create_refresh_token(self, record: RefreshTokenRecord) -> None:
        async with self.get_session() as session:
            await session.execute(
                text(
                    """
                    INSERT INTO refresh_tokens (token, account_id, expires_at, is_revoked, created_at)
                    VALUES (:token, :account_id, :expires_at, :is_revoked, :created_at)
                    """
                ),
                record.model_dump(),
            )

    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        async with self.get_session() as session:
            result = await session.execute(
                text(
                    """
                    SELECT token, account_id, expires_at, is_revoked, created_at
                    FROM refresh_tokens WHERE token = :token
                    """
                ),
                {"token": token},
            )
            row = result.mappings().one_or_none()
            return RefreshTokenRecord.model_validate(dict(row)) if row else None

    async def rotate_refresh_token(
        self, old_token: str, new_record: RefreshTokenRecord, now: datetime
    ) -> bool:
        async with self.get_session() as session:
            result = await session.execute(
                text(
                    """
                    UPDATE refresh_tokens
                    SET is_revoked = TRUE
                    WHERE token = :token
                      AND account_id = :account_id
                      AND is_revoked = FALSE
                      AND expires_at > :now
                    RETURNING token
                    """
                ),
                {"token": old_token, "account_id": new_record.account_id, "now": now},
            )
            if result.first() is None:
                return False

            await session.execute(
                text(
                    """
                    INSERT INTO refresh_tokens (token, account_id, expires_at, is_revoked, created_at)
                    VALUES (:token, :account_id, :expires_at, :is_revoked, :created_at)
                    """
                ),
                new_record.model_dump(),
            )
        return True

    async def revoke_refresh_token(self, token: str, account_id: UUID) -> bool:
        rows = await self.execute_single_query(
            """
            UPDATE refresh_tokens SET is_revoked = TRUE
            WHERE token = :token AND account_id = :account_id AND is_revoked = FALSE
            RETURNING token
            """,
            {"token": token, "account_id": account_id},
        )
        return bool(rows)

    async def revoke_all_refresh_tokens(self, account_id: UUID) -> int:
        revoked = await self.execute_row_count(
            """
            UPDATE refresh_tokens SET is_revoked = TRUE
            WHERE account_id = :account_id AND is_revoked = FALSE
            """,
            {"account_id": account_id},
        )
        self.log_operation("REVOKE_ALL", account_id, additional_context=f"{revoked} tokens")
        return revoked

    async def delete_expired_refresh_tokens(self, now: datetime) -> int:
        return await self.execute_row_count(
            "DELETE FROM refresh_tokens WHERE expires_at <= :now", {"now": now}
        )

    # ========================================================================
    # BLACKLIST
    # ========================================================================

    async def add_blacklist_entry(self, entry: BlacklistEntry) -> None:
        await self.execute_single_query(
            """
            INSERT INTO token_blacklist (token, account_id, expires_at, reason, created_at)
            VALUES (:token, :account_id, :expires_at, :reason, :created_at)
            ON CONFLICT (token) DO NOTHING
            """,
            entry.model_dump(),
            fetch_results=False,
        )

    async def is_token_blacklisted(self, token: str, now: datetime) -> bool:
        rows = await self.execute_single_query(
            """
            SELECT 1 AS blacklisted FROM token_blacklist
            WHERE token = :token AND expires_at > :now
            LIMIT 1
            """,
            {"token": token, "now": now},
        )
        return bool(rows)

    async def delete_expired_blacklist_entries(self, now: datetime) -> int:
        return await self.execute_row_count(
            "DELETE FROM token_blacklist WHERE expires_at <= :now", {"now": now}
        )

    # ========================================================================
    # TWO-FACTOR
    # ========================================================================

    async def consume_backup_code(self, account_id: UUID, code: str) -> bool:
        rows = await self.execute_single_query(
            """
            UPDATE accounts
            SET backup_codes = array_remove(backup_codes, CAST(:code AS TEXT)),
                updated_at = CURRENT_TIMESTAMP
            WHERE account_id = :account_id
              AND CAST(:code AS TEXT) = ANY(backup_codes)
            RETURNING account_id
            """,
            {"account_id": account_id, "code": code},
        )
        return bool(rows)

    # ========================================================================
    # PASSWORD RESETS
    # ========================================================================

    async def create_password_reset(self, record: PasswordResetRecord) -> None:
        await self.execute_single_query(
            """
            INSERT INTO password_resets (token, account_id, expires_at, used_at, created_at)
            VALUES (:token, :account_id, :expires_at, :used_at, :created_at)
            """,
            record.model_dump(),
            fetch_results=False,
        )

    async def consume_password_reset(
        self, token: str, now: datetime
    ) -> Optional[PasswordResetRecord]:
        rows = await self.execute_single_query(
            """
            UPDATE password_resets SET used_at = :now
            WHERE token = :token AND used_at IS NULL AND expires_at > :now
            RETURNING token, account_id, expires_at, used_at, created_at
            """,
            {"token": token, "now": now},
        )
        return PasswordResetRecord.model_validate(rows[0]) if rows else None

    async def delete_expired_password_resets(self, now: datetime) -> int:
        return await self.execute_row_count(
            "DELETE FROM password_resets WHERE expires_at <= :now", {"now": now}
        )
