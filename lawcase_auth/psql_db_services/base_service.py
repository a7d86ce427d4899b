"""
Base Database Service
--------------------
Shared plumbing for the PostgreSQL-backed services: one transaction per
``get_session`` block, raw ``text()`` statements with named parameters, and
the logging conventions every service follows.
"""

from typing import Optional, List, Dict, Any, Tuple, AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Result
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from lawcase_auth.core.database_connection import DatabaseManager


class BaseDatabaseService:
    """
    Base class for services that talk to PostgreSQL through DatabaseManager.

    Subclasses either open a session themselves when several statements must
    share a transaction, or use the one-shot helpers below.
    """

    def __init__(self, database_manager: Optional[DatabaseManager] = None):
        # Falls back to the process-wide singleton so every service shares one pool
        self.database_manager = database_manager or DatabaseManager()
        self._service_name = self.__class__.__name__

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a session whose statements commit together on clean exit.

        Example:
            async with self.get_session() as session:
                await session.execute(text("SELECT ... FOR UPDATE"), params)
                await session.execute(text("UPDATE ..."), params)
        """
        async with self.database_manager.get_session() as session:
            yield session

    async def _run(
        self, session: AsyncSession, sql_query: str, query_parameters: Optional[Dict[str, Any]]
    ) -> Result:
        return await session.execute(text(sql_query), query_parameters or {})

    async def execute_single_query(
        self,
        sql_query: str,
        query_parameters: Optional[Dict[str, Any]] = None,
        fetch_results: bool = True,
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Run one statement in its own transaction.

        Returns the rows as plain dicts (an empty list when nothing matched),
        or None when ``fetch_results`` is False.
        """
        try:
            async with self.get_session() as session:
                result = await self._run(session, sql_query, query_parameters)
                if not fetch_results:
                    return None
                return [dict(row) for row in result.mappings().all()]
        except Exception as error:
            logger.error(f"{self._service_name}: query failed: {error}")
            raise

    async def execute_row_count(
        self, sql_query: str, query_parameters: Optional[Dict[str, Any]] = None
    ) -> int:
        """Run an UPDATE or DELETE and return how many rows it touched."""
        try:
            async with self.get_session() as session:
                result = await self._run(session, sql_query, query_parameters)
                return result.rowcount or 0
        except Exception as error:
            logger.error(f"{self._service_name}: statement failed: {error}")
            raise

    def validate_uuid(self, uuid_value: UUID, parameter_name: str = "UUID") -> None:
        if not isinstance(uuid_value, UUID):
            raise ValueError(f"{parameter_name} must be a UUID, got {uuid_value!r}")

    def build_dynamic_update_query(
        self,
        table_name: str,
        update_fields: Dict[str, Any],
        where_clause: str,
        where_parameters: Dict[str, Any],
    ) -> Tuple[str, Dict[str, Any]]:
        """
        Build ``UPDATE ... RETURNING *`` touching only ``update_fields``.

        Column names are interpolated into the statement, so callers must
        check them against an allowlist first. Values are always bound.
        ``updated_at`` is bumped on every call.
        """
        if not update_fields:
            raise ValueError("update_fields cannot be empty")

        assignments = ["updated_at = CURRENT_TIMESTAMP"]
        parameters = dict(where_parameters)
        for column, value in update_fields.items():
            assignments.append(f"{column} = :set_{column}")
            parameters[f"set_{column}"] = value

        sql_query = (
            f"UPDATE {table_name} SET {', '.join(assignments)} "
            f"WHERE {where_clause} RETURNING *"
        )
        return sql_query, parameters

    def log_operation(
        self,
        operation_type: str,
        entity_identifier: Any,
        success: bool = True,
        additional_context: Optional[str] = None,
    ) -> None:
        """Log a write against the store, e.g. ``CREATE`` or ``REVOKE_ALL``."""
        outcome = "succeeded" if success else "failed"
        message = f"{self._service_name}: {operation_type} {outcome} for {entity_identifier}"
        if additional_context:
            message += f" ({additional_context})"

        if success:
            logger.info(message)
        else:
            logger.error(message)
