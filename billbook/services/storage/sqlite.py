"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the ledger's store because:
1. The ledger is personal and local, one writer at a time
2. Real transactions and savepoints, which the chain repair relies on
3. No server to run, an in-memory database for tests

We use SQLAlchemy Core (engine, connections, text()) and not the ORM: the
ledger's queries are few and hand-written, and the models are pydantic.

TRADEOFFS:
- Transactions are serialized by an asyncio.Lock in this process. Another
  process holding the database surfaces as StorageBusyError, which the
  orchestrator retries.
- Statements run synchronously on the event loop thread. Each one is short.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from billbook.config import DatabaseSettings, get_settings
from billbook.models.audit import AuditEvent
from billbook.services.storage.interface import (
    AuditStorageInterface,
    BatchResult,
    ConstraintError,
    ExecuteResult,
    Statement,
    StorageBusyError,
    StorageClient,
    StorageError,
    StorageTransaction,
)
from billbook.services.storage.schema import SCHEMA_STATEMENTS

logger = structlog.get_logger(__name__)


def build_engine(settings: DatabaseSettings) -> Engine:
    """
    Create the SQLAlchemy engine for the ledger database.

    pysqlite's own transaction handling is switched off so that SQLAlchemy
    emits BEGIN itself; without that SAVEPOINT does not behave.
    """
    kwargs: dict[str, Any] = {
        "echo": settings.echo,
        "connect_args": {
            "check_same_thread": False,
            "timeout": settings.busy_timeout_seconds,
        },
    }
    if settings.is_memory:
        # One shared connection, or every checkout would see an empty database
        kwargs["poolclass"] = StaticPool

    engine = create_engine(settings.url, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def translate_error(error: SQLAlchemyError) -> StorageError:
    """Map a SQLAlchemy error onto the storage exception family."""
    if isinstance(error, OperationalError):
        message = str(error.orig).lower()
        if "locked" in message or "busy" in message:
            return StorageBusyError(str(error.orig))
    if isinstance(error, IntegrityError):
        return ConstraintError(str(error.orig))
    return StorageError(str(error))


class SQLiteTransaction(StorageTransaction):
    """One open transaction on a SQLAlchemy connection."""

    def __init__(self, connection: Connection):
        self._connection = connection

    async def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
    ) -> ExecuteResult:
        try:
            result = self._connection.execute(text(sql), params or {})
        except SQLAlchemyError as e:
            raise translate_error(e) from e

        if result.returns_rows:
            rows = [dict(row) for row in result.mappings()]
            return ExecuteResult(rows_affected=0, rows=rows)

        insert_id = None
        if sql.lstrip().upper().startswith("INSERT"):
            insert_id = result.lastrowid
        return ExecuteResult(rows_affected=result.rowcount, insert_id=insert_id)

    async def execute_batch(self, statements: list[Statement]) -> BatchResult:
        counts = []
        for sql, params in statements:
            result = await self.execute(sql, params)
            counts.append(result.rows_affected)
        return BatchResult(rows_affected=sum(counts), counts=counts)

    @asynccontextmanager
    async def savepoint(self, name: str) -> AsyncIterator[None]:
        try:
            nested = self._connection.begin_nested()
        except SQLAlchemyError as e:
            raise translate_error(e) from e
        try:
            yield
        except BaseException:
            nested.rollback()
            logger.debug("savepoint_rolled_back", savepoint=name)
            raise
        else:
            nested.commit()


class SQLiteStorageClient(StorageClient):
    """
    StorageClient backed by a SQLite database.

    Usage:
        client = SQLiteStorageClient()
        await client.create_schema()
        async with client.transaction() as tx:
            await tx.execute("SELECT * FROM Account WHERE id = :id", {"id": 1})
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None,
    ):
        self._settings = settings or get_settings().database
        self._engine = engine or build_engine(self._settings)
        self._write_lock = asyncio.Lock()

    @property
    def engine(self) -> Engine:
        return self._engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StorageTransaction]:
        async with self._write_lock:
            connection = self._engine.connect()
            try:
                try:
                    outer = connection.begin()
                except SQLAlchemyError as e:
                    raise translate_error(e) from e
                try:
                    yield SQLiteTransaction(connection)
                except BaseException:
                    outer.rollback()
                    raise
                try:
                    outer.commit()
                except SQLAlchemyError as e:
                    raise translate_error(e) from e
            finally:
                connection.close()

    async def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
    ) -> ExecuteResult:
        async with self.transaction() as tx:
            return await tx.execute(sql, params)

    async def execute_batch(self, statements: list[Statement]) -> BatchResult:
        async with self.transaction() as tx:
            return await tx.execute_batch(statements)

    async def create_schema(self) -> None:
        async with self.transaction() as tx:
            for statement in SCHEMA_STATEMENTS:
                await tx.execute(statement)
        logger.info("schema_ready", url=self._settings.url)

    async def close(self) -> None:
        self._engine.dispose()


INSERT_AUDIT_EVENT = """
    INSERT INTO AuditLog (
        eventId, timestamp, eventType, severity, entityType, entityId,
        correlationId, description, details, errorCode, errorMessage
    ) VALUES (
        :eventId, :timestamp, :eventType, :severity, :entityType, :entityId,
        :correlationId, :description, :details, :errorCode, :errorMessage
    )
"""


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: StorageClient):
        self._client = client

    def _row_to_event(self, row: dict[str, Any]) -> AuditEvent:
        """Convert an AuditLog row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(row["eventId"]),
            timestamp=row["timestamp"],
            event_type=row["eventType"],
            severity=row["severity"],
            entity_type=row["entityType"],
            entity_id=row["entityId"],
            correlation_id=UUID(row["correlationId"]) if row["correlationId"] else None,
            description=row["description"],
            details=json.loads(row["details"]) if row["details"] else {},
            error_code=row["errorCode"],
            error_message=row["errorMessage"],
        )

    @retry(
        retry=retry_if_exception_type(StorageBusyError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, max=1),
        reraise=True,
    )
    async def _insert(self, event: AuditEvent) -> None:
        await self._client.execute(INSERT_AUDIT_EVENT, event.to_row())

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await self._insert(event)
            return True
        except StorageError as e:
            # Audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_type=event.event_type.value)
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        result = await self._client.execute(
            "SELECT * FROM AuditLog WHERE correlationId = :correlationId ORDER BY id",
            {"correlationId": str(correlation_id)},
        )
        return [self._row_to_event(row) for row in result.rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        result = await self._client.execute(
            "SELECT * FROM AuditLog ORDER BY id DESC LIMIT :limit",
            {"limit": limit},
        )
        return [self._row_to_event(row) for row in result.rows]
