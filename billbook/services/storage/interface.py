"""
Abstract Storage Interface

DESIGN DECISION: The ledger talks to a relational store through a very
small surface: run one parameterized statement, run a list of them, and
group work into a transaction. This allows us to:
1. Keep SQLite (or any other engine) out of the ledger logic
2. Count affected rows on every write and fail loudly on mismatches
3. Use an in-memory database for testing

The interface is intentionally simple - we're not building a full ORM.
Rows come back as plain mappings and are decoded into pydantic models at
the boundary (see rows.py).
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from billbook.models.audit import AuditEvent

# A parameterized statement: SQL text with :named placeholders plus its values.
Statement = tuple[str, dict[str, Any]]


class ExecuteResult(BaseModel):
    """What a single statement did."""

    rows_affected: int = 0
    insert_id: Optional[int] = None
    rows: list[dict[str, Any]] = Field(default_factory=list)

    def first(self) -> Optional[dict[str, Any]]:
        return self.rows[0] if self.rows else None


class BatchResult(BaseModel):
    """What a list of statements did, one count per statement."""

    rows_affected: int = 0
    counts: list[int] = Field(default_factory=list)


class StorageTransaction(ABC):
    """
    Handle for work running inside one transaction.

    Everything executed through it commits or rolls back together.
    """

    @abstractmethod
    async def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
    ) -> ExecuteResult:
        """
        Run one statement.

        Raises:
            StorageBusyError: If the store is locked by another writer
            ConstraintError: If a constraint rejected the statement
            StorageError: For any other failure
        """
        pass

    @abstractmethod
    async def execute_batch(self, statements: list[Statement]) -> BatchResult:
        """Run statements in order, stopping at the first failure."""
        pass

    @abstractmethod
    def savepoint(self, name: str) -> AbstractAsyncContextManager[None]:
        """
        Nested scope inside the transaction.

        If the block raises, only the work done inside it is undone and the
        exception propagates. The outer transaction stays usable.
        """
        pass


class StorageClient(ABC):
    """
    Abstract interface for the ledger's relational store.

    Implementations serialize transactions: at most one is open at a time.
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StorageTransaction]:
        """
        Open a transaction.

        Commits when the block exits normally, rolls back when it raises.
        """
        pass

    @abstractmethod
    async def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
    ) -> ExecuteResult:
        """Run one statement in its own transaction."""
        pass

    @abstractmethod
    async def execute_batch(self, statements: list[Statement]) -> BatchResult:
        """Run statements in order in their own transaction."""
        pass

    @abstractmethod
    async def create_schema(self) -> None:
        """Create the ledger tables if they do not exist."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one bill insertion).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConstraintError(StorageError):
    """A foreign key, unique or not-null constraint rejected a write."""
    pass


class StorageBusyError(StorageError):
    """The store is locked by another writer. Safe to retry the unit of work."""
    pass


class RowDecodingError(StorageError):
    """A row could not be decoded into its model."""

    def __init__(self, model_name: str, missing_fields: list[str], detail: str = ""):
        self.model_name = model_name
        self.missing_fields = missing_fields
        message = f"Cannot decode {model_name} row"
        if missing_fields:
            message += f": missing {', '.join(missing_fields)}"
        elif detail:
            message += f": {detail}"
        super().__init__(message)
