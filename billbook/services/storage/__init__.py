"""
Storage Services Package

Provides the abstract storage interface and its SQLite implementation.
The ledger only depends on the interface; SQLite is swappable.
"""

from billbook.services.storage.interface import (
    AuditStorageInterface,
    BatchResult,
    ConstraintError,
    ExecuteResult,
    NotFoundError,
    RowDecodingError,
    Statement,
    StorageBusyError,
    StorageClient,
    StorageError,
    StorageTransaction,
)
from billbook.services.storage.rows import decode_row, decode_rows
from billbook.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteStorageClient,
    build_engine,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "StorageClient",
    "StorageTransaction",
    "BatchResult",
    "ExecuteResult",
    "Statement",
    # Exceptions
    "ConstraintError",
    "NotFoundError",
    "RowDecodingError",
    "StorageBusyError",
    "StorageError",
    # Row decoding
    "decode_row",
    "decode_rows",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteStorageClient",
    "build_engine",
]
