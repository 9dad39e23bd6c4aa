"""Services package."""

from billbook.services.storage import (
    AuditStorageInterface,
    ConstraintError,
    NotFoundError,
    RowDecodingError,
    SQLiteAuditStorage,
    SQLiteStorageClient,
    StorageBusyError,
    StorageClient,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConstraintError",
    "NotFoundError",
    "RowDecodingError",
    "SQLiteAuditStorage",
    "SQLiteStorageClient",
    "StorageBusyError",
    "StorageClient",
    "StorageError",
]
