"""
Ledger Exceptions

Storage failures stay in the StorageError family (services.storage).
These cover what the ledger itself refuses to do.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from billbook.models import BatchOutcome, ValidationResult


class InvariantKind(str, Enum):
    """Why a ledger transaction was rolled back."""
    ACCOUNT_MISSING = "account_missing"
    SNAPSHOT_HISTORY_MISSING = "snapshot_history_missing"
    ROWS_AFFECTED_MISMATCH = "rows_affected_mismatch"
    INSERT_ID_MISSING = "insert_id_missing"


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class BillValidationError(LedgerError):
    """The bill failed its preconditions. Nothing was written."""

    def __init__(self, result: "ValidationResult", summary: str):
        self.result = result
        self.summary = summary
        super().__init__(summary)


class LedgerInvariantError(LedgerError):
    """A write did not do what the chain requires. The transaction is rolled back."""

    def __init__(self, kind: InvariantKind, message: str, entity_id: Optional[str] = None):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.value}: {message}")


class BatchReconciliationError(LedgerError):
    """
    A batch insert was rolled back.

    `outcome` still says which accounts failed and why.
    """

    def __init__(self, message: str, outcome: "BatchOutcome"):
        self.outcome = outcome
        super().__init__(message)


def expect_rows(actual: int, expected: int, what: str, entity_id: Optional[str] = None) -> None:
    """Raise ROWS_AFFECTED_MISMATCH unless a write touched exactly `expected` rows."""
    if actual != expected:
        raise LedgerInvariantError(
            InvariantKind.ROWS_AFFECTED_MISMATCH,
            f"{what} affected {actual} rows, expected {expected}",
            entity_id=entity_id,
        )
