"""
Ledger Core

Repository SQL, balance chain maintenance and the ledger's exceptions.
The flows that combine them live in billbook.orchestrator.
"""

from billbook.ledger.chain import (
    ChainRepair,
    SnapshotUpdate,
    find_breaks,
    plan_repair,
    replay,
    shift,
    shift_suffix,
)
from billbook.ledger.errors import (
    BatchReconciliationError,
    BillValidationError,
    InvariantKind,
    LedgerError,
    LedgerInvariantError,
    expect_rows,
)

__all__ = [
    "ChainRepair",
    "SnapshotUpdate",
    "find_breaks",
    "plan_repair",
    "replay",
    "shift",
    "shift_suffix",
    "BatchReconciliationError",
    "BillValidationError",
    "InvariantKind",
    "LedgerError",
    "LedgerInvariantError",
    "expect_rows",
]
