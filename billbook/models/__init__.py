"""
Data Models Package

This package contains all Pydantic models used by the billbook ledger.
Everything crossing the storage boundary is decoded into one of these.
"""

from billbook.models.ledger import (
    ANCHOR_DATE,
    Account,
    Amount,
    Bill,
    BillPeople,
    BillType,
    Category,
    OrderOperationRecord,
    SnapshotCause,
    Tag,
    ValidationIssue,
    ValidationResult,
)
from billbook.models.results import (
    AccountReconciliation,
    BatchOutcome,
    ChainBreak,
    ChainReport,
    InsertOutcome,
    PartialFailure,
    PartialFailureKind,
    ReversalOutcome,
)
from billbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "ANCHOR_DATE",
    "Account",
    "Amount",
    "Bill",
    "BillPeople",
    "BillType",
    "Category",
    "OrderOperationRecord",
    "SnapshotCause",
    "Tag",
    "ValidationIssue",
    "ValidationResult",
    # Outcomes
    "AccountReconciliation",
    "BatchOutcome",
    "ChainBreak",
    "ChainReport",
    "InsertOutcome",
    "PartialFailure",
    "PartialFailureKind",
    "ReversalOutcome",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
