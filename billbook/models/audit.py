"""
Audit Models for billbook

Every ledger mutation is logged for audit purposes.
This provides:
1. Traceability of every balance change
2. Debugging information when a chain repair goes wrong
3. A record of partial failures the user may want to retry

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"

    # Single bill flow
    BILL_INSERTED = "bill_inserted"
    BILL_REVERSED = "bill_reversed"
    RELATION_LINK_FAILED = "relation_link_failed"

    # Batch flow
    BATCH_RECONCILED = "batch_reconciled"
    BATCH_RECONCILIATION_FAILED = "batch_reconciliation_failed"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    INVARIANT_VIOLATION = "invariant_violation"
    STORAGE_RETRY = "storage_retry"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'bill', 'account', 'batch')"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_row(self) -> dict:
        """
        Convert to the parameter mapping for the AuditLog table.

        Decimals in `details` are written as strings.
        """
        return {
            "eventId": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "eventType": self.event_type.value,
            "severity": self.severity.value,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "correlationId": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": json.dumps(self.details, default=str) if self.details else None,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.bill_inserted(bill_id, account_id, ...)
        event = AuditEventBuilder.invariant_violation(kind, message)
    """

    @staticmethod
    def account_created(
        account_id: int,
        name: str,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=str(account_id),
            correlation_id=correlation_id,
            description=f"Account opened: {name}",
            details={"opening_balance": str(opening_balance)},
        )

    @staticmethod
    def bill_inserted(
        bill_id: UUID,
        account_id: int,
        signed_delta: Decimal,
        repaired_snapshots: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_INSERTED,
            entity_type="bill",
            entity_id=str(bill_id),
            correlation_id=correlation_id,
            description=f"Bill inserted on account {account_id}: {signed_delta}",
            details={
                "account_id": account_id,
                "signed_delta": str(signed_delta),
                "repaired_snapshots": repaired_snapshots,
            },
        )

    @staticmethod
    def bill_reversed(
        bill_id: UUID,
        removed_snapshots: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILL_REVERSED,
            entity_type="bill",
            entity_id=str(bill_id),
            correlation_id=correlation_id,
            description=f"Bill reversed, {removed_snapshots} snapshots removed",
            details={"removed_snapshots": removed_snapshots},
        )

    @staticmethod
    def relation_link_failed(
        bill_id: UUID,
        kind: str,
        item_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RELATION_LINK_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="bill",
            entity_id=str(bill_id),
            correlation_id=correlation_id,
            description=f"Could not link {kind} {item_id}",
            error_message=reason,
            details={"kind": kind, "item_id": item_id},
        )

    @staticmethod
    def batch_reconciled(
        bill_count: int,
        account_count: int,
        updates_applied: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_RECONCILED,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Batch of {bill_count} bills reconciled across {account_count} accounts",
            details={
                "bill_count": bill_count,
                "account_count": account_count,
                "updates_applied": updates_applied,
            },
        )

    @staticmethod
    def batch_reconciliation_failed(
        bill_count: int,
        failure_count: int,
        failures: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_RECONCILIATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="batch",
            correlation_id=correlation_id,
            description=f"Batch of {bill_count} bills rolled back, {failure_count} accounts failed",
            details={"failures": failures},
        )

    @staticmethod
    def validation_failed(
        bill_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="bill",
            entity_id=str(bill_id),
            correlation_id=correlation_id,
            description=f"Bill rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def invariant_violation(
        kind: str,
        message: str,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVARIANT_VIOLATION,
            severity=AuditSeverity.ERROR,
            entity_type="bill",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Transaction rolled back: {kind}",
            error_code=kind,
            error_message=message,
        )

    @staticmethod
    def storage_retry(
        attempt: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_RETRY,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Storage busy, retrying (attempt {attempt})",
            error_message=error_message,
            details={"attempt": attempt},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
