"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability of balance changes
2. Debugging capability when a chain repair is rolled back
3. A visible record of tags and participants that could not be linked

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the ledger if logging fails)
- Supports correlation IDs to trace related events
- Is never called while a ledger transaction is open
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from billbook.models.audit import AuditEvent, AuditEventBuilder
from billbook.models.results import BatchOutcome, InsertOutcome, PartialFailure, ReversalOutcome
from billbook.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The AuditLog table (for persistence), when storage is given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("billbook.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_created(
        self,
        account_id: int,
        name: str,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.account_created(
            account_id=account_id,
            name=name,
            opening_balance=opening_balance,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_bill_inserted(
        self,
        outcome: InsertOutcome,
        signed_delta: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log a committed bill, then one warning per skipped tag or participant."""
        event = AuditEventBuilder.bill_inserted(
            bill_id=outcome.bill_id,
            account_id=outcome.account_id,
            signed_delta=signed_delta,
            repaired_snapshots=outcome.repaired_snapshots,
            correlation_id=correlation_id,
        )
        await self.log(event)
        for failure in outcome.partial_failures:
            await self.log_relation_link_failed(outcome.bill_id, failure, correlation_id)

    async def log_relation_link_failed(
        self,
        bill_id: UUID,
        failure: PartialFailure,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.relation_link_failed(
            bill_id=bill_id,
            kind=failure.kind.value,
            item_id=failure.item_id,
            reason=failure.reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_bill_reversed(
        self,
        outcome: ReversalOutcome,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.bill_reversed(
            bill_id=outcome.bill_id,
            removed_snapshots=len(outcome.removed_snapshot_ids),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_batch_reconciled(
        self,
        outcome: BatchOutcome,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.batch_reconciled(
            bill_count=outcome.bill_count,
            account_count=len(outcome.accounts),
            updates_applied=sum(account.updates_applied for account in outcome.accounts),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_batch_failed(
        self,
        outcome: BatchOutcome,
        correlation_id: UUID,
    ) -> None:
        """Log a rolled back batch with the per-account failures."""
        failures = [
            {"account_id": account.account_id, "error": account.error}
            for account in outcome.accounts
            if not account.succeeded
        ]
        event = AuditEventBuilder.batch_reconciliation_failed(
            bill_count=outcome.bill_count,
            failure_count=len(failures),
            failures=failures,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        bill_id: UUID,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.validation_failed(
            bill_id=bill_id,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_invariant_violation(
        self,
        kind: str,
        message: str,
        entity_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.invariant_violation(
            kind=kind,
            message=message,
            entity_id=entity_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_retry(
        self,
        attempt: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.storage_retry(
            attempt=attempt,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a ledger operation (e.g., inserting one bill)
    and pass it through everything that operation logs.
    """
    return uuid4()
