"""
Outcome Models

What the orchestrator flows hand back to the caller.

DESIGN DECISION: Secondary failures (a tag or participant that could not be
linked) never disappear. They are collected as PartialFailure entries so the
caller can show them, retry them, or ignore them knowingly.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PartialFailureKind(str, Enum):
    TAG = "tag"
    PARTICIPANT = "participant"


class PartialFailure(BaseModel):
    """One best-effort item that was skipped."""

    kind: PartialFailureKind
    item_id: str = Field(..., description="Tag id or participant id")
    reason: str


class InsertOutcome(BaseModel):
    """Result of inserting a single bill."""

    bill_id: UUID
    snapshot_id: int
    account_id: int
    account_balance: Decimal = Field(
        ...,
        description="Cached balance of the owning account after commit",
    )
    repaired_snapshots: int = Field(
        default=0,
        ge=0,
        description="Later snapshots shifted on the owning account",
    )
    participant_snapshot_ids: list[int] = Field(default_factory=list)
    partial_failures: list[PartialFailure] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.partial_failures


class ReversalOutcome(BaseModel):
    """Result of reversing (deleting) a bill."""

    bill_id: UUID
    removed_snapshot_ids: list[int] = Field(default_factory=list)
    repaired_snapshots: int = 0
    account_balances: dict[int, Decimal] = Field(default_factory=dict)


class AccountReconciliation(BaseModel):
    """Per-account result of a batch reconciliation."""

    account_id: int
    net_delta: Decimal
    earliest: datetime
    snapshots_walked: int = 0
    updates_queued: int = 0
    updates_applied: int = 0
    final_balance: Optional[Decimal] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.updates_applied == self.updates_queued


class BatchOutcome(BaseModel):
    """Result of a bulk insert. One entry per affected account."""

    bill_count: int = 0
    rows_inserted: int = 0
    accounts: list[AccountReconciliation] = Field(default_factory=list)
    committed: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for account in self.accounts if account.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.accounts) - self.success_count

    def for_account(self, account_id: int) -> Optional[AccountReconciliation]:
        for account in self.accounts:
            if account.account_id == account_id:
                return account
        return None


class ChainBreak(BaseModel):
    """Two adjacent snapshots whose balances do not connect."""

    previous_id: int
    next_id: int
    expected_before: Decimal
    actual_before: Decimal


class ChainReport(BaseModel):
    """Consistency report for one account's snapshot chain."""

    account_id: int
    snapshot_count: int
    anchor_ok: bool
    breaks: list[ChainBreak] = Field(default_factory=list)
    cached_balance: Decimal
    chain_balance: Optional[Decimal] = None

    @property
    def is_consistent(self) -> bool:
        return (
            self.anchor_ok
            and not self.breaks
            and self.chain_balance is not None
            and self.cached_balance == self.chain_balance
        )
