"""
Balance Chain Maintenance

Per account, snapshots in (date, id) order must connect:
each balance_before equals the previous balance_after.

Two ways of repairing the chain after a change:
- shift: add one delta to every snapshot after a position. Used when a
  single snapshot is inserted into or removed from the middle.
- replay: rebuild a run of snapshots from a seed balance, keeping each
  snapshot's own delta. Used by the batch flow, where new snapshots are
  written as bare deltas (before=0, after=delta) and then threaded in.

The pure functions here do the maths; the async helpers read and write
through the repository inside the caller's transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from billbook.ledger import repository
from billbook.ledger.errors import InvariantKind, LedgerInvariantError, expect_rows
from billbook.models import ChainBreak, OrderOperationRecord
from billbook.money import add
from billbook.services.storage import Statement, StorageTransaction


class SnapshotUpdate(BaseModel):
    """New balances for one stored snapshot."""

    snapshot_id: int
    balance_before: Decimal
    balance_after: Decimal

    def to_statement(self) -> Statement:
        return repository.update_snapshot_statement(
            self.snapshot_id, self.balance_before, self.balance_after
        )


class ChainRepair(BaseModel):
    """Planned replay of one account's chain from a point in time."""

    account_id: int
    anchor_id: int
    seed: Decimal
    walked: int = 0
    updates: list[SnapshotUpdate] = Field(default_factory=list)
    final_balance: Decimal


def shift(snapshots: Sequence[OrderOperationRecord], delta: Decimal) -> list[SnapshotUpdate]:
    """Move every snapshot's balances by `delta`."""
    return [
        SnapshotUpdate(
            snapshot_id=snapshot.id,
            balance_before=add(snapshot.balance_before, delta),
            balance_after=add(snapshot.balance_after, delta),
        )
        for snapshot in snapshots
    ]


def replay(
    seed: Decimal,
    snapshots: Sequence[OrderOperationRecord],
) -> tuple[list[SnapshotUpdate], Decimal]:
    """
    Thread `snapshots` onto `seed`, keeping each one's delta.

    Only snapshots whose balances actually change produce an update.

    Returns:
        (updates, balance after the last snapshot)
    """
    updates = []
    running = seed
    for snapshot in snapshots:
        balance_after = add(running, snapshot.delta)
        if snapshot.balance_before != running or snapshot.balance_after != balance_after:
            updates.append(SnapshotUpdate(
                snapshot_id=snapshot.id,
                balance_before=running,
                balance_after=balance_after,
            ))
        running = balance_after
    return updates, running


def find_breaks(snapshots: Sequence[OrderOperationRecord]) -> list[ChainBreak]:
    """Adjacent pairs (in the given order) whose balances do not connect."""
    breaks = []
    for previous, current in zip(snapshots, snapshots[1:]):
        if current.balance_before != previous.balance_after:
            breaks.append(ChainBreak(
                previous_id=previous.id,
                next_id=current.id,
                expected_before=previous.balance_after,
                actual_before=current.balance_before,
            ))
    return breaks


def chain_balance(snapshots: Sequence[OrderOperationRecord]) -> Optional[Decimal]:
    return snapshots[-1].balance_after if snapshots else None


async def shift_suffix(
    tx: StorageTransaction,
    account_id: int,
    position: tuple[datetime, int],
    delta: Decimal,
) -> int:
    """
    Add `delta` to every snapshot of the account after `position`.

    Returns the number of snapshots repaired.

    Raises:
        LedgerInvariantError: If the stored rows did not all update
    """
    later = await repository.snapshots_after(tx, account_id, position)
    if not later:
        return 0
    updates = shift(later, delta)
    result = await tx.execute_batch([update.to_statement() for update in updates])
    expect_rows(result.rows_affected, len(updates), "suffix repair", entity_id=str(account_id))
    return len(updates)


async def plan_repair(
    tx: StorageTransaction,
    account_id: int,
    since: datetime,
) -> ChainRepair:
    """
    Plan a replay of the account's chain from `since` onward.

    The seed is the last snapshot strictly before `since`; every account
    has its anchor at the epoch, so there always is one.

    Raises:
        LedgerInvariantError: If the account has no snapshot before `since`
    """
    anchor = await repository.find_anchor_before(tx, account_id, since)
    if anchor is None:
        raise LedgerInvariantError(
            InvariantKind.SNAPSHOT_HISTORY_MISSING,
            f"account {account_id} has no snapshot before {since.isoformat()}",
            entity_id=str(account_id),
        )
    walked = await repository.snapshots_since(tx, account_id, since)
    updates, final_balance = replay(anchor.balance_after, walked)
    return ChainRepair(
        account_id=account_id,
        anchor_id=anchor.id,
        seed=anchor.balance_after,
        walked=len(walked),
        updates=updates,
        final_balance=final_balance,
    )
