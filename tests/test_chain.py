"""Tests for balance chain maintenance."""

from datetime import datetime
from decimal import Decimal

import pytest

from billbook.ledger import InvariantKind, LedgerInvariantError, chain, repository
from billbook.models import ANCHOR_DATE, OrderOperationRecord


def snapshot(snapshot_id: int, before: str, after: str, day: int = 1) -> OrderOperationRecord:
    return OrderOperationRecord(
        id=snapshot_id,
        account_id=1,
        date=datetime(2024, 1, day),
        balance_before=Decimal(before),
        balance_after=Decimal(after),
    )


class TestShift:
    """Tests for shifting a run of snapshots."""

    def test_shift_moves_both_balances(self):
        """Test every snapshot moves by the same delta."""
        updates = chain.shift([snapshot(2, "70", "50"), snapshot(3, "50", "60")], Decimal("20"))
        assert [(u.snapshot_id, u.balance_before, u.balance_after) for u in updates] == [
            (2, Decimal("90.00"), Decimal("70.00")),
            (3, Decimal("70.00"), Decimal("80.00")),
        ]

    def test_shift_nothing(self):
        """Test an empty run gives no updates."""
        assert chain.shift([], Decimal("5")) == []


class TestReplay:
    """Tests for replaying a run from a seed."""

    def test_replay_threads_deltas(self):
        """Test bare deltas are threaded onto the seed."""
        run = [snapshot(5, "0", "-30", day=2), snapshot(6, "0", "20", day=3)]
        updates, final = chain.replay(Decimal("100"), run)
        assert [(u.balance_before, u.balance_after) for u in updates] == [
            (Decimal("100.00"), Decimal("70.00")),
            (Decimal("70.00"), Decimal("90.00")),
        ]
        assert final == Decimal("90.00")

    def test_replay_skips_unchanged(self):
        """Test snapshots already in place produce no update."""
        run = [snapshot(5, "100", "70", day=2), snapshot(6, "0", "20", day=3)]
        updates, final = chain.replay(Decimal("100"), run)
        assert [u.snapshot_id for u in updates] == [6]
        assert final == Decimal("90.00")

    def test_replay_empty_run(self):
        """Test replaying nothing returns the seed."""
        updates, final = chain.replay(Decimal("12.34"), [])
        assert updates == []
        assert final == Decimal("12.34")


class TestFindBreaks:
    """Tests for chain consistency checks."""

    def test_connected_chain(self):
        """Test a connected chain has no breaks."""
        run = [snapshot(1, "0", "100"), snapshot(2, "100", "70"), snapshot(3, "70", "90")]
        assert chain.find_breaks(run) == []
        assert chain.chain_balance(run) == Decimal("90.00")

    def test_break_reported(self):
        """Test a gap is reported with both balances."""
        run = [snapshot(1, "0", "100"), snapshot(2, "95", "70")]
        breaks = chain.find_breaks(run)
        assert len(breaks) == 1
        assert breaks[0].previous_id == 1
        assert breaks[0].next_id == 2
        assert breaks[0].expected_before == Decimal("100.00")
        assert breaks[0].actual_before == Decimal("95.00")

    def test_empty_chain_has_no_balance(self):
        """Test chain_balance of nothing is None."""
        assert chain.chain_balance([]) is None


class TestStoredChain:
    """Tests for the helpers that work on stored snapshots."""

    async def test_shift_suffix_respects_same_date_ids(self, storage, wallet):
        """Test only snapshots after the (date, id) position move."""
        when = datetime(2024, 3, 1, 12)
        async with storage.transaction() as tx:
            first = await repository.insert_snapshot(tx, OrderOperationRecord(
                account_id=wallet.id, date=when,
                balance_before=Decimal("100"), balance_after=Decimal("90"),
            ))
            second = await repository.insert_snapshot(tx, OrderOperationRecord(
                account_id=wallet.id, date=when,
                balance_before=Decimal("90"), balance_after=Decimal("80"),
            ))
            repaired = await chain.shift_suffix(tx, wallet.id, (when, first), Decimal("5"))
            moved = await repository.get_snapshot(tx, second)
            kept = await repository.get_snapshot(tx, first)

        assert repaired == 1
        assert (moved.balance_before, moved.balance_after) == (Decimal("95.00"), Decimal("85.00"))
        assert (kept.balance_before, kept.balance_after) == (Decimal("100.00"), Decimal("90.00"))

    async def test_plan_repair_seeds_from_anchor(self, storage, wallet):
        """Test a repair from a date seeds from the last snapshot before it."""
        async with storage.transaction() as tx:
            await repository.insert_snapshot(tx, OrderOperationRecord(
                account_id=wallet.id, date=datetime(2024, 1, 2),
                balance_before=Decimal("0"), balance_after=Decimal("-30"),
            ))
            repair = await chain.plan_repair(tx, wallet.id, datetime(2024, 1, 1))

        assert repair.seed == Decimal("100.00")
        assert repair.walked == 1
        assert repair.final_balance == Decimal("70.00")
        assert len(repair.updates) == 1

    async def test_plan_repair_without_history(self, storage, wallet):
        """Test a repair from before the anchor fails."""
        async with storage.transaction() as tx:
            with pytest.raises(LedgerInvariantError) as exc_info:
                await chain.plan_repair(tx, wallet.id, ANCHOR_DATE)

        assert exc_info.value.kind == InvariantKind.SNAPSHOT_HISTORY_MISSING
