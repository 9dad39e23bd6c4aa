"""Tests for batch insertion and per-account reconciliation."""

import random
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from billbook.ledger import (
    BatchReconciliationError,
    BillValidationError,
    InvariantKind,
    LedgerInvariantError,
    chain,
)
from billbook.models import BillPeople, BillType


def chain_rows(snapshots):
    return [(s.date, s.balance_before, s.balance_after) for s in snapshots]


async def open_books(ledger):
    """Two accounts and one category of each type."""
    expense = await ledger.account_flow.create_category("Groceries", BillType.EXPENSE)
    income = await ledger.account_flow.create_category("Salary", BillType.INCOME)
    wallet = await ledger.account_flow.create_account("Wallet", opening_balance="100.00")
    bank = await ledger.account_flow.create_account("Bank", opening_balance="1000.00")
    return expense, income, wallet, bank


def sample_bills(make_bill, expense, income, wallet, bank):
    return [
        make_bill(wallet.id, expense.id, "12.40", datetime(2024, 4, 3, 8)),
        make_bill(bank.id, income.id, "250", datetime(2024, 4, 1, 12), bill_type=BillType.INCOME),
        make_bill(wallet.id, expense.id, "7.35", datetime(2024, 4, 1, 18), promotion="0.35"),
        make_bill(bank.id, expense.id, "99.99", datetime(2024, 4, 2, 9)),
        make_bill(wallet.id, income.id, "40", datetime(2024, 4, 2, 20), bill_type=BillType.INCOME),
        make_bill(
            wallet.id, expense.id, "60", datetime(2024, 4, 4, 13),
            people=[BillPeople(name="Ana", money=Decimal("30"), time=datetime(2024, 4, 5),
                               status=True, account_id=bank.id)],
        ),
    ]


class TestBatchEquivalence:
    """A batch must end where the same bills inserted one by one end."""

    async def test_batch_matches_single_inserts(self, make_ledger, make_bill):
        """Test chains and balances match single inserts in shuffled order."""
        single = await make_ledger()
        batch = await make_ledger()
        expense, income, wallet, bank = await open_books(single)
        await open_books(batch)
        bills = sample_bills(make_bill, expense, income, wallet, bank)

        shuffled = list(bills)
        random.Random(7).shuffle(shuffled)
        for bill in shuffled:
            await single.bill_flow.insert_bill(bill)
        outcome = await batch.batch_flow.insert_bills(bills)

        assert outcome.committed
        assert outcome.failure_count == 0
        for account_id in (wallet.id, bank.id):
            assert chain_rows(await batch.queries.list_snapshots(account_id)) == chain_rows(
                await single.queries.list_snapshots(account_id)
            )
            single_account = await single.queries.get_account(account_id)
            batch_account = await batch.queries.get_account(account_id)
            assert batch_account.money == single_account.money
            assert (await batch.queries.verify_account(account_id)).is_consistent

    async def test_equal_timestamps_chain_in_insertion_order(self, make_ledger, make_bill):
        """Test bills sharing a moment chain in insertion order; only the final balance is order-free."""
        single = await make_ledger()
        batch = await make_ledger()
        expense, income, wallet, _ = await open_books(single)
        await open_books(batch)
        moment = datetime(2024, 4, 1, 12)
        spend = make_bill(wallet.id, expense.id, "10", moment)
        earn = make_bill(wallet.id, income.id, "5", moment, bill_type=BillType.INCOME)

        for bill in (spend, earn):
            await single.bill_flow.insert_bill(bill)
        await batch.batch_flow.insert_bills([earn, spend])

        assert chain_rows(await single.queries.list_snapshots(wallet.id))[1:] == [
            (moment, Decimal("100.00"), Decimal("90.00")),
            (moment, Decimal("90.00"), Decimal("95.00")),
        ]
        assert chain_rows(await batch.queries.list_snapshots(wallet.id))[1:] == [
            (moment, Decimal("100.00"), Decimal("105.00")),
            (moment, Decimal("105.00"), Decimal("95.00")),
        ]
        assert (await single.queries.get_account(wallet.id)).money == Decimal("95.00")
        assert (await batch.queries.get_account(wallet.id)).money == Decimal("95.00")

    async def test_batch_after_existing_history(self, ledger, wallet, expense_category, make_bill):
        """Test a batch threads into snapshots that are already stored."""
        await ledger.bill_flow.insert_bill(
            make_bill(wallet.id, expense_category.id, "10", datetime(2024, 6, 10))
        )
        outcome = await ledger.batch_flow.insert_bills([
            make_bill(wallet.id, expense_category.id, "5", datetime(2024, 6, 1)),
            make_bill(wallet.id, expense_category.id, "1", datetime(2024, 6, 20)),
        ])

        reconciliation = outcome.for_account(wallet.id)
        assert reconciliation.net_delta == Decimal("-6.00")
        assert reconciliation.earliest == datetime(2024, 6, 1)
        assert reconciliation.snapshots_walked == 3
        assert reconciliation.updates_queued == 3
        assert reconciliation.updates_applied == 3
        assert reconciliation.final_balance == Decimal("84.00")
        assert chain_rows(await ledger.queries.list_snapshots(wallet.id))[1:] == [
            (datetime(2024, 6, 1), Decimal("100.00"), Decimal("95.00")),
            (datetime(2024, 6, 10), Decimal("95.00"), Decimal("85.00")),
            (datetime(2024, 6, 20), Decimal("85.00"), Decimal("84.00")),
        ]

    async def test_outcome_counts(self, ledger, wallet, expense_category, make_bill):
        """Test the outcome counts bills, rows and accounts."""
        tag = await ledger.account_flow.create_tag("trip")
        bills = [
            make_bill(wallet.id, expense_category.id, "5", datetime(2024, 6, 1), tag_ids=[tag.id]),
            make_bill(wallet.id, expense_category.id, "1", datetime(2024, 6, 2)),
        ]
        outcome = await ledger.batch_flow.insert_bills(bills)

        assert outcome.bill_count == 2
        # two bills, two snapshots, one tag link
        assert outcome.rows_inserted == 5
        assert outcome.success_count == 1
        stored = await ledger.queries.get_bill(bills[0].id)
        assert stored.tag_ids == [tag.id]

    async def test_empty_batch(self, ledger):
        """Test an empty batch commits nothing and succeeds."""
        outcome = await ledger.batch_flow.insert_bills([])
        assert outcome.committed
        assert outcome.accounts == []


class TestBatchFailures:
    """A failed batch leaves storage untouched."""

    async def test_invalid_bill_rejects_batch(self, ledger, wallet, expense_category, make_bill):
        """Test one invalid bill stops the whole batch before storage."""
        with pytest.raises(BillValidationError):
            await ledger.batch_flow.insert_bills([
                make_bill(wallet.id, expense_category.id, "5", datetime(2024, 6, 1)),
                make_bill(wallet.id, None, "5", datetime(2024, 6, 2)),
            ])
        assert len(await ledger.queries.list_snapshots(wallet.id)) == 1

    async def test_dangling_reference_rolls_back(self, ledger, wallet, expense_category, make_bill):
        """Test a constraint failure in the bulk insert rolls everything back."""
        good = make_bill(wallet.id, expense_category.id, "5", datetime(2024, 6, 1))
        bad = make_bill(wallet.id, expense_category.id, "5", datetime(2024, 6, 2), tag_ids=[999])

        with pytest.raises(BatchReconciliationError) as exc_info:
            await ledger.batch_flow.insert_bills([good, bad])

        assert not exc_info.value.outcome.committed
        assert len(await ledger.queries.list_snapshots(wallet.id)) == 1
        assert (await ledger.queries.get_account(wallet.id)).money == Decimal("100.00")

    async def test_failed_account_rolls_back_all(self, make_ledger, make_bill, monkeypatch):
        """Test one account without history fails the batch and names the account."""
        ledger = await make_ledger()
        expense, income, wallet, bank = await open_books(ledger)
        real_plan_repair = chain.plan_repair

        async def plan_repair(tx, account_id, since):
            if account_id == bank.id:
                raise LedgerInvariantError(
                    InvariantKind.SNAPSHOT_HISTORY_MISSING, "no anchor", entity_id=str(account_id)
                )
            return await real_plan_repair(tx, account_id, since)

        monkeypatch.setattr(chain, "plan_repair", plan_repair)

        with pytest.raises(BatchReconciliationError) as exc_info:
            await ledger.batch_flow.insert_bills(sample_bills(make_bill, expense, income, wallet, bank))

        outcome = exc_info.value.outcome
        failed = outcome.for_account(bank.id)
        assert failed.error.startswith("snapshot_history_missing")
        assert outcome.for_account(wallet.id).error is None
        for account in (wallet, bank):
            assert len(await ledger.queries.list_snapshots(account.id)) == 1
            assert (await ledger.queries.get_account(account.id)).money == account.money

    async def test_failed_batch_is_audited(self, ledger, wallet, expense_category, make_bill):
        """Test a rolled back batch leaves an audit record."""
        correlation_id = uuid4()
        with pytest.raises(BatchReconciliationError):
            await ledger.batch_flow.insert_bills(
                [make_bill(wallet.id, expense_category.id, "5", datetime(2024, 6, 2), tag_ids=[999])],
                correlation_id=correlation_id,
            )

        result = await ledger.storage.execute(
            "SELECT eventType FROM AuditLog WHERE correlationId = :id", {"id": str(correlation_id)}
        )
        assert [row["eventType"] for row in result.rows] == ["batch_reconciliation_failed"]
