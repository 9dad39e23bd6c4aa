"""
Balance Query Engine

DESIGN DECISION: Reads are answered from stored rows only.
Balances are never estimated or recomputed on the fly: the cached account
balance and the snapshot chain are returned as they are, and verify_account
reports where they disagree instead of fixing anything.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from billbook.ledger import chain, repository
from billbook.models import ANCHOR_DATE, Account, Bill, ChainReport, OrderOperationRecord
from billbook.money import ZERO
from billbook.services.storage import StorageClient


class BalanceQueryExecutor:
    """
    Read-only queries over accounts, bills and the snapshot chain.

    GUARANTEES:
    - Only returns real data from storage
    - Never writes, not even to repair a broken chain
    """

    def __init__(self, storage: StorageClient):
        self._storage = storage

    async def get_account(self, account_id: int) -> Account:
        async with self._storage.transaction() as tx:
            return await repository.get_account(tx, account_id)

    async def list_accounts(self) -> list[Account]:
        async with self._storage.transaction() as tx:
            return await repository.list_accounts(tx)

    async def get_bill(self, bill_id: UUID) -> Bill:
        """Bill with its tag ids and participants."""
        async with self._storage.transaction() as tx:
            return await repository.get_bill(tx, bill_id)

    async def list_snapshots(self, account_id: int) -> list[OrderOperationRecord]:
        """The account's chain in (date, id) order, anchor first."""
        async with self._storage.transaction() as tx:
            return await repository.list_snapshots(tx, account_id)

    async def balance_at(self, account_id: int, when: datetime) -> Decimal:
        """
        Balance of the account right after everything dated at or before `when`.

        Before the anchor date there is no balance yet, so that is zero.
        """
        async with self._storage.transaction() as tx:
            snapshot = await repository.find_predecessor(tx, account_id, when)
        return snapshot.balance_after if snapshot else ZERO

    async def verify_account(self, account_id: int) -> ChainReport:
        """
        Check the account's chain.

        Checks:
        - The first snapshot is the anchor (init, epoch dated, starting at 0)
        - Adjacent snapshots connect
        - The cached balance equals the last snapshot's balance
        """
        async with self._storage.transaction() as tx:
            account = await repository.get_account(tx, account_id)
            snapshots = await repository.list_snapshots(tx, account_id)

        first = snapshots[0] if snapshots else None
        anchor_ok = (
            first is not None
            and first.is_init
            and first.date == ANCHOR_DATE
            and first.balance_before == ZERO
        )
        return ChainReport(
            account_id=account_id,
            snapshot_count=len(snapshots),
            anchor_ok=anchor_ok,
            breaks=chain.find_breaks(snapshots),
            cached_balance=account.money,
            chain_balance=chain.chain_balance(snapshots),
        )
