"""
Main Orchestrator for the billbook ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Account opening (account row → anchor snapshot → ledger link)
2. Bill insertion (validate → apply → repair chain → link tags and people)
3. Bill reversal (remove snapshots → repair chains → delete rows)
4. Batch insertion (bulk insert → per-account replay → one batch of updates)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing reaches storage before validation passes
- A balance change and its chain repair commit together or not at all
- Tags and participants are best-effort, each in its own savepoint, and
  every one that is skipped is reported back
- Every step is audited, after the transaction has closed

Transactions are serialized by the storage client. When the database is
held by someone else, the whole unit of work is retried with tenacity.
"""

from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence, TypeVar
from uuid import UUID

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from billbook.audit import AuditLogger, create_correlation_id
from billbook.config import LedgerSettings, Settings, get_settings
from billbook.ledger import chain, repository
from billbook.ledger.errors import (
    BatchReconciliationError,
    BillValidationError,
    InvariantKind,
    LedgerInvariantError,
    expect_rows,
)
from billbook.models import (
    ANCHOR_DATE,
    Account,
    AccountReconciliation,
    BatchOutcome,
    Bill,
    BillPeople,
    BillType,
    Category,
    InsertOutcome,
    OrderOperationRecord,
    PartialFailure,
    PartialFailureKind,
    ReversalOutcome,
    Tag,
    ValidationResult,
)
from billbook.money import ZERO, AmountLike, add, negate, quantize
from billbook.queries import BalanceQueryExecutor
from billbook.services.storage import (
    ConstraintError,
    NotFoundError,
    SQLiteAuditStorage,
    SQLiteStorageClient,
    Statement,
    StorageBusyError,
    StorageClient,
    StorageError,
    StorageTransaction,
)
from billbook.validation import BillValidator

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class LedgerFlow:
    """
    Shared plumbing of the ledger flows.

    Holds the storage client, the audit logger and the ledger settings, and
    runs units of work with the busy-store retry policy.
    """

    def __init__(
        self,
        storage: StorageClient,
        validator: Optional[BillValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._validator = validator or BillValidator(self._settings)
        self._audit_logger = audit_logger

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(StorageBusyError),
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(multiplier=0.05, max=self._settings.retry_max_wait_seconds),
            reraise=True,
        )

    async def _run(self, work: Callable[[], Awaitable[T]], correlation_id: UUID) -> T:
        """Run `work` (one transaction), retrying it while the store is busy."""
        last_error = ""
        async for attempt in self._retrying():
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logger.warning("unit_of_work_retry", attempt=number, error=last_error)
                    if self._audit_logger:
                        await self._audit_logger.log_storage_retry(
                            attempt=number,
                            error_message=last_error,
                            correlation_id=correlation_id,
                        )
                try:
                    result = await work()
                except StorageBusyError as e:
                    last_error = str(e)
                    raise
        return result

    async def _check(self, bill: Bill, correlation_id: UUID) -> ValidationResult:
        """Validate a bill, raising BillValidationError when it has errors."""
        result = self._validator.validate(bill)
        if not result.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    bill_id=bill.id,
                    issues=[issue.model_dump() for issue in result.issues],
                    correlation_id=correlation_id,
                )
            raise BillValidationError(result, self._validator.get_user_friendly_summary(result))
        return result

    async def _report_invariant(self, error: LedgerInvariantError, correlation_id: UUID) -> None:
        if self._audit_logger:
            await self._audit_logger.log_invariant_violation(
                kind=error.kind.value,
                message=str(error),
                entity_id=error.entity_id,
                correlation_id=correlation_id,
            )

    async def _report_storage_error(self, error: StorageError, correlation_id: UUID) -> None:
        """A missing row is the caller's mistake; anything else is a system error."""
        if self._audit_logger and not isinstance(error, NotFoundError):
            await self._audit_logger.log_error(
                error_type=type(error).__name__,
                error_message=str(error),
                correlation_id=correlation_id,
            )

    def _resolve_ledger(self, bill: Bill, ledger_id: Optional[int]) -> Optional[int]:
        if ledger_id is not None:
            return ledger_id
        if bill.ledger_id is not None:
            return bill.ledger_id
        return self._settings.default_ledger_id

    @staticmethod
    async def _load_account(tx: StorageTransaction, account_id: int) -> Account:
        try:
            return await repository.get_account(tx, account_id)
        except NotFoundError as e:
            raise LedgerInvariantError(
                InvariantKind.ACCOUNT_MISSING, str(e), entity_id=str(account_id)
            ) from e


class AccountFlow(LedgerFlow):
    """
    Opens accounts and creates the metadata bills point at.

    Every account is born with its anchor snapshot: dated 1970-01-01,
    balance 0 → opening balance. Every later snapshot chains from it.
    """

    async def create_account(
        self,
        name: str,
        opening_balance: AmountLike = ZERO,
        is_default: bool = False,
        ledger_id: Optional[int] = None,
        card: Optional[str] = None,
        remark: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Create an account with its anchor snapshot.

        If `is_default`, every other account loses its default flag.
        """
        correlation_id = correlation_id or create_correlation_id()
        account = Account(
            name=name,
            money=quantize(opening_balance),
            is_default=is_default,
            card=card,
            remark=remark,
        )
        if ledger_id is None:
            ledger_id = self._settings.default_ledger_id

        async def work() -> Account:
            async with self._storage.transaction() as tx:
                if account.is_default:
                    await repository.clear_default_accounts(tx)
                account_id = await repository.insert_account(tx, account)
                anchor_id = await repository.insert_snapshot(tx, OrderOperationRecord(
                    account_id=account_id,
                    date=ANCHOR_DATE,
                    balance_before=ZERO,
                    balance_after=account.money,
                    is_init=True,
                ))
                expect_rows(
                    await repository.set_account_anchor(tx, account_id, anchor_id),
                    1, "account anchor link", str(account_id),
                )
                if ledger_id is not None:
                    expect_rows(
                        await repository.link_account_ledger(tx, account_id, ledger_id),
                        1, "account ledger link", str(account_id),
                    )
            return account.model_copy(update={"id": account_id})

        created = await self._run(work, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_account_created(
                account_id=created.id,
                name=created.name,
                opening_balance=created.money,
                correlation_id=correlation_id,
            )
        return created

    async def create_category(
        self,
        name: str,
        bill_type: BillType,
        level: int = 0,
        parent_id: Optional[int] = None,
    ) -> Category:
        category = Category(name=name, type=bill_type, level=level, parent_id=parent_id)
        async with self._storage.transaction() as tx:
            category_id = await repository.insert_category(tx, category)
        return category.model_copy(update={"id": category_id})

    async def create_tag(self, name: str) -> Tag:
        tag = Tag(name=name)
        async with self._storage.transaction() as tx:
            tag_id = await repository.insert_tag(tx, tag)
        return tag.model_copy(update={"id": tag_id})

    async def create_ledger(self, name: str) -> int:
        async with self._storage.transaction() as tx:
            return await repository.insert_ledger(tx, name)


class BillInsertionFlow(LedgerFlow):
    """
    Inserts and reverses single bills.

    Flow of insert_bill, all inside one transaction:
    1. Account → money += signed delta (must hit exactly one row)
    2. Predecessor → latest snapshot of the account at or before bill.time
    3. Snapshot → predecessor.after → predecessor.after + delta
    4. Bill row, pointing at the snapshot (and the snapshot back at it)
    5. Chain repair → every later snapshot of the account shifts by delta
    6. Tags, each in a savepoint
    7. Participants, each in a savepoint; settled ones repeat 1-3 and 5
       on their own account

    Any failure in 1-5 rolls everything back. Failures in 6-7 skip that
    one item and are returned as partial failures.
    """

    async def insert_bill(
        self,
        bill: Bill,
        ledger_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InsertOutcome:
        """
        Insert one bill.

        Raises:
            BillValidationError: The bill failed validation, nothing written
            LedgerInvariantError: A write misbehaved, everything rolled back
            ConstraintError: A mandatory reference (category, ledger) does not exist
            StorageBusyError: Still busy after every retry
        """
        correlation_id = correlation_id or create_correlation_id()
        await self._check(bill, correlation_id)
        ledger_id = self._resolve_ledger(bill, ledger_id)

        try:
            outcome = await self._run(lambda: self._insert_once(bill, ledger_id), correlation_id)
        except LedgerInvariantError as e:
            await self._report_invariant(e, correlation_id)
            raise
        except StorageError as e:
            await self._report_storage_error(e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_bill_inserted(
                outcome=outcome,
                signed_delta=bill.signed_delta,
                correlation_id=correlation_id,
            )
        return outcome

    async def _insert_once(self, bill: Bill, ledger_id: Optional[int]) -> InsertOutcome:
        failures: list[PartialFailure] = []
        participant_snapshot_ids: list[int] = []

        async with self._storage.transaction() as tx:
            snapshot, _, repaired = await self._apply_delta(
                tx, bill.account_id, bill.signed_delta, bill.time
            )
            result = await tx.execute(*repository.insert_bill_statement(bill, snapshot.id, ledger_id))
            expect_rows(result.rows_affected, 1, "bill insert", str(bill.id))
            expect_rows(
                await repository.set_snapshot_bill(tx, snapshot.id, bill.id),
                1, "snapshot bill link", str(bill.id),
            )

            for tag_id in bill.tag_ids:
                try:
                    async with tx.savepoint(f"tag_{tag_id}"):
                        result = await tx.execute(*repository.tag_relation_statement(tag_id, bill.id))
                        expect_rows(result.rows_affected, 1, "tag link", str(bill.id))
                except (ConstraintError, LedgerInvariantError) as e:
                    failures.append(PartialFailure(
                        kind=PartialFailureKind.TAG,
                        item_id=str(tag_id),
                        reason=str(e),
                    ))

            for person in bill.people:
                try:
                    async with tx.savepoint(f"participant_{person.id.hex}"):
                        person_snapshot_id = await self._insert_participant(tx, bill, person)
                except (ConstraintError, LedgerInvariantError) as e:
                    failures.append(PartialFailure(
                        kind=PartialFailureKind.PARTICIPANT,
                        item_id=str(person.id),
                        reason=str(e),
                    ))
                else:
                    if person_snapshot_id is not None:
                        participant_snapshot_ids.append(person_snapshot_id)

            # Participants may share the owning account
            account = await self._load_account(tx, bill.account_id)

        return InsertOutcome(
            bill_id=bill.id,
            snapshot_id=snapshot.id,
            account_id=bill.account_id,
            account_balance=account.money,
            repaired_snapshots=repaired,
            participant_snapshot_ids=participant_snapshot_ids,
            partial_failures=failures,
        )

    async def _apply_delta(
        self,
        tx: StorageTransaction,
        account_id: int,
        delta: Decimal,
        when: datetime,
        bill_people_id: Optional[UUID] = None,
    ) -> tuple[OrderOperationRecord, Decimal, int]:
        """
        Move one account by `delta` at time `when`.

        Returns:
            (inserted snapshot, new cached balance, snapshots repaired)
        """
        account = await self._load_account(tx, account_id)
        balance = add(account.money, delta)
        expect_rows(
            await repository.update_account_money(tx, account_id, balance),
            1, "account balance update", str(account_id),
        )

        predecessor = await repository.find_predecessor(tx, account_id, when)
        if predecessor is None:
            raise LedgerInvariantError(
                InvariantKind.SNAPSHOT_HISTORY_MISSING,
                f"account {account_id} has no snapshot at or before {when.isoformat()}",
                entity_id=str(account_id),
            )

        snapshot = OrderOperationRecord(
            account_id=account_id,
            date=when,
            balance_before=predecessor.balance_after,
            balance_after=add(predecessor.balance_after, delta),
            bill_people_id=bill_people_id,
        )
        snapshot_id = await repository.insert_snapshot(tx, snapshot)
        snapshot = snapshot.model_copy(update={"id": snapshot_id})

        repaired = await chain.shift_suffix(tx, account_id, snapshot.position, delta)
        return snapshot, balance, repaired

    async def _insert_participant(
        self,
        tx: StorageTransaction,
        bill: Bill,
        person: BillPeople,
    ) -> Optional[int]:
        """Store one participant. A settled one also credits its account."""
        result = await tx.execute(*repository.insert_people_statement(person, None))
        expect_rows(result.rows_affected, 1, "participant insert", str(person.id))

        snapshot_id = None
        if person.status:
            if person.account_id is None:
                raise LedgerInvariantError(
                    InvariantKind.ACCOUNT_MISSING,
                    f"settled participant {person.name} has no account",
                    entity_id=str(person.id),
                )
            snapshot, _, _ = await self._apply_delta(
                tx, person.account_id, person.signed_delta, person.time,
                bill_people_id=person.id,
            )
            snapshot_id = snapshot.id
            expect_rows(
                await repository.set_people_snapshot(tx, person.id, snapshot_id),
                1, "participant snapshot link", str(person.id),
            )

        result = await tx.execute(*repository.people_relation_statement(person.id, bill.id))
        expect_rows(result.rows_affected, 1, "participant relation", str(person.id))
        return snapshot_id

    async def reverse_bill(
        self,
        bill_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ReversalOutcome:
        """
        Delete a bill and undo its balance effects.

        Each of its snapshots (the bill's and its settled participants') is
        removed, later snapshots shift back by its delta, and the cached
        balance of its account moves back too.

        Raises:
            NotFoundError: No such bill
            LedgerInvariantError: A write misbehaved, everything rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            outcome = await self._run(lambda: self._reverse_once(bill_id), correlation_id)
        except LedgerInvariantError as e:
            await self._report_invariant(e, correlation_id)
            raise
        except StorageError as e:
            await self._report_storage_error(e, correlation_id)
            raise

        if self._audit_logger:
            await self._audit_logger.log_bill_reversed(outcome=outcome, correlation_id=correlation_id)
        return outcome

    async def _reverse_once(self, bill_id: UUID) -> ReversalOutcome:
        outcome = ReversalOutcome(bill_id=bill_id)

        async with self._storage.transaction() as tx:
            bill = await repository.get_bill(tx, bill_id)
            snapshot_ids = [bill.snapshot_id] + [
                person.snapshot_id for person in bill.people if person.snapshot_id is not None
            ]

            for snapshot_id in snapshot_ids:
                snapshot = None
                if snapshot_id is not None:
                    snapshot = await repository.get_snapshot(tx, snapshot_id)
                if snapshot is None:
                    raise LedgerInvariantError(
                        InvariantKind.SNAPSHOT_HISTORY_MISSING,
                        f"snapshot {snapshot_id} of bill {bill_id} not found",
                        entity_id=str(bill_id),
                    )

                expect_rows(
                    await repository.delete_snapshot(tx, snapshot.id),
                    1, "snapshot delete", str(bill_id),
                )
                reverse = negate(snapshot.delta)
                outcome.repaired_snapshots += await chain.shift_suffix(
                    tx, snapshot.account_id, snapshot.position, reverse
                )

                account = await self._load_account(tx, snapshot.account_id)
                balance = add(account.money, reverse)
                expect_rows(
                    await repository.update_account_money(tx, snapshot.account_id, balance),
                    1, "account balance update", str(snapshot.account_id),
                )
                outcome.account_balances[snapshot.account_id] = balance
                outcome.removed_snapshot_ids.append(snapshot.id)

            await repository.delete_bill_rows(tx, bill)

        return outcome


class BatchReconciliationFlow(LedgerFlow):
    """
    Inserts many bills at once (imports, sync).

    Flow, all inside one transaction:
    1. Reserve snapshot ids above the current maximum, in list order
    2. Bulk insert bills, tags, participants and snapshots; new snapshots
       hold only their delta (before=0, after=delta)
    3. Per account: seed from the last snapshot before the earliest new
       date, replay every snapshot from that date, queue changed ones
    4. Queue each account's cached balance: current + net delta
    5. Run the queued updates as one batch and check every count

    Any failed account rolls back the whole batch; the raised
    BatchReconciliationError carries the per-account outcome.
    """

    async def insert_bills(
        self,
        bills: Sequence[Bill],
        ledger_id: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> BatchOutcome:
        """
        Insert bills in one transaction.

        Raises:
            BillValidationError: A bill failed validation, nothing written
            BatchReconciliationError: The batch was rolled back
        """
        correlation_id = correlation_id or create_correlation_id()
        for bill in bills:
            await self._check(bill, correlation_id)

        if not bills:
            return BatchOutcome(committed=True)

        try:
            outcome = await self._run(
                lambda: self._insert_batch_once(bills, ledger_id), correlation_id
            )
        except BatchReconciliationError as e:
            if self._audit_logger:
                await self._audit_logger.log_batch_failed(outcome=e.outcome, correlation_id=correlation_id)
            raise
        except StorageError as e:
            await self._report_storage_error(e, correlation_id)
            raise

        outcome.committed = True
        if self._audit_logger:
            await self._audit_logger.log_batch_reconciled(outcome=outcome, correlation_id=correlation_id)
        return outcome

    def _stage_rows(
        self,
        bills: Sequence[Bill],
        ledger_id: Optional[int],
        first_snapshot_id: int,
    ) -> tuple[list[Statement], dict[int, Decimal], dict[int, datetime]]:
        """
        Build the bulk insert.

        Returns:
            (statements, net delta per account, earliest new date per account)
        """
        statements: list[Statement] = []
        money_map: dict[int, Decimal] = {}
        order_map: dict[int, datetime] = {}
        next_id = first_snapshot_id

        def fold(account_id: int, delta: Decimal, when: datetime) -> None:
            money_map[account_id] = add(money_map.get(account_id, ZERO), delta)
            if account_id not in order_map or when < order_map[account_id]:
                order_map[account_id] = when

        for bill in bills:
            bill_snapshot_id = next_id
            next_id += 1
            statements.append(repository.insert_bill_statement(
                bill, bill_snapshot_id, self._resolve_ledger(bill, ledger_id)
            ))
            statements.append(repository.insert_snapshot_statement(OrderOperationRecord(
                id=bill_snapshot_id,
                account_id=bill.account_id,
                date=bill.time,
                balance_before=ZERO,
                balance_after=bill.signed_delta,
                bill_id=bill.id,
            )))
            fold(bill.account_id, bill.signed_delta, bill.time)

            for tag_id in bill.tag_ids:
                statements.append(repository.tag_relation_statement(tag_id, bill.id))

            for person in bill.people:
                settled = person.status and person.account_id is not None
                person_snapshot_id = None
                if settled:
                    person_snapshot_id = next_id
                    next_id += 1
                statements.append(repository.insert_people_statement(person, person_snapshot_id))
                if settled:
                    statements.append(repository.insert_snapshot_statement(OrderOperationRecord(
                        id=person_snapshot_id,
                        account_id=person.account_id,
                        date=person.time,
                        balance_before=ZERO,
                        balance_after=person.signed_delta,
                        bill_people_id=person.id,
                    )))
                    fold(person.account_id, person.signed_delta, person.time)
                statements.append(repository.people_relation_statement(person.id, bill.id))

        return statements, money_map, order_map

    async def _insert_batch_once(
        self,
        bills: Sequence[Bill],
        ledger_id: Optional[int],
    ) -> BatchOutcome:
        outcome = BatchOutcome(bill_count=len(bills))

        async with self._storage.transaction() as tx:
            first_id = await repository.max_snapshot_id(tx) + 1
            statements, money_map, order_map = self._stage_rows(bills, ledger_id, first_id)

            try:
                inserted = await tx.execute_batch(statements)
            except ConstraintError as e:
                raise BatchReconciliationError(f"bulk insert rejected: {e}", outcome) from e
            outcome.rows_inserted = inserted.rows_affected
            if inserted.rows_affected != len(statements):
                raise BatchReconciliationError(
                    f"bulk insert wrote {inserted.rows_affected} of {len(statements)} rows",
                    outcome,
                )

            queued: list[Statement] = []
            spans: list[tuple[AccountReconciliation, int, int]] = []
            for account_id, earliest in order_map.items():
                reconciliation = AccountReconciliation(
                    account_id=account_id,
                    net_delta=money_map[account_id],
                    earliest=earliest,
                )
                outcome.accounts.append(reconciliation)
                try:
                    repair = await chain.plan_repair(tx, account_id, earliest)
                    account = await self._load_account(tx, account_id)
                except LedgerInvariantError as e:
                    reconciliation.error = str(e)
                    continue

                reconciliation.snapshots_walked = repair.walked
                reconciliation.updates_queued = len(repair.updates)
                reconciliation.final_balance = add(account.money, reconciliation.net_delta)
                spans.append((reconciliation, len(queued), len(repair.updates)))
                queued.extend(update.to_statement() for update in repair.updates)
                queued.append(repository.update_account_money_statement(
                    account_id, reconciliation.final_balance
                ))

            if any(reconciliation.error for reconciliation in outcome.accounts):
                raise BatchReconciliationError("batch rolled back: account history missing", outcome)

            applied = await tx.execute_batch(queued)
            for reconciliation, start, count in spans:
                reconciliation.updates_applied = sum(applied.counts[start:start + count])
                account_rows = applied.counts[start + count]
                if reconciliation.updates_applied != count:
                    reconciliation.error = (
                        f"applied {reconciliation.updates_applied} of {count} snapshot updates"
                    )
                elif account_rows != 1:
                    reconciliation.error = f"account balance update affected {account_rows} rows"

            if outcome.failure_count:
                raise BatchReconciliationError(
                    f"batch rolled back: {outcome.failure_count} accounts failed to reconcile",
                    outcome,
                )

        return outcome


class LedgerComponents(NamedTuple):
    account_flow: AccountFlow
    bill_flow: BillInsertionFlow
    batch_flow: BatchReconciliationFlow
    queries: BalanceQueryExecutor
    storage: StorageClient


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[StorageClient] = None,
    persist_audit: bool = True,
) -> LedgerComponents:
    """
    Factory function to create all ledger components.

    Args:
        settings: Settings to use. Defaults to get_settings().
        storage: Storage client to share. Defaults to a SQLite client
                 built from settings.database.
        persist_audit: Whether audit events go to the AuditLog table too.
                      Set to False for local-only audit logging.

    Returns:
        LedgerComponents. Call `await components.storage.create_schema()`
        once before the first write.
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger
    storage = storage or SQLiteStorageClient(settings.database)

    if persist_audit:
        audit_logger = AuditLogger(SQLiteAuditStorage(storage))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    validator = BillValidator(ledger_settings)
    shared = {
        "validator": validator,
        "audit_logger": audit_logger,
        "settings": ledger_settings,
    }
    return LedgerComponents(
        account_flow=AccountFlow(storage, **shared),
        bill_flow=BillInsertionFlow(storage, **shared),
        batch_flow=BatchReconciliationFlow(storage, **shared),
        queries=BalanceQueryExecutor(storage),
        storage=storage,
    )
