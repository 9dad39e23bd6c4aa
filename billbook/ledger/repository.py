"""
Ledger Repository

SQL for every row the ledger reads or writes, as small async helpers that
run on an open StorageTransaction.

DESIGN DECISION: Writes are built as Statement tuples (sql, params) first.
The single-bill flow executes them one by one; the batch flow collects
them and runs one execute_batch. Both paths write identical rows.

Snapshot positions are (date, id): "after" a position means a later date,
or the same date and a higher id.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from billbook.ledger.errors import InvariantKind, LedgerInvariantError
from billbook.models import (
    Account,
    Bill,
    BillPeople,
    Category,
    OrderOperationRecord,
    Tag,
)
from billbook.money import quantize
from billbook.services.storage import (
    ExecuteResult,
    NotFoundError,
    Statement,
    StorageTransaction,
    decode_row,
    decode_rows,
)

SNAPSHOT_FIELDS = "accountId, date, balanceBefore, balanceAfter, isInit, billId, billPeopleId"
SNAPSHOT_COLUMNS = f"id, {SNAPSHOT_FIELDS}"


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width naive UTC text, so string order matches time order."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep=" ", timespec="microseconds")


def format_amount(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return str(quantize(value))


def _id(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def require_insert_id(result: ExecuteResult, what: str) -> int:
    if result.insert_id is None:
        raise LedgerInvariantError(InvariantKind.INSERT_ID_MISSING, f"{what} returned no id")
    return result.insert_id


# =============================================================================
# ACCOUNTS
# =============================================================================

async def get_account(tx: StorageTransaction, account_id: int) -> Account:
    result = await tx.execute(
        "SELECT id, name, money, card, isDefault, remark FROM Account WHERE id = :id",
        {"id": account_id},
    )
    row = result.first()
    if row is None:
        raise NotFoundError(f"Account {account_id} not found")
    return decode_row(Account, row)


async def list_accounts(tx: StorageTransaction) -> list[Account]:
    result = await tx.execute(
        "SELECT id, name, money, card, isDefault, remark FROM Account ORDER BY id"
    )
    return decode_rows(Account, result.rows)


def update_account_money_statement(account_id: int, balance: Decimal) -> Statement:
    return (
        "UPDATE Account SET money = :money WHERE id = :id",
        {"money": format_amount(balance), "id": account_id},
    )


async def update_account_money(tx: StorageTransaction, account_id: int, balance: Decimal) -> int:
    result = await tx.execute(*update_account_money_statement(account_id, balance))
    return result.rows_affected


async def clear_default_accounts(tx: StorageTransaction) -> int:
    result = await tx.execute("UPDATE Account SET isDefault = 0 WHERE isDefault = 1")
    return result.rows_affected


async def insert_account(tx: StorageTransaction, account: Account) -> int:
    result = await tx.execute(
        """
        INSERT INTO Account (name, money, card, isDefault, remark)
        VALUES (:name, :money, :card, :isDefault, :remark)
        """,
        {
            "name": account.name,
            "money": format_amount(account.money),
            "card": account.card,
            "isDefault": int(account.is_default),
            "remark": account.remark,
        },
    )
    return require_insert_id(result, "account insert")


async def set_account_anchor(tx: StorageTransaction, account_id: int, snapshot_id: int) -> int:
    result = await tx.execute(
        "UPDATE Account SET orderId = :orderId WHERE id = :id",
        {"orderId": snapshot_id, "id": account_id},
    )
    return result.rows_affected


async def link_account_ledger(tx: StorageTransaction, account_id: int, ledger_id: int) -> int:
    result = await tx.execute(
        "INSERT INTO LedgerRelationAccount (ledgerId, accountId) VALUES (:ledgerId, :accountId)",
        {"ledgerId": ledger_id, "accountId": account_id},
    )
    return result.rows_affected


# =============================================================================
# METADATA
# =============================================================================

async def insert_category(tx: StorageTransaction, category: Category) -> int:
    result = await tx.execute(
        "INSERT INTO Category (name, type, level, pid) VALUES (:name, :type, :level, :pid)",
        {
            "name": category.name,
            "type": category.type.value,
            "level": category.level,
            "pid": category.parent_id,
        },
    )
    return require_insert_id(result, "category insert")


async def insert_tag(tx: StorageTransaction, tag: Tag) -> int:
    result = await tx.execute("INSERT INTO Tag (name) VALUES (:name)", {"name": tag.name})
    return require_insert_id(result, "tag insert")


async def insert_ledger(tx: StorageTransaction, name: str) -> int:
    result = await tx.execute("INSERT INTO Ledger (name) VALUES (:name)", {"name": name})
    return require_insert_id(result, "ledger insert")


# =============================================================================
# SNAPSHOTS
# =============================================================================

def insert_snapshot_statement(snapshot: OrderOperationRecord) -> Statement:
    """INSERT for a snapshot. An explicit id is kept when the snapshot has one."""
    params = {
        "accountId": snapshot.account_id,
        "date": format_timestamp(snapshot.date),
        "balanceBefore": format_amount(snapshot.balance_before),
        "balanceAfter": format_amount(snapshot.balance_after),
        "isInit": int(snapshot.is_init),
        "billId": _id(snapshot.bill_id),
        "billPeopleId": _id(snapshot.bill_people_id),
    }
    if snapshot.id is None:
        sql = f"""
            INSERT INTO OrderOperationRecord ({SNAPSHOT_FIELDS})
            VALUES (:accountId, :date, :balanceBefore, :balanceAfter, :isInit, :billId, :billPeopleId)
        """
    else:
        params["id"] = snapshot.id
        sql = f"""
            INSERT INTO OrderOperationRecord ({SNAPSHOT_COLUMNS})
            VALUES (:id, :accountId, :date, :balanceBefore, :balanceAfter, :isInit, :billId, :billPeopleId)
        """
    return sql, params


async def insert_snapshot(tx: StorageTransaction, snapshot: OrderOperationRecord) -> int:
    result = await tx.execute(*insert_snapshot_statement(snapshot))
    return require_insert_id(result, "snapshot insert")


def update_snapshot_statement(snapshot_id: int, balance_before: Decimal, balance_after: Decimal) -> Statement:
    return (
        """
        UPDATE OrderOperationRecord
        SET balanceBefore = :balanceBefore, balanceAfter = :balanceAfter
        WHERE id = :id
        """,
        {
            "balanceBefore": format_amount(balance_before),
            "balanceAfter": format_amount(balance_after),
            "id": snapshot_id,
        },
    )


async def set_snapshot_bill(tx: StorageTransaction, snapshot_id: int, bill_id: UUID) -> int:
    result = await tx.execute(
        "UPDATE OrderOperationRecord SET billId = :billId WHERE id = :id",
        {"billId": str(bill_id), "id": snapshot_id},
    )
    return result.rows_affected


async def get_snapshot(tx: StorageTransaction, snapshot_id: int) -> Optional[OrderOperationRecord]:
    result = await tx.execute(
        f"SELECT {SNAPSHOT_COLUMNS} FROM OrderOperationRecord WHERE id = :id",
        {"id": snapshot_id},
    )
    row = result.first()
    return decode_row(OrderOperationRecord, row) if row else None


async def delete_snapshot(tx: StorageTransaction, snapshot_id: int) -> int:
    result = await tx.execute(
        "DELETE FROM OrderOperationRecord WHERE id = :id",
        {"id": snapshot_id},
    )
    return result.rows_affected


async def max_snapshot_id(tx: StorageTransaction) -> int:
    result = await tx.execute("SELECT COALESCE(MAX(id), 0) AS maxId FROM OrderOperationRecord")
    return int(result.first()["maxId"])


async def find_predecessor(
    tx: StorageTransaction,
    account_id: int,
    when: datetime,
) -> Optional[OrderOperationRecord]:
    """Latest snapshot at or before `when`. Ties go to the highest id."""
    result = await tx.execute(
        f"""
        SELECT {SNAPSHOT_COLUMNS} FROM OrderOperationRecord
        WHERE accountId = :accountId AND date <= :date
        ORDER BY date DESC, id DESC
        LIMIT 1
        """,
        {"accountId": account_id, "date": format_timestamp(when)},
    )
    row = result.first()
    return decode_row(OrderOperationRecord, row) if row else None


async def find_anchor_before(
    tx: StorageTransaction,
    account_id: int,
    when: datetime,
) -> Optional[OrderOperationRecord]:
    """Latest snapshot strictly before `when`: the seed for a replay from `when`."""
    result = await tx.execute(
        f"""
        SELECT {SNAPSHOT_COLUMNS} FROM OrderOperationRecord
        WHERE accountId = :accountId AND date < :date
        ORDER BY date DESC, id DESC
        LIMIT 1
        """,
        {"accountId": account_id, "date": format_timestamp(when)},
    )
    row = result.first()
    return decode_row(OrderOperationRecord, row) if row else None


async def snapshots_after(
    tx: StorageTransaction,
    account_id: int,
    position: tuple[datetime, int],
) -> list[OrderOperationRecord]:
    """Snapshots strictly after `position`, in chain order."""
    date, snapshot_id = position
    result = await tx.execute(
        f"""
        SELECT {SNAPSHOT_COLUMNS} FROM OrderOperationRecord
        WHERE accountId = :accountId
          AND (date > :date OR (date = :date AND id > :id))
        ORDER BY date, id
        """,
        {"accountId": account_id, "date": format_timestamp(date), "id": snapshot_id},
    )
    return decode_rows(OrderOperationRecord, result.rows)


async def snapshots_since(
    tx: StorageTransaction,
    account_id: int,
    since: datetime,
) -> list[OrderOperationRecord]:
    result = await tx.execute(
        f"""
        SELECT {SNAPSHOT_COLUMNS} FROM OrderOperationRecord
        WHERE accountId = :accountId AND date >= :date
        ORDER BY date, id
        """,
        {"accountId": account_id, "date": format_timestamp(since)},
    )
    return decode_rows(OrderOperationRecord, result.rows)


async def list_snapshots(tx: StorageTransaction, account_id: int) -> list[OrderOperationRecord]:
    result = await tx.execute(
        f"""
        SELECT {SNAPSHOT_COLUMNS} FROM OrderOperationRecord
        WHERE accountId = :accountId
        ORDER BY date, id
        """,
        {"accountId": account_id},
    )
    return decode_rows(OrderOperationRecord, result.rows)


# =============================================================================
# BILLS AND PARTICIPANTS
# =============================================================================

def insert_bill_statement(bill: Bill, snapshot_id: int, ledger_id: Optional[int]) -> Statement:
    return (
        """
        INSERT INTO Bill (
            id, type, price, promotion, time, modification,
            accountId, categoryId, remark, ledgerId, orderId
        ) VALUES (
            :id, :type, :price, :promotion, :time, :modification,
            :accountId, :categoryId, :remark, :ledgerId, :orderId
        )
        """,
        {
            "id": str(bill.id),
            "type": bill.type.value,
            "price": format_amount(bill.price),
            "promotion": format_amount(bill.promotion),
            "time": format_timestamp(bill.time),
            "modification": format_timestamp(bill.modification),
            "accountId": bill.account_id,
            "categoryId": bill.category_id,
            "remark": bill.remark,
            "ledgerId": ledger_id,
            "orderId": snapshot_id,
        },
    )


def insert_people_statement(person: BillPeople, snapshot_id: Optional[int]) -> Statement:
    return (
        """
        INSERT INTO BillPeople (id, name, title, remark, accountId, money, time, status, orderId)
        VALUES (:id, :name, :title, :remark, :accountId, :money, :time, :status, :orderId)
        """,
        {
            "id": str(person.id),
            "name": person.name,
            "title": person.title,
            "remark": person.remark,
            "accountId": person.account_id,
            "money": format_amount(person.money),
            "time": format_timestamp(person.time),
            "status": int(person.status),
            "orderId": snapshot_id,
        },
    )


def tag_relation_statement(tag_id: int, bill_id: UUID) -> Statement:
    return (
        "INSERT INTO TagBillRelation (tagId, billId) VALUES (:tagId, :billId)",
        {"tagId": tag_id, "billId": str(bill_id)},
    )


def people_relation_statement(person_id: UUID, bill_id: UUID) -> Statement:
    return (
        "INSERT INTO BillPeopleRelation (billPeopleId, billId) VALUES (:billPeopleId, :billId)",
        {"billPeopleId": str(person_id), "billId": str(bill_id)},
    )


async def set_people_snapshot(tx: StorageTransaction, person_id: UUID, snapshot_id: int) -> int:
    result = await tx.execute(
        "UPDATE BillPeople SET orderId = :orderId WHERE id = :id",
        {"orderId": snapshot_id, "id": str(person_id)},
    )
    return result.rows_affected


async def get_bill(tx: StorageTransaction, bill_id: UUID) -> Bill:
    result = await tx.execute("SELECT * FROM Bill WHERE id = :id", {"id": str(bill_id)})
    row = result.first()
    if row is None:
        raise NotFoundError(f"Bill {bill_id} not found")
    bill = decode_row(Bill, row)

    tags = await tx.execute(
        "SELECT tagId FROM TagBillRelation WHERE billId = :billId ORDER BY id",
        {"billId": str(bill_id)},
    )
    people = await tx.execute(
        """
        SELECT p.* FROM BillPeople p
        JOIN BillPeopleRelation r ON r.billPeopleId = p.id
        WHERE r.billId = :billId
        ORDER BY r.id
        """,
        {"billId": str(bill_id)},
    )
    return bill.model_copy(update={
        "tag_ids": [row["tagId"] for row in tags.rows],
        "people": decode_rows(BillPeople, people.rows),
    })


async def delete_bill_rows(tx: StorageTransaction, bill: Bill) -> int:
    """Remove a bill with its relations and participants. Snapshots must be gone already."""
    deleted = 0
    params = {"billId": str(bill.id)}
    result = await tx.execute("DELETE FROM TagBillRelation WHERE billId = :billId", params)
    deleted += result.rows_affected
    result = await tx.execute("DELETE FROM BillPeopleRelation WHERE billId = :billId", params)
    deleted += result.rows_affected
    for person in bill.people:
        result = await tx.execute("DELETE FROM BillPeople WHERE id = :id", {"id": str(person.id)})
        deleted += result.rows_affected
    result = await tx.execute("DELETE FROM Bill WHERE id = :billId", params)
    deleted += result.rows_affected
    return deleted
