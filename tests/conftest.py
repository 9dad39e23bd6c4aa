"""
Shared fixtures.

Every test gets its own in-memory SQLite database with the ledger schema,
so tests never see each other's rows.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

from billbook.audit import AuditLogger
from billbook.config import DatabaseSettings, LedgerSettings
from billbook.models import Bill, BillPeople, BillType
from billbook.orchestrator import (
    AccountFlow,
    BatchReconciliationFlow,
    BillInsertionFlow,
    LedgerComponents,
)
from billbook.queries import BalanceQueryExecutor
from billbook.services.storage import SQLiteAuditStorage, SQLiteStorageClient
from billbook.validation import BillValidator


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        retry_attempts=3,
        retry_max_wait_seconds=0,
        default_ledger_id=None,
        max_bill_amount=Decimal("10000000"),
    )


@pytest.fixture
def make_ledger(ledger_settings):
    """Factory for a fresh, schema-ready ledger on its own in-memory database."""

    async def _make() -> LedgerComponents:
        storage = SQLiteStorageClient(DatabaseSettings(url="sqlite://"))
        await storage.create_schema()
        shared = {
            "validator": BillValidator(ledger_settings),
            "audit_logger": AuditLogger(SQLiteAuditStorage(storage)),
            "settings": ledger_settings,
        }
        return LedgerComponents(
            account_flow=AccountFlow(storage, **shared),
            bill_flow=BillInsertionFlow(storage, **shared),
            batch_flow=BatchReconciliationFlow(storage, **shared),
            queries=BalanceQueryExecutor(storage),
            storage=storage,
        )

    return _make


@pytest.fixture
async def ledger(make_ledger) -> LedgerComponents:
    return await make_ledger()


@pytest.fixture
def storage(ledger) -> SQLiteStorageClient:
    return ledger.storage


@pytest.fixture
async def expense_category(ledger):
    return await ledger.account_flow.create_category("Groceries", BillType.EXPENSE)


@pytest.fixture
async def wallet(ledger):
    return await ledger.account_flow.create_account("Wallet", opening_balance="100.00")


@pytest.fixture
def make_bill():
    """Factory for bills with sensible defaults."""

    def _make(
        account_id: int,
        category_id: int,
        price: str,
        time: datetime,
        bill_type: BillType = BillType.EXPENSE,
        promotion: Optional[str] = None,
        tag_ids: Optional[list[int]] = None,
        people: Optional[list[BillPeople]] = None,
    ) -> Bill:
        return Bill(
            type=bill_type,
            price=Decimal(price),
            promotion=Decimal(promotion) if promotion is not None else None,
            time=time,
            account_id=account_id,
            category_id=category_id,
            tag_ids=tag_ids or [],
            people=people or [],
        )

    return _make


@pytest.fixture
def audit_logger() -> AuditLogger:
    return AuditLogger()
