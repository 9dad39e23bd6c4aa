"""
Tests for billbook

Test strategy:
1. Unit tests for individual components (models, money, chain maths)
2. Integration tests for flows against in-memory SQLite
3. No external services in tests
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from billbook.models import (
    ANCHOR_DATE,
    AccountReconciliation,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    BatchOutcome,
    Bill,
    BillPeople,
    BillType,
    ChainReport,
    InsertOutcome,
    OrderOperationRecord,
    PartialFailure,
    PartialFailureKind,
    SnapshotCause,
    ValidationIssue,
    ValidationResult,
)


class TestBillModels:
    """Tests for bill-related Pydantic models."""

    def test_expense_effective_amount(self):
        """Test price minus promotion for expenses, negative delta."""
        bill = Bill(type=BillType.EXPENSE, price=Decimal("50.00"), promotion=Decimal("5.50"),
                    time=datetime(2024, 1, 1), account_id=1, category_id=1)
        assert bill.effective_amount == Decimal("44.50")
        assert bill.signed_delta == Decimal("-44.50")

    def test_income_ignores_promotion(self):
        """Test income uses the price as is, positive delta."""
        bill = Bill(type=BillType.INCOME, price=Decimal("20"), promotion=Decimal("3"),
                    time=datetime(2024, 1, 1), account_id=1, category_id=1)
        assert bill.effective_amount == Decimal("20.00")
        assert bill.signed_delta == Decimal("20.00")

    def test_float_price_has_no_drift(self):
        """Test float inputs go through their repr."""
        bill = Bill(type=BillType.INCOME, price=0.1, time=datetime(2024, 1, 1))
        assert bill.price == Decimal("0.1")

    def test_more_than_two_places_rejected(self):
        """Test amounts with sub-cent precision are rejected."""
        with pytest.raises(ValidationError):
            Bill(type=BillType.INCOME, price=Decimal("1.005"), time=datetime(2024, 1, 1))

    def test_aware_time_stored_as_naive_utc(self):
        """Test timezone-aware times are normalized to naive UTC."""
        tz = timezone(timedelta(hours=2))
        bill = Bill(type=BillType.INCOME, price=1, time=datetime(2024, 1, 1, 12, tzinfo=tz))
        assert bill.time == datetime(2024, 1, 1, 10)
        assert bill.time.tzinfo is None

    def test_decodes_from_column_names(self):
        """Test rows with camelCase columns decode directly."""
        bill = Bill.model_validate({
            "id": str(uuid4()),
            "type": "expense",
            "price": "12.00",
            "time": "2024-01-01 10:00:00.000000",
            "accountId": 3,
            "categoryId": 4,
            "orderId": 9,
        })
        assert bill.account_id == 3
        assert bill.snapshot_id == 9
        assert bill.time == datetime(2024, 1, 1, 10)

    def test_settled_people(self):
        """Test only settled participants are returned."""
        settled = BillPeople(name="Ana", money=10, time=datetime(2024, 1, 2), status=True, account_id=2)
        pending = BillPeople(name="Bo", money=5, time=datetime(2024, 1, 2))
        bill = Bill(type=BillType.EXPENSE, price=30, time=datetime(2024, 1, 1), people=[settled, pending])
        assert bill.settled_people == [settled]
        assert settled.signed_delta == Decimal("10.00")


class TestSnapshotModel:
    """Tests for OrderOperationRecord."""

    def test_delta_and_position(self):
        """Test delta is after minus before; position is (date, id)."""
        snapshot = OrderOperationRecord(id=7, account_id=1, date=datetime(2024, 1, 1),
                                        balance_before=Decimal("100"), balance_after=Decimal("70"))
        assert snapshot.delta == Decimal("-30.00")
        assert snapshot.position == (datetime(2024, 1, 1), 7)

    def test_single_cause(self):
        """Test a snapshot cannot be both an anchor and a bill's."""
        with pytest.raises(ValidationError):
            OrderOperationRecord(account_id=1, date=ANCHOR_DATE, balance_before=0,
                                 balance_after=0, is_init=True, bill_id=uuid4())

    def test_cause(self):
        """Test the cause follows the set link."""
        anchor = OrderOperationRecord(account_id=1, date=ANCHOR_DATE, balance_before=0,
                                      balance_after=5, is_init=True)
        share = OrderOperationRecord(account_id=1, date=ANCHOR_DATE, balance_before=0,
                                     balance_after=5, bill_people_id=uuid4())
        assert anchor.cause == SnapshotCause.INIT
        assert share.cause == SnapshotCause.PARTICIPANT

    def test_missing_column_rejected(self):
        """Test a row without balanceAfter does not decode."""
        with pytest.raises(ValidationError):
            OrderOperationRecord.model_validate({
                "id": 1, "accountId": 1, "date": "2024-01-01 00:00:00.000000", "balanceBefore": "0.00",
            })


class TestOutcomeModels:
    """Tests for flow outcomes."""

    def test_insert_outcome_completeness(self):
        """Test an outcome with partial failures is not complete."""
        outcome = InsertOutcome(bill_id=uuid4(), snapshot_id=1, account_id=1, account_balance=Decimal("1"))
        assert outcome.is_complete
        outcome.partial_failures.append(
            PartialFailure(kind=PartialFailureKind.TAG, item_id="9", reason="no such tag")
        )
        assert not outcome.is_complete

    def test_batch_outcome_counts(self):
        """Test success and failure counts follow the account results."""
        ok = AccountReconciliation(account_id=1, net_delta=Decimal("5"), earliest=datetime(2024, 1, 1),
                                   updates_queued=2, updates_applied=2)
        short = AccountReconciliation(account_id=2, net_delta=Decimal("5"), earliest=datetime(2024, 1, 1),
                                      updates_queued=2, updates_applied=1)
        outcome = BatchOutcome(bill_count=2, accounts=[ok, short])
        assert outcome.success_count == 1
        assert outcome.failure_count == 1
        assert outcome.for_account(2) is short
        assert outcome.for_account(3) is None

    def test_chain_report_consistency(self):
        """Test a report is consistent only with a matching cached balance."""
        report = ChainReport(account_id=1, snapshot_count=2, anchor_ok=True,
                             cached_balance=Decimal("5"), chain_balance=Decimal("5"))
        assert report.is_consistent
        report.cached_balance = Decimal("6")
        assert not report.is_consistent


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.BILL_INSERTED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.BILL_INSERTED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            description="Account opened",
            details={"opening_balance": "100.00"},
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "account_created"
        assert log_dict["details"] == {"opening_balance": "100.00"}

    def test_audit_event_to_row(self):
        """Test conversion to an AuditLog row; Decimals become strings."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.STORAGE_RETRY,
            correlation_id=correlation_id,
            description="retry",
            details={"amount": Decimal("1.50")},
        )
        row = event.to_row()
        assert row["eventType"] == "storage_retry"
        assert row["correlationId"] == str(correlation_id)
        assert json.loads(row["details"]) == {"amount": "1.50"}

    def test_builder_relation_link_failed(self):
        """Test skipped links are warnings carrying the reason."""
        bill_id = uuid4()
        event = AuditEventBuilder.relation_link_failed(
            bill_id=bill_id, kind="tag", item_id="4", reason="FOREIGN KEY constraint failed",
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.entity_id == str(bill_id)
        assert event.error_message == "FOREIGN KEY constraint failed"

    def test_builder_invariant_violation(self):
        """Test invariant violations are errors keyed by kind."""
        event = AuditEventBuilder.invariant_violation(kind="account_missing", message="gone")
        assert event.severity == AuditSeverity.ERROR
        assert event.error_code == "account_missing"


class TestValidationResult:
    """Tests for ValidationResult."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            bill_id=uuid4(),
            is_valid=False,
            issues=[
                ValidationIssue(field="price", issue_type="invalid_value",
                                message="Amount must not be zero", severity="error"),
                ValidationIssue(field="price", issue_type="suspicious_value",
                                message="High", severity="warning"),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test a result with only warnings has no errors."""
        result = ValidationResult(
            bill_id=uuid4(),
            is_valid=True,
            issues=[ValidationIssue(field="time", issue_type="future_date",
                                    message="Ahead", severity="warning")],
            warnings=["Ahead"],
        )
        assert not result.has_errors
        assert result.error_count == 0
