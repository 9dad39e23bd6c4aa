"""
Core Ledger Models for billbook

These models define the schemas for everything the ledger engine reads and
writes:
1. Bills and their split participants (what the user records)
2. Balance snapshots (the per-account running-balance chain)
3. Accounts, categories and tags (what bills point at)
4. Validation results (what we tell the user before touching storage)

DESIGN DECISION: Field aliases match the storage column names
(`accountId`, `balanceBefore`, ...). Rows coming back from storage are
decoded straight into these models, so a row with a missing column fails
loudly at the boundary instead of deep inside the chain maths.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_validator,
)

from billbook.money import ZERO, negate, quantize, subtract, to_decimal


def _naive_utc(value: datetime) -> datetime:
    """Store every timestamp as naive UTC so ordering is a plain comparison."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


Amount = Annotated[
    Decimal,
    BeforeValidator(lambda v: to_decimal(v) if v is not None else v),
    Field(decimal_places=2),
]
Timestamp = Annotated[datetime, AfterValidator(_naive_utc)]

# Anchor snapshots sit before any real transaction.
ANCHOR_DATE = datetime(1970, 1, 1)


# =============================================================================
# ENUMS
# =============================================================================

class BillType(str, Enum):
    """Direction of a bill."""
    EXPENSE = "expense"
    INCOME = "income"


class SnapshotCause(str, Enum):
    """What produced a balance snapshot. Exactly one per snapshot."""
    INIT = "init"
    BILL = "bill"
    PARTICIPANT = "participant"


# =============================================================================
# CLASSIFICATION METADATA
# =============================================================================

class Account(BaseModel):
    """
    A money account.

    `money` is a cache of the balance after the account's last snapshot.
    Only the orchestrator flows change it.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=100)
    money: Amount = Field(
        default=ZERO,
        description="Cached running balance",
    )
    is_default: bool = Field(default=False, alias="isDefault")
    card: Optional[str] = Field(default=None, max_length=50)
    remark: Optional[str] = Field(default=None, max_length=500)


class Category(BaseModel):
    """Bill category. Pure metadata."""
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=100)
    type: BillType
    level: int = 0
    parent_id: Optional[int] = Field(default=None, alias="pid")


class Tag(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=100)


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class BillPeople(BaseModel):
    """
    A split participant on a bill.

    Represents money owed to or from a third party. Only a settled
    participant (`status=True`) moves money: it owns exactly one snapshot
    on its target account, crediting `money`.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Counterpart name",
    )
    title: Optional[str] = Field(default=None, max_length=100)
    remark: Optional[str] = Field(default=None, max_length=500)
    account_id: Optional[int] = Field(
        default=None,
        alias="accountId",
        description="Account receiving or paying the share",
    )
    money: Amount
    time: Timestamp = Field(..., description="Expected or actual settlement time")
    status: bool = Field(default=False, description="True once settled")
    snapshot_id: Optional[int] = Field(default=None, alias="orderId")

    @property
    def signed_delta(self) -> Decimal:
        return quantize(self.money)


class Bill(BaseModel):
    """
    A single income or expense transaction.

    Immutable once committed, apart from the `modification` timestamp.
    Account and category are optional at the model level so the validator
    can report them as missing instead of failing construction.
    """
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    id: UUID = Field(default_factory=uuid4)
    type: BillType
    price: Amount
    promotion: Optional[Amount] = Field(
        default=None,
        description="Discount, only meaningful for expenses",
    )
    time: Timestamp
    modification: Optional[Timestamp] = None
    account_id: Optional[int] = Field(default=None, alias="accountId")
    category_id: Optional[int] = Field(default=None, alias="categoryId")
    tag_ids: list[int] = Field(default_factory=list)
    people: list[BillPeople] = Field(default_factory=list)
    remark: Optional[str] = Field(default=None, max_length=1000)
    ledger_id: Optional[int] = Field(default=None, alias="ledgerId")
    snapshot_id: Optional[int] = Field(default=None, alias="orderId")

    @property
    def effective_amount(self) -> Decimal:
        """price - promotion for expenses, price for income."""
        if self.type == BillType.EXPENSE:
            return subtract(self.price, self.promotion or ZERO)
        return quantize(self.price)

    @property
    def signed_delta(self) -> Decimal:
        """Effect on the owning account: negative for expenses."""
        if self.type == BillType.EXPENSE:
            return negate(self.effective_amount)
        return self.effective_amount

    @property
    def settled_people(self) -> list[BillPeople]:
        return [person for person in self.people if person.status]


class OrderOperationRecord(BaseModel):
    """
    A balance snapshot: one account's balance before and after one event.

    CRITICAL: per account, snapshots ordered by (date, id) form a chain where
    each balance_before equals the previous balance_after.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    account_id: int = Field(..., alias="accountId")
    date: Timestamp
    balance_before: Amount = Field(..., alias="balanceBefore")
    balance_after: Amount = Field(..., alias="balanceAfter")
    is_init: bool = Field(default=False, alias="isInit")
    bill_id: Optional[UUID] = Field(default=None, alias="billId")
    bill_people_id: Optional[UUID] = Field(default=None, alias="billPeopleId")

    @model_validator(mode="after")
    def validate_single_cause(self) -> "OrderOperationRecord":
        """A snapshot is caused by account creation, a bill, or a share. Never two."""
        causes = [self.is_init, self.bill_id is not None, self.bill_people_id is not None]
        if sum(causes) > 1:
            raise ValueError("Snapshot cannot have more than one cause")
        return self

    @property
    def delta(self) -> Decimal:
        return subtract(self.balance_after, self.balance_before)

    @property
    def cause(self) -> Optional[SnapshotCause]:
        if self.is_init:
            return SnapshotCause.INIT
        if self.bill_id is not None:
            return SnapshotCause.BILL
        if self.bill_people_id is not None:
            return SnapshotCause.PARTICIPANT
        return None

    @property
    def position(self) -> tuple[datetime, int]:
        return (self.date, self.id or 0)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single precondition issue found on a bill."""

    field: str = Field(..., description="Field with the issue")
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value')",
    )
    message: str = Field(..., description="Human-readable description")
    severity: str = Field(..., pattern="^(error|warning|info)$")
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of validating a bill before it reaches storage.

    Errors block the insertion. Warnings are passed on to the user.
    """

    bill_id: UUID
    validated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")
