"""
Two-Stage Bill Validation

DESIGN DECISION: Validation happens in two distinct stages before a bill
reaches storage:

STAGE 1 - REFERENCE VALIDATION:
- Owning account present
- Category present
- This catches bills the UI let through half-filled

STAGE 2 - AMOUNT VALIDATION:
- Non-negative price and promotion, promotion not above price
- Non-zero effective amount
- Participant amounts and accounts
- Absurd amount and date detection
- This catches bills that would write a meaningless snapshot

Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; errors block the insertion, warnings do not.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from billbook.config import LedgerSettings, get_settings
from billbook.models import (
    ANCHOR_DATE,
    Bill,
    BillType,
    ValidationIssue,
    ValidationResult,
)
from billbook.money import ZERO


class BillValidator:
    """
    Validates a bill's preconditions.

    Usage:
        validator = BillValidator()
        result = validator.validate(bill)
        if not result.is_valid:
            print(validator.get_user_friendly_summary(result))
    """

    def __init__(self, settings: Optional[LedgerSettings] = None):
        self._settings = settings or get_settings().ledger

    def _validate_references(self, bill: Bill) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: references the ledger needs before it can write anything.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if bill.account_id is None:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="An account is required",
                severity="error",
                suggested_fix="Pick the account this bill is paid from or into",
            ))

        if bill.category_id is None:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="missing",
                message="A category is required",
                severity="error",
                suggested_fix="Pick a category for this bill",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_amounts(self, bill: Bill) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: amounts, participants and dates.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if bill.price < ZERO:
            issues.append(ValidationIssue(
                field="price",
                issue_type="invalid_value",
                message="Price cannot be negative",
                severity="error",
                suggested_fix="Use the bill type to record money coming in",
            ))

        if bill.promotion is not None:
            if bill.promotion < ZERO:
                issues.append(ValidationIssue(
                    field="promotion",
                    issue_type="invalid_value",
                    message="Promotion cannot be negative",
                    severity="error",
                ))
            elif bill.type == BillType.EXPENSE and bill.promotion > bill.price:
                issues.append(ValidationIssue(
                    field="promotion",
                    issue_type="invalid_value",
                    message=f"Promotion ({bill.promotion}) is larger than the price ({bill.price})",
                    severity="error",
                    suggested_fix="Check the discount amount",
                ))
            elif bill.type == BillType.INCOME and bill.promotion > ZERO:
                issues.append(ValidationIssue(
                    field="promotion",
                    issue_type="ignored",
                    message="Promotion is ignored on income",
                    severity="warning",
                ))

        if bill.price >= ZERO and bill.effective_amount == ZERO:
            issues.append(ValidationIssue(
                field="price",
                issue_type="invalid_value",
                message="Amount must not be zero",
                severity="error",
                suggested_fix="Enter the amount on the keypad",
            ))

        if bill.effective_amount > self._settings.max_bill_amount:
            issues.append(ValidationIssue(
                field="price",
                issue_type="suspicious_value",
                message=f"Amount ({bill.effective_amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        if bill.time <= ANCHOR_DATE:
            issues.append(ValidationIssue(
                field="time",
                issue_type="invalid_value",
                message="Bill time must be after 1970-01-01",
                severity="error",
            ))
        elif bill.time > datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=366):
            issues.append(ValidationIssue(
                field="time",
                issue_type="future_date",
                message=f"Bill time ({bill.time:%Y-%m-%d}) is more than a year ahead",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        for index, person in enumerate(bill.people):
            field = f"people[{index}]"
            if person.money <= ZERO:
                issues.append(ValidationIssue(
                    field=f"{field}.money",
                    issue_type="invalid_value",
                    message=f"Share of {person.name} must be greater than zero",
                    severity="error",
                ))
            if person.status and person.account_id is None:
                issues.append(ValidationIssue(
                    field=f"{field}.account_id",
                    issue_type="missing",
                    message=f"{person.name} is settled but has no account and will not be linked",
                    severity="warning",
                    suggested_fix="Pick the account the share was settled into",
                ))
            if person.status and person.time <= ANCHOR_DATE:
                issues.append(ValidationIssue(
                    field=f"{field}.time",
                    issue_type="invalid_value",
                    message=f"Settlement time of {person.name} must be after 1970-01-01",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, bill: Bill) -> ValidationResult:
        """
        Run both stages.

        Returns:
            ValidationResult with all issues found
        """
        all_issues = []

        references_valid, reference_issues = self._validate_references(bill)
        all_issues.extend(reference_issues)

        amounts_valid = False
        if references_valid:
            amounts_valid, amount_issues = self._validate_amounts(bill)
            all_issues.extend(amount_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            bill_id=bill.id,
            is_valid=references_valid and amounts_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to the person entering the bill.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        errors = [issue for issue in result.issues if issue.severity == "error"]
        if errors:
            lines.append("❌ This bill cannot be saved yet:")
            for issue in errors:
                lines.append(f"  • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"    → {issue.suggested_fix}")

        if result.warnings:
            lines.append("⚠️ Please double-check:")
            for warning in result.warnings:
                lines.append(f"  • {warning}")

        return "\n".join(lines)
