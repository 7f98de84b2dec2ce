"""
Two-Stage Transaction Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - FIELD VALIDATION:
- Required field presence
- Enumeration membership (type, status)
- Currency format
- Runs without touching the store

STAGE 2 - REFERENCE VALIDATION:
- Account exists and is Active
- Currency matches the account
- Category exists and is Active (not for transfer legs)
- Works on accounts/categories resolved up front, so a batch of
  a thousand records costs two lookups, not two thousand

WHY TWO STAGES:
1. Field errors are reported without any store round trip
2. The store's validated-insert procedure covers stage 2 atomically,
   so stage 2 only runs client-side as a fallback (or for batches)
3. Every issue for a record is collected, not just the first

IMPORTANT: Validation NEVER silently fixes issues. Only currency
casing is normalized, and that happens before validation.
"""

import re
from typing import Any, Mapping, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from household_ledger.errors import ConflictError, NotFoundError, ValidationError
from household_ledger.models.ledger import (
    Account,
    Category,
    TransactionCreate,
    TransactionStatus,
    TransactionType,
    ValidationIssue,
    enum_values,
    is_transfer_leg_type,
)


ModelT = TypeVar("ModelT", bound=BaseModel)
CURRENCY_CODE = re.compile(r"[A-Z]{3}")


def is_currency_code(value: Optional[str]) -> bool:
    return bool(value) and CURRENCY_CODE.fullmatch(value) is not None


def parse_request(model_cls: type[ModelT], data: Any) -> ModelT:
    """
    Build a request model from a model instance or a mapping.

    Schema failures surface as the ledger's ValidationError, one issue
    per offending field.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data or {})
    except SchemaValidationError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in error["loc"]) or "request",
                issue_type="invalid_value",
                message=error["msg"],
            )
            for error in e.errors()
        ]
        message = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        raise ValidationError(f"Invalid request: {message}", issues=issues) from e


def issue_messages(issues: list[ValidationIssue]) -> list[str]:
    return [issue.message for issue in issues if issue.severity == "error"]


def raise_for_issues(issues: list[ValidationIssue]) -> None:
    """
    Raise the ledger error matching the first error-level issue.

    not_found -> NotFoundError, currency_mismatch -> ConflictError,
    anything else -> ValidationError.
    """
    errors = [issue for issue in issues if issue.severity == "error"]
    if not errors:
        return
    first = errors[0]
    if first.issue_type == "not_found":
        raise NotFoundError(first.message)
    if first.issue_type == "currency_mismatch":
        raise ConflictError(first.message)
    raise ValidationError("; ".join(issue_messages(errors)), issues=errors)


class TransactionValidator:
    """
    Validates transaction input through a two-stage pipeline.

    Stage 1: Field validation (pure)
    Stage 2: Reference validation (against pre-resolved accounts/categories)
    """

    TYPES = enum_values(TransactionType)
    STATUSES = enum_values(TransactionStatus)

    def validate_fields(self, data: TransactionCreate) -> list[ValidationIssue]:
        """
        Stage 1: Field validation.

        Checks:
        - account_id, amount and currency present
        - category_id present unless the type is a transfer leg
        - type and status in their enumerations
        - currency is a 3-letter code
        """
        issues = []
        transfer_leg = is_transfer_leg_type(data.type)

        missing = []
        if not data.account_id:
            missing.append("account_id")
        if not data.category_id and not transfer_leg:
            missing.append("category_id")
        if data.amount is None:
            missing.append("amount")
        if not data.currency:
            missing.append("currency")
        if missing:
            required = (
                "Account ID, amount, and currency are required"
                if transfer_leg
                else "Account ID, category ID, amount, and currency are required"
            )
            issues.append(ValidationIssue(
                field=",".join(missing),
                issue_type="missing",
                message=required,
            ))

        if data.type not in self.TYPES:
            issues.append(ValidationIssue(
                field="type",
                issue_type="invalid_value",
                message=f"Invalid transaction type. Must be one of: {', '.join(self.TYPES)}",
            ))

        if data.status not in self.STATUSES:
            issues.append(ValidationIssue(
                field="status",
                issue_type="invalid_value",
                message=f"Invalid transaction status. Must be one of: {', '.join(self.STATUSES)}",
            ))

        if data.currency and not is_currency_code(data.currency):
            issues.append(ValidationIssue(
                field="currency",
                issue_type="invalid_value",
                message="Currency must be a 3-letter ISO code",
            ))

        return issues

    def validate_references(
        self,
        data: TransactionCreate,
        accounts: Mapping[str, Account],
        categories: Mapping[str, Category],
        check_account: bool = True,
        check_category: bool = True,
    ) -> list[ValidationIssue]:
        """
        Stage 2: Reference validation.

        `accounts` and `categories` map ids to entities already loaded for
        the current owner. An id missing from the map does not exist.
        """
        issues = []

        if check_account and data.account_id:
            account = accounts.get(data.account_id)
            if account is None or not account.is_active:
                issues.append(ValidationIssue(
                    field="account_id",
                    issue_type="not_found",
                    message="Account not found or is not active",
                ))
            elif data.currency and account.currency != data.currency:
                issues.append(ValidationIssue(
                    field="currency",
                    issue_type="currency_mismatch",
                    message=f"Currency must match account currency: {account.currency}",
                ))

        if check_category and data.category_id and not is_transfer_leg_type(data.type):
            category = categories.get(data.category_id)
            if category is None or not category.is_active:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="not_found",
                    message="Category not found or is not active",
                ))

        return issues

    def validate(
        self,
        data: TransactionCreate,
        accounts: Mapping[str, Account],
        categories: Mapping[str, Category],
    ) -> list[ValidationIssue]:
        """
        Run both stages.

        Stage 2 is skipped when stage 1 reports errors.
        """
        issues = self.validate_fields(data)
        if issue_messages(issues):
            return issues
        return issues + self.validate_references(data, accounts, categories)
