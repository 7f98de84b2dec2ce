"""Validation package."""

from household_ledger.validation.validator import (
    TransactionValidator,
    is_currency_code,
    issue_messages,
    parse_request,
    raise_for_issues,
)

__all__ = [
    "TransactionValidator",
    "is_currency_code",
    "issue_messages",
    "parse_request",
    "raise_for_issues",
]
