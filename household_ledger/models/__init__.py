"""
Data Models Package

This package contains all Pydantic models used in the Household Ledger.
All data flowing through the system must conform to these schemas.
"""

from household_ledger.models.ledger import (
    Account,
    AccountBalance,
    AccountBalances,
    AccountCreate,
    AccountFilters,
    AccountStatus,
    AccountType,
    AccountUpdate,
    AmountTotals,
    BatchFailure,
    BulkDeleteResult,
    Category,
    CategoryCreate,
    CategoryNode,
    CategoryStatus,
    CategoryType,
    CategoryUpdate,
    CurrencyTotals,
    DeleteResult,
    EntityTotals,
    ObligationCreate,
    ObligationFilters,
    ObligationRecord,
    ObligationStatus,
    ObligationSummary,
    ObligationType,
    ObligationUpdate,
    PaymentResult,
    SettingEntry,
    Transaction,
    TransactionCreate,
    TransactionFilters,
    TransactionQuery,
    TransactionStatus,
    TransactionType,
    TransactionUpdate,
    Transfer,
    TransferCreate,
    TransferDeleteResult,
    TransferFilters,
    TransferResult,
    TypeTotals,
    User,
    ValidationIssue,
)
from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger entities
    "Account",
    "Category",
    "CategoryNode",
    "ObligationRecord",
    "SettingEntry",
    "Transaction",
    "User",
    # Enumerations
    "AccountStatus",
    "AccountType",
    "CategoryStatus",
    "CategoryType",
    "ObligationStatus",
    "ObligationType",
    "TransactionStatus",
    "TransactionType",
    # Requests and results
    "AccountBalance",
    "AccountBalances",
    "AccountCreate",
    "AccountFilters",
    "AccountUpdate",
    "AmountTotals",
    "BatchFailure",
    "BulkDeleteResult",
    "CategoryCreate",
    "CategoryUpdate",
    "CurrencyTotals",
    "DeleteResult",
    "EntityTotals",
    "ObligationCreate",
    "ObligationFilters",
    "ObligationSummary",
    "ObligationUpdate",
    "PaymentResult",
    "TransactionCreate",
    "TransactionFilters",
    "TransactionQuery",
    "TransactionUpdate",
    "Transfer",
    "TransferCreate",
    "TransferDeleteResult",
    "TransferFilters",
    "TransferResult",
    "TypeTotals",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
