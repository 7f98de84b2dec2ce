"""Ledger services package."""

from household_ledger.ledger.accounts import AccountLedger
from household_ledger.ledger.base import LedgerService, translate_procedure_error
from household_ledger.ledger.categories import CategoryLedger
from household_ledger.ledger.configuration import (
    ConfigurationReader,
    ObligationCategoryKind,
    ObligationCategoryMap,
    SettingKey,
)
from household_ledger.ledger.obligations import ObligationTracker
from household_ledger.ledger.transactions import TransactionLedger
from household_ledger.ledger.transfers import TransferService

__all__ = [
    "AccountLedger",
    "CategoryLedger",
    "ConfigurationReader",
    "LedgerService",
    "ObligationCategoryKind",
    "ObligationCategoryMap",
    "ObligationTracker",
    "SettingKey",
    "TransactionLedger",
    "TransferService",
    "translate_procedure_error",
]
