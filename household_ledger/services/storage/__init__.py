"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory implementation; production backends implement
`LedgerStore` and `AuditStorageInterface`.
"""

from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStore,
    ProcedureError,
    ProcedureUnavailableError,
    StorageError,
    StoreConnectionError,
)
from household_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from household_ledger.services.storage.retry import read_with_retry

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStore",
    # Exceptions
    "DuplicateError",
    "ProcedureError",
    "ProcedureUnavailableError",
    "StorageError",
    "StoreConnectionError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Helpers
    "read_with_retry",
]
