"""Services package."""

from household_ledger.services.identity import (
    CurrentUserProvider,
    StaticUserProvider,
    generate_id,
)
from household_ledger.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStore,
    ProcedureError,
    ProcedureUnavailableError,
    StorageError,
    StoreConnectionError,
)

__all__ = [
    # Identity
    "CurrentUserProvider",
    "StaticUserProvider",
    "generate_id",
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerStore",
    "ProcedureError",
    "ProcedureUnavailableError",
    "StorageError",
    "StoreConnectionError",
]
