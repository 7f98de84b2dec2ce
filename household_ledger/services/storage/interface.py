"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run against a relational store with server-side procedures in production
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

Every query is scoped by `user_id`; a store never returns another owner's
rows. Listing queries honour a store-side maximum rows-per-call, so
callers that need everything must page.

Single-statement atomicity is the store's job: the validated insert, the
bulk insert, the set-based soft delete and the payment application each
either happen completely or not at all.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from household_ledger.models.audit import AuditEvent
from household_ledger.models.ledger import (
    Account,
    Category,
    ObligationRecord,
    SettingEntry,
    Transaction,
    TransactionQuery,
)


class LedgerStore(ABC):
    """
    Abstract interface for ledger persistence.

    Any storage implementation (PostgreSQL, in-memory, etc.)
    must implement these methods.
    """

    # =========================================================================
    # Accounts
    # =========================================================================

    @abstractmethod
    async def insert_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    async def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def get_accounts_by_ids(self, user_id: str, account_ids: list[str]) -> list[Account]:
        """Bulk lookup; missing ids are simply absent from the result."""
        pass

    @abstractmethod
    async def list_accounts(
        self,
        user_id: str,
        status: Optional[str] = None,
        type: Optional[str] = None,
        currency: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Account]:
        """
        List accounts, newest first.

        At most `min(limit, max rows per call)` rows are returned.
        """
        pass

    @abstractmethod
    async def update_account(
        self,
        user_id: str,
        account_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> Optional[Account]:
        """
        Apply `changes` to one account.

        Returns:
            The updated account, or None if it does not exist
        """
        pass

    @abstractmethod
    async def delete_account(self, user_id: str, account_id: str) -> bool:
        pass

    @abstractmethod
    async def account_has_transactions(self, user_id: str, account_id: str) -> bool:
        """
        Existence check for non-deleted transactions referencing the account.

        Must not load the transactions themselves.
        """
        pass

    @abstractmethod
    async def calculate_account_balance(self, user_id: str, account_id: str) -> Decimal:
        """
        Server-side balance: opening balance plus the signed amounts of
        every non-deleted transaction on the account.

        Raises:
            ProcedureUnavailableError: If the store has no balance procedure
            ProcedureError: If the account does not exist
        """
        pass

    # =========================================================================
    # Categories
    # =========================================================================

    @abstractmethod
    async def insert_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def get_category(self, user_id: str, category_id: str) -> Optional[Category]:
        pass

    @abstractmethod
    async def get_categories_by_ids(self, user_id: str, category_ids: list[str]) -> list[Category]:
        pass

    @abstractmethod
    async def list_categories(
        self,
        user_id: str,
        type: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Category]:
        """List categories ordered by name, one page at a time."""
        pass

    @abstractmethod
    async def update_category(
        self,
        user_id: str,
        category_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> Optional[Category]:
        pass

    @abstractmethod
    async def delete_category(self, user_id: str, category_id: str) -> bool:
        pass

    @abstractmethod
    async def category_has_transactions(self, user_id: str, category_id: str) -> bool:
        """Whether any live transaction references the category."""
        pass

    # =========================================================================
    # Transactions
    # =========================================================================

    @abstractmethod
    async def create_transaction_validated(self, transaction: Transaction) -> Transaction:
        """
        Atomically validate references and insert one transaction.

        Checks that the account exists and is Active, that the currency
        matches the account, and that a supplied category exists and is
        Active (skipped for transfer legs).

        Raises:
            ProcedureUnavailableError: If the store has no such procedure
            ProcedureError: With kind 'not_found', 'conflict' or 'validation'
        """
        pass

    @abstractmethod
    async def insert_transactions(self, transactions: list[Transaction]) -> list[Transaction]:
        """
        Insert many transactions in one statement.

        Either every row is written or none is.
        """
        pass

    @abstractmethod
    async def get_transaction(
        self,
        user_id: str,
        transaction_id: str,
    ) -> Optional[Transaction]:
        """The live row, or None when absent or soft-deleted."""
        pass

    @abstractmethod
    async def get_transactions_by_ids(self, user_id: str, transaction_ids: list[str]) -> list[Transaction]:
        """Live (non-deleted) rows among the given ids."""
        pass

    @abstractmethod
    async def query_transactions(
        self,
        user_id: str,
        query: TransactionQuery,
        limit: int,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        Filtered transaction listing.

        Without `query.since` soft-deleted rows are excluded. With it,
        live rows created or updated at/after the cursor and deleted rows
        updated at/after the cursor are returned.

        Ordered by date desc, created_at desc (nulls last), transaction_id.
        At most `min(limit, max rows per call)` rows are returned.
        """
        pass

    @abstractmethod
    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> list[Transaction]:
        """
        Apply `changes` to the live row with this id.

        Returns:
            Every row affected (normally exactly one)
        """
        pass

    @abstractmethod
    async def find_transactions_by_transfer_ids(
        self,
        user_id: str,
        transfer_ids: list[str],
    ) -> list[Transaction]:
        """Live rows sharing any of the given transfer ids."""
        pass

    @abstractmethod
    async def find_linked_transactions(
        self,
        user_id: str,
        transaction_ids: list[str],
    ) -> list[Transaction]:
        """
        Live rows whose id or linked_transaction_id is in `transaction_ids`.
        """
        pass

    @abstractmethod
    async def soft_delete_transactions(
        self,
        user_id: str,
        transaction_ids: list[str],
        deleted_at: datetime,
    ) -> list[str]:
        """
        Set-based conditional soft delete.

        Stamps deleted_at and updated_at on every listed row whose
        deleted_at is still null.

        Returns:
            The ids actually deleted by this call
        """
        pass

    # =========================================================================
    # Obligations
    # =========================================================================

    @abstractmethod
    async def insert_obligation(self, record: ObligationRecord) -> ObligationRecord:
        """
        Raises:
            DuplicateError: If a record already exists for the same
                original transaction
        """
        pass

    @abstractmethod
    async def get_obligation(self, user_id: str, record_id: str) -> Optional[ObligationRecord]:
        pass

    @abstractmethod
    async def get_obligation_by_transaction(
        self,
        user_id: str,
        original_transaction_id: str,
    ) -> Optional[ObligationRecord]:
        pass

    @abstractmethod
    async def list_obligations(
        self,
        user_id: str,
        type: Optional[str] = None,
        status: Optional[str] = None,
        currency: Optional[str] = None,
        entity_name: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[ObligationRecord]:
        """
        List obligation records, newest first, one page at a time.

        `entity_name` is a case-insensitive substring match.
        """
        pass

    @abstractmethod
    async def update_obligation(
        self,
        user_id: str,
        record_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> Optional[ObligationRecord]:
        pass

    @abstractmethod
    async def apply_obligation_payment(
        self,
        user_id: str,
        record_id: str,
        amount: Decimal,
        payment_transaction_id: str,
        updated_at: datetime,
    ) -> ObligationRecord:
        """
        Atomically apply one payment.

        paid += amount, remaining = original - paid, the payment id is
        appended, and the status becomes FullyPaid when remaining <= 0.

        Raises:
            ProcedureError: kind 'not_found' if absent, kind 'state' if
                the record is not Active
        """
        pass

    @abstractmethod
    async def delete_obligation(self, user_id: str, record_id: str) -> bool:
        pass

    # =========================================================================
    # Settings
    # =========================================================================

    @abstractmethod
    async def list_settings(
        self,
        user_id: str,
        since: Optional[datetime] = None,
    ) -> list[SettingEntry]:
        """Settings ordered by key; with `since`, only rows updated at/after it."""
        pass

    @abstractmethod
    async def get_setting(self, user_id: str, setting_key: str) -> Optional[SettingEntry]:
        pass

    @abstractmethod
    async def upsert_settings(self, entries: list[SettingEntry]) -> list[SettingEntry]:
        pass

    @abstractmethod
    async def insert_settings_if_absent(self, entries: list[SettingEntry]) -> int:
        """
        Insert rows whose (user_id, setting_key) does not exist yet.

        Returns:
            Number of rows inserted
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Related events in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'transaction', 'obligation')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StoreConnectionError(StorageError):
    """Could not reach the storage backend. Safe to retry for reads."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ProcedureUnavailableError(StorageError):
    """The store does not provide the requested server-side procedure."""
    pass


class ProcedureError(StorageError):
    """
    A server-side procedure rejected its input.

    `kind` is one of 'validation', 'not_found', 'conflict' or 'state'.
    """

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(message)
