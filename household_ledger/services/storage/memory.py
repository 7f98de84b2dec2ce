"""
In-Memory Storage Implementation

DESIGN DECISION: The in-memory store has the same semantics as the
relational backend, including its rough edges:
1. Listing queries are capped at `max_rows_per_call` rows
2. The validated-insert and balance procedures can be switched off, so
   the client-side fallbacks are exercised
3. Every returned entity is a copy; mutating it never changes stored state

It is used by the test suite and for embedding the ledger without a
database.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

from household_ledger.models.audit import AuditEvent
from household_ledger.models.ledger import (
    Account,
    Category,
    ObligationRecord,
    ObligationStatus,
    SettingEntry,
    Transaction,
    TransactionQuery,
    AccountStatus,
    CategoryStatus,
    TRANSFER_LEG_TYPES,
)
from household_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStore,
    ProcedureError,
    ProcedureUnavailableError,
)


ModelT = TypeVar("ModelT", bound=BaseModel)


def _copy(model: ModelT) -> ModelT:
    return model.model_copy(deep=True)


def _value(field: Any) -> Any:
    # Enum members compare against plain strings from queries
    return getattr(field, "value", field)


def order_transactions(rows: list[Transaction]) -> list[Transaction]:
    """Date desc, created_at desc with nulls last, then transaction id."""
    rows = sorted(rows, key=lambda t: t.transaction_id)
    rows = sorted(
        rows,
        key=lambda t: t.created_at.timestamp() if t.created_at else float("-inf"),
        reverse=True,
    )
    return sorted(rows, key=lambda t: t.date, reverse=True)


class InMemoryLedgerStore(LedgerStore):
    """
    Dictionary-backed ledger store.

    Args:
        max_rows_per_call: Cap applied to every listing query
        supports_validated_insert: Whether create_transaction_validated exists
        supports_balance_procedure: Whether calculate_account_balance exists
    """

    def __init__(
        self,
        max_rows_per_call: int = 1000,
        supports_validated_insert: bool = True,
        supports_balance_procedure: bool = True,
    ):
        self.max_rows_per_call = max_rows_per_call
        self.supports_validated_insert = supports_validated_insert
        self.supports_balance_procedure = supports_balance_procedure

        self._accounts: dict[str, Account] = {}
        self._categories: dict[str, Category] = {}
        self._transactions: dict[str, Transaction] = {}
        self._obligations: dict[str, ObligationRecord] = {}
        self._settings: dict[tuple[str, str], SettingEntry] = {}

    def _page(self, rows: list[ModelT], limit: Optional[int], offset: int) -> list[ModelT]:
        if limit is None or limit > self.max_rows_per_call:
            limit = self.max_rows_per_call
        return rows[offset:offset + limit]

    # =========================================================================
    # Accounts
    # =========================================================================

    async def insert_account(self, account: Account) -> Account:
        if account.account_id in self._accounts:
            raise DuplicateError(f"Account already exists: {account.account_id}")
        self._accounts[account.account_id] = _copy(account)
        return _copy(account)

    def _owned_account(self, user_id: str, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        if account is None or account.user_id != user_id:
            return None
        return account

    async def get_account(self, user_id: str, account_id: str) -> Optional[Account]:
        account = self._owned_account(user_id, account_id)
        return _copy(account) if account else None

    async def get_accounts_by_ids(self, user_id: str, account_ids: list[str]) -> list[Account]:
        wanted = set(account_ids)
        return [
            _copy(a) for a in self._accounts.values()
            if a.user_id == user_id and a.account_id in wanted
        ]

    async def list_accounts(
        self,
        user_id: str,
        status: Optional[str] = None,
        type: Optional[str] = None,
        currency: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Account]:
        rows = [a for a in self._accounts.values() if a.user_id == user_id]
        if status:
            rows = [a for a in rows if _value(a.status) == status]
        if type:
            rows = [a for a in rows if _value(a.type) == type]
        if currency:
            rows = [a for a in rows if a.currency == currency]
        rows.sort(key=lambda a: a.account_id)
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return [_copy(a) for a in self._page(rows, limit, offset)]

    async def update_account(
        self,
        user_id: str,
        account_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> Optional[Account]:
        account = self._owned_account(user_id, account_id)
        if account is None:
            return None
        updated = account.model_copy(update={**changes, "updated_at": updated_at})
        self._accounts[account_id] = updated
        return _copy(updated)

    async def delete_account(self, user_id: str, account_id: str) -> bool:
        if self._owned_account(user_id, account_id) is None:
            return False
        del self._accounts[account_id]
        return True

    async def account_has_transactions(self, user_id: str, account_id: str) -> bool:
        return any(
            t.user_id == user_id and t.account_id == account_id and t.deleted_at is None
            for t in self._transactions.values()
        )

    async def calculate_account_balance(self, user_id: str, account_id: str) -> Decimal:
        if not self.supports_balance_procedure:
            raise ProcedureUnavailableError("calculate_account_balance is not available")
        account = self._owned_account(user_id, account_id)
        if account is None:
            raise ProcedureError("not_found", "Account not found")
        total = sum(
            (
                t.amount for t in self._transactions.values()
                if t.user_id == user_id and t.account_id == account_id and t.deleted_at is None
            ),
            Decimal("0"),
        )
        return account.opening_balance + total

    # =========================================================================
    # Categories
    # =========================================================================

    async def insert_category(self, category: Category) -> Category:
        if category.category_id in self._categories:
            raise DuplicateError(f"Category already exists: {category.category_id}")
        self._categories[category.category_id] = _copy(category)
        return _copy(category)

    def _owned_category(self, user_id: str, category_id: str) -> Optional[Category]:
        category = self._categories.get(category_id)
        if category is None or category.user_id != user_id:
            return None
        return category

    async def get_category(self, user_id: str, category_id: str) -> Optional[Category]:
        category = self._owned_category(user_id, category_id)
        return _copy(category) if category else None

    async def get_categories_by_ids(self, user_id: str, category_ids: list[str]) -> list[Category]:
        wanted = set(category_ids)
        return [
            _copy(c) for c in self._categories.values()
            if c.user_id == user_id and c.category_id in wanted
        ]

    async def list_categories(
        self,
        user_id: str,
        type: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Category]:
        rows = [c for c in self._categories.values() if c.user_id == user_id]
        if type:
            rows = [c for c in rows if _value(c.type) == type]
        if status:
            rows = [c for c in rows if _value(c.status) == status]
        rows.sort(key=lambda c: (c.name.lower(), c.category_id))
        return [_copy(c) for c in self._page(rows, limit, offset)]

    async def update_category(
        self,
        user_id: str,
        category_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> Optional[Category]:
        category = self._owned_category(user_id, category_id)
        if category is None:
            return None
        updated = category.model_copy(update={**changes, "updated_at": updated_at})
        self._categories[category_id] = updated
        return _copy(updated)

    async def delete_category(self, user_id: str, category_id: str) -> bool:
        if self._owned_category(user_id, category_id) is None:
            return False
        del self._categories[category_id]
        return True

    async def category_has_transactions(self, user_id: str, category_id: str) -> bool:
        return any(t.category_id == category_id for t in self._live(user_id))

    # =========================================================================
    # Transactions
    # =========================================================================

    async def create_transaction_validated(self, transaction: Transaction) -> Transaction:
        if not self.supports_validated_insert:
            raise ProcedureUnavailableError("create_transaction_validated is not available")

        account = self._owned_account(transaction.user_id, transaction.account_id)
        if account is None or account.status != AccountStatus.ACTIVE:
            raise ProcedureError("not_found", "Account not found or is not active")
        if account.currency != transaction.currency:
            raise ProcedureError("conflict", f"Currency must match account currency: {account.currency}")

        if transaction.type not in TRANSFER_LEG_TYPES and transaction.category_id:
            category = self._owned_category(transaction.user_id, transaction.category_id)
            if category is None or category.status != CategoryStatus.ACTIVE:
                raise ProcedureError("not_found", "Category not found or is not active")

        inserted = await self.insert_transactions([transaction])
        return inserted[0]

    async def insert_transactions(self, transactions: list[Transaction]) -> list[Transaction]:
        ids = [t.transaction_id for t in transactions]
        if len(set(ids)) != len(ids):
            raise DuplicateError("Duplicate transaction ids in insert")
        existing = [i for i in ids if i in self._transactions]
        if existing:
            raise DuplicateError(f"Transactions already exist: {', '.join(existing)}")

        for transaction in transactions:
            self._transactions[transaction.transaction_id] = _copy(transaction)
        return [_copy(t) for t in transactions]

    async def get_transaction(self, user_id: str, transaction_id: str) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        if transaction is None or transaction.user_id != user_id:
            return None
        if transaction.deleted_at is not None:
            return None
        return _copy(transaction)

    def _live(self, user_id: str) -> list[Transaction]:
        return [
            t for t in self._transactions.values()
            if t.user_id == user_id and t.deleted_at is None
        ]

    async def get_transactions_by_ids(self, user_id: str, transaction_ids: list[str]) -> list[Transaction]:
        wanted = set(transaction_ids)
        return [_copy(t) for t in self._live(user_id) if t.transaction_id in wanted]

    def _matches(self, t: Transaction, query: TransactionQuery) -> bool:
        if query.since is not None:
            if t.deleted_at is not None:
                if t.updated_at < query.since:
                    return False
            elif not (
                (t.created_at is not None and t.created_at >= query.since)
                or t.updated_at >= query.since
            ):
                return False
        elif t.deleted_at is not None:
            return False

        if query.account_id and t.account_id != query.account_id:
            return False
        if query.category_id and t.category_id != query.category_id:
            return False
        if query.status and _value(t.status) != query.status:
            return False
        if query.type and _value(t.type) != query.type:
            return False
        if query.transfers_only and not t.transfer_id:
            return False

        day = t.date.date()
        if query.date_from and day < query.date_from:
            return False
        if query.date_to and day > query.date_to:
            return False
        if query.date_before and day >= query.date_before:
            return False
        return True

    async def query_transactions(
        self,
        user_id: str,
        query: TransactionQuery,
        limit: int,
        offset: int = 0,
    ) -> list[Transaction]:
        rows = [
            t for t in self._transactions.values()
            if t.user_id == user_id and self._matches(t, query)
        ]
        return [_copy(t) for t in self._page(order_transactions(rows), limit, offset)]

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> list[Transaction]:
        affected = [t for t in self._live(user_id) if t.transaction_id == transaction_id]
        results = []
        for transaction in affected:
            updated = transaction.model_copy(update={**changes, "updated_at": updated_at})
            self._transactions[transaction.transaction_id] = updated
            results.append(_copy(updated))
        return results

    async def find_transactions_by_transfer_ids(
        self,
        user_id: str,
        transfer_ids: list[str],
    ) -> list[Transaction]:
        wanted = set(transfer_ids)
        return [_copy(t) for t in self._live(user_id) if t.transfer_id in wanted]

    async def find_linked_transactions(
        self,
        user_id: str,
        transaction_ids: list[str],
    ) -> list[Transaction]:
        wanted = set(transaction_ids)
        return [
            _copy(t) for t in self._live(user_id)
            if t.transaction_id in wanted or t.linked_transaction_id in wanted
        ]

    async def soft_delete_transactions(
        self,
        user_id: str,
        transaction_ids: list[str],
        deleted_at: datetime,
    ) -> list[str]:
        wanted = set(transaction_ids)
        deleted = []
        for transaction in self._live(user_id):
            if transaction.transaction_id in wanted:
                self._transactions[transaction.transaction_id] = transaction.model_copy(
                    update={"deleted_at": deleted_at, "updated_at": deleted_at}
                )
                deleted.append(transaction.transaction_id)
        return deleted

    # =========================================================================
    # Obligations
    # =========================================================================

    async def insert_obligation(self, record: ObligationRecord) -> ObligationRecord:
        if record.record_id in self._obligations:
            raise DuplicateError(f"Obligation already exists: {record.record_id}")
        for existing in self._obligations.values():
            if (
                existing.user_id == record.user_id
                and existing.original_transaction_id == record.original_transaction_id
            ):
                raise DuplicateError(
                    f"Obligation already exists for transaction {record.original_transaction_id}"
                )
        self._obligations[record.record_id] = _copy(record)
        return _copy(record)

    def _owned_obligation(self, user_id: str, record_id: str) -> Optional[ObligationRecord]:
        record = self._obligations.get(record_id)
        if record is None or record.user_id != user_id:
            return None
        return record

    async def get_obligation(self, user_id: str, record_id: str) -> Optional[ObligationRecord]:
        record = self._owned_obligation(user_id, record_id)
        return _copy(record) if record else None

    async def get_obligation_by_transaction(
        self,
        user_id: str,
        original_transaction_id: str,
    ) -> Optional[ObligationRecord]:
        for record in self._obligations.values():
            if record.user_id == user_id and record.original_transaction_id == original_transaction_id:
                return _copy(record)
        return None

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
        rows = [r for r in self._obligations.values() if r.user_id == user_id]
        if type:
            rows = [r for r in rows if _value(r.type) == type]
        if status:
            rows = [r for r in rows if _value(r.status) == status]
        if currency:
            rows = [r for r in rows if r.currency == currency]
        if entity_name:
            needle = entity_name.lower()
            rows = [r for r in rows if needle in r.entity_name.lower()]
        if since is not None:
            rows = [r for r in rows if r.updated_at >= since]
        rows.sort(key=lambda r: r.record_id)
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [_copy(r) for r in self._page(rows, limit, offset)]

    async def update_obligation(
        self,
        user_id: str,
        record_id: str,
        changes: dict[str, Any],
        updated_at: datetime,
    ) -> Optional[ObligationRecord]:
        record = self._owned_obligation(user_id, record_id)
        if record is None:
            return None
        updated = record.model_copy(update={**changes, "updated_at": updated_at})
        self._obligations[record_id] = updated
        return _copy(updated)

    async def apply_obligation_payment(
        self,
        user_id: str,
        record_id: str,
        amount: Decimal,
        payment_transaction_id: str,
        updated_at: datetime,
    ) -> ObligationRecord:
        record = self._owned_obligation(user_id, record_id)
        if record is None:
            raise ProcedureError("not_found", "Record not found")
        if record.status != ObligationStatus.ACTIVE:
            raise ProcedureError("state", "Can only record payments for active records")

        paid = record.paid_amount + amount
        remaining = record.original_amount - paid
        updated = record.model_copy(update={
            "paid_amount": paid,
            "remaining_amount": remaining,
            "payment_transaction_ids": [*record.payment_transaction_ids, payment_transaction_id],
            "status": ObligationStatus.FULLY_PAID if remaining <= 0 else ObligationStatus.ACTIVE,
            "updated_at": updated_at,
        })
        self._obligations[record_id] = updated
        return _copy(updated)

    async def delete_obligation(self, user_id: str, record_id: str) -> bool:
        if self._owned_obligation(user_id, record_id) is None:
            return False
        del self._obligations[record_id]
        return True

    # =========================================================================
    # Settings
    # =========================================================================

    async def list_settings(
        self,
        user_id: str,
        since: Optional[datetime] = None,
    ) -> list[SettingEntry]:
        rows = [s for (owner, _), s in self._settings.items() if owner == user_id]
        if since is not None:
            rows = [s for s in rows if s.updated_at >= since]
        rows.sort(key=lambda s: s.setting_key)
        return [_copy(s) for s in rows]

    async def get_setting(self, user_id: str, setting_key: str) -> Optional[SettingEntry]:
        entry = self._settings.get((user_id, setting_key))
        return _copy(entry) if entry else None

    async def upsert_settings(self, entries: list[SettingEntry]) -> list[SettingEntry]:
        for entry in entries:
            self._settings[(entry.user_id, entry.setting_key)] = _copy(entry)
        return [_copy(e) for e in entries]

    async def insert_settings_if_absent(self, entries: list[SettingEntry]) -> int:
        inserted = 0
        for entry in entries:
            key = (entry.user_id, entry.setting_key)
            if key not in self._settings:
                self._settings[key] = _copy(entry)
                inserted += 1
        return inserted


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(_copy(event))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
