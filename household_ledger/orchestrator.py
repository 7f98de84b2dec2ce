"""
Main Orchestrator for the Household Ledger

This module ties the ledger services together behind one facade:
1. Reads (accounts, categories, transactions, transfers, settings,
   obligations) pass through the deduplication gate
2. Writes go straight to the owning service

DESIGN DECISION: The orchestrator enforces the boundaries:
- Reads are coalesced per owner, never across owners
- Writes are never coalesced; two identical creates are two rows
- The obligation tracker is attached to the transaction ledger here,
  so every transaction path shares one auto-classification hook
- Logging out drops in-flight read sharing and cached configuration
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from household_ledger.audit import AuditLogger
from household_ledger.config import LedgerSettings, get_settings
from household_ledger.dedup import DeduplicationGate
from household_ledger.ledger import (
    AccountLedger,
    CategoryLedger,
    ConfigurationReader,
    ObligationTracker,
    TransactionLedger,
    TransferService,
)
from household_ledger.ledger.base import Clock, IdGenerator
from household_ledger.models.ledger import (
    Account,
    AccountBalance,
    AccountBalances,
    BulkDeleteResult,
    Category,
    CategoryNode,
    DeleteResult,
    ObligationRecord,
    ObligationSummary,
    PaymentResult,
    SettingEntry,
    Transaction,
    Transfer,
    TransferDeleteResult,
    TransferResult,
)
from household_ledger.services.identity import CurrentUserProvider, StaticUserProvider
from household_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStore,
)


T = TypeVar("T")


class LedgerApp:
    """
    Facade over the ledger services.

    Read methods are deduplicated: concurrent identical reads by the same
    owner share one store round trip. Write methods delegate directly.
    """

    def __init__(
        self,
        store: LedgerStore,
        user_provider: CurrentUserProvider,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        gate: Optional[DeduplicationGate] = None,
    ):
        self._user_provider = user_provider
        self.gate = gate or DeduplicationGate()

        common = dict(
            store=store,
            user_provider=user_provider,
            settings=settings,
            audit_logger=audit_logger,
            clock=clock,
            id_generator=id_generator,
        )
        self.configuration = ConfigurationReader(**common)
        self.accounts = AccountLedger(configuration=self.configuration, **common)
        self.categories = CategoryLedger(**common)
        self.transactions = TransactionLedger(configuration=self.configuration, **common)
        self.transfers = TransferService(transactions=self.transactions, **common)
        self.obligations = ObligationTracker(
            transactions=self.transactions,
            configuration=self.configuration,
            **common,
        )
        self.transactions.set_obligation_hook(self.obligations)

    async def _shared(
        self,
        endpoint: str,
        params: Any,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        user = await self._user_provider.get_current_user()
        key = self.gate.make_key(endpoint, {"owner": user.id if user else None, "params": params})
        return await self.gate.run(key, operation)

    def logout(self) -> None:
        """Forget in-flight read sharing and cached configuration."""
        self.gate.clear()
        self.configuration.invalidate_cache()

    # =========================================================================
    # Accounts
    # =========================================================================

    async def list_accounts(self, filters: Any = None) -> list[Account]:
        return await self._shared("accounts/list", filters, lambda: self.accounts.list_accounts(filters))

    async def get_account(self, account_id: str) -> Account:
        return await self._shared("accounts/get", account_id, lambda: self.accounts.get_account(account_id))

    async def get_account_balance(self, account_id: str) -> AccountBalance:
        return await self._shared(
            "accounts/balance", account_id, lambda: self.accounts.get_account_balance(account_id)
        )

    async def get_all_account_balances(self) -> AccountBalances:
        return await self._shared("accounts/balances", None, self.accounts.get_all_account_balances)

    async def create_account(self, data: Any) -> Account:
        return await self.accounts.create_account(data)

    async def update_account(self, account_id: str, updates: Any) -> Account:
        return await self.accounts.update_account(account_id, updates)

    async def delete_account(self, account_id: str) -> None:
        await self.accounts.delete_account(account_id)

    # =========================================================================
    # Categories
    # =========================================================================

    async def list_categories(self, type: Optional[str] = None, status: Optional[str] = None) -> list[Category]:
        return await self._shared(
            "categories/list",
            {"type": type, "status": status},
            lambda: self.categories.list_categories(type=type, status=status),
        )

    async def get_category(self, category_id: str) -> Category:
        return await self._shared(
            "categories/get", category_id, lambda: self.categories.get_category(category_id)
        )

    async def get_category_descendants(self, category_id: str) -> list[Category]:
        return await self._shared(
            "categories/descendants",
            category_id,
            lambda: self.categories.get_category_descendants(category_id),
        )

    async def get_category_tree(
        self,
        type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[CategoryNode]:
        return await self._shared(
            "categories/tree",
            {"type": type, "status": status},
            lambda: self.categories.build_category_tree(type=type, status=status),
        )

    async def create_category(self, data: Any) -> Category:
        return await self.categories.create_category(data)

    async def update_category(self, category_id: str, updates: Any) -> Category:
        return await self.categories.update_category(category_id, updates)

    async def delete_category(self, category_id: str) -> None:
        await self.categories.delete_category(category_id)

    # =========================================================================
    # Transactions
    # =========================================================================

    async def get_transactions(self, filters: Any = None) -> list[Transaction]:
        return await self._shared(
            "transactions/list", filters, lambda: self.transactions.get_transactions(filters)
        )

    async def get_transaction(self, transaction_id: str) -> Transaction:
        return await self._shared(
            "transactions/get", transaction_id, lambda: self.transactions.get_transaction(transaction_id)
        )

    async def create_transaction(self, data: Any) -> Transaction:
        return await self.transactions.create_transaction(data)

    async def batch_create_transactions(self, records: Optional[list[Any]]) -> list[Transaction]:
        return await self.transactions.batch_create_transactions(records)

    async def update_transaction(self, transaction_id: str, updates: Any) -> Transaction:
        return await self.transactions.update_transaction(transaction_id, updates)

    async def delete_transaction(self, transaction_id: str) -> DeleteResult:
        return await self.transactions.delete_transaction(transaction_id)

    async def bulk_delete_transactions(self, transaction_ids: Optional[list[Any]]) -> BulkDeleteResult:
        return await self.transactions.bulk_delete_transactions(transaction_ids)

    # =========================================================================
    # Transfers
    # =========================================================================

    async def get_transfers(self, filters: Any = None) -> list[Transfer]:
        return await self._shared("transfers/list", filters, lambda: self.transfers.get_transfers(filters))

    async def get_transfer(self, transfer_id: str) -> Transfer:
        return await self._shared(
            "transfers/get", transfer_id, lambda: self.transfers.get_transfer(transfer_id)
        )

    async def create_transfer(self, data: Any) -> TransferResult:
        return await self.transfers.create_transfer(data)

    async def delete_transfer(self, transaction_id: str) -> TransferDeleteResult:
        return await self.transfers.delete_transfer(transaction_id)

    # =========================================================================
    # Settings
    # =========================================================================

    async def get_settings(self, since: Optional[datetime] = None) -> list[SettingEntry]:
        return await self._shared("settings/list", since, lambda: self.configuration.get_settings(since))

    async def update_settings(self, values: dict[str, Any]) -> list[SettingEntry]:
        return await self.configuration.update_settings(values)

    # =========================================================================
    # Obligations
    # =========================================================================

    async def list_obligations(self, filters: Any = None) -> list[ObligationRecord]:
        return await self._shared(
            "obligations/list", filters, lambda: self.obligations.list_records(filters)
        )

    async def get_obligation(self, record_id: str) -> ObligationRecord:
        return await self._shared(
            "obligations/get", record_id, lambda: self.obligations.get_record(record_id)
        )

    async def get_obligation_summary(
        self,
        type: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> ObligationSummary:
        return await self._shared(
            "obligations/summary",
            {"type": type, "currency": currency},
            lambda: self.obligations.get_summary(type=type, currency=currency),
        )

    async def create_obligation(self, data: Any) -> ObligationRecord:
        return await self.obligations.create_record(data)

    async def update_obligation(self, record_id: str, updates: Any) -> ObligationRecord:
        return await self.obligations.update_record(record_id, updates)

    async def delete_obligation(self, record_id: str) -> None:
        await self.obligations.delete_record(record_id)

    async def record_payment(self, record_id: str, amount: Any, notes: str = "") -> PaymentResult:
        return await self.obligations.record_payment(record_id, amount, notes)

    async def mark_as_fully_paid(self, record_id: str) -> PaymentResult:
        return await self.obligations.mark_as_fully_paid(record_id)

    async def reconcile_pending(self) -> list[ObligationRecord]:
        return await self.obligations.reconcile_pending()


def create_ledger(
    store: Optional[LedgerStore] = None,
    user_provider: Optional[CurrentUserProvider] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[LedgerSettings] = None,
    clock: Optional[Clock] = None,
    id_generator: Optional[IdGenerator] = None,
) -> LedgerApp:
    """
    Factory function to create a fully wired ledger.

    Args:
        store: Ledger persistence. Defaults to an in-memory store.
        user_provider: Resolves the current owner. Defaults to a provider
                    with nobody signed in.
        audit_storage: Audit persistence. Defaults to in-memory storage.
        settings: Operational limits. Defaults to get_settings().

    Returns:
        The wired LedgerApp
    """
    settings = settings or get_settings()
    logging.getLogger("household_ledger").setLevel(settings.log_level)

    return LedgerApp(
        store=store or InMemoryLedgerStore(max_rows_per_call=settings.store_page_size),
        user_provider=user_provider or StaticUserProvider(),
        settings=settings,
        audit_logger=AuditLogger(audit_storage or InMemoryAuditStorage()),
        clock=clock,
        id_generator=id_generator,
    )
