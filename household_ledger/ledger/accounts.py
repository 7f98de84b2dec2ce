"""
Account Ledger

Accounts are money containers with a fixed currency. Balances are never
stored: they are derived from the opening balance and the signed amounts
of the account's live transactions.

DESIGN DECISION: Currency and opening balance freeze as soon as one
live transaction references the account. Changing either afterwards
would silently rewrite every historical balance.
"""

from decimal import Decimal
from typing import Any, Optional

from household_ledger.errors import ConflictError, NotFoundError, ValidationError
from household_ledger.ledger.base import LedgerService, translate_procedure_error
from household_ledger.ledger.configuration import ConfigurationReader
from household_ledger.models.audit import AuditEventType
from household_ledger.models.ledger import (
    Account,
    AccountBalance,
    AccountBalances,
    AccountCreate,
    AccountFilters,
    AccountStatus,
    AccountType,
    AccountUpdate,
    TransactionQuery,
    enum_values,
)
from household_ledger.services.identity import ACCOUNT_ID_PREFIX
from household_ledger.services.storage import ProcedureError, ProcedureUnavailableError
from household_ledger.validation import is_currency_code, parse_request


ACCOUNT_TYPES = enum_values(AccountType)
ACCOUNT_STATUSES = enum_values(AccountStatus)


def _check_enums(type_: Optional[str], status: Optional[str]) -> None:
    if type_ is not None and type_ not in ACCOUNT_TYPES:
        raise ValidationError(f"Invalid account type. Must be one of: {', '.join(ACCOUNT_TYPES)}")
    if status is not None and status not in ACCOUNT_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ACCOUNT_STATUSES)}")


class AccountLedger(LedgerService):
    """Account CRUD and derived balances for the current owner."""

    def __init__(self, *args: Any, configuration: Optional[ConfigurationReader] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._configuration = configuration

    async def create_account(self, data: Any) -> Account:
        request = parse_request(AccountCreate, data)
        user = await self._require_user()

        if not request.name or not request.type or not request.currency:
            raise ValidationError("Name, type, and currency are required")
        _check_enums(request.type, request.status)
        if not is_currency_code(request.currency):
            raise ValidationError("Currency must be a 3-letter ISO code")

        now = self._now()
        account = Account(
            account_id=self._generate_id(ACCOUNT_ID_PREFIX),
            user_id=user.id,
            name=request.name,
            type=AccountType(request.type),
            currency=request.currency,
            opening_balance=request.opening_balance,
            status=AccountStatus(request.status),
            created_at=now,
            updated_at=now,
        )
        created = await self._store.insert_account(account)

        if self._audit_logger:
            await self._audit_logger.log_account_event(
                AuditEventType.ACCOUNT_CREATED,
                user.id,
                created.account_id,
                {"currency": created.currency, "opening_balance": str(created.opening_balance)},
            )
        return created

    async def list_accounts(self, filters: Any = None) -> list[Account]:
        """Accounts newest first, optionally filtered by status, type or currency."""
        request = parse_request(AccountFilters, filters)
        user = await self._require_user()
        return await self._read_all(
            self._store.list_accounts,
            user.id,
            status=request.status,
            type=request.type,
            currency=request.currency,
        )

    async def get_account(self, account_id: str) -> Account:
        user = await self._require_user()
        account = await self._read(self._store.get_account, user.id, str(account_id))
        if account is None:
            raise NotFoundError("Account not found")
        return account

    async def update_account(self, account_id: str, updates: Any) -> Account:
        """
        Apply only the fields present in `updates`.

        Raises:
            ConflictError: Currency or opening balance change on an account
                with live transactions
        """
        request = parse_request(AccountUpdate, updates)
        user = await self._require_user()
        account = await self.get_account(account_id)

        fields = request.model_fields_set
        if not fields:
            return account

        _check_enums(
            request.type if "type" in fields else None,
            request.status if "status" in fields else None,
        )
        if "currency" in fields and not is_currency_code(request.currency):
            raise ValidationError("Currency must be a 3-letter ISO code")
        if "name" in fields and not request.name:
            raise ValidationError("Name cannot be empty")
        if "opening_balance" in fields and request.opening_balance is None:
            raise ValidationError("Opening balance cannot be empty")

        currency_changes = "currency" in fields and request.currency != account.currency
        balance_changes = (
            "opening_balance" in fields and request.opening_balance != account.opening_balance
        )
        if currency_changes or balance_changes:
            has_transactions = await self._read(
                self._store.account_has_transactions, user.id, account.account_id
            )
            if has_transactions and currency_changes:
                raise ConflictError("Cannot change currency for account with existing transactions")
            if has_transactions and balance_changes:
                raise ConflictError("Cannot change opening balance for account with existing transactions")

        changes: dict[str, Any] = {}
        for field in fields:
            value = getattr(request, field)
            if field == "type":
                value = AccountType(value)
            elif field == "status":
                value = AccountStatus(value)
            changes[field] = value

        updated = await self._store.update_account(user.id, account.account_id, changes, self._now())
        if updated is None:
            raise NotFoundError("Account not found")

        if self._audit_logger:
            await self._audit_logger.log_account_event(
                AuditEventType.ACCOUNT_UPDATED, user.id, account.account_id, {"fields": sorted(changes)}
            )
        return updated

    async def delete_account(self, account_id: str) -> None:
        user = await self._require_user()
        account_id = str(account_id)

        if await self._read(self._store.account_has_transactions, user.id, account_id):
            raise ConflictError("Cannot delete account with existing transactions")
        if not await self._store.delete_account(user.id, account_id):
            raise NotFoundError("Account not found")

        if self._audit_logger:
            await self._audit_logger.log_account_event(AuditEventType.ACCOUNT_DELETED, user.id, account_id)

    async def get_account_balance(self, account_id: str) -> AccountBalance:
        """
        Opening balance plus the signed amounts of all live transactions.

        Delegates the aggregation to the store's balance procedure and
        falls back to summing client-side when the store has none.
        """
        user = await self._require_user()
        account = await self.get_account(account_id)
        return await self._balance_of(user.id, account)

    async def get_all_account_balances(self) -> AccountBalances:
        """Balances of every Active account, totalled per currency."""
        user = await self._require_user()
        accounts = await self._read_all(
            self._store.list_accounts, user.id, status=AccountStatus.ACTIVE.value
        )
        base_currency = (
            await self._configuration.get_base_currency()
            if self._configuration
            else self._settings.default_base_currency
        )

        result = AccountBalances(base_currency=base_currency)
        for account in accounts:
            balance = await self._balance_of(user.id, account)
            result.accounts.append(balance)
            result.totals_by_currency[balance.currency] = (
                result.totals_by_currency.get(balance.currency, Decimal("0")) + balance.current_balance
            )
        return result

    async def _balance_of(self, user_id: str, account: Account) -> AccountBalance:
        try:
            balance = await self._read(
                self._store.calculate_account_balance, user_id, account.account_id
            )
        except ProcedureUnavailableError:
            self._logger.info("balance_procedure_unavailable", account_id=account.account_id)
            balance = account.opening_balance + await self._sum_transactions(user_id, account.account_id)
        except ProcedureError as e:
            raise translate_procedure_error(e) from e

        return AccountBalance(
            account_id=account.account_id,
            name=account.name,
            opening_balance=account.opening_balance,
            current_balance=balance,
            currency=account.currency,
            last_updated=self._now(),
        )

    async def _sum_transactions(self, user_id: str, account_id: str) -> Decimal:
        rows = await self._read_all(self._store.query_transactions, user_id, TransactionQuery(account_id=account_id))
        return sum((t.amount for t in rows), Decimal("0"))
