"""
Transaction Ledger

The core write and read paths for ledger rows.

DESIGN DECISION: Nothing is written until everything is validated.
- Single creates delegate validation and insert to the store's atomic
  validated-insert procedure when it exists, with a client-side path of
  identical semantics as fallback.
- Batches are all-or-nothing: every record is validated, every failure
  is reported, and only a fully valid batch reaches the single bulk insert.
- Transfer legs are deleted as a unit: the full closure over shared
  transfer ids and links is computed first, then soft-deleted in one
  set-based statement.

The obligation auto-classification hook is the one best-effort step.
Its failure is logged, audited and queued for reconciliation, and never
undoes or fails the write that triggered it.
"""

from typing import TYPE_CHECKING, Any, Iterable, Optional

from pydantic import BaseModel

from household_ledger.errors import (
    BatchValidationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from household_ledger.ledger.base import LedgerService, translate_procedure_error
from household_ledger.ledger.configuration import ConfigurationReader
from household_ledger.models.ledger import (
    Account,
    BatchFailure,
    BulkDeleteResult,
    Category,
    DeleteResult,
    Transaction,
    TransactionCreate,
    TransactionFilters,
    TransactionQuery,
    TransactionStatus,
    TransactionType,
    TransactionUpdate,
    User,
    ValidationIssue,
    promote_date,
)
from household_ledger.services.identity import TRANSACTION_ID_PREFIX
from household_ledger.services.storage import ProcedureError, ProcedureUnavailableError
from household_ledger.validation import (
    TransactionValidator,
    issue_messages,
    parse_request,
    raise_for_issues,
)

if TYPE_CHECKING:
    from household_ledger.ledger.obligations import ObligationTracker


UPDATABLE_FIELDS = frozenset({
    "account_id",
    "category_id",
    "date",
    "amount",
    "currency",
    "description",
    "type",
    "status",
    "linked_transaction_id",
})


def _record_dict(record: Any) -> dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json", exclude_unset=True)
    if isinstance(record, dict):
        return dict(record)
    return {"value": repr(record)}


class TransactionLedger(LedgerService):
    """
    Create, read, update and soft-delete transactions for the current owner.

    Args:
        configuration: Settings reader shared with the obligation tracker
        validator: Two-stage validator; a default one is built if omitted
    """

    def __init__(
        self,
        *args: Any,
        configuration: ConfigurationReader,
        validator: Optional[TransactionValidator] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self._configuration = configuration
        self._validator = validator or TransactionValidator()
        self._obligation_hook: Optional["ObligationTracker"] = None

    def set_obligation_hook(self, tracker: Optional["ObligationTracker"]) -> None:
        self._obligation_hook = tracker

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _reject(self, user_id: Optional[str], operation: str, issues: list[ValidationIssue]) -> None:
        errors = [issue for issue in issues if issue.severity == "error"]
        if not errors:
            return
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                user_id, operation, [issue.model_dump() for issue in errors]
            )
        raise_for_issues(errors)

    def _build(self, user: User, request: TransactionCreate, now) -> Transaction:
        when = promote_date(request.date, now.timetz()) if request.date is not None else now
        return Transaction(
            transaction_id=self._generate_id(TRANSACTION_ID_PREFIX),
            user_id=user.id,
            account_id=request.account_id,
            category_id=request.category_id or None,
            date=when,
            amount=request.amount,
            currency=request.currency,
            description=request.description,
            type=TransactionType(request.type),
            status=TransactionStatus(request.status),
            transfer_id=request.transfer_id,
            linked_transaction_id=request.linked_transaction_id,
            created_at=now,
            updated_at=now,
        )

    async def _load_references(
        self,
        user_id: str,
        account_ids: Iterable[Optional[str]],
        category_ids: Iterable[Optional[str]],
    ) -> tuple[dict[str, Account], dict[str, Category]]:
        """Resolve accounts and categories in two bulk lookups."""
        wanted_accounts = sorted({a for a in account_ids if a})
        wanted_categories = sorted({c for c in category_ids if c})

        accounts: dict[str, Account] = {}
        if wanted_accounts:
            rows = await self._read(self._store.get_accounts_by_ids, user_id, wanted_accounts)
            accounts = {a.account_id: a for a in rows}

        categories: dict[str, Category] = {}
        if wanted_categories:
            rows = await self._read(self._store.get_categories_by_ids, user_id, wanted_categories)
            categories = {c.category_id: c for c in rows}
        return accounts, categories

    async def _run_side_effects(self, user: User, transaction: Transaction) -> None:
        """Best-effort obligation auto-classification for one created row."""
        if self._obligation_hook is None:
            return
        try:
            await self._obligation_hook.auto_classify(transaction)
        except Exception as e:
            self._logger.error(
                "obligation_auto_classify_failed",
                transaction_id=transaction.transaction_id,
                error=str(e),
                exc_info=True,
            )
            self._obligation_hook.queue_reconciliation(user.id, transaction.transaction_id)
            if self._audit_logger:
                await self._audit_logger.log_side_effect_failed(
                    user.id, "obligation_auto_classify", transaction.transaction_id, str(e)
                )

    # =========================================================================
    # Create
    # =========================================================================

    async def create_transaction(self, data: Any, run_side_effects: bool = True) -> Transaction:
        """
        Validate and insert one transaction.

        Args:
            data: TransactionCreate or an equivalent mapping
            run_side_effects: Run obligation auto-classification afterwards

        Raises:
            ValidationError: Missing/invalid fields
            NotFoundError: Account or category missing or inactive
            ConflictError: Currency differs from the account currency
        """
        request = parse_request(TransactionCreate, data)
        user = await self._require_user()
        await self._reject(user.id, "create_transaction", self._validator.validate_fields(request))

        transaction = self._build(user, request, self._now())
        if self._settings.prefer_validated_insert:
            try:
                created = await self._store.create_transaction_validated(transaction)
            except ProcedureUnavailableError:
                self._logger.info("validated_insert_unavailable", transaction_id=transaction.transaction_id)
                created = await self._insert_checked(user, request, transaction)
            except ProcedureError as e:
                raise translate_procedure_error(e) from e
        else:
            created = await self._insert_checked(user, request, transaction)

        self._logger.info(
            "transaction_created",
            transaction_id=created.transaction_id,
            account_id=created.account_id,
        )
        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                user.id, created.transaction_id, created.amount, created.currency
            )

        if run_side_effects:
            await self._run_side_effects(user, created)
        return created

    async def _insert_checked(
        self,
        user: User,
        request: TransactionCreate,
        transaction: Transaction,
    ) -> Transaction:
        """Client-side reference validation followed by a plain insert."""
        category_ids = [] if request.is_transfer_leg else [request.category_id]
        accounts, categories = await self._load_references(user.id, [request.account_id], category_ids)
        await self._reject(
            user.id,
            "create_transaction",
            self._validator.validate_references(request, accounts, categories),
        )
        inserted = await self._store.insert_transactions([transaction])
        return inserted[0]

    async def batch_create_transactions(
        self,
        records: Optional[list[Any]],
        run_side_effects: bool = True,
    ) -> list[Transaction]:
        """
        All-or-nothing creation of up to `max_batch_size` transactions.

        Raises:
            BatchValidationError: One or more records are invalid; its
                `failures` lists every invalid index and nothing is written
        """
        user = await self._require_user()
        if not records:
            raise ValidationError("Transactions array is required")
        if len(records) > self._settings.max_batch_size:
            raise ValidationError(f"Maximum {self._settings.max_batch_size} transactions per batch")

        failures: list[BatchFailure] = []
        requests: list[Optional[TransactionCreate]] = []
        for index, record in enumerate(records):
            try:
                requests.append(parse_request(TransactionCreate, record))
            except ValidationError as e:
                requests.append(None)
                failures.append(BatchFailure(index=index, record=_record_dict(record), errors=[str(e)]))

        parsed = [r for r in requests if r is not None]
        accounts, categories = await self._load_references(
            user.id,
            (r.account_id for r in parsed),
            (r.category_id for r in parsed if not r.is_transfer_leg),
        )

        for index, request in enumerate(requests):
            if request is None:
                continue
            errors = issue_messages(self._validator.validate(request, accounts, categories))
            if errors:
                failures.append(BatchFailure(
                    index=index,
                    record=_record_dict(request),
                    errors=errors,
                ))

        if failures:
            failures.sort(key=lambda failure: failure.index)
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    user.id,
                    "batch_create_transactions",
                    [failure.model_dump(mode="json") for failure in failures],
                )
            raise BatchValidationError(failures)

        now = self._now()
        created = await self._store.insert_transactions([self._build(user, r, now) for r in parsed])

        self._logger.info("transactions_batch_created", count=len(created))
        if self._audit_logger:
            await self._audit_logger.log_transactions_batch_created(
                user.id, [t.transaction_id for t in created]
            )

        if run_side_effects:
            for transaction in created:
                await self._run_side_effects(user, transaction)
        return created

    # =========================================================================
    # Read
    # =========================================================================

    def _build_query(self, filters: TransactionFilters) -> TransactionQuery:
        date_from = filters.start_date
        date_before = None
        month = filters.month_range()
        if month:
            date_from = max(date_from, month[0]) if date_from else month[0]
            date_before = month[1]

        return TransactionQuery(
            account_id=filters.account_id,
            category_id=filters.category_id,
            status=filters.status,
            type=filters.type,
            date_from=date_from,
            date_to=filters.end_date,
            date_before=date_before,
            since=filters.since,
        )

    async def get_transactions(self, filters: Any = None) -> list[Transaction]:
        """
        List transactions, newest first.

        Without `limit`/`offset` every matching row is returned, however
        many store calls that takes. With `since`, rows soft-deleted after
        the cursor are included so sync clients learn about deletions.
        """
        request = parse_request(TransactionFilters, filters)
        user = await self._require_user()
        query = self._build_query(request)

        if request.is_paginated:
            return await self._read(
                self._store.query_transactions,
                user.id,
                query,
                limit=request.limit or self._settings.default_page_limit,
                offset=request.offset or 0,
            )
        return await self._fetch_all(user.id, query)

    async def query_all(self, query: TransactionQuery) -> list[Transaction]:
        """Every row matching a store-level query, for the current owner."""
        user = await self._require_user()
        return await self._fetch_all(user.id, query)

    async def _fetch_all(self, user_id: str, query: TransactionQuery) -> list[Transaction]:
        return await self._read_all(self._store.query_transactions, user_id, query)

    async def get_transaction(self, transaction_id: str) -> Transaction:
        """A live transaction; soft-deleted rows are reported as not found."""
        user = await self._require_user()
        transaction = await self._read(self._store.get_transaction, user.id, str(transaction_id))
        if transaction is None:
            raise NotFoundError("Transaction not found")
        return transaction

    # =========================================================================
    # Update
    # =========================================================================

    async def update_transaction(self, transaction_id: str, updates: Any) -> Transaction:
        """
        Apply only the fields present in `updates`.

        A bare date keeps the original time of day. Clearing the category
        is allowed only for transfer legs.
        """
        request = parse_request(TransactionUpdate, updates)
        user = await self._require_user()
        existing = await self.get_transaction(transaction_id)

        fields = request.model_fields_set & UPDATABLE_FIELDS
        if not fields:
            return existing

        for field, label in (("account_id", "Account ID"), ("amount", "Amount"), ("currency", "Currency"),
                             ("type", "Type"), ("status", "Status"), ("date", "Date")):
            if field in fields and getattr(request, field) in (None, ""):
                raise ValidationError(f"{label} cannot be empty")

        def pick(field: str, current: Any) -> Any:
            return getattr(request, field) if field in fields else current

        merged = TransactionCreate(
            account_id=pick("account_id", existing.account_id),
            category_id=pick("category_id", existing.category_id),
            amount=pick("amount", existing.amount),
            currency=pick("currency", existing.currency),
            description=pick("description", existing.description) or "",
            type=pick("type", existing.type.value),
            status=pick("status", existing.status.value),
        )

        if ("category_id" in fields or "type" in fields) and not merged.category_id and not merged.is_transfer_leg:
            raise ValidationError("Category ID is required unless the type is Transfer Out or Transfer In")

        issues = [
            issue for issue in self._validator.validate_fields(merged)
            if issue.issue_type != "missing"
        ]
        await self._reject(user.id, "update_transaction", issues)

        check_account = "account_id" in fields or "currency" in fields
        check_category = "category_id" in fields and bool(merged.category_id)
        if check_account or check_category:
            accounts, categories = await self._load_references(
                user.id,
                [merged.account_id] if check_account else [],
                [merged.category_id] if check_category and not merged.is_transfer_leg else [],
            )
            await self._reject(
                user.id,
                "update_transaction",
                self._validator.validate_references(
                    merged, accounts, categories,
                    check_account=check_account,
                    check_category=check_category,
                ),
            )

        changes: dict[str, Any] = {}
        for field in fields:
            if field == "date":
                changes["date"] = promote_date(request.date, existing.date.timetz())
            elif field == "type":
                changes["type"] = TransactionType(merged.type)
            elif field == "status":
                changes["status"] = TransactionStatus(merged.status)
            elif field == "currency":
                changes["currency"] = merged.currency
            elif field == "description":
                changes["description"] = merged.description
            elif field in ("category_id", "linked_transaction_id"):
                changes[field] = getattr(request, field) or None
            else:
                changes[field] = getattr(request, field)

        rows = await self._store.update_transaction(
            user.id, existing.transaction_id, changes, self._now()
        )
        if not rows:
            raise NotFoundError("Transaction not found or could not be updated")
        if len(rows) > 1:
            raise ConflictError(f"Update affected {len(rows)} transactions")

        if self._audit_logger:
            await self._audit_logger.log_transaction_updated(
                user.id, existing.transaction_id, sorted(changes)
            )
        return rows[0]

    # =========================================================================
    # Delete
    # =========================================================================

    async def find_transfer_closure(self, rows: list[Transaction]) -> list[Transaction]:
        """
        Every live row connected to `rows` through shared transfer ids or
        links in either direction, `rows` included.
        """
        user = await self._require_user()
        return await self._closure(user.id, rows)

    async def _closure(self, user_id: str, rows: list[Transaction]) -> list[Transaction]:
        found: dict[str, Transaction] = {t.transaction_id: t for t in rows}
        frontier = list(rows)
        while frontier:
            transfer_ids = sorted({t.transfer_id for t in frontier if t.transfer_id})
            linked_ids: set[str] = set()
            for t in frontier:
                linked_ids.add(t.transaction_id)
                if t.linked_transaction_id:
                    linked_ids.add(t.linked_transaction_id)

            candidates: list[Transaction] = []
            if transfer_ids:
                candidates.extend(await self._read(
                    self._store.find_transactions_by_transfer_ids, user_id, transfer_ids
                ))
            candidates.extend(await self._read(
                self._store.find_linked_transactions, user_id, sorted(linked_ids)
            ))

            frontier = []
            for candidate in candidates:
                if candidate.transaction_id not in found:
                    found[candidate.transaction_id] = candidate
                    frontier.append(candidate)
        return list(found.values())

    async def _soft_delete(self, user_id: str, ids: list[str]) -> list[str]:
        deleted = set(await self._store.soft_delete_transactions(user_id, ids, self._now()))
        return [i for i in ids if i in deleted]

    async def delete_transaction(self, transaction_id: str) -> DeleteResult:
        """
        Soft-delete one transaction, or every leg of the transfer it
        belongs to.
        """
        user = await self._require_user()
        existing = await self.get_transaction(transaction_id)

        if existing.is_transfer_leg:
            closure = await self._closure(user.id, [existing])
            ids = [t.transaction_id for t in closure]
        else:
            ids = [existing.transaction_id]

        deleted = await self._soft_delete(user.id, ids)
        self._logger.info("transactions_deleted", requested=existing.transaction_id, deleted=deleted)
        if self._audit_logger:
            await self._audit_logger.log_transactions_deleted(user.id, [existing.transaction_id], deleted)

        return DeleteResult(
            transaction_id=existing.transaction_id,
            linked_transaction_id=existing.linked_transaction_id,
            deleted_transaction_ids=deleted,
        )

    async def bulk_delete_transactions(self, transaction_ids: Optional[list[Any]]) -> BulkDeleteResult:
        """
        Soft-delete up to `max_bulk_delete` transactions, cascading through
        transfer legs.

        Raises:
            NotFoundError: None of the ids is a live transaction
        """
        user = await self._require_user()
        if not transaction_ids:
            raise ValidationError("Transaction IDs array is required")
        if len(transaction_ids) > self._settings.max_bulk_delete:
            raise ValidationError(
                f"Maximum {self._settings.max_bulk_delete} transactions can be deleted at once"
            )

        requested = list(dict.fromkeys(str(i) for i in transaction_ids))
        rows = await self._read(self._store.get_transactions_by_ids, user.id, requested)
        if not rows:
            raise NotFoundError("No valid transactions found to delete")

        order = {transaction_id: position for position, transaction_id in enumerate(requested)}
        rows.sort(key=lambda t: order[t.transaction_id])

        transfer_rows = [t for t in rows if t.is_transfer_leg]
        closure = await self._closure(user.id, transfer_rows) if transfer_rows else []
        ids = list(dict.fromkeys([t.transaction_id for t in rows] + [t.transaction_id for t in closure]))

        deleted = await self._soft_delete(user.id, ids)
        if self._audit_logger:
            await self._audit_logger.log_transactions_deleted(user.id, requested, deleted)

        return BulkDeleteResult(
            requested_transaction_ids=requested,
            deleted_transaction_ids=deleted,
        )
