"""
Obligation Tracker

Tracks money borrowed from or lent to a counterparty, and every payment
made against it.

DESIGN DECISION: Amounts on a record only ever move through
`record_payment`, which writes a real transaction and then applies the
payment through the store's atomic `apply_obligation_payment`. If the
second step fails, the payment transaction is soft-deleted again so the
ledger never shows money moving for a payment the record does not know
about.

Records are also created automatically when a transaction is booked
under the configured borrowing or lending category. That step runs after
the transaction is already written; failures are queued here and retried
by `reconcile_pending`.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from household_ledger.audit import create_correlation_id
from household_ledger.errors import ConflictError, NotFoundError, StateError, ValidationError
from household_ledger.ledger.base import LedgerService, translate_procedure_error
from household_ledger.ledger.configuration import ConfigurationReader
from household_ledger.ledger.transactions import TransactionLedger
from household_ledger.models.audit import AuditEventType
from household_ledger.models.ledger import (
    CurrencyTotals,
    ObligationCreate,
    ObligationFilters,
    ObligationRecord,
    ObligationStatus,
    ObligationSummary,
    ObligationType,
    ObligationUpdate,
    PaymentResult,
    Transaction,
    TransactionStatus,
    TransactionType,
    enum_values,
)
from household_ledger.parsing import parse_entity_name
from household_ledger.services.identity import OBLIGATION_ID_PREFIX
from household_ledger.services.storage import DuplicateError, ProcedureError
from household_ledger.validation import is_currency_code, parse_request


OBLIGATION_TYPES = enum_values(ObligationType)
OBLIGATION_STATUSES = enum_values(ObligationStatus)

AMOUNT_FIELDS = frozenset({
    "original_amount",
    "paid_amount",
    "remaining_amount",
    "payment_transaction_ids",
})

FULL_PAYMENT_NOTE = "Final payment - marking as fully paid"


def opening_status(amount: Decimal) -> ObligationStatus:
    """A record with nothing owed starts out settled."""
    return ObligationStatus.ACTIVE if amount > 0 else ObligationStatus.FULLY_PAID


def _payment_amount(amount: Any) -> Optional[Decimal]:
    if amount is None or isinstance(amount, bool):
        return None
    try:
        return Decimal(str(amount))
    except InvalidOperation:
        return None


class ObligationTracker(LedgerService):
    """
    Borrowing and lending records for the current owner.

    Args:
        transactions: Ledger used to book payment transactions
        configuration: Source of the obligation category settings
    """

    def __init__(
        self,
        *args: Any,
        transactions: TransactionLedger,
        configuration: ConfigurationReader,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self._transactions = transactions
        self._configuration = configuration
        # (user_id, transaction_id) -> None, kept in arrival order
        self._pending: dict[tuple[str, str], None] = {}

    # =========================================================================
    # Auto-classification
    # =========================================================================

    def queue_reconciliation(self, user_id: str, transaction_id: str) -> None:
        self._pending[(user_id, transaction_id)] = None

    @property
    def pending_reconciliations(self) -> list[tuple[str, str]]:
        return list(self._pending)

    async def auto_classify(self, transaction: Transaction) -> Optional[ObligationRecord]:
        """
        Open a record for a transaction booked under an obligation category.

        Returns the record for the transaction (newly created or already
        existing), or None when the transaction is not an obligation.
        """
        category_map = await self._configuration.load_obligation_categories()
        if not category_map.has_obligation_categories or not transaction.category_id:
            return None

        record_type = category_map.classify(transaction.category_id)
        if record_type is None:
            return None

        user = await self._require_user()
        existing = await self._read(
            self._store.get_obligation_by_transaction, user.id, transaction.transaction_id
        )
        if existing is not None:
            return existing

        parsed = parse_entity_name(transaction.description)
        amount = abs(transaction.amount)
        now = self._now()
        record = ObligationRecord(
            record_id=self._generate_id(OBLIGATION_ID_PREFIX),
            user_id=user.id,
            type=record_type,
            original_transaction_id=transaction.transaction_id,
            entity_name=parsed.entity_name,
            currency=transaction.currency,
            original_amount=amount,
            paid_amount=Decimal("0"),
            remaining_amount=amount,
            status=opening_status(amount),
            notes=parsed.notes,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self._store.insert_obligation(record)
        except DuplicateError:
            return await self._read(
                self._store.get_obligation_by_transaction, user.id, transaction.transaction_id
            )

        self._logger.info(
            "obligation_auto_created",
            record_id=created.record_id,
            transaction_id=transaction.transaction_id,
            type=record_type.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_obligation_event(
                AuditEventType.OBLIGATION_CREATED,
                user.id,
                created.record_id,
                {"source": "auto_classify", "transaction_id": transaction.transaction_id},
            )
        return created

    async def reconcile_pending(self) -> list[ObligationRecord]:
        """
        Retry queued auto-classifications for the current owner.

        Entries whose transaction has since been deleted are dropped.
        Entries that fail again stay queued.
        """
        user = await self._require_user()
        records: list[ObligationRecord] = []

        for key in [k for k in self._pending if k[0] == user.id]:
            transaction_id = key[1]
            try:
                transaction = await self._transactions.get_transaction(transaction_id)
            except NotFoundError:
                self._pending.pop(key, None)
                continue

            try:
                record = await self.auto_classify(transaction)
            except Exception as e:
                self._logger.warning(
                    "obligation_reconcile_failed",
                    transaction_id=transaction_id,
                    error=str(e),
                )
                continue

            self._pending.pop(key, None)
            if record is not None:
                records.append(record)
        return records

    # =========================================================================
    # Records
    # =========================================================================

    async def create_record(self, data: Any) -> ObligationRecord:
        request = parse_request(ObligationCreate, data)
        user = await self._require_user()

        if (
            not request.type
            or not request.original_transaction_id
            or not request.entity_name
            or request.original_amount is None
            or not request.currency
        ):
            raise ValidationError(
                "Type, original transaction ID, entity name, original amount, and currency are required"
            )
        if request.type not in OBLIGATION_TYPES:
            raise ValidationError(f"Invalid type. Must be one of: {', '.join(OBLIGATION_TYPES)}")
        if not is_currency_code(request.currency):
            raise ValidationError("Currency must be a 3-letter ISO code")

        original = await self._read(
            self._store.get_transaction, user.id, request.original_transaction_id
        )
        if original is None:
            raise NotFoundError("Original transaction not found")

        amount = abs(request.original_amount)
        now = self._now()
        record = ObligationRecord(
            record_id=self._generate_id(OBLIGATION_ID_PREFIX),
            user_id=user.id,
            type=ObligationType(request.type),
            original_transaction_id=original.transaction_id,
            entity_name=request.entity_name,
            currency=request.currency,
            original_amount=amount,
            paid_amount=Decimal("0"),
            remaining_amount=amount,
            status=opening_status(amount),
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self._store.insert_obligation(record)
        except DuplicateError as e:
            raise ConflictError("An obligation record already exists for this transaction") from e

        if self._audit_logger:
            await self._audit_logger.log_obligation_event(
                AuditEventType.OBLIGATION_CREATED,
                user.id,
                created.record_id,
                {"source": "manual", "transaction_id": original.transaction_id},
            )
        return created

    async def list_records(self, filters: Any = None) -> list[ObligationRecord]:
        """Records newest first; `entity_name` matches case-insensitive substrings."""
        request = parse_request(ObligationFilters, filters)
        user = await self._require_user()
        return await self._read_all(
            self._store.list_obligations,
            user.id,
            type=request.type,
            status=request.status,
            currency=request.currency,
            entity_name=request.entity_name,
            since=request.since,
        )

    async def get_record(self, record_id: str) -> ObligationRecord:
        user = await self._require_user()
        record = await self._read(self._store.get_obligation, user.id, str(record_id))
        if record is None:
            raise NotFoundError("Record not found")
        return record

    async def update_record(self, record_id: str, updates: Any) -> ObligationRecord:
        """
        Change entity name, notes or status.

        Raises:
            ValidationError: An amount field was supplied
            StateError: Any status change other than Active -> Cancelled
        """
        if isinstance(updates, dict) and AMOUNT_FIELDS & set(updates):
            raise ValidationError("Amount fields can only change through recorded payments")
        request = parse_request(ObligationUpdate, updates)
        user = await self._require_user()
        record = await self.get_record(record_id)

        fields = request.model_fields_set
        if not fields:
            return record

        changes: dict[str, Any] = {}
        if "entity_name" in fields:
            if not request.entity_name:
                raise ValidationError("Entity name cannot be empty")
            changes["entity_name"] = request.entity_name
        if "notes" in fields:
            changes["notes"] = request.notes or ""
        if "status" in fields:
            if request.status not in OBLIGATION_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(OBLIGATION_STATUSES)}")
            status = ObligationStatus(request.status)
            if status != record.status:
                if not (record.status == ObligationStatus.ACTIVE and status == ObligationStatus.CANCELLED):
                    raise StateError(
                        f"Cannot change status from {record.status.value} to {status.value}"
                    )
                changes["status"] = status

        updated = await self._store.update_obligation(user.id, record.record_id, changes, self._now())
        if updated is None:
            raise NotFoundError("Record not found")

        if self._audit_logger:
            await self._audit_logger.log_obligation_event(
                AuditEventType.OBLIGATION_UPDATED, user.id, record.record_id, {"fields": sorted(changes)}
            )
        return updated

    async def delete_record(self, record_id: str) -> None:
        """Delete a record permanently. Its transactions stay in the ledger."""
        user = await self._require_user()
        if not await self._store.delete_obligation(user.id, str(record_id)):
            raise NotFoundError("Record not found")

        if self._audit_logger:
            await self._audit_logger.log_obligation_event(
                AuditEventType.OBLIGATION_DELETED, user.id, str(record_id)
            )

    # =========================================================================
    # Payments
    # =========================================================================

    async def record_payment(self, record_id: str, amount: Any, notes: str = "") -> PaymentResult:
        """
        Book a payment transaction and apply it to the record.

        Borrowing payments leave the original account as an Expense;
        lending payments come back in as Income. Paying more than the
        remaining amount is accepted and closes the record.

        Raises:
            StateError: Non-positive amount, or the record is not Active
            NotFoundError: Record or its original transaction is missing
        """
        payment_amount = _payment_amount(amount)
        if payment_amount is None or payment_amount <= 0:
            raise StateError("Payment amount is required and must be positive")

        user = await self._require_user()
        record = await self.get_record(record_id)
        if record.status != ObligationStatus.ACTIVE:
            raise StateError("Can only record payments for active records")

        original = await self._read(
            self._store.get_transaction, user.id, record.original_transaction_id
        )
        if original is None:
            raise NotFoundError("Original transaction not found")

        category_map = await self._configuration.load_obligation_categories()
        category_id = category_map.payment_category_for(record.type) or original.category_id

        if record.type == ObligationType.BORROWING:
            transaction_type = TransactionType.EXPENSE
            signed_amount = -payment_amount
        else:
            transaction_type = TransactionType.INCOME
            signed_amount = payment_amount

        description = f"Payment for {record.type.value.lower()} to {record.entity_name}"
        if notes:
            description = f"{description}: {notes}"

        correlation_id = create_correlation_id()
        payment = await self._transactions.create_transaction(
            {
                "account_id": original.account_id,
                "category_id": category_id,
                "amount": signed_amount,
                "currency": record.currency,
                "description": description,
                "type": transaction_type.value,
                "status": TransactionStatus.CLEARED.value,
            },
            run_side_effects=False,
        )

        try:
            updated = await self._store.apply_obligation_payment(
                user.id, record.record_id, payment_amount, payment.transaction_id, self._now()
            )
        except Exception as e:
            self._logger.error(
                "obligation_payment_failed",
                record_id=record.record_id,
                payment_transaction_id=payment.transaction_id,
                error=str(e),
            )
            await self._store.soft_delete_transactions(user.id, [payment.transaction_id], self._now())
            if self._audit_logger:
                await self._audit_logger.log_payment_compensated(
                    user.id, record.record_id, payment.transaction_id, str(e), correlation_id
                )
            if isinstance(e, ProcedureError):
                raise translate_procedure_error(e) from e
            raise

        self._logger.info(
            "obligation_payment_recorded",
            record_id=record.record_id,
            amount=str(payment_amount),
            remaining=str(updated.remaining_amount),
            status=updated.status.value,
        )
        if self._audit_logger:
            await self._audit_logger.log_payment_recorded(
                user.id,
                record.record_id,
                payment.transaction_id,
                payment_amount,
                updated.remaining_amount,
                correlation_id,
            )
        return PaymentResult(record=updated, payment_transaction=payment)

    async def mark_as_fully_paid(self, record_id: str) -> PaymentResult:
        """Pay off exactly the remaining amount."""
        record = await self.get_record(record_id)
        if record.status != ObligationStatus.ACTIVE:
            raise StateError("Can only mark active records as fully paid")
        if record.remaining_amount <= 0:
            raise StateError("Record is already fully paid")
        return await self.record_payment(record.record_id, record.remaining_amount, FULL_PAYMENT_NOTE)

    # =========================================================================
    # Reporting
    # =========================================================================

    async def get_summary(
        self,
        type: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> ObligationSummary:
        """Totals per type and per entity, plus per-currency totals per type."""
        user = await self._require_user()
        records = await self._read_all(
            self._store.list_obligations,
            user.id,
            type=type,
            currency=currency.strip().upper() if currency else None,
        )

        summary = ObligationSummary()
        for record in records:
            by_currency = summary.by_currency.setdefault(record.currency, CurrencyTotals())
            if record.type == ObligationType.BORROWING:
                summary.borrowing.add(record)
                by_currency.borrowing.add(record)
            else:
                summary.lending.add(record)
                by_currency.lending.add(record)
        return summary
