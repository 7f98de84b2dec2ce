"""
Tests for borrowing/lending records and their payments.
"""

from decimal import Decimal

import pytest

from conftest import seed_account, seed_category
from household_ledger.audit import AuditLogger
from household_ledger.errors import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from household_ledger.models.audit import AuditEventType
from household_ledger.models.ledger import ObligationStatus, ObligationType, TransactionType
from household_ledger.orchestrator import LedgerApp
from household_ledger.services.storage import (
    InMemoryLedgerStore,
    ProcedureError,
    StoreConnectionError,
)


class FailingPaymentStore(InMemoryLedgerStore):
    """Store whose payment application always fails with `error`."""

    def __init__(self, error, **kwargs):
        super().__init__(**kwargs)
        self.error = error

    async def apply_obligation_payment(self, *args, **kwargs):
        raise self.error


class FlakyObligationStore(InMemoryLedgerStore):
    """Store that refuses the first `failures` obligation inserts."""

    def __init__(self, failures=1, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    async def insert_obligation(self, record):
        if self.failures:
            self.failures -= 1
            raise StoreConnectionError("connection reset")
        return await super().insert_obligation(record)


async def configure(app, payment_category=False):
    """Accounts and categories with borrowing and lending configured."""
    account = await seed_account(app)
    borrowed = await seed_category(app, name="Borrowed", type="Income")
    lent = await seed_category(app, name="Lent", type="Expense")
    settings = {
        "BorrowingCategoryID": borrowed.category_id,
        "LendingCategoryID": lent.category_id,
    }
    if payment_category:
        repayments = await seed_category(app, name="Repayments")
        settings["BorrowingPaymentCategoryID"] = repayments.category_id
    await app.update_settings(settings)
    return account, borrowed, lent


async def borrow(app, account, category, amount="500", description="Loan @Abebe for rent"):
    return await app.create_transaction({
        "account_id": account.account_id,
        "category_id": category.category_id,
        "amount": amount,
        "currency": "ETB",
        "type": "Income",
        "description": description,
    })


async def only_record(app):
    records = await app.list_obligations()
    assert len(records) == 1
    return records[0]


class TestAutoClassify:
    """Records opened from categorized transactions."""

    @pytest.mark.asyncio
    async def test_borrowing_category_opens_record(self, app):
        account, borrowed, _ = await configure(app)
        transaction = await borrow(app, account, borrowed)

        record = await only_record(app)

        assert record.record_id.startswith("BL_")
        assert record.type == ObligationType.BORROWING
        assert record.original_transaction_id == transaction.transaction_id
        assert record.entity_name == "Abebe"
        assert record.notes == "Loan for rent"
        assert record.original_amount == Decimal("500")
        assert record.paid_amount == Decimal("0")
        assert record.remaining_amount == Decimal("500")
        assert record.status == ObligationStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_lending_uses_absolute_amount(self, app):
        account, _, lent = await configure(app)
        await app.create_transaction({
            "account_id": account.account_id,
            "category_id": lent.category_id,
            "amount": "-250",
            "currency": "ETB",
            "description": "@Kebede",
        })

        record = await only_record(app)
        assert record.type == ObligationType.LENDING
        assert record.original_amount == Decimal("250")

    @pytest.mark.asyncio
    async def test_unconfigured_or_unrelated_is_noop(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        await app.create_transaction({
            "account_id": account.account_id,
            "category_id": category.category_id,
            "amount": "-5",
            "currency": "ETB",
        })
        assert await app.list_obligations() == []

    @pytest.mark.asyncio
    async def test_classification_is_idempotent(self, app):
        account, borrowed, _ = await configure(app)
        transaction = await borrow(app, account, borrowed)

        again = await app.obligations.auto_classify(transaction)

        record = await only_record(app)
        assert again.record_id == record.record_id

    @pytest.mark.asyncio
    async def test_batch_rows_are_classified(self, app):
        account, borrowed, lent = await configure(app)
        await app.batch_create_transactions([
            {"account_id": account.account_id, "category_id": borrowed.category_id,
             "amount": "100", "currency": "ETB", "type": "Income", "description": "@Abebe"},
            {"account_id": account.account_id, "category_id": lent.category_id,
             "amount": "-40", "currency": "ETB", "description": "@Kebede"},
        ])

        records = await app.list_obligations()
        assert {r.entity_name for r in records} == {"Abebe", "Kebede"}

    @pytest.mark.asyncio
    async def test_zero_amount_opens_settled_record(self, app):
        """Nothing owed means the record starts out fully paid."""
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed, amount="0", description="@Abebe")

        record = await only_record(app)

        assert record.remaining_amount == Decimal("0")
        assert record.status == ObligationStatus.FULLY_PAID
        with pytest.raises(StateError, match="Can only record payments for active records"):
            await app.record_payment(record.record_id, "1")


class TestSideEffectFailures:
    """The hook never fails the write that triggered it."""

    @pytest.mark.asyncio
    async def test_failure_is_queued_and_reconciled(self, provider, user, settings, clock, audit_storage):
        store = FlakyObligationStore(failures=1)
        app = LedgerApp(
            store=store,
            user_provider=provider,
            settings=settings,
            audit_logger=AuditLogger(audit_storage),
            clock=clock,
        )
        account, borrowed, _ = await configure(app)

        transaction = await borrow(app, account, borrowed)

        assert (await app.get_transaction(transaction.transaction_id)).amount == Decimal("500")
        assert await app.list_obligations() == []
        assert app.obligations.pending_reconciliations == [(user.id, transaction.transaction_id)]
        assert any(
            e.event_type == AuditEventType.SIDE_EFFECT_FAILED and e.entity_id == transaction.transaction_id
            for e in audit_storage.events
        )

        reconciled = await app.reconcile_pending()

        assert [r.original_transaction_id for r in reconciled] == [transaction.transaction_id]
        assert app.obligations.pending_reconciliations == []
        assert await app.reconcile_pending() == []
        await only_record(app)

    @pytest.mark.asyncio
    async def test_repeated_failure_stays_queued(self, provider, settings, clock):
        app = LedgerApp(
            store=FlakyObligationStore(failures=2),
            user_provider=provider,
            settings=settings,
            clock=clock,
        )
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)

        assert await app.reconcile_pending() == []
        assert len(app.obligations.pending_reconciliations) == 1

    @pytest.mark.asyncio
    async def test_deleted_transaction_leaves_queue(self, provider, settings, clock):
        app = LedgerApp(
            store=FlakyObligationStore(failures=1),
            user_provider=provider,
            settings=settings,
            clock=clock,
        )
        account, borrowed, _ = await configure(app)
        transaction = await borrow(app, account, borrowed)
        await app.delete_transaction(transaction.transaction_id)

        assert await app.reconcile_pending() == []
        assert app.obligations.pending_reconciliations == []
        assert await app.list_obligations() == []


class TestPayments:
    """Payment recording and the payoff state machine."""

    @pytest.mark.asyncio
    async def test_partial_then_final_payment(self, app, audit_storage):
        """500 borrowed, 300 then 200 repaid closes the record."""
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        first = await app.record_payment(record.record_id, "300")
        assert first.record.paid_amount == Decimal("300")
        assert first.record.remaining_amount == Decimal("200")
        assert first.record.status == ObligationStatus.ACTIVE
        assert first.payment_transaction.amount == Decimal("-300")
        assert first.payment_transaction.type == TransactionType.EXPENSE
        assert first.payment_transaction.account_id == account.account_id
        assert first.payment_transaction.description == "Payment for borrowing to Abebe"

        second = await app.record_payment(record.record_id, Decimal("200"), notes="last one")
        assert second.record.remaining_amount == Decimal("0")
        assert second.record.status == ObligationStatus.FULLY_PAID
        assert second.record.payment_transaction_ids == [
            first.payment_transaction.transaction_id,
            second.payment_transaction.transaction_id,
        ]
        assert second.payment_transaction.description == "Payment for borrowing to Abebe: last one"

        with pytest.raises(StateError, match="Can only record payments for active records"):
            await app.record_payment(record.record_id, "1")

        balance = await app.get_account_balance(account.account_id)
        assert balance.current_balance == Decimal("0")
        assert any(e.event_type == AuditEventType.PAYMENT_RECORDED for e in audit_storage.events)

    @pytest.mark.asyncio
    async def test_payment_events_share_a_correlation_id(self, app, audit_storage):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        result = await app.record_payment(record.record_id, "50")

        recorded = [e for e in audit_storage.events if e.event_type == AuditEventType.PAYMENT_RECORDED]
        assert len(recorded) == 1
        assert recorded[0].correlation_id is not None
        related = await audit_storage.get_events_by_correlation_id(recorded[0].correlation_id)
        assert [e.event_id for e in related] == [recorded[0].event_id]
        assert related[0].details["payment_transaction_id"] == result.payment_transaction.transaction_id

    @pytest.mark.asyncio
    async def test_payment_does_not_open_a_new_record(self, app):
        """Payments booked under the borrowing category are not classified."""
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        result = await app.record_payment(record.record_id, "100")

        assert result.payment_transaction.category_id == borrowed.category_id
        await only_record(app)

    @pytest.mark.asyncio
    async def test_configured_payment_category_is_used(self, app):
        account, borrowed, _ = await configure(app, payment_category=True)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        result = await app.record_payment(record.record_id, "100")

        assert result.payment_transaction.category_id != borrowed.category_id
        category = await app.get_category(result.payment_transaction.category_id)
        assert category.name == "Repayments"

    @pytest.mark.asyncio
    async def test_lending_payment_is_income(self, app):
        account, _, lent = await configure(app)
        await app.create_transaction({
            "account_id": account.account_id,
            "category_id": lent.category_id,
            "amount": "-100",
            "currency": "ETB",
            "description": "@Kebede",
        })
        record = await only_record(app)

        result = await app.record_payment(record.record_id, "40")

        assert result.payment_transaction.type == TransactionType.INCOME
        assert result.payment_transaction.amount == Decimal("40")
        assert result.payment_transaction.description == "Payment for lending to Kebede"

    @pytest.mark.asyncio
    async def test_overpayment_closes_record(self, app):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        result = await app.record_payment(record.record_id, "600")

        assert result.record.paid_amount == Decimal("600")
        assert result.record.remaining_amount == Decimal("-100")
        assert result.record.status == ObligationStatus.FULLY_PAID

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [None, 0, "-5", "abc"])
    async def test_non_positive_amount_rejected(self, app, amount):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        with pytest.raises(StateError, match="must be positive"):
            await app.record_payment(record.record_id, amount)

    @pytest.mark.asyncio
    async def test_mark_as_fully_paid(self, app):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)
        await app.record_payment(record.record_id, "120")

        result = await app.mark_as_fully_paid(record.record_id)

        assert result.payment_transaction.amount == Decimal("-380")
        assert result.payment_transaction.description.endswith(": Final payment - marking as fully paid")
        assert result.record.status == ObligationStatus.FULLY_PAID
        with pytest.raises(StateError, match="Can only mark active records as fully paid"):
            await app.mark_as_fully_paid(record.record_id)

    @pytest.mark.asyncio
    async def test_failed_application_compensates(self, provider, settings, clock, audit_storage):
        """The payment transaction is soft-deleted when the record update fails."""
        app = LedgerApp(
            store=FailingPaymentStore(StoreConnectionError("connection reset")),
            user_provider=provider,
            settings=settings,
            audit_logger=AuditLogger(audit_storage),
            clock=clock,
        )
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        with pytest.raises(StoreConnectionError):
            await app.record_payment(record.record_id, "100")

        assert (await app.get_account_balance(account.account_id)).current_balance == Decimal("500")
        assert len(await app.get_transactions()) == 1
        assert (await app.get_obligation(record.record_id)).paid_amount == Decimal("0")
        assert any(e.event_type == AuditEventType.PAYMENT_COMPENSATED for e in audit_storage.events)

    @pytest.mark.asyncio
    async def test_store_state_rejection_is_state_error(self, provider, settings, clock):
        app = LedgerApp(
            store=FailingPaymentStore(ProcedureError("state", "Can only record payments for active records")),
            user_provider=provider,
            settings=settings,
            clock=clock,
        )
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        with pytest.raises(StateError):
            await app.record_payment(record.record_id, "100")
        assert len(await app.get_transactions()) == 1


class TestRecords:
    """Manual record management."""

    @pytest.mark.asyncio
    async def test_create_record_validation(self, app):
        with pytest.raises(ValidationError, match="Type, original transaction ID, entity name"):
            await app.create_obligation({"type": "Borrowing"})
        with pytest.raises(ValidationError, match="Invalid type"):
            await app.create_obligation({
                "type": "Gift", "original_transaction_id": "TXN_1", "entity_name": "A",
                "original_amount": "1", "currency": "ETB",
            })
        with pytest.raises(NotFoundError, match="Original transaction not found"):
            await app.create_obligation({
                "type": "Borrowing", "original_transaction_id": "TXN_missing", "entity_name": "A",
                "original_amount": "1", "currency": "ETB",
            })

    @pytest.mark.asyncio
    async def test_zero_amount_manual_record_is_settled(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        transaction = await app.create_transaction({
            "account_id": account.account_id,
            "category_id": category.category_id,
            "amount": "0",
            "currency": "ETB",
        })

        record = await app.create_obligation({
            "type": "Lending",
            "original_transaction_id": transaction.transaction_id,
            "entity_name": "Kebede",
            "original_amount": "0",
            "currency": "ETB",
        })

        assert record.status == ObligationStatus.FULLY_PAID
        with pytest.raises(StateError, match="Can only mark active records as fully paid"):
            await app.mark_as_fully_paid(record.record_id)

    @pytest.mark.asyncio
    async def test_create_record_for_existing_transaction(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        transaction = await app.create_transaction({
            "account_id": account.account_id,
            "category_id": category.category_id,
            "amount": "-70",
            "currency": "ETB",
        })
        payload = {
            "type": "Lending",
            "original_transaction_id": transaction.transaction_id,
            "entity_name": "Sara",
            "original_amount": "-70",
            "currency": "etb",
        }

        record = await app.create_obligation(payload)

        assert record.original_amount == Decimal("70")
        assert record.currency == "ETB"
        with pytest.raises(ConflictError):
            await app.create_obligation(payload)

    @pytest.mark.asyncio
    async def test_update_metadata_and_cancel(self, app):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        updated = await app.update_obligation(record.record_id, {"entity_name": "Abebe K.", "notes": "rent"})
        assert updated.entity_name == "Abebe K."

        cancelled = await app.update_obligation(record.record_id, {"status": "Cancelled"})
        assert cancelled.status == ObligationStatus.CANCELLED

        with pytest.raises(StateError):
            await app.update_obligation(record.record_id, {"status": "Active"})
        with pytest.raises(StateError):
            await app.record_payment(record.record_id, "10")

    @pytest.mark.asyncio
    async def test_amount_fields_cannot_be_updated(self, app):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)

        with pytest.raises(ValidationError, match="recorded payments"):
            await app.update_obligation(record.record_id, {"paid_amount": "500"})

    @pytest.mark.asyncio
    async def test_fully_paid_cannot_be_cancelled(self, app):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)
        await app.mark_as_fully_paid(record.record_id)

        with pytest.raises(StateError):
            await app.update_obligation(record.record_id, {"status": "Cancelled"})

    @pytest.mark.asyncio
    async def test_delete_keeps_transactions(self, app):
        account, borrowed, _ = await configure(app)
        await borrow(app, account, borrowed)
        record = await only_record(app)
        await app.record_payment(record.record_id, "100")

        await app.delete_obligation(record.record_id)

        assert await app.list_obligations() == []
        assert len(await app.get_transactions()) == 2
        with pytest.raises(NotFoundError):
            await app.get_obligation(record.record_id)

    @pytest.mark.asyncio
    async def test_list_filters(self, app):
        account, borrowed, lent = await configure(app)
        await borrow(app, account, borrowed, description="@Abebe")
        await borrow(app, account, borrowed, description="@Tigist")

        matches = await app.list_obligations({"entity_name": "abe"})
        assert [r.entity_name for r in matches] == ["Abebe"]
        assert await app.list_obligations({"type": "Lending"}) == []


class TestSummary:
    """Aggregated totals."""

    @pytest.mark.asyncio
    async def test_summary_totals(self, app):
        account, borrowed, lent = await configure(app)
        usd = await seed_account(app, name="Dollar", currency="USD")
        await borrow(app, account, borrowed, amount="500", description="@Abebe")
        await borrow(app, account, borrowed, amount="200", description="@Abebe")
        await app.create_transaction({
            "account_id": usd.account_id,
            "category_id": lent.category_id,
            "amount": "-50",
            "currency": "USD",
            "description": "@Sam",
        })
        abebe = (await app.list_obligations({"entity_name": "Abebe"}))[0]
        await app.record_payment(abebe.record_id, "100")

        summary = await app.get_obligation_summary()

        assert summary.borrowing.count == 2
        assert summary.borrowing.total == Decimal("700")
        assert summary.borrowing.paid == Decimal("100")
        assert summary.borrowing.remaining == Decimal("600")
        assert summary.borrowing.by_entity["Abebe"].count == 2
        assert summary.lending.total == Decimal("50")
        assert summary.by_currency["USD"].lending.remaining == Decimal("50")
        assert summary.by_currency["ETB"].borrowing.total == Decimal("700")

        usd_only = await app.get_obligation_summary(currency="usd")
        assert usd_only.borrowing.count == 0
        assert usd_only.lending.count == 1

    @pytest.mark.asyncio
    async def test_totals_span_every_store_page(self, provider, settings, clock):
        """A store returning two rows per call still yields complete totals."""
        app = LedgerApp(
            store=InMemoryLedgerStore(max_rows_per_call=2),
            user_provider=provider,
            settings=settings,
            clock=clock,
        )
        account, borrowed, _ = await configure(app)
        for name in ("A", "B", "C"):
            await borrow(app, account, borrowed, amount="100", description=f"@{name}")

        summary = await app.get_obligation_summary()
        records = await app.list_obligations()

        assert summary.borrowing.count == 3
        assert summary.borrowing.total == Decimal("300")
        assert sorted(r.entity_name for r in records) == ["A", "B", "C"]
