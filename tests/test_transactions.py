"""
Tests for the transaction ledger.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from conftest import seed_account, seed_category
from household_ledger.errors import (
    BatchValidationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from household_ledger.models.audit import AuditEventType
from household_ledger.models.ledger import TransactionType
from household_ledger.orchestrator import LedgerApp
from household_ledger.services.storage import InMemoryLedgerStore


@pytest.fixture(params=[True, False], ids=["validated-insert", "client-side"])
def any_store_app(request, provider, settings, clock):
    """Ledger whose store does or does not offer the validated insert."""
    return LedgerApp(
        store=InMemoryLedgerStore(supports_validated_insert=request.param),
        user_provider=provider,
        settings=settings,
        clock=clock,
    )


async def expense(app, account, category, amount="-10", **extra):
    return await app.create_transaction({
        "account_id": account.account_id,
        "category_id": category.category_id,
        "amount": amount,
        "currency": account.currency,
        **extra,
    })


class TestCreateTransaction:
    """Tests for single creates."""

    @pytest.mark.asyncio
    async def test_defaults(self, app, audit_storage):
        """Type defaults to Expense and status to Cleared; the write is audited."""
        account = await seed_account(app)
        category = await seed_category(app)

        created = await expense(app, account, category)

        assert created.transaction_id.startswith("TXN_")
        assert created.type == TransactionType.EXPENSE
        assert created.status.value == "Cleared"
        assert created.amount == Decimal("-10")
        assert any(
            e.event_type == AuditEventType.TRANSACTION_CREATED and e.entity_id == created.transaction_id
            for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_category_required_for_regular_types(self, app):
        account = await seed_account(app)
        with pytest.raises(ValidationError, match="Account ID, category ID, amount, and currency are required"):
            await app.create_transaction({
                "account_id": account.account_id,
                "amount": "-10",
                "currency": "ETB",
            })

    @pytest.mark.asyncio
    async def test_transfer_leg_needs_no_category(self, app):
        account = await seed_account(app)
        created = await app.create_transaction({
            "account_id": account.account_id,
            "amount": "-10",
            "currency": "ETB",
            "type": "Transfer Out",
        })
        assert created.category_id is None

    @pytest.mark.asyncio
    async def test_invalid_enums(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        with pytest.raises(ValidationError, match="Invalid transaction type"):
            await expense(app, account, category, type="Gift")
        with pytest.raises(ValidationError, match="Invalid transaction status"):
            await expense(app, account, category, status="Lost")

    @pytest.mark.asyncio
    async def test_currency_mismatch_conflicts(self, any_store_app):
        """Both insert paths reject a currency that differs from the account."""
        account = await seed_account(any_store_app)
        category = await seed_category(any_store_app)
        with pytest.raises(ConflictError, match="Currency must match account currency: ETB"):
            await any_store_app.create_transaction({
                "account_id": account.account_id,
                "category_id": category.category_id,
                "amount": "-10",
                "currency": "USD",
            })

    @pytest.mark.asyncio
    async def test_inactive_account_not_found(self, any_store_app):
        account = await seed_account(any_store_app)
        category = await seed_category(any_store_app)
        await any_store_app.update_account(account.account_id, {"status": "Closed"})
        with pytest.raises(NotFoundError, match="Account not found or is not active"):
            await expense(any_store_app, account, category)

    @pytest.mark.asyncio
    async def test_unknown_category_not_found(self, any_store_app):
        account = await seed_account(any_store_app)
        with pytest.raises(NotFoundError, match="Category not found or is not active"):
            await any_store_app.create_transaction({
                "account_id": account.account_id,
                "category_id": "CAT_missing",
                "amount": "-10",
                "currency": "ETB",
            })

    @pytest.mark.asyncio
    async def test_bare_date_takes_current_time_of_day(self, app):
        """A calendar date is stamped with the clock's time."""
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category, date="2024-03-01")
        assert created.date == datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_full_datetime_kept(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category, date="2024-03-01T18:45:00Z")
        assert created.date == datetime(2024, 3, 1, 18, 45, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_missing_date_is_now(self, app, clock):
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category)
        assert created.date == clock()


class TestBatchCreate:
    """Tests for all-or-nothing batches."""

    @pytest.mark.asyncio
    async def test_valid_batch_is_inserted(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        records = [
            {"account_id": account.account_id, "category_id": category.category_id,
             "amount": f"-{i}", "currency": "ETB"}
            for i in range(1, 4)
        ]

        created = await app.batch_create_transactions(records)

        assert len(created) == 3
        assert len(await app.get_transactions()) == 3

    @pytest.mark.asyncio
    async def test_invalid_batch_reports_every_index_and_writes_nothing(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        good = {"account_id": account.account_id, "category_id": category.category_id,
                "amount": "-1", "currency": "ETB"}
        records = [
            good,
            {**good, "amount": None},
            {**good, "account_id": "ACC_missing"},
            good,
            {**good, "currency": "USD"},
        ]

        with pytest.raises(BatchValidationError) as exc_info:
            await app.batch_create_transactions(records)

        assert exc_info.value.invalid_indexes == [1, 2, 4]
        assert exc_info.value.failures[2].errors == ["Currency must match account currency: ETB"]
        assert await app.get_transactions() == []

    @pytest.mark.asyncio
    async def test_malformed_record_is_reported(self, app):
        """Schema failures become failures for their index."""
        account = await seed_account(app)
        category = await seed_category(app)
        records = [
            {"account_id": account.account_id, "category_id": category.category_id,
             "amount": "not a number", "currency": "ETB"},
        ]
        with pytest.raises(BatchValidationError) as exc_info:
            await app.batch_create_transactions(records)
        assert exc_info.value.invalid_indexes == [0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("records", [None, []])
    async def test_empty_batch_rejected(self, app, records):
        with pytest.raises(ValidationError, match="Transactions array is required"):
            await app.batch_create_transactions(records)

    @pytest.mark.asyncio
    async def test_oversized_batch_rejected(self, app):
        with pytest.raises(ValidationError, match="Maximum 1000 transactions per batch"):
            await app.batch_create_transactions([{}] * 1001)


class TestListing:
    """Tests for filters, ordering and paging."""

    @pytest.mark.asyncio
    async def test_unpaginated_listing_pages_through_store_cap(self, provider, settings, clock):
        """All rows come back even when the store caps each call."""
        app = LedgerApp(
            store=InMemoryLedgerStore(max_rows_per_call=2),
            user_provider=provider,
            settings=settings,
            clock=clock,
        )
        account = await seed_account(app)
        category = await seed_category(app)
        for day in range(1, 6):
            await expense(app, account, category, date=f"2024-03-0{day}")

        rows = await app.get_transactions()

        assert len(rows) == 5
        assert [r.date.day for r in rows] == [5, 4, 3, 2, 1]

    @pytest.mark.asyncio
    async def test_explicit_paging(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        for day in range(1, 6):
            await expense(app, account, category, date=f"2024-03-0{day}")

        page = await app.get_transactions({"limit": 2, "offset": 1})
        assert [r.date.day for r in page] == [4, 3]

        rest = await app.get_transactions({"offset": 3})
        assert [r.date.day for r in rest] == [2, 1]

    @pytest.mark.asyncio
    async def test_date_filters(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        for value in ("2024-02-29", "2024-03-01", "2024-03-31", "2024-04-01"):
            await expense(app, account, category, date=value)

        march = await app.get_transactions({"month": "2024-03"})
        assert [r.date.date() for r in march] == [date(2024, 3, 31), date(2024, 3, 1)]

        window = await app.get_transactions({"start_date": "2024-03-01", "end_date": "2024-03-01"})
        assert [r.date.date() for r in window] == [date(2024, 3, 1)]

    @pytest.mark.asyncio
    async def test_invalid_month_rejected(self, app):
        with pytest.raises(ValidationError):
            await app.get_transactions({"month": "2024-13"})

    @pytest.mark.asyncio
    async def test_field_filters(self, app):
        account = await seed_account(app)
        food = await seed_category(app, name="Food")
        rent = await seed_category(app, name="Rent")
        await expense(app, account, food)
        await expense(app, account, rent, status="Pending")

        assert len(await app.get_transactions({"category_id": food.category_id})) == 1
        assert len(await app.get_transactions({"status": "Pending"})) == 1
        assert len(await app.get_transactions({"account_id": account.account_id})) == 2

    @pytest.mark.asyncio
    async def test_get_transaction_excludes_deleted(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category)
        await app.delete_transaction(created.transaction_id)

        with pytest.raises(NotFoundError, match="Transaction not found"):
            await app.get_transaction(created.transaction_id)


class TestUpdateTransaction:
    """Tests for field-level updates."""

    @pytest.mark.asyncio
    async def test_bare_date_keeps_original_time(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category, date="2024-03-01T18:45:00Z")

        updated = await app.update_transaction(created.transaction_id, {"date": "2024-03-05"})

        assert updated.date == datetime(2024, 3, 5, 18, 45, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_only_present_fields_change(self, app, clock):
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category, description="Coffee")
        clock.advance(minutes=1)

        updated = await app.update_transaction(created.transaction_id, {"amount": "-12.50"})

        assert updated.amount == Decimal("-12.50")
        assert updated.description == "Coffee"
        assert updated.updated_at == clock()

    @pytest.mark.asyncio
    async def test_no_fields_returns_unchanged(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category)
        assert await app.update_transaction(created.transaction_id, {}) == created

    @pytest.mark.asyncio
    async def test_clearing_category_only_for_transfer_legs(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        created = await expense(app, account, category)

        with pytest.raises(ValidationError, match="Category ID is required"):
            await app.update_transaction(created.transaction_id, {"category_id": None})

        leg = await app.update_transaction(
            created.transaction_id, {"category_id": None, "type": "Transfer Out"}
        )
        assert leg.category_id is None

    @pytest.mark.asyncio
    async def test_account_change_revalidates_currency(self, app):
        etb = await seed_account(app)
        usd = await seed_account(app, name="Dollar", currency="USD")
        category = await seed_category(app)
        created = await expense(app, etb, category)

        with pytest.raises(ConflictError):
            await app.update_transaction(created.transaction_id, {"account_id": usd.account_id})

        moved = await app.update_transaction(
            created.transaction_id, {"account_id": usd.account_id, "currency": "USD"}
        )
        assert moved.account_id == usd.account_id

    @pytest.mark.asyncio
    async def test_update_missing_transaction(self, app):
        with pytest.raises(NotFoundError):
            await app.update_transaction("TXN_missing", {"amount": "1"})


class TestDeleteTransaction:
    """Tests for soft deletes."""

    @pytest.mark.asyncio
    async def test_plain_delete_touches_one_row(self, app):
        account = await seed_account(app)
        category = await seed_category(app)
        first = await expense(app, account, category)
        second = await expense(app, account, category)

        result = await app.delete_transaction(first.transaction_id)

        assert result.deleted_transaction_ids == [first.transaction_id]
        remaining = await app.get_transactions()
        assert [t.transaction_id for t in remaining] == [second.transaction_id]

    @pytest.mark.asyncio
    async def test_bulk_delete_limits(self, app):
        with pytest.raises(ValidationError, match="Transaction IDs array is required"):
            await app.bulk_delete_transactions([])
        with pytest.raises(ValidationError, match="Maximum 100 transactions can be deleted at once"):
            await app.bulk_delete_transactions([f"TXN_{i}" for i in range(101)])
        with pytest.raises(NotFoundError, match="No valid transactions found to delete"):
            await app.bulk_delete_transactions(["TXN_missing"])

    @pytest.mark.asyncio
    async def test_bulk_delete_skips_unknown_ids(self, app, audit_storage):
        account = await seed_account(app)
        category = await seed_category(app)
        first = await expense(app, account, category)
        second = await expense(app, account, category)

        result = await app.bulk_delete_transactions(
            [second.transaction_id, "TXN_missing", first.transaction_id]
        )

        assert result.deleted_transaction_ids == [second.transaction_id, first.transaction_id]
        assert await app.get_transactions() == []
        assert any(e.event_type == AuditEventType.TRANSACTIONS_DELETED for e in audit_storage.events)
