"""
Tests for transfers and the transfer-leg cascade.
"""

from decimal import Decimal
from itertools import count

import pytest

from conftest import seed_account, seed_category
from household_ledger.errors import NotFoundError, ValidationError
from household_ledger.models.ledger import TransactionType
from household_ledger.orchestrator import LedgerApp
from household_ledger.services.storage import DuplicateError, InMemoryLedgerStore


async def two_accounts(app, to_currency="ETB"):
    source = await seed_account(app, name="Checking", opening_balance=Decimal("1000"))
    destination = await seed_account(app, name="Savings", currency=to_currency)
    return source, destination


async def transfer(app, source, destination, **extra):
    payload = {"from_account_id": source.account_id, "to_account_id": destination.account_id}
    payload.update(extra)
    return await app.create_transfer(payload)


class TestCreateTransfer:
    """Tests for creating transfers."""

    @pytest.mark.asyncio
    async def test_same_currency_transfer(self, app):
        """Two cross-linked legs with opposite signs and one transfer id."""
        source, destination = await two_accounts(app)

        result = await transfer(app, source, destination, amount="200")

        out_leg, in_leg = result.transfer_out, result.transfer_in
        assert result.transfer_id.startswith("TRF_")
        assert out_leg.type == TransactionType.TRANSFER_OUT
        assert in_leg.type == TransactionType.TRANSFER_IN
        assert out_leg.amount == Decimal("-200")
        assert in_leg.amount == Decimal("200")
        assert out_leg.transfer_id == in_leg.transfer_id == result.transfer_id
        assert out_leg.linked_transaction_id == in_leg.transaction_id
        assert in_leg.linked_transaction_id == out_leg.transaction_id
        assert out_leg.description == "Transfer to Savings"
        assert in_leg.description == "Transfer from Checking"
        assert result.implied_rate is None

        assert (await app.get_account_balance(source.account_id)).current_balance == Decimal("800")
        assert (await app.get_account_balance(destination.account_id)).current_balance == Decimal("200")

    @pytest.mark.asyncio
    async def test_negative_amount_is_normalized(self, app):
        source, destination = await two_accounts(app)
        result = await transfer(app, source, destination, amount="-50")
        assert result.transfer_out.amount == Decimal("-50")
        assert result.transfer_in.amount == Decimal("50")

    @pytest.mark.asyncio
    async def test_cross_currency_requires_both_amounts(self, app):
        source, destination = await two_accounts(app, to_currency="USD")

        with pytest.raises(ValidationError, match="Both fromAmount and toAmount are required"):
            await transfer(app, source, destination, amount="100")

        result = await transfer(app, source, destination, from_amount="5700", to_amount="100")
        assert result.transfer_out.currency == "ETB"
        assert result.transfer_in.currency == "USD"
        assert result.transfer_in.amount == Decimal("100")
        assert result.implied_rate == Decimal("100") / Decimal("5700")

    @pytest.mark.asyncio
    async def test_same_currency_requires_amount(self, app):
        source, destination = await two_accounts(app)
        with pytest.raises(ValidationError, match="Amount is required for same-currency transfers"):
            await transfer(app, source, destination)

    @pytest.mark.asyncio
    async def test_accounts_must_differ(self, app):
        source, _ = await two_accounts(app)
        with pytest.raises(ValidationError, match="must be different"):
            await transfer(app, source, source, amount="1")
        with pytest.raises(ValidationError, match="are required"):
            await app.create_transfer({"from_account_id": source.account_id, "amount": "1"})

    @pytest.mark.asyncio
    async def test_inactive_account_rejected(self, app):
        source, destination = await two_accounts(app)
        await app.update_account(destination.account_id, {"status": "Closed"})
        with pytest.raises(NotFoundError, match="One or both accounts not found or inactive"):
            await transfer(app, source, destination, amount="1")

    @pytest.mark.asyncio
    async def test_failed_insert_writes_neither_leg(self, provider, settings, clock):
        """The pair is written in one insert, so a failure leaves no half transfer."""
        sequence = count()

        def ids(prefix):
            # Both transaction legs get the same id, which the store rejects
            if prefix == "TXN":
                return "TXN_collision"
            return f"{prefix}_{next(sequence)}"

        app = LedgerApp(
            store=InMemoryLedgerStore(),
            user_provider=provider,
            settings=settings,
            clock=clock,
            id_generator=ids,
        )
        source, destination = await two_accounts(app)

        with pytest.raises(DuplicateError):
            await transfer(app, source, destination, amount="10")
        assert await app.get_transactions() == []


class TestReadTransfers:
    """Tests for listing transfers."""

    @pytest.mark.asyncio
    async def test_get_transfers_groups_legs(self, app):
        source, destination = await two_accounts(app)
        first = await transfer(app, source, destination, amount="10", date="2024-03-01")
        second = await transfer(app, destination, source, amount="5", date="2024-03-02")

        transfers = await app.get_transfers()

        assert [t.transfer_id for t in transfers] == [second.transfer_id, first.transfer_id]
        assert transfers[1].transfer_out.transaction_id == first.transfer_out.transaction_id
        assert transfers[1].transfer_in.transaction_id == first.transfer_in.transaction_id
        assert str(transfers[1].date) == "2024-03-01"

    @pytest.mark.asyncio
    async def test_account_filters(self, app):
        source, destination = await two_accounts(app)
        await transfer(app, source, destination, amount="10")
        back = await transfer(app, destination, source, amount="5")

        from_destination = await app.get_transfers({"from_account_id": destination.account_id})
        assert [t.transfer_id for t in from_destination] == [back.transfer_id]

        into_source = await app.get_transfers({"to_account_id": source.account_id})
        assert [t.transfer_id for t in into_source] == [back.transfer_id]

    @pytest.mark.asyncio
    async def test_regular_transactions_are_not_transfers(self, app):
        source, destination = await two_accounts(app)
        category = await seed_category(app)
        await app.create_transaction({
            "account_id": source.account_id,
            "category_id": category.category_id,
            "amount": "-1",
            "currency": "ETB",
        })
        assert await app.get_transfers() == []

    @pytest.mark.asyncio
    async def test_get_transfer_by_id(self, app):
        source, destination = await two_accounts(app)
        created = await transfer(app, source, destination, amount="10")

        found = await app.get_transfer(created.transfer_id)
        assert found.transfer_out.transaction_id == created.transfer_out.transaction_id

        with pytest.raises(NotFoundError):
            await app.get_transfer("TRF_missing")


class TestTransferCascade:
    """Deleting any leg removes the whole transfer."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("leg", ["transfer_out", "transfer_in"])
    async def test_delete_either_leg_deletes_both(self, app, leg):
        source, destination = await two_accounts(app)
        created = await transfer(app, source, destination, amount="200")
        target = getattr(created, leg)

        result = await app.delete_transaction(target.transaction_id)

        assert sorted(result.deleted_transaction_ids) == sorted([
            created.transfer_out.transaction_id,
            created.transfer_in.transaction_id,
        ])
        assert result.deleted_transaction_ids[0] == target.transaction_id
        assert await app.get_transactions() == []
        assert (await app.get_account_balance(source.account_id)).current_balance == Decimal("1000")
        assert (await app.get_account_balance(destination.account_id)).current_balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_link_only_leg_is_found(self, app):
        """Legs connected only through links are still part of the closure."""
        source, destination = await two_accounts(app)
        out_leg = await app.create_transaction({
            "account_id": source.account_id,
            "amount": "-30",
            "currency": "ETB",
            "type": "Transfer Out",
        })
        in_leg = await app.create_transaction({
            "account_id": destination.account_id,
            "amount": "30",
            "currency": "ETB",
            "type": "Transfer In",
            "linked_transaction_id": out_leg.transaction_id,
        })

        result = await app.delete_transaction(out_leg.transaction_id)

        assert sorted(result.deleted_transaction_ids) == sorted([
            out_leg.transaction_id, in_leg.transaction_id
        ])

    @pytest.mark.asyncio
    async def test_bulk_delete_expands_transfers(self, app):
        source, destination = await two_accounts(app)
        created = await transfer(app, source, destination, amount="200")

        result = await app.bulk_delete_transactions([created.transfer_in.transaction_id])

        assert result.requested_transaction_ids == [created.transfer_in.transaction_id]
        assert set(result.deleted_transaction_ids) == {
            created.transfer_out.transaction_id,
            created.transfer_in.transaction_id,
        }

    @pytest.mark.asyncio
    async def test_delete_transfer(self, app):
        source, destination = await two_accounts(app)
        created = await transfer(app, source, destination, amount="200")

        result = await app.delete_transfer(created.transfer_out.transaction_id)

        assert result.transfer_id == created.transfer_id
        assert len(result.transaction_ids) == 2
        assert await app.get_transfers() == []
        with pytest.raises(NotFoundError, match="already been deleted"):
            await app.delete_transfer(created.transfer_out.transaction_id)

    @pytest.mark.asyncio
    async def test_delete_transfer_rejects_regular_rows(self, app):
        source, _ = await two_accounts(app)
        category = await seed_category(app)
        row = await app.create_transaction({
            "account_id": source.account_id,
            "category_id": category.category_id,
            "amount": "-1",
            "currency": "ETB",
        })
        with pytest.raises(ValidationError, match="Transaction is not part of a transfer"):
            await app.delete_transfer(row.transaction_id)
