"""
Transfer Service

A transfer is a pair of transactions: a Transfer Out leg leaving the
source account and a Transfer In leg entering the destination account.

DESIGN DECISION: Both legs are built with pre-generated ids so they can
reference each other before anything is written, then inserted in one
bulk insert. A half-written transfer is never visible.
"""

from typing import Any

from household_ledger.errors import NotFoundError, ValidationError
from household_ledger.ledger.base import LedgerService
from household_ledger.ledger.transactions import TransactionLedger
from household_ledger.models.ledger import (
    Transaction,
    Transfer,
    TransferCreate,
    TransferDeleteResult,
    TransferFilters,
    TransferResult,
    TransactionQuery,
    TransactionStatus,
    TransactionType,
    enum_values,
    promote_date,
)
from household_ledger.services.identity import TRANSACTION_ID_PREFIX, TRANSFER_ID_PREFIX
from household_ledger.validation import parse_request


TRANSACTION_STATUSES = enum_values(TransactionStatus)


def _group(rows: list[Transaction]) -> list[Transfer]:
    """Group legs by transfer id, keeping the order of first appearance."""
    grouped: dict[str, Transfer] = {}
    for row in rows:
        transfer = grouped.setdefault(row.transfer_id, Transfer(transfer_id=row.transfer_id))
        if row.type == TransactionType.TRANSFER_OUT and transfer.transfer_out is None:
            transfer.transfer_out = row
        elif row.type == TransactionType.TRANSFER_IN and transfer.transfer_in is None:
            transfer.transfer_in = row

    for transfer in grouped.values():
        leg = transfer.transfer_out or transfer.transfer_in
        transfer.date = leg.date.date() if leg else None
    return list(grouped.values())


class TransferService(LedgerService):
    """
    Transfers between two accounts of the current owner.

    Args:
        transactions: Ledger used for listing and cascading deletes
    """

    def __init__(self, *args: Any, transactions: TransactionLedger, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._transactions = transactions

    async def create_transfer(self, data: Any) -> TransferResult:
        """
        Move money between two Active accounts.

        Same-currency transfers take `amount`. Cross-currency transfers
        need both `from_amount` and `to_amount`; no rate is looked up.
        """
        request = parse_request(TransferCreate, data)
        user = await self._require_user()

        if not request.from_account_id or not request.to_account_id:
            raise ValidationError("From account and to account are required")
        if request.from_account_id == request.to_account_id:
            raise ValidationError("From account and to account must be different")
        if request.status not in TRANSACTION_STATUSES:
            raise ValidationError(
                f"Invalid transaction status. Must be one of: {', '.join(TRANSACTION_STATUSES)}"
            )

        accounts = {
            a.account_id: a
            for a in await self._read(
                self._store.get_accounts_by_ids,
                user.id,
                [request.from_account_id, request.to_account_id],
            )
            if a.is_active
        }
        if len(accounts) != 2:
            raise NotFoundError("One or both accounts not found or inactive")
        source = accounts[request.from_account_id]
        destination = accounts[request.to_account_id]

        implied_rate = None
        if source.currency == destination.currency:
            if request.amount is None:
                raise ValidationError("Amount is required for same-currency transfers")
            from_amount = to_amount = abs(request.amount)
        else:
            if request.from_amount is None or request.to_amount is None:
                raise ValidationError(
                    "Both fromAmount and toAmount are required for multi-currency transfers"
                )
            from_amount = abs(request.from_amount)
            to_amount = abs(request.to_amount)
            if from_amount:
                implied_rate = to_amount / from_amount

        now = self._now()
        when = promote_date(request.date, now.timetz()) if request.date is not None else now
        transfer_id = self._generate_id(TRANSFER_ID_PREFIX)
        out_id = self._generate_id(TRANSACTION_ID_PREFIX)
        in_id = self._generate_id(TRANSACTION_ID_PREFIX)
        status = TransactionStatus(request.status)

        transfer_out = Transaction(
            transaction_id=out_id,
            user_id=user.id,
            account_id=source.account_id,
            category_id=request.category_id or None,
            date=when,
            amount=-from_amount,
            currency=source.currency,
            description=request.description or f"Transfer to {destination.name}",
            type=TransactionType.TRANSFER_OUT,
            status=status,
            transfer_id=transfer_id,
            linked_transaction_id=in_id,
            created_at=now,
            updated_at=now,
        )
        transfer_in = Transaction(
            transaction_id=in_id,
            user_id=user.id,
            account_id=destination.account_id,
            category_id=request.category_id or None,
            date=when,
            amount=to_amount,
            currency=destination.currency,
            description=request.description or f"Transfer from {source.name}",
            type=TransactionType.TRANSFER_IN,
            status=status,
            transfer_id=transfer_id,
            linked_transaction_id=out_id,
            created_at=now,
            updated_at=now,
        )

        created = await self._store.insert_transactions([transfer_out, transfer_in])
        self._logger.info(
            "transfer_created",
            transfer_id=transfer_id,
            from_account_id=source.account_id,
            to_account_id=destination.account_id,
        )
        if self._audit_logger:
            await self._audit_logger.log_transfer_created(
                user.id, transfer_id, source.account_id, destination.account_id
            )

        return TransferResult(
            transfer_id=transfer_id,
            transfer_out=created[0],
            transfer_in=created[1],
            date=when,
            implied_rate=implied_rate,
        )

    async def get_transfers(self, filters: Any = None) -> list[Transfer]:
        """Live transfers, newest first."""
        request = parse_request(TransferFilters, filters)
        query = TransactionQuery(
            date_from=request.start_date,
            date_to=request.end_date,
            since=request.since,
            transfers_only=True,
        )
        rows = [t for t in await self._transactions.query_all(query) if not t.is_deleted]
        transfers = _group(rows)

        if request.from_account_id:
            transfers = [
                t for t in transfers
                if t.transfer_out and t.transfer_out.account_id == request.from_account_id
            ]
        if request.to_account_id:
            transfers = [
                t for t in transfers
                if t.transfer_in and t.transfer_in.account_id == request.to_account_id
            ]
        return transfers

    async def get_transfer(self, transfer_id: str) -> Transfer:
        user = await self._require_user()
        rows = await self._read(self._store.find_transactions_by_transfer_ids, user.id, [str(transfer_id)])
        if not rows:
            raise NotFoundError("Transfer not found")
        return _group(rows)[0]

    async def delete_transfer(self, transaction_id: str) -> TransferDeleteResult:
        """Soft-delete every leg of the transfer `transaction_id` belongs to."""
        try:
            transaction = await self._transactions.get_transaction(transaction_id)
        except NotFoundError:
            raise NotFoundError("Transaction not found or has already been deleted") from None
        if not transaction.transfer_id:
            raise ValidationError("Transaction is not part of a transfer")

        result = await self._transactions.delete_transaction(transaction.transaction_id)
        return TransferDeleteResult(
            transfer_id=transaction.transfer_id,
            transaction_ids=result.deleted_transaction_ids,
        )
