"""
Audit Logger

DESIGN DECISION: Every ledger write is logged.
This provides:
1. Complete traceability of balance-affecting changes
2. Debugging capability for failed side effects
3. A record of payments and their compensations

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the ledger if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from household_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from household_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_account_event(
        self,
        event_type: AuditEventType,
        user_id: str,
        account_id: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log an account create/update/delete."""
        await self.log(AuditEventBuilder.account_event(event_type, user_id, account_id, details))

    async def log_category_event(
        self,
        event_type: AuditEventType,
        user_id: str,
        category_id: str,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.category_event(event_type, user_id, category_id, details))

    async def log_transaction_created(
        self,
        user_id: str,
        transaction_id: str,
        amount: Decimal,
        currency: str,
    ) -> None:
        """Log a single transaction insert."""
        event = AuditEventBuilder.transaction_created(
            user_id=user_id,
            transaction_id=transaction_id,
            amount=amount,
            currency=currency,
        )
        await self.log(event)

    async def log_transactions_batch_created(
        self,
        user_id: str,
        transaction_ids: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.transactions_batch_created(user_id, transaction_ids))

    async def log_transaction_updated(
        self,
        user_id: str,
        transaction_id: str,
        fields: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(user_id, transaction_id, fields))

    async def log_transactions_deleted(
        self,
        user_id: str,
        requested_ids: list[str],
        deleted_ids: list[str],
    ) -> None:
        """Log a (possibly cascading) soft delete."""
        event = AuditEventBuilder.transactions_deleted(
            user_id=user_id,
            requested_ids=requested_ids,
            deleted_ids=deleted_ids,
        )
        await self.log(event)

    async def log_transfer_created(
        self,
        user_id: str,
        transfer_id: str,
        from_account_id: str,
        to_account_id: str,
    ) -> None:
        event = AuditEventBuilder.transfer_created(
            user_id=user_id,
            transfer_id=transfer_id,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
        )
        await self.log(event)

    async def log_obligation_event(
        self,
        event_type: AuditEventType,
        user_id: str,
        record_id: str,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.obligation_event(event_type, user_id, record_id, details))

    async def log_payment_recorded(
        self,
        user_id: str,
        record_id: str,
        payment_transaction_id: str,
        amount: Decimal,
        remaining: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a payment applied to an obligation record."""
        event = AuditEventBuilder.payment_recorded(
            user_id=user_id,
            record_id=record_id,
            payment_transaction_id=payment_transaction_id,
            amount=amount,
            remaining=remaining,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_payment_compensated(
        self,
        user_id: str,
        record_id: str,
        payment_transaction_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a payment transaction rolled back by soft delete."""
        event = AuditEventBuilder.payment_compensated(
            user_id=user_id,
            record_id=record_id,
            payment_transaction_id=payment_transaction_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_settings_updated(
        self,
        user_id: str,
        keys: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.settings_updated(user_id, keys))

    async def log_validation_failed(
        self,
        user_id: Optional[str],
        operation: str,
        issues: list[dict],
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            user_id=user_id,
            operation=operation,
            issues=issues,
        )
        await self.log(event)

    async def log_side_effect_failed(
        self,
        user_id: str,
        side_effect: str,
        transaction_id: str,
        error_message: str,
    ) -> None:
        """Log a best-effort side effect that did not complete."""
        event = AuditEventBuilder.side_effect_failed(
            user_id=user_id,
            side_effect=side_effect,
            transaction_id=transaction_id,
            error_message=error_message,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a multi-step write (e.g., recording a payment).
    Pass it through all subsequent operations.
    """
    return uuid4()
