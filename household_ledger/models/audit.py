"""
Audit Models for Household Ledger

Every ledger write is logged for audit purposes.
This provides:
1. Traceability of balance-affecting changes
2. Debugging information when a side effect fails
3. A trail of obligation payments and their compensations

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
They are a record of what happened, not a source for replaying state.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from household_ledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger write has its own event type.
    """
    # Accounts and categories
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTIONS_BATCH_CREATED = "transactions_batch_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTIONS_DELETED = "transactions_deleted"
    TRANSFER_CREATED = "transfer_created"

    # Obligations
    OBLIGATION_CREATED = "obligation_created"
    OBLIGATION_UPDATED = "obligation_updated"
    OBLIGATION_DELETED = "obligation_deleted"
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_COMPENSATED = "payment_compensated"

    # Settings
    SETTINGS_UPDATED = "settings_updated"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    SIDE_EFFECT_FAILED = "side_effect_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger write creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected data"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction', 'obligation')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a payment and its compensation)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(user_id, transaction_id, amount, currency)
        event = AuditEventBuilder.side_effect_failed(user_id, "auto_classify", transaction_id, error)
    """

    @staticmethod
    def account_event(
        event_type: AuditEventType,
        user_id: str,
        account_id: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account {verb}: {account_id}",
            details=details or {},
        )

    @staticmethod
    def category_event(
        event_type: AuditEventType,
        user_id: str,
        category_id: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category {verb}: {category_id}",
            details=details or {},
        )

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: str,
        amount: Decimal,
        currency: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction created: {amount} {currency}",
            details={
                "amount": str(amount),
                "currency": currency,
            },
        )

    @staticmethod
    def transactions_batch_created(
        user_id: str,
        transaction_ids: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_BATCH_CREATED,
            user_id=user_id,
            entity_type="transaction",
            description=f"Batch created {len(transaction_ids)} transactions",
            details={
                "transaction_ids": transaction_ids,
            },
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction updated: {', '.join(fields)}",
            details={
                "fields": fields,
            },
        )

    @staticmethod
    def transactions_deleted(
        user_id: str,
        requested_ids: list[str],
        deleted_ids: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=requested_ids[0] if len(requested_ids) == 1 else None,
            description=f"Soft-deleted {len(deleted_ids)} transactions",
            details={
                "requested_ids": requested_ids,
                "deleted_ids": deleted_ids,
            },
        )

    @staticmethod
    def transfer_created(
        user_id: str,
        transfer_id: str,
        from_account_id: str,
        to_account_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_CREATED,
            user_id=user_id,
            entity_type="transfer",
            entity_id=transfer_id,
            description=f"Transfer created: {from_account_id} -> {to_account_id}",
            details={
                "from_account_id": from_account_id,
                "to_account_id": to_account_id,
            },
        )

    @staticmethod
    def obligation_event(
        event_type: AuditEventType,
        user_id: str,
        record_id: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="obligation",
            entity_id=record_id,
            description=f"Obligation {verb}: {record_id}",
            details=details or {},
        )

    @staticmethod
    def payment_recorded(
        user_id: str,
        record_id: str,
        payment_transaction_id: str,
        amount: Decimal,
        remaining: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_RECORDED,
            user_id=user_id,
            entity_type="obligation",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Payment of {amount} recorded, {remaining} remaining",
            details={
                "payment_transaction_id": payment_transaction_id,
                "amount": str(amount),
                "remaining": str(remaining),
            },
        )

    @staticmethod
    def payment_compensated(
        user_id: str,
        record_id: str,
        payment_transaction_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_COMPENSATED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="obligation",
            entity_id=record_id,
            correlation_id=correlation_id,
            description="Payment not applied, payment transaction soft-deleted",
            error_message=error_message,
            details={
                "payment_transaction_id": payment_transaction_id,
            },
        )

    @staticmethod
    def settings_updated(
        user_id: str,
        keys: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            user_id=user_id,
            entity_type="settings",
            description=f"Settings updated: {', '.join(keys)}",
            details={
                "keys": keys,
            },
        )

    @staticmethod
    def validation_failed(
        user_id: Optional[str],
        operation: str,
        issues: list[dict],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def side_effect_failed(
        user_id: str,
        side_effect: str,
        transaction_id: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SIDE_EFFECT_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Side effect failed: {side_effect}",
            error_message=error_message,
            details={
                "side_effect": side_effect,
            },
        )
