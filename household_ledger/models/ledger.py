"""
Core Data Models for Household Ledger

These models define the strict schemas for all data flowing through the ledger.
They are designed to:
1. Enforce type safety at runtime
2. Carry amounts as Decimal, never float
3. Be serializable for storage, logging and request deduplication
4. Make the enumerations explicit (no free-text types or statuses)

DESIGN DECISION: Request models (`*Create`, `*Update`, `*Filters`) keep
business fields optional. Presence and enumeration checks are done by the
ledger services so the caller gets one domain error listing what is wrong,
instead of a raw schema error for the first missing field.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utcnow() -> datetime:
    """Timezone-aware current instant."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


DateInput = Optional[Union[datetime, date]]
CalendarDate = date


def coerce_date_input(value: Any) -> DateInput:
    """
    Parse a transaction date input.

    Returns a `date` for calendar-date inputs ("2024-03-01", date objects)
    and an aware `datetime` for anything carrying a time component.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_aware(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported date value: {value!r}")


def promote_date(value: Union[date, datetime], time_of_day: time) -> datetime:
    """
    Stamp a bare calendar date with a time of day.

    Full datetimes pass through unchanged.
    """
    if isinstance(value, datetime):
        return ensure_aware(value)
    stamped = datetime.combine(value, time_of_day)
    return ensure_aware(stamped)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    CHECKING = "Checking"
    SAVINGS = "Savings"
    CREDIT = "Credit"
    INVESTMENT = "Investment"
    CASH = "Cash"
    BANK = "Bank"


class AccountStatus(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"
    SUSPENDED = "Suspended"


class CategoryType(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"


class CategoryStatus(str, Enum):
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class TransactionType(str, Enum):
    """
    Transaction types.

    Transfer Out / Transfer In are the two legs of a transfer and are the
    only types allowed without a category.
    """
    INCOME = "Income"
    EXPENSE = "Expense"
    TRANSFER = "Transfer"
    TRANSFER_OUT = "Transfer Out"
    TRANSFER_IN = "Transfer In"


TRANSFER_LEG_TYPES = frozenset({TransactionType.TRANSFER_OUT, TransactionType.TRANSFER_IN})


class TransactionStatus(str, Enum):
    PENDING = "Pending"
    CLEARED = "Cleared"
    RECONCILED = "Reconciled"
    CANCELLED = "Cancelled"


class ObligationType(str, Enum):
    """Direction of an informal debt."""
    BORROWING = "Borrowing"  # we owe the counterparty
    LENDING = "Lending"      # the counterparty owes us


class ObligationStatus(str, Enum):
    """
    Obligation lifecycle.

    ACTIVE -> FULLY_PAID happens only through recorded payments.
    ACTIVE -> CANCELLED happens only by explicit update.
    """
    ACTIVE = "Active"
    FULLY_PAID = "FullyPaid"
    CANCELLED = "Cancelled"


def enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def is_transfer_leg_type(value: Optional[str]) -> bool:
    return getattr(value, "value", value) in {t.value for t in TRANSFER_LEG_TYPES}


# =============================================================================
# IDENTITY
# =============================================================================

class User(BaseModel):
    """The authenticated owner of a data partition."""

    id: str = Field(..., min_length=1)
    email: Optional[str] = None


# =============================================================================
# STORED ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    A money container with a fixed currency.

    Currency and opening balance become immutable once a live
    transaction references the account.
    """

    account_id: str
    user_id: str
    name: str
    type: AccountType
    currency: str = Field(..., min_length=3, max_length=3)
    opening_balance: Decimal = Decimal("0")
    status: AccountStatus = AccountStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE


class Category(BaseModel):
    category_id: str
    user_id: str
    name: str
    type: CategoryType
    parent_category_id: Optional[str] = None
    status: CategoryStatus = CategoryStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == CategoryStatus.ACTIVE


class CategoryNode(Category):
    """A category with its subcategories, for rendering the hierarchy."""

    children: list["CategoryNode"] = Field(default_factory=list)


class Transaction(BaseModel):
    """
    A single ledger row.

    Rows are never hard-deleted. `deleted_at` marks a soft delete; such
    rows are excluded from balances and default listings but remain
    visible to incremental sync.
    """

    transaction_id: str
    user_id: str
    account_id: str
    category_id: Optional[str] = None
    date: datetime = Field(
        ...,
        description="Instant of the transaction (never date-only)"
    )
    amount: Decimal = Field(
        ...,
        description="Signed amount: negative leaves the account, positive enters it"
    )
    currency: str = Field(..., min_length=3, max_length=3)
    description: str = ""
    type: TransactionType = TransactionType.EXPENSE
    status: TransactionStatus = TransactionStatus.CLEARED
    transfer_id: Optional[str] = None
    linked_transaction_id: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_transfer_leg(self) -> bool:
        """Linked to a partner leg, or typed as one."""
        return bool(self.transfer_id or self.linked_transaction_id) or is_transfer_leg_type(self.type)


PAYMENT_ID_DELIMITER = ","


class ObligationRecord(BaseModel):
    """
    A tracked borrowing or lending.

    INVARIANT: paid_amount + remaining_amount == original_amount, and the
    record is FullyPaid exactly when remaining_amount <= 0 (Cancelled aside).
    Amount fields move only through recorded payments.
    """

    record_id: str
    user_id: str
    type: ObligationType
    original_transaction_id: str
    entity_name: str = Field(..., min_length=1)
    currency: str = Field(..., min_length=3, max_length=3)
    original_amount: Decimal = Field(..., ge=0)
    paid_amount: Decimal = Decimal("0")
    remaining_amount: Decimal
    status: ObligationStatus = ObligationStatus.ACTIVE
    payment_transaction_ids: list[str] = Field(
        default_factory=list,
        description="Payment transactions in the order they were recorded"
    )
    notes: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("payment_transaction_ids", mode="before")
    @classmethod
    def split_payment_ids(cls, v: Any) -> Any:
        """Accept the store's delimiter-joined representation."""
        if v is None:
            return []
        if isinstance(v, str):
            return [part for part in v.split(PAYMENT_ID_DELIMITER) if part]
        return v

    @model_validator(mode="after")
    def validate_amounts(self) -> "ObligationRecord":
        if self.paid_amount + self.remaining_amount != self.original_amount:
            raise ValueError("paid_amount + remaining_amount must equal original_amount")
        if self.status == ObligationStatus.ACTIVE and self.remaining_amount <= 0:
            raise ValueError("An active record must have a positive remaining_amount")
        if self.status == ObligationStatus.FULLY_PAID and self.remaining_amount > 0:
            raise ValueError("A fully paid record cannot have a remaining_amount")
        return self

    @property
    def joined_payment_ids(self) -> str:
        return PAYMENT_ID_DELIMITER.join(self.payment_transaction_ids)


class SettingEntry(BaseModel):
    """One key/value configuration row."""

    user_id: str
    setting_key: str
    setting_value: str = ""
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# REQUEST BASE
# =============================================================================

class RequestModel(BaseModel):
    """
    Base for caller-supplied payloads.

    Normalizes loosely typed input before field validation:
    enum members become their values, currencies are upper-cased, and
    numeric ids (`*_id` keys) become strings.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def normalize_inputs(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        normalized = {}
        for key, value in data.items():
            if isinstance(value, Enum):
                value = value.value
            if key == "currency" and isinstance(value, str):
                value = value.strip().upper()
            elif key.endswith("_id") and value is not None and not isinstance(value, str):
                value = str(value)
            normalized[key] = value
        return normalized


# =============================================================================
# ACCOUNT REQUESTS
# =============================================================================

class AccountCreate(RequestModel):
    name: Optional[str] = None
    type: Optional[str] = None
    currency: Optional[str] = None
    opening_balance: Decimal = Decimal("0")
    status: str = AccountStatus.ACTIVE.value


class AccountUpdate(RequestModel):
    """Only fields explicitly set are applied."""

    name: Optional[str] = None
    type: Optional[str] = None
    currency: Optional[str] = None
    opening_balance: Optional[Decimal] = None
    status: Optional[str] = None


class AccountFilters(RequestModel):
    status: Optional[str] = None
    type: Optional[str] = None
    currency: Optional[str] = None


class AccountBalance(BaseModel):
    account_id: str
    name: str
    opening_balance: Decimal
    current_balance: Decimal
    currency: str
    last_updated: datetime


class AccountBalances(BaseModel):
    """
    Balances of every active account.

    Amounts are never converted between currencies: `totals_by_currency`
    sums each currency on its own and `base_total` is the base currency
    entry of it.
    """

    base_currency: str
    accounts: list[AccountBalance] = Field(default_factory=list)
    totals_by_currency: dict[str, Decimal] = Field(default_factory=dict)

    @property
    def base_total(self) -> Decimal:
        return self.totals_by_currency.get(self.base_currency, Decimal("0"))


# =============================================================================
# CATEGORY REQUESTS
# =============================================================================

class CategoryCreate(RequestModel):
    name: Optional[str] = None
    type: Optional[str] = None
    parent_category_id: Optional[str] = None
    status: str = CategoryStatus.ACTIVE.value


class CategoryUpdate(RequestModel):
    name: Optional[str] = None
    parent_category_id: Optional[str] = None
    status: Optional[str] = None


# =============================================================================
# TRANSACTION REQUESTS
# =============================================================================

class TransactionCreate(RequestModel):
    """
    A transaction as submitted by a caller.

    `date` may be a calendar date, a datetime or an ISO string.
    """

    account_id: Optional[str] = None
    category_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    description: str = ""
    type: str = TransactionType.EXPENSE.value
    status: str = TransactionStatus.CLEARED.value
    date: DateInput = None
    transfer_id: Optional[str] = None
    linked_transaction_id: Optional[str] = None

    @field_validator("date", mode="plain")
    @classmethod
    def parse_date(cls, v: Any) -> DateInput:
        return coerce_date_input(v)

    @property
    def is_transfer_leg(self) -> bool:
        return is_transfer_leg_type(self.type)


class TransactionUpdate(RequestModel):
    """
    A partial transaction update.

    Only fields present in `model_fields_set` are applied, so an explicit
    `None` (for example clearing `category_id`) is distinguishable from
    an omitted field.
    """

    account_id: Optional[str] = None
    category_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    date: DateInput = None
    linked_transaction_id: Optional[str] = None

    @field_validator("date", mode="plain")
    @classmethod
    def parse_date(cls, v: Any) -> DateInput:
        return coerce_date_input(v)


class TransactionFilters(RequestModel):
    """
    Caller-facing listing filters.

    `since` switches to incremental sync: soft-deleted rows touched at or
    after the cursor are returned too.
    """

    account_id: Optional[str] = None
    category_id: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    month: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-\d{2}$",
        description="Calendar month shorthand, YYYY-MM"
    )
    since: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: Optional[int] = Field(default=None, ge=0)

    @field_validator("since")
    @classmethod
    def since_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None

    @field_validator("month")
    @classmethod
    def validate_month(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not 1 <= int(v[5:7]) <= 12:
            raise ValueError(f"Invalid month: {v}")
        return v

    def month_range(self) -> Optional[tuple[date, date]]:
        """Expand `month` into [first day, first day of next month)."""
        if not self.month:
            return None
        year, month = int(self.month[:4]), int(self.month[5:7])
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        return start, end

    @property
    def is_paginated(self) -> bool:
        return self.limit is not None or self.offset is not None


class TransactionQuery(BaseModel):
    """
    Store-level transaction query.

    Date bounds compare against the calendar date of the transaction.
    """

    account_id: Optional[str] = None
    category_id: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    date_from: Optional[date] = None     # inclusive
    date_to: Optional[date] = None       # inclusive
    date_before: Optional[date] = None   # exclusive
    since: Optional[datetime] = None
    transfers_only: bool = False


class DeleteResult(BaseModel):
    transaction_id: str
    linked_transaction_id: Optional[str] = None
    deleted_transaction_ids: list[str]


class BulkDeleteResult(BaseModel):
    requested_transaction_ids: list[str]
    deleted_transaction_ids: list[str]


class BatchFailure(BaseModel):
    """Why one record of a batch was rejected."""

    index: int = Field(..., ge=0)
    record: dict[str, Any]
    errors: list[str]


# =============================================================================
# TRANSFER REQUESTS
# =============================================================================

class TransferCreate(RequestModel):
    """
    Same-currency transfers use `amount`.
    Cross-currency transfers need both `from_amount` and `to_amount`.
    """

    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    amount: Optional[Decimal] = None
    from_amount: Optional[Decimal] = None
    to_amount: Optional[Decimal] = None
    category_id: Optional[str] = None
    description: str = ""
    status: str = TransactionStatus.CLEARED.value
    date: DateInput = None

    @field_validator("date", mode="plain")
    @classmethod
    def parse_date(cls, v: Any) -> DateInput:
        return coerce_date_input(v)


class TransferFilters(RequestModel):
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    since: Optional[datetime] = None

    @field_validator("since")
    @classmethod
    def since_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None


class Transfer(BaseModel):
    """Both legs of one transfer, as read back from the ledger."""

    transfer_id: str
    transfer_out: Optional[Transaction] = None
    transfer_in: Optional[Transaction] = None
    date: Optional[CalendarDate] = None


class TransferResult(BaseModel):
    transfer_id: str
    transfer_out: Transaction
    transfer_in: Transaction
    date: datetime
    implied_rate: Optional[Decimal] = Field(
        default=None,
        description="to_amount / from_amount for cross-currency transfers"
    )


class TransferDeleteResult(BaseModel):
    transfer_id: str
    transaction_ids: list[str]


# =============================================================================
# OBLIGATION REQUESTS
# =============================================================================

class ObligationCreate(RequestModel):
    type: Optional[str] = None
    original_transaction_id: Optional[str] = None
    entity_name: Optional[str] = None
    original_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    notes: str = ""


class ObligationUpdate(RequestModel):
    """
    Metadata-only update.

    Amount fields are rejected; they move only
    through recorded payments.
    """
    model_config = ConfigDict(extra="forbid")

    entity_name: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None


class ObligationFilters(RequestModel):
    type: Optional[str] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    entity_name: Optional[str] = None
    since: Optional[datetime] = None

    @field_validator("since")
    @classmethod
    def since_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None


class PaymentResult(BaseModel):
    record: ObligationRecord
    payment_transaction: Transaction


class AmountTotals(BaseModel):
    total: Decimal = Decimal("0")
    paid: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")

    def add(self, record: ObligationRecord) -> None:
        self.total += record.original_amount
        self.paid += record.paid_amount
        self.remaining += record.remaining_amount


class EntityTotals(AmountTotals):
    count: int = 0

    def add(self, record: ObligationRecord) -> None:
        super().add(record)
        self.count += 1


class TypeTotals(EntityTotals):
    by_entity: dict[str, EntityTotals] = Field(default_factory=dict)

    def add(self, record: ObligationRecord) -> None:
        super().add(record)
        self.by_entity.setdefault(record.entity_name, EntityTotals()).add(record)


class CurrencyTotals(BaseModel):
    borrowing: AmountTotals = Field(default_factory=AmountTotals)
    lending: AmountTotals = Field(default_factory=AmountTotals)


class ObligationSummary(BaseModel):
    borrowing: TypeTotals = Field(default_factory=TypeTotals)
    lending: TypeTotals = Field(default_factory=TypeTotals)
    by_currency: dict[str, CurrencyTotals] = Field(default_factory=dict)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'not_found', 'currency_mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
