"""
Configuration Reader

Per-owner key/value settings, and the one piece of them the ledger
itself depends on: which categories mean "borrowed", "lent", and which
categories their repayments are booked under.

DESIGN DECISION: The four category settings are resolved once into an
`ObligationCategoryMap` instead of being compared as raw strings at each
call site. Setting values are stored as text, but category ids may reach
us as numbers, so both sides are normalized with `str(...).strip()`
before comparison.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from household_ledger.ledger.base import LedgerService
from household_ledger.models.ledger import ObligationType, SettingEntry, ensure_aware


class SettingKey(str, Enum):
    BASE_CURRENCY = "BaseCurrency"
    BORROWING_CATEGORY_ID = "BorrowingCategoryID"
    LENDING_CATEGORY_ID = "LendingCategoryID"
    BORROWING_PAYMENT_CATEGORY_ID = "BorrowingPaymentCategoryID"
    LENDING_PAYMENT_CATEGORY_ID = "LendingPaymentCategoryID"


class ObligationCategoryKind(str, Enum):
    BORROWING = "borrowing"
    LENDING = "lending"
    BORROWING_PAYMENT = "borrowing_payment"
    LENDING_PAYMENT = "lending_payment"


KIND_SETTING_KEYS = {
    ObligationCategoryKind.BORROWING: SettingKey.BORROWING_CATEGORY_ID,
    ObligationCategoryKind.LENDING: SettingKey.LENDING_CATEGORY_ID,
    ObligationCategoryKind.BORROWING_PAYMENT: SettingKey.BORROWING_PAYMENT_CATEGORY_ID,
    ObligationCategoryKind.LENDING_PAYMENT: SettingKey.LENDING_PAYMENT_CATEGORY_ID,
}


def normalize_category_id(value: Any) -> Optional[str]:
    """Blank or missing ids mean "not configured"."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ObligationCategoryMap(BaseModel):
    """Resolved obligation category configuration for one owner."""

    model_config = ConfigDict(frozen=True)

    categories: dict[ObligationCategoryKind, str] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls, values: Mapping[str, Any]) -> "ObligationCategoryMap":
        categories = {}
        for kind, key in KIND_SETTING_KEYS.items():
            category_id = normalize_category_id(values.get(key.value))
            if category_id:
                categories[kind] = category_id
        return cls(categories=categories)

    def category_for(self, kind: ObligationCategoryKind) -> Optional[str]:
        return self.categories.get(kind)

    @property
    def has_obligation_categories(self) -> bool:
        return (
            ObligationCategoryKind.BORROWING in self.categories
            or ObligationCategoryKind.LENDING in self.categories
        )

    def classify(self, category_id: Any) -> Optional[ObligationType]:
        """Obligation type denoted by a transaction category, if any."""
        category_id = normalize_category_id(category_id)
        if not category_id:
            return None
        if category_id == self.categories.get(ObligationCategoryKind.BORROWING):
            return ObligationType.BORROWING
        if category_id == self.categories.get(ObligationCategoryKind.LENDING):
            return ObligationType.LENDING
        return None

    def payment_category_for(self, obligation_type: ObligationType) -> Optional[str]:
        if obligation_type == ObligationType.BORROWING:
            return self.categories.get(ObligationCategoryKind.BORROWING_PAYMENT)
        return self.categories.get(ObligationCategoryKind.LENDING_PAYMENT)


class ConfigurationReader(LedgerService):
    """
    Owner settings with default initialization and a cached category map.

    The category map is cached per owner and dropped on any settings
    write made through this reader.
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._category_cache: dict[str, ObligationCategoryMap] = {}

    def _defaults(self, user_id: str) -> list[SettingEntry]:
        now = self._now()
        values = {key.value: "" for key in SettingKey}
        values[SettingKey.BASE_CURRENCY.value] = self._settings.default_base_currency
        return [
            SettingEntry(user_id=user_id, setting_key=key, setting_value=value, updated_at=now)
            for key, value in values.items()
        ]

    async def get_settings(self, since: Optional[datetime] = None) -> list[SettingEntry]:
        """
        All settings ordered by key.

        A full read of an owner with no settings writes the defaults first.
        An incremental read (`since`) only reports changes and never
        initializes: an empty result means nothing changed.
        """
        user = await self._require_user()
        if since is not None:
            return await self._read(self._store.list_settings, user.id, ensure_aware(since))

        entries = await self._read(self._store.list_settings, user.id)
        if entries:
            return entries

        inserted = await self._store.insert_settings_if_absent(self._defaults(user.id))
        self._logger.info("settings_initialized", user_id=user.id, inserted=inserted)
        return await self._read(self._store.list_settings, user.id)

    async def get_settings_map(self) -> dict[str, str]:
        return {entry.setting_key: entry.setting_value for entry in await self.get_settings()}

    async def get_setting(self, key: str) -> Optional[SettingEntry]:
        user = await self._require_user()
        return await self._read(self._store.get_setting, user.id, key)

    async def update_setting(self, key: str, value: Any) -> SettingEntry:
        updated = await self.update_settings({key: value})
        return updated[0]

    async def update_settings(self, values: Mapping[str, Any]) -> list[SettingEntry]:
        """Upsert several settings at once."""
        user = await self._require_user()
        now = self._now()
        entries = [
            SettingEntry(
                user_id=user.id,
                setting_key=key,
                setting_value="" if value is None else str(value),
                updated_at=now,
            )
            for key, value in values.items()
        ]
        saved = await self._store.upsert_settings(entries)
        self.invalidate_cache(user.id)

        if self._audit_logger:
            await self._audit_logger.log_settings_updated(user.id, list(values))
        return saved

    async def get_base_currency(self) -> str:
        values = await self.get_settings_map()
        currency = values.get(SettingKey.BASE_CURRENCY.value, "").strip().upper()
        return currency or self._settings.default_base_currency

    async def load_obligation_categories(self) -> ObligationCategoryMap:
        user = await self._require_user()
        cached = self._category_cache.get(user.id)
        if cached is not None:
            return cached

        category_map = ObligationCategoryMap.from_settings(await self.get_settings_map())
        self._category_cache[user.id] = category_map
        return category_map

    def invalidate_cache(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._category_cache.clear()
        else:
            self._category_cache.pop(user_id, None)
