"""
Shared fixtures for the ledger test suite.

Everything runs against the in-memory store with a controllable clock,
so tests never sleep and never touch a database.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from household_ledger.audit import AuditLogger
from household_ledger.config import LedgerSettings
from household_ledger.models.ledger import User
from household_ledger.orchestrator import LedgerApp
from household_ledger.services.identity import StaticUserProvider
from household_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def settings():
    return LedgerSettings(
        _env_file=None,
        store_retry_wait_multiplier=0,
        store_retry_wait_max=0,
    )


@pytest.fixture
def user():
    return User(id="user-1", email="owner@example.com")


@pytest.fixture
def provider(user):
    return StaticUserProvider(user)


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(store, provider, settings, audit_storage, clock):
    return LedgerApp(
        store=store,
        user_provider=provider,
        settings=settings,
        audit_logger=AuditLogger(audit_storage),
        clock=clock,
    )


async def seed_account(app, name="Main", currency="ETB", opening_balance=Decimal("0"), **extra):
    return await app.create_account({
        "name": name,
        "type": "Bank",
        "currency": currency,
        "opening_balance": opening_balance,
        **extra,
    })


async def seed_category(app, name="Groceries", type="Expense", **extra):
    return await app.create_category({"name": name, "type": type, **extra})
