"""
Shared plumbing for the ledger services.

Every service resolves the current owner before touching the store,
reads through the retry policy, and takes its notion of "now" from an
injectable clock.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from household_ledger.audit import AuditLogger
from household_ledger.config import LedgerSettings, get_settings
from household_ledger.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
    StateError,
    ValidationError,
    AuthenticationError,
)
from household_ledger.models.ledger import User, ensure_aware, utcnow
from household_ledger.services.identity import CurrentUserProvider, generate_id
from household_ledger.services.storage import LedgerStore, ProcedureError, read_with_retry


Clock = Callable[[], datetime]
IdGenerator = Callable[[str], str]

T = TypeVar("T")


def translate_procedure_error(error: ProcedureError) -> LedgerError:
    """Map a store procedure rejection onto the ledger error taxonomy."""
    message = str(error)
    if error.kind == "not_found":
        return NotFoundError(message)
    if error.kind == "conflict":
        return ConflictError(message)
    if error.kind == "state":
        return StateError(message)
    return ValidationError(message)


class LedgerService:
    """
    Base for owner-scoped ledger services.

    Args:
        store: Ledger persistence
        user_provider: Resolves the current owner
        settings: Operational limits; defaults to get_settings()
        audit_logger: Optional audit trail
        clock: Returns the current instant; naive values are treated as UTC
        id_generator: Builds a new id from a readable prefix
    """

    def __init__(
        self,
        store: LedgerStore,
        user_provider: CurrentUserProvider,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
    ):
        self._store = store
        self._user_provider = user_provider
        self._settings = settings or get_settings()
        self._audit_logger = audit_logger
        self._clock = clock or utcnow
        self._generate_id = id_generator or generate_id
        self._logger = structlog.get_logger(self.__class__.__module__)

    async def _require_user(self) -> User:
        user = await self._user_provider.get_current_user()
        if user is None:
            raise AuthenticationError()
        return user

    def _now(self) -> datetime:
        return ensure_aware(self._clock())

    async def _read(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        return await read_with_retry(self._settings, fn, *args, **kwargs)

    async def _read_all(self, fn: Callable[..., Awaitable[list]], *args: Any, **kwargs: Any) -> list:
        """Every row of a paged store listing."""
        # The store may cap a page below store_page_size, so only an empty
        # page ends the scan
        rows: list = []
        while True:
            page = await self._read(
                fn,
                *args,
                limit=self._settings.store_page_size,
                offset=len(rows),
                **kwargs,
            )
            if not page:
                return rows
            rows.extend(page)
