"""
Retry policy for idempotent store reads.

Only connection failures are retried. Writes are never retried here:
a write that reached the store and then lost its connection may
already have been applied.
"""

from typing import Any, Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from household_ledger.config import LedgerSettings
from household_ledger.services.storage.interface import StoreConnectionError


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "store_read_retry",
        attempt=retry_state.attempt_number,
        error=str(error),
    )


def store_read_retrying(settings: LedgerSettings) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(settings.store_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.store_retry_wait_multiplier,
            max=settings.store_retry_wait_max,
        ),
        retry=retry_if_exception_type(StoreConnectionError),
        before_sleep=_log_retry,
        reraise=True,
    )


async def read_with_retry(
    settings: LedgerSettings,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a store read, retrying on StoreConnectionError."""
    return await store_read_retrying(settings)(fn, *args, **kwargs)
