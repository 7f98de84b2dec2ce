"""
Request Deduplication Gate

DESIGN DECISION: Identical concurrent reads share one execution.
When a screen asks for the same accounts list three times while the
first request is still running, the store sees one query and all three
callers receive the same result (or the same exception).

The gate:
- Holds only in-flight executions; nothing is kept after completion
- Has no TTL and no timeout; an execution lives as long as the operation
- Is an explicit object injected where needed, never a module global
- Shields the shared execution, so a cancelled caller does not cancel it
  for everyone else
"""

import asyncio
import functools
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from pydantic import BaseModel


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _encode(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not key-serializable")


class DeduplicationGate:
    """
    Coalesces concurrent executions that share a key.

    Usage:
        gate = DeduplicationGate()
        key = gate.make_key("accounts/list", {"status": "Active"})
        accounts = await gate.run(key, lambda: ledger.list_accounts(filters))
    """

    def __init__(self):
        self._pending: dict[str, asyncio.Task] = {}

    @staticmethod
    def make_key(endpoint: str, params: Any) -> str:
        """
        Build a deterministic key from an endpoint name and its parameters.

        Parameters that cannot be serialized fall back to the endpoint
        alone, which coalesces every such call to that endpoint.
        """
        try:
            encoded = json.dumps(params, sort_keys=True, default=_encode, separators=(",", ":"))
        except (TypeError, ValueError):
            return endpoint
        return f"{endpoint}:{encoded}"

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def run(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` unless an execution for `key` is already in flight,
        in which case wait for that one instead.
        """
        task = self._pending.get(key)
        if task is not None:
            logger.debug("dedup_joined", key=key)
            return await asyncio.shield(task)

        async def execute() -> T:
            try:
                return await operation()
            finally:
                # A clear() may have replaced the entry with a newer execution
                if self._pending.get(key) is task:
                    del self._pending[key]

        task = asyncio.get_running_loop().create_task(execute())
        self._pending[key] = task
        return await asyncio.shield(task)

    def wrap(
        self,
        endpoint: str,
        fn: Callable[..., Awaitable[T]],
    ) -> Callable[..., Awaitable[T]]:
        """Return a deduplicated version of `fn`, keyed on its arguments."""

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = self.make_key(endpoint, {"args": args, "kwargs": kwargs})
            return await self.run(key, lambda: fn(*args, **kwargs))

        return wrapper

    def clear(self) -> None:
        """
        Forget all in-flight entries.

        Executions already running finish normally and their current
        waiters still receive the result; new callers start fresh.
        """
        self._pending.clear()
