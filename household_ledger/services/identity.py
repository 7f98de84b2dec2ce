"""
Identity and identifier services.

The ledger never authenticates anyone itself. It asks a
`CurrentUserProvider` who the caller is, and treats `None` as
unauthenticated.
"""

import time
from abc import ABC, abstractmethod
from typing import Optional
from uuid import uuid4

from household_ledger.models.ledger import User


# Readable prefixes for generated identifiers
ACCOUNT_ID_PREFIX = "ACC"
CATEGORY_ID_PREFIX = "CAT"
TRANSACTION_ID_PREFIX = "TXN"
TRANSFER_ID_PREFIX = "TRF"
OBLIGATION_ID_PREFIX = "BL"


def generate_id(prefix: str) -> str:
    """
    Generate a unique opaque identifier, e.g. `TXN_1718000000000_1a2b3c4d`.

    The millisecond component keeps ids roughly time-ordered for humans;
    uniqueness comes from the random suffix.
    """
    millis = int(time.time() * 1000)
    return f"{prefix}_{millis}_{uuid4().hex[:8]}"


class CurrentUserProvider(ABC):
    """Resolves the authenticated owner for the current call."""

    @abstractmethod
    async def get_current_user(self) -> Optional[User]:
        pass


class StaticUserProvider(CurrentUserProvider):
    """
    Provider with a fixed (switchable) user.

    Used for single-user embedding and tests; `set_user(None)` simulates
    a logged-out session.
    """

    def __init__(self, user: Optional[User] = None):
        self._user = user

    def set_user(self, user: Optional[User]) -> None:
        self._user = user

    async def get_current_user(self) -> Optional[User]:
        return self._user
