"""
Ledger Error Taxonomy

Every failure a caller can see from the ledger services is one of
these classes. Storage-level failures live in
`household_ledger.services.storage.interface` and are translated into
this taxonomy where the store reports a domain violation.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class AuthenticationError(LedgerError):
    """No resolvable current user."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class ValidationError(LedgerError):
    """Missing or malformed field, enum violation, or size limit exceeded."""

    def __init__(self, message: str, issues: Optional[list[Any]] = None):
        self.issues = issues or []
        super().__init__(message)


class BatchValidationError(ValidationError):
    """
    One or more records of a batch failed validation.

    `failures` holds a `BatchFailure` for every invalid index, so the
    caller can report all problems at once.
    """

    def __init__(self, failures: list[Any]):
        self.failures = failures
        super().__init__(
            f"Validation failed for {len(failures)} transaction(s)",
            issues=failures,
        )

    @property
    def invalid_indexes(self) -> list[int]:
        return [failure.index for failure in self.failures]


class NotFoundError(LedgerError):
    """Referenced entity is absent or not owned by the caller."""
    pass


class ConflictError(LedgerError):
    """Currency mismatch or immutable-field change on a referenced account."""
    pass


class StateError(LedgerError):
    """Operation not allowed in the entity's current state."""
    pass
