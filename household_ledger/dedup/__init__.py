"""Request deduplication package."""

from household_ledger.dedup.gate import DeduplicationGate

__all__ = ["DeduplicationGate"]
