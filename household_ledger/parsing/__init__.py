"""Description parsing package."""

from household_ledger.parsing.entity_parser import (
    UNKNOWN_ENTITY,
    ParsedEntity,
    parse_entity_name,
)

__all__ = ["UNKNOWN_ENTITY", "ParsedEntity", "parse_entity_name"]
