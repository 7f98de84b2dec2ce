"""
Counterparty extraction from transaction descriptions.

Descriptions name the other party with an `@` marker:
    "Lunch money @Abebe"          -> ("Abebe", "Lunch money")
    "@Abebe rent for March"       -> ("Abebe", "rent for March")
    "Loan @Abebe until payday"    -> ("Abebe", "Loan until payday")
"""

from typing import NamedTuple, Optional


UNKNOWN_ENTITY = "Unknown"


class ParsedEntity(NamedTuple):
    entity_name: str
    notes: str


def parse_entity_name(description: Optional[str]) -> ParsedEntity:
    """
    Split a description into a counterparty name and a free-text note.

    Only the first `@` counts. The name runs to the first space after it;
    the text before the marker and the text after the name form the note.
    """
    if not description:
        return ParsedEntity(UNKNOWN_ENTITY, "")

    trimmed = description.strip()
    before, marker, after = trimmed.partition("@")
    if not marker:
        return ParsedEntity(UNKNOWN_ENTITY, trimmed)

    after = after.strip()
    name, space, rest = after.partition(" ")
    if not space:
        return ParsedEntity(after or UNKNOWN_ENTITY, before.strip())

    segments = [before.strip(), rest.strip()]
    notes = " ".join(segment for segment in segments if segment)
    return ParsedEntity(name.strip() or UNKNOWN_ENTITY, notes)
