"""Journal numbering.

Numbers have the form ``JE-YYYYMMDD-NNNN`` where NNNN is one more than the
count of journal entities the organization already has for that day.
The count is read before use; the store's unique code constraint catches
concurrent writers and the builder retries with a fresh count.
"""

from datetime import date

JOURNAL_ENTITY_TYPE = "journal_entry"


def journal_prefix(on: date) -> str:
    """Day prefix shared by every journal number for ``on``."""
    return f"JE-{on.strftime('%Y%m%d')}-"


def format_journal_number(on: date, sequence: int) -> str:
    """Format a journal number, zero-padding the sequence to 4 digits."""
    return f"{journal_prefix(on)}{sequence:04d}"


async def next_journal_number(adapter, organization_id: str, on: date) -> str:
    """
    Allocate the next journal number for an organization and day.

    Args:
        adapter: Storage adapter exposing count_entities
        organization_id: Owning organization
        on: Journal date

    Returns:
        Journal number string
    """
    existing = await adapter.count_entities(organization_id, JOURNAL_ENTITY_TYPE, journal_prefix(on))
    return format_journal_number(on, existing + 1)
