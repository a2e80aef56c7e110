"""
Journal Builder Package

Derives validated, balanced double-entry journals from completed orders.

Usage:
    from journal_builder import JournalBuilder

    builder = JournalBuilder(adapter, config)
    journal = await builder.build(order, classification, transaction_id)
"""

from .numbering import (
    JOURNAL_ENTITY_TYPE,
    journal_prefix,
    format_journal_number,
    next_journal_number,
)

from .validation import (
    validate_journal,
    ensure_valid,
)

from .builder import (
    JournalBuilder,
    JournalCreation,
    ALLOWED_TRANSITIONS,
    JOURNAL_METADATA_TYPE,
    JOURNAL_METADATA_KEY,
)

__all__ = [
    "JournalBuilder",
    "JournalCreation",
    "ALLOWED_TRANSITIONS",
    "JOURNAL_METADATA_TYPE",
    "JOURNAL_METADATA_KEY",
    "JOURNAL_ENTITY_TYPE",
    "journal_prefix",
    "format_journal_number",
    "next_journal_number",
    "validate_journal",
    "ensure_valid",
]
