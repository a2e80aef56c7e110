"""Exception hierarchy for the ledger pipeline.

Validation, lookup and persistence failures each have their own type so the
bridge can turn them into structured results while the publisher re-raises
only dispatch errors.
"""

from typing import List, Optional


class LedgerPipelineError(Exception):
    """Base exception for all pipeline errors."""


class ConfigurationError(LedgerPipelineError):
    """Configuration is invalid or missing."""


class NotInitializedError(LedgerPipelineError):
    """A component was used before initialize() bound it to an organization."""


class UnknownEventTypeError(LedgerPipelineError):
    """Event type has no handler in the bridge."""

    def __init__(self, event_type: str):
        super().__init__(f"Unknown POS event type: {event_type}")
        self.event_type = event_type


class JournalValidationError(LedgerPipelineError):
    """Journal entry failed double-entry validation.

    Carries every violation found, not just the first.
    """

    def __init__(self, violations: List[str], journal_number: Optional[str] = None):
        message = "Journal entry validation failed: " + "; ".join(violations)
        super().__init__(message)
        self.violations = list(violations)
        self.journal_number = journal_number


class JournalNotFoundError(LedgerPipelineError):
    """No journal entry exists with the given id."""

    def __init__(self, journal_id: str):
        super().__init__(f"Journal entry {journal_id} not found")
        self.journal_id = journal_id


class JournalStatusError(LedgerPipelineError):
    """Requested journal status change is not an allowed transition."""

    def __init__(self, journal_number: str, current: str, requested: str):
        super().__init__(
            f"Journal {journal_number} cannot move from {current} to {requested}"
        )
        self.journal_number = journal_number
        self.current = current
        self.requested = requested


class TransactionNotFoundError(LedgerPipelineError):
    """No universal transaction matches the referenced order."""

    def __init__(self, organization_id: str, transaction_number: str, detail: str = "not found"):
        super().__init__(
            f"Transaction {transaction_number} {detail} for organization {organization_id}"
        )
        self.organization_id = organization_id
        self.transaction_number = transaction_number


class PersistenceError(LedgerPipelineError):
    """A storage write failed and no fallback tier could absorb it."""


class IdentifierFormatError(PersistenceError):
    """Entity identifier is not a well-formed UUID."""

    def __init__(self, identifier: str):
        super().__init__(f"invalid input syntax for type uuid: \"{identifier}\"")
        self.identifier = identifier


class EntityConflictError(PersistenceError):
    """An entity with the same organization, type and code already exists."""

    def __init__(self, organization_id: str, entity_type: str, entity_code: str):
        super().__init__(
            f"Duplicate {entity_type} code {entity_code} for organization {organization_id}"
        )
        self.organization_id = organization_id
        self.entity_type = entity_type
        self.entity_code = entity_code
