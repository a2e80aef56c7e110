"""Auto-post step.

Decides whether a freshly recorded transaction (and its journal) can be
posted without a human. The default poster is gated on review: anything
that requires approval, or whose classification requires review, stays a
draft.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from core.errors import LedgerPipelineError
from core.models.ledger import (
    JournalEntryRecord,
    JournalStatus,
    PostingStatus,
    TransactionType,
    UniversalTransaction,
)
from core.observability.logging import get_logger

from classification_engine.models import TransactionClassification
from journal_builder.builder import JournalBuilder
from storage.migration_safe import MigrationSafeAdapter

from . import records

logger = get_logger(__name__)


@dataclass
class PostingOutcome:
    """
    Result of the auto-post step.

    Attributes:
        posted: Whether the transaction is now posted
        transaction: Transaction after the step
        journal: Journal after the step (None for refunds)
        reason: Why the transaction was or was not posted
    """
    posted: bool
    transaction: UniversalTransaction
    journal: Optional[JournalEntryRecord] = None
    reason: str = ""


class AutoPoster(ABC):
    """Posting decision interface."""

    @abstractmethod
    async def post(
        self,
        transaction: UniversalTransaction,
        journal: Optional[JournalEntryRecord],
        classification: Optional[TransactionClassification],
    ) -> PostingOutcome:
        """Post the transaction or leave it as a draft."""


class ReviewGatedPoster(AutoPoster):
    """
    Posts only transactions that need neither approval nor review.

    Sales orders are never posted without a validated journal.
    """

    def __init__(self, adapter: MigrationSafeAdapter, builder: JournalBuilder):
        self.adapter = adapter
        self.builder = builder

    def hold_reason(
        self,
        transaction: UniversalTransaction,
        journal: Optional[JournalEntryRecord],
        classification: Optional[TransactionClassification],
    ) -> Optional[str]:
        """Reason to keep the transaction as a draft, or None to post it."""
        if transaction.requires_approval:
            return "Transaction requires approval"
        if classification is not None and classification.review_required:
            return "Classification requires manual review"
        if transaction.transaction_type == TransactionType.SALES_ORDER and journal is None:
            return "No validated journal entry"
        return None

    async def post(self, transaction, journal, classification):
        reason = self.hold_reason(transaction, journal, classification)
        if reason is not None:
            logger.info(
                f"Holding {transaction.transaction_number} as draft: {reason}",
                extra_fields={"requires_approval": transaction.requires_approval},
            )
            return PostingOutcome(posted=False, transaction=transaction, journal=journal, reason=reason)

        # transaction first: a posted journal cannot return to draft, a transaction can
        posted = transaction.model_copy(update={"posting_status": PostingStatus.POSTED})
        posted_journal = journal
        try:
            await records.save_details(self.adapter, posted)
            if journal is not None and journal.status != JournalStatus.POSTED:
                posted_journal = await self.builder.update_status(journal.id, JournalStatus.POSTED)
        except LedgerPipelineError as e:
            try:
                await records.save_details(self.adapter, transaction)
            except LedgerPipelineError as rollback_error:
                logger.error(
                    f"Could not return {transaction.transaction_number} to draft after posting failed: {rollback_error}",
                    extra_fields={"error_type": type(rollback_error).__name__},
                )
                raise
            return self._held(transaction, journal, e)

        logger.info(f"Posted {transaction.transaction_number}")
        return PostingOutcome(posted=True, transaction=posted, journal=posted_journal, reason="Auto-posted")

    def _held(self, transaction, journal, error: Exception) -> PostingOutcome:
        logger.warning(
            f"Auto-post of {transaction.transaction_number} failed, leaving draft: {error}",
            extra_fields={"error_type": type(error).__name__},
        )
        return PostingOutcome(
            posted=False,
            transaction=transaction,
            journal=journal,
            reason=f"Posting failed: {error}",
        )
