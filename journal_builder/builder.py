"""
Journal Builder

Derives a balanced double-entry journal from a completed order and its
classification, validates it and persists it:
1. Allocate the day's next journal number
2. Compose lines in fixed order (payment, revenue, tax, discount, service charge)
3. Total debits and credits
4. Validate (every violation reported, nothing persisted on failure)
5. Persist the journal entity and its journal_entry_data document

Also provides reads and status transitions for dashboards.
"""

import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional

from core.audit.events import AuditEventType, AuditLogger
from core.config import PipelineConfig, default_config
from core.errors import (
    JournalNotFoundError,
    JournalStatusError,
    JournalValidationError,
    PersistenceError,
)
from core.models.canonical import Order
from core.models.ledger import (
    CENT,
    AccountSlot,
    JournalEntryRecord,
    JournalLineItem,
    JournalStatus,
    JournalSummary,
    quantize_money,
)
from core.observability.logging import get_logger, with_correlation

from classification_engine.models import TransactionClassification
from storage.migration_safe import MigrationSafeAdapter

from .numbering import JOURNAL_ENTITY_TYPE, next_journal_number
from .validation import validate_journal

logger = get_logger(__name__)


JOURNAL_METADATA_TYPE = "journal_entry_data"
JOURNAL_METADATA_KEY = "journal_entry"

ALLOWED_TRANSITIONS = {
    JournalStatus.DRAFT: {JournalStatus.POSTED, JournalStatus.CANCELLED},
    JournalStatus.POSTED: {JournalStatus.CANCELLED},
    JournalStatus.CANCELLED: set(),
}

ZERO = Decimal("0")


@dataclass
class JournalCreation:
    """A persisted journal plus any persistence advisories."""
    journal: JournalEntryRecord
    advisories: List[str] = field(default_factory=list)
    simulated: bool = False


class _LineComposer:
    """Accumulates journal lines with sequential numbering."""

    def __init__(self, reference: str):
        self.reference = reference
        self.lines: List[JournalLineItem] = []

    def add(
        self,
        account: AccountSlot,
        description: str,
        debit=ZERO,
        credit=ZERO,
        reference: Optional[str] = None,
    ) -> None:
        debit = quantize_money(debit)
        credit = quantize_money(credit)
        # zero-value lines (complimentary items) carry nothing to the ledger
        if debit == ZERO and credit == ZERO:
            return
        self.lines.append(JournalLineItem(
            line_number=len(self.lines) + 1,
            account_code=account.code,
            account_name=account.name,
            debit=debit,
            credit=credit,
            description=description,
            reference=reference or self.reference,
        ))


class JournalBuilder:
    """
    Builds, validates and persists journal entries.

    Usage:
        builder = JournalBuilder(adapter, config)
        journal = await builder.build(order, classification, transaction_id)
    """

    def __init__(
        self,
        adapter: MigrationSafeAdapter,
        config: Optional[PipelineConfig] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.adapter = adapter
        self.config = config or default_config()
        self.catalog = self.config.accounts
        self.audit = audit

    # =========================================================================
    # Line Composition
    # =========================================================================

    def jurisdiction_rate(self, order: Order) -> Decimal:
        """Combined statutory tax rate for the order, in percent."""
        if order.tax_jurisdiction_rate is not None:
            return order.tax_jurisdiction_rate
        return self.config.default_tax_jurisdiction_rate

    def compose_lines(self, order: Order, classification: TransactionClassification) -> List[JournalLineItem]:
        """
        Compose journal lines for an order.

        Args:
            order: Completed order
            classification: Classification supplying the payment account

        Returns:
            Ordered journal lines
        """
        composer = _LineComposer(reference=order.order_number)
        mapping = classification.account_mapping

        # (i) payment
        composer.add(
            mapping.cash,
            f"Payment received - {order.payment.method}",
            debit=order.total_amount,
            reference=order.payment.reference,
        )

        # (ii) revenue per category
        revenue: "OrderedDict[str, Decimal]" = OrderedDict()
        for item in order.items:
            category = self.catalog.revenue_category(item.category)
            revenue[category] = revenue.get(category, ZERO) + item.line_total

        if revenue:
            for category, amount in revenue.items():
                composer.add(
                    self.catalog.revenue_account(category),
                    f"{category.replace('_', ' ').title()} sales",
                    credit=amount,
                )
        else:
            composer.add(mapping.revenue, "Sales revenue", credit=order.subtotal)

        # (iii) tax
        if order.taxes > ZERO:
            if self.jurisdiction_rate(order) > self.config.classification.split_tax_threshold_pct:
                tax = quantize_money(order.taxes)
                first = (tax / 2).quantize(CENT, rounding=ROUND_DOWN)
                composer.add(self.catalog.split_tax_a, "Output tax (split A)", credit=first)
                composer.add(self.catalog.split_tax_b, "Output tax (split B)", credit=tax - first)
            else:
                composer.add(self.catalog.single_tax, "Output tax", credit=order.taxes)

        # (iv) discount
        if order.discounts > ZERO:
            composer.add(self.catalog.discount, "Discount given", debit=order.discounts)

        # (v) service charge
        if order.service_charges > ZERO:
            composer.add(self.catalog.service_charge, "Service charge", credit=order.service_charges)

        return composer.lines

    # =========================================================================
    # Build
    # =========================================================================

    async def build(
        self,
        order: Order,
        classification: TransactionClassification,
        transaction_id: Optional[str] = None,
    ) -> JournalEntryRecord:
        """
        Build, validate and persist the journal for an order.

        Args:
            order: Completed order
            classification: Transaction classification
            transaction_id: Universal transaction the journal belongs to

        Returns:
            The persisted JournalEntryRecord

        Raises:
            JournalValidationError: If any double-entry rule is violated
            PersistenceError: If the journal entity cannot be written
        """
        creation = await self.create(order, classification, transaction_id)
        return creation.journal

    async def create(
        self,
        order: Order,
        classification: TransactionClassification,
        transaction_id: Optional[str] = None,
    ) -> JournalCreation:
        """Same as build(), also returning persistence advisories."""
        journal_date = order.completion_time.date()
        lines = self.compose_lines(order, classification)
        total_debit = sum((line.debit for line in lines), ZERO)
        total_credit = sum((line.credit for line in lines), ZERO)

        provenance = classification.provenance()
        provenance.update({
            "source": "pos",
            "order_id": order.id,
            "order_number": order.order_number,
            "tax_jurisdiction_rate": str(self.jurisdiction_rate(order)),
        })

        attempts = self.config.journal_number_retries
        for attempt in range(1, attempts + 1):
            journal_number = await next_journal_number(self.adapter, order.organization_id, journal_date)

            journal = JournalEntryRecord(
                id=str(uuid.uuid4()),
                organization_id=order.organization_id,
                transaction_id=transaction_id,
                journal_number=journal_number,
                date=journal_date,
                description=f"POS Sale - Order {order.order_number}",
                total_debit=total_debit,
                total_credit=total_credit,
                status=JournalStatus.DRAFT,
                lines=lines,
                created_by=order.staff_member.id if order.staff_member else None,
                provenance=provenance,
            )

            with with_correlation(journal_number=journal_number, stage="journal"):
                violations = validate_journal(journal)
                if violations:
                    logger.error(
                        "Journal validation failed",
                        extra_fields={"violations": violations},
                    )
                    if self.audit is not None:
                        self.audit.log_error(
                            AuditEventType.JOURNAL_VALIDATION_FAILED,
                            f"Journal {journal_number} failed validation",
                            organization_id=order.organization_id,
                            transaction_number=order.order_number,
                            journal_number=journal_number,
                            details={"violations": violations},
                        )
                    raise JournalValidationError(violations, journal_number)

                result = await self.adapter.create_entity({
                    "id": journal.id,
                    "organization_id": journal.organization_id,
                    "entity_type": JOURNAL_ENTITY_TYPE,
                    "entity_code": journal_number,
                    "entity_name": journal.description,
                    "status": journal.status.value,
                })

                if result.conflict:
                    logger.warning(
                        f"Journal number {journal_number} taken, renumbering (attempt {attempt}/{attempts})"
                    )
                    continue
                if not result.success:
                    raise PersistenceError(result.error or f"Could not persist journal {journal_number}")

                if result.entity_id and result.entity_id != journal.id:
                    journal = journal.model_copy(update={"id": result.entity_id})

                advisories = [result.advisory] if result.advisory else []
                if not result.simulated:
                    metadata = await self.adapter.create_metadata({
                        "organization_id": journal.organization_id,
                        "entity_id": journal.id,
                        "metadata_type": JOURNAL_METADATA_TYPE,
                        "metadata_key": JOURNAL_METADATA_KEY,
                        "metadata_value": journal.model_dump(mode="json"),
                    })
                    if metadata.advisory:
                        advisories.append(metadata.advisory)

                logger.info(
                    f"Journal {journal_number} created",
                    extra_fields={
                        "journal_id": journal.id,
                        "total_debit": str(total_debit),
                        "line_count": len(lines),
                        "tier": result.tier.value,
                    },
                )
                if self.audit is not None:
                    self.audit.log_info(
                        AuditEventType.JOURNAL_CREATED,
                        f"Journal {journal_number} created for order {order.order_number}",
                        organization_id=order.organization_id,
                        transaction_number=order.order_number,
                        journal_number=journal_number,
                        details={"total": str(total_debit), "lines": len(lines)},
                    )
                return JournalCreation(journal=journal, advisories=advisories, simulated=result.simulated)

        raise PersistenceError(
            f"Could not allocate a unique journal number for {journal_date.isoformat()} after {attempts} attempts"
        )

    # =========================================================================
    # Reads / Status
    # =========================================================================

    async def get_journal(self, journal_id: str) -> Optional[JournalEntryRecord]:
        """Load a journal entry by id (None if it does not exist)."""
        metadata = await self.adapter.get_metadata(journal_id, JOURNAL_METADATA_TYPE, JOURNAL_METADATA_KEY)
        if metadata is None or metadata["metadata_value"] is None:
            return None
        return JournalEntryRecord.model_validate(metadata["metadata_value"])

    async def update_status(self, journal_id: str, status: JournalStatus) -> JournalEntryRecord:
        """
        Move a journal to a new status. Totals and lines are never rewritten.

        Raises:
            JournalNotFoundError: If the journal does not exist
            JournalStatusError: If the transition is not allowed
            PersistenceError: If the update cannot be written
        """
        journal = await self.get_journal(journal_id)
        if journal is None:
            raise JournalNotFoundError(journal_id)

        status = JournalStatus(status)
        if journal.status == status:
            return journal
        if status not in ALLOWED_TRANSITIONS[journal.status]:
            raise JournalStatusError(journal.journal_number, journal.status.value, status.value)

        updated = journal.with_status(status)
        await self.adapter.update_metadata(
            journal_id,
            JOURNAL_METADATA_TYPE,
            JOURNAL_METADATA_KEY,
            updated.model_dump(mode="json"),
        )
        await self.adapter.update_entity_status(journal_id, status.value)

        logger.info(
            f"Journal {journal.journal_number} moved {journal.status.value} -> {status.value}",
            extra_fields={"journal_id": journal_id},
        )
        return updated

    async def list_journals(self, organization_id: str, limit: int = 50) -> List[JournalSummary]:
        """Newest-first journal summaries for an organization."""
        entities = await self.adapter.list_entities(organization_id, JOURNAL_ENTITY_TYPE, limit=limit)
        summaries: List[JournalSummary] = []
        for entity in entities:
            journal = await self.get_journal(entity["id"])
            if journal is None:
                continue
            summaries.append(JournalSummary(
                id=journal.id,
                journal_number=journal.journal_number,
                date=journal.date,
                description=journal.description,
                total_debit=journal.total_debit,
                total_credit=journal.total_credit,
                status=journal.status,
                line_count=len(journal.lines),
            ))
        return summaries
