"""
Accounting Bridge

Turns POS events into ledger records:
- order.completed: universal transaction, classification, journal, auto-post
- payment.received: payment confirmation merged into the sale
- refund.processed: refund transaction with approval gate
- order.voided: void of the sale (idempotent) and cancellation of its journal

Every failure other than an unknown event type (or use before initialize)
is returned as a failed AccountingResult.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from core.audit.events import AuditEventType, AuditLogger
from core.config import PipelineConfig, default_config
from core.errors import (
    LedgerPipelineError,
    NotInitializedError,
    PersistenceError,
    UnknownEventTypeError,
)
from core.models.canonical import Order, OrderVoided, PaymentReceived, RefundProcessed
from core.models.ledger import (
    AccountingResult,
    JournalStatus,
    MappedAccounts,
    PaymentConfirmation,
    PostingStatus,
    RefundPayload,
    SalePayload,
    TransactionSubtype,
    TransactionType,
    UniversalTransaction,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import (
    record_event_failed,
    record_event_received,
    record_event_succeeded,
    record_processing_time,
)

from classification_engine.engine import ClassificationEngine
from classification_engine.rules import determine_subtype
from journal_builder.builder import JournalBuilder
from storage.migration_safe import MigrationSafeAdapter

from . import records
from .events import POSEvent, POSEventType
from .posting import AutoPoster, ReviewGatedPoster

logger = get_logger(__name__)


Handler = Callable[[POSEvent], Awaitable[AccountingResult]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce(model, data: Any):
    return data if isinstance(data, model) else model.model_validate(data)


class AccountingBridge:
    """
    Dispatches POS events to their accounting handlers.

    Usage:
        bridge = AccountingBridge(adapter, config)
        bridge.initialize("org-1")
        result = await bridge.handle(event)
    """

    def __init__(
        self,
        adapter: MigrationSafeAdapter,
        config: Optional[PipelineConfig] = None,
        engine: Optional[ClassificationEngine] = None,
        builder: Optional[JournalBuilder] = None,
        poster: Optional[AutoPoster] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.adapter = adapter
        self.config = config or default_config()
        self.audit = audit
        self.engine = engine or ClassificationEngine(self.config)
        self.builder = builder or JournalBuilder(adapter, self.config, audit)
        self.poster = poster or ReviewGatedPoster(adapter, self.builder)
        self.organization_id: Optional[str] = None

        self._handlers: Dict[str, Handler] = {
            POSEventType.ORDER_COMPLETED.value: self._handle_order_completed,
            POSEventType.PAYMENT_RECEIVED.value: self._handle_payment_received,
            POSEventType.REFUND_PROCESSED.value: self._handle_refund_processed,
            POSEventType.ORDER_VOIDED.value: self._handle_order_voided,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def initialized(self) -> bool:
        return self.organization_id is not None

    def initialize(self, organization_id: str) -> None:
        """Bind the bridge to an organization."""
        if not organization_id:
            raise ValueError("organization_id is required")
        self.organization_id = organization_id
        logger.info("Accounting bridge initialized", extra_fields={"organization_id": organization_id})

    def cleanup(self) -> None:
        """Release the organization binding."""
        if self.organization_id is not None:
            logger.info("Accounting bridge released", extra_fields={"organization_id": self.organization_id})
        self.organization_id = None

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle(self, event: POSEvent) -> AccountingResult:
        """
        Handle one POS event.

        Args:
            event: Event built by the publisher

        Returns:
            AccountingResult (failed results carry the error message)

        Raises:
            NotInitializedError: If called before initialize()
            UnknownEventTypeError: If no handler exists for the event type
        """
        if not self.initialized:
            raise NotInitializedError("Accounting bridge is not initialized; call initialize(organization_id) first")

        event_type = event.type.value if isinstance(event.type, POSEventType) else str(event.type)
        handler = self._handlers.get(event_type)
        if handler is None:
            record_event_failed(event_type, "unknown event type")
            raise UnknownEventTypeError(event_type)

        record_event_received(event_type)
        started = time.perf_counter()

        with with_correlation(
            organization_id=event.organization_id or self.organization_id,
            event_id=event.id,
            event_type=event_type,
        ):
            try:
                result = await handler(event)
            except LedgerPipelineError as e:
                logger.warning(f"Event handling failed: {e}", extra_fields={"error_type": type(e).__name__})
                result = AccountingResult.failed(str(e))
            except Exception as e:
                logger.exception(f"Unexpected error handling event: {e}")
                self._audit_error(event, e)
                result = AccountingResult.failed(f"Unexpected error: {e}")

            duration_ms = (time.perf_counter() - started) * 1000
            record_processing_time(f"bridge.{event_type}", duration_ms)
            if result.success:
                record_event_succeeded(event_type, duration_ms)
            else:
                record_event_failed(event_type, result.error)

            logger.info(
                f"Event handled: {result.message}",
                extra_fields={"success": result.success, "duration_ms": round(duration_ms, 2)},
            )
            return result

    def _check_organization(self, organization_id: str) -> None:
        if organization_id != self.organization_id:
            raise LedgerPipelineError(
                f"Event for organization {organization_id} sent to bridge bound to {self.organization_id}"
            )

    def _audit_error(self, event: POSEvent, error: Exception) -> None:
        if self.audit is None:
            return
        self.audit.log_error(
            AuditEventType.SYSTEM_ERROR,
            f"Unexpected error handling {event.type}: {error}",
            organization_id=event.organization_id,
            source_event_id=event.id,
            details={"error_type": type(error).__name__},
        )

    # =========================================================================
    # order.completed
    # =========================================================================

    def transaction_from_order(self, order: Order, actor_id: Optional[str] = None) -> UniversalTransaction:
        """Map a completed order to a draft SALES_ORDER transaction."""
        completed_at = order.completion_time
        payment = order.payment

        payload = SalePayload(
            raw=order.model_dump(mode="json"),
            payment=PaymentConfirmation(
                method=payment.method,
                provider=payment.provider,
                amount=payment.amount,
                reference=payment.reference,
                timestamp=payment.timestamp,
            ),
            pos_order_id=order.id,
            customer_name=order.customer_name,
            table_number=order.table_number,
            items=order.items,
            subtotal=order.subtotal,
            taxes=order.taxes,
            discounts=order.discounts,
            service_charges=order.service_charges,
            tax_jurisdiction_rate=order.tax_jurisdiction_rate,
            staff_member_id=order.staff_member.id if order.staff_member else None,
            location_name=order.location.name if order.location else None,
            completed_at=completed_at,
        )

        return UniversalTransaction(
            id=str(uuid.uuid4()),
            organization_id=order.organization_id,
            transaction_type=TransactionType.SALES_ORDER,
            transaction_subtype=determine_subtype(order),
            transaction_number=order.order_number,
            transaction_date=completed_at.date(),
            total_amount=order.total_amount,
            currency=order.currency or self.config.currency,
            transaction_data=payload,
            created_by=actor_id or (order.staff_member.id if order.staff_member else None),
        )

    async def _handle_order_completed(self, event: POSEvent) -> AccountingResult:
        order = _coerce(Order, event.data)
        self._check_organization(order.organization_id)

        with with_correlation(transaction_number=order.order_number):
            existing = await self.adapter.find_entity_by_code(
                order.organization_id, records.TRANSACTION_ENTITY_TYPE, order.order_number
            )
            if existing is not None:
                return AccountingResult.failed(
                    f"Transaction {order.order_number} already recorded",
                    transaction_id=existing["id"],
                )

            transaction = self.transaction_from_order(order, event.actor_id)

            with with_correlation(stage="classification"):
                classification = self.engine.classify(transaction)
            requires_approval = classification.confidence < self.config.classification.review_threshold
            self._audit_classification(transaction, classification)

            with with_correlation(stage="journal"):
                creation = await self.builder.create(order, classification, transaction.id)
            journal = creation.journal

            transaction = transaction.model_copy(update={
                "requires_approval": requires_approval,
                "mapped_accounts": MappedAccounts(
                    accounts=classification.account_mapping,
                    journal_entry_id=journal.id,
                    journal_number=journal.journal_number,
                ),
            })

            with with_correlation(stage="persistence", journal_number=journal.journal_number):
                entity = await self.adapter.create_entity(records.entity_row(transaction))
                if not entity.success:
                    await self._cancel_orphan_journal(journal.id)
                    raise PersistenceError(
                        entity.error or f"Could not persist transaction {transaction.transaction_number}"
                    )
                if entity.entity_id and entity.entity_id != transaction.id:
                    transaction = transaction.model_copy(update={"id": entity.entity_id})

                advisories = list(creation.advisories)
                advisories.extend(records.collect_advisories(entity))
                if not entity.simulated:
                    details = await records.write_details(self.adapter, transaction)
                    provenance = await records.write_classification(
                        self.adapter, transaction, classification.to_dict()
                    )
                    advisories.extend(records.collect_advisories(details, provenance))

            self._audit(
                AuditEventType.TRANSACTION_CREATED,
                f"Sales transaction {transaction.transaction_number} recorded",
                transaction,
                details={"total": str(transaction.total_amount), "subtype": transaction.transaction_subtype.value},
            )

            with with_correlation(stage="posting"):
                outcome = await self.poster.post(transaction, journal, classification)
            transaction = outcome.transaction
            self._audit_posting(transaction, outcome.posted, outcome.reason)

            return AccountingResult(
                success=True,
                transaction_id=transaction.id,
                journal_entry_id=journal.id,
                journal_number=journal.journal_number,
                posting_status=transaction.posting_status,
                requires_approval=transaction.requires_approval,
                message=f"Order {order.order_number} recorded as {transaction.posting_status.value}: {outcome.reason}",
                advisories=advisories,
            )

    async def _cancel_orphan_journal(self, journal_id: str) -> None:
        try:
            await self.builder.update_status(journal_id, JournalStatus.CANCELLED)
        except LedgerPipelineError as e:
            logger.warning(f"Could not cancel orphaned journal {journal_id}: {e}")

    # =========================================================================
    # payment.received
    # =========================================================================

    async def _handle_payment_received(self, event: POSEvent) -> AccountingResult:
        payment = _coerce(PaymentReceived, event.data)
        self._check_organization(payment.organization_id)

        with with_correlation(transaction_number=payment.order_id, stage="payment"):
            transaction = await records.load_transaction(self.adapter, payment.organization_id, payment.order_id)

            payload = transaction.transaction_data.model_copy(update={
                "payment": PaymentConfirmation(
                    method=payment.method,
                    provider=payment.provider,
                    amount=payment.amount,
                    reference=payment.reference,
                    timestamp=payment.timestamp,
                ),
                "payment_confirmed": True,
                "payment_timestamp": payment.timestamp,
            })
            transaction = transaction.model_copy(update={"transaction_data": payload})
            await records.save_details(self.adapter, transaction)

            self._audit(
                AuditEventType.PAYMENT_CONFIRMED,
                f"Payment of {payment.amount} confirmed for {payment.order_id}",
                transaction,
                details={"method": payment.method, "reference": payment.reference},
            )

            return AccountingResult(
                success=True,
                transaction_id=transaction.id,
                journal_entry_id=transaction.mapped_accounts.journal_entry_id,
                journal_number=transaction.mapped_accounts.journal_number,
                posting_status=transaction.posting_status,
                requires_approval=transaction.requires_approval,
                message=f"Payment confirmed for {payment.order_id}",
            )

    # =========================================================================
    # refund.processed
    # =========================================================================

    def transaction_from_refund(self, refund: RefundProcessed, processed_at: datetime) -> UniversalTransaction:
        """Map a refund to a draft REFUND transaction."""
        number = f"REF-{refund.order_id}-{processed_at.strftime('%Y%m%d%H%M%S%f')}"
        return UniversalTransaction(
            id=str(uuid.uuid4()),
            organization_id=refund.organization_id,
            transaction_type=TransactionType.REFUND,
            transaction_subtype=TransactionSubtype.CUSTOMER_REFUND,
            transaction_number=number,
            transaction_date=processed_at.date(),
            total_amount=-refund.refund_amount,
            currency=self.config.currency,
            transaction_data=RefundPayload(
                raw=refund.model_dump(mode="json"),
                original_order_id=refund.order_id,
                refund_amount=refund.refund_amount,
                refund_reason=refund.reason,
                processed_at=processed_at,
            ),
            created_by=refund.user_id,
            requires_approval=refund.refund_amount > self.config.refund_approval_threshold,
        )

    async def _handle_refund_processed(self, event: POSEvent) -> AccountingResult:
        refund = _coerce(RefundProcessed, event.data)
        self._check_organization(refund.organization_id)

        transaction = self.transaction_from_refund(refund, _utcnow())

        with with_correlation(transaction_number=transaction.transaction_number, stage="refund"):
            entity = await self.adapter.create_entity(records.entity_row(transaction))
            if not entity.success:
                raise PersistenceError(
                    entity.error or f"Could not persist refund {transaction.transaction_number}"
                )
            if entity.entity_id and entity.entity_id != transaction.id:
                transaction = transaction.model_copy(update={"id": entity.entity_id})

            advisories = list(records.collect_advisories(entity))
            if not entity.simulated:
                details = await records.write_details(self.adapter, transaction)
                advisories.extend(records.collect_advisories(details))

            self._audit(
                AuditEventType.REFUND_RECORDED,
                f"Refund of {refund.refund_amount} recorded against {refund.order_id}",
                transaction,
                details={"reason": refund.reason, "requires_approval": transaction.requires_approval},
            )

            outcome = await self.poster.post(transaction, None, None)
            transaction = outcome.transaction
            self._audit_posting(transaction, outcome.posted, outcome.reason)

            return AccountingResult(
                success=True,
                transaction_id=transaction.id,
                posting_status=transaction.posting_status,
                requires_approval=transaction.requires_approval,
                message=f"Refund {transaction.transaction_number} recorded as {transaction.posting_status.value}",
                advisories=advisories,
            )

    # =========================================================================
    # order.voided
    # =========================================================================

    async def _handle_order_voided(self, event: POSEvent) -> AccountingResult:
        void = _coerce(OrderVoided, event.data)
        self._check_organization(void.organization_id)

        with with_correlation(transaction_number=void.order_id, stage="void"):
            transaction = await records.load_transaction(self.adapter, void.organization_id, void.order_id)

            if transaction.posting_status == PostingStatus.VOIDED:
                # an earlier void may have stopped before its journal was cancelled
                await self._cancel_journal(transaction)
                logger.info(f"Transaction {void.order_id} already voided")
                return AccountingResult(
                    success=True,
                    transaction_id=transaction.id,
                    journal_entry_id=transaction.mapped_accounts.journal_entry_id,
                    journal_number=transaction.mapped_accounts.journal_number,
                    posting_status=PostingStatus.VOIDED,
                    requires_approval=transaction.requires_approval,
                    message=f"Transaction {void.order_id} already voided",
                )

            # journal before transaction, so a failed void leaves nothing marked voided
            await self._cancel_journal(transaction)

            payload = transaction.transaction_data.model_copy(update={
                "void_reason": void.reason,
                "voided_at": _utcnow(),
                "voided_by": void.user_id or event.actor_id,
            })
            transaction = transaction.model_copy(update={
                "transaction_data": payload,
                "posting_status": PostingStatus.VOIDED,
            })
            await records.save_details(self.adapter, transaction)

            self._audit(
                AuditEventType.TRANSACTION_VOIDED,
                f"Transaction {void.order_id} voided: {void.reason}",
                transaction,
                details={"voided_by": payload.voided_by},
            )

            return AccountingResult(
                success=True,
                transaction_id=transaction.id,
                journal_entry_id=transaction.mapped_accounts.journal_entry_id,
                journal_number=transaction.mapped_accounts.journal_number,
                posting_status=PostingStatus.VOIDED,
                requires_approval=transaction.requires_approval,
                message=f"Transaction {void.order_id} voided",
            )

    async def _cancel_journal(self, transaction: UniversalTransaction) -> None:
        journal_id = transaction.mapped_accounts.journal_entry_id
        if not journal_id:
            return
        journal = await self.builder.get_journal(journal_id)
        if journal is not None and journal.status != JournalStatus.CANCELLED:
            await self.builder.update_status(journal_id, JournalStatus.CANCELLED)

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_transaction(self, organization_id: str, transaction_number: str) -> Optional[UniversalTransaction]:
        """Load a universal transaction by number (None if unknown)."""
        return await records.find_transaction(self.adapter, organization_id, transaction_number)

    # =========================================================================
    # Audit
    # =========================================================================

    def _audit(self, event_type: AuditEventType, message: str, transaction: UniversalTransaction, **kwargs) -> None:
        if self.audit is None:
            return
        self.audit.log_info(
            event_type,
            message,
            organization_id=transaction.organization_id,
            transaction_number=transaction.transaction_number,
            journal_number=transaction.mapped_accounts.journal_number,
            **kwargs,
        )

    def _audit_classification(self, transaction: UniversalTransaction, classification) -> None:
        if self.audit is None:
            return
        details = {
            "confidence": classification.confidence,
            "review_required": classification.review_required,
            "risk_factors": [r.to_dict() for r in classification.risk_factors],
        }
        if classification.degraded:
            self.audit.log_warning(
                AuditEventType.CLASSIFICATION_DEGRADED,
                f"Degraded classification for {transaction.transaction_number}",
                organization_id=transaction.organization_id,
                transaction_number=transaction.transaction_number,
                details=details,
            )
        else:
            self.audit.log_info(
                AuditEventType.CLASSIFICATION_COMPLETED,
                f"{transaction.transaction_number} classified at {classification.confidence:.2f}",
                organization_id=transaction.organization_id,
                transaction_number=transaction.transaction_number,
                details=details,
            )

    def _audit_posting(self, transaction: UniversalTransaction, posted: bool, reason: str) -> None:
        if posted:
            self._audit(AuditEventType.TRANSACTION_POSTED, f"{transaction.transaction_number} posted", transaction)
        else:
            self._audit(
                AuditEventType.TRANSACTION_HELD_FOR_REVIEW,
                f"{transaction.transaction_number} held as draft: {reason}",
                transaction,
                details={"reason": reason},
            )
