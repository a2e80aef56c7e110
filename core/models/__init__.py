"""Core data models - POS inputs and persisted ledger shapes.

This package contains the canonical POS input models, the ledger models the
pipeline persists, and the audit event model.
"""

from core.models.canonical import (
    # Base
    CanonicalBase,
    DecimalValue,
    IntValue,

    # Order
    Order,
    OrderItem,
    OrderStatus,
    PaymentInfo,
    StaffMember,
    Location,

    # Follow-up actions
    PaymentReceived,
    RefundProcessed,
    OrderVoided,
)

from core.models.ledger import (
    TransactionType,
    TransactionSubtype,
    PostingStatus,
    JournalStatus,
    AccountSlot,
    AccountMapping,
    MappedAccounts,
    PaymentConfirmation,
    SalePayload,
    RefundPayload,
    TransactionPayload,
    UniversalTransaction,
    JournalLineItem,
    JournalEntryRecord,
    JournalSummary,
    AccountingResult,
    quantize_money,
)

from core.models.refs import (
    AuditEvent,
    AuditSeverity,
)

__all__ = [
    # Base
    "CanonicalBase",
    "DecimalValue",
    "IntValue",

    # Order
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentInfo",
    "StaffMember",
    "Location",

    # Follow-up actions
    "PaymentReceived",
    "RefundProcessed",
    "OrderVoided",

    # Ledger
    "TransactionType",
    "TransactionSubtype",
    "PostingStatus",
    "JournalStatus",
    "AccountSlot",
    "AccountMapping",
    "MappedAccounts",
    "PaymentConfirmation",
    "SalePayload",
    "RefundPayload",
    "TransactionPayload",
    "UniversalTransaction",
    "JournalLineItem",
    "JournalEntryRecord",
    "JournalSummary",
    "AccountingResult",
    "quantize_money",

    # Audit
    "AuditEvent",
    "AuditSeverity",
]
