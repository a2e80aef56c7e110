"""Ledger data models - universal transactions and journal entries.

These are the persisted shapes the pipeline writes to the entity/metadata
store and returns over HTTP. Field names are part of the external contract.

Opaque payloads are modeled as tagged, versioned values:
- transaction_data: SalePayload | RefundPayload keyed by ``kind``
- mapped_accounts: MappedAccounts

Each payload keeps the original domain object under ``raw`` so readers
written against a newer schema can still recover fields this version
does not model.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated

from core.models.canonical import DecimalValue, OrderItem


SCHEMA_VERSION = 1
CENT = Decimal("0.01")


def quantize_money(value) -> Decimal:
    """Round a money amount to cents (half up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class TransactionType(str, Enum):
    """Accounting transaction types produced by the pipeline."""
    SALES_ORDER = "SALES_ORDER"
    REFUND = "REFUND"


class TransactionSubtype(str, Enum):
    """Transaction subtypes."""
    DELIVERY_ORDER = "DELIVERY_ORDER"
    DINE_IN_ORDER = "DINE_IN_ORDER"
    TAKEAWAY_ORDER = "TAKEAWAY_ORDER"
    POS_SALE = "POS_SALE"
    CUSTOMER_REFUND = "CUSTOMER_REFUND"


class PostingStatus(str, Enum):
    """Posting status of a universal transaction."""
    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


class JournalStatus(str, Enum):
    """Status of a journal entry."""
    DRAFT = "draft"
    POSTED = "posted"
    CANCELLED = "cancelled"


# =============================================================================
# Base Model
# =============================================================================

class LedgerBase(BaseModel):
    """Base model for persisted ledger shapes."""
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Account Mapping
# =============================================================================

class AccountSlot(LedgerBase):
    """A chart-of-accounts reference."""
    model_config = ConfigDict(frozen=True)

    code: str
    name: str


class AccountMapping(LedgerBase):
    """Accounts selected for a transaction by the classification engine."""
    model_config = ConfigDict(frozen=True)

    revenue: AccountSlot
    cash: AccountSlot
    tax: AccountSlot
    discount: Optional[AccountSlot] = None
    service_charge: Optional[AccountSlot] = None


class MappedAccounts(LedgerBase):
    """Structured ``mapped_accounts`` value stored on a universal transaction."""
    schema_version: int = SCHEMA_VERSION
    accounts: Optional[AccountMapping] = None
    journal_entry_id: Optional[str] = None
    journal_number: Optional[str] = None


# =============================================================================
# Transaction Payloads
# =============================================================================

class PaymentConfirmation(LedgerBase):
    """Payment details attached to a transaction."""
    method: str
    provider: Optional[str] = None
    amount: DecimalValue
    reference: Optional[str] = None
    timestamp: Optional[datetime] = None


class PayloadBase(LedgerBase):
    """Fields shared by every ``transaction_data`` variant."""
    schema_version: int = SCHEMA_VERSION
    raw: Dict[str, Any] = Field(default_factory=dict)

    payment: Optional[PaymentConfirmation] = None
    payment_confirmed: bool = False
    payment_timestamp: Optional[datetime] = None

    void_reason: Optional[str] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[str] = None


class SalePayload(PayloadBase):
    """Payload of a SALES_ORDER transaction."""
    kind: Literal["sale"] = "sale"
    source: str = "restaurant_pos"
    pos_order_id: str
    customer_name: Optional[str] = None
    table_number: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: DecimalValue = Decimal("0")
    taxes: DecimalValue = Decimal("0")
    discounts: DecimalValue = Decimal("0")
    service_charges: DecimalValue = Decimal("0")
    tax_jurisdiction_rate: Optional[DecimalValue] = None
    staff_member_id: Optional[str] = None
    location_name: Optional[str] = None
    completed_at: Optional[datetime] = None


class RefundPayload(PayloadBase):
    """Payload of a REFUND transaction."""
    kind: Literal["refund"] = "refund"
    source: str = "pos_refund"
    original_order_id: str
    refund_amount: DecimalValue
    refund_reason: str
    processed_at: Optional[datetime] = None


TransactionPayload = Annotated[Union[SalePayload, RefundPayload], Field(discriminator="kind")]


# =============================================================================
# Universal Transaction
# =============================================================================

class UniversalTransaction(LedgerBase):
    """A business event recorded as a financial transaction."""
    id: str
    organization_id: str
    transaction_type: TransactionType
    transaction_subtype: TransactionSubtype
    transaction_number: str
    transaction_date: date
    total_amount: DecimalValue
    currency: str = "USD"
    is_financial: bool = True
    posting_status: PostingStatus = PostingStatus.DRAFT
    mapped_accounts: MappedAccounts = Field(default_factory=MappedAccounts)
    transaction_data: TransactionPayload
    created_by: Optional[str] = None
    requires_approval: bool = False
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Journal Entries
# =============================================================================

class JournalLineItem(LedgerBase):
    """One debit or credit line of a journal entry."""
    model_config = ConfigDict(frozen=True)

    line_number: int
    account_code: str
    account_name: str
    debit: DecimalValue = Decimal("0.00")
    credit: DecimalValue = Decimal("0.00")
    description: str = ""
    reference: Optional[str] = None


class JournalEntryRecord(LedgerBase):
    """A balanced double-entry journal derived from one transaction."""
    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    transaction_id: Optional[str] = None
    journal_number: str
    date: date
    description: str
    total_debit: DecimalValue
    total_credit: DecimalValue
    status: JournalStatus = JournalStatus.DRAFT
    lines: List[JournalLineItem] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    provenance: Dict[str, Any] = Field(default_factory=dict)

    def with_status(self, status: JournalStatus) -> "JournalEntryRecord":
        """Copy of this journal with a new status and updated timestamp."""
        return self.model_copy(update={"status": status, "updated_at": utcnow()})


class JournalSummary(LedgerBase):
    """Dashboard-facing journal summary."""
    id: str
    journal_number: str
    date: date
    description: str
    total_debit: DecimalValue
    total_credit: DecimalValue
    status: JournalStatus
    line_count: int


# =============================================================================
# Results
# =============================================================================

class AccountingResult(LedgerBase):
    """Outcome of handling one POS event."""
    success: bool
    transaction_id: Optional[str] = None
    journal_entry_id: Optional[str] = None
    journal_number: Optional[str] = None
    posting_status: Optional[PostingStatus] = None
    requires_approval: Optional[bool] = None
    message: str = ""
    error: Optional[str] = None
    advisories: List[str] = Field(default_factory=list)

    @classmethod
    def failed(cls, message: str, error: Optional[str] = None, **kwargs) -> "AccountingResult":
        """Build a failed result."""
        return cls(success=False, message=message, error=error or message, **kwargs)
