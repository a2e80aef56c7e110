"""Core canonical data models - POS domain inputs.

These models represent the already-formed domain objects that upstream POS
surfaces hand to the ledger pipeline: completed orders, payment
confirmations, refunds and voids.

Inputs accept both snake_case and camelCase keys so POS clients can post
their native payloads unchanged.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


# =============================================================================
# Value Parsers (handle various input formats from POS clients)
# =============================================================================

def _finite(parsed: Decimal, value) -> Decimal:
    if not parsed.is_finite():
        raise ValueError(f"invalid decimal: {value!r}")
    return parsed


def _parse_decimal(value):
    """Parse decimal from various formats (string with $ or commas, floats, etc.)."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return _finite(value, value)
    if isinstance(value, bool):
        raise ValueError(f"invalid decimal: {value!r}")
    if isinstance(value, (int, float)):
        return _finite(Decimal(str(value)), value)
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return None
        s = s.replace("$", "").replace(",", "")
        if s.startswith("(") and s.endswith(")"):
            s = "-" + s[1:-1]
        try:
            parsed = Decimal(s)
        except InvalidOperation:
            raise ValueError(f"invalid decimal: {value!r}")
        return _finite(parsed, value)
    return value


def _parse_int(value):
    """Parse integer from various formats."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        s = value.strip().replace(",", "")
        if s == "":
            return None
        return int(float(s))
    return value


# Annotated types for automatic parsing
DecimalValue = Annotated[Decimal, BeforeValidator(_parse_decimal)]
IntValue = Annotated[int, BeforeValidator(_parse_int)]


# =============================================================================
# Base Model
# =============================================================================

class CanonicalBase(BaseModel):
    """Base model for all canonical POS inputs."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class OrderStatus(str, Enum):
    """Lifecycle status of a POS order."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# =============================================================================
# Order Components
# =============================================================================

class OrderItem(CanonicalBase):
    """A single line on a POS order."""
    id: Optional[str] = None
    name: str
    category: str = "food"
    quantity: IntValue = 1
    unit_price: DecimalValue
    total_price: Optional[DecimalValue] = None
    tags: List[str] = Field(default_factory=list)

    @property
    def line_total(self) -> Decimal:
        """Explicit total price, or quantity x unit price."""
        if self.total_price is not None:
            return self.total_price
        return self.unit_price * self.quantity

    def has_tag(self, tag: str) -> bool:
        """True when the item's category or any tag equals ``tag``."""
        tag = tag.lower()
        return self.category.lower() == tag or tag in (t.lower() for t in self.tags)


class PaymentInfo(CanonicalBase):
    """Tender used to settle an order."""
    method: str = "cash"
    provider: Optional[str] = None
    amount: DecimalValue
    reference: Optional[str] = None
    timestamp: Optional[datetime] = None


class StaffMember(CanonicalBase):
    """Staff attribution for an order."""
    id: str
    name: Optional[str] = None


class Location(CanonicalBase):
    """Store / restaurant location attribution."""
    id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None


class Order(CanonicalBase):
    """A completed commerce transaction from the POS surface."""
    id: str
    order_number: str
    organization_id: str
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: DecimalValue
    taxes: DecimalValue = Decimal("0")
    discounts: DecimalValue = Decimal("0")
    service_charges: DecimalValue = Decimal("0")
    total_amount: DecimalValue
    payment: PaymentInfo
    status: OrderStatus = OrderStatus.COMPLETED
    created_at: datetime
    completed_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    table_number: Optional[str] = None
    staff_member: Optional[StaffMember] = None
    location: Optional[Location] = None
    currency: Optional[str] = None
    # Combined statutory rate in percent; None means use the configured default
    tax_jurisdiction_rate: Optional[DecimalValue] = None

    @property
    def completion_time(self) -> datetime:
        """When the order was completed (falls back to creation time)."""
        return self.completed_at or self.created_at


# =============================================================================
# Follow-up Domain Actions
# =============================================================================

class PaymentReceived(CanonicalBase):
    """Payment confirmation for a previously completed order."""
    method: str
    provider: Optional[str] = None
    amount: DecimalValue
    reference: Optional[str] = None
    timestamp: datetime
    order_id: str
    organization_id: str


class RefundProcessed(CanonicalBase):
    """Refund issued against an order."""
    order_id: str
    refund_amount: Annotated[DecimalValue, Field(gt=0)]
    reason: str
    organization_id: str
    user_id: Optional[str] = None


class OrderVoided(CanonicalBase):
    """Void of a previously completed order."""
    order_id: str
    reason: str
    organization_id: str
    user_id: Optional[str] = None
