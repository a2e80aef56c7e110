"""
Classification Engine Models

Defines data structures for:
- Feature vectors extracted from universal transactions
- Risk factors
- Classification results
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any

from core.models.ledger import AccountMapping, TransactionSubtype, TransactionType


class RiskType(str, Enum):
    """What a risk factor is about."""
    AMOUNT = "amount"
    TIME = "time"
    FREQUENCY = "frequency"
    PATTERN = "pattern"
    CUSTOMER = "customer"


class RiskSeverity(str, Enum):
    """Risk severity (high risks force manual review)."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CustomerType(str, Enum):
    REGULAR = "regular"
    WALK_IN = "walk_in"


# =============================================================================
# Feature Vector
# =============================================================================

@dataclass
class TransactionFeatures:
    """
    Feature vector used for classification.

    Attributes:
        amount: Absolute transaction total
        payment_method: Normalized payment method (e.g. "cash", "credit_card")
        item_categories: Distinct item categories in order of appearance
        hour_of_day: Hour of the payment / completion timestamp (0-23)
        day_of_week: Day of week (0 = Monday)
        customer_type: regular when a customer is named, else walk_in
        item_count: Number of order lines
        average_item_price: Mean line total (0 when there are no lines)
        subtotal: Order subtotal
        discount_amount: Order discounts
        tax_amount: Order taxes
        effective_tax_rate: Taxes as a percent of subtotal
        location: Location name, if known
        staff_member: Staff member id, if known
    """
    amount: Decimal
    payment_method: str
    item_categories: List[str] = field(default_factory=list)
    hour_of_day: int = 12
    day_of_week: int = 0
    customer_type: CustomerType = CustomerType.WALK_IN
    item_count: int = 0
    average_item_price: Decimal = Decimal("0")
    subtotal: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    service_charge_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    effective_tax_rate: Decimal = Decimal("0")
    location: Optional[str] = None
    staff_member: Optional[str] = None

    @property
    def has_discounts(self) -> bool:
        return self.discount_amount > 0

    @property
    def has_service_charges(self) -> bool:
        return self.service_charge_amount > 0

    @property
    def discount_percentage(self) -> Decimal:
        """Discounts as a percent of subtotal (0 when subtotal is 0)."""
        if self.subtotal <= 0:
            return Decimal("0")
        return self.discount_amount / self.subtotal * 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "amount": str(self.amount),
            "payment_method": self.payment_method,
            "item_categories": list(self.item_categories),
            "hour_of_day": self.hour_of_day,
            "day_of_week": self.day_of_week,
            "customer_type": self.customer_type.value,
            "item_count": self.item_count,
            "average_item_price": str(self.average_item_price),
            "has_discounts": self.has_discounts,
            "has_service_charges": self.has_service_charges,
            "tax_amount": str(self.tax_amount),
            "effective_tax_rate": str(self.effective_tax_rate),
            "location": self.location,
            "staff_member": self.staff_member,
        }


# =============================================================================
# Classification Result Models
# =============================================================================

@dataclass
class RiskFactor:
    """A detected risk with a severity and score in [0, 1]."""
    type: RiskType
    severity: RiskSeverity
    description: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "score": self.score,
        }


@dataclass
class TransactionClassification:
    """
    Classification of a universal transaction.

    Attributes:
        transaction_type: Accounting transaction type
        transaction_subtype: Subtype of the transaction
        confidence: Final confidence in [0.60, 0.99]
        account_mapping: Accounts chosen for journal lines
        risk_factors: Detected risks
        review_required: Whether the transaction must go to manual review
        reasons: Human-readable scoring reasons, in order applied
        matched_pattern: Description of the first matching pattern, if any
        degraded: True when this is the fallback classification
        features: Snapshot of the feature vector
    """
    transaction_type: TransactionType
    transaction_subtype: TransactionSubtype
    confidence: float
    account_mapping: AccountMapping
    risk_factors: List[RiskFactor] = field(default_factory=list)
    review_required: bool = False
    reasons: List[str] = field(default_factory=list)
    matched_pattern: Optional[str] = None
    degraded: bool = False
    features: Dict[str, Any] = field(default_factory=dict)

    @property
    def high_risks(self) -> List[RiskFactor]:
        return [r for r in self.risk_factors if r.severity == RiskSeverity.HIGH]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "transaction_type": self.transaction_type.value,
            "transaction_subtype": self.transaction_subtype.value,
            "confidence": self.confidence,
            "account_mapping": self.account_mapping.model_dump(mode="json"),
            "risk_factors": [r.to_dict() for r in self.risk_factors],
            "review_required": self.review_required,
            "reasons": list(self.reasons),
            "matched_pattern": self.matched_pattern,
            "degraded": self.degraded,
            "features": dict(self.features),
        }

    def provenance(self) -> Dict[str, Any]:
        """Summary folded into journal entry provenance."""
        return {
            "classification_confidence": self.confidence,
            "transaction_type": self.transaction_type.value,
            "review_required": self.review_required,
            "reasons": list(self.reasons),
            "degraded": self.degraded,
        }
