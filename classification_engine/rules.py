"""
Classification Rules

Pure scoring functions applied by the classification engine:
- Heuristic confidence scoring
- Known-pattern matching
- Account mapping
- Risk assessment and final confidence adjustment
- Subtype detection for completed orders
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from core.config import AccountCatalog, ClassificationPattern, ClassificationSettings
from core.models.canonical import Order
from core.models.ledger import AccountMapping, TransactionSubtype

from .models import RiskFactor, RiskSeverity, RiskType, TransactionFeatures


DELIVERY_KEYWORD = "delivery"
TAKEAWAY_TAG = "takeaway"


# =============================================================================
# Subtype Detection
# =============================================================================

def determine_subtype(order: Order) -> TransactionSubtype:
    """
    Pick the sales subtype for a completed order.

    Precedence: delivery keyword in the customer reference, then a table
    number, then any item tagged takeaway, else a plain POS sale.
    """
    if order.customer_name and DELIVERY_KEYWORD in order.customer_name.lower():
        return TransactionSubtype.DELIVERY_ORDER
    if order.table_number:
        return TransactionSubtype.DINE_IN_ORDER
    if any(item.has_tag(TAKEAWAY_TAG) for item in order.items):
        return TransactionSubtype.TAKEAWAY_ORDER
    return TransactionSubtype.POS_SALE


# =============================================================================
# Heuristic Scoring
# =============================================================================

def _outside_business_hours(hour: int, settings: ClassificationSettings) -> bool:
    return hour < settings.business_hours_start or hour > settings.business_hours_end


def score_heuristics(
    features: TransactionFeatures,
    settings: ClassificationSettings,
) -> Tuple[float, List[str]]:
    """
    Apply multiplicative heuristic penalties to the base confidence.

    Returns:
        Tuple of (confidence, reasons)
    """
    confidence = settings.base_confidence
    reasons: List[str] = []

    if features.amount > settings.large_amount_threshold:
        confidence *= settings.large_amount_factor
        reasons.append(f"Large transaction amount ({features.amount})")

    if features.payment_method == "cash" and features.amount > settings.large_cash_threshold:
        confidence *= settings.large_cash_factor
        reasons.append("Large cash payment")

    if _outside_business_hours(features.hour_of_day, settings):
        confidence *= settings.off_hours_factor
        reasons.append(f"Transaction outside business hours ({features.hour_of_day}:00)")

    if features.item_count > settings.many_items_threshold:
        confidence *= settings.many_items_factor
        reasons.append(f"Unusually many items ({features.item_count})")

    if features.has_discounts:
        confidence *= settings.discount_factor
        reasons.append("Discount applied")

    return confidence, reasons


def match_pattern(
    features: TransactionFeatures,
    patterns: Tuple[ClassificationPattern, ...],
) -> Optional[ClassificationPattern]:
    """Return the first pattern matching the transaction's amount, hour and payment method."""
    for pattern in patterns:
        if pattern.matches(features.amount, features.hour_of_day, features.payment_method):
            return pattern
    return None


# =============================================================================
# Account Mapping
# =============================================================================

def map_accounts(
    features: TransactionFeatures,
    catalog: AccountCatalog,
    settings: ClassificationSettings,
) -> AccountMapping:
    """
    Choose the revenue, payment, tax, discount and service-charge accounts.

    Beverage anywhere on the order selects beverage revenue. Effective tax
    rate above the split threshold selects the first split-tax account.
    """
    if "beverage" in features.item_categories:
        revenue = catalog.revenue_account("beverage")
    else:
        revenue = catalog.revenue_account("food")

    if features.effective_tax_rate > settings.split_tax_threshold_pct:
        tax = catalog.split_tax_a
    else:
        tax = catalog.single_tax

    return AccountMapping(
        revenue=revenue,
        cash=catalog.payment_account(features.payment_method),
        tax=tax,
        discount=catalog.discount if features.has_discounts else None,
        service_charge=catalog.service_charge if features.has_service_charges else None,
    )


def degraded_mapping(catalog: AccountCatalog) -> AccountMapping:
    """Food revenue, cash, first split-tax account."""
    return AccountMapping(
        revenue=catalog.revenue_account("food"),
        cash=catalog.payment_account("cash"),
        tax=catalog.split_tax_a,
    )


# =============================================================================
# Risk Assessment
# =============================================================================

def assess_risks(
    features: TransactionFeatures,
    settings: ClassificationSettings,
) -> List[RiskFactor]:
    """Detect amount, time, cash and discount risks."""
    risks: List[RiskFactor] = []

    if features.amount > settings.high_amount_risk_threshold:
        risks.append(RiskFactor(
            type=RiskType.AMOUNT,
            severity=RiskSeverity.HIGH,
            description=f"Very high transaction amount ({features.amount})",
            score=0.8,
        ))
    elif features.amount > settings.large_amount_threshold:
        risks.append(RiskFactor(
            type=RiskType.AMOUNT,
            severity=RiskSeverity.MEDIUM,
            description=f"High transaction amount ({features.amount})",
            score=0.5,
        ))

    if _outside_business_hours(features.hour_of_day, settings):
        risks.append(RiskFactor(
            type=RiskType.TIME,
            severity=RiskSeverity.MEDIUM,
            description=f"Transaction at unusual hour ({features.hour_of_day}:00)",
            score=0.6,
        ))

    if features.payment_method == "cash" and features.amount > settings.large_cash_threshold:
        risks.append(RiskFactor(
            type=RiskType.PATTERN,
            severity=RiskSeverity.MEDIUM,
            description="Large cash transaction",
            score=0.5,
        ))

    if features.has_discounts and features.discount_percentage >= settings.discount_risk_threshold_pct:
        pct = features.discount_percentage.quantize(Decimal("0.1"))
        risks.append(RiskFactor(
            type=RiskType.PATTERN,
            severity=RiskSeverity.HIGH,
            description=f"Unusually high discount ({pct}% of subtotal)",
            score=0.7,
        ))

    return risks


def apply_risk_adjustment(
    confidence: float,
    risks: List[RiskFactor],
    settings: ClassificationSettings,
) -> float:
    """Scale confidence per risk severity and clamp to the configured range."""
    for risk in risks:
        if risk.severity == RiskSeverity.HIGH:
            confidence *= settings.high_risk_factor
        elif risk.severity == RiskSeverity.MEDIUM:
            confidence *= settings.medium_risk_factor

    return max(settings.min_confidence, min(settings.max_confidence, confidence))
