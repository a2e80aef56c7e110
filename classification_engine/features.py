"""
Feature Extraction

Builds the classification feature vector from a universal transaction's
payload. Hour and day come from the payment timestamp when one is attached,
otherwise from the completion (or refund processing) timestamp.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from core.models.ledger import RefundPayload, SalePayload, UniversalTransaction

from .models import CustomerType, TransactionFeatures


def normalize_payment_method(method: Optional[str]) -> str:
    """Lowercase a payment method and join words with underscores."""
    return (method or "cash").strip().lower().replace("-", "_").replace(" ", "_")


def _event_time(transaction: UniversalTransaction) -> datetime:
    payload = transaction.transaction_data
    if payload.payment is not None and payload.payment.timestamp is not None:
        return payload.payment.timestamp
    if isinstance(payload, SalePayload) and payload.completed_at is not None:
        return payload.completed_at
    if isinstance(payload, RefundPayload) and payload.processed_at is not None:
        return payload.processed_at
    return transaction.created_at


def _distinct(values: List[str]) -> List[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def extract_features(transaction: UniversalTransaction) -> TransactionFeatures:
    """
    Extract the feature vector for a transaction.

    Args:
        transaction: Universal transaction with a sale or refund payload

    Returns:
        TransactionFeatures
    """
    payload = transaction.transaction_data
    when = _event_time(transaction)
    amount = abs(transaction.total_amount)

    payment_method = normalize_payment_method(payload.payment.method if payload.payment else None)

    if isinstance(payload, SalePayload):
        items = payload.items
        line_totals = [item.line_total for item in items]
        item_count = len(items)
        average = (sum(line_totals, Decimal("0")) / item_count) if item_count else Decimal("0")
        subtotal = payload.subtotal
        effective_rate = (payload.taxes / subtotal * 100) if subtotal > 0 else Decimal("0")
        customer_type = CustomerType.REGULAR if payload.customer_name else CustomerType.WALK_IN

        return TransactionFeatures(
            amount=amount,
            payment_method=payment_method,
            item_categories=_distinct([item.category.strip().lower() for item in items]),
            hour_of_day=when.hour,
            day_of_week=when.weekday(),
            customer_type=customer_type,
            item_count=item_count,
            average_item_price=average,
            subtotal=subtotal,
            discount_amount=payload.discounts,
            service_charge_amount=payload.service_charges,
            tax_amount=payload.taxes,
            effective_tax_rate=effective_rate,
            location=payload.location_name,
            staff_member=payload.staff_member_id,
        )

    return TransactionFeatures(
        amount=amount,
        payment_method=payment_method,
        hour_of_day=when.hour,
        day_of_week=when.weekday(),
        subtotal=amount,
    )
