"""
Classification Engine Tests

Covers heuristic scoring, pattern lifting, account mapping, risk factors,
the review rule, subtype detection and the degraded fallback.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.config import ClassificationPattern
from core.models.ledger import TransactionSubtype, TransactionType
from classification_engine import (
    ClassificationEngine,
    RiskSeverity,
    RiskType,
    determine_subtype,
    extract_features,
    match_pattern,
    preview,
)


BEVERAGE_ITEMS = [
    {"name": "Pasta", "category": "food", "quantity": 1, "unitPrice": "60.00"},
    {"name": "Wine", "category": "beverage", "quantity": 2, "unitPrice": "20.00"},
]


class TestFeatureExtraction:
    """Feature vector built from a sale payload."""

    def test_sale_features(self, make_transaction):
        txn = make_transaction(method="Credit Card")
        features = extract_features(txn)

        assert features.amount == Decimal("120.00")
        assert features.payment_method == "credit_card"
        assert features.item_categories == ["food"]
        assert features.item_count == 3
        assert features.hour_of_day == 12
        assert features.average_item_price == Decimal("40")

    def test_effective_tax_rate(self, make_transaction):
        txn = make_transaction(subtotal="100.00", taxes="18.00", totalAmount="118.00", items=BEVERAGE_ITEMS)
        assert extract_features(txn).effective_tax_rate == Decimal("18")

    def test_discount_percentage(self, make_transaction):
        txn = make_transaction(subtotal="120.00", discounts="30.00", totalAmount="90.00")
        features = extract_features(txn)
        assert features.has_discounts
        assert features.discount_percentage == Decimal("25")


class TestScoring:
    """Confidence scoring and the review rule."""

    def test_lunch_cash_order_is_auto_postable(self, make_transaction):
        """120 cash at lunch matches the lunch pattern with no risks."""
        classification = ClassificationEngine().classify(make_transaction())

        assert classification.transaction_type == TransactionType.SALES_ORDER
        assert classification.confidence == pytest.approx(0.95)
        assert classification.matched_pattern == "Lunch hour regular order"
        assert classification.risk_factors == []
        assert classification.review_required is False

    def test_pattern_restricted_to_payment_method(self, make_transaction):
        upi_lunch = ClassificationPattern(
            "UPI lunch order", Decimal("20"), Decimal("200"), 0.97, 11, 14, payment_method="UPI",
        )

        assert match_pattern(extract_features(make_transaction(method="upi")), (upi_lunch,)) is upi_lunch
        assert match_pattern(extract_features(make_transaction(method="cash")), (upi_lunch,)) is None

    def test_unrestricted_pattern_matches_any_tender(self, make_transaction):
        lunch = ClassificationPattern("Lunch", Decimal("20"), Decimal("200"), 0.95, 11, 14)

        for method in ("cash", "Credit Card", "upi"):
            assert match_pattern(extract_features(make_transaction(method=method)), (lunch,)) is lunch

    def test_large_cash_order_requires_review(self, make_transaction):
        """1,200 cash flags amount and cash risks and drops below 0.85."""
        txn = make_transaction(
            subtotal="1200.00",
            totalAmount="1200.00",
            items=[{"name": "Banquet", "category": "catering", "quantity": 1, "unitPrice": "1200.00"}],
        )
        classification = ClassificationEngine().classify(txn)

        descriptions = [r.description for r in classification.risk_factors]
        assert any("High transaction amount" in d for d in descriptions)
        assert "Large cash transaction" in descriptions
        assert classification.confidence < 0.85
        assert classification.review_required is True

    def test_very_high_amount_is_high_risk(self, make_transaction):
        txn = make_transaction(
            method="credit_card",
            subtotal="6000.00",
            totalAmount="6000.00",
            items=[{"name": "Wedding", "category": "catering", "quantity": 1, "unitPrice": "6000.00"}],
        )
        classification = ClassificationEngine().classify(txn)

        assert [r.type for r in classification.high_risks] == [RiskType.AMOUNT]
        assert classification.review_required is True

    def test_off_hours_order_flags_time_risk(self, make_transaction):
        txn = make_transaction(when=datetime(2024, 1, 9, 3, 15, tzinfo=timezone.utc))
        classification = ClassificationEngine().classify(txn)

        time_risks = [r for r in classification.risk_factors if r.type == RiskType.TIME]
        assert len(time_risks) == 1
        assert time_risks[0].severity == RiskSeverity.MEDIUM
        assert classification.matched_pattern is None
        assert classification.review_required is True

    def test_disproportionate_discount_is_high_risk(self, make_transaction):
        txn = make_transaction(subtotal="120.00", discounts="30.00", totalAmount="90.00")
        classification = ClassificationEngine().classify(txn)

        assert any("Unusually high discount" in r.description for r in classification.high_risks)
        assert classification.review_required is True

    def test_small_discount_is_not_a_risk(self, make_transaction):
        txn = make_transaction(subtotal="120.00", discounts="6.00", totalAmount="114.00")
        classification = ClassificationEngine().classify(txn)

        assert classification.high_risks == []
        assert "Discount applied" in classification.reasons

    def test_confidence_always_within_bounds(self, make_transaction):
        engine = ClassificationEngine()
        cases = [
            make_transaction(),
            make_transaction(when=datetime(2024, 1, 9, 2, 0, tzinfo=timezone.utc)),
            make_transaction(subtotal="9000.00", totalAmount="9000.00", discounts="0"),
            make_transaction(subtotal="120.00", discounts="100.00", totalAmount="20.00"),
        ]
        for txn in cases:
            classification = engine.classify(txn)
            assert 0.60 <= classification.confidence <= 0.99
            if classification.confidence < 0.85 or classification.high_risks:
                assert classification.review_required


class TestAccountMapping:
    """Payment, revenue and tax account selection."""

    def test_cash_food_single_tax(self, make_transaction):
        mapping = ClassificationEngine().classify(make_transaction()).account_mapping

        assert mapping.cash.code == "1110000"
        assert mapping.revenue.code == "4110000"
        assert mapping.tax.code == "2110003"
        assert mapping.discount is None
        assert mapping.service_charge is None

    def test_beverage_card_split_tax(self, make_transaction):
        txn = make_transaction(
            method="credit_card",
            items=BEVERAGE_ITEMS,
            subtotal="100.00",
            taxes="18.00",
            totalAmount="118.00",
        )
        mapping = ClassificationEngine().classify(txn).account_mapping

        assert mapping.cash.code == "1120000"
        assert mapping.revenue.code == "4120000"
        assert mapping.tax.code == "2110001"

    @pytest.mark.parametrize("method,code", [
        ("debit_card", "1120001"),
        ("UPI", "1121000"),
        ("digital-wallet", "1122000"),
        ("gift voucher", "1110000"),
    ])
    def test_payment_accounts(self, make_transaction, method, code):
        mapping = ClassificationEngine().classify(make_transaction(method=method)).account_mapping
        assert mapping.cash.code == code

    def test_discount_and_service_charge_slots(self, make_transaction):
        txn = make_transaction(subtotal="120.00", discounts="6.00", serviceCharges="12.00", totalAmount="126.00")
        mapping = ClassificationEngine().classify(txn).account_mapping

        assert mapping.discount.code == "5110000"
        assert mapping.service_charge.code == "4140000"


class TestDegradedClassification:
    """Failures fall back to a conservative classification."""

    def test_failure_degrades(self, make_transaction, monkeypatch):
        def broken(_):
            raise RuntimeError("feature store offline")

        monkeypatch.setattr("classification_engine.engine.extract_features", broken)
        classification = ClassificationEngine().classify(make_transaction())

        assert classification.degraded is True
        assert classification.confidence == pytest.approx(0.60)
        assert classification.review_required is True
        assert classification.account_mapping.cash.code == "1110000"
        assert classification.account_mapping.revenue.code == "4110000"
        assert classification.account_mapping.tax.code == "2110001"
        assert any("feature store offline" in reason for reason in classification.reasons)

    def test_degraded_classification_is_counted(self, make_transaction, monkeypatch):
        from core.observability.metrics import get_metrics

        def broken(_):
            raise ValueError("bad payload")

        monkeypatch.setattr("classification_engine.engine.extract_features", broken)
        ClassificationEngine().classify(make_transaction())

        summary = get_metrics().get_summary()["classifications"]
        assert summary["classified"] == 1
        assert summary["degraded"] == 1
        assert summary["review_required"] == 1


class TestSubtype:
    """Sales subtype precedence."""

    def test_delivery_keyword(self, make_order):
        order = make_order(customerName="Swiggy Delivery #42", tableNumber="T4")
        assert determine_subtype(order) == TransactionSubtype.DELIVERY_ORDER

    def test_dine_in(self, make_order):
        assert determine_subtype(make_order(tableNumber="T4")) == TransactionSubtype.DINE_IN_ORDER

    def test_takeaway_tag(self, make_order):
        order = make_order(items=[
            {"name": "Wrap", "category": "food", "unitPrice": "120.00", "tags": ["Takeaway"]},
        ])
        assert determine_subtype(order) == TransactionSubtype.TAKEAWAY_ORDER

    def test_takeaway_category(self, make_order):
        order = make_order(items=[{"name": "Box", "category": "takeaway", "unitPrice": "120.00"}])
        assert determine_subtype(order) == TransactionSubtype.TAKEAWAY_ORDER

    def test_plain_pos_sale(self, make_order):
        assert determine_subtype(make_order()) == TransactionSubtype.POS_SALE


def test_preview_rows(make_transaction):
    rows = preview([make_transaction(), make_transaction(orderNumber="ORD-2", subtotal="1200.00", totalAmount="1200.00")])

    assert [row["transaction_number"] for row in rows] == ["ORD-1", "ORD-2"]
    assert rows[0]["review_required"] is False
    assert rows[1]["review_required"] is True
