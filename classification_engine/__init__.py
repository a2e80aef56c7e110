"""
Classification Engine Package

Heuristic classifier that turns a universal transaction into an accounting
classification with a confidence score, account mapping and risk factors.

Features:
- Multiplicative heuristic scoring from a base confidence
- Configurable known-pattern table
- Payment, revenue and tax account mapping
- Risk assessment that forces manual review
- Degraded fallback classification on any failure

Usage:
    from classification_engine import ClassificationEngine, preview

    engine = ClassificationEngine(config)
    classification = engine.classify(transaction)

    rows = preview([transaction_a, transaction_b])
"""

from .models import (
    # Enums
    RiskType,
    RiskSeverity,
    CustomerType,

    # Data classes
    TransactionFeatures,
    RiskFactor,
    TransactionClassification,
)

from .features import (
    extract_features,
    normalize_payment_method,
)

from .rules import (
    determine_subtype,
    score_heuristics,
    match_pattern,
    map_accounts,
    degraded_mapping,
    assess_risks,
    apply_risk_adjustment,
)

from .engine import (
    ClassificationEngine,
    classify_transaction,
    preview,
)

__all__ = [
    # Enums
    "RiskType",
    "RiskSeverity",
    "CustomerType",

    # Data classes
    "TransactionFeatures",
    "RiskFactor",
    "TransactionClassification",

    # Engine
    "ClassificationEngine",
    "classify_transaction",
    "preview",

    # Features
    "extract_features",
    "normalize_payment_method",

    # Rules
    "determine_subtype",
    "score_heuristics",
    "match_pattern",
    "map_accounts",
    "degraded_mapping",
    "assess_risks",
    "apply_risk_adjustment",
]
