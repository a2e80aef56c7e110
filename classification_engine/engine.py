"""
Classification Engine

Main engine that classifies universal transactions:
1. Extract the feature vector
2. Score heuristics from the base confidence
3. Lift confidence to the first matching known pattern
4. Map accounts
5. Assess risks and adjust confidence
6. Decide whether manual review is required

Any failure along the way yields the degraded classification instead of
raising.
"""

from typing import Optional, Dict, Any, List

from core.config import PipelineConfig, default_config
from core.models.ledger import TransactionSubtype, TransactionType, UniversalTransaction
from core.observability.logging import get_logger
from core.observability.metrics import record_classification

from .features import extract_features
from .models import (
    RiskFactor,
    RiskSeverity,
    RiskType,
    TransactionClassification,
)
from .rules import (
    apply_risk_adjustment,
    assess_risks,
    degraded_mapping,
    map_accounts,
    match_pattern,
    score_heuristics,
)

logger = get_logger(__name__)


class ClassificationEngine:
    """
    Heuristic classifier that scores a transaction and picks its accounts.

    Usage:
        engine = ClassificationEngine(config)
        classification = engine.classify(transaction)
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        """
        Initialize the classification engine.

        Args:
            config: Immutable pipeline configuration (defaults to built-ins)
        """
        self.config = config or default_config()
        self.settings = self.config.classification
        self.catalog = self.config.accounts

    def classify(self, transaction: UniversalTransaction) -> TransactionClassification:
        """
        Classify a universal transaction.

        Args:
            transaction: Transaction to classify

        Returns:
            TransactionClassification (degraded if scoring fails)
        """
        try:
            classification = self._classify(transaction)
        except Exception as e:
            logger.warning(
                f"Classification failed, using degraded classification: {e}",
                extra_fields={"transaction_number": transaction.transaction_number},
            )
            classification = self.degraded(str(e))

        record_classification(
            classification.transaction_type.value,
            classification.review_required,
            classification.degraded,
        )
        return classification

    def _classify(self, transaction: UniversalTransaction) -> TransactionClassification:
        features = extract_features(transaction)

        confidence, reasons = score_heuristics(features, self.settings)

        pattern = match_pattern(features, self.settings.patterns)
        if pattern is not None:
            confidence = max(confidence, pattern.confidence)
            reasons.append(pattern.description)

        mapping = map_accounts(features, self.catalog, self.settings)

        risks = assess_risks(features, self.settings)
        confidence = apply_risk_adjustment(confidence, risks, self.settings)

        has_high_risk = any(r.severity == RiskSeverity.HIGH for r in risks)
        review_required = confidence < self.settings.review_threshold or has_high_risk

        logger.debug(
            f"Classified {transaction.transaction_number} with confidence {confidence:.3f}",
            extra_fields={
                "matched_pattern": pattern.description if pattern else None,
                "risk_count": len(risks),
                "review_required": review_required,
            },
        )

        return TransactionClassification(
            transaction_type=transaction.transaction_type,
            transaction_subtype=transaction.transaction_subtype,
            confidence=confidence,
            account_mapping=mapping,
            risk_factors=risks,
            review_required=review_required,
            reasons=reasons,
            matched_pattern=pattern.description if pattern else None,
            features=features.to_dict(),
        )

    def degraded(self, error: Optional[str] = None) -> TransactionClassification:
        """
        Fallback classification used when scoring cannot complete.

        Args:
            error: Failure message recorded in the reasons

        Returns:
            SALES_ORDER classification at minimum confidence, review required
        """
        reasons = ["Classification unavailable, using default mapping"]
        if error:
            reasons.append(f"Error: {error}")

        return TransactionClassification(
            transaction_type=TransactionType.SALES_ORDER,
            transaction_subtype=TransactionSubtype.POS_SALE,
            confidence=self.settings.degraded_confidence,
            account_mapping=degraded_mapping(self.catalog),
            risk_factors=[
                RiskFactor(
                    type=RiskType.PATTERN,
                    severity=RiskSeverity.MEDIUM,
                    description="Automatic classification failed",
                    score=0.5,
                )
            ],
            review_required=True,
            reasons=reasons,
            degraded=True,
        )


# =============================================================================
# Convenience Functions
# =============================================================================

def classify_transaction(
    transaction: UniversalTransaction,
    config: Optional[PipelineConfig] = None,
) -> TransactionClassification:
    """
    Convenience function to classify one transaction.

    Args:
        transaction: Universal transaction
        config: Pipeline configuration (optional)

    Returns:
        TransactionClassification result
    """
    return ClassificationEngine(config).classify(transaction)


def preview(
    transactions: List[UniversalTransaction],
    config: Optional[PipelineConfig] = None,
) -> List[Dict[str, Any]]:
    """
    Preview how transactions would be classified.

    Useful for tuning patterns and thresholds.

    Args:
        transactions: Universal transactions to classify
        config: Pipeline configuration (optional)

    Returns:
        List of {transaction_number, transaction_type, confidence, review_required, matched_pattern}
    """
    engine = ClassificationEngine(config)
    results = []

    for transaction in transactions:
        classification = engine.classify(transaction)
        results.append({
            "transaction_number": transaction.transaction_number,
            "transaction_type": classification.transaction_type.value,
            "confidence": round(classification.confidence, 4),
            "review_required": classification.review_required,
            "matched_pattern": classification.matched_pattern,
        })

    return results
