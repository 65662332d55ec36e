"""Classification-engine performance metrics."""

from typing import Iterable

from reconciler.models.analytics import ReconciliationMetrics
from reconciler.models.transaction import (
    ClassificationSource,
    Transaction,
    TransactionPattern,
    ValidationStatus,
)

# Manual review time an automatic validation saves
MINUTES_PER_TRANSACTION = 2
HIGH_CONFIDENCE_PATTERN = 0.85

_HUMAN_SOURCES = (ClassificationSource.MANUAL, ClassificationSource.NONE)


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def compute_reconciliation_metrics(
    transactions: Iterable[Transaction],
    patterns: Iterable[TransactionPattern] = (),
) -> ReconciliationMetrics:
    """Counts and rates over an organization's transactions and patterns."""
    transactions = list(transactions)
    patterns = list(patterns)

    validated = [t for t in transactions if t.validation_status == ValidationStatus.VALIDATED]
    auto_validated = sum(1 for t in validated if t.classification_source not in _HUMAN_SOURCES)
    manually_validated = len(validated) - auto_validated
    pending = sum(
        1 for t in transactions
        if t.validation_status in (ValidationStatus.PENDING_VALIDATION, ValidationStatus.NEEDS_REVIEW)
    )

    by_source = {source: 0 for source in ClassificationSource}
    for t in transactions:
        by_source[t.classification_source] += 1

    total = len(transactions)
    return ReconciliationMetrics(
        total_transactions=total,
        auto_validated=auto_validated,
        manually_validated=manually_validated,
        pending=pending,
        by_rule=by_source[ClassificationSource.RULE],
        by_pattern=by_source[ClassificationSource.PATTERN],
        by_ai=by_source[ClassificationSource.AI],
        auto_validation_rate=_rate(auto_validated, len(validated)),
        rule_match_rate=_rate(by_source[ClassificationSource.RULE], total),
        pattern_match_rate=_rate(by_source[ClassificationSource.PATTERN], total),
        total_patterns=len(patterns),
        high_confidence_patterns=sum(
            1 for p in patterns if p.confidence >= HIGH_CONFIDENCE_PATTERN
        ),
        estimated_minutes_saved=auto_validated * MINUTES_PER_TRANSACTION,
    )
