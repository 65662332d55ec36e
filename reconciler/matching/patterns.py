"""
Pattern Learner & Matcher

Patterns are the engine's memory of human decisions. Every time a user
validates a categorized transaction, the learner records (or reinforces)
the association normalized description -> category.

CONFIDENCE GROWTH:
    first validation:  occurrences = 1, confidence = 0.60
    each repeat:       confidence = min(0.99, 0.55 + occurrences * 0.05)

A single observation never reaches the auto-validation threshold alone.
Six consistent validations do (0.85). Confidence never reaches 1.0, which
is reserved for user-authored rules.

MULTIPLE CANDIDATES:
The same vendor string may have been validated into different categories
over time, so one lookup key can return several rows. The most supported
row wins: most occurrences, then highest confidence, then most recently
used, then lowest id.
"""

from decimal import Decimal
from typing import Callable, Iterable, Optional
from uuid import UUID

import structlog

from reconciler.config import ClassifierSettings, get_settings
from reconciler.matching.base import ClassificationMatcher
from reconciler.matching.normalizer import normalize
from reconciler.matching.rules import resolve_names
from reconciler.models.transaction import (
    ClassificationRequest,
    ClassificationResult,
    ClassificationSource,
    TransactionPattern,
    TransactionType,
    utcnow,
)
from reconciler.services.storage import (
    PatternStorageInterface,
    TaxonomyStorageInterface,
)

logger = structlog.get_logger(__name__)

INITIAL_CONFIDENCE = 0.6
CONFIDENCE_BASE = 0.55
CONFIDENCE_STEP = 0.05


def pattern_confidence(occurrences: int, cap: float = 0.99) -> float:
    """Confidence earned by a pattern seen ``occurrences`` times."""
    return round(min(cap, CONFIDENCE_BASE + occurrences * CONFIDENCE_STEP), 4)


def _support(pattern: TransactionPattern) -> tuple:
    return (
        -pattern.occurrences,
        -pattern.confidence,
        -pattern.last_used_at.timestamp(),
        str(pattern.id),
    )


def match_pattern(
    tx,
    patterns: Iterable[TransactionPattern],
    organization_id: Optional[UUID] = None,
    cap: float = 0.99,
) -> Optional[tuple[TransactionPattern, float]]:
    """
    Find the learned pattern for a transaction.

    Args:
        tx: Transaction or ClassificationRequest
        patterns: Candidate rows, usually prefiltered by storage
        organization_id: Defaults to tx.organization_id
        cap: Maximum confidence a pattern may report

    Returns:
        (pattern, confidence) or None
    """
    organization_id = organization_id or getattr(tx, "organization_id", None)
    normalized = normalize(tx.description)
    if organization_id is None or not normalized:
        return None

    candidates = [
        p for p in patterns
        if p.organization_id == organization_id
        and p.normalized_description == normalized
        and p.transaction_type == tx.type
    ]
    if not candidates:
        return None

    best = min(candidates, key=_support)
    return best, min(best.confidence, cap)


class PatternMatcher(ClassificationMatcher):
    """Second source: what humans validated for this description before."""

    source = ClassificationSource.PATTERN

    def __init__(
        self,
        pattern_storage: PatternStorageInterface,
        taxonomy_storage: TaxonomyStorageInterface,
        settings: Optional[ClassifierSettings] = None,
    ):
        self._patterns = pattern_storage
        self._taxonomy = taxonomy_storage
        self._settings = settings or get_settings().classifier

    async def attempt(
        self,
        request: ClassificationRequest,
    ) -> Optional[ClassificationResult]:
        if request.organization_id is None:
            return None

        normalized = normalize(request.description)
        if not normalized:
            return None

        candidates = await self._patterns.find_patterns(
            request.organization_id,
            normalized,
            request.type,
        )
        match = match_pattern(
            request,
            candidates,
            cap=self._settings.pattern_confidence_cap,
        )
        if match is None:
            return None

        pattern, confidence = match
        logger.info(
            "pattern_matched",
            pattern_id=str(pattern.id),
            occurrences=pattern.occurrences,
            confidence=confidence,
            candidates=len(candidates),
        )

        category_name, cost_center_name = await resolve_names(
            self._taxonomy,
            request.organization_id,
            pattern.category_id,
            pattern.cost_center_id,
        )
        return ClassificationResult(
            category_id=pattern.category_id,
            category_name=category_name,
            cost_center_id=pattern.cost_center_id,
            cost_center_name=cost_center_name,
            confidence=confidence,
            reasoning=(
                f"Based on {pattern.occurrences} validated transaction(s) "
                f"({pattern.confidence:.0%} historical confidence)"
            ),
            source=ClassificationSource.PATTERN,
            normalized_description=normalized,
        )


class PatternLearner:
    """
    Records human validations as patterns.

    Existing rows are reinforced through ``modify_pattern``, which applies
    the change atomically in storage. New keys go through
    ``create_pattern_if_absent``: when a concurrent learner wins the
    insert, this validation is counted on the winner's row instead.
    Nothing is raised for that case.
    """

    def __init__(
        self,
        pattern_storage: PatternStorageInterface,
        settings: Optional[ClassifierSettings] = None,
    ):
        self._patterns = pattern_storage
        self._settings = settings or get_settings().classifier

    async def learn(
        self,
        organization_id: UUID,
        description: Optional[str],
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        transaction_type: TransactionType,
        amount: Decimal,
    ) -> Optional[TransactionPattern]:
        """
        Learn from one validated transaction.

        Returns:
            The created or updated pattern, or None when nothing was learned
        """
        if category_id is None:
            return None

        normalized = normalize(description)
        if len(normalized) < self._settings.min_pattern_length:
            logger.debug("pattern_skipped_short_description", normalized=normalized)
            return None

        amount = abs(Decimal(amount))
        cap = self._settings.pattern_confidence_cap

        def reinforce(existing: TransactionPattern) -> TransactionPattern:
            occurrences = existing.occurrences + 1
            return existing.model_copy(update={
                "occurrences": occurrences,
                "avg_amount": (existing.avg_amount * existing.occurrences + amount) / occurrences,
                "confidence": max(existing.confidence, pattern_confidence(occurrences, cap)),
                "cost_center_id": cost_center_id or existing.cost_center_id,
                "last_used_at": utcnow(),
            })

        updated = await self._reinforce(organization_id, normalized, category_id, transaction_type, reinforce)
        if updated is not None:
            return updated

        pattern = TransactionPattern(
            organization_id=organization_id,
            normalized_description=normalized,
            category_id=category_id,
            cost_center_id=cost_center_id,
            transaction_type=transaction_type,
            avg_amount=amount,
            confidence=INITIAL_CONFIDENCE,
            occurrences=1,
        )
        stored = await self._patterns.create_pattern_if_absent(pattern)
        if stored is not None:
            logger.info("pattern_created", pattern_id=str(stored.id), normalized=normalized)
            return stored

        # Another learner inserted the key first; count this validation on its row
        logger.debug("pattern_insert_lost_race", normalized=normalized)
        return await self._reinforce(organization_id, normalized, category_id, transaction_type, reinforce)

    async def _reinforce(
        self,
        organization_id: UUID,
        normalized: str,
        category_id: UUID,
        transaction_type: TransactionType,
        reinforce: Callable[[TransactionPattern], TransactionPattern],
    ) -> Optional[TransactionPattern]:
        updated = await self._patterns.modify_pattern(
            organization_id,
            normalized,
            category_id,
            transaction_type,
            reinforce,
        )
        if updated is not None:
            logger.info(
                "pattern_updated",
                pattern_id=str(updated.id),
                occurrences=updated.occurrences,
                confidence=updated.confidence,
            )
        return updated
