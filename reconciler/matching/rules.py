"""
Reconciliation Rule Matcher

Rules are user-authored, so a hit is a certainty: confidence 1.0 and
always auto-validated.

Matching is literal, ignoring case and accents:
- exact: the whole description equals the rule text
- contains: the rule text occurs anywhere in the description
If the rule has an amount, the absolute amounts must also be equal.

When several rules match, the most specific wins:
1. exact before contains
2. amount-qualified before amount-less
3. earliest created
4. lowest id (stable last resort)
"""

from decimal import Decimal
from typing import Iterable, Optional, Protocol
from uuid import UUID

import structlog

from reconciler.matching.base import ClassificationMatcher
from reconciler.matching.normalizer import fold
from reconciler.models.transaction import (
    ClassificationRequest,
    ClassificationResult,
    ClassificationSource,
    MatchMode,
    ReconciliationRule,
    TransactionType,
)
from reconciler.services.storage import RuleStorageInterface, TaxonomyStorageInterface

logger = structlog.get_logger(__name__)


class _Matchable(Protocol):
    """Anything with the fields a rule looks at (Transaction or request)."""
    description: Optional[str]
    amount: Decimal
    type: TransactionType


def _description_matches(rule: ReconciliationRule, description: str) -> bool:
    text = fold(description)
    key = fold(rule.description)
    if not key:
        return False
    if rule.match_mode == MatchMode.EXACT:
        return text == key
    return key in text


def _amount_matches(rule: ReconciliationRule, amount: Decimal) -> bool:
    if rule.amount is None:
        return True
    return abs(Decimal(amount)) == abs(rule.amount)


def _specificity(rule: ReconciliationRule) -> tuple:
    return (
        0 if rule.match_mode == MatchMode.EXACT else 1,
        0 if rule.amount is not None else 1,
        rule.created_at,
        str(rule.id),
    )


def match_rule(
    tx: _Matchable,
    rules: Iterable[ReconciliationRule],
) -> Optional[ReconciliationRule]:
    """
    Pick the rule that classifies a transaction, or None.

    Only active rules of the transaction's type that carry a category
    are eligible.
    """
    if not tx.description:
        return None

    candidates = [
        rule for rule in rules
        if rule.is_active
        and rule.category_id is not None
        and rule.transaction_type == tx.type
        and _description_matches(rule, tx.description)
        and _amount_matches(rule, tx.amount)
    ]
    if not candidates:
        return None
    return min(candidates, key=_specificity)


class RuleMatcher(ClassificationMatcher):
    """First and highest-trust source: the organization's own rules."""

    source = ClassificationSource.RULE

    def __init__(
        self,
        rule_storage: RuleStorageInterface,
        taxonomy_storage: TaxonomyStorageInterface,
    ):
        self._rules = rule_storage
        self._taxonomy = taxonomy_storage

    async def attempt(
        self,
        request: ClassificationRequest,
    ) -> Optional[ClassificationResult]:
        if request.organization_id is None:
            return None

        rules = await self._rules.list_rules(
            request.organization_id,
            transaction_type=request.type,
        )
        rule = match_rule(request, rules)
        if rule is None:
            return None

        logger.info(
            "rule_matched",
            rule_id=str(rule.id),
            rule_description=rule.description,
            match_mode=rule.match_mode.value,
        )

        category_name, cost_center_name = await resolve_names(
            self._taxonomy,
            request.organization_id,
            rule.category_id,
            rule.cost_center_id,
        )
        return ClassificationResult(
            category_id=rule.category_id,
            category_name=category_name,
            cost_center_id=rule.cost_center_id,
            cost_center_name=cost_center_name,
            confidence=1.0,
            reasoning=f'Classified by rule "{rule.description}"',
            source=ClassificationSource.RULE,
        )


async def resolve_names(
    taxonomy: TaxonomyStorageInterface,
    organization_id: Optional[UUID],
    category_id: Optional[UUID],
    cost_center_id: Optional[UUID],
) -> tuple[Optional[str], Optional[str]]:
    """Display names for a category/cost-center pair."""
    category_name = None
    cost_center_name = None

    if category_id is not None:
        for category in await taxonomy.list_categories(organization_id):
            if category.id == category_id:
                category_name = category.name
                break

    if cost_center_id is not None:
        for cost_center in await taxonomy.list_cost_centers(organization_id):
            if cost_center.id == cost_center_id:
                cost_center_name = cost_center.name
                break

    return category_name, cost_center_name
