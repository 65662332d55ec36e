"""
Shared fixtures.

External services are never called: storage is in-memory and the
language model is a scripted FakeGateway. Coroutines are driven with
asyncio.run through the ``run`` fixture.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest

from reconciler.agents import LLMGateway, LLMResponse
from reconciler.audit import AuditLogger
from reconciler.config import ClassifierSettings, TransferSettings
from reconciler.matching import PatternLearner
from reconciler.models import (
    Category,
    CostCenter,
    ReconciliationRule,
    Transaction,
    TransactionPattern,
    TransactionType,
)
from reconciler.orchestrator import (
    ClassificationOrchestrator,
    ReconciliationService,
    build_matchers,
)
from reconciler.services.storage import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryPatternStorage,
    InMemoryRuleStorage,
    InMemoryTaxonomyStorage,
    InMemoryTransactionStorage,
)
from reconciler.transfers import TransferDeduplicator


class FakeGateway(LLMGateway):
    """Scripted language model: returns ``text`` or raises ``error``."""

    name = "fake-llm"

    def __init__(
        self,
        text: str = "{}",
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.text = text
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    async def invoke(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        self.calls.append((system_prompt, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LLMResponse(text=self.text, model=self.name, token_usage=42)


@dataclass
class Taxonomy:
    organization_id: UUID
    lazer: Category
    supermercado: Category
    salario: Category
    casa: CostCenter

    @property
    def categories(self) -> list[Category]:
        return [self.lazer, self.supermercado, self.salario]

    @property
    def cost_centers(self) -> list[CostCenter]:
        return [self.casa]


@dataclass
class Stores:
    transactions: InMemoryTransactionStorage
    rules: InMemoryRuleStorage
    patterns: InMemoryPatternStorage
    taxonomy: InMemoryTaxonomyStorage
    budgets: InMemoryBudgetStorage
    audit: InMemoryAuditStorage = field(default_factory=InMemoryAuditStorage)


@pytest.fixture
def run():
    """Run a coroutine to completion."""
    return asyncio.run


@pytest.fixture
def classifier_settings() -> ClassifierSettings:
    return ClassifierSettings()


@pytest.fixture
def transfer_settings() -> TransferSettings:
    return TransferSettings()


@pytest.fixture
def org_id() -> UUID:
    return uuid4()


@pytest.fixture
def taxonomy(org_id) -> Taxonomy:
    return Taxonomy(
        organization_id=org_id,
        lazer=Category(organization_id=org_id, name="Lazer", type=TransactionType.EXPENSE),
        supermercado=Category(organization_id=org_id, name="Supermercado", type=TransactionType.EXPENSE),
        salario=Category(organization_id=org_id, name="Salário", type=TransactionType.INCOME),
        casa=CostCenter(organization_id=org_id, name="Casa"),
    )


@pytest.fixture
def make_transaction(org_id):
    """Factory for transactions of the test organization."""
    default_account = uuid4()

    def _make(
        description: Optional[str] = "PAGTO NETFLIX PREMIUM 123",
        amount: str = "55.90",
        type: TransactionType = TransactionType.EXPENSE,
        day: date = date(2024, 3, 10),
        account_id: Optional[UUID] = None,
        **extra,
    ) -> Transaction:
        return Transaction(
            organization_id=org_id,
            account_id=account_id or default_account,
            type=type,
            amount=Decimal(amount),
            date=day,
            description=description,
            **extra,
        )

    return _make


@pytest.fixture
def make_rule(org_id):
    def _make(description: str, category_id: UUID, **extra) -> ReconciliationRule:
        extra.setdefault("transaction_type", TransactionType.EXPENSE)
        return ReconciliationRule(
            organization_id=org_id,
            description=description,
            category_id=category_id,
            **extra,
        )

    return _make


@pytest.fixture
def make_pattern(org_id):
    def _make(
        normalized_description: str,
        category_id: UUID,
        confidence: float = 0.6,
        occurrences: int = 1,
        **extra,
    ) -> TransactionPattern:
        extra.setdefault("transaction_type", TransactionType.EXPENSE)
        return TransactionPattern(
            organization_id=org_id,
            normalized_description=normalized_description,
            category_id=category_id,
            confidence=confidence,
            occurrences=occurrences,
            **extra,
        )

    return _make


@pytest.fixture
def build_service(taxonomy, classifier_settings, transfer_settings):
    """
    Factory wiring a ReconciliationService over fresh in-memory stores.

    Returns (service, stores).
    """

    def _build(
        gateway: Optional[LLMGateway] = None,
        rules=(),
        patterns=(),
        transactions=(),
        budgets=(),
    ) -> tuple[ReconciliationService, Stores]:
        stores = Stores(
            transactions=InMemoryTransactionStorage(transactions),
            rules=InMemoryRuleStorage(rules),
            patterns=InMemoryPatternStorage(patterns),
            taxonomy=InMemoryTaxonomyStorage(taxonomy.categories, taxonomy.cost_centers),
            budgets=InMemoryBudgetStorage(budgets),
        )
        audit_logger = AuditLogger(stores.audit)
        orchestrator = ClassificationOrchestrator(
            matchers=build_matchers(
                stores.rules,
                stores.patterns,
                stores.taxonomy,
                gateway or FakeGateway(),
                classifier_settings,
            ),
            transaction_storage=stores.transactions,
            learner=PatternLearner(stores.patterns, classifier_settings),
            audit_logger=audit_logger,
            settings=classifier_settings,
        )
        service = ReconciliationService(
            orchestrator=orchestrator,
            transfer_deduplicator=TransferDeduplicator(
                stores.transactions,
                transfer_settings,
                audit_logger,
            ),
            transaction_storage=stores.transactions,
            rule_storage=stores.rules,
            pattern_storage=stores.patterns,
            taxonomy_storage=stores.taxonomy,
            budget_storage=stores.budgets,
        )
        return service, stores

    return _build
