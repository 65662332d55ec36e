"""
Tests for the classification orchestrator and service facade.

Flows covered:
1. Rule, pattern and AI paths through the state machine
2. Bulk classification with per-item isolation
3. Human validation feeding the pattern learner
"""

import json
from decimal import Decimal

import pytest

from reconciler.agents import DisabledGateway
from reconciler.audit import AuditLogger
from reconciler.matching import ClassificationMatcher, PatternLearner
from reconciler.models import (
    AuditEventType,
    ClassificationErrorCode,
    ClassificationSource,
    TransactionType,
    ValidationStatus,
)
from reconciler.orchestrator import ClassificationOrchestrator, build_matchers
from reconciler.services.storage import NotFoundError

from conftest import FakeGateway


class ExplodingMatcher(ClassificationMatcher):
    """Blows up on descriptions containing BOOM, passes otherwise."""

    async def attempt(self, request):
        if "BOOM" in (request.description or ""):
            raise RuntimeError("matcher exploded")
        return None


class BrokenLearner(PatternLearner):
    async def learn(self, *args, **kwargs):
        raise RuntimeError("pattern sheet unavailable")


def event_types(stores) -> list[AuditEventType]:
    return [event.event_type for event in stores.audit.events]


class TestClassify:
    """Tests for single-transaction classification."""

    def test_rule_hit_auto_validates(self, run, build_service, make_rule, make_transaction, taxonomy):
        """The Netflix expense is settled by the organization's rule."""
        tx = make_transaction()
        service, stores = build_service(
            rules=[make_rule("NETFLIX", taxonomy.lazer.id)],
            transactions=[tx],
        )

        result = run(service.classify_transaction(
            "PAGTO NETFLIX PREMIUM 123",
            Decimal("55.90"),
            TransactionType.EXPENSE,
            organization_id=tx.organization_id,
            transaction_id=tx.id,
        ))

        assert result.category_name == "Lazer"
        assert result.source == ClassificationSource.RULE
        assert result.confidence == 1.0
        assert result.auto_validated is True
        assert result.normalized_description == "pagto netflix premium"

        stored = run(stores.transactions.get_transaction(tx.id))
        assert stored.category_id == taxonomy.lazer.id
        assert stored.classification_source == ClassificationSource.RULE
        assert stored.validation_status == ValidationStatus.VALIDATED
        assert stored.validated_at is not None
        assert stored.normalized_description == "pagto netflix premium"
        assert AuditEventType.TRANSACTION_AUTO_VALIDATED in event_types(stores)

    def test_rule_beats_pattern(self, run, build_service, make_rule, make_pattern, org_id, taxonomy):
        service, _ = build_service(
            rules=[make_rule("NETFLIX", taxonomy.lazer.id)],
            patterns=[make_pattern("pagto netflix premium", taxonomy.supermercado.id,
                                   confidence=0.99, occurrences=20)],
        )

        result = run(service.classify_transaction(
            "PAGTO NETFLIX PREMIUM 123", Decimal("55.90"), TransactionType.EXPENSE,
            organization_id=org_id,
        ))

        assert result.category_id == taxonomy.lazer.id

    def test_young_pattern_stays_pending(self, run, build_service, make_pattern, make_transaction, taxonomy):
        """A pattern below the threshold is only a suggestion."""
        tx = make_transaction()
        gateway = FakeGateway()
        service, stores = build_service(
            gateway=gateway,
            patterns=[make_pattern("pagto netflix premium", taxonomy.lazer.id, confidence=0.6)],
            transactions=[tx],
        )

        result = run(service.classify_transaction(
            tx.description, tx.amount, tx.type,
            organization_id=tx.organization_id, transaction_id=tx.id,
        ))

        assert result.source == ClassificationSource.PATTERN
        assert result.auto_validated is False
        assert gateway.calls == []

        stored = run(stores.transactions.get_transaction(tx.id))
        assert stored.validation_status == ValidationStatus.PENDING_VALIDATION
        assert stored.validated_at is None
        assert AuditEventType.CLASSIFICATION_SUGGESTED in event_types(stores)

    def test_mature_pattern_auto_validates(self, run, build_service, make_pattern, org_id, taxonomy):
        service, _ = build_service(
            patterns=[make_pattern("pagto netflix premium", taxonomy.lazer.id,
                                   confidence=0.85, occurrences=6)],
        )

        result = run(service.classify_transaction(
            "PAGTO NETFLIX PREMIUM 999", Decimal("55.90"), TransactionType.EXPENSE,
            organization_id=org_id,
        ))

        assert result.source == ClassificationSource.PATTERN
        assert result.auto_validated is True

    def test_ai_suggestion_never_auto_validates(self, run, build_service, make_transaction, taxonomy):
        tx = make_transaction(description="SPOTIFY AB")
        gateway = FakeGateway(json.dumps({
            "category_id": str(taxonomy.lazer.id),
            "confidence": 0.95,
            "reasoning": "music streaming",
        }))
        service, stores = build_service(gateway=gateway, transactions=[tx])

        result = run(service.classify_transaction(
            tx.description, tx.amount, tx.type,
            organization_id=tx.organization_id, transaction_id=tx.id,
        ))

        assert result.source == ClassificationSource.AI
        assert result.category_name == "Lazer"
        assert result.confidence == 0.75
        assert result.auto_validated is False

        stored = run(stores.transactions.get_transaction(tx.id))
        assert stored.validation_status == ValidationStatus.PENDING_VALIDATION
        assert stored.classification_source == ClassificationSource.AI
        assert AuditEventType.AI_SUGGESTION_RECORDED in event_types(stores)

    def test_nothing_matches(self, run, build_service, make_transaction):
        """No source answers: the transaction goes to human review."""
        tx = make_transaction(description="XPTO COMERCIO LTDA")
        service, stores = build_service(transactions=[tx])

        result = run(service.classify_transaction(
            tx.description, tx.amount, tx.type,
            organization_id=tx.organization_id, transaction_id=tx.id,
        ))

        assert result.category_id is None
        assert result.confidence == 0.0
        assert result.source == ClassificationSource.NONE
        assert result.auto_validated is False

        stored = run(stores.transactions.get_transaction(tx.id))
        assert stored.validation_status == ValidationStatus.NEEDS_REVIEW
        assert stored.classification_source == ClassificationSource.NONE
        assert AuditEventType.CLASSIFICATION_UNRESOLVED in event_types(stores)

    def test_ai_not_configured_is_reported(self, run, build_service, org_id):
        service, stores = build_service(gateway=DisabledGateway())

        result = run(service.classify_transaction(
            "XPTO COMERCIO LTDA", Decimal("10"), TransactionType.EXPENSE,
            organization_id=org_id,
        ))

        assert result.category_id is None
        assert result.error_code == ClassificationErrorCode.AI_NOT_CONFIGURED
        assert AuditEventType.AI_NOT_CONFIGURED in event_types(stores)

    def test_ai_outage_is_audited_as_service_error(self, run, build_service, org_id):
        from reconciler.agents import AIRateLimitError

        service, stores = build_service(gateway=FakeGateway(error=AIRateLimitError("429")))

        result = run(service.classify_transaction(
            "XPTO COMERCIO LTDA", Decimal("10"), TransactionType.EXPENSE,
            organization_id=org_id,
        ))

        assert result.error_code == ClassificationErrorCode.AI_RATE_LIMITED
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in event_types(stores)

    @pytest.mark.parametrize("description", [None, "", "   "])
    def test_empty_description_skips_every_source(self, run, build_service, org_id, description):
        gateway = FakeGateway()
        service, _ = build_service(gateway=gateway)

        result = run(service.classify_transaction(
            description, Decimal("10"), TransactionType.EXPENSE, organization_id=org_id,
        ))

        assert result.category_id is None
        assert result.reasoning == "empty description"
        assert gateway.calls == []

    def test_without_organization_only_ai_runs(self, run, build_service, make_rule, taxonomy):
        gateway = FakeGateway()
        service, _ = build_service(
            gateway=gateway,
            rules=[make_rule("NETFLIX", taxonomy.lazer.id)],
        )

        result = run(service.classify_transaction(
            "PAGTO NETFLIX", Decimal("10"), TransactionType.EXPENSE,
        ))

        assert result.source == ClassificationSource.NONE
        assert len(gateway.calls) == 1

    def test_missing_transaction_id_still_classifies(self, run, build_service, make_rule, org_id, taxonomy):
        from uuid import uuid4

        service, _ = build_service(rules=[make_rule("NETFLIX", taxonomy.lazer.id)])

        result = run(service.classify_transaction(
            "NETFLIX", Decimal("10"), TransactionType.EXPENSE,
            organization_id=org_id, transaction_id=uuid4(),
        ))

        assert result.category_id == taxonomy.lazer.id


class TestBulkClassify:
    """Tests for bulk classification."""

    def test_failing_item_does_not_abort_batch(
        self, run, build_service, make_rule, make_transaction, taxonomy, classifier_settings,
    ):
        _, stores = build_service(rules=[make_rule("NETFLIX", taxonomy.lazer.id)])
        orchestrator = ClassificationOrchestrator(
            matchers=[ExplodingMatcher(), *build_matchers(
                stores.rules, stores.patterns, stores.taxonomy, FakeGateway(), classifier_settings,
            )],
            transaction_storage=stores.transactions,
            learner=PatternLearner(stores.patterns, classifier_settings),
            audit_logger=AuditLogger(stores.audit),
            settings=classifier_settings,
        )
        items = [
            make_transaction(),
            make_transaction(description="BOOM SHOP"),
            make_transaction(description="XPTO COMERCIO LTDA"),
        ]
        for tx in items:
            run(stores.transactions.save_transaction(tx))

        report = run(orchestrator.bulk_classify(items))

        assert report.total == 3
        assert report.classified == 1
        assert report.failed == 1
        assert report.summary == "1 of 3 classified"
        assert report.results[0].source == ClassificationSource.RULE
        assert report.results[1].error_code == ClassificationErrorCode.CLASSIFICATION_FAILED
        assert report.results[2].category_id is None
        assert AuditEventType.BULK_CLASSIFICATION_COMPLETED in event_types(stores)
        assert AuditEventType.SYSTEM_ERROR in event_types(stores)

    def test_results_keep_input_order(self, run, build_service, make_rule, make_transaction, taxonomy):
        service, _ = build_service(rules=[
            make_rule("NETFLIX", taxonomy.lazer.id),
            make_rule("CARREFOUR", taxonomy.supermercado.id),
        ])

        report = run(service.bulk_classify([
            make_transaction(description="CARREFOUR 22"),
            make_transaction(description="NETFLIX"),
        ]))

        assert [r.category_id for r in report.results] == [
            taxonomy.supermercado.id,
            taxonomy.lazer.id,
        ]


class TestValidateTransaction:
    """Tests for human validation and learning."""

    def test_correction_is_manual_and_learned(self, run, build_service, make_transaction, taxonomy):
        tx = make_transaction(description="PADARIA PAO QUENTE")
        service, stores = build_service(transactions=[tx])

        updated = run(service.validate_transaction(tx.id, taxonomy.supermercado.id, taxonomy.casa.id))

        assert updated.classification_source == ClassificationSource.MANUAL
        assert updated.validation_status == ValidationStatus.VALIDATED
        assert updated.validated_at is not None

        patterns = run(stores.patterns.list_patterns(tx.organization_id))
        assert len(patterns) == 1
        assert patterns[0].normalized_description == "padaria pao quente"
        assert patterns[0].cost_center_id == taxonomy.casa.id
        assert AuditEventType.USER_CORRECTED in event_types(stores)
        assert AuditEventType.PATTERN_CREATED in event_types(stores)

    def test_confirmation_keeps_source(self, run, build_service, make_transaction, taxonomy):
        tx = make_transaction(
            category_id=taxonomy.lazer.id,
            classification_source=ClassificationSource.PATTERN,
        )
        service, stores = build_service(transactions=[tx])

        updated = run(service.validate_transaction(tx.id, taxonomy.lazer.id))

        assert updated.classification_source == ClassificationSource.PATTERN
        assert updated.validation_status == ValidationStatus.VALIDATED
        assert AuditEventType.USER_VALIDATED in event_types(stores)

    def test_learned_pattern_is_used_next_time(self, run, build_service, make_transaction, taxonomy):
        first = make_transaction(description="PADARIA PAO QUENTE 01")
        service, _ = build_service(transactions=[first])
        run(service.validate_transaction(first.id, taxonomy.supermercado.id))

        result = run(service.classify_transaction(
            "PADARIA PAO QUENTE 02", Decimal("12"), TransactionType.EXPENSE,
            organization_id=first.organization_id,
        ))

        assert result.source == ClassificationSource.PATTERN
        assert result.category_id == taxonomy.supermercado.id
        assert result.confidence == 0.6
        assert result.auto_validated is False

    def test_learner_failure_never_fails_validation(
        self, run, build_service, make_transaction, taxonomy, classifier_settings,
    ):
        """The isolation boundary swallows learner errors and audits them."""
        tx = make_transaction()
        _, stores = build_service(transactions=[tx])
        orchestrator = ClassificationOrchestrator(
            matchers=[],
            transaction_storage=stores.transactions,
            learner=BrokenLearner(stores.patterns, classifier_settings),
            audit_logger=AuditLogger(stores.audit),
            settings=classifier_settings,
        )

        updated = run(orchestrator.validate_transaction(tx.id, taxonomy.lazer.id))

        assert updated.validation_status == ValidationStatus.VALIDATED
        assert AuditEventType.PATTERN_LEARNING_FAILED in event_types(stores)

    def test_unknown_transaction(self, run, build_service, taxonomy):
        from uuid import uuid4

        service, _ = build_service()
        with pytest.raises(NotFoundError):
            run(service.validate_transaction(uuid4(), taxonomy.lazer.id))

    def test_learn_from_validation_returns_pattern_id(self, run, build_service, org_id, taxonomy):
        service, stores = build_service()

        pattern_id = run(service.learn_from_validation(
            org_id, "MERCADO LIVRE", taxonomy.supermercado.id, None,
            TransactionType.EXPENSE, Decimal("99"),
        ))

        patterns = run(stores.patterns.list_patterns(org_id))
        assert [p.id for p in patterns] == [pattern_id]

    def test_learn_from_validation_without_category(self, run, build_service, org_id):
        service, _ = build_service()

        assert run(service.learn_from_validation(
            org_id, "MERCADO LIVRE", None, None, TransactionType.EXPENSE, Decimal("99"),
        )) is None
