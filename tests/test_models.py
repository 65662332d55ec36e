"""
Tests for the Reconciler

Test strategy:
1. Unit tests for individual components (models, matchers, validators)
2. Integration tests for flows (with in-memory storage and a fake model)
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from reconciler.models.transaction import (
    Budget,
    BulkClassificationReport,
    ClassificationErrorCode,
    ClassificationRequest,
    ClassificationResult,
    MatchMode,
    ReconciliationRule,
    Transaction,
    TransactionPattern,
    TransactionType,
    TransferDedupResult,
    ValidationStatus,
    ClassificationSource,
)
from reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestTransactionModels:
    """Tests for transaction-related Pydantic models."""

    def test_transaction_defaults(self):
        """New transactions wait for classification."""
        tx = Transaction(
            organization_id=uuid4(),
            account_id=uuid4(),
            type=TransactionType.EXPENSE,
            amount=Decimal("55.90"),
            date=date(2024, 3, 10),
            description="  PAGTO NETFLIX  ",
        )
        assert tx.description == "PAGTO NETFLIX"
        assert tx.validation_status == ValidationStatus.PENDING_VALIDATION
        assert tx.classification_source == ClassificationSource.NONE
        assert tx.is_ignored is False

    def test_transaction_rejects_negative_amount(self):
        """The sign lives in the type, never in the amount."""
        with pytest.raises(ValueError):
            Transaction(
                organization_id=uuid4(),
                account_id=uuid4(),
                type=TransactionType.EXPENSE,
                amount=Decimal("-10"),
                date=date(2024, 3, 10),
            )

    def test_counts_toward_totals(self):
        """Only non-ignored income and expense rows count."""
        base = dict(organization_id=uuid4(), account_id=uuid4(), amount=Decimal("1"), date=date(2024, 1, 1))
        assert Transaction(type=TransactionType.INCOME, **base).counts_toward_totals is True
        assert Transaction(type=TransactionType.EXPENSE, is_ignored=True, **base).counts_toward_totals is False
        assert Transaction(type=TransactionType.REDEMPTION, **base).counts_toward_totals is False

    def test_opposite_types(self):
        assert TransactionType.INCOME.opposite == TransactionType.EXPENSE
        assert TransactionType.EXPENSE.opposite == TransactionType.INCOME
        assert TransactionType.TRANSFER.opposite is None

    def test_rule_defaults_to_contains(self):
        rule = ReconciliationRule(
            organization_id=uuid4(),
            description="NETFLIX",
            transaction_type=TransactionType.EXPENSE,
        )
        assert rule.match_mode == MatchMode.CONTAINS
        assert rule.is_active is True

    def test_rule_rejects_empty_description(self):
        with pytest.raises(ValueError):
            ReconciliationRule(
                organization_id=uuid4(),
                description="   ",
                transaction_type=TransactionType.EXPENSE,
            )

    def test_pattern_confidence_bounds(self):
        """Test confidence must be between 0 and 1."""
        with pytest.raises(ValueError):
            TransactionPattern(
                organization_id=uuid4(),
                normalized_description="netflix",
                category_id=uuid4(),
                transaction_type=TransactionType.EXPENSE,
                confidence=1.5,  # Invalid
            )

    def test_pattern_key(self):
        org_id, category_id = uuid4(), uuid4()
        pattern = TransactionPattern(
            organization_id=org_id,
            normalized_description="netflix",
            category_id=category_id,
            transaction_type=TransactionType.EXPENSE,
            confidence=0.6,
        )
        assert pattern.key == (org_id, "netflix", category_id, TransactionType.EXPENSE)

    def test_budget_month_bounds(self):
        with pytest.raises(ValueError):
            Budget(organization_id=uuid4(), category_id=uuid4(), month=13, year=2024, amount=Decimal("1"))


class TestClassificationModels:
    """Tests for classification I/O models."""

    def test_request_amount_is_absolute(self):
        """Importers send signed amounts; the request keeps the magnitude."""
        request = ClassificationRequest(amount=Decimal("-42.50"), type=TransactionType.EXPENSE)
        assert request.amount == Decimal("42.50")

    def test_empty_result(self):
        result = ClassificationResult.empty()
        assert result.category_id is None
        assert result.confidence == 0.0
        assert result.reasoning == "could not classify"
        assert result.source == ClassificationSource.NONE
        assert result.has_category is False

    def test_result_confidence_bounds(self):
        with pytest.raises(ValueError):
            ClassificationResult(confidence=-0.1)

    def test_bulk_report_summary(self):
        report = BulkClassificationReport(results=[
            ClassificationResult(category_id=uuid4(), confidence=1.0),
            ClassificationResult.empty(),
            ClassificationResult.empty(error_code=ClassificationErrorCode.CLASSIFICATION_FAILED),
        ])
        assert report.total == 3
        assert report.classified == 1
        assert report.failed == 1
        assert report.summary == "1 of 3 classified"

    def test_transfer_result_counts(self):
        result = TransferDedupResult(
            ignored_ids=[uuid4(), uuid4(), uuid4()],
            investment_ids=[uuid4()],
        )
        assert result.ignored == 3
        assert result.reclassified == 1


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_AUTO_VALIDATED,
            description="Auto-validated by rule",
        )
        assert event.event_type == AuditEventType.TRANSACTION_AUTO_VALIDATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.PATTERN_CREATED,
            description="Pattern created",
            details={"normalized_description": "netflix", "occurrences": 1},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "pattern_created"
        assert log_dict["details"]["normalized_description"] == "netflix"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.USER_CORRECTED,
            description="User changed the suggested classification",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "user_corrected"  # event_type
        assert row[10] == "True"  # is_user_action

    def test_audit_event_builder_auto_validated(self):
        """Test AuditEventBuilder.transaction_auto_validated."""
        transaction_id = uuid4()
        correlation_id = uuid4()

        event = AuditEventBuilder.transaction_auto_validated(
            transaction_id=transaction_id,
            source="rule",
            category_id=uuid4(),
            confidence=1.0,
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.TRANSACTION_AUTO_VALIDATED
        assert event.entity_id == transaction_id
        assert event.correlation_id == correlation_id
        assert event.is_user_action is False

    def test_audit_event_builder_ai_suggestion(self):
        """The AI suggestion is kept even if nobody accepts it."""
        event = AuditEventBuilder.ai_suggestion_recorded(
            transaction_id=uuid4(),
            category_id=None,
            cost_center_id=None,
            transaction_type="expense",
            confidence=0.4,
            reasoning="unclear merchant",
            model="gemini",
            correlation_id=uuid4(),
        )

        assert event.details["model_version"] == "gemini"
        assert event.details["suggested_category_id"] is None

    def test_audit_event_builder_user_corrected(self):
        """Test AuditEventBuilder.user_corrected."""
        transaction_id = uuid4()

        event = AuditEventBuilder.user_corrected(
            transaction_id=transaction_id,
            previous_category_id=uuid4(),
            category_id=uuid4(),
            previous_cost_center_id=None,
            cost_center_id=None,
            correlation_id=uuid4(),
        )

        assert event.event_type == AuditEventType.USER_CORRECTED
        assert event.entity_id == transaction_id
        assert event.is_user_action is True

    def test_pattern_learned_created_vs_updated(self):
        created = AuditEventBuilder.pattern_learned(uuid4(), "netflix", 1, 0.6, None)
        updated = AuditEventBuilder.pattern_learned(uuid4(), "netflix", 2, 0.65, None)

        assert created.event_type == AuditEventType.PATTERN_CREATED
        assert updated.event_type == AuditEventType.PATTERN_UPDATED

    def test_failed_bulk_run_is_a_warning(self):
        event = AuditEventBuilder.bulk_classification_completed(
            classified=1, total=3, failed=1, correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.WARNING


class TestEnums:
    """Tests for enum values consumed by the UI."""

    def test_validation_status_values(self):
        assert ValidationStatus.VALIDATED.value == "validated"
        assert ValidationStatus.PENDING_VALIDATION.value == "pending_validation"
        assert ValidationStatus.NEEDS_REVIEW.value == "needs_review"

    def test_source_values(self):
        expected = ["rule", "pattern", "ai", "manual", "system", "none"]
        for source in expected:
            assert ClassificationSource(source) is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
