"""
Main Orchestrator for the Reconciler

This module ties together all the components and defines the
end-to-end flows for:
1. Classification (description -> rule | pattern | AI -> persisted status)
2. Human validation (confirm/correct -> learn a pattern)
3. Internal transfer detection

DESIGN DECISION: The orchestrator enforces the trust hierarchy:
- Rules are certainties and always auto-validate
- Patterns auto-validate only above the confidence threshold
- AI suggestions NEVER auto-validate
- Every decision is audited

The hierarchy is the order of the matcher list passed in, nothing else.
Per-transaction state machine:

    Unclassified -> RuleMatched | PatternMatched | AIMatched | Unresolved
                 -> AutoValidated | PendingReview
"""

from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union
from uuid import UUID

import structlog

from reconciler.agents import (
    AIClassifier,
    AIMatcher,
    AINotConfiguredError,
    DisabledGateway,
    GeminiGateway,
    LLMGateway,
)
from reconciler.analytics import analyze_budgets, compute_reconciliation_metrics
from reconciler.audit import AuditLogger, create_correlation_id
from reconciler.config import ClassifierSettings, Settings, get_settings
from reconciler.matching import (
    ClassificationMatcher,
    PatternLearner,
    PatternMatcher,
    RuleMatcher,
    normalize,
    seed_default_rules,
)
from reconciler.models.analytics import BudgetAnalysis, ReconciliationMetrics
from reconciler.models.transaction import (
    BulkClassificationReport,
    ClassificationErrorCode,
    ClassificationOutcome,
    ClassificationRequest,
    ClassificationResult,
    ClassificationSource,
    ClassificationState,
    ReconciliationRule,
    Transaction,
    TransactionPattern,
    TransactionType,
    TransferDedupResult,
    ValidationStatus,
    utcnow,
)
from reconciler.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsPatternStorage,
    GoogleSheetsRuleStorage,
    GoogleSheetsTaxonomyStorage,
    GoogleSheetsTransactionStorage,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryPatternStorage,
    InMemoryRuleStorage,
    InMemoryTaxonomyStorage,
    InMemoryTransactionStorage,
    NotFoundError,
    PatternStorageInterface,
    RuleStorageInterface,
    TaxonomyStorageInterface,
    TransactionStorageInterface,
)
from reconciler.transfers import TransferDeduplicator

logger = structlog.get_logger(__name__)

_MATCHED_STATES = {
    ClassificationSource.RULE: ClassificationState.RULE_MATCHED,
    ClassificationSource.PATTERN: ClassificationState.PATTERN_MATCHED,
    ClassificationSource.AI: ClassificationState.AI_MATCHED,
}

# Error codes that come from a failing external service
_SERVICE_ERRORS = (
    ClassificationErrorCode.AI_RATE_LIMITED,
    ClassificationErrorCode.AI_CREDITS_EXHAUSTED,
    ClassificationErrorCode.AI_UNAVAILABLE,
)


class ClassificationOrchestrator:
    """
    Runs the classification state machine.

    Flow for one transaction:
    1. Normalize the description
    2. Walk the matchers in trust order until one answers
    3. Decide the validation status from the source and confidence
    4. Persist onto the stored transaction (when an id is given)
    5. Audit the decision

    Human validation feeds the pattern learner through an isolation
    boundary, so the learner can never fail a validation.
    """

    def __init__(
        self,
        matchers: Sequence[ClassificationMatcher],
        transaction_storage: TransactionStorageInterface,
        learner: PatternLearner,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ClassifierSettings] = None,
    ):
        self._matchers = list(matchers)
        self._transactions = transaction_storage
        self._learner = learner
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().classifier

    @property
    def matchers(self) -> list[ClassificationMatcher]:
        return list(self._matchers)

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    async def classify(
        self,
        request: ClassificationRequest,
        correlation_id: Optional[UUID] = None,
    ) -> ClassificationOutcome:
        """
        Classify one transaction and persist the outcome.

        Raises:
            StorageError: If reading or writing the transaction fails
        """
        correlation_id = correlation_id or create_correlation_id()
        normalized = normalize(request.description)

        if not (request.description or "").strip():
            result = ClassificationResult.empty(reasoning="empty description")
        else:
            result = await self._run_matchers(request, correlation_id)

        outcome = self._decide(request, result, normalized)

        if request.transaction_id is not None:
            await self._persist(request.transaction_id, outcome, normalized)

        await self._audit_outcome(request, outcome, correlation_id)
        return outcome

    async def _run_matchers(
        self,
        request: ClassificationRequest,
        correlation_id: UUID,
    ) -> ClassificationResult:
        """First answer in trust order, or the empty result."""
        for matcher in self._matchers:
            try:
                result = await matcher.attempt(request)
            except AINotConfiguredError as e:
                logger.error(
                    "ai_not_configured",
                    matcher=type(matcher).__name__,
                    error=str(e),
                )
                await self._audit.log_ai_not_configured(str(e), correlation_id)
                return ClassificationResult.empty(
                    reasoning=str(e),
                    error_code=ClassificationErrorCode.AI_NOT_CONFIGURED,
                )

            if result is not None:
                return result

        return ClassificationResult.empty()

    def _decide(
        self,
        request: ClassificationRequest,
        result: ClassificationResult,
        normalized: str,
    ) -> ClassificationOutcome:
        """Map a matcher answer onto the state machine."""
        if not result.has_category:
            return ClassificationOutcome(
                transaction_id=request.transaction_id,
                match_state=ClassificationState.UNRESOLVED,
                final_state=ClassificationState.PENDING_REVIEW,
                validation_status=ValidationStatus.NEEDS_REVIEW,
                result=result.model_copy(update={
                    "category_id": None,
                    "category_name": None,
                    "cost_center_id": None,
                    "cost_center_name": None,
                    "confidence": 0.0,
                    "is_transfer": False,
                    "source": ClassificationSource.NONE,
                    "auto_validated": False,
                    "normalized_description": normalized,
                }),
            )

        if result.source == ClassificationSource.RULE:
            auto_validate = True
        elif result.source == ClassificationSource.PATTERN:
            auto_validate = result.confidence >= self._settings.auto_validate_confidence
        else:
            # AI and any future source: suggestion only
            auto_validate = False

        return ClassificationOutcome(
            transaction_id=request.transaction_id,
            match_state=_MATCHED_STATES.get(result.source, ClassificationState.AI_MATCHED),
            final_state=(
                ClassificationState.AUTO_VALIDATED if auto_validate
                else ClassificationState.PENDING_REVIEW
            ),
            validation_status=(
                ValidationStatus.VALIDATED if auto_validate
                else ValidationStatus.PENDING_VALIDATION
            ),
            result=result.model_copy(update={
                "is_transfer": False,
                "auto_validated": auto_validate,
                "normalized_description": normalized,
            }),
        )

    async def _persist(
        self,
        transaction_id: UUID,
        outcome: ClassificationOutcome,
        normalized: str,
    ) -> Optional[Transaction]:
        tx = await self._transactions.get_transaction(transaction_id)
        if tx is None:
            logger.warning("classified_transaction_missing", transaction_id=str(transaction_id))
            return None

        result = outcome.result
        updated = tx.model_copy(update={
            "normalized_description": normalized,
            "category_id": result.category_id,
            "cost_center_id": result.cost_center_id,
            "classification_source": result.source,
            "validation_status": outcome.validation_status,
            "validated_at": utcnow() if result.auto_validated else None,
        })
        await self._transactions.update_transaction(updated)
        return updated

    async def _audit_outcome(
        self,
        request: ClassificationRequest,
        outcome: ClassificationOutcome,
        correlation_id: UUID,
    ) -> None:
        result = outcome.result
        logger.info(
            "transaction_classified",
            transaction_id=str(request.transaction_id) if request.transaction_id else None,
            match_state=outcome.match_state.value,
            final_state=outcome.final_state.value,
            source=result.source.value,
            confidence=result.confidence,
        )

        if outcome.final_state == ClassificationState.AUTO_VALIDATED:
            await self._audit.log_auto_validated(
                transaction_id=request.transaction_id,
                source=result.source.value,
                category_id=result.category_id,
                confidence=result.confidence,
                correlation_id=correlation_id,
            )
            return

        if outcome.match_state == ClassificationState.UNRESOLVED:
            if result.error_code in _SERVICE_ERRORS:
                await self._audit.log_external_service_error(
                    service=self._ai_service_name(),
                    error_code=result.error_code.value,
                    error_message=result.reasoning,
                    correlation_id=correlation_id,
                )
            await self._audit.log_unresolved(
                transaction_id=request.transaction_id,
                reasoning=result.reasoning,
                error_code=result.error_code.value if result.error_code else None,
                correlation_id=correlation_id,
            )
            return

        await self._audit.log_suggested(
            transaction_id=request.transaction_id,
            source=result.source.value,
            category_id=result.category_id,
            confidence=result.confidence,
            correlation_id=correlation_id,
        )
        if result.source == ClassificationSource.AI:
            await self._audit.log_ai_suggestion(
                transaction_id=request.transaction_id,
                category_id=result.category_id,
                cost_center_id=result.cost_center_id,
                transaction_type=request.type.value,
                confidence=result.confidence,
                reasoning=result.reasoning,
                model=self._ai_service_name(),
                correlation_id=correlation_id,
            )

    def _ai_service_name(self) -> str:
        for matcher in self._matchers:
            if isinstance(matcher, AIMatcher):
                return matcher.model_name
        return "ai"

    async def bulk_classify(
        self,
        items: Iterable[Union[Transaction, ClassificationRequest]],
        correlation_id: Optional[UUID] = None,
    ) -> BulkClassificationReport:
        """
        Classify many transactions, one after the other.

        Sequential on purpose: the AI gateway is rate limited. A failing
        item becomes a result with error_code "classification_failed"
        and the batch carries on.
        """
        correlation_id = correlation_id or create_correlation_id()
        report = BulkClassificationReport()

        for item in items:
            request = _as_request(item)
            try:
                outcome = await self.classify(request, correlation_id)
                report.results.append(outcome.result)
            except Exception as e:
                logger.exception(
                    "bulk_item_failed",
                    transaction_id=str(request.transaction_id) if request.transaction_id else None,
                )
                await self._audit.log_error(
                    error_type="classification_failed",
                    error_message=str(e),
                    details={"transaction_id": str(request.transaction_id)},
                    correlation_id=correlation_id,
                )
                report.results.append(ClassificationResult.empty(
                    reasoning=f"classification failed: {e}",
                    error_code=ClassificationErrorCode.CLASSIFICATION_FAILED,
                    normalized_description=normalize(request.description),
                ))

        await self._audit.log_bulk_completed(
            classified=report.classified,
            total=report.total,
            failed=report.failed,
            correlation_id=correlation_id,
        )
        logger.info("bulk_classification_completed", summary=report.summary)
        return report

    # =========================================================================
    # HUMAN VALIDATION
    # =========================================================================

    async def validate_transaction(
        self,
        transaction_id: UUID,
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a human decision on a transaction.

        The source becomes "manual" when the human changed the category
        or cost center; a plain confirmation keeps the automatic source.
        The learner always sees the final category.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()

        tx = await self._transactions.get_transaction(transaction_id)
        if tx is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        changed = category_id != tx.category_id or cost_center_id != tx.cost_center_id
        if changed or tx.classification_source == ClassificationSource.NONE:
            source = ClassificationSource.MANUAL
        else:
            source = tx.classification_source

        updated = tx.model_copy(update={
            "category_id": category_id,
            "cost_center_id": cost_center_id,
            "classification_source": source,
            "validation_status": ValidationStatus.VALIDATED,
            "validated_at": utcnow(),
        })
        await self._transactions.update_transaction(updated)

        if changed:
            await self._audit.log_user_corrected(
                transaction_id=transaction_id,
                previous_category_id=tx.category_id,
                category_id=category_id,
                previous_cost_center_id=tx.cost_center_id,
                cost_center_id=cost_center_id,
                correlation_id=correlation_id,
            )
        else:
            await self._audit.log_user_validated(
                transaction_id=transaction_id,
                source=source.value,
                correlation_id=correlation_id,
            )

        await self._learn_in_isolation(
            organization_id=updated.organization_id,
            description=updated.description,
            category_id=updated.category_id,
            cost_center_id=updated.cost_center_id,
            transaction_type=updated.type,
            amount=updated.amount,
            correlation_id=correlation_id,
        )
        return updated

    async def _learn_in_isolation(
        self,
        organization_id: UUID,
        description: Optional[str],
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        transaction_type: TransactionType,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[TransactionPattern]:
        """
        ISOLATION BOUNDARY for pattern learning.

        Learning is best-effort. Any exception raised by the learner or
        its storage stops here: it is logged and audited, and the caller
        carries on as if nothing was learned. Code after a validation
        must never depend on learning having succeeded.
        """
        try:
            pattern = await self._learner.learn(
                organization_id=organization_id,
                description=description,
                category_id=category_id,
                cost_center_id=cost_center_id,
                transaction_type=transaction_type,
                amount=amount,
            )
        except Exception as e:
            logger.exception("pattern_learning_failed", organization_id=str(organization_id))
            await self._audit.log_pattern_learning_failed(
                error_message=str(e),
                details={
                    "error_type": type(e).__name__,
                    "normalized_description": normalize(description),
                },
                correlation_id=correlation_id,
            )
            return None

        if pattern is not None:
            await self._audit.log_pattern_learned(pattern, correlation_id)
        return pattern

    async def learn_from_validation(
        self,
        organization_id: UUID,
        description: Optional[str],
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        transaction_type: TransactionType,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[UUID]:
        """Learn from a validation done elsewhere. Returns the pattern id."""
        pattern = await self._learn_in_isolation(
            organization_id=organization_id,
            description=description,
            category_id=category_id,
            cost_center_id=cost_center_id,
            transaction_type=transaction_type,
            amount=amount,
            correlation_id=correlation_id,
        )
        return pattern.id if pattern else None


def _as_request(item: Union[Transaction, ClassificationRequest]) -> ClassificationRequest:
    if isinstance(item, ClassificationRequest):
        return item
    return ClassificationRequest(
        description=item.description,
        amount=item.amount,
        type=item.type,
        organization_id=item.organization_id,
        transaction_id=item.id,
    )


class ReconciliationService:
    """
    Entry points of the engine for the UI, importers and bank sync.

    Thin facade over the orchestrator, the transfer pass and the
    analytics functions.
    """

    def __init__(
        self,
        orchestrator: ClassificationOrchestrator,
        transfer_deduplicator: TransferDeduplicator,
        transaction_storage: TransactionStorageInterface,
        rule_storage: RuleStorageInterface,
        pattern_storage: PatternStorageInterface,
        taxonomy_storage: TaxonomyStorageInterface,
        budget_storage: Optional[BudgetStorageInterface] = None,
    ):
        self._orchestrator = orchestrator
        self._transfers = transfer_deduplicator
        self._transactions = transaction_storage
        self._rules = rule_storage
        self._patterns = pattern_storage
        self._taxonomy = taxonomy_storage
        self._budgets = budget_storage

    @property
    def orchestrator(self) -> ClassificationOrchestrator:
        return self._orchestrator

    async def classify_transaction(
        self,
        description: Optional[str],
        amount: Decimal,
        type: TransactionType,
        organization_id: Optional[UUID] = None,
        transaction_id: Optional[UUID] = None,
    ) -> ClassificationResult:
        """
        Classify one transaction.

        Rules and patterns are only consulted when organization_id is
        given. With transaction_id, the outcome is written to storage.
        """
        request = ClassificationRequest(
            description=description,
            amount=amount,
            type=type,
            organization_id=organization_id,
            transaction_id=transaction_id,
        )
        outcome = await self._orchestrator.classify(request)
        return outcome.result

    async def bulk_classify(
        self,
        items: Iterable[Union[Transaction, ClassificationRequest]],
    ) -> BulkClassificationReport:
        return await self._orchestrator.bulk_classify(items)

    async def validate_transaction(
        self,
        transaction_id: UUID,
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID] = None,
    ) -> Transaction:
        return await self._orchestrator.validate_transaction(
            transaction_id,
            category_id,
            cost_center_id,
        )

    async def learn_from_validation(
        self,
        organization_id: UUID,
        description: Optional[str],
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        transaction_type: TransactionType,
        amount: Decimal,
    ) -> Optional[UUID]:
        return await self._orchestrator.learn_from_validation(
            organization_id=organization_id,
            description=description,
            category_id=category_id,
            cost_center_id=cost_center_id,
            transaction_type=transaction_type,
            amount=amount,
        )

    async def detect_and_ignore_transfers(
        self,
        organization_id: UUID,
    ) -> TransferDedupResult:
        return await self._transfers.detect_and_ignore_transfers(organization_id)

    async def seed_rules(self, organization_id: UUID) -> list[ReconciliationRule]:
        """Create the default rules the organization doesn't have yet."""
        categories = await self._taxonomy.list_categories(
            organization_id,
            transaction_type=TransactionType.EXPENSE,
        )
        existing = await self._rules.list_rules(organization_id, active_only=False)
        rules = seed_default_rules(organization_id, categories, existing)
        for rule in rules:
            await self._rules.save_rule(rule)

        logger.info("rules_seeded", organization_id=str(organization_id), created=len(rules))
        return rules

    async def analyze_budgets(
        self,
        organization_id: UUID,
        month: int,
        year: int,
    ) -> BudgetAnalysis:
        """Budget vs. actual for one month."""
        budgets = await self._budgets.list_budgets(organization_id, month, year) if self._budgets else []
        transactions = await self._transactions.list_transactions(
            organization_id,
            types=[TransactionType.EXPENSE],
            include_ignored=False,
        )
        return analyze_budgets(
            budgets,
            transactions,
            month,
            year,
            categories=await self._taxonomy.list_categories(organization_id),
            cost_centers=await self._taxonomy.list_cost_centers(organization_id),
        )

    async def reconciliation_metrics(self, organization_id: UUID) -> ReconciliationMetrics:
        """How much of the organization's classification is automatic."""
        return compute_reconciliation_metrics(
            await self._transactions.list_transactions(organization_id),
            await self._patterns.list_patterns(organization_id),
        )


def build_matchers(
    rule_storage: RuleStorageInterface,
    pattern_storage: PatternStorageInterface,
    taxonomy_storage: TaxonomyStorageInterface,
    gateway: LLMGateway,
    settings: Optional[ClassifierSettings] = None,
) -> list[ClassificationMatcher]:
    """The trust hierarchy, highest first."""
    return [
        RuleMatcher(rule_storage, taxonomy_storage),
        PatternMatcher(pattern_storage, taxonomy_storage, settings),
        AIMatcher(AIClassifier(gateway, settings), taxonomy_storage),
    ]


def create_gateway(settings: Settings) -> LLMGateway:
    """Pick the language-model gateway from AI_BACKEND."""
    if settings.app.ai_backend == "disabled":
        return DisabledGateway()
    return GeminiGateway(settings.gemini)


def create_app_components(
    settings: Optional[Settings] = None,
    gateway: Optional[LLMGateway] = None,
) -> tuple[ReconciliationService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        settings: Defaults to get_settings()
        gateway: Overrides the gateway chosen from AI_BACKEND

    Returns:
        (service, sheets_client); sheets_client is None for memory storage
    """
    settings = settings or get_settings()
    sheets_client = None
    audit_storage: Optional[AuditStorageInterface] = None

    if settings.app.storage_backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            transaction_storage = GoogleSheetsTransactionStorage(sheets_client)
            rule_storage = GoogleSheetsRuleStorage(sheets_client)
            pattern_storage = GoogleSheetsPatternStorage(sheets_client)
            taxonomy_storage = GoogleSheetsTaxonomyStorage(sheets_client)
            budget_storage = GoogleSheetsBudgetStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e), fallback="memory")
            sheets_client = None

    if sheets_client is None:
        transaction_storage = InMemoryTransactionStorage()
        rule_storage = InMemoryRuleStorage()
        pattern_storage = InMemoryPatternStorage()
        taxonomy_storage = InMemoryTaxonomyStorage()
        budget_storage = InMemoryBudgetStorage()
        audit_storage = InMemoryAuditStorage()

    audit_logger = AuditLogger(audit_storage)
    classifier_settings = settings.classifier

    orchestrator = ClassificationOrchestrator(
        matchers=build_matchers(
            rule_storage,
            pattern_storage,
            taxonomy_storage,
            gateway or create_gateway(settings),
            classifier_settings,
        ),
        transaction_storage=transaction_storage,
        learner=PatternLearner(pattern_storage, classifier_settings),
        audit_logger=audit_logger,
        settings=classifier_settings,
    )
    service = ReconciliationService(
        orchestrator=orchestrator,
        transfer_deduplicator=TransferDeduplicator(
            transaction_storage,
            settings.transfers,
            audit_logger,
        ),
        transaction_storage=transaction_storage,
        rule_storage=rule_storage,
        pattern_storage=pattern_storage,
        taxonomy_storage=taxonomy_storage,
        budget_storage=budget_storage,
    )
    return service, sheets_client
