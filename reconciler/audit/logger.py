"""
Audit Logger

DESIGN DECISION: Every decision the engine takes is logged.
This provides:
1. Traceability of every automatic validation
2. A record of what the AI suggested, even when nobody accepted it
3. A history of human corrections feeding the pattern learner
4. Debugging capability

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a broken audit sheet never fails a classification)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from reconciler.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from reconciler.models.transaction import TransactionPattern
from reconciler.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("reconciler.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_auto_validated(
        self,
        transaction_id: Optional[UUID],
        source: str,
        category_id: Optional[UUID],
        confidence: float,
        correlation_id: UUID,
    ) -> None:
        """Log a classification that needed no human."""
        await self.log(AuditEventBuilder.transaction_auto_validated(
            transaction_id=transaction_id,
            source=source,
            category_id=category_id,
            confidence=confidence,
            correlation_id=correlation_id,
        ))

    async def log_suggested(
        self,
        transaction_id: Optional[UUID],
        source: str,
        category_id: Optional[UUID],
        confidence: float,
        correlation_id: UUID,
    ) -> None:
        """Log a classification left for human review."""
        await self.log(AuditEventBuilder.classification_suggested(
            transaction_id=transaction_id,
            source=source,
            category_id=category_id,
            confidence=confidence,
            correlation_id=correlation_id,
        ))

    async def log_unresolved(
        self,
        transaction_id: Optional[UUID],
        reasoning: str,
        error_code: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log a transaction no source could classify."""
        await self.log(AuditEventBuilder.classification_unresolved(
            transaction_id=transaction_id,
            reasoning=reasoning,
            error_code=error_code,
            correlation_id=correlation_id,
        ))

    async def log_ai_suggestion(
        self,
        transaction_id: Optional[UUID],
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        transaction_type: str,
        confidence: float,
        reasoning: str,
        model: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Record what the AI suggested for a transaction."""
        await self.log(AuditEventBuilder.ai_suggestion_recorded(
            transaction_id=transaction_id,
            category_id=category_id,
            cost_center_id=cost_center_id,
            transaction_type=transaction_type,
            confidence=confidence,
            reasoning=reasoning,
            model=model,
            correlation_id=correlation_id,
        ))

    async def log_ai_not_configured(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log that AI classification was needed but has no credentials."""
        await self.log(AuditEventBuilder.ai_not_configured(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_bulk_completed(
        self,
        classified: int,
        total: int,
        failed: int,
        correlation_id: UUID,
    ) -> None:
        """Log the summary of a bulk run."""
        await self.log(AuditEventBuilder.bulk_classification_completed(
            classified=classified,
            total=total,
            failed=failed,
            correlation_id=correlation_id,
        ))

    async def log_user_validated(
        self,
        transaction_id: UUID,
        source: str,
        correlation_id: UUID,
    ) -> None:
        """Log a human confirming the automatic classification."""
        await self.log(AuditEventBuilder.user_validated(
            transaction_id=transaction_id,
            source=source,
            correlation_id=correlation_id,
        ))

    async def log_user_corrected(
        self,
        transaction_id: UUID,
        previous_category_id: Optional[UUID],
        category_id: Optional[UUID],
        previous_cost_center_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        correlation_id: UUID,
    ) -> None:
        """Log a human changing the classification."""
        await self.log(AuditEventBuilder.user_corrected(
            transaction_id=transaction_id,
            previous_category_id=previous_category_id,
            category_id=category_id,
            previous_cost_center_id=previous_cost_center_id,
            cost_center_id=cost_center_id,
            correlation_id=correlation_id,
        ))

    async def log_pattern_learned(
        self,
        pattern: TransactionPattern,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a pattern insert or reinforcement."""
        await self.log(AuditEventBuilder.pattern_learned(
            pattern_id=pattern.id,
            normalized_description=pattern.normalized_description,
            occurrences=pattern.occurrences,
            confidence=pattern.confidence,
            correlation_id=correlation_id,
        ))

    async def log_pattern_learning_failed(
        self,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a learner failure (the validation itself succeeded)."""
        await self.log(AuditEventBuilder.pattern_learning_failed(
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_transfers_ignored(
        self,
        organization_id: UUID,
        ignored: int,
        reclassified: int,
        correlation_id: UUID,
    ) -> None:
        """Log the outcome of a transfer detection run."""
        await self.log(AuditEventBuilder.transfers_ignored(
            organization_id=organization_id,
            ignored=ignored,
            reclassified=reclassified,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_code: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_code=error_code,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new operation (e.g., one classification
    or one bulk import). Pass it through all subsequent operations.
    """
    return uuid4()
