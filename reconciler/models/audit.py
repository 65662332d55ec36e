"""
Audit Models for the Reconciler

Every decision the classification engine takes is logged:
1. Which source classified a transaction, and with what confidence
2. Whether it was auto-validated or left for a human
3. What the human changed afterwards
4. What the learner and the transfer pass did with it

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from reconciler.models.transaction import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    One event type per edge of the classification state machine,
    plus the human and background actions around it.
    """
    # Automatic classification
    TRANSACTION_AUTO_VALIDATED = "transaction_auto_validated"
    CLASSIFICATION_SUGGESTED = "classification_suggested"
    CLASSIFICATION_UNRESOLVED = "classification_unresolved"
    AI_SUGGESTION_RECORDED = "ai_suggestion_recorded"
    BULK_CLASSIFICATION_COMPLETED = "bulk_classification_completed"

    # Human validation
    USER_VALIDATED = "user_validated"
    USER_CORRECTED = "user_corrected"

    # Learning
    PATTERN_CREATED = "pattern_created"
    PATTERN_UPDATED = "pattern_updated"
    PATTERN_LEARNING_FAILED = "pattern_learning_failed"

    # Transfer detection
    TRANSFERS_IGNORED = "transfers_ignored"

    # System events
    AI_NOT_CONFIGURED = "ai_not_configured"
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'pattern')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Ties together all events of one classification run"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_auto_validated(tx_id, "rule", 1.0, cid)
        event = AuditEventBuilder.user_corrected(tx_id, old, new, cid)
    """

    @staticmethod
    def transaction_auto_validated(
        transaction_id: Optional[UUID],
        source: str,
        category_id: Optional[UUID],
        confidence: float,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_AUTO_VALIDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Auto-validated by {source} with {confidence:.0%} confidence",
            details={
                "source": source,
                "category_id": str(category_id) if category_id else None,
                "confidence": confidence,
            },
        )

    @staticmethod
    def classification_suggested(
        transaction_id: Optional[UUID],
        source: str,
        category_id: Optional[UUID],
        confidence: float,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLASSIFICATION_SUGGESTED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Suggestion from {source} awaiting review ({confidence:.0%})",
            details={
                "source": source,
                "category_id": str(category_id) if category_id else None,
                "confidence": confidence,
            },
        )

    @staticmethod
    def classification_unresolved(
        transaction_id: Optional[UUID],
        reasoning: str,
        error_code: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLASSIFICATION_UNRESOLVED,
            severity=AuditSeverity.WARNING if error_code else AuditSeverity.INFO,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="No source could classify the transaction",
            details={"reasoning": reasoning},
            error_code=error_code,
        )

    @staticmethod
    def ai_suggestion_recorded(
        transaction_id: Optional[UUID],
        category_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        transaction_type: str,
        confidence: float,
        reasoning: str,
        model: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AI_SUGGESTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"AI suggested a category ({confidence:.0%})",
            details={
                "suggested_category_id": str(category_id) if category_id else None,
                "suggested_cost_center_id": str(cost_center_id) if cost_center_id else None,
                "suggested_type": transaction_type,
                "confidence_score": confidence,
                "reasoning": reasoning,
                "model_version": model,
            },
        )

    @staticmethod
    def bulk_classification_completed(
        classified: int,
        total: int,
        failed: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BULK_CLASSIFICATION_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=f"Bulk classification: {classified} of {total} classified",
            details={
                "classified": classified,
                "total": total,
                "failed": failed,
            },
        )

    @staticmethod
    def user_validated(
        transaction_id: UUID,
        source: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_VALIDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"User confirmed the {source} classification",
            details={"source": source},
            is_user_action=True,
        )

    @staticmethod
    def user_corrected(
        transaction_id: UUID,
        previous_category_id: Optional[UUID],
        category_id: Optional[UUID],
        previous_cost_center_id: Optional[UUID],
        cost_center_id: Optional[UUID],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_CORRECTED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="User changed the suggested classification",
            details={
                "previous_category_id": str(previous_category_id) if previous_category_id else None,
                "category_id": str(category_id) if category_id else None,
                "previous_cost_center_id": str(previous_cost_center_id) if previous_cost_center_id else None,
                "cost_center_id": str(cost_center_id) if cost_center_id else None,
            },
            is_user_action=True,
        )

    @staticmethod
    def pattern_learned(
        pattern_id: UUID,
        normalized_description: str,
        occurrences: int,
        confidence: float,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        created = occurrences == 1
        return AuditEvent(
            event_type=(
                AuditEventType.PATTERN_CREATED if created
                else AuditEventType.PATTERN_UPDATED
            ),
            entity_type="pattern",
            entity_id=pattern_id,
            correlation_id=correlation_id,
            description=(
                f"Pattern '{normalized_description[:60]}' "
                f"now at {occurrences} occurrences ({confidence:.0%})"
            ),
            details={
                "normalized_description": normalized_description,
                "occurrences": occurrences,
                "confidence": confidence,
            },
        )

    @staticmethod
    def pattern_learning_failed(
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PATTERN_LEARNING_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="pattern",
            correlation_id=correlation_id,
            description="Learning from validation failed; validation was kept",
            error_message=error_message,
            details=details or {},
        )

    @staticmethod
    def transfers_ignored(
        organization_id: UUID,
        ignored: int,
        reclassified: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFERS_IGNORED,
            entity_type="organization",
            entity_id=organization_id,
            correlation_id=correlation_id,
            description=(
                f"Internal transfers: {ignored} ignored, {reclassified} reclassified"
            ),
            details={
                "ignored": ignored,
                "reclassified": reclassified,
            },
        )

    @staticmethod
    def ai_not_configured(
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AI_NOT_CONFIGURED,
            severity=AuditSeverity.ERROR,
            description="AI classification is not configured",
            error_code="ai_not_configured",
            error_message=error_message,
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_code: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_code=error_code,
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
