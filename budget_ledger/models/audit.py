"""
Audit Models for Budget Ledger

Every ledger mutation and every rejection is logged for audit purposes.
This provides:
1. Complete traceability of balance changes
2. Material to reconcile a partial failure by hand
3. Debugging information when things go wrong

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budget_ledger.models.ledger import Budget, utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Budget lifecycle
    BUDGET_CREATED = "budget_created"
    BALANCE_ADJUSTED = "balance_adjusted"
    ACCOUNT_DATA_DELETED = "account_data_deleted"

    # Expense-driven mutations
    EXPENSE_RECORDED = "expense_recorded"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"

    # Rejections
    INVALID_INPUT_REJECTED = "invalid_input_rejected"
    INSUFFICIENT_FUNDS_REJECTED = "insufficient_funds_rejected"
    NOT_FOUND = "not_found"

    # Failures
    PARTIAL_FAILURE = "partial_failure"
    STORAGE_ERROR = "storage_error"


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
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - whose data, and which entity?
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the data the event touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'expense', 'category')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


def _budget_figures(budget: Budget) -> dict:
    return {
        "checking_balance": budget.checking_balance,
        "savings_balance": budget.savings_balance,
        "budget_total": budget.budget_total,
        "budget_remaining": budget.budget_remaining,
        "total_spent": budget.total_spent,
    }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.budget_created(budget, correlation_id)
        event = AuditEventBuilder.insufficient_funds(user_id, "checking", 7000, 8000, correlation_id)
    """

    @staticmethod
    def budget_created(
        budget: Budget,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            user_id=budget.user_id,
            entity_type="budget",
            entity_id=budget.budget_id,
            correlation_id=correlation_id,
            description=f"Budget created with {budget.budget_total} cents",
            details=_budget_figures(budget),
        )

    @staticmethod
    def budget_mutated(
        event_type: AuditEventType,
        before: Budget,
        after: Budget,
        operation: dict,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            user_id=after.user_id,
            entity_type="budget",
            entity_id=after.budget_id,
            correlation_id=correlation_id,
            description=(
                f"{event_type.value.replace('_', ' ').capitalize()}: "
                f"remaining {before.budget_remaining} -> {after.budget_remaining}"
            ),
            details={
                "operation": operation,
                "before": _budget_figures(before),
                "after": _budget_figures(after),
            },
        )

    @staticmethod
    def category_changed(
        event_type: AuditEventType,
        user_id: str,
        category_id: UUID,
        name: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            correlation_id=correlation_id,
            description=f"Category {event_type.value.split('_')[-1]}: {name}",
            details=details or {},
        )

    @staticmethod
    def account_data_deleted(
        user_id: str,
        counts: dict,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DATA_DELETED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="user",
            correlation_id=correlation_id,
            description="All ledger data deleted for user",
            details=counts,
        )

    @staticmethod
    def invalid_input(
        user_id: str,
        field: str,
        value: Any,
        message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVALID_INPUT_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Rejected invalid {field}",
            details={"field": field, "value": repr(value)},
            error_code="invalid_input",
            error_message=message,
        )

    @staticmethod
    def insufficient_funds(
        user_id: str,
        balance_type: str,
        available: int,
        requested: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSUFFICIENT_FUNDS_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="budget",
            correlation_id=correlation_id,
            description=f"Rejected: insufficient funds in {balance_type}",
            details={
                "balance_type": balance_type,
                "available": available,
                "requested": requested,
            },
            error_code="insufficient_funds",
        )

    @staticmethod
    def not_found(
        user_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOT_FOUND,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Referenced record not found",
            error_code="not_found",
            error_message=error_message,
        )

    @staticmethod
    def partial_failure(
        user_id: str,
        details: dict,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTIAL_FAILURE,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="category",
            correlation_id=correlation_id,
            description="Category update failed after budget update",
            details=details,
            error_code="partial_failure",
            error_message=error_message,
        )

    @staticmethod
    def storage_error(
        user_id: Optional[str],
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Storage error during {operation}",
            details={"operation": operation},
            error_code="storage_error",
            error_message=error_message,
        )
