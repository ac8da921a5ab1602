"""
Audit Logger

DESIGN DECISION: Every balance change and every rejection is logged.
This provides:
1. Complete traceability of money movements
2. Debugging capability
3. The material an operator needs to reconcile a partial failure

The audit logger:
- Is async so it fits the storage calls around it
- Gracefully handles failures (doesn't fail a committed operation if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from budget_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from budget_ledger.models.ledger import Budget
from budget_ledger.services.storage import AuditStorageInterface


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
    2. The audit store (for persistence), when one is configured
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
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

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

    async def log_budget_created(
        self,
        budget: Budget,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log budget creation."""
        await self.log(AuditEventBuilder.budget_created(budget, correlation_id))

    async def log_budget_mutated(
        self,
        event_type: AuditEventType,
        before: Budget,
        after: Budget,
        operation: dict,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a committed balance change with the before/after figures."""
        event = AuditEventBuilder.budget_mutated(
            event_type=event_type,
            before=before,
            after=after,
            operation=operation,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_category_changed(
        self,
        event_type: AuditEventType,
        user_id: str,
        category_id: UUID,
        name: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log category create/update/delete."""
        event = AuditEventBuilder.category_changed(
            event_type=event_type,
            user_id=user_id,
            category_id=category_id,
            name=name,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_account_data_deleted(
        self,
        user_id: str,
        counts: dict,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_data_deleted(user_id, counts, correlation_id))

    async def log_invalid_input(
        self,
        user_id: str,
        field: str,
        value: Any,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an input rejection."""
        event = AuditEventBuilder.invalid_input(
            user_id=user_id,
            field=field,
            value=value,
            message=message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_insufficient_funds(
        self,
        user_id: str,
        balance_type: str,
        available: int,
        requested: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a subtraction rejected for insufficient funds."""
        event = AuditEventBuilder.insufficient_funds(
            user_id=user_id,
            balance_type=balance_type,
            available=available,
            requested=requested,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_not_found(
        self,
        user_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.not_found(user_id, error_message, correlation_id))

    async def log_partial_failure(
        self,
        user_id: str,
        details: dict,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a category step that failed after the budget step."""
        event = AuditEventBuilder.partial_failure(
            user_id=user_id,
            details=details,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        user_id: Optional[str],
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a storage failure."""
        event = AuditEventBuilder.storage_error(
            user_id=user_id,
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new request (e.g., one expense edit).
    Pass it through all subsequent operations.
    """
    return uuid4()
