"""Tests for the audit logger."""

from uuid import UUID

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_ledger.models.ledger import Budget
from budget_ledger.services.storage import InMemoryAuditStorage, StorageError


class BrokenAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise StorageError("audit table unavailable")


class TestAuditLogger:
    """Tests for AuditLogger."""

    async def test_logs_to_storage(self):
        """Test events are persisted when storage is configured."""
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        assert await logger.log(AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            description="Deposit",
        ))
        assert len(await storage.get_recent_events()) == 1

    async def test_local_only(self):
        """Test logging works without storage."""
        logger = AuditLogger()
        assert await logger.log(AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description="Something broke",
        ))

    async def test_storage_failure_not_raised(self):
        """Test a failing audit store returns False instead of raising."""
        logger = AuditLogger(BrokenAuditStorage())
        result = await logger.log(AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            description="Deposit",
        ))
        assert result is False

    async def test_typed_helpers(self):
        """Test the helpers build the right event types."""
        storage = InMemoryAuditStorage()
        logger = AuditLogger(storage)
        correlation_id = create_correlation_id()
        budget = Budget.new("u1", 100, 0)

        await logger.log_budget_created(budget, correlation_id)
        await logger.log_invalid_input("u1", "amount_in_cents", 0, "Amount must be positive", correlation_id)
        await logger.log_storage_error("u1", "put_budget", "timeout", correlation_id)

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.BUDGET_CREATED,
            AuditEventType.INVALID_INPUT_REJECTED,
            AuditEventType.STORAGE_ERROR,
        ]
        assert events[1].severity == AuditSeverity.WARNING
        assert events[2].severity == AuditSeverity.ERROR

    def test_correlation_ids_are_unique(self):
        """Test correlation ids are fresh UUIDs."""
        first, second = create_correlation_id(), create_correlation_id()
        assert isinstance(first, UUID)
        assert first != second
