"""Tests for the budget and category flows and the component factory."""

import pytest
from uuid import uuid4

from budget_ledger.config import get_settings
from budget_ledger.models.audit import AuditEventType
from budget_ledger.orchestrator import LedgerComponents, create_app_components
from budget_ledger.services.storage import (
    ConcurrentModificationError,
    DuplicateError,
    InMemoryLedgerStorage,
    InMemoryLedgerTransaction,
    NotFoundError,
    SqlLedgerStorage,
)

from conftest import USER_ID, OTHER_USER_ID, read_budget, read_category_total


class TestBudgetFlow:
    """Budget lifecycle."""

    async def test_create_budget(self, budget_flow, storage):
        """Test a new budget is seeded from the two balances."""
        budget = await budget_flow.create_budget(USER_ID, 10_000, 5_000)
        assert budget.budget_total == 15_000
        assert budget.budget_remaining == 15_000
        assert budget.total_spent == 0
        assert await read_budget(storage, USER_ID) == budget

    async def test_second_budget_rejected(self, budget_flow):
        """Test one budget per user."""
        await budget_flow.create_budget(USER_ID, 1, 1)
        with pytest.raises(DuplicateError):
            await budget_flow.create_budget(USER_ID, 2, 2)

    async def test_get_budget_missing(self, budget_flow):
        """Test a missing budget is never auto-provisioned."""
        with pytest.raises(NotFoundError):
            await budget_flow.get_budget(USER_ID)

    async def test_budget_creation_audited(self, budget_flow, audit_storage):
        """Test the creation event is stored."""
        budget = await budget_flow.create_budget(USER_ID, 10, 10)
        events = await audit_storage.get_events_by_entity("budget", budget.budget_id)
        assert [e.event_type for e in events] == [AuditEventType.BUDGET_CREATED]

    async def test_delete_account_data(self, budget_flow, category_flow, coordinator, storage):
        """Test budget, expenses and categories all go; other users stay."""
        await budget_flow.create_budget(USER_ID, 10_000, 5_000)
        await budget_flow.create_budget(OTHER_USER_ID, 100, 0)
        category = await category_flow.create_category(USER_ID, "Rent")
        await coordinator.record_expense(USER_ID, category.category_id, "checking", 100)
        await coordinator.record_expense(USER_ID, None, "savings", 200)

        counts = await budget_flow.delete_account_data(USER_ID)

        assert counts == {"expenses": 2, "categories": 1, "budgets": 1}
        with pytest.raises(NotFoundError):
            await budget_flow.get_budget(USER_ID)
        assert (await budget_flow.get_budget(OTHER_USER_ID)).checking_balance == 100


class TestCategoryFlow:
    """Category management."""

    async def test_create_starts_at_zero(self, category_flow):
        """Test a new category has no running total."""
        category = await category_flow.create_category(USER_ID, "Fuel", "Car and bike")
        assert category.total_sum == 0

    async def test_update_keeps_total(self, category_flow, coordinator, storage, seeded):
        """Test renaming never touches the running total."""
        _, category = seeded
        await coordinator.record_expense(USER_ID, category.category_id, "checking", 900)
        updated = await category_flow.update_category(
            USER_ID, category.category_id, "Food", "Supermarket"
        )
        assert updated.name == "Food"
        assert updated.total_sum == 900

    async def test_update_missing(self, category_flow):
        """Test renaming an unknown category."""
        with pytest.raises(NotFoundError):
            await category_flow.update_category(USER_ID, uuid4(), "X")

    async def test_list_categories(self, category_flow):
        """Test categories list by name."""
        await category_flow.create_category(USER_ID, "Travel")
        await category_flow.create_category(USER_ID, "Bills")
        names = [c.name for c in await category_flow.list_categories(USER_ID)]
        assert names == ["Bills", "Travel"]

    async def test_delete_cascades_without_refund(self, category_flow, coordinator, storage, seeded):
        """Test the default delete removes expenses but keeps them spent."""
        _, category = seeded
        await coordinator.record_expense(USER_ID, category.category_id, "checking", 3_000)
        await coordinator.record_expense(USER_ID, category.category_id, "savings", 1_000)
        before = await read_budget(storage, USER_ID)

        deleted = await category_flow.delete_category(USER_ID, category.category_id)

        assert len(deleted) == 2
        assert await read_budget(storage, USER_ID) == before
        async with storage.transaction(USER_ID) as tx:
            assert await tx.list_expenses(USER_ID) == []
        with pytest.raises(NotFoundError):
            await read_category_total(storage, USER_ID, category.category_id)

    async def test_delete_with_refund(self, category_flow, coordinator, storage, seeded):
        """Test refund_expenses returns every deleted expense to its balance."""
        start, category = seeded
        await coordinator.record_expense(USER_ID, category.category_id, "checking", 3_000)
        await coordinator.record_expense(USER_ID, category.category_id, "savings", 1_000)

        await category_flow.delete_category(
            USER_ID, category.category_id, refund_expenses=True
        )

        assert (await read_budget(storage, USER_ID)).same_figures_as(start)

    async def test_delete_with_refund_is_audited(
        self, category_flow, coordinator, storage, audit_storage, seeded
    ):
        """Test the refund leaves a mutation event with before and after figures."""
        _, category = seeded
        await coordinator.record_expense(USER_ID, category.category_id, "checking", 3_000)

        await category_flow.delete_category(
            USER_ID, category.category_id, refund_expenses=True
        )

        events = await audit_storage.get_recent_events()
        assert events[1].event_type == AuditEventType.EXPENSE_DELETED
        assert events[1].details["before"]["checking_balance"] == 7_000
        assert events[1].details["after"]["checking_balance"] == 10_000
        assert events[0].event_type == AuditEventType.CATEGORY_DELETED

    async def test_delete_with_refund_retries_lost_race(
        self, category_flow, coordinator, storage, seeded, monkeypatch
    ):
        """Test a concurrency conflict re-runs the whole delete."""
        start, category = seeded
        await coordinator.record_expense(USER_ID, category.category_id, "checking", 3_000)
        original = InMemoryLedgerTransaction.put_budget
        calls = {"count": 0}

        async def flaky_put(self, budget):
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConcurrentModificationError("raced")
            return await original(self, budget)

        monkeypatch.setattr(InMemoryLedgerTransaction, "put_budget", flaky_put)

        deleted = await category_flow.delete_category(
            USER_ID, category.category_id, refund_expenses=True
        )

        assert calls["count"] == 2
        assert len(deleted) == 1
        assert (await read_budget(storage, USER_ID)).same_figures_as(start)

    async def test_delete_without_refund_records_no_mutation(
        self, category_flow, audit_storage, seeded
    ):
        """Test the write-off delete leaves the budget events alone."""
        _, category = seeded
        await category_flow.delete_category(USER_ID, category.category_id)
        event_types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.EXPENSE_DELETED not in event_types
        assert event_types[0] == AuditEventType.CATEGORY_DELETED

    async def test_delete_leaves_other_categories(self, category_flow, coordinator, storage, seeded):
        """Test expenses of other categories survive."""
        _, groceries = seeded
        fuel = await category_flow.create_category(USER_ID, "Fuel")
        await coordinator.record_expense(USER_ID, fuel.category_id, "checking", 500)

        await category_flow.delete_category(USER_ID, groceries.category_id)

        async with storage.transaction(USER_ID) as tx:
            remaining = await tx.list_expenses(USER_ID)
        assert [e.category_id for e in remaining] == [fuel.category_id]
        assert await read_category_total(storage, USER_ID, fuel.category_id) == 500

    async def test_delete_missing(self, category_flow, audit_storage):
        """Test deleting an unknown category is NotFoundError and audited."""
        with pytest.raises(NotFoundError):
            await category_flow.delete_category(USER_ID, uuid4())
        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.NOT_FOUND


class TestCreateAppComponents:
    """Tests for the factory."""

    def test_memory_backend(self):
        """Test the in-memory wiring."""
        components = create_app_components(backend="memory")
        assert isinstance(components, LedgerComponents)
        assert isinstance(components.storage, InMemoryLedgerStorage)
        assert components.database is None

    def test_sql_backend(self, tmp_path, monkeypatch):
        """Test the SQL wiring picks up the configured database URL."""
        monkeypatch.setenv("LEDGER_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
        components = create_app_components(backend="sql")
        assert isinstance(components.storage, SqlLedgerStorage)
        assert components.database is not None

    def test_backend_from_settings(self, monkeypatch):
        """Test the default comes from LEDGER_STORAGE_BACKEND."""
        monkeypatch.setenv("LEDGER_STORAGE_BACKEND", "memory")
        assert get_settings().ledger.storage_backend == "memory"
        components = create_app_components()
        assert isinstance(components.storage, InMemoryLedgerStorage)

    def test_unknown_backend(self):
        """Test an unknown backend name is rejected."""
        with pytest.raises(ValueError):
            create_app_components(backend="sheets")

    async def test_components_work_end_to_end(self):
        """Test the wired components run an expense through."""
        components = create_app_components(backend="memory")
        await components.budgets.create_budget(USER_ID, 10_000, 5_000)
        category = await components.categories.create_category(USER_ID, "Groceries")
        await components.coordinator.record_expense(
            USER_ID, category.category_id, "checking", 3_000
        )
        summary = await components.summaries.summarize(USER_ID)
        assert summary.checking_balance == 7_000
        assert summary.categories[0].total_sum == 3_000
