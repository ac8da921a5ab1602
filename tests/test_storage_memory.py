"""Tests for the in-memory storage backend."""

import asyncio

import pytest
from uuid import uuid4

from budget_ledger.models.audit import AuditEvent, AuditEventType
from budget_ledger.models.ledger import BalanceType, Budget, Expense, ExpenseCategory
from budget_ledger.services.storage import (
    ConcurrentModificationError,
    DuplicateError,
    InMemoryAuditStorage,
    NotFoundError,
)

from conftest import USER_ID, read_budget, seed_budget, seed_category


class TestTransactions:
    """Commit and rollback behaviour."""

    async def test_commit_on_clean_exit(self, storage):
        """Test writes become visible after the block."""
        await seed_budget(storage, USER_ID, 100, 0)
        assert (await read_budget(storage, USER_ID)).checking_balance == 100

    async def test_rollback_on_exception(self, storage):
        """Test an exception discards every staged write."""
        budget = await seed_budget(storage, USER_ID, 100, 0)

        with pytest.raises(RuntimeError):
            async with storage.transaction(USER_ID) as tx:
                current = await tx.get_budget_by_user(USER_ID)
                await tx.put_budget(current.model_copy(update={
                    "checking_balance": 0, "budget_remaining": 0,
                }))
                await tx.insert_category(ExpenseCategory(user_id=USER_ID, name="Temp"))
                raise RuntimeError("abort")

        assert await read_budget(storage, USER_ID) == budget
        async with storage.transaction(USER_ID) as tx:
            assert await tx.list_categories(USER_ID) == []

    async def test_lock_released_after_use(self, storage):
        """Test no per-user lock outlives its transactions."""
        await seed_budget(storage, USER_ID, 100, 0)
        with pytest.raises(RuntimeError):
            async with storage.transaction(USER_ID):
                raise RuntimeError("abort")
        assert storage._locks == {}

    async def test_waiting_transaction_shares_the_lock(self, storage):
        """Test a queued transaction still runs after the holder finishes."""
        await seed_budget(storage, USER_ID, 100, 0)
        order = []

        async def hold():
            async with storage.transaction(USER_ID):
                order.append("first")
                await asyncio.sleep(0.01)
                order.append("first done")

        async def wait():
            await asyncio.sleep(0)
            async with storage.transaction(USER_ID):
                order.append("second")

        await asyncio.gather(hold(), wait())
        assert order == ["first", "first done", "second"]
        assert storage._locks == {}

    async def test_reads_see_own_writes(self, storage):
        """Test a transaction reads what it staged."""
        await seed_budget(storage, USER_ID, 100, 0)
        async with storage.transaction(USER_ID) as tx:
            current = await tx.get_budget_by_user(USER_ID)
            stored = await tx.put_budget(current.model_copy(update={
                "checking_balance": 50, "budget_remaining": 50,
            }))
            assert (await tx.get_budget_by_user(USER_ID)) == stored


class TestBudgetRows:
    """Budget row operations."""

    async def test_put_budget_bumps_version(self, storage):
        """Test the stored copy carries version + 1."""
        budget = await seed_budget(storage, USER_ID, 100, 0)
        async with storage.transaction(USER_ID) as tx:
            stored = await tx.put_budget(budget)
        assert stored.version == budget.version + 1
        assert stored.updated_at >= budget.updated_at

    async def test_stale_version_rejected(self, storage):
        """Test a write based on an old snapshot is a conflict."""
        budget = await seed_budget(storage, USER_ID, 100, 0)
        async with storage.transaction(USER_ID) as tx:
            await tx.put_budget(budget)
        with pytest.raises(ConcurrentModificationError):
            async with storage.transaction(USER_ID) as tx:
                await tx.put_budget(budget)

    async def test_put_unknown_budget(self, storage):
        """Test writing a budget that was never inserted."""
        with pytest.raises(NotFoundError):
            async with storage.transaction(USER_ID) as tx:
                await tx.put_budget(Budget.new(USER_ID, 1, 1))

    async def test_one_budget_per_user(self, storage):
        """Test a second budget for the same user is a duplicate."""
        await seed_budget(storage, USER_ID, 100, 0)
        with pytest.raises(DuplicateError):
            await seed_budget(storage, USER_ID, 5, 5)

    async def test_missing_budget(self, storage):
        """Test reading an absent budget."""
        with pytest.raises(NotFoundError):
            await read_budget(storage, "nobody")


class TestCategoryAndExpenseRows:
    """Category and expense row operations."""

    async def test_categories_scoped_by_user(self, storage):
        """Test one user cannot read another user's category."""
        category = await seed_category(storage, USER_ID, "Rent")
        with pytest.raises(NotFoundError):
            async with storage.transaction("intruder") as tx:
                await tx.get_category_total("intruder", category.category_id)

    async def test_update_category_keeps_total(self, storage):
        """Test renaming does not touch the running total."""
        category = await seed_category(storage, USER_ID, "Rent", total_sum=700)
        async with storage.transaction(USER_ID) as tx:
            updated = await tx.update_category(
                category.model_copy(update={"name": "Housing", "total_sum": 0})
            )
        assert updated.name == "Housing"
        assert updated.total_sum == 700

    async def test_list_categories_sorted_by_name(self, storage):
        """Test categories come back in name order."""
        await seed_category(storage, USER_ID, "utilities")
        await seed_category(storage, USER_ID, "Fuel")
        async with storage.transaction(USER_ID) as tx:
            names = [c.name for c in await tx.list_categories(USER_ID)]
        assert names == ["Fuel", "utilities"]

    async def test_delete_expenses_for_category(self, storage):
        """Test only the category's expenses are removed."""
        rent = await seed_category(storage, USER_ID, "Rent")
        fuel = await seed_category(storage, USER_ID, "Fuel")
        async with storage.transaction(USER_ID) as tx:
            for category in (rent, rent, fuel):
                await tx.insert_expense(Expense(
                    user_id=USER_ID,
                    category_id=category.category_id,
                    expense_type=BalanceType.CHECKING,
                    amount_in_cents=100,
                ))
        async with storage.transaction(USER_ID) as tx:
            deleted = await tx.delete_expenses_for_category(USER_ID, rent.category_id)
        assert len(deleted) == 2
        async with storage.transaction(USER_ID) as tx:
            remaining = await tx.list_expenses(USER_ID)
        assert [e.category_id for e in remaining] == [fuel.category_id]

    async def test_delete_missing_expense(self, storage):
        """Test deleting an absent expense."""
        with pytest.raises(NotFoundError):
            async with storage.transaction(USER_ID) as tx:
                await tx.delete_expense(uuid4(), USER_ID)


class TestInMemoryAuditStorage:
    """Tests for the in-memory audit store."""

    async def test_recent_events_newest_first(self):
        """Test ordering and limit."""
        storage = InMemoryAuditStorage()
        for i in range(3):
            await storage.append_event(AuditEvent(
                event_type=AuditEventType.BALANCE_ADJUSTED,
                description=f"event {i}",
            ))
        recent = await storage.get_recent_events(limit=2)
        assert [e.description for e in recent] == ["event 2", "event 1"]

    async def test_events_by_entity(self):
        """Test lookup by entity."""
        storage = InMemoryAuditStorage()
        entity_id = uuid4()
        await storage.append_event(AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            entity_type="category",
            entity_id=entity_id,
            description="created",
        ))
        events = await storage.get_events_by_entity("category", entity_id)
        assert len(events) == 1
