"""
In-Memory Storage Implementation

Used by the tests and by anyone running the ledger without a database.
It keeps the same guarantees as the SQL backend:

- one asyncio.Lock per user serializes that user's transactions; the
  lock is dropped once nobody holds or waits for it
- writes are staged in a transaction-local overlay and only reach the
  shared dicts on commit, so an exception leaves nothing behind
- put_budget is a compare-and-swap on Budget.version

TRADEOFFS:
- Nothing survives the process
- Listing walks every row (fine for tests and personal use)
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import Budget, Expense, ExpenseCategory, utcnow
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConcurrentModificationError,
    DuplicateError,
    LedgerStorageInterface,
    LedgerTransaction,
    NotFoundError,
)


# Overlay marker for a row deleted inside the transaction
_DELETED = None


class InMemoryLedgerTransaction(LedgerTransaction):
    """
    One open transaction against an InMemoryLedgerStorage.

    Reads consult the overlay first, then the committed dicts.
    """

    def __init__(self, storage: "InMemoryLedgerStorage"):
        self._storage = storage
        self._budgets: dict[str, Optional[Budget]] = {}
        self._categories: dict[tuple[str, UUID], Optional[ExpenseCategory]] = {}
        self._expenses: dict[UUID, Optional[Expense]] = {}

    # --- overlay plumbing ---------------------------------------------------

    def _read_budget(self, user_id: str) -> Optional[Budget]:
        if user_id in self._budgets:
            return self._budgets[user_id]
        return self._storage._budgets.get(user_id)

    def _read_category(self, user_id: str, category_id: UUID) -> Optional[ExpenseCategory]:
        key = (user_id, category_id)
        if key in self._categories:
            return self._categories[key]
        return self._storage._categories.get(key)

    def _read_expense(self, user_id: str, expense_id: UUID) -> Optional[Expense]:
        if expense_id in self._expenses:
            expense = self._expenses[expense_id]
        else:
            expense = self._storage._expenses.get(expense_id)
        if expense is None or expense.user_id != user_id:
            return None
        return expense

    def _visible_categories(self, user_id: str) -> list[ExpenseCategory]:
        merged = dict(self._storage._categories)
        merged.update(self._categories)
        return [
            category for (owner, _), category in merged.items()
            if owner == user_id and category is not _DELETED
        ]

    def _visible_expenses(self, user_id: str) -> list[Expense]:
        merged = dict(self._storage._expenses)
        merged.update(self._expenses)
        return [
            expense for expense in merged.values()
            if expense is not _DELETED and expense.user_id == user_id
        ]

    def _require_category(self, user_id: str, category_id: UUID) -> ExpenseCategory:
        category = self._read_category(user_id, category_id)
        if category is None:
            raise NotFoundError(f"Category {category_id} not found for user {user_id}")
        return category

    def commit(self) -> None:
        """Apply every staged write to the shared dicts."""
        for user_id, budget in self._budgets.items():
            if budget is _DELETED:
                self._storage._budgets.pop(user_id, None)
            else:
                self._storage._budgets[user_id] = budget
        for key, category in self._categories.items():
            if category is _DELETED:
                self._storage._categories.pop(key, None)
            else:
                self._storage._categories[key] = category
        for expense_id, expense in self._expenses.items():
            if expense is _DELETED:
                self._storage._expenses.pop(expense_id, None)
            else:
                self._storage._expenses[expense_id] = expense

    # --- budget -------------------------------------------------------------

    async def get_budget_by_user(self, user_id: str) -> Budget:
        budget = self._read_budget(user_id)
        if budget is None:
            raise NotFoundError(f"No budget found for user {user_id}")
        return budget

    async def put_budget(self, budget: Budget) -> Budget:
        current = self._read_budget(budget.user_id)
        if current is None or current.budget_id != budget.budget_id:
            raise NotFoundError(
                f"Budget {budget.budget_id} not found for user {budget.user_id}"
            )
        if current.version != budget.version:
            raise ConcurrentModificationError(
                f"Budget {budget.budget_id} changed (version {current.version}, "
                f"expected {budget.version})"
            )
        stored = budget.model_copy(
            update={"version": budget.version + 1, "updated_at": utcnow()}
        )
        self._budgets[budget.user_id] = stored
        return stored

    async def insert_budget(self, budget: Budget) -> Budget:
        if self._read_budget(budget.user_id) is not None:
            raise DuplicateError(f"User {budget.user_id} already has a budget")
        self._budgets[budget.user_id] = budget
        return budget

    async def delete_budget(self, user_id: str) -> bool:
        if self._read_budget(user_id) is None:
            return False
        self._budgets[user_id] = _DELETED
        return True

    # --- categories ---------------------------------------------------------

    async def get_category_total(self, user_id: str, category_id: UUID) -> int:
        return self._require_category(user_id, category_id).total_sum

    async def put_category_total(self, user_id: str, category_id: UUID, new_total: int) -> None:
        category = self._require_category(user_id, category_id)
        self._categories[(user_id, category_id)] = category.model_copy(
            update={"total_sum": new_total}
        )

    async def get_category(self, user_id: str, category_id: UUID) -> ExpenseCategory:
        return self._require_category(user_id, category_id)

    async def insert_category(self, category: ExpenseCategory) -> ExpenseCategory:
        if self._read_category(category.user_id, category.category_id) is not None:
            raise DuplicateError(f"Category {category.category_id} already exists")
        self._categories[(category.user_id, category.category_id)] = category
        return category

    async def update_category(self, category: ExpenseCategory) -> ExpenseCategory:
        current = self._require_category(category.user_id, category.category_id)
        updated = current.model_copy(
            update={"name": category.name, "description": category.description}
        )
        self._categories[(category.user_id, category.category_id)] = updated
        return updated

    async def delete_category(self, user_id: str, category_id: UUID) -> None:
        self._require_category(user_id, category_id)
        self._categories[(user_id, category_id)] = _DELETED

    async def list_categories(self, user_id: str) -> list[ExpenseCategory]:
        return sorted(self._visible_categories(user_id), key=lambda c: c.name.lower())

    async def delete_categories_for_user(self, user_id: str) -> int:
        categories = self._visible_categories(user_id)
        for category in categories:
            self._categories[(user_id, category.category_id)] = _DELETED
        return len(categories)

    # --- expenses -----------------------------------------------------------

    async def get_expense(self, user_id: str, expense_id: UUID) -> Expense:
        expense = self._read_expense(user_id, expense_id)
        if expense is None:
            raise NotFoundError(f"Expense {expense_id} not found for user {user_id}")
        return expense

    async def insert_expense(self, expense: Expense) -> Expense:
        if expense.expense_id in self._storage._expenses or self._expenses.get(expense.expense_id):
            raise DuplicateError(f"Expense {expense.expense_id} already exists")
        self._expenses[expense.expense_id] = expense
        return expense

    async def update_expense(self, expense: Expense) -> Expense:
        await self.get_expense(expense.user_id, expense.expense_id)
        self._expenses[expense.expense_id] = expense
        return expense

    async def delete_expense(self, expense_id: UUID, user_id: str) -> None:
        await self.get_expense(user_id, expense_id)
        self._expenses[expense_id] = _DELETED

    async def list_expenses(
        self,
        user_id: str,
        category_id: Optional[UUID] = None,
    ) -> list[Expense]:
        expenses = self._visible_expenses(user_id)
        if category_id is not None:
            expenses = [e for e in expenses if e.category_id == category_id]
        return sorted(expenses, key=lambda e: e.created_at, reverse=True)

    async def delete_expenses_for_category(
        self,
        user_id: str,
        category_id: UUID,
    ) -> list[Expense]:
        expenses = await self.list_expenses(user_id, category_id)
        for expense in expenses:
            self._expenses[expense.expense_id] = _DELETED
        return expenses

    async def delete_expenses_for_user(self, user_id: str) -> int:
        expenses = self._visible_expenses(user_id)
        for expense in expenses:
            self._expenses[expense.expense_id] = _DELETED
        return len(expenses)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    In-memory implementation of ledger storage.

    Rows are frozen models, so the committed dicts can be shared with
    readers without copying.
    """

    def __init__(self):
        self._budgets: dict[str, Budget] = {}
        self._categories: dict[tuple[str, UUID], ExpenseCategory] = {}
        self._expenses: dict[UUID, Expense] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncIterator[InMemoryLedgerTransaction]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                tx = InMemoryLedgerTransaction(self)
                yield tx
                tx.commit()
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
