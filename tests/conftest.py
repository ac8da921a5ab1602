"""
Shared fixtures for Budget Ledger tests.

No database or network in the default fixtures: the ledger runs against
the in-memory storage, and the audit trail against the in-memory store.
"""

import pytest

from budget_ledger.audit import AuditLogger
from budget_ledger.coordinator import LedgerCoordinator
from budget_ledger.models.ledger import Budget, ExpenseCategory
from budget_ledger.orchestrator import BudgetFlow, CategoryFlow
from budget_ledger.queries import SummaryExecutor
from budget_ledger.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage
from budget_ledger.validation import LedgerValidator


USER_ID = "user-1"
OTHER_USER_ID = "user-2"


async def seed_budget(storage, user_id: str, checking: int, savings: int) -> Budget:
    budget = Budget.new(user_id, checking, savings)
    async with storage.transaction(user_id) as tx:
        await tx.insert_budget(budget)
    return budget


async def seed_category(storage, user_id: str, name: str, total_sum: int = 0) -> ExpenseCategory:
    category = ExpenseCategory(user_id=user_id, name=name, total_sum=total_sum)
    async with storage.transaction(user_id) as tx:
        await tx.insert_category(category)
    return category


async def read_budget(storage, user_id: str) -> Budget:
    async with storage.transaction(user_id) as tx:
        return await tx.get_budget_by_user(user_id)


async def read_category_total(storage, user_id: str, category_id) -> int:
    async with storage.transaction(user_id) as tx:
        return await tx.get_category_total(user_id, category_id)


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def coordinator(storage, audit_logger):
    return LedgerCoordinator(
        storage,
        audit_logger=audit_logger,
        validator=LedgerValidator(max_amount_in_cents=10_000_000),
        retry_attempts=3,
    )


@pytest.fixture
def budget_flow(storage, audit_logger):
    return BudgetFlow(storage, audit_logger)


@pytest.fixture
def category_flow(storage, coordinator, audit_logger):
    return CategoryFlow(storage, coordinator, audit_logger)


@pytest.fixture
def summaries(storage):
    return SummaryExecutor(storage)


@pytest.fixture
async def seeded(storage):
    """Budget {checking: 10000, savings: 5000} and an empty category C1."""
    budget = await seed_budget(storage, USER_ID, 10_000, 5_000)
    category = await seed_category(storage, USER_ID, "Groceries")
    return budget, category
