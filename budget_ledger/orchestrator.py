"""
Main Orchestrator for Budget Ledger

This module ties together all the components and defines the flows that
sit around the ledger coordinator:
1. Budget lifecycle (create → read → delete everything for a user)
2. Category management (create → rename → delete with cascade)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Exactly one budget per user, never auto-provisioned
- A category's running total is only ever moved by the coordinator
- Every step is audited

Balance-changing expense operations live on LedgerCoordinator itself.
"""

from typing import NamedTuple, Optional
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.config import get_settings
from budget_ledger.coordinator import LedgerCoordinator, LedgerStep
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import Budget, Expense, ExpenseCategory, UpdateDirection
from budget_ledger.queries import SummaryExecutor
from budget_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    SqlAuditStorage,
    SqlDatabase,
    SqlLedgerStorage,
)


logger = structlog.get_logger(__name__)


class BudgetFlow:
    """
    Orchestrates the budget lifecycle.

    Flow:
    1. Create → seed balances at setup time (one budget per user)
    2. Read → current snapshot
    3. Delete → budget, expenses and categories in one transaction
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()

    async def create_budget(
        self,
        user_id: str,
        checking_balance: int,
        savings_balance: int,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Create the user's budget.

        Raises:
            DuplicateError: If the user already has one
            pydantic.ValidationError: If a balance is not an integer
        """
        correlation_id = correlation_id or create_correlation_id()
        budget = Budget.new(user_id, checking_balance, savings_balance)

        async with self._storage.transaction(user_id) as tx:
            await tx.insert_budget(budget)

        logger.info(
            "budget_created",
            user_id=user_id,
            budget_id=str(budget.budget_id),
            budget_total=budget.budget_total,
        )
        await self._audit_logger.log_budget_created(budget, correlation_id)
        return budget

    async def get_budget(self, user_id: str) -> Budget:
        """
        Raises:
            NotFoundError: If the user has no budget
        """
        async with self._storage.transaction(user_id) as tx:
            return await tx.get_budget_by_user(user_id)

    async def delete_account_data(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        """
        Delete the user's budget, expenses and categories.

        Returns how many rows of each kind were removed.
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._storage.transaction(user_id) as tx:
            counts = {
                "expenses": await tx.delete_expenses_for_user(user_id),
                "categories": await tx.delete_categories_for_user(user_id),
                "budgets": int(await tx.delete_budget(user_id)),
            }

        logger.warning("account_data_deleted", user_id=user_id, **counts)
        await self._audit_logger.log_account_data_deleted(user_id, counts, correlation_id)
        return counts


class CategoryFlow:
    """
    Orchestrates expense categories.

    Names and descriptions are edited here; running totals are not.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        coordinator: LedgerCoordinator,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._coordinator = coordinator
        self._audit_logger = audit_logger or AuditLogger()

    async def create_category(
        self,
        user_id: str,
        name: str,
        description: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseCategory:
        """Create a category with a running total of zero."""
        category = ExpenseCategory(user_id=user_id, name=name, description=description)

        async with self._storage.transaction(user_id) as tx:
            await tx.insert_category(category)

        await self._audit_logger.log_category_changed(
            AuditEventType.CATEGORY_CREATED,
            user_id,
            category.category_id,
            category.name,
            correlation_id=correlation_id,
        )
        return category

    async def update_category(
        self,
        user_id: str,
        category_id: UUID,
        name: str,
        description: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseCategory:
        """
        Rename a category.

        Raises:
            NotFoundError: If the category does not exist for this user
        """
        async with self._storage.transaction(user_id) as tx:
            current = await tx.get_category(user_id, category_id)
            updated = await tx.update_category(
                ExpenseCategory(
                    category_id=category_id,
                    user_id=user_id,
                    name=name,
                    description=description,
                    total_sum=current.total_sum,
                )
            )

        await self._audit_logger.log_category_changed(
            AuditEventType.CATEGORY_UPDATED,
            user_id,
            category_id,
            updated.name,
            details={"previous_name": current.name},
            correlation_id=correlation_id,
        )
        return updated

    async def delete_category(
        self,
        user_id: str,
        category_id: UUID,
        refund_expenses: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> list[Expense]:
        """
        Delete a category and every expense tagged with it.

        By default the deleted expenses stay spent (the budget is not
        touched). With refund_expenses=True each one is refunded to its
        balance in the same transaction.

        Returns the deleted expenses.

        Raises:
            NotFoundError: If the category does not exist for this user
        """
        correlation_id = correlation_id or create_correlation_id()

        async def prepare(tx) -> tuple[tuple[ExpenseCategory, list[Expense]], list[LedgerStep]]:
            category = await tx.get_category(user_id, category_id)
            expenses = await tx.delete_expenses_for_category(user_id, category_id)
            await tx.delete_category(user_id, category_id)

            steps: list[LedgerStep] = []
            if refund_expenses:
                # The category row is gone, so refunds carry no category
                steps = [
                    LedgerStep(
                        expense.expense_type,
                        UpdateDirection.ADD,
                        expense.amount_in_cents,
                    )
                    for expense in expenses
                ]
            return (category, expenses), steps

        category, expenses = await self._coordinator.run_with_steps(
            user_id,
            "delete_category",
            prepare,
            AuditEventType.EXPENSE_DELETED,
            correlation_id,
        )
        refunded = sum(e.amount_in_cents for e in expenses) if refund_expenses else 0

        await self._audit_logger.log_category_changed(
            AuditEventType.CATEGORY_DELETED,
            user_id,
            category_id,
            category.name,
            details={
                "expenses_deleted": len(expenses),
                "refund_expenses": refund_expenses,
                "refunded_in_cents": refunded,
            },
            correlation_id=correlation_id,
        )
        return expenses

    async def list_categories(self, user_id: str) -> list[ExpenseCategory]:
        """List the user's categories by name."""
        async with self._storage.transaction(user_id) as tx:
            return await tx.list_categories(user_id)


class LedgerComponents(NamedTuple):
    """Everything create_app_components() wires together."""
    storage: LedgerStorageInterface
    audit_logger: AuditLogger
    coordinator: LedgerCoordinator
    budgets: BudgetFlow
    categories: CategoryFlow
    summaries: SummaryExecutor
    database: Optional[SqlDatabase]


def create_app_components(
    backend: Optional[str] = None,
) -> LedgerComponents:
    """
    Factory function to create all application components.

    Args:
        backend: "memory" or "sql". Defaults to the configured backend.
                 For "sql", await components.database.initialize()
                 before first use.

    Returns:
        LedgerComponents
    """
    settings = get_settings().ledger
    backend = backend or settings.storage_backend

    database = None
    audit_storage: Optional[AuditStorageInterface]

    if backend == "sql":
        database = SqlDatabase()
        storage = SqlLedgerStorage(database)
        audit_storage = SqlAuditStorage(database)
    elif backend == "memory":
        storage = InMemoryLedgerStorage()
        audit_storage = InMemoryAuditStorage()
    else:
        raise ValueError(f"Unknown storage backend: {backend!r} (expected 'memory' or 'sql')")

    if not settings.persist_audit_events:
        audit_storage = None  # Local-only logging

    audit_logger = AuditLogger(audit_storage)
    coordinator = LedgerCoordinator(storage, audit_logger=audit_logger)

    logger.info("app_components_created", backend=backend)

    return LedgerComponents(
        storage=storage,
        audit_logger=audit_logger,
        coordinator=coordinator,
        budgets=BudgetFlow(storage, audit_logger),
        categories=CategoryFlow(storage, coordinator, audit_logger),
        summaries=SummaryExecutor(storage),
        database=database,
    )
