"""
Summary Queries

DESIGN DECISION: Reporting stays at simple sums.
Everything here is read-only and computed from the stored rows on every
call; nothing is cached and no figure is estimated.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from budget_ledger.models.ledger import BalanceType, Expense
from budget_ledger.services.storage import LedgerStorageInterface


class CategoryTotal(BaseModel):
    """One category line in a summary."""
    category_id: UUID
    name: str
    total_sum: int
    expense_count: int


class BudgetSummary(BaseModel):
    """Budget figures plus expense and category sums for one user."""
    user_id: str
    checking_balance: int
    savings_balance: int
    budget_total: int
    budget_remaining: int
    total_spent: int
    expense_count: int = 0
    expenses_total: int = 0
    categories: list[CategoryTotal] = Field(default_factory=list)


class SummaryExecutor:
    """
    Read-only sums over a user's ledger.

    GUARANTEES:
    - Only returns what storage holds
    - Never mutates anything
    """

    def __init__(self, storage: LedgerStorageInterface):
        self._storage = storage

    async def expenses_total(
        self,
        user_id: str,
        category_id: Optional[UUID] = None,
        balance_type: Optional[BalanceType] = None,
    ) -> int:
        """Sum of amount_in_cents over the matching expenses."""
        async with self._storage.transaction(user_id) as tx:
            expenses = await tx.list_expenses(user_id, category_id)
        return sum(e.amount_in_cents for e in self._filter(expenses, balance_type))

    async def summarize(self, user_id: str) -> BudgetSummary:
        """
        Raises:
            NotFoundError: If the user has no budget
        """
        async with self._storage.transaction(user_id) as tx:
            budget = await tx.get_budget_by_user(user_id)
            expenses = await tx.list_expenses(user_id)
            categories = await tx.list_categories(user_id)

        counts: dict[UUID, int] = {}
        for expense in expenses:
            if expense.category_id is not None:
                counts[expense.category_id] = counts.get(expense.category_id, 0) + 1

        return BudgetSummary(
            user_id=user_id,
            checking_balance=budget.checking_balance,
            savings_balance=budget.savings_balance,
            budget_total=budget.budget_total,
            budget_remaining=budget.budget_remaining,
            total_spent=budget.total_spent,
            expense_count=len(expenses),
            expenses_total=sum(e.amount_in_cents for e in expenses),
            categories=[
                CategoryTotal(
                    category_id=c.category_id,
                    name=c.name,
                    total_sum=c.total_sum,
                    expense_count=counts.get(c.category_id, 0),
                )
                for c in categories
            ],
        )

    def _filter(
        self,
        expenses: list[Expense],
        balance_type: Optional[BalanceType],
    ) -> list[Expense]:
        if balance_type is None:
            return expenses
        return [e for e in expenses if e.expense_type == balance_type]
