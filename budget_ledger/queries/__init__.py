"""Query execution package."""

from budget_ledger.queries.executor import BudgetSummary, CategoryTotal, SummaryExecutor

__all__ = ["BudgetSummary", "CategoryTotal", "SummaryExecutor"]
