"""
Ledger Core Package

Pure arithmetic (calculator, category totals) and the ledger exception
taxonomy. Nothing in here performs I/O on its own.
"""

from budget_ledger.ledger.calculator import apply_delta, recompute_budget_aggregate
from budget_ledger.ledger.category import (
    CategoryAggregateUpdater,
    adjust_category_total,
)
from budget_ledger.ledger.exceptions import (
    InsufficientFundsError,
    InvalidBalanceTypeError,
    InvalidInputError,
    InvalidUpdateDirectionError,
    LedgerError,
    PartialFailureError,
)

__all__ = [
    # Calculator
    "apply_delta",
    "recompute_budget_aggregate",
    # Category totals
    "CategoryAggregateUpdater",
    "adjust_category_total",
    # Exceptions
    "InsufficientFundsError",
    "InvalidBalanceTypeError",
    "InvalidInputError",
    "InvalidUpdateDirectionError",
    "LedgerError",
    "PartialFailureError",
]
