"""
Core Ledger Models for Budget Ledger

These models are the snapshots passed between storage, the validator and
the calculator. They are designed to:
1. Enforce integer-cents arithmetic (no floats anywhere)
2. Be immutable once built, so a snapshot cannot drift mid-operation
3. Be serializable for storage and logging

DESIGN DECISION: Every model is frozen. A mutation produces a new value
via model_copy(), never an in-place edit of the snapshot that was read.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    model_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class BalanceType(str, Enum):
    """Which sub-account an operation draws from or pays into."""
    CHECKING = "checking"
    SAVINGS = "savings"


class UpdateDirection(str, Enum):
    """Whether an operation adds to or subtracts from a balance."""
    ADD = "add"
    SUBTRACT = "subtract"


class CategoryOperation(str, Enum):
    """How a category running total moves."""
    INCREMENT = "increment"
    DECREMENT = "decrement"


class OperationKind(str, Enum):
    """
    What drove a budget mutation.

    EXPENSE_FLOW moves total_spent along with the balance;
    DIRECT_ADJUSTMENT (deposits, withdrawals) leaves it alone.
    """
    EXPENSE_FLOW = "expense_flow"
    DIRECT_ADJUSTMENT = "direct_adjustment"


# =============================================================================
# AGGREGATES
# =============================================================================

class Budget(BaseModel):
    """
    The per-user budget aggregate.

    One budget per user. budget_remaining is always the sum of the two
    balances; total_spent never goes below zero.
    """
    model_config = ConfigDict(frozen=True)

    # Identity
    budget_id: UUID = Field(
        default_factory=uuid4,
        description="Unique budget ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of this budget"
    )

    # Balances (cents)
    checking_balance: StrictInt = Field(
        ...,
        description="Checking balance in cents"
    )
    savings_balance: StrictInt = Field(
        ...,
        description="Savings balance in cents"
    )

    # Totals (cents)
    budget_total: StrictInt = Field(
        ...,
        description="Sum historically allocated to the budget"
    )
    budget_remaining: StrictInt = Field(
        ...,
        description="Derived: checking + savings"
    )
    total_spent: StrictInt = Field(
        default=0,
        ge=0,
        description="Cumulative spend through expenses"
    )

    # Optimistic concurrency counter, bumped by storage on every write
    version: int = Field(default=0, ge=0)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_remaining(self) -> 'Budget':
        """Remaining must always equal the sum of both balances."""
        expected = self.checking_balance + self.savings_balance
        if self.budget_remaining != expected:
            raise ValueError(
                f"budget_remaining ({self.budget_remaining}) must equal "
                f"checking + savings ({expected})"
            )
        return self

    @classmethod
    def new(cls, user_id: str, checking_balance: int, savings_balance: int) -> 'Budget':
        """Seed a budget at setup time."""
        total = checking_balance + savings_balance
        return cls(
            user_id=user_id,
            checking_balance=checking_balance,
            savings_balance=savings_balance,
            budget_total=total,
            budget_remaining=total,
            total_spent=0,
        )

    def balance_of(self, balance_type: BalanceType) -> int:
        if balance_type == BalanceType.CHECKING:
            return self.checking_balance
        return self.savings_balance

    def same_figures_as(self, other: 'Budget') -> bool:
        """Compare the monetary fields only (ignores timestamps and version)."""
        return (
            self.checking_balance == other.checking_balance
            and self.savings_balance == other.savings_balance
            and self.budget_total == other.budget_total
            and self.budget_remaining == other.budget_remaining
            and self.total_spent == other.total_spent
        )


class Expense(BaseModel):
    """
    A single recorded expense.

    The category is a weak reference by id - looking it up is allowed,
    owning it is not.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    expense_id: UUID = Field(
        default_factory=uuid4,
        description="Unique expense ID"
    )
    user_id: str = Field(..., min_length=1)
    category_id: Optional[UUID] = Field(
        default=None,
        description="Category this expense is tagged with, if any"
    )
    description: str = Field(
        default="",
        max_length=500,
    )
    expense_type: BalanceType = Field(
        ...,
        description="Which balance the expense draws from"
    )
    amount_in_cents: StrictInt = Field(
        ...,
        gt=0,
        description="Amount in cents (must be positive)"
    )
    created_at: datetime = Field(default_factory=utcnow)


class ExpenseCategory(BaseModel):
    """An expense category with its running total."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    category_id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Category name"
    )
    description: str = Field(default="", max_length=500)
    total_sum: StrictInt = Field(
        default=0,
        ge=0,
        description="Running total of expenses tagged with this category"
    )
