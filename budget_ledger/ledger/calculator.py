"""
Balance Calculator

Pure functions - no I/O, no clock, no storage. Given a snapshot and a
requested change they return the new values.

DESIGN DECISION: Direct balance adjustments and expense-driven adjustments
go through the same recompute_budget_aggregate(); only the OperationKind
tag differs. Two call sites, one arithmetic path, so they cannot drift.

Clamping happens only where it is meaningful: total_spent is floored at
zero, raw balances never are (the validator stops them going negative
before we get here).
"""

from budget_ledger.models.ledger import (
    BalanceType,
    Budget,
    OperationKind,
    UpdateDirection,
)


def apply_delta(current_balance: int, amount: int, direction: UpdateDirection) -> int:
    """Add or subtract amount. No clamping."""
    if direction == UpdateDirection.ADD:
        return current_balance + amount
    return current_balance - amount


def recompute_budget_aggregate(
    snapshot: Budget,
    direction: UpdateDirection,
    balance_type: BalanceType,
    amount: int,
    kind: OperationKind,
) -> Budget:
    """
    Compute the budget that results from one mutation.

    - the targeted balance moves by amount in the given direction
    - budget_remaining is recomputed from both balances
    - budget_total moves with the direction
    - for EXPENSE_FLOW, total_spent moves the opposite way
      (spending raises it, a refund lowers it) and is floored at zero

    The snapshot itself is left untouched; a new Budget is returned.
    Identity fields, version and timestamps are carried over as-is.
    """
    checking = snapshot.checking_balance
    savings = snapshot.savings_balance

    if balance_type == BalanceType.CHECKING:
        checking = apply_delta(checking, amount, direction)
    else:
        savings = apply_delta(savings, amount, direction)

    total_spent = snapshot.total_spent
    if kind == OperationKind.EXPENSE_FLOW:
        opposite = (
            UpdateDirection.SUBTRACT
            if direction == UpdateDirection.ADD
            else UpdateDirection.ADD
        )
        total_spent = max(0, apply_delta(total_spent, amount, opposite))

    return snapshot.model_copy(
        update={
            "checking_balance": checking,
            "savings_balance": savings,
            "budget_remaining": checking + savings,
            "budget_total": apply_delta(snapshot.budget_total, amount, direction),
            "total_spent": total_spent,
        }
    )
