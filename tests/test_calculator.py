"""Tests for the balance calculator and category arithmetic."""

from budget_ledger.ledger import adjust_category_total, apply_delta, recompute_budget_aggregate
from budget_ledger.models.ledger import (
    BalanceType,
    Budget,
    CategoryOperation,
    OperationKind,
    UpdateDirection,
)


class TestApplyDelta:
    """Tests for apply_delta."""

    def test_add(self):
        """Test adding moves the balance up."""
        assert apply_delta(100, 50, UpdateDirection.ADD) == 150

    def test_subtract_is_not_clamped(self):
        """Test subtraction may go below zero at this level."""
        assert apply_delta(100, 150, UpdateDirection.SUBTRACT) == -50


class TestRecomputeBudgetAggregate:
    """Tests for recompute_budget_aggregate."""

    def test_expense_subtract_from_checking(self):
        """Test an expense moves checking, remaining, total and spent."""
        snapshot = Budget.new("u1", 10_000, 5_000)
        result = recompute_budget_aggregate(
            snapshot, UpdateDirection.SUBTRACT, BalanceType.CHECKING, 3_000,
            OperationKind.EXPENSE_FLOW,
        )
        assert result.checking_balance == 7_000
        assert result.savings_balance == 5_000
        assert result.budget_remaining == 12_000
        assert result.budget_total == 12_000
        assert result.total_spent == 3_000

    def test_direct_adjustment_leaves_spent_alone(self):
        """Test a manual deposit does not touch total_spent."""
        snapshot = Budget.new("u1", 10_000, 5_000)
        result = recompute_budget_aggregate(
            snapshot, UpdateDirection.ADD, BalanceType.SAVINGS, 2_000,
            OperationKind.DIRECT_ADJUSTMENT,
        )
        assert result.savings_balance == 7_000
        assert result.budget_total == 17_000
        assert result.budget_remaining == 17_000
        assert result.total_spent == 0

    def test_refund_floors_total_spent_at_zero(self):
        """Test a refund larger than total_spent clamps to zero."""
        snapshot = Budget.new("u1", 0, 0)
        result = recompute_budget_aggregate(
            snapshot, UpdateDirection.ADD, BalanceType.CHECKING, 500,
            OperationKind.EXPENSE_FLOW,
        )
        assert result.total_spent == 0
        assert result.checking_balance == 500

    def test_snapshot_is_untouched(self):
        """Test the input snapshot keeps its values."""
        snapshot = Budget.new("u1", 10_000, 5_000)
        recompute_budget_aggregate(
            snapshot, UpdateDirection.SUBTRACT, BalanceType.CHECKING, 3_000,
            OperationKind.EXPENSE_FLOW,
        )
        assert snapshot.checking_balance == 10_000
        assert snapshot.total_spent == 0

    def test_identity_and_version_carried_over(self):
        """Test identity fields and version are not rewritten."""
        snapshot = Budget.new("u1", 10_000, 5_000).model_copy(update={"version": 4})
        result = recompute_budget_aggregate(
            snapshot, UpdateDirection.SUBTRACT, BalanceType.SAVINGS, 1,
            OperationKind.EXPENSE_FLOW,
        )
        assert result.budget_id == snapshot.budget_id
        assert result.user_id == "u1"
        assert result.version == 4

    def test_remaining_always_sum_of_balances(self):
        """Test remaining stays consistent over a sequence of mutations."""
        budget = Budget.new("u1", 10_000, 5_000)
        sequence = [
            (UpdateDirection.SUBTRACT, BalanceType.CHECKING, 1_234, OperationKind.EXPENSE_FLOW),
            (UpdateDirection.ADD, BalanceType.SAVINGS, 999, OperationKind.DIRECT_ADJUSTMENT),
            (UpdateDirection.ADD, BalanceType.CHECKING, 1_234, OperationKind.EXPENSE_FLOW),
            (UpdateDirection.SUBTRACT, BalanceType.SAVINGS, 5_999, OperationKind.DIRECT_ADJUSTMENT),
        ]
        for direction, balance_type, amount, kind in sequence:
            budget = recompute_budget_aggregate(budget, direction, balance_type, amount, kind)
            assert budget.budget_remaining == budget.checking_balance + budget.savings_balance
            assert budget.total_spent >= 0


class TestAdjustCategoryTotal:
    """Tests for adjust_category_total."""

    def test_increment(self):
        """Test increment adds."""
        assert adjust_category_total(500, 300, CategoryOperation.INCREMENT) == 800

    def test_decrement(self):
        """Test decrement subtracts."""
        assert adjust_category_total(500, 300, CategoryOperation.DECREMENT) == 200

    def test_decrement_clamps_to_zero(self):
        """Test decrement below zero clamps (500 - 800 -> 0)."""
        assert adjust_category_total(500, 800, CategoryOperation.DECREMENT) == 0
