"""
Ledger Exceptions

Validation errors (InvalidInputError, InsufficientFundsError) mean nothing
was written. PartialFailureError means the category step could not be
completed after the budget step ran; it carries what a caller needs to
retry or reconcile.

Storage failures (NotFoundError, StorageError) live with the storage
interface.
"""

from typing import Any, Optional
from uuid import UUID

from budget_ledger.models.ledger import (
    BalanceType,
    CategoryOperation,
    UpdateDirection,
)


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class InvalidInputError(LedgerError):
    """Caller supplied an amount, balance type or direction we cannot use."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(message)


class InvalidBalanceTypeError(InvalidInputError):
    """Balance type is neither checking nor savings."""

    def __init__(self, value: Any):
        super().__init__(
            "balance_type",
            value,
            f"Invalid balance type: {value!r} (expected 'checking' or 'savings')",
        )


class InvalidUpdateDirectionError(InvalidInputError):
    """Direction is neither add nor subtract."""

    def __init__(self, value: Any):
        super().__init__(
            "direction",
            value,
            f"Invalid update direction: {value!r} (expected 'add' or 'subtract')",
        )


class InsufficientFundsError(LedgerError):
    """The targeted balance is smaller than the requested subtraction."""

    def __init__(self, balance_type: BalanceType, available: int, requested: int):
        self.balance_type = balance_type
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient funds in {balance_type.value} account: "
            f"{available} available, {requested} requested"
        )


class PartialFailureError(LedgerError):
    """
    The budget step ran but the category step failed.

    budget_rolled_back tells the caller whether the budget write was undone
    by the enclosing transaction. The remaining fields describe the skipped
    category step so it can be retried on its own.
    """

    def __init__(
        self,
        user_id: str,
        category_id: Optional[UUID],
        amount: int,
        operation: CategoryOperation,
        direction: UpdateDirection,
        cause: Exception,
        budget_rolled_back: bool = False,
    ):
        self.user_id = user_id
        self.category_id = category_id
        self.amount = amount
        self.operation = operation
        self.direction = direction
        self.cause = cause
        self.budget_rolled_back = budget_rolled_back
        super().__init__(
            f"Category {operation.value} of {amount} for category {category_id} "
            f"(user {user_id}) failed after budget {direction.value}: {cause}"
        )

    def to_details(self) -> dict:
        """Details suitable for the audit trail."""
        return {
            "user_id": self.user_id,
            "category_id": str(self.category_id) if self.category_id else None,
            "amount": self.amount,
            "operation": self.operation.value,
            "direction": self.direction.value,
            "budget_rolled_back": self.budget_rolled_back,
            "cause": str(self.cause),
        }
