"""
Request and Funds Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - INPUT VALIDATION:
- Amount is a positive integer within the configured ceiling
- Balance type is checking or savings
- Direction is add or subtract
- This catches caller errors before any storage access

STAGE 2 - FUNDS VALIDATION:
- The targeted balance covers the requested subtraction
- Runs against the pre-mutation snapshot, subtract path only
- A refund/add can never drive a balance negative, so it is never checked

IMPORTANT: Validation NEVER adjusts amounts or clamps balances.
It either passes or raises, and nothing is written when it raises.
"""

from typing import Any, Optional, Union

from budget_ledger.config import get_settings
from budget_ledger.ledger.exceptions import (
    InsufficientFundsError,
    InvalidBalanceTypeError,
    InvalidInputError,
    InvalidUpdateDirectionError,
    LedgerError,
)
from budget_ledger.models.ledger import BalanceType, Budget, UpdateDirection


def parse_balance_type(value: Union[BalanceType, str, Any]) -> BalanceType:
    """Accept an enum member or a case-insensitive name."""
    if isinstance(value, BalanceType):
        return value
    if isinstance(value, str):
        try:
            return BalanceType(value.strip().lower())
        except ValueError:
            pass
    raise InvalidBalanceTypeError(value)


def parse_update_direction(value: Union[UpdateDirection, str, Any]) -> UpdateDirection:
    """Accept an enum member or a case-insensitive name."""
    if isinstance(value, UpdateDirection):
        return value
    if isinstance(value, str):
        try:
            return UpdateDirection(value.strip().lower())
        except ValueError:
            pass
    raise InvalidUpdateDirectionError(value)


def validate_amount(amount: Any, max_amount: Optional[int] = None) -> int:
    """
    Check an amount in cents.

    bool is rejected explicitly since it is an int subclass.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInputError(
            "amount_in_cents",
            amount,
            f"Amount must be an integer number of cents, got {type(amount).__name__}",
        )
    if amount <= 0:
        raise InvalidInputError(
            "amount_in_cents",
            amount,
            f"Amount must be positive, got {amount}",
        )
    if max_amount is not None and amount > max_amount:
        raise InvalidInputError(
            "amount_in_cents",
            amount,
            f"Amount {amount} exceeds the maximum of {max_amount}",
        )
    return amount


def validate_sufficient_funds(snapshot: Budget, balance_type: Any, amount: Any) -> None:
    """
    Reject a subtraction the targeted balance cannot cover.

    Raises:
        InvalidInputError: amount <= 0 or unknown balance type
        InsufficientFundsError: targeted balance < amount
    """
    amount = validate_amount(amount)
    balance_type = parse_balance_type(balance_type)

    available = snapshot.balance_of(balance_type)
    if available < amount:
        raise InsufficientFundsError(balance_type, available, amount)


class LedgerValidator:
    """
    Validates ledger requests through the two-stage pipeline.

    Stage 1 runs without storage; stage 2 needs the current snapshot.
    """

    def __init__(self, max_amount_in_cents: Optional[int] = None):
        """
        Initialize validator.

        Args:
            max_amount_in_cents: Ceiling for a single amount.
                                 Defaults to the configured value.
        """
        if max_amount_in_cents is None:
            max_amount_in_cents = get_settings().ledger.max_amount_in_cents
        self._max_amount = max_amount_in_cents

    @property
    def max_amount_in_cents(self) -> int:
        return self._max_amount

    def validate_request(
        self,
        balance_type: Any,
        direction: Any,
        amount: Any,
    ) -> tuple[BalanceType, UpdateDirection, int]:
        """Stage 1. Returns the parsed (balance_type, direction, amount)."""
        return (
            parse_balance_type(balance_type),
            parse_update_direction(direction),
            validate_amount(amount, self._max_amount),
        )

    def validate_funds(
        self,
        snapshot: Budget,
        balance_type: BalanceType,
        direction: UpdateDirection,
        amount: int,
    ) -> None:
        """Stage 2. Only the subtract path is checked."""
        if direction == UpdateDirection.SUBTRACT:
            validate_sufficient_funds(snapshot, balance_type, amount)


def _format_cents(amount: int) -> str:
    sign = "-" if amount < 0 else ""
    whole, cents = divmod(abs(amount), 100)
    return f"{sign}{whole:,}.{cents:02d}"


def describe_rejection(error: LedgerError) -> str:
    """
    Generate a user-friendly message for a rejected request.

    This is what the outer shell shows to the person who asked.
    """
    if isinstance(error, InsufficientFundsError):
        return (
            f"Not enough money in {error.balance_type.value}: "
            f"{_format_cents(error.available)} available, "
            f"{_format_cents(error.requested)} requested"
        )
    if isinstance(error, InvalidBalanceTypeError):
        return "Please choose either the checking or the savings account"
    if isinstance(error, InvalidUpdateDirectionError):
        return "Please choose whether to add or subtract money"
    if isinstance(error, InvalidInputError):
        return f"Invalid {error.field.replace('_', ' ')}: {error}"
    return str(error)
