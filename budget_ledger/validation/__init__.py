"""Validation package."""

from budget_ledger.validation.validator import (
    LedgerValidator,
    describe_rejection,
    parse_balance_type,
    parse_update_direction,
    validate_amount,
    validate_sufficient_funds,
)

__all__ = [
    "LedgerValidator",
    "describe_rejection",
    "parse_balance_type",
    "parse_update_direction",
    "validate_amount",
    "validate_sufficient_funds",
]
