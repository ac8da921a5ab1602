"""
Data Models Package

This package contains all Pydantic models used in the Budget Ledger system.
All data flowing through the system must conform to these schemas.
"""

from budget_ledger.models.ledger import (
    BalanceType,
    Budget,
    CategoryOperation,
    Expense,
    ExpenseCategory,
    OperationKind,
    UpdateDirection,
    utcnow,
)
from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BalanceType",
    "Budget",
    "CategoryOperation",
    "Expense",
    "ExpenseCategory",
    "OperationKind",
    "UpdateDirection",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
