"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend and a SQL (SQLAlchemy asyncio) backend.
"""

from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConcurrentModificationError,
    DuplicateError,
    LedgerStorageInterface,
    LedgerTransaction,
    NotFoundError,
    StorageError,
)
from budget_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemoryLedgerTransaction,
)
from budget_ledger.services.storage.sql import (
    SqlAuditStorage,
    SqlDatabase,
    SqlLedgerStorage,
    SqlLedgerTransaction,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "LedgerTransaction",
    # Exceptions
    "ConcurrentModificationError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemoryLedgerTransaction",
    # SQL implementation
    "SqlAuditStorage",
    "SqlDatabase",
    "SqlLedgerStorage",
    "SqlLedgerTransaction",
]
