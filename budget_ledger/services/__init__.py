"""Services package."""

from budget_ledger.services.storage import (
    AuditStorageInterface,
    ConcurrentModificationError,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    LedgerTransaction,
    NotFoundError,
    SqlAuditStorage,
    SqlDatabase,
    SqlLedgerStorage,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConcurrentModificationError",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "LedgerTransaction",
    "NotFoundError",
    "SqlAuditStorage",
    "SqlDatabase",
    "SqlLedgerStorage",
    "StorageError",
]
