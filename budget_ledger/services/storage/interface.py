"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the ledger against an in-memory store in tests
2. Run it against any SQL database SQLAlchemy can reach
3. Keep the ledger arithmetic decoupled from persistence

Every read and write goes through a LedgerTransaction opened for one user.
The transaction is the unit of atomicity (all writes commit or none do)
and the unit of serialization (one open transaction per user at a time).
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Optional
from uuid import UUID

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import Budget, Expense, ExpenseCategory


class LedgerTransaction(ABC):
    """
    Reads and writes available inside one storage transaction.

    Every call is scoped by user_id - no operation can see another
    user's rows.
    """

    # --- budget -------------------------------------------------------------

    @abstractmethod
    async def get_budget_by_user(self, user_id: str) -> Budget:
        """
        Fetch the user's budget, locking it for the rest of the transaction.

        Raises:
            NotFoundError: If the user has no budget
        """
        pass

    @abstractmethod
    async def put_budget(self, budget: Budget) -> Budget:
        """
        Persist balances, totals and total_spent for (budget_id, user_id).

        The write is a compare-and-swap on budget.version; the stored copy
        is returned with version bumped and updated_at refreshed.

        Raises:
            NotFoundError: If the budget row is gone
            ConcurrentModificationError: If another writer changed it first
        """
        pass

    @abstractmethod
    async def insert_budget(self, budget: Budget) -> Budget:
        """
        Create the user's budget.

        Raises:
            DuplicateError: If the user already has a budget
        """
        pass

    @abstractmethod
    async def delete_budget(self, user_id: str) -> bool:
        """Delete the user's budget. Returns True if one existed."""
        pass

    # --- categories ---------------------------------------------------------

    @abstractmethod
    async def get_category_total(self, user_id: str, category_id: UUID) -> int:
        """
        Raises:
            NotFoundError: If the category does not exist for this user
        """
        pass

    @abstractmethod
    async def put_category_total(self, user_id: str, category_id: UUID, new_total: int) -> None:
        """
        Raises:
            NotFoundError: If the category does not exist for this user
        """
        pass

    @abstractmethod
    async def get_category(self, user_id: str, category_id: UUID) -> ExpenseCategory:
        """
        Raises:
            NotFoundError: If the category does not exist for this user
        """
        pass

    @abstractmethod
    async def insert_category(self, category: ExpenseCategory) -> ExpenseCategory:
        pass

    @abstractmethod
    async def update_category(self, category: ExpenseCategory) -> ExpenseCategory:
        """
        Update name and description. The running total is not touched.

        Raises:
            NotFoundError: If the category does not exist for this user
        """
        pass

    @abstractmethod
    async def delete_category(self, user_id: str, category_id: UUID) -> None:
        """
        Raises:
            NotFoundError: If the category does not exist for this user
        """
        pass

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[ExpenseCategory]:
        pass

    @abstractmethod
    async def delete_categories_for_user(self, user_id: str) -> int:
        """Delete every category of the user. Returns how many were deleted."""
        pass

    # --- expenses -----------------------------------------------------------

    @abstractmethod
    async def get_expense(self, user_id: str, expense_id: UUID) -> Expense:
        """
        Raises:
            NotFoundError: If the expense does not exist for this user
        """
        pass

    @abstractmethod
    async def insert_expense(self, expense: Expense) -> Expense:
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> Expense:
        """
        Raises:
            NotFoundError: If the expense does not exist for this user
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID, user_id: str) -> None:
        """
        Raises:
            NotFoundError: If the expense does not exist for this user
        """
        pass

    @abstractmethod
    async def list_expenses(
        self,
        user_id: str,
        category_id: Optional[UUID] = None,
    ) -> list[Expense]:
        """List the user's expenses, newest first."""
        pass

    @abstractmethod
    async def delete_expenses_for_category(
        self,
        user_id: str,
        category_id: UUID,
    ) -> list[Expense]:
        """Delete and return every expense tagged with the category."""
        pass

    @abstractmethod
    async def delete_expenses_for_user(self, user_id: str) -> int:
        """Delete every expense of the user. Returns how many were deleted."""
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage.

    Any storage implementation (in-memory, SQL, etc.) must implement this.
    """

    @abstractmethod
    def transaction(self, user_id: str) -> AbstractAsyncContextManager[LedgerTransaction]:
        """
        Open a transaction scoped to one user.

        Usage:
            async with storage.transaction(user_id) as tx:
                budget = await tx.get_budget_by_user(user_id)
                ...

        Leaving the block normally commits; leaving it with an exception
        rolls every write back and re-raises.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConcurrentModificationError(StorageError):
    """Another writer changed the row between our read and our write."""
    pass
