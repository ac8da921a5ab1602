"""
SQL Storage Implementation

DESIGN DECISION: SQLAlchemy's asyncio extension is used so the same
async storage port works against SQLite (aiosqlite, local and tests) and
PostgreSQL (asyncpg) without changing the ledger code.

Guarantees:
- One session transaction per ledger operation (commit or roll back as a unit)
- Budget and category rows are read with SELECT ... FOR UPDATE where the
  backend supports it
- put_budget is a compare-and-swap on the version column, which still
  catches lost updates on backends that ignore FOR UPDATE (SQLite)

Expenses reference categories by id only (no foreign key). Cascades are
done explicitly by the caller inside the same transaction.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Integer,
    String,
    Text,
    Uuid,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budget_ledger.config import get_settings
from budget_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_ledger.models.ledger import (
    BalanceType,
    Budget,
    Expense,
    ExpenseCategory,
    utcnow,
)
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConcurrentModificationError,
    DuplicateError,
    LedgerStorageInterface,
    LedgerTransaction,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)


# =============================================================================
# TABLES
# =============================================================================

class Base(DeclarativeBase):
    pass


class BudgetRow(Base):
    __tablename__ = "budgets"

    budget_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    checking_balance: Mapped[int] = mapped_column(BigInteger)
    savings_balance: Mapped[int] = mapped_column(BigInteger)
    budget_total: Mapped[int] = mapped_column(BigInteger)
    budget_remaining: Mapped[int] = mapped_column(BigInteger)
    total_spent: Mapped[int] = mapped_column(BigInteger, default=0)
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CategoryRow(Base):
    __tablename__ = "expense_categories"

    category_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, default="")
    total_sum: Mapped[int] = mapped_column(BigInteger, default=0)


class ExpenseRow(Base):
    __tablename__ = "expenses"

    expense_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    category_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    expense_type: Mapped[str] = mapped_column(String(16))
    amount_in_cents: Mapped[int] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    event_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    event_type: Mapped[str] = mapped_column(String(64))
    severity: Mapped[str] = mapped_column(String(16))
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    correlation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    description: Mapped[str] = mapped_column(String(500))
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


def _budget_from_row(row: BudgetRow) -> Budget:
    return Budget(
        budget_id=row.budget_id,
        user_id=row.user_id,
        checking_balance=row.checking_balance,
        savings_balance=row.savings_balance,
        budget_total=row.budget_total,
        budget_remaining=row.budget_remaining,
        total_spent=row.total_spent,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _category_from_row(row: CategoryRow) -> ExpenseCategory:
    return ExpenseCategory(
        category_id=row.category_id,
        user_id=row.user_id,
        name=row.name,
        description=row.description or "",
        total_sum=row.total_sum,
    )


def _expense_from_row(row: ExpenseRow) -> Expense:
    return Expense(
        expense_id=row.expense_id,
        user_id=row.user_id,
        category_id=row.category_id,
        description=row.description or "",
        expense_type=BalanceType(row.expense_type),
        amount_in_cents=row.amount_in_cents,
        created_at=row.created_at,
    )


def _event_from_row(row: AuditEventRow) -> AuditEvent:
    return AuditEvent(
        event_id=row.event_id,
        timestamp=row.timestamp,
        event_type=AuditEventType(row.event_type),
        severity=AuditSeverity(row.severity),
        user_id=row.user_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        correlation_id=row.correlation_id,
        description=row.description,
        details=row.details or {},
        error_code=row.error_code,
        error_message=row.error_message,
    )


# =============================================================================
# ENGINE
# =============================================================================

class SqlDatabase:
    """
    Owns the async engine and session factory.

    Shared by the ledger and audit storages so both use one pool.
    """

    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        settings = get_settings().database
        self._url = url or settings.url
        self._retry_attempts = settings.connect_retry_attempts
        self._engine: AsyncEngine = create_async_engine(
            self._url,
            echo=settings.echo if echo is None else echo,
            pool_pre_ping=True,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
        )

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def initialize(self) -> None:
        """
        Create tables if they don't exist.

        Retried because the database may still be starting up.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(OperationalError),
            reraise=True,
        ):
            with attempt:
                async with self._engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)

        logger.info(
            "database_initialized",
            dialect=self._engine.dialect.name,
        )

    async def dispose(self) -> None:
        await self._engine.dispose()


# =============================================================================
# LEDGER STORAGE
# =============================================================================

class SqlLedgerTransaction(LedgerTransaction):
    """One ledger transaction bound to an open AsyncSession transaction."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _locked_budget_row(self, user_id: str) -> Optional[BudgetRow]:
        stmt = (
            select(BudgetRow)
            .where(BudgetRow.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _category_row(
        self,
        user_id: str,
        category_id: UUID,
        lock: bool = False,
    ) -> CategoryRow:
        stmt = select(CategoryRow).where(
            CategoryRow.user_id == user_id,
            CategoryRow.category_id == category_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"Category {category_id} not found for user {user_id}")
        return row

    async def _expense_row(self, user_id: str, expense_id: UUID) -> ExpenseRow:
        stmt = (
            select(ExpenseRow)
            .where(ExpenseRow.user_id == user_id, ExpenseRow.expense_id == expense_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"Expense {expense_id} not found for user {user_id}")
        return row

    # --- budget -------------------------------------------------------------

    async def get_budget_by_user(self, user_id: str) -> Budget:
        row = await self._locked_budget_row(user_id)
        if row is None:
            raise NotFoundError(f"No budget found for user {user_id}")
        return _budget_from_row(row)

    async def put_budget(self, budget: Budget) -> Budget:
        now = utcnow()
        stmt = (
            update(BudgetRow)
            .where(
                BudgetRow.budget_id == budget.budget_id,
                BudgetRow.user_id == budget.user_id,
                BudgetRow.version == budget.version,
            )
            .values(
                checking_balance=budget.checking_balance,
                savings_balance=budget.savings_balance,
                budget_total=budget.budget_total,
                budget_remaining=budget.budget_remaining,
                total_spent=budget.total_spent,
                version=budget.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 0:
            current_version = await self._session.scalar(
                select(BudgetRow.version).where(
                    BudgetRow.budget_id == budget.budget_id,
                    BudgetRow.user_id == budget.user_id,
                )
            )
            if current_version is None:
                raise NotFoundError(
                    f"Budget {budget.budget_id} not found for user {budget.user_id}"
                )
            raise ConcurrentModificationError(
                f"Budget {budget.budget_id} changed (version {current_version}, "
                f"expected {budget.version})"
            )

        return budget.model_copy(update={"version": budget.version + 1, "updated_at": now})

    async def insert_budget(self, budget: Budget) -> Budget:
        if await self._locked_budget_row(budget.user_id) is not None:
            raise DuplicateError(f"User {budget.user_id} already has a budget")
        self._session.add(BudgetRow(
            budget_id=budget.budget_id,
            user_id=budget.user_id,
            checking_balance=budget.checking_balance,
            savings_balance=budget.savings_balance,
            budget_total=budget.budget_total,
            budget_remaining=budget.budget_remaining,
            total_spent=budget.total_spent,
            version=budget.version,
            created_at=budget.created_at,
            updated_at=budget.updated_at,
        ))
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateError(f"User {budget.user_id} already has a budget") from e
        return budget

    async def delete_budget(self, user_id: str) -> bool:
        result = await self._session.execute(
            delete(BudgetRow)
            .where(BudgetRow.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    # --- categories ---------------------------------------------------------

    async def get_category_total(self, user_id: str, category_id: UUID) -> int:
        row = await self._category_row(user_id, category_id, lock=True)
        return row.total_sum

    async def put_category_total(self, user_id: str, category_id: UUID, new_total: int) -> None:
        result = await self._session.execute(
            update(CategoryRow)
            .where(
                CategoryRow.user_id == user_id,
                CategoryRow.category_id == category_id,
            )
            .values(total_sum=new_total)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Category {category_id} not found for user {user_id}")

    async def get_category(self, user_id: str, category_id: UUID) -> ExpenseCategory:
        return _category_from_row(await self._category_row(user_id, category_id))

    async def insert_category(self, category: ExpenseCategory) -> ExpenseCategory:
        self._session.add(CategoryRow(
            category_id=category.category_id,
            user_id=category.user_id,
            name=category.name,
            description=category.description,
            total_sum=category.total_sum,
        ))
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateError(f"Category {category.category_id} already exists") from e
        return category

    async def update_category(self, category: ExpenseCategory) -> ExpenseCategory:
        row = await self._category_row(category.user_id, category.category_id, lock=True)
        row.name = category.name
        row.description = category.description
        await self._session.flush()
        return _category_from_row(row)

    async def delete_category(self, user_id: str, category_id: UUID) -> None:
        result = await self._session.execute(
            delete(CategoryRow)
            .where(
                CategoryRow.user_id == user_id,
                CategoryRow.category_id == category_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Category {category_id} not found for user {user_id}")

    async def list_categories(self, user_id: str) -> list[ExpenseCategory]:
        result = await self._session.execute(
            select(CategoryRow)
            .where(CategoryRow.user_id == user_id)
            .order_by(func.lower(CategoryRow.name))
        )
        return [_category_from_row(row) for row in result.scalars()]

    async def delete_categories_for_user(self, user_id: str) -> int:
        result = await self._session.execute(
            delete(CategoryRow)
            .where(CategoryRow.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    # --- expenses -----------------------------------------------------------

    async def get_expense(self, user_id: str, expense_id: UUID) -> Expense:
        return _expense_from_row(await self._expense_row(user_id, expense_id))

    async def insert_expense(self, expense: Expense) -> Expense:
        self._session.add(ExpenseRow(
            expense_id=expense.expense_id,
            user_id=expense.user_id,
            category_id=expense.category_id,
            description=expense.description,
            expense_type=expense.expense_type.value,
            amount_in_cents=expense.amount_in_cents,
            created_at=expense.created_at,
        ))
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateError(f"Expense {expense.expense_id} already exists") from e
        return expense

    async def update_expense(self, expense: Expense) -> Expense:
        row = await self._expense_row(expense.user_id, expense.expense_id)
        row.category_id = expense.category_id
        row.description = expense.description
        row.expense_type = expense.expense_type.value
        row.amount_in_cents = expense.amount_in_cents
        await self._session.flush()
        return expense

    async def delete_expense(self, expense_id: UUID, user_id: str) -> None:
        result = await self._session.execute(
            delete(ExpenseRow)
            .where(ExpenseRow.user_id == user_id, ExpenseRow.expense_id == expense_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Expense {expense_id} not found for user {user_id}")

    async def list_expenses(
        self,
        user_id: str,
        category_id: Optional[UUID] = None,
    ) -> list[Expense]:
        stmt = select(ExpenseRow).where(ExpenseRow.user_id == user_id)
        if category_id is not None:
            stmt = stmt.where(ExpenseRow.category_id == category_id)
        result = await self._session.execute(stmt.order_by(ExpenseRow.created_at.desc()))
        return [_expense_from_row(row) for row in result.scalars()]

    async def delete_expenses_for_category(
        self,
        user_id: str,
        category_id: UUID,
    ) -> list[Expense]:
        expenses = await self.list_expenses(user_id, category_id)
        await self._session.execute(
            delete(ExpenseRow)
            .where(ExpenseRow.user_id == user_id, ExpenseRow.category_id == category_id)
            .execution_options(synchronize_session=False)
        )
        return expenses

    async def delete_expenses_for_user(self, user_id: str) -> int:
        result = await self._session.execute(
            delete(ExpenseRow)
            .where(ExpenseRow.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class SqlLedgerStorage(LedgerStorageInterface):
    """
    SQL implementation of ledger storage.

    Database driver errors are wrapped in StorageError so callers only ever
    deal with the storage taxonomy.
    """

    def __init__(self, database: SqlDatabase):
        self._db = database

    @asynccontextmanager
    async def transaction(self, user_id: str) -> AsyncIterator[SqlLedgerTransaction]:
        try:
            async with self._db.session_factory() as session:
                async with session.begin():
                    yield SqlLedgerTransaction(session)
        except SQLAlchemyError as e:
            logger.error("sql_transaction_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Database error for user {user_id}: {e}") from e


class SqlAuditStorage(AuditStorageInterface):
    """SQL implementation of the append-only audit log."""

    def __init__(self, database: SqlDatabase):
        self._db = database

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            async with self._db.session_factory() as session:
                async with session.begin():
                    session.add(AuditEventRow(
                        event_id=event.event_id,
                        timestamp=event.timestamp,
                        event_type=event.event_type.value,
                        severity=event.severity.value,
                        user_id=event.user_id,
                        entity_type=event.entity_type,
                        entity_id=event.entity_id,
                        correlation_id=event.correlation_id,
                        description=event.description,
                        details=event.details,
                        error_code=event.error_code,
                        error_message=event.error_message,
                    ))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to append audit event: {e}") from e
        return True

    async def _query(self, stmt) -> list[AuditEvent]:
        try:
            async with self._db.session_factory() as session:
                result = await session.execute(stmt)
                return [_event_from_row(row) for row in result.scalars()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read audit events: {e}") from e

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._query(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == correlation_id)
            .order_by(AuditEventRow.timestamp)
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return await self._query(
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.timestamp)
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._query(
            select(AuditEventRow)
            .order_by(AuditEventRow.timestamp.desc())
            .limit(limit)
        )
