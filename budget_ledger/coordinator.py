"""
Ledger Transaction Coordinator

Runs every balance-changing operation through the same sequence:

1. Fetch the user's budget snapshot (locked for the transaction)
2. Validate - funds on the subtract path only, against the pre-mutation
   snapshot, and every referenced category must exist
3. Compute the new aggregate with the balance calculator
4. Persist the budget
5. Expense flows only: move the category running total
6. Return the stored budget

DESIGN DECISION: Steps 1-5 run inside ONE storage transaction.
The budget write and the category write commit together or not at all,
and the transaction is also what serializes operations for a user.

A category write that fails after the budget step surfaces as
PartialFailureError. By the time the caller sees it the transaction has
rolled the budget write back, and the error says so (budget_rolled_back).

A lost optimistic-concurrency race (ConcurrentModificationError) re-runs
the whole operation from step 1 with a fresh snapshot. No other storage
error is retried here.
"""

from typing import Any, Awaitable, Callable, NamedTuple, Optional, TypeVar
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budget_ledger.audit import AuditLogger
from budget_ledger.config import get_settings
from budget_ledger.ledger import (
    CategoryAggregateUpdater,
    InsufficientFundsError,
    InvalidInputError,
    PartialFailureError,
    recompute_budget_aggregate,
)
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import (
    BalanceType,
    Budget,
    CategoryOperation,
    Expense,
    OperationKind,
    UpdateDirection,
)
from budget_ledger.services.storage import (
    ConcurrentModificationError,
    LedgerStorageInterface,
    LedgerTransaction,
    NotFoundError,
    StorageError,
)
from budget_ledger.validation import LedgerValidator, parse_balance_type, validate_amount


logger = structlog.get_logger(__name__)

T = TypeVar("T")

# update_expense default for "keep the stored category"; None untags
_KEEP: Any = object()


class LedgerStep(NamedTuple):
    """One balance movement, optionally mirrored on a category total."""
    balance_type: BalanceType
    direction: UpdateDirection
    amount: int
    category_id: Optional[UUID] = None
    kind: OperationKind = OperationKind.EXPENSE_FLOW

    @property
    def category_operation(self) -> CategoryOperation:
        # Spending grows a category, a refund shrinks it
        if self.direction == UpdateDirection.SUBTRACT:
            return CategoryOperation.INCREMENT
        return CategoryOperation.DECREMENT

    def describe(self) -> dict:
        return {
            "balance_type": self.balance_type.value,
            "direction": self.direction.value,
            "amount": self.amount,
            "category_id": str(self.category_id) if self.category_id else None,
            "kind": self.kind.value,
        }


def net_delta_steps(
    balance_type: BalanceType,
    category_id: Optional[UUID],
    previous_amount: int,
    new_amount: int,
) -> list[LedgerStep]:
    """
    The single step that moves an expense from previous_amount to new_amount.

    Empty when the amount did not change.
    """
    delta = new_amount - previous_amount
    if delta > 0:
        return [LedgerStep(balance_type, UpdateDirection.SUBTRACT, delta, category_id)]
    if delta < 0:
        return [LedgerStep(balance_type, UpdateDirection.ADD, -delta, category_id)]
    return []


class LedgerCoordinator:
    """
    Orchestrates budget and category mutations for one storage backend.

    Every public operation takes the user id explicitly. Nothing is cached
    between calls: each one re-fetches the authoritative snapshot.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        retry_attempts: Optional[int] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator()
        self._category_updater = CategoryAggregateUpdater()
        if retry_attempts is None:
            retry_attempts = get_settings().ledger.concurrency_retry_attempts
        self._retry_attempts = retry_attempts

    # =========================================================================
    # LEDGER OPERATIONS
    # =========================================================================

    async def apply_manual_balance_update(
        self,
        user_id: str,
        balance_type: Any,
        direction: Any,
        amount_in_cents: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Deposit into or withdraw from one balance.

        A direct adjustment: total_spent is untouched and no category moves.
        """
        balance_type, direction, amount = await self._validate_request(
            user_id, balance_type, direction, amount_in_cents, correlation_id
        )
        step = LedgerStep(
            balance_type, direction, amount, kind=OperationKind.DIRECT_ADJUSTMENT
        )

        async def work(tx: LedgerTransaction) -> tuple[Budget, Budget]:
            return await self._apply_steps(tx, user_id, [step])

        before, after = await self._run(user_id, "manual_balance_update", work, correlation_id)
        await self._record_mutation(
            AuditEventType.BALANCE_ADJUSTED, before, after, [step], correlation_id
        )
        return after

    async def apply_expense_created(
        self,
        user_id: str,
        category_id: Optional[UUID],
        balance_type: Any,
        amount_in_cents: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """Subtract the expense and increment its category."""
        balance_type, direction, amount = await self._validate_request(
            user_id, balance_type, UpdateDirection.SUBTRACT, amount_in_cents, correlation_id
        )
        step = LedgerStep(balance_type, direction, amount, category_id)

        async def work(tx: LedgerTransaction) -> tuple[Budget, Budget]:
            return await self._apply_steps(tx, user_id, [step])

        before, after = await self._run(user_id, "expense_created", work, correlation_id)
        await self._record_mutation(
            AuditEventType.EXPENSE_RECORDED, before, after, [step], correlation_id
        )
        return after

    async def apply_expense_amount_changed(
        self,
        user_id: str,
        category_id: Optional[UUID],
        balance_type: Any,
        new_amount_in_cents: Any,
        previous_amount_in_cents: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Apply an expense amount change.

        Without previous_amount_in_cents the new amount is subtracted and
        added to the category as-is. With it, only the net difference is
        applied: a larger amount spends the difference, a smaller one
        refunds it, an unchanged one writes nothing.
        """
        balance_type, direction, amount = await self._validate_request(
            user_id, balance_type, UpdateDirection.SUBTRACT, new_amount_in_cents, correlation_id
        )
        if previous_amount_in_cents is None:
            steps = [LedgerStep(balance_type, direction, amount, category_id)]
        else:
            previous = await self._validate_amount(
                user_id, previous_amount_in_cents, correlation_id
            )
            steps = net_delta_steps(balance_type, category_id, previous, amount)

        async def work(tx: LedgerTransaction) -> tuple[Budget, Budget]:
            return await self._apply_steps(tx, user_id, steps)

        before, after = await self._run(user_id, "expense_amount_changed", work, correlation_id)
        if steps:
            await self._record_mutation(
                AuditEventType.EXPENSE_UPDATED, before, after, steps, correlation_id
            )
        return after

    async def apply_expense_deleted(
        self,
        user_id: str,
        category_id: Optional[UUID],
        balance_type: Any,
        amount_in_cents: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """Refund the expense and decrement its category. Never funds-checked."""
        balance_type, direction, amount = await self._validate_request(
            user_id, balance_type, UpdateDirection.ADD, amount_in_cents, correlation_id
        )
        step = LedgerStep(balance_type, direction, amount, category_id)

        async def work(tx: LedgerTransaction) -> tuple[Budget, Budget]:
            return await self._apply_steps(tx, user_id, [step])

        before, after = await self._run(user_id, "expense_deleted", work, correlation_id)
        await self._record_mutation(
            AuditEventType.EXPENSE_DELETED, before, after, [step], correlation_id
        )
        return after

    # =========================================================================
    # EXPENSE RECORD FLOWS
    # =========================================================================

    async def record_expense(
        self,
        user_id: str,
        category_id: Optional[UUID],
        balance_type: Any,
        amount_in_cents: Any,
        description: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Expense, Budget]:
        """
        Store a new expense together with its ledger effect.

        The category must exist; a missing one fails before anything is
        written.
        """
        balance_type, direction, amount = await self._validate_request(
            user_id, balance_type, UpdateDirection.SUBTRACT, amount_in_cents, correlation_id
        )
        expense = Expense(
            user_id=user_id,
            category_id=category_id,
            description=description,
            expense_type=balance_type,
            amount_in_cents=amount,
        )
        step = LedgerStep(balance_type, direction, amount, category_id)

        async def work(tx: LedgerTransaction) -> tuple[Budget, Budget]:
            result = await self._apply_steps(tx, user_id, [step])
            await tx.insert_expense(expense)
            return result

        before, after = await self._run(user_id, "record_expense", work, correlation_id)
        await self._record_mutation(
            AuditEventType.EXPENSE_RECORDED,
            before,
            after,
            [step],
            correlation_id,
            expense_id=expense.expense_id,
        )
        return expense, after

    async def update_expense(
        self,
        user_id: str,
        expense_id: UUID,
        *,
        amount_in_cents: Optional[int] = None,
        balance_type: Optional[Any] = None,
        category_id: Optional[UUID] = _KEEP,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Expense, Budget]:
        """
        Edit a stored expense and rebalance.

        None means "keep the stored value". category_id is the exception:
        leaving it out keeps the category, passing None untags the expense.
        Moving the expense to another balance or category reverses the old
        effect and applies the new one; an amount-only change applies the
        net difference.
        """
        if amount_in_cents is not None:
            amount_in_cents = await self._validate_amount(
                user_id, amount_in_cents, correlation_id
            )
        if balance_type is not None:
            try:
                balance_type = parse_balance_type(balance_type)
            except InvalidInputError as e:
                await self._audit_logger.log_invalid_input(
                    user_id, e.field, e.value, str(e), correlation_id
                )
                raise

        applied: list[LedgerStep] = []

        async def work(tx: LedgerTransaction) -> tuple[Expense, Budget, Budget]:
            current = await tx.get_expense(user_id, expense_id)
            updated = current.model_copy(update={
                "amount_in_cents": (
                    current.amount_in_cents if amount_in_cents is None else amount_in_cents
                ),
                "expense_type": current.expense_type if balance_type is None else balance_type,
                "category_id": current.category_id if category_id is _KEEP else category_id,
                "description": current.description if description is None else description,
            })

            if (
                updated.expense_type != current.expense_type
                or updated.category_id != current.category_id
            ):
                steps = [
                    LedgerStep(
                        current.expense_type,
                        UpdateDirection.ADD,
                        current.amount_in_cents,
                        current.category_id,
                    ),
                    LedgerStep(
                        updated.expense_type,
                        UpdateDirection.SUBTRACT,
                        updated.amount_in_cents,
                        updated.category_id,
                    ),
                ]
            else:
                steps = net_delta_steps(
                    current.expense_type,
                    current.category_id,
                    current.amount_in_cents,
                    updated.amount_in_cents,
                )

            before, after = await self._apply_steps(tx, user_id, steps)
            await tx.update_expense(updated)
            applied[:] = steps
            return updated, before, after

        expense, before, after = await self._run(
            user_id, "update_expense", work, correlation_id
        )
        await self._record_mutation(
            AuditEventType.EXPENSE_UPDATED,
            before,
            after,
            applied,
            correlation_id,
            expense_id=expense_id,
        )
        return expense, after

    async def delete_expense(
        self,
        user_id: str,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        """
        Delete a stored expense and refund exactly what it recorded.

        Deleting the same id twice raises NotFoundError the second time.
        If its category is already gone, the refund still happens.
        """
        applied: list[LedgerStep] = []

        async def work(tx: LedgerTransaction) -> tuple[Budget, Budget]:
            expense = await tx.get_expense(user_id, expense_id)
            await tx.delete_expense(expense_id, user_id)

            category_id = expense.category_id
            if category_id is not None:
                try:
                    await tx.get_category(user_id, category_id)
                except NotFoundError:
                    logger.warning(
                        "expense_category_missing",
                        user_id=user_id,
                        expense_id=str(expense_id),
                        category_id=str(category_id),
                    )
                    category_id = None

            step = LedgerStep(
                expense.expense_type,
                UpdateDirection.ADD,
                expense.amount_in_cents,
                category_id,
            )
            applied[:] = [step]
            return await self._apply_steps(tx, user_id, [step])

        before, after = await self._run(user_id, "delete_expense", work, correlation_id)
        await self._record_mutation(
            AuditEventType.EXPENSE_DELETED,
            before,
            after,
            applied,
            correlation_id,
            expense_id=expense_id,
        )
        return after

    # =========================================================================
    # SHARED MACHINERY
    # =========================================================================

    async def run_with_steps(
        self,
        user_id: str,
        operation: str,
        prepare: Callable[[LedgerTransaction], Awaitable[tuple[T, list[LedgerStep]]]],
        event_type: AuditEventType,
        correlation_id: Optional[UUID] = None,
    ) -> T:
        """
        Run a flow's own row work plus its ledger effect as one operation.

        prepare(tx) does the row work and returns (result, steps). The
        steps are applied in the same transaction, lost races re-run
        prepare from scratch, and failures are audited like any other
        ledger operation. A mutation event is recorded only when there
        were steps to apply.
        """
        applied: list[LedgerStep] = []

        async def work(tx: LedgerTransaction) -> tuple[T, Optional[Budget], Optional[Budget]]:
            result, steps = await prepare(tx)
            applied[:] = steps
            if not steps:
                return result, None, None
            before, after = await self._apply_steps(tx, user_id, steps)
            return result, before, after

        result, before, after = await self._run(user_id, operation, work, correlation_id)
        if applied:
            await self._record_mutation(event_type, before, after, applied, correlation_id)
        return result

    async def _apply_steps(
        self,
        tx: LedgerTransaction,
        user_id: str,
        steps: list[LedgerStep],
    ) -> tuple[Budget, Budget]:
        """
        Fetch, validate, compute, persist, then move categories.

        Each step is validated against the result of the previous one, and
        every referenced category must exist, all before the first write.
        Returns (snapshot, stored).
        """
        snapshot = await tx.get_budget_by_user(user_id)
        logger.debug(
            "budget_snapshot",
            user_id=user_id,
            version=snapshot.version,
            checking=snapshot.checking_balance,
            savings=snapshot.savings_balance,
        )
        if not steps:
            return snapshot, snapshot

        updated = snapshot
        for step in steps:
            self._validator.validate_funds(
                updated, step.balance_type, step.direction, step.amount
            )
            updated = recompute_budget_aggregate(
                updated, step.direction, step.balance_type, step.amount, step.kind
            )

        for step in steps:
            if step.kind == OperationKind.EXPENSE_FLOW and step.category_id is not None:
                await tx.get_category(user_id, step.category_id)

        stored = await tx.put_budget(updated)

        for step in steps:
            if step.kind == OperationKind.EXPENSE_FLOW and step.category_id is not None:
                await self._adjust_category(tx, user_id, step)

        return snapshot, stored

    async def _adjust_category(
        self,
        tx: LedgerTransaction,
        user_id: str,
        step: LedgerStep,
    ) -> int:
        try:
            return await self._category_updater.apply(
                tx, user_id, step.category_id, step.amount, step.category_operation
            )
        except StorageError as e:
            raise PartialFailureError(
                user_id=user_id,
                category_id=step.category_id,
                amount=step.amount,
                operation=step.category_operation,
                direction=step.direction,
                cause=e,
            ) from e

    async def _run(
        self,
        user_id: str,
        operation: str,
        work: Callable[[LedgerTransaction], Awaitable[T]],
        correlation_id: Optional[UUID],
    ) -> T:
        """
        Run work in one transaction, retrying lost concurrency races.

        Every failure is audited, then re-raised unchanged.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retry_attempts),
                wait=wait_exponential(multiplier=0.01, max=0.1),
                retry=retry_if_exception_type(ConcurrentModificationError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            "ledger_operation_retry",
                            user_id=user_id,
                            operation=operation,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    async with self._storage.transaction(user_id) as tx:
                        return await work(tx)

        except PartialFailureError as e:
            # Leaving the transaction block with the error rolled the
            # budget write back
            e.budget_rolled_back = True
            logger.error(
                "ledger_partial_failure",
                user_id=user_id,
                operation=operation,
                details=e.to_details(),
            )
            await self._audit_logger.log_partial_failure(
                user_id, e.to_details(), str(e), correlation_id
            )
            raise

        except InsufficientFundsError as e:
            logger.warning(
                "ledger_insufficient_funds",
                user_id=user_id,
                operation=operation,
                balance_type=e.balance_type.value,
                available=e.available,
                requested=e.requested,
            )
            await self._audit_logger.log_insufficient_funds(
                user_id, e.balance_type.value, e.available, e.requested, correlation_id
            )
            raise

        except InvalidInputError as e:
            logger.warning("ledger_invalid_input", user_id=user_id, field=e.field)
            await self._audit_logger.log_invalid_input(
                user_id, e.field, e.value, str(e), correlation_id
            )
            raise

        except NotFoundError as e:
            logger.warning("ledger_not_found", user_id=user_id, operation=operation, error=str(e))
            await self._audit_logger.log_not_found(user_id, str(e), correlation_id)
            raise

        except StorageError as e:
            logger.error("ledger_storage_error", user_id=user_id, operation=operation, error=str(e))
            await self._audit_logger.log_storage_error(
                user_id, operation, str(e), correlation_id
            )
            raise

    async def _validate_request(
        self,
        user_id: str,
        balance_type: Any,
        direction: Any,
        amount: Any,
        correlation_id: Optional[UUID],
    ) -> tuple[BalanceType, UpdateDirection, int]:
        """Stage-1 validation, audited on rejection."""
        try:
            return self._validator.validate_request(balance_type, direction, amount)
        except InvalidInputError as e:
            logger.warning("ledger_invalid_input", user_id=user_id, field=e.field)
            await self._audit_logger.log_invalid_input(
                user_id, e.field, e.value, str(e), correlation_id
            )
            raise

    async def _validate_amount(
        self,
        user_id: str,
        amount: Any,
        correlation_id: Optional[UUID],
    ) -> int:
        try:
            return validate_amount(amount, self._validator.max_amount_in_cents)
        except InvalidInputError as e:
            await self._audit_logger.log_invalid_input(
                user_id, e.field, e.value, str(e), correlation_id
            )
            raise

    async def _record_mutation(
        self,
        event_type: AuditEventType,
        before: Budget,
        after: Budget,
        steps: list[LedgerStep],
        correlation_id: Optional[UUID],
        expense_id: Optional[UUID] = None,
    ) -> None:
        operation: dict = {"steps": [step.describe() for step in steps]}
        if expense_id is not None:
            operation["expense_id"] = str(expense_id)

        logger.info(
            "ledger_mutation_committed",
            user_id=after.user_id,
            event_type=event_type.value,
            version=after.version,
            budget_remaining=after.budget_remaining,
            total_spent=after.total_spent,
        )
        await self._audit_logger.log_budget_mutated(
            event_type, before, after, operation, correlation_id
        )
