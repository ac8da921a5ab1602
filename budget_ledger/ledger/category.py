"""
Category Aggregate Updater

Moves a category's running total up or down. Independent of the budget:
it reads and writes only the category row.
"""

from uuid import UUID

import structlog

from budget_ledger.models.ledger import CategoryOperation
from budget_ledger.services.storage.interface import LedgerTransaction


logger = structlog.get_logger(__name__)


def adjust_category_total(current_total: int, amount: int, op: CategoryOperation) -> int:
    """Increment, or decrement floored at zero."""
    if op == CategoryOperation.INCREMENT:
        return current_total + amount
    return max(0, current_total - amount)


class CategoryAggregateUpdater:
    """
    Applies a category adjustment through an open storage transaction.

    Storage errors are NOT caught here. The coordinator decides what a
    failure means, since by the time this runs the budget step has already
    been written inside the same transaction.
    """

    async def apply(
        self,
        tx: LedgerTransaction,
        user_id: str,
        category_id: UUID,
        amount: int,
        op: CategoryOperation,
    ) -> int:
        """Read, adjust and write the category total. Returns the new total."""
        current = await tx.get_category_total(user_id, category_id)
        new_total = adjust_category_total(current, amount, op)
        await tx.put_category_total(user_id, category_id, new_total)

        logger.debug(
            "category_total_adjusted",
            user_id=user_id,
            category_id=str(category_id),
            operation=op.value,
            amount=amount,
            previous_total=current,
            new_total=new_total,
        )
        return new_total
