"""Budget impact of one upload's newly admitted transactions."""

from decimal import Decimal
from typing import Iterable, Optional, Union

from .models import (
    BudgetImpact,
    BudgetSnapshot,
    ClassifiedTransaction,
    StoredTransaction,
    TransactionType,
)


def compute_budget_impact(
    admitted: Iterable[Union[ClassifiedTransaction, StoredTransaction]],
    budget: Optional[BudgetSnapshot],
) -> Optional[BudgetImpact]:
    """Compare this upload's expenses with the month's spendable amount.

    Only the transactions admitted by this upload count; this is not a
    running total. Returns None when the user has no budget for the period.
    """
    if budget is None:
        return None

    available = budget.income - budget.fixed_expenses - budget.savings_goal
    total_spent = sum(
        (t.amount for t in admitted if t.type == TransactionType.EXPENSE),
        Decimal("0"),
    )
    percentage_used = float(total_spent / available * 100) if available > 0 else 0.0

    return BudgetImpact(
        available_to_spend=available,
        total_spent=total_spent,
        remaining=available - total_spent,
        percentage_used=round(percentage_used, 2),
        is_over_budget=total_spent > available,
        monthly_budget=budget,
    )
