"""Summary figures and human-readable insights for an upload report.

Insight order is fixed: overlap warnings, then the duplicate-prevention
summary, then budget and category observations.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from .constants import Category
from .models import (
    BudgetImpact,
    ClassifiedTransaction,
    Direction,
    OverlapReport,
    TransactionType,
)

ZERO = Decimal("0")


@dataclass(frozen=True)
class CategoryTotal:
    total: Decimal
    count: int


@dataclass(frozen=True)
class StatementSummary:
    total_transactions: int
    total_debits: Decimal
    total_credits: Decimal
    net_amount: Decimal
    start_date: Optional[date]
    end_date: Optional[date]


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


def summarize(transactions: Sequence[ClassifiedTransaction]) -> StatementSummary:
    debits = sum((t.amount for t in transactions if t.direction == Direction.DEBIT), ZERO)
    credits = sum((t.amount for t in transactions if t.direction == Direction.CREDIT), ZERO)
    dates = sorted(t.transaction_date for t in transactions)
    return StatementSummary(
        total_transactions=len(transactions),
        total_debits=debits,
        total_credits=credits,
        net_amount=credits - debits,
        start_date=dates[0] if dates else None,
        end_date=dates[-1] if dates else None,
    )


def category_breakdown(
    admitted: Sequence[ClassifiedTransaction],
) -> dict[str, CategoryTotal]:
    """Totals and counts per category, largest total first."""
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for txn in admitted:
        totals[txn.category] = totals.get(txn.category, ZERO) + txn.amount
        counts[txn.category] = counts.get(txn.category, 0) + 1
    ordered = sorted(totals, key=lambda c: (-totals[c], c))
    return {c: CategoryTotal(total=totals[c], count=counts[c]) for c in ordered}


def _overlap_insights(
    overlap: OverlapReport, total: int, duplicate_count: int
) -> list[str]:
    insights = []
    earlier_upload = overlap.exact_filename_match or bool(overlap.batch_match_counts)
    if overlap.is_likely_reupload and not earlier_upload:
        insights.append(
            f"This file repeats {duplicate_count} of its own transactions; "
            "only the first copy of each was kept."
        )
    elif overlap.is_likely_reupload:
        reasons = "; ".join(overlap.reasons)
        if overlap.most_similar_batch is not None:
            insights.append(
                f"This file looks like a re-upload of "
                f"'{overlap.most_similar_batch.filename}' ({reasons})."
            )
        else:
            insights.append(f"This file looks like a re-upload ({reasons}).")
    if total > 0 and duplicate_count == total:
        insights.append(
            "Every transaction in this file was already recorded; nothing new was added."
        )
    return insights


def _duplicate_insight(total: int, duplicate_count: int, percentage: float) -> list[str]:
    if total == 0:
        return ["No transactions were found in this file."]
    if duplicate_count == 0:
        return [f"All {total} transactions were new."]
    return [f"Prevented {duplicate_count} duplicate transactions ({percentage:.0f}%)."]


def _budget_insights(impact: Optional[BudgetImpact]) -> list[str]:
    if impact is None:
        return []
    if impact.is_over_budget:
        return [
            f"New expenses of {_money(impact.total_spent)} exceed your available "
            f"budget of {_money(impact.available_to_spend)} by "
            f"{_money(-impact.remaining)}."
        ]
    return [
        f"New expenses used {impact.percentage_used:.1f}% of your "
        f"{_money(impact.available_to_spend)} available budget; "
        f"{_money(impact.remaining)} remaining."
    ]


def _category_insights(admitted: Sequence[ClassifiedTransaction]) -> list[str]:
    expenses = [t for t in admitted if t.type == TransactionType.EXPENSE]
    insights = []
    if expenses:
        total = sum((t.amount for t in expenses), ZERO)
        insights.append(
            f"Your average transaction amount is {_money(total / len(expenses))}"
        )
        breakdown = category_breakdown(expenses)
        top_category, top = next(iter(breakdown.items()))
        insights.append(
            f"Your highest spending category is {top_category} at {_money(top.total)}"
        )
        dining = sum(1 for t in expenses if t.category == Category.DINING.value)
        if dining:
            insights.append(f"You made {dining} dining transactions this period")
    if admitted:
        summary = summarize(admitted)
        insights.append(
            f"Transaction period: {summary.start_date.isoformat()} "
            f"to {summary.end_date.isoformat()}"
        )
    return insights


def build_insights(
    *,
    total_transactions: int,
    admitted: Sequence[ClassifiedTransaction],
    duplicate_count: int,
    overlap: OverlapReport,
    budget_impact: Optional[BudgetImpact],
) -> list[str]:
    """Deterministic, ordered insight strings for the upload report."""
    insights = _overlap_insights(overlap, total_transactions, duplicate_count)
    insights += _duplicate_insight(
        total_transactions, duplicate_count, overlap.overlap_percentage
    )
    insights += _budget_insights(budget_impact)
    insights += _category_insights(admitted)
    return insights
