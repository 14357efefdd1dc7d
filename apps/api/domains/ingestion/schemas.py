"""Pydantic schemas for the ingestion domain.

Responses are camelCase on the wire; amounts are plain JSON numbers.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from packages.ingestion_engine.models import (
    BudgetImpact,
    DuplicateMatch,
    OverlapReport,
    StoredTransaction,
    UploadBatch,
)


def _num(value: Decimal) -> float:
    return float(value)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DateRange(CamelModel):
    start: Optional[date] = None
    end: Optional[date] = None


class SummaryOut(CamelModel):
    total_transactions: int
    total_debits: float
    total_credits: float
    net_amount: float
    date_range: DateRange


class CategoryTotalOut(CamelModel):
    total: float
    count: int


class MonthlyBudgetOut(CamelModel):
    income: float
    fixed_expenses: float
    savings_goal: float


class BudgetAnalysisOut(CamelModel):
    available_to_spend: float
    total_spent: float
    remaining: float
    percentage_used: float
    is_over_budget: bool
    monthly_budget: MonthlyBudgetOut

    @classmethod
    def from_impact(cls, impact: BudgetImpact) -> "BudgetAnalysisOut":
        budget = impact.monthly_budget
        return cls(
            available_to_spend=_num(impact.available_to_spend),
            total_spent=_num(impact.total_spent),
            remaining=_num(impact.remaining),
            percentage_used=impact.percentage_used,
            is_over_budget=impact.is_over_budget,
            monthly_budget=MonthlyBudgetOut(
                income=_num(budget.income),
                fixed_expenses=_num(budget.fixed_expenses),
                savings_goal=_num(budget.savings_goal),
            ),
        )


class FailedInsertOut(CamelModel):
    transaction_date: date
    description: str
    amount: float
    error: str


class DataQualityOut(CamelModel):
    skipped_rows: int = 0
    date_fallbacks: int = 0
    failed_inserts: list[FailedInsertOut] = Field(default_factory=list)


class UploadOut(CamelModel):
    """One upload batch as listed in the upload history."""

    id: str
    filename: str
    size: int
    upload_date: datetime
    status: str
    processed_transactions: int
    error_message: Optional[str] = None

    @classmethod
    def from_batch(cls, batch: UploadBatch) -> "UploadOut":
        return cls(
            id=batch.id,
            filename=batch.filename,
            size=batch.file_size_bytes,
            upload_date=batch.uploaded_at,
            status=batch.status.value,
            processed_transactions=batch.admitted_count,
            error_message=batch.error_message,
        )


class DuplicateDetailOut(CamelModel):
    transaction_date: date
    description: str
    amount: float
    category: str
    matched_transaction_id: Optional[str] = None
    matched_upload_id: Optional[str] = None
    matched_amount: float
    within_file: bool = False

    @classmethod
    def from_match(cls, match: DuplicateMatch) -> "DuplicateDetailOut":
        candidate = match.candidate
        existing = match.existing
        return cls(
            transaction_date=candidate.transaction_date,
            description=candidate.description,
            amount=_num(candidate.amount),
            category=candidate.category,
            matched_transaction_id=getattr(existing, "id", None),
            matched_upload_id=match.matched_upload_batch_id,
            matched_amount=_num(existing.amount),
            within_file=match.within_file,
        )


class FileOverlapOut(CamelModel):
    overlap_percentage: float
    is_likely_reupload: bool
    overlap_count: int
    exact_filename_match: bool = False
    most_similar_upload: Optional[UploadOut] = None
    reasons: list[str] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: OverlapReport) -> "FileOverlapOut":
        similar = report.most_similar_batch
        return cls(
            overlap_percentage=report.overlap_percentage,
            is_likely_reupload=report.is_likely_reupload,
            overlap_count=report.overlap_count,
            exact_filename_match=report.exact_filename_match,
            most_similar_upload=UploadOut.from_batch(similar) if similar else None,
            reasons=list(report.reasons),
        )


class DuplicateInfoOut(CamelModel):
    duplicates_found: int
    duplicates_skipped: int
    new_transactions_added: int
    total_transactions_in_file: int
    duplicate_details: list[DuplicateDetailOut]
    file_overlap_analysis: FileOverlapOut


class UploadReport(CamelModel):
    """Response of ``POST /ingest/csv``."""

    upload_id: str
    filename: str
    size: int
    upload_date: datetime
    status: str
    processed_transactions: int
    summary: SummaryOut
    category_breakdown: dict[str, CategoryTotalOut]
    categories: list[str]
    budget_analysis: Optional[BudgetAnalysisOut] = None
    insights: list[str]
    data_quality: DataQualityOut
    duplicate_info: DuplicateInfoOut

    @classmethod
    def from_result(cls, result) -> "UploadReport":
        """Build the report from an ``IngestionResult``."""
        batch = result.batch
        summary = result.summary
        return cls(
            upload_id=batch.id,
            filename=batch.filename,
            size=batch.file_size_bytes,
            upload_date=batch.uploaded_at,
            status=batch.status.value,
            processed_transactions=batch.admitted_count,
            summary=SummaryOut(
                total_transactions=summary.total_transactions,
                total_debits=_num(summary.total_debits),
                total_credits=_num(summary.total_credits),
                net_amount=_num(summary.net_amount),
                date_range=DateRange(start=summary.start_date, end=summary.end_date),
            ),
            category_breakdown={
                name: CategoryTotalOut(total=_num(t.total), count=t.count)
                for name, t in result.category_breakdown.items()
            },
            categories=list(result.category_breakdown),
            budget_analysis=(
                BudgetAnalysisOut.from_impact(result.budget_impact)
                if result.budget_impact
                else None
            ),
            insights=list(result.insights),
            data_quality=DataQualityOut(
                skipped_rows=result.skipped_rows,
                date_fallbacks=result.date_fallbacks,
                failed_inserts=[
                    FailedInsertOut(
                        transaction_date=f.transaction.transaction_date,
                        description=f.transaction.description,
                        amount=_num(f.transaction.amount),
                        error=f.error,
                    )
                    for f in result.failed_inserts
                ],
            ),
            duplicate_info=DuplicateInfoOut(
                duplicates_found=len(result.duplicates),
                duplicates_skipped=len(result.duplicates),
                new_transactions_added=len(result.admitted),
                total_transactions_in_file=len(result.transactions),
                duplicate_details=[
                    DuplicateDetailOut.from_match(d) for d in result.duplicates
                ],
                file_overlap_analysis=FileOverlapOut.from_report(result.overlap),
            ),
        )


class PaginationOut(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class UploadListOut(CamelModel):
    uploads: list[UploadOut]
    pagination: PaginationOut


class TransactionOut(CamelModel):
    """A persisted ledger transaction."""

    id: str
    transaction_date: date
    posted_date: Optional[date] = None
    card_number: Optional[str] = None
    description: str
    amount: float
    category: str
    type: str
    upload_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_stored(cls, txn: StoredTransaction) -> "TransactionOut":
        return cls(
            id=txn.id,
            transaction_date=txn.transaction_date,
            posted_date=txn.posted_date,
            card_number=txn.card_number,
            description=txn.description,
            amount=_num(txn.amount),
            category=txn.category,
            type=txn.type.value,
            upload_id=txn.upload_batch_id,
            created_at=txn.created_at,
        )


class UploadTransactionsOut(CamelModel):
    upload: UploadOut
    transactions: list[TransactionOut]
    count: int


class AnalysisSummaryOut(CamelModel):
    total_transactions: int
    total_spent: float
    total_income: float
    net_amount: float


class BudgetComparisonOut(CamelModel):
    budgeted_amount: float
    actual_spent: float
    difference: float
    percentage_used: float
    is_over_budget: bool


class TopCategoryOut(CamelModel):
    category: str
    amount: float


class UploadAnalysisOut(CamelModel):
    upload: UploadOut
    summary: AnalysisSummaryOut
    spending_by_category: dict[str, float]
    budget_comparison: Optional[BudgetComparisonOut] = None
    top_categories: list[TopCategoryOut]

    @classmethod
    def from_analysis(cls, analysis) -> "UploadAnalysisOut":
        """Build the response from an ``UploadAnalysis``."""
        impact = analysis.budget_impact
        return cls(
            upload=UploadOut.from_batch(analysis.batch),
            summary=AnalysisSummaryOut(
                total_transactions=analysis.transaction_count,
                total_spent=_num(analysis.total_spent),
                total_income=_num(analysis.total_income),
                net_amount=_num(analysis.net_amount),
            ),
            spending_by_category={
                name: _num(total) for name, total in analysis.spending_by_category.items()
            },
            budget_comparison=(
                BudgetComparisonOut(
                    budgeted_amount=_num(impact.available_to_spend),
                    actual_spent=_num(impact.total_spent),
                    difference=_num(impact.remaining),
                    percentage_used=impact.percentage_used,
                    is_over_budget=impact.is_over_budget,
                )
                if impact
                else None
            ),
            top_categories=[
                TopCategoryOut(category=name, amount=_num(total))
                for name, total in analysis.top_categories()
            ],
        )


class DeleteUploadOut(CamelModel):
    upload_id: str
    deleted_transactions: int
