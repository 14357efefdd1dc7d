"""Value types shared by the ingestion pipeline stages.

Every stage hands the next one immutable dataclasses. Amounts are always
positive ``Decimal`` values; the sign lives in ``direction``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class Direction(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class BatchStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class IngestionStage(str, Enum):
    """Where an upload is in the pipeline. Used for logging and failure reports."""

    RECEIVED = "received"
    PARSING = "parsing"
    CLASSIFYING = "classifying"
    DUPLICATE_CHECKING = "duplicate_checking"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


@dataclass(frozen=True)
class RawRow:
    """String cells of one input line, before any parsing."""

    row_number: int
    transaction_date: str = ""
    posted_date: str = ""
    card_number: str = ""
    description: str = ""
    category: str = ""
    debit: str = ""
    credit: str = ""


@dataclass(frozen=True)
class NormalizedTransaction:
    transaction_date: date
    posted_date: date
    card_number: Optional[str]
    description: str
    source_category: Optional[str]
    amount: Decimal
    direction: Direction

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError(f"amount must be positive, got {self.amount}")


@dataclass(frozen=True)
class ClassifiedTransaction:
    transaction_date: date
    posted_date: date
    card_number: Optional[str]
    description: str
    source_category: Optional[str]
    amount: Decimal
    direction: Direction
    category: str
    type: TransactionType

    @classmethod
    def from_normalized(
        cls, txn: NormalizedTransaction, category: str
    ) -> "ClassifiedTransaction":
        txn_type = (
            TransactionType.INCOME
            if txn.direction == Direction.CREDIT
            else TransactionType.EXPENSE
        )
        return cls(
            transaction_date=txn.transaction_date,
            posted_date=txn.posted_date,
            card_number=txn.card_number,
            description=txn.description,
            source_category=txn.source_category,
            amount=txn.amount,
            direction=txn.direction,
            category=category,
            type=txn_type,
        )


@dataclass(frozen=True)
class StoredTransaction:
    id: str
    user_id: str
    upload_batch_id: Optional[str]
    created_at: datetime
    transaction_date: date
    posted_date: Optional[date]
    card_number: Optional[str]
    description: str
    amount: Decimal
    category: str
    type: TransactionType


@dataclass(frozen=True)
class UploadBatch:
    id: str
    user_id: str
    filename: str
    file_size_bytes: int
    uploaded_at: datetime
    admitted_count: int = 0
    status: BatchStatus = BatchStatus.PROCESSING
    error_message: Optional[str] = None


@dataclass(frozen=True)
class DuplicateMatch:
    """Evidence that ``candidate`` is already on record.

    ``existing`` is the stored row it matched, or the earlier candidate of the
    same file when ``within_file`` is set.
    """

    candidate: ClassifiedTransaction
    existing: Union[StoredTransaction, ClassifiedTransaction]
    matched_upload_batch_id: Optional[str] = None
    within_file: bool = False


@dataclass(frozen=True)
class DetectionResult:
    admitted: tuple[ClassifiedTransaction, ...]
    duplicates: tuple[DuplicateMatch, ...]


@dataclass(frozen=True)
class OverlapReport:
    overlap_percentage: float
    is_likely_reupload: bool
    most_similar_batch: Optional[UploadBatch]
    overlap_count: int
    exact_filename_match: bool = False
    batch_match_counts: dict[str, int] = field(default_factory=dict)
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class BudgetSnapshot:
    income: Decimal
    fixed_expenses: Decimal
    savings_goal: Decimal


@dataclass(frozen=True)
class BudgetImpact:
    available_to_spend: Decimal
    total_spent: Decimal
    remaining: Decimal
    percentage_used: float
    is_over_budget: bool
    monthly_budget: BudgetSnapshot
