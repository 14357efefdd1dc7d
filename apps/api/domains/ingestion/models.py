"""ORM tables for uploads, ledger transactions and monthly budgets.

Schema migrations are managed outside this service; ``init_db`` only
creates missing tables for local development and tests.
"""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from apps.api.core.database import Base, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class UploadBatchRecord(Base):
    """One statement upload and its outcome."""

    __tablename__ = "upload_batches"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    admitted_count = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default="processing")
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_upload_batches_user_filename", "user_id", "filename"),
        CheckConstraint(
            "status IN ('processing', 'completed', 'completed_with_errors', 'failed')",
            name="ck_upload_batches_status",
        ),
    )


class TransactionRecord(Base):
    """A persisted ledger transaction.

    ``match_key`` is the hash of transaction date and normalized description
    used by duplicate detection; amounts are always positive.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False)
    transaction_date = Column(Date, nullable=False)
    posted_date = Column(Date, nullable=True)
    card_no = Column(String(32), nullable=True)
    description = Column(String(255), nullable=False)
    match_key = Column(String(64), nullable=False)
    category = Column(String(50), nullable=False)
    amount = Column(Numeric(14, 4), nullable=False)
    type = Column(String(10), nullable=False)
    upload_batch_id = Column(
        String(36),
        ForeignKey("upload_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_transactions_user_match_key", "user_id", "match_key"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint("type IN ('income', 'expense')", name="ck_transactions_type"),
    )


class MonthlyBudgetRecord(Base):
    """A user's standing budget for one month. Maintained by the budget feature."""

    __tablename__ = "monthly_budgets"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    income = Column(Numeric(12, 2), nullable=False)
    fixed_expenses = Column(Numeric(12, 2), nullable=False)
    savings_goal = Column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_monthly_budgets_period"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_budgets_month"),
    )
