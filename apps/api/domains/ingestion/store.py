"""Ledger persistence: the only module that talks SQL for ingestion.

``LedgerStore`` wraps a caller-owned ``Session``; every method runs inside
whatever transaction the caller has open, so the orchestrator decides what
commits together.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from apps.api.core.database import as_utc
from apps.api.domains.ingestion.models import (
    MonthlyBudgetRecord,
    TransactionRecord,
    UploadBatchRecord,
)
from packages.ingestion_engine.duplicates import generate_match_key
from packages.ingestion_engine.models import (
    BatchStatus,
    BudgetSnapshot,
    ClassifiedTransaction,
    StoredTransaction,
    TransactionType,
    UploadBatch,
)

logger = structlog.get_logger()

FINISHED_STATUSES = (
    BatchStatus.COMPLETED.value,
    BatchStatus.COMPLETED_WITH_ERRORS.value,
)


def is_infrastructure_error(exc: Exception) -> bool:
    """True when the database itself is unavailable, not just one row bad."""
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return True
    return bool(getattr(exc, "connection_invalidated", False))


def _to_batch(record: UploadBatchRecord) -> UploadBatch:
    return UploadBatch(
        id=record.id,
        user_id=record.user_id,
        filename=record.filename,
        file_size_bytes=record.file_size,
        uploaded_at=as_utc(record.uploaded_at),
        admitted_count=record.admitted_count or 0,
        status=BatchStatus(record.status),
        error_message=record.error_message,
    )


def _to_stored(record: TransactionRecord) -> StoredTransaction:
    return StoredTransaction(
        id=record.id,
        user_id=record.user_id,
        upload_batch_id=record.upload_batch_id,
        created_at=as_utc(record.created_at),
        transaction_date=record.transaction_date,
        posted_date=record.posted_date,
        card_number=record.card_no,
        description=record.description,
        amount=Decimal(record.amount),
        category=record.category,
        type=TransactionType(record.type),
    )


class LedgerStore:
    def __init__(self, session: Session):
        self.session = session

    # -- locking -----------------------------------------------------------

    def lock_user(self, user_id: str) -> None:
        """Serialize ingestion for ``user_id`` until the current transaction ends.

        PostgreSQL takes a transaction-scoped advisory lock; other backends
        rely on the in-process lock held by the orchestrator.
        """
        if self.session.get_bind().dialect.name == "postgresql":
            self.session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:user_id))"),
                {"user_id": user_id},
            )

    # -- upload batches ----------------------------------------------------

    def create_upload_batch(
        self, user_id: str, filename: str, file_size: int, uploaded_at: datetime
    ) -> UploadBatch:
        record = UploadBatchRecord(
            user_id=user_id,
            filename=filename,
            file_size=file_size,
            uploaded_at=uploaded_at,
            admitted_count=0,
            status=BatchStatus.PROCESSING.value,
        )
        self.session.add(record)
        self.session.flush()
        return _to_batch(record)

    def finalize_upload_batch(
        self,
        batch_id: str,
        status: BatchStatus,
        admitted_count: int,
        error_message: Optional[str] = None,
    ) -> UploadBatch:
        record = self.session.get(UploadBatchRecord, batch_id)
        if record is None:
            raise LookupError(f"upload batch {batch_id} does not exist")
        record.status = status.value
        record.admitted_count = admitted_count
        record.error_message = error_message
        self.session.flush()
        return _to_batch(record)

    def find_batches_by_filename(
        self, user_id: str, filename: str, exclude_id: Optional[str] = None
    ) -> list[UploadBatch]:
        """Finished uploads of ``filename``, newest first.

        Failed and still-processing batches are left out.
        """
        stmt = (
            select(UploadBatchRecord)
            .where(
                UploadBatchRecord.user_id == user_id,
                UploadBatchRecord.filename == filename,
                UploadBatchRecord.status.in_(FINISHED_STATUSES),
            )
            .order_by(UploadBatchRecord.uploaded_at.desc())
        )
        if exclude_id:
            stmt = stmt.where(UploadBatchRecord.id != exclude_id)
        return [_to_batch(r) for r in self.session.scalars(stmt)]

    def get_upload_batches(
        self, user_id: str, batch_ids: Iterable[str]
    ) -> dict[str, UploadBatch]:
        ids = [i for i in set(batch_ids) if i]
        if not ids:
            return {}
        stmt = select(UploadBatchRecord).where(
            UploadBatchRecord.user_id == user_id, UploadBatchRecord.id.in_(ids)
        )
        return {r.id: _to_batch(r) for r in self.session.scalars(stmt)}

    def get_upload_batch(self, user_id: str, batch_id: str) -> Optional[UploadBatch]:
        return self.get_upload_batches(user_id, [batch_id]).get(batch_id)

    def list_upload_batches(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> tuple[list[UploadBatch], int]:
        total = self.session.scalar(
            select(func.count())
            .select_from(UploadBatchRecord)
            .where(UploadBatchRecord.user_id == user_id)
        )
        stmt = (
            select(UploadBatchRecord)
            .where(UploadBatchRecord.user_id == user_id)
            .order_by(UploadBatchRecord.uploaded_at.desc(), UploadBatchRecord.id)
            .limit(limit)
            .offset(offset)
        )
        return [_to_batch(r) for r in self.session.scalars(stmt)], int(total or 0)

    def delete_upload_batch(self, user_id: str, batch_id: str) -> Optional[int]:
        """Delete an upload and the transactions it admitted.

        Returns the number of deleted transactions, or None if the upload
        does not belong to ``user_id``.
        """
        record = self.session.get(UploadBatchRecord, batch_id)
        if record is None or record.user_id != user_id:
            return None
        result = self.session.execute(
            delete(TransactionRecord).where(
                TransactionRecord.user_id == user_id,
                TransactionRecord.upload_batch_id == batch_id,
            )
        )
        self.session.delete(record)
        self.session.flush()
        return result.rowcount or 0

    # -- transactions ------------------------------------------------------

    def find_matching_history(
        self, user_id: str, match_keys: Sequence[str]
    ) -> list[StoredTransaction]:
        """Stored transactions of ``user_id`` sharing any of ``match_keys``."""
        if not match_keys:
            return []
        stmt = select(TransactionRecord).where(
            TransactionRecord.user_id == user_id,
            TransactionRecord.match_key.in_(list(match_keys)),
        )
        return [_to_stored(r) for r in self.session.scalars(stmt)]

    def insert_transaction(
        self, user_id: str, upload_batch_id: str, txn: ClassifiedTransaction
    ) -> StoredTransaction:
        """Insert one transaction inside its own savepoint.

        A failure rolls back only this row and is re-raised for the caller to
        record; rows inserted before it stay in the open transaction.
        """
        with self.session.begin_nested():
            record = TransactionRecord(
                user_id=user_id,
                transaction_date=txn.transaction_date,
                posted_date=txn.posted_date,
                card_no=txn.card_number,
                description=txn.description,
                match_key=generate_match_key(txn.transaction_date, txn.description),
                category=txn.category,
                amount=txn.amount,
                type=txn.type.value,
                upload_batch_id=upload_batch_id,
            )
            self.session.add(record)
            self.session.flush()
        return _to_stored(record)

    def list_batch_transactions(
        self, user_id: str, batch_id: str
    ) -> list[StoredTransaction]:
        stmt = (
            select(TransactionRecord)
            .where(
                TransactionRecord.user_id == user_id,
                TransactionRecord.upload_batch_id == batch_id,
            )
            .order_by(TransactionRecord.transaction_date.desc(), TransactionRecord.id)
        )
        return [_to_stored(r) for r in self.session.scalars(stmt)]

    # -- budgets -----------------------------------------------------------

    def get_budget_snapshot(
        self, user_id: str, year: int, month: int
    ) -> Optional[BudgetSnapshot]:
        record = self.session.scalar(
            select(MonthlyBudgetRecord).where(
                MonthlyBudgetRecord.user_id == user_id,
                MonthlyBudgetRecord.year == year,
                MonthlyBudgetRecord.month == month,
            )
        )
        if record is None:
            return None
        return BudgetSnapshot(
            income=Decimal(record.income),
            fixed_expenses=Decimal(record.fixed_expenses),
            savings_goal=Decimal(record.savings_goal),
        )

    def save_budget_snapshot(
        self, user_id: str, year: int, month: int, budget: BudgetSnapshot
    ) -> None:
        """Upsert a month's budget. Used by seeding and tests; the budget
        feature owns this table in production."""
        record = self.session.scalar(
            select(MonthlyBudgetRecord).where(
                MonthlyBudgetRecord.user_id == user_id,
                MonthlyBudgetRecord.year == year,
                MonthlyBudgetRecord.month == month,
            )
        )
        if record is None:
            record = MonthlyBudgetRecord(user_id=user_id, year=year, month=month)
            self.session.add(record)
        record.income = budget.income
        record.fixed_expenses = budget.fixed_expenses
        record.savings_goal = budget.savings_goal
        self.session.flush()
