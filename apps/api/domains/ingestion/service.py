"""Ingestion service: runs one statement upload end to end.

An upload moves through ``received -> parsing -> classifying ->
duplicate_checking -> persisting`` and ends ``completed``,
``completed_with_errors`` or ``failed``.

- The header is checked before anything is written, so a file that is not a
  statement leaves no upload batch behind.
- The batch row is committed on its own, so a later failure can still be
  recorded against it.
- The file is parsed and classified before the user's locks are taken.
- Every admitted transaction is inserted in its own savepoint. A row the
  database rejects is reported in ``failed_inserts``; the rest commit
  together with the batch finalization.
- Losing the database mid-way rolls everything back, marks the batch
  ``failed`` and raises ``IngestionFailedError``.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator, Optional

import structlog
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from apps.api.core.database import utcnow
from apps.api.core.errors import IngestionFailedError, InputFormatError, NotFoundError
from apps.api.domains.ingestion.store import LedgerStore, is_infrastructure_error
from packages.ingestion_engine.budget import compute_budget_impact
from packages.ingestion_engine.classifier import CategoryClassifier
from packages.ingestion_engine.duplicates import DEFAULT_CHUNK_SIZE, DuplicateDetector
from packages.ingestion_engine.errors import StatementFormatError
from packages.ingestion_engine.models import (
    BatchStatus,
    BudgetImpact,
    ClassifiedTransaction,
    DuplicateMatch,
    IngestionStage,
    OverlapReport,
    StoredTransaction,
    TransactionType,
    UploadBatch,
)
from packages.ingestion_engine.normalizer import StatementReader
from packages.ingestion_engine.overlap import analyze_overlap
from packages.ingestion_engine.report import (
    CategoryTotal,
    StatementSummary,
    build_insights,
    category_breakdown,
    summarize,
)

logger = structlog.get_logger()

MAX_ERROR_MESSAGE_LENGTH = 500
DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@dataclass
class _UserLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class UserLocks:
    """Per-user locks that serialize same-user ingestions in this process.

    An entry lives only while some thread holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, _UserLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(user_id)
            if entry is None:
                entry = self._locks[user_id] = _UserLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[user_id]


@dataclass(frozen=True)
class FailedInsert:
    transaction: ClassifiedTransaction
    error: str


@dataclass(frozen=True)
class IngestionResult:
    """Everything the upload report is built from."""

    batch: UploadBatch
    transactions: tuple[ClassifiedTransaction, ...]
    admitted: tuple[ClassifiedTransaction, ...]
    duplicates: tuple[DuplicateMatch, ...]
    failed_inserts: tuple[FailedInsert, ...]
    overlap: OverlapReport
    budget_impact: Optional[BudgetImpact]
    summary: StatementSummary
    category_breakdown: dict[str, CategoryTotal]
    insights: list[str]
    skipped_rows: int = 0
    date_fallbacks: int = 0


@dataclass(frozen=True)
class UploadAnalysis:
    """Spending view over the rows one upload persisted."""

    batch: UploadBatch
    transaction_count: int
    total_spent: Decimal
    total_income: Decimal
    spending_by_category: dict[str, Decimal]
    budget_impact: Optional[BudgetImpact]

    @property
    def net_amount(self) -> Decimal:
        return self.total_income - self.total_spent

    def top_categories(self, limit: int = 5) -> list[tuple[str, Decimal]]:
        ordered = sorted(self.spending_by_category.items(), key=lambda kv: (-kv[1], kv[0]))
        return ordered[:limit]


def _truncate(message: str) -> str:
    return message[:MAX_ERROR_MESSAGE_LENGTH]


def _db_error(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc)


@dataclass
class _Progress:
    stage: IngestionStage


@dataclass(frozen=True)
class _ParsedFile:
    transactions: list[ClassifiedTransaction]
    skipped_rows: int
    date_fallbacks: int


class IngestionService:
    def __init__(
        self,
        session_factory: sessionmaker,
        classifier: CategoryClassifier,
        lookup_chunk_size: int = DEFAULT_CHUNK_SIZE,
        csv_chunk_rows: int = 1000,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        locks: Optional[UserLocks] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.classifier = classifier
        self.lookup_chunk_size = lookup_chunk_size
        self.csv_chunk_rows = csv_chunk_rows
        self.max_upload_bytes = max_upload_bytes
        self.locks = locks if locks is not None else UserLocks()
        self.clock = clock

    # -- upload ------------------------------------------------------------

    def ingest(self, user_id: str, filename: str, contents: bytes) -> IngestionResult:
        """Parse, classify, de-duplicate and persist one statement upload.

        Parsing and classification run before the user's locks are taken;
        the locks cover the duplicate check through the commit.

        Raises:
            InputFormatError: the file is not a readable statement.
            IngestionFailedError: storage failed; nothing from this upload
                was kept and its batch is marked failed.
        """
        log = logger.bind(user_id=user_id, filename=filename, size=len(contents))
        now = self.clock()
        log.info("ingest_started", stage=IngestionStage.RECEIVED.value)

        try:
            reader = StatementReader.from_bytes(
                contents, fallback_date=now.date(), chunk_rows=self.csv_chunk_rows
            )
        except StatementFormatError as e:
            log.warning("ingest_rejected", reason=str(e))
            raise InputFormatError(str(e)) from e

        batch = self._create_batch(user_id, filename, len(contents), now, log)
        log = log.bind(upload_id=batch.id)
        progress = _Progress(IngestionStage.PARSING)
        try:
            parsed = self._parse(reader, progress, log)
            with self.locks.hold(user_id):
                result = self._persist(user_id, filename, batch, parsed, now, progress, log)
        except StatementFormatError as e:
            self._mark_failed(user_id, batch.id, str(e), log)
            log.warning("ingest_rejected", stage=progress.stage.value, reason=str(e))
            raise InputFormatError(str(e)) from e
        except SQLAlchemyError as e:
            self._mark_failed(user_id, batch.id, f"storage failure: {e}", log)
            log.error("ingest_failed", stage=progress.stage.value, error=str(e))
            raise IngestionFailedError(
                "Storage was unavailable; the upload was rolled back",
                upload_id=batch.id,
            ) from e
        except Exception as e:
            self._mark_failed(user_id, batch.id, f"unexpected error: {e}", log)
            log.exception("ingest_failed", stage=progress.stage.value)
            raise

        log.info(
            "ingest_completed",
            status=result.batch.status.value,
            total=len(result.transactions),
            admitted=len(result.admitted),
            duplicates=len(result.duplicates),
            failed_inserts=len(result.failed_inserts),
            likely_reupload=result.overlap.is_likely_reupload,
        )
        return result

    def _create_batch(
        self, user_id: str, filename: str, size: int, now: datetime, log
    ) -> UploadBatch:
        try:
            with self.locks.hold(user_id), self.session_factory() as session:
                with session.begin():
                    return LedgerStore(session).create_upload_batch(
                        user_id, filename, size, now
                    )
        except SQLAlchemyError as e:
            log.error("upload_batch_create_failed", error=str(e))
            raise IngestionFailedError("Storage is unavailable") from e

    def _mark_failed(self, user_id: str, batch_id: str, message: str, log) -> None:
        try:
            with self.locks.hold(user_id), self.session_factory() as session:
                with session.begin():
                    LedgerStore(session).finalize_upload_batch(
                        batch_id, BatchStatus.FAILED, 0, error_message=_truncate(message)
                    )
        except SQLAlchemyError as e:
            # The batch stays "processing"; the original failure is still raised.
            log.error("upload_batch_mark_failed_error", error=str(e))

    def _parse(self, reader: StatementReader, progress: _Progress, log) -> _ParsedFile:
        transactions: list[ClassifiedTransaction] = []
        skipped_rows = 0
        date_fallbacks = 0
        progress.stage = IngestionStage.CLASSIFYING
        for row in reader.iter_rows():
            if row.skipped:
                skipped_rows += 1
                log.warning(
                    "row_skipped",
                    row=row.row_number,
                    reason=row.skip_reason,
                    warnings=list(row.warnings),
                )
                continue
            if row.date_fallback:
                date_fallbacks += 1
            transactions.extend(
                self.classifier.classify_transaction(t) for t in row.transactions
            )
        return _ParsedFile(transactions, skipped_rows, date_fallbacks)

    def _persist(
        self,
        user_id: str,
        filename: str,
        batch: UploadBatch,
        parsed: _ParsedFile,
        now: datetime,
        progress: _Progress,
        log,
    ) -> IngestionResult:
        transactions = parsed.transactions
        with self.session_factory() as session, session.begin():
            store = LedgerStore(session)
            store.lock_user(user_id)

            progress.stage = IngestionStage.DUPLICATE_CHECKING
            detector = DuplicateDetector(store, chunk_size=self.lookup_chunk_size)
            detection = detector.detect(user_id, transactions)

            progress.stage = IngestionStage.PERSISTING
            persisted: list[ClassifiedTransaction] = []
            failed: list[FailedInsert] = []
            for txn in detection.admitted:
                try:
                    store.insert_transaction(user_id, batch.id, txn)
                except SQLAlchemyError as e:
                    if is_infrastructure_error(e):
                        raise
                    failed.append(FailedInsert(transaction=txn, error=_db_error(e)))
                    log.warning(
                        "transaction_insert_failed",
                        transaction_date=txn.transaction_date.isoformat(),
                        description=txn.description,
                        error=_db_error(e),
                    )
                    continue
                persisted.append(txn)

            status = (
                BatchStatus.COMPLETED_WITH_ERRORS if failed else BatchStatus.COMPLETED
            )
            batch = store.finalize_upload_batch(
                batch.id,
                status,
                len(persisted),
                error_message=(
                    _truncate(f"{len(failed)} transactions could not be stored")
                    if failed
                    else None
                ),
            )

            earlier = store.get_upload_batches(
                user_id, [d.matched_upload_batch_id for d in detection.duplicates]
            )
            same_name = store.find_batches_by_filename(
                user_id, filename, exclude_id=batch.id
            )
            budget = store.get_budget_snapshot(user_id, now.year, now.month)

        overlap = analyze_overlap(
            detection.duplicates,
            candidate_count=len(transactions),
            filename=filename,
            batches=earlier,
            same_filename_batches=same_name,
        )
        admitted = tuple(persisted)
        budget_impact = compute_budget_impact(admitted, budget)
        progress.stage = IngestionStage(status.value)

        return IngestionResult(
            batch=batch,
            transactions=tuple(transactions),
            admitted=admitted,
            duplicates=detection.duplicates,
            failed_inserts=tuple(failed),
            overlap=overlap,
            budget_impact=budget_impact,
            summary=summarize(transactions),
            category_breakdown=category_breakdown(admitted),
            insights=build_insights(
                total_transactions=len(transactions),
                admitted=admitted,
                duplicate_count=len(detection.duplicates),
                overlap=overlap,
                budget_impact=budget_impact,
            ),
            skipped_rows=parsed.skipped_rows,
            date_fallbacks=parsed.date_fallbacks,
        )

    # -- upload history ------------------------------------------------------

    def list_uploads(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> tuple[list[UploadBatch], int]:
        with self.session_factory() as session:
            return LedgerStore(session).list_upload_batches(user_id, limit, offset)

    def get_upload_transactions(
        self, user_id: str, upload_id: str
    ) -> tuple[UploadBatch, list[StoredTransaction]]:
        with self.session_factory() as session:
            store = LedgerStore(session)
            batch = store.get_upload_batch(user_id, upload_id)
            if batch is None:
                raise NotFoundError("Upload not found")
            return batch, store.list_batch_transactions(user_id, upload_id)

    def get_upload_analysis(self, user_id: str, upload_id: str) -> UploadAnalysis:
        now = self.clock()
        with self.session_factory() as session:
            store = LedgerStore(session)
            batch = store.get_upload_batch(user_id, upload_id)
            if batch is None:
                raise NotFoundError("Upload not found")
            rows = store.list_batch_transactions(user_id, upload_id)
            budget = store.get_budget_snapshot(user_id, now.year, now.month)

        spending: dict[str, Decimal] = {}
        total_spent = Decimal("0")
        total_income = Decimal("0")
        for row in rows:
            if row.type == TransactionType.EXPENSE:
                spending[row.category] = spending.get(row.category, Decimal("0")) + row.amount
                total_spent += row.amount
            else:
                total_income += row.amount

        return UploadAnalysis(
            batch=batch,
            transaction_count=len(rows),
            total_spent=total_spent,
            total_income=total_income,
            spending_by_category=spending,
            budget_impact=compute_budget_impact(rows, budget),
        )

    def delete_upload(self, user_id: str, upload_id: str) -> int:
        """Remove an upload and the transactions it admitted."""
        with self.locks.hold(user_id):
            with self.session_factory() as session, session.begin():
                deleted = LedgerStore(session).delete_upload_batch(user_id, upload_id)
        if deleted is None:
            raise NotFoundError("Upload not found")
        logger.info(
            "upload_deleted", user_id=user_id, upload_id=upload_id, transactions=deleted
        )
        return deleted


def get_ingestion_service(request: Request) -> IngestionService:
    """FastAPI dependency: the service built at startup."""
    return request.app.state.ingestion_service
