"""Duplicate detection against a user's stored transaction history.

Two transactions are the same when they share the calendar transaction date,
the normalized description and an amount within ``AMOUNT_TOLERANCE``
(absolute, strictly less than). Storage is queried by ``match_key`` (a hash
of date and normalized description) and the amount check is applied here, so
the result does not depend on how lookups are chunked.
"""

import hashlib
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Protocol, Sequence

import structlog

from .models import (
    ClassifiedTransaction,
    DetectionResult,
    DuplicateMatch,
    StoredTransaction,
)

logger = structlog.get_logger()

AMOUNT_TOLERANCE = Decimal("0.01")
DEFAULT_CHUNK_SIZE = 500


def normalize_description(description: str) -> str:
    """Collapse whitespace runs, trim, case-fold."""
    return " ".join((description or "").split()).casefold()


def generate_match_key(transaction_date: date, description: str) -> str:
    """SHA256 of ``{ISO date}|{normalized description}``.

    Stored alongside each transaction so history lookups hit an index
    instead of normalizing descriptions in SQL.
    """
    raw = f"{transaction_date.isoformat()}|{normalize_description(description)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def amounts_match(a: Decimal, b: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    return abs(Decimal(a) - Decimal(b)) < tolerance


def _identity(txn) -> tuple[date, str]:
    return txn.transaction_date, normalize_description(txn.description)


def partition_candidates(
    candidates: Iterable[ClassifiedTransaction],
    history: Iterable[StoredTransaction],
    user_id: Optional[str] = None,
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> DetectionResult:
    """Fold candidates against history into admitted and duplicate sets.

    Stored matches are tried newest first, so the most recently created row
    is the recorded evidence. A candidate that repeats an earlier admitted
    candidate of the same file is a duplicate of that candidate.
    """
    stored_by_identity: dict[tuple[date, str], list[StoredTransaction]] = {}
    for stored in history:
        if user_id is not None and stored.user_id != user_id:
            continue
        stored_by_identity.setdefault(_identity(stored), []).append(stored)
    for rows in stored_by_identity.values():
        rows.sort(key=lambda s: (s.created_at, s.id), reverse=True)

    admitted: list[ClassifiedTransaction] = []
    duplicates: list[DuplicateMatch] = []
    seen: dict[tuple[date, str], list[ClassifiedTransaction]] = {}

    for candidate in candidates:
        identity = _identity(candidate)

        stored = next(
            (
                s
                for s in stored_by_identity.get(identity, ())
                if amounts_match(candidate.amount, s.amount, tolerance)
            ),
            None,
        )
        if stored is not None:
            duplicates.append(
                DuplicateMatch(
                    candidate=candidate,
                    existing=stored,
                    matched_upload_batch_id=stored.upload_batch_id,
                )
            )
            continue

        earlier = next(
            (
                a
                for a in seen.get(identity, ())
                if amounts_match(candidate.amount, a.amount, tolerance)
            ),
            None,
        )
        if earlier is not None:
            duplicates.append(
                DuplicateMatch(candidate=candidate, existing=earlier, within_file=True)
            )
            continue

        admitted.append(candidate)
        seen.setdefault(identity, []).append(candidate)

    return DetectionResult(admitted=tuple(admitted), duplicates=tuple(duplicates))


class HistorySource(Protocol):
    def find_matching_history(
        self, user_id: str, match_keys: Sequence[str]
    ) -> list[StoredTransaction]:
        ...


def _chunks(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class DuplicateDetector:
    """Reads candidate history from ``source`` in bounded chunks, then partitions."""

    def __init__(self, source: HistorySource, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.source = source
        self.chunk_size = chunk_size

    def detect(
        self, user_id: str, candidates: Sequence[ClassifiedTransaction]
    ) -> DetectionResult:
        keys = list(
            dict.fromkeys(
                generate_match_key(c.transaction_date, c.description) for c in candidates
            )
        )
        history: dict[str, StoredTransaction] = {}
        lookups = 0
        for chunk in _chunks(keys, self.chunk_size):
            lookups += 1
            for stored in self.source.find_matching_history(user_id, chunk):
                history[stored.id] = stored

        result = partition_candidates(candidates, history.values(), user_id=user_id)
        logger.info(
            "duplicate_check_complete",
            user_id=user_id,
            candidates=len(candidates),
            history_rows=len(history),
            lookups=lookups,
            admitted=len(result.admitted),
            duplicates=len(result.duplicates),
        )
        return result
