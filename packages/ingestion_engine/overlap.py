"""File-level overlap statistics: does this upload repeat an earlier one?"""

from collections import Counter
from typing import Mapping, Optional, Sequence

from .models import DuplicateMatch, OverlapReport, UploadBatch

REUPLOAD_OVERLAP_PERCENT = 30.0
BATCH_MATCH_CAP = 10
BATCH_MATCH_FRACTION = 0.5


def _recency(batch: Optional[UploadBatch]) -> float:
    return batch.uploaded_at.timestamp() if batch else float("-inf")


def analyze_overlap(
    duplicates: Sequence[DuplicateMatch],
    candidate_count: int,
    filename: str,
    batches: Optional[Mapping[str, UploadBatch]] = None,
    same_filename_batches: Sequence[UploadBatch] = (),
) -> OverlapReport:
    """Summarize how much of an upload already exists in earlier uploads.

    Args:
        duplicates: Matches produced by the duplicate detector.
        candidate_count: Transactions parsed from the file.
        filename: Name of the uploaded file.
        batches: Earlier upload batches keyed by id, for every batch id
            referenced by ``duplicates``.
        same_filename_batches: The user's earlier batches with this filename.
            The most recent one is the most similar batch whenever present.

    Returns:
        OverlapReport. Equal match counts resolve to the most recent batch.
    """
    batches = batches or {}
    duplicate_count = len(duplicates)
    overlap_percentage = (
        duplicate_count / candidate_count * 100 if candidate_count > 0 else 0.0
    )

    counts = Counter(
        d.matched_upload_batch_id
        for d in duplicates
        if d.matched_upload_batch_id and not d.within_file
    )

    exact = [b for b in same_filename_batches if b.filename == filename]
    latest_exact = max(exact, key=lambda b: (_recency(b), b.id)) if exact else None

    top_batch_id, top_count = None, 0
    if counts:
        top_batch_id = max(
            counts, key=lambda bid: (counts[bid], _recency(batches.get(bid)), bid)
        )
        top_count = counts[top_batch_id]

    if latest_exact is not None:
        most_similar = latest_exact
    elif top_batch_id is not None:
        most_similar = batches.get(top_batch_id)
    else:
        most_similar = None
    overlap_count = counts.get(most_similar.id, 0) if most_similar else 0

    reasons = []
    if overlap_percentage >= REUPLOAD_OVERLAP_PERCENT:
        reasons.append(f"{overlap_percentage:.0f}% of transactions already exist")
    if latest_exact is not None:
        reasons.append(f"a file named '{filename}' was uploaded before")
    threshold = min(BATCH_MATCH_CAP, candidate_count * BATCH_MATCH_FRACTION)
    if top_count > 0 and top_count >= threshold:
        reasons.append(f"{top_count} transactions match a single earlier upload")

    return OverlapReport(
        overlap_percentage=round(overlap_percentage, 2),
        is_likely_reupload=bool(reasons),
        most_similar_batch=most_similar,
        overlap_count=overlap_count,
        exact_filename_match=latest_exact is not None,
        batch_match_counts=dict(counts),
        reasons=tuple(reasons),
    )
