"""Ingestion router: statement upload and upload history endpoints."""

import structlog
from fastapi import APIRouter, Depends, File, Query, UploadFile
from starlette.concurrency import run_in_threadpool

from apps.api.core.auth import get_current_user_id
from apps.api.core.errors import InputFormatError, PayloadTooLargeError
from apps.api.domains.ingestion.schemas import (
    DeleteUploadOut,
    PaginationOut,
    TransactionOut,
    UploadAnalysisOut,
    UploadListOut,
    UploadOut,
    UploadReport,
    UploadTransactionsOut,
)
from apps.api.domains.ingestion.service import IngestionService, get_ingestion_service

router = APIRouter(prefix="/ingest", tags=["ingestion"])
logger = structlog.get_logger()

ALLOWED_EXTENSIONS = (".csv", ".txt")


@router.post("/csv", response_model=UploadReport)
async def ingest_csv(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Ingest one statement export (CSV).

    New transactions are stored; ones already on record are skipped and
    reported, together with overlap and budget figures.
    """
    filename = file.filename or ""
    try:
        if not filename.lower().endswith(ALLOWED_EXTENSIONS):
            logger.warning("upload_rejected", reason="unsupported_type", filename=filename)
            raise InputFormatError(
                f"Unsupported file type. Accepted: {', '.join(ALLOWED_EXTENSIONS)}"
            )

        limit = service.max_upload_bytes
        contents = await file.read(limit + 1)
        if len(contents) > limit:
            logger.warning("upload_rejected", reason="too_large", filename=filename)
            raise PayloadTooLargeError(f"File too large (max {limit // (1024 * 1024)}MB)")

        result = await run_in_threadpool(service.ingest, user_id, filename, contents)
    finally:
        await file.close()

    return UploadReport.from_result(result)


@router.get("/uploads", response_model=UploadListOut)
async def list_uploads(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """The caller's uploads, newest first."""
    batches, total = await run_in_threadpool(service.list_uploads, user_id, limit, offset)
    return UploadListOut(
        uploads=[UploadOut.from_batch(b) for b in batches],
        pagination=PaginationOut(
            total=total, limit=limit, offset=offset, has_more=offset + len(batches) < total
        ),
    )


@router.get("/uploads/{upload_id}/transactions", response_model=UploadTransactionsOut)
async def get_upload_transactions(
    upload_id: str,
    user_id: str = Depends(get_current_user_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    batch, rows = await run_in_threadpool(
        service.get_upload_transactions, user_id, upload_id
    )
    return UploadTransactionsOut(
        upload=UploadOut.from_batch(batch),
        transactions=[TransactionOut.from_stored(t) for t in rows],
        count=len(rows),
    )


@router.get("/uploads/{upload_id}/analysis", response_model=UploadAnalysisOut)
async def get_upload_analysis(
    upload_id: str,
    user_id: str = Depends(get_current_user_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Spending by category for one upload, compared with this month's budget."""
    analysis = await run_in_threadpool(service.get_upload_analysis, user_id, upload_id)
    return UploadAnalysisOut.from_analysis(analysis)


@router.delete("/uploads/{upload_id}", response_model=DeleteUploadOut)
async def delete_upload(
    upload_id: str,
    user_id: str = Depends(get_current_user_id),
    service: IngestionService = Depends(get_ingestion_service),
):
    """Remove an upload together with the transactions it added."""
    deleted = await run_in_threadpool(service.delete_upload, user_id, upload_id)
    return DeleteUploadOut(upload_id=upload_id, deleted_transactions=deleted)
