# =============================================================================
# Jobs API — Enqueue, Process, Observe
# =============================================================================
#
# ENDPOINTS:
#   POST /jobs/create                          — enqueue a document (idempotent)
#   POST /jobs/process                         — run one dispatch cycle (secret)
#   GET  /jobs/stats                           — counts by status, trailing 24h
#   GET  /jobs                                 — list jobs (newest first)
#   GET  /jobs/{job_id}                        — one job
#   POST /jobs/documents/{document_id}/recover — operator unlock (secret)
#
# DESIGN DECISION: POST /jobs/process runs the dispatch cycle inside the
# request. The caller is a scheduler with a wall-clock budget, and it needs
# the counters back. Celery beat runs the same cycle on its own cadence;
# overlapping the two is safe.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from embed_queue.api.deps import (
    get_dispatcher,
    get_job_store,
    get_lock_manager,
    get_stats_aggregator,
    verify_cron_secret,
)
from embed_queue.db.engine import get_async_session
from embed_queue.db.models import Document, EmbeddingJob, EmbeddingStatus, JobStatus
from embed_queue.models.requests import CreateJobRequest
from embed_queue.models.responses import (
    CreateJobResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    ProcessJobsResponse,
    RecoverDocumentResponse,
)
from embed_queue.services.dispatcher import QueueDispatcher
from embed_queue.services.job_store import JobStore
from embed_queue.services.lock_manager import LockManager
from embed_queue.services.stats import StatsAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Embedding Jobs"])


# ---------------------------------------------------------------------------
# POST /jobs/create — Enqueue a document
# ---------------------------------------------------------------------------


@router.post(
    "/create",
    response_model=CreateJobResponse,
    summary="Add a document to the embedding queue",
    description=(
        "Creates a pending embedding job for the document. If the document "
        "already has a pending or processing job, that job is returned "
        "instead and nothing is inserted."
    ),
)
async def create_job(
    request: CreateJobRequest,
    job_store: JobStore = Depends(get_job_store),
    session: AsyncSession = Depends(get_async_session),
) -> CreateJobResponse:
    document_id = (request.document_id or "").strip()
    if not document_id:
        raise HTTPException(status_code=400, detail="documentId is required")

    if await session.get(Document, document_id) is None:
        raise HTTPException(
            status_code=404, detail=f"Document {document_id} not found.",
        )

    job, created = await job_store.create_job(document_id, request.priority)

    return CreateJobResponse(
        job_id=job.id,
        status=job.status.value,
        message="Job added to queue" if created else "Job already in queue",
        created=created,
    )


# ---------------------------------------------------------------------------
# POST /jobs/process — Run one dispatch cycle
# ---------------------------------------------------------------------------


@router.post(
    "/process",
    response_model=ProcessJobsResponse,
    summary="Process a batch of pending embedding jobs",
    dependencies=[Depends(verify_cron_secret)],
)
async def process_jobs(
    dispatcher: QueueDispatcher = Depends(get_dispatcher),
) -> ProcessJobsResponse:
    result = await dispatcher.dispatch()
    return ProcessJobsResponse(
        processed=result.processed,
        failed=result.failed,
        retried=result.retried,
        skipped=result.skipped,
        duration_ms=result.duration_ms,
        message=result.message,
    )


# ---------------------------------------------------------------------------
# GET /jobs/stats — Queue statistics
# ---------------------------------------------------------------------------


@router.get(
    "/stats",
    response_model=JobStatsResponse,
    summary="Job counts by status over the trailing window",
)
async def get_job_stats(
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
) -> JobStatsResponse:
    stats = await aggregator.get_stats()
    return JobStatsResponse(
        pending=stats.pending,
        processing=stats.processing,
        complete=stats.complete,
        error=stats.error,
        total=stats.total,
    )


# ---------------------------------------------------------------------------
# GET /jobs — List jobs
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=JobListResponse,
    summary="List embedding jobs",
)
async def list_jobs(
    status: JobStatus | None = Query(default=None),
    document_id: str | None = Query(default=None, alias="documentId"),
    limit: int = Query(default=50, ge=1, le=500),
    job_store: JobStore = Depends(get_job_store),
) -> JobListResponse:
    jobs = await job_store.list_jobs(
        status=status, document_id=document_id, limit=limit,
    )
    return JobListResponse(
        jobs=[_to_job_response(job) for job in jobs],
        total=len(jobs),
    )


# ---------------------------------------------------------------------------
# GET /jobs/{job_id} — Job details
# ---------------------------------------------------------------------------


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get one embedding job",
)
async def get_job(
    job_id: str,
    job_store: JobStore = Depends(get_job_store),
) -> JobResponse:
    job = await job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found.")
    return _to_job_response(job)


# ---------------------------------------------------------------------------
# POST /jobs/documents/{document_id}/recover — Operator unlock
# ---------------------------------------------------------------------------


@router.post(
    "/documents/{document_id}/recover",
    response_model=RecoverDocumentResponse,
    summary="Reset a document stuck in `processing`",
    description=(
        "Locks are never reclaimed automatically. Use this after a worker "
        "died mid-run: the document goes back to `idle` and its stuck "
        "`processing` jobs go back to `pending`."
    ),
    dependencies=[Depends(verify_cron_secret)],
)
async def recover_document(
    document_id: str,
    job_store: JobStore = Depends(get_job_store),
    lock_manager: LockManager = Depends(get_lock_manager),
    session: AsyncSession = Depends(get_async_session),
) -> RecoverDocumentResponse:
    if await session.get(Document, document_id) is None:
        raise HTTPException(
            status_code=404, detail=f"Document {document_id} not found.",
        )

    logger.warning("Operator recovery requested for document %s", document_id)
    await lock_manager.release(document_id, EmbeddingStatus.IDLE)
    requeued = await job_store.requeue_stuck_jobs(document_id)
    still_locked = await lock_manager.is_locked(document_id)

    return RecoverDocumentResponse(
        document_id=document_id,
        embedding_status=(
            EmbeddingStatus.PROCESSING if still_locked else EmbeddingStatus.IDLE
        ).value,
        requeued_jobs=requeued,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_job_response(job: EmbeddingJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        document_id=job.document_id,
        status=job.status.value,
        priority=job.priority,
        retry_count=job.retry_count,
        max_retries=job.max_retries,
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )
