# =============================================================================
# Job Store — Data Access for embedding_jobs
# =============================================================================
#
# Pure data access: no retry policy, no locking decisions. Every method opens
# its own short session from the injected factory and commits before
# returning, so each status change is durable on its own.
#
# CONDITIONAL UPDATES:
# claim_job() and requeue_job() are compare-and-swap style UPDATEs
# (`WHERE id = :id AND status = :expected`). Two overlapping dispatch cycles
# can fetch the same pending job; only one of them gets rowcount == 1 on
# the claim.
#
# IDEMPOTENT ENQUEUE:
# create_job() looks up an active (pending/processing) job for the document
# before inserting. The lookup and the insert are separate statements, so
# two simultaneous callers can both insert. That duplicate row is harmless:
# the document lock still allows only one embedding pass at a time, and the
# second job finds no unembedded chunks left.
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from embed_queue.config import settings
from embed_queue.db.models import (
    ACTIVE_JOB_STATUSES,
    Document,
    EmbeddingJob,
    EmbeddingStatus,
    JobStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

# Columns update_job_status() may touch besides `status`
_UPDATABLE_FIELDS = frozenset(
    {"retry_count", "error_message", "started_at", "completed_at"}
)

# error_message is overwritten on each failed attempt; keep it bounded
MAX_ERROR_MESSAGE_LENGTH = 1000


def truncate_error(message: str | None) -> str | None:
    if message is None:
        return None
    return message[:MAX_ERROR_MESSAGE_LENGTH]


class JobStore:
    """Durable table of embedding jobs."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_job(
        self,
        document_id: str,
        priority: int = 0,
        max_retries: int | None = None,
    ) -> tuple[EmbeddingJob, bool]:
        """
        Enqueue a job for a document, or return the one already active.

        Returns:
            (job, created): `created` is False when an active job for the
            document already existed and was returned instead.
        """
        async with self._session_factory() as session:
            stmt = (
                select(EmbeddingJob)
                .where(
                    EmbeddingJob.document_id == document_id,
                    EmbeddingJob.status.in_(ACTIVE_JOB_STATUSES),
                )
                .order_by(EmbeddingJob.created_at.asc())
                .limit(1)
            )
            existing = (await session.execute(stmt)).scalar_one_or_none()
            if existing is not None:
                logger.info(
                    "Job already queued for document %s: %s (%s)",
                    document_id, existing.id, existing.status.value,
                )
                return existing, False

            job = EmbeddingJob(
                document_id=document_id,
                priority=priority,
                status=JobStatus.PENDING,
                retry_count=0,
                max_retries=(
                    max_retries if max_retries is not None
                    else settings.job_max_retries
                ),
                created_at=utcnow(),
            )
            session.add(job)
            await session.commit()

        logger.info(
            "Created embedding job %s for document %s (priority=%d)",
            job.id, document_id, priority,
        )
        return job, True

    async def fetch_eligible_jobs(self, limit: int) -> list[EmbeddingJob]:
        """
        Pending jobs, lowest priority value first, then oldest first.

        Jobs whose document is currently `processing` are left out; they
        would only be claimed and requeued again. The lock acquire, not this
        filter, decides who may embed a document.
        """
        async with self._session_factory() as session:
            stmt = (
                select(EmbeddingJob)
                .join(Document, Document.id == EmbeddingJob.document_id)
                .where(
                    EmbeddingJob.status == JobStatus.PENDING,
                    Document.embedding_status != EmbeddingStatus.PROCESSING,
                )
                .order_by(
                    EmbeddingJob.priority.asc(),
                    EmbeddingJob.created_at.asc(),
                )
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def claim_job(self, job_id: str) -> bool:
        """
        Move a job pending → processing and stamp started_at.

        Returns True only if this call performed the transition.
        """
        return await self._transition(
            job_id,
            expected=JobStatus.PENDING,
            values={"status": JobStatus.PROCESSING, "started_at": utcnow()},
        )

    async def requeue_job(self, job_id: str) -> bool:
        """
        Move a job processing → pending without retry bookkeeping.

        Used when the job was claimed but its document turned out to be
        locked by another pass: the attempt never started, so it must not
        count against max_retries.
        """
        return await self._transition(
            job_id,
            expected=JobStatus.PROCESSING,
            values={"status": JobStatus.PENDING, "started_at": None},
        )

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        **fields: Any,
    ) -> None:
        """
        Unconditionally set a job's status plus any bookkeeping fields.

        Accepted fields: retry_count, error_message, started_at, completed_at.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

        values: dict[str, Any] = {"status": status, **fields}
        if "error_message" in values:
            values["error_message"] = truncate_error(values["error_message"])

        async with self._session_factory() as session:
            await session.execute(
                update(EmbeddingJob)
                .where(EmbeddingJob.id == job_id)
                .values(**values)
            )
            await session.commit()

    async def get_job(self, job_id: str) -> EmbeddingJob | None:
        async with self._session_factory() as session:
            return await session.get(EmbeddingJob, job_id)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        document_id: str | None = None,
        limit: int = 50,
    ) -> list[EmbeddingJob]:
        """Newest jobs first, optionally filtered by status and document."""
        stmt = select(EmbeddingJob).order_by(EmbeddingJob.created_at.desc())
        if status is not None:
            stmt = stmt.where(EmbeddingJob.status == status)
        if document_id is not None:
            stmt = stmt.where(EmbeddingJob.document_id == document_id)
        stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_jobs_by_status_since(
        self,
        since: datetime,
    ) -> dict[str, int]:
        """Job counts grouped by status for jobs created at or after `since`."""
        stmt = (
            select(EmbeddingJob.status, func.count(EmbeddingJob.id))
            .where(EmbeddingJob.created_at >= since)
            .group_by(EmbeddingJob.status)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return {JobStatus(status).value: count for status, count in rows}

    async def requeue_stuck_jobs(self, document_id: str) -> int:
        """
        Operator recovery: return every `processing` job of a document to
        `pending`. Returns the number of jobs moved.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(EmbeddingJob)
                .where(
                    EmbeddingJob.document_id == document_id,
                    EmbeddingJob.status == JobStatus.PROCESSING,
                )
                .values(
                    status=JobStatus.PENDING,
                    started_at=None,
                    error_message="Requeued by operator after stuck processing",
                )
            )
            await session.commit()

        count = result.rowcount or 0
        if count:
            logger.warning(
                "Requeued %d stuck job(s) for document %s", count, document_id,
            )
        return count

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    async def _transition(
        self,
        job_id: str,
        expected: JobStatus,
        values: dict[str, Any],
    ) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(EmbeddingJob)
                .where(
                    EmbeddingJob.id == job_id,
                    EmbeddingJob.status == expected,
                )
                .values(**values)
            )
            await session.commit()
        return result.rowcount == 1
