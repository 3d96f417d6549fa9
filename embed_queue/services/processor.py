# =============================================================================
# Job Processor — One Embedding Job End-to-End
# =============================================================================
#
# Runs a job that the dispatcher has already claimed (job `processing`) and
# whose document lock is held (document `processing`).
#
# PIPELINE:
#   1. Load the document's chunks with a NULL embedding
#      → none left: document COMPLETE, job COMPLETE (no-op run)
#   2. Send all their texts to the embedding executor once
#      (sub-batching is the executor's job)
#   3. Persist each returned vector; one bad chunk does not stop the rest
#   4. Classify the document: 0 failed → COMPLETE, all failed → ERROR,
#      otherwise PARTIAL
#   5. Mark the job COMPLETE
#
# On an uncaught error in steps 1–5 the job goes back to PENDING with
# retry_count + 1, or to ERROR once retries are exhausted. It is NOT
# retried in this dispatch cycle; the next cycle picks it up.
#
# The processor never writes documents.embedding_status itself. It returns
# the status in ProcessOutcome and the lock manager writes it on release.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from embed_queue.db.models import EmbeddingJob, EmbeddingStatus, JobStatus, utcnow
from embed_queue.services.chunk_store import ChunkStore
from embed_queue.services.embedder import EmbeddingExecutor
from embed_queue.services.job_store import JobStore, truncate_error

logger = logging.getLogger(__name__)


@dataclass
class ProcessOutcome:
    """What happened to one job and its document during a run."""

    job_id: str
    document_id: str
    job_status: JobStatus
    document_status: EmbeddingStatus
    total_chunks: int = 0
    embedded: int = 0
    failed: int = 0
    total_tokens: int = 0
    failed_indices: set[int] = field(default_factory=set)
    retry_count: int = 0
    error: str | None = None


def classify_document_status(failed: int, total: int) -> EmbeddingStatus:
    """Derive the document's embedding status from per-run chunk counts."""
    if failed == 0:
        return EmbeddingStatus.COMPLETE
    if failed >= total:
        return EmbeddingStatus.ERROR
    return EmbeddingStatus.PARTIAL


class JobProcessor:
    """Embeds the pending chunks of one job's document."""

    def __init__(
        self,
        job_store: JobStore,
        chunk_store: ChunkStore,
        executor: EmbeddingExecutor,
    ):
        self.job_store = job_store
        self.chunk_store = chunk_store
        self.executor = executor

    async def run(self, job: EmbeddingJob) -> ProcessOutcome:
        """
        Process a claimed job and record its final or retry status.

        Store and provider errors are converted into job status transitions
        here. Only a failure to record that transition escapes.
        """
        prefix = f"[job {job.id}]"
        try:
            outcome = await self._embed_document(job, prefix)
        except Exception as exc:
            logger.exception("%s Embedding run failed: %s", prefix, exc)
            return await self.record_failure(job, exc)

        await self.job_store.update_job_status(
            job.id,
            JobStatus.COMPLETE,
            completed_at=utcnow(),
        )
        logger.info(
            "%s Complete: document %s → %s (%d/%d chunks embedded, %d tokens)",
            prefix, job.document_id, outcome.document_status.value,
            outcome.embedded, outcome.total_chunks, outcome.total_tokens,
        )
        return outcome

    async def _embed_document(
        self,
        job: EmbeddingJob,
        prefix: str,
    ) -> ProcessOutcome:
        chunks = await self.chunk_store.fetch_unembedded(job.document_id)

        if not chunks:
            logger.info(
                "%s No unembedded chunks for document %s", prefix, job.document_id,
            )
            return ProcessOutcome(
                job_id=job.id,
                document_id=job.document_id,
                job_status=JobStatus.COMPLETE,
                document_status=EmbeddingStatus.COMPLETE,
                retry_count=job.retry_count,
            )

        logger.info(
            "%s Embedding %d chunks for document %s",
            prefix, len(chunks), job.document_id,
        )
        batch = await self.executor.embed_batch([c.content for c in chunks])

        embedded = 0
        failed = len(batch.failed_indices)
        embedded_at = utcnow()

        for index, chunk in enumerate(chunks):
            if index in batch.failed_indices:
                continue

            vector = batch.embeddings[index]
            if vector is None:
                failed += 1
                continue

            try:
                saved = await self.chunk_store.save_embedding(
                    chunk.id, vector, self.executor.model, embedded_at,
                )
            except Exception as exc:
                logger.error(
                    "%s Failed to store embedding for chunk %s: %s",
                    prefix, chunk.id, exc,
                )
                failed += 1
                continue

            if saved:
                embedded += 1
            else:
                logger.warning("%s Chunk %s vanished before save", prefix, chunk.id)
                failed += 1

        return ProcessOutcome(
            job_id=job.id,
            document_id=job.document_id,
            job_status=JobStatus.COMPLETE,
            document_status=classify_document_status(failed, len(chunks)),
            total_chunks=len(chunks),
            embedded=embedded,
            failed=failed,
            total_tokens=batch.total_tokens,
            failed_indices=set(batch.failed_indices),
            retry_count=job.retry_count,
        )

    async def record_failure(
        self,
        job: EmbeddingJob,
        exc: Exception,
    ) -> ProcessOutcome:
        """
        Apply the retry policy to a claimed job whose attempt failed.

        Back to PENDING with retry_count + 1 while retries remain, otherwise
        ERROR. Also used by the dispatcher for failures outside run().
        """
        prefix = f"[job {job.id}]"
        error = truncate_error(str(exc) or exc.__class__.__name__)

        if job.retry_count < job.max_retries:
            retry_count = job.retry_count + 1
            await self.job_store.update_job_status(
                job.id,
                JobStatus.PENDING,
                retry_count=retry_count,
                error_message=error,
            )
            job_status = JobStatus.PENDING
            logger.warning(
                "%s Will retry (%d/%d)", prefix, retry_count, job.max_retries,
            )
        else:
            retry_count = job.retry_count
            await self.job_store.update_job_status(
                job.id,
                JobStatus.ERROR,
                error_message=error,
                completed_at=utcnow(),
            )
            job_status = JobStatus.ERROR
            logger.error(
                "%s Marked as error after %d retries", prefix, job.max_retries,
            )

        return ProcessOutcome(
            job_id=job.id,
            document_id=job.document_id,
            job_status=job_status,
            document_status=EmbeddingStatus.ERROR,
            retry_count=retry_count,
            error=error,
        )
