# =============================================================================
# Queue Dispatcher — One Dispatch Cycle
# =============================================================================
#
# Invoked by Celery beat (time-based) or POST /jobs/process (on demand).
#
# PER CYCLE:
#   1. Fetch up to `batch_size` pending jobs (priority ASC, created_at ASC)
#   2. For each job, strictly one after another:
#        a. claim it (pending → processing, conditional UPDATE)
#           → lost the race to an overlapping cycle: skip
#        b. run the processor under the document lock
#           → lock held by another pass: requeue the job, skip
#           → any other error after the claim (lock store, requeue, the
#             processor's final status write): retry bookkeeping, so the
#             job never stays `processing`
#        c. tally the outcome
#      Each job is wrapped on its own, so one job's crash cannot abort
#      the rest of the batch.
#
# Jobs whose document is already `processing` are not fetched at all, so
# a handful of stuck documents cannot fill every batch and starve the rest
# of the queue. The lock acquire stays the authoritative gate.
#
# DESIGN DECISION: Sequential, not concurrent.
# Bounds load on the embedding provider and keeps failure attribution
# simple. Overlapping cycles are still safe: correctness comes from the two
# conditional UPDATEs (job claim, document lock), not from running a single
# dispatcher instance.
#
# The dispatcher keeps no state between cycles; every decision is
# re-derived from the database.
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from embed_queue.config import settings
from embed_queue.db.models import EmbeddingJob, JobStatus
from embed_queue.services.job_store import JobStore
from embed_queue.services.lock_manager import LockHeldError, LockManager
from embed_queue.services.processor import JobProcessor, ProcessOutcome

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Counters for one dispatch cycle."""

    processed: int = 0  # jobs that reached COMPLETE
    failed: int = 0     # jobs that reached ERROR, or crashed the wrapper
    retried: int = 0    # jobs sent back to PENDING for a later cycle
    skipped: int = 0    # claimed elsewhere, or document lock held
    fetched: int = 0
    duration_ms: int = 0

    @property
    def message(self) -> str:
        if self.fetched == 0:
            return "No jobs to process"
        return f"Processed {self.fetched} jobs"


class QueueDispatcher:
    """Drives the job processor over a bounded batch of eligible jobs."""

    def __init__(
        self,
        job_store: JobStore,
        lock_manager: LockManager,
        processor: JobProcessor,
        batch_size: int | None = None,
    ):
        self.job_store = job_store
        self.lock_manager = lock_manager
        self.processor = processor
        self.batch_size = batch_size or settings.queue_batch_size

    async def dispatch(self) -> DispatchResult:
        """Run one dispatch cycle and return its counters."""
        start_time = time.monotonic()
        result = DispatchResult()

        jobs = await self.job_store.fetch_eligible_jobs(self.batch_size)
        result.fetched = len(jobs)

        if not jobs:
            logger.info("No pending embedding jobs")
        else:
            logger.info("Processing %d embedding jobs", len(jobs))

        for job in jobs:
            job_start = time.monotonic()
            try:
                outcome = await self._run_job(job)
            except Exception:
                logger.exception("[job %s] Unhandled failure", job.id)
                result.failed += 1
                continue

            job_ms = int((time.monotonic() - job_start) * 1000)
            if outcome is None:
                result.skipped += 1
            elif outcome.job_status == JobStatus.COMPLETE:
                result.processed += 1
                logger.info("[job %s] Completed in %dms", job.id, job_ms)
            elif outcome.job_status == JobStatus.PENDING:
                result.retried += 1
            else:
                result.failed += 1

        result.duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "Dispatch cycle done: processed=%d failed=%d retried=%d "
            "skipped=%d in %dms",
            result.processed, result.failed, result.retried,
            result.skipped, result.duration_ms,
        )
        return result

    async def _run_job(self, job: EmbeddingJob) -> ProcessOutcome | None:
        """Claim, lock and process one job. Returns None when skipped."""
        if not await self.job_store.claim_job(job.id):
            logger.info("[job %s] Already claimed by another dispatch", job.id)
            return None

        # From here on the job is `processing`; every exit must move it on,
        # or no later cycle will ever see it again.
        try:
            try:
                return await self.lock_manager.with_lock(
                    job.document_id,
                    final_status=lambda outcome: outcome.document_status,
                    operation=lambda: self.processor.run(job),
                )
            except LockHeldError:
                logger.info(
                    "[job %s] Document %s is locked; skipping this cycle",
                    job.id, job.document_id,
                )
                await self.job_store.requeue_job(job.id)
                return None
        except Exception as exc:
            logger.exception("[job %s] Failed after claim: %s", job.id, exc)
            return await self.processor.record_failure(job, exc)
