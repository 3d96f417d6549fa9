# =============================================================================
# Celery Task Definitions — Periodic Embedding Dispatch
# =============================================================================
#
# `dispatch_embedding_jobs` runs exactly one dispatch cycle, the same cycle
# POST /jobs/process runs.
#
# IMPORTANT: Celery workers are SYNCHRONOUS. The queue core is async, so the
# task drives it with asyncio.run(). Each run gets a fresh event loop, which
# is why it builds its own NullPool engine instead of reusing the API's
# pooled one (pooled asyncpg connections are bound to their original loop).
#
# NO CELERY RETRIES:
# Retry bookkeeping lives on the job rows (retry_count / max_retries). A
# failed job goes back to `pending` and the next beat tick picks it up, so
# the beat cadence is the retry backoff.
# =============================================================================

import asyncio
import logging

from embed_queue.db.engine import create_worker_session_factory
from embed_queue.services.chunk_store import ChunkStore
from embed_queue.services.dispatcher import DispatchResult, QueueDispatcher
from embed_queue.services.embedder import EmbeddingExecutor
from embed_queue.services.job_store import JobStore
from embed_queue.services.lock_manager import LockManager
from embed_queue.services.processor import JobProcessor
from embed_queue.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_dispatch_cycle(database_url: str | None = None) -> DispatchResult:
    """Build the queue components on a throwaway engine and dispatch once."""
    engine, session_factory = create_worker_session_factory(database_url)
    try:
        job_store = JobStore(session_factory)
        dispatcher = QueueDispatcher(
            job_store=job_store,
            lock_manager=LockManager(session_factory),
            processor=JobProcessor(
                job_store=job_store,
                chunk_store=ChunkStore(session_factory),
                executor=EmbeddingExecutor(),
            ),
        )
        return await dispatcher.dispatch()
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="dispatch_embedding_jobs")
def dispatch_embedding_jobs(self) -> dict:
    """
    Run one dispatch cycle over pending embedding jobs.

    Returns:
        dict with the cycle's counters (processed, failed, retried,
        skipped, duration_ms).
    """
    task_id = self.request.id
    logger.info("[%s] Starting embedding dispatch cycle", task_id)

    result = asyncio.run(run_dispatch_cycle())

    summary = {
        "processed": result.processed,
        "failed": result.failed,
        "retried": result.retried,
        "skipped": result.skipped,
        "duration_ms": result.duration_ms,
    }
    logger.info("[%s] Dispatch cycle finished: %s", task_id, summary)
    return summary
