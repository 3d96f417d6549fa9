# =============================================================================
# API Dependencies — Trigger Auth & Queue Component Wiring
# =============================================================================
#
# DESIGN DECISION: Components are built per request from FastAPI
# dependencies rather than imported as module singletons. Tests swap the
# session factory or the embedding executor through
# `app.dependency_overrides` without patching module globals.
#
# DESIGN DECISION: The processing trigger is protected by a shared secret
# in the `x-cron-secret` header (the scheduler's only credential). The
# comparison is constant-time. An empty configured secret rejects every
# request, so a missing env var never leaves the trigger open.
# =============================================================================

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from embed_queue.config import Settings, get_settings
from embed_queue.db.engine import get_session_factory
from embed_queue.services.chunk_store import ChunkStore
from embed_queue.services.dispatcher import QueueDispatcher
from embed_queue.services.embedder import EmbeddingExecutor
from embed_queue.services.job_store import JobStore
from embed_queue.services.lock_manager import LockManager
from embed_queue.services.processor import JobProcessor
from embed_queue.services.stats import StatsAggregator

logger = logging.getLogger(__name__)


def verify_cron_secret(
    x_cron_secret: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Reject trigger requests without the configured shared secret.

    Raises:
        HTTPException 401: Header missing, mismatched, or no secret configured.
    """
    expected = settings.cron_secret
    if not expected:
        logger.warning("Rejected trigger request: CRON_SECRET is not configured")
        raise HTTPException(status_code=401, detail="Unauthorized")

    if x_cron_secret is None or not secrets.compare_digest(
        x_cron_secret.encode(), expected.encode(),
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_embedding_executor() -> EmbeddingExecutor:
    return EmbeddingExecutor()


def get_job_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JobStore:
    return JobStore(session_factory)


def get_lock_manager(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> LockManager:
    return LockManager(session_factory)


def get_stats_aggregator(
    job_store: JobStore = Depends(get_job_store),
) -> StatsAggregator:
    return StatsAggregator(job_store)


def get_dispatcher(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    job_store: JobStore = Depends(get_job_store),
    lock_manager: LockManager = Depends(get_lock_manager),
    executor: EmbeddingExecutor = Depends(get_embedding_executor),
    settings: Settings = Depends(get_settings),
) -> QueueDispatcher:
    processor = JobProcessor(
        job_store=job_store,
        chunk_store=ChunkStore(session_factory),
        executor=executor,
    )
    return QueueDispatcher(
        job_store=job_store,
        lock_manager=lock_manager,
        processor=processor,
        batch_size=settings.queue_batch_size,
    )
