# =============================================================================
# Unit Tests — Celery Dispatch Task
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

from embed_queue.db.models import EmbeddingStatus
from embed_queue.services.dispatcher import DispatchResult
from embed_queue.services.job_store import JobStore
from embed_queue.workers.celery_app import celery_app
from embed_queue.workers.tasks import dispatch_embedding_jobs, run_dispatch_cycle


class TestRunDispatchCycle:

    def test_empty_queue(self, db_url):
        result = asyncio.run(run_dispatch_cycle(db_url))

        assert isinstance(result, DispatchResult)
        assert result.fetched == 0
        assert result.processed == 0

    def test_locked_document_job_waits(self, db_url, session_factory, make_document):
        """Runs the real components end to end without touching the provider."""
        doc_id = make_document(chunks=["a"], status=EmbeddingStatus.PROCESSING)
        asyncio.run(JobStore(session_factory).create_job(doc_id))

        result = asyncio.run(run_dispatch_cycle(db_url))

        assert result.fetched == 0
        assert result.skipped == 0


class TestDispatchTask:

    def test_returns_summary(self):
        cycle = AsyncMock(
            return_value=DispatchResult(
                processed=2, failed=1, retried=1, skipped=0, fetched=4, duration_ms=12,
            )
        )
        with patch("embed_queue.workers.tasks.run_dispatch_cycle", cycle):
            summary = dispatch_embedding_jobs.apply().get()

        assert summary == {
            "processed": 2,
            "failed": 1,
            "retried": 1,
            "skipped": 0,
            "duration_ms": 12,
        }
        cycle.assert_awaited_once()

    def test_registered_with_beat(self):
        schedule = celery_app.conf.beat_schedule["dispatch-embedding-jobs"]
        assert schedule["task"] == "dispatch_embedding_jobs"
        assert schedule["schedule"] == 60
