# =============================================================================
# Unit Tests — Job Store & Stats Aggregator
# =============================================================================
#
# Test groups:
#   1. Idempotent enqueue (create_job)
#   2. Eligibility ordering (fetch_eligible_jobs)
#   3. Conditional transitions (claim_job / requeue_job)
#   4. Status updates, listing, operator recovery
#   5. Stats over the trailing window
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from embed_queue.db.models import EmbeddingJob, EmbeddingStatus, JobStatus, utcnow
from embed_queue.services.job_store import MAX_ERROR_MESSAGE_LENGTH, JobStore
from embed_queue.services.stats import StatsAggregator


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _load_job(sync_factory, job_id: str) -> EmbeddingJob:
    with sync_factory() as session:
        return session.get(EmbeddingJob, job_id)


# ---------------------------------------------------------------------------
# 1. Idempotent enqueue
# ---------------------------------------------------------------------------


class TestCreateJob:
    """Tests for JobStore.create_job()."""

    def test_creates_pending_job(self, session_factory, make_document):
        doc_id = make_document()
        job, created = _run(JobStore(session_factory).create_job(doc_id, priority=2))

        assert created is True
        assert job.status == JobStatus.PENDING
        assert job.priority == 2
        assert job.retry_count == 0
        assert job.max_retries == 3
        assert job.created_at is not None
        assert job.started_at is None

    def test_second_create_returns_same_job(self, session_factory, make_document):
        doc_id = make_document()
        store = JobStore(session_factory)

        async def scenario():
            first, first_created = await store.create_job(doc_id)
            second, second_created = await store.create_job(doc_id)
            return first, first_created, second, second_created

        first, first_created, second, second_created = _run(scenario())

        assert first_created is True
        assert second_created is False
        assert second.id == first.id

    def test_processing_job_counts_as_active(self, session_factory, make_document):
        doc_id = make_document()
        store = JobStore(session_factory)

        async def scenario():
            job, _ = await store.create_job(doc_id)
            await store.claim_job(job.id)
            again, created = await store.create_job(doc_id)
            return job, again, created

        job, again, created = _run(scenario())
        assert created is False
        assert again.id == job.id
        assert again.status == JobStatus.PROCESSING

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETE, JobStatus.ERROR])
    def test_terminal_job_allows_new_job(self, session_factory, make_document, terminal):
        doc_id = make_document()
        store = JobStore(session_factory)

        async def scenario():
            old, _ = await store.create_job(doc_id)
            await store.update_job_status(old.id, terminal, completed_at=utcnow())
            new, created = await store.create_job(doc_id)
            return old, new, created

        old, new, created = _run(scenario())
        assert created is True
        assert new.id != old.id

    def test_explicit_max_retries(self, session_factory, make_document):
        doc_id = make_document()
        job, _ = _run(JobStore(session_factory).create_job(doc_id, max_retries=7))
        assert job.max_retries == 7


# ---------------------------------------------------------------------------
# 2. Eligibility ordering
# ---------------------------------------------------------------------------


class TestFetchEligibleJobs:
    """Tests for JobStore.fetch_eligible_jobs()."""

    def test_orders_by_priority(self, session_factory, make_document):
        store = JobStore(session_factory)
        docs = [make_document() for _ in range(3)]

        async def scenario():
            for doc_id, priority in zip(docs, [3, 1, 2], strict=True):
                await store.create_job(doc_id, priority=priority)
            return await store.fetch_eligible_jobs(limit=5)

        jobs = _run(scenario())
        assert [j.priority for j in jobs] == [1, 2, 3]

    def test_ties_go_to_oldest(self, session_factory, make_document):
        store = JobStore(session_factory)
        docs = [make_document() for _ in range(3)]

        async def scenario():
            for doc_id in docs:
                await store.create_job(doc_id, priority=0)
            return await store.fetch_eligible_jobs(limit=5)

        jobs = _run(scenario())
        assert [j.document_id for j in jobs] == docs

    def test_respects_limit(self, session_factory, make_document):
        store = JobStore(session_factory)
        docs = [make_document() for _ in range(7)]

        async def scenario():
            for doc_id in docs:
                await store.create_job(doc_id)
            return await store.fetch_eligible_jobs(limit=5)

        assert len(_run(scenario())) == 5

    def test_only_pending_jobs(self, session_factory, make_document):
        store = JobStore(session_factory)
        docs = [make_document() for _ in range(4)]

        async def scenario():
            jobs = [(await store.create_job(d))[0] for d in docs]
            await store.claim_job(jobs[0].id)
            await store.update_job_status(jobs[1].id, JobStatus.COMPLETE)
            await store.update_job_status(jobs[2].id, JobStatus.ERROR)
            return jobs, await store.fetch_eligible_jobs(limit=5)

        jobs, eligible = _run(scenario())
        assert [j.id for j in eligible] == [jobs[3].id]

    def test_skips_jobs_of_locked_documents(self, session_factory, make_document):
        store = JobStore(session_factory)
        locked = make_document(status=EmbeddingStatus.PROCESSING)
        finished = make_document(status=EmbeddingStatus.PARTIAL)

        async def scenario():
            await store.create_job(locked, priority=0)
            ready, _ = await store.create_job(finished, priority=1)
            return ready, await store.fetch_eligible_jobs(limit=5)

        ready, eligible = _run(scenario())
        assert [j.id for j in eligible] == [ready.id]

    def test_empty_queue(self, session_factory):
        assert _run(JobStore(session_factory).fetch_eligible_jobs(limit=5)) == []


# ---------------------------------------------------------------------------
# 3. Conditional transitions
# ---------------------------------------------------------------------------


class TestClaimAndRequeue:
    """Tests for claim_job() / requeue_job()."""

    def test_claim_sets_processing_and_started_at(
        self, session_factory, make_document, sync_factory,
    ):
        store = JobStore(session_factory)
        job, _ = _run(store.create_job(make_document()))

        assert _run(store.claim_job(job.id)) is True

        row = _load_job(sync_factory, job.id)
        assert row.status == JobStatus.PROCESSING
        assert row.started_at is not None

    def test_claim_is_exclusive(self, session_factory, make_document):
        store = JobStore(session_factory)
        job, _ = _run(store.create_job(make_document()))

        async def scenario():
            return await asyncio.gather(*(store.claim_job(job.id) for _ in range(5)))

        assert _run(scenario()).count(True) == 1

    def test_requeue_returns_to_pending_without_retry(
        self, session_factory, make_document, sync_factory,
    ):
        store = JobStore(session_factory)

        async def scenario():
            job, _ = await store.create_job(make_document())
            await store.claim_job(job.id)
            requeued = await store.requeue_job(job.id)
            return job, requeued

        job, requeued = _run(scenario())
        row = _load_job(sync_factory, job.id)

        assert requeued is True
        assert row.status == JobStatus.PENDING
        assert row.retry_count == 0
        assert row.started_at is None

    def test_requeue_ignores_non_processing_job(self, session_factory, make_document):
        store = JobStore(session_factory)
        job, _ = _run(store.create_job(make_document()))
        assert _run(store.requeue_job(job.id)) is False


# ---------------------------------------------------------------------------
# 4. Status updates, listing, operator recovery
# ---------------------------------------------------------------------------


class TestUpdatesAndListing:
    """Tests for update_job_status(), get_job(), list_jobs()."""

    def test_update_truncates_error_message(
        self, session_factory, make_document, sync_factory,
    ):
        store = JobStore(session_factory)

        async def scenario():
            job, _ = await store.create_job(make_document())
            await store.update_job_status(
                job.id, JobStatus.PENDING, retry_count=1, error_message="x" * 5000,
            )
            return job

        job = _run(scenario())
        row = _load_job(sync_factory, job.id)
        assert row.retry_count == 1
        assert len(row.error_message) == MAX_ERROR_MESSAGE_LENGTH

    def test_update_rejects_unknown_fields(self, session_factory):
        store = JobStore(session_factory)
        with pytest.raises(ValueError):
            _run(store.update_job_status("j1", JobStatus.COMPLETE, priority=9))

    def test_get_job(self, session_factory, make_document):
        store = JobStore(session_factory)
        job, _ = _run(store.create_job(make_document()))

        assert _run(store.get_job(job.id)).id == job.id
        assert _run(store.get_job("missing")) is None

    def test_list_jobs_filters(self, session_factory, make_document):
        store = JobStore(session_factory)
        doc_a, doc_b = make_document(), make_document()

        async def scenario():
            a, _ = await store.create_job(doc_a)
            b, _ = await store.create_job(doc_b)
            await store.update_job_status(b.id, JobStatus.COMPLETE)
            return (
                a, b,
                await store.list_jobs(),
                await store.list_jobs(status=JobStatus.COMPLETE),
                await store.list_jobs(document_id=doc_a),
            )

        a, b, everything, complete, for_a = _run(scenario())
        assert [j.id for j in everything] == [b.id, a.id]  # newest first
        assert [j.id for j in complete] == [b.id]
        assert [j.id for j in for_a] == [a.id]

    def test_requeue_stuck_jobs(self, session_factory, make_document, sync_factory):
        store = JobStore(session_factory)
        doc_id = make_document()

        async def scenario():
            job, _ = await store.create_job(doc_id)
            await store.claim_job(job.id)
            return job, await store.requeue_stuck_jobs(doc_id)

        job, count = _run(scenario())
        row = _load_job(sync_factory, job.id)

        assert count == 1
        assert row.status == JobStatus.PENDING
        assert "operator" in row.error_message


# ---------------------------------------------------------------------------
# 5. Stats
# ---------------------------------------------------------------------------


class TestStats:
    """Tests for count_jobs_by_status_since() and StatsAggregator."""

    def test_counts_by_status(self, session_factory, make_document):
        store = JobStore(session_factory)
        docs = [make_document() for _ in range(5)]

        async def scenario():
            jobs = [(await store.create_job(d))[0] for d in docs]
            await store.claim_job(jobs[0].id)
            await store.update_job_status(jobs[1].id, JobStatus.COMPLETE)
            await store.update_job_status(jobs[2].id, JobStatus.COMPLETE)
            await store.update_job_status(jobs[3].id, JobStatus.ERROR)
            return await StatsAggregator(store).get_stats()

        stats = _run(scenario())
        assert stats.pending == 1
        assert stats.processing == 1
        assert stats.complete == 2
        assert stats.error == 1
        assert stats.total == 5

    def test_window_excludes_old_jobs(self, session_factory, make_document, sync_factory):
        store = JobStore(session_factory)
        job, _ = _run(store.create_job(make_document()))
        _run(store.create_job(make_document()))

        with sync_factory() as session:
            row = session.get(EmbeddingJob, job.id)
            row.created_at = utcnow() - timedelta(hours=25)
            session.commit()

        stats = _run(StatsAggregator(store).get_stats())
        assert stats.pending == 1
        assert stats.total == 1

    def test_empty_window(self, session_factory):
        store = JobStore(session_factory)
        stats = _run(StatsAggregator(store).get_stats(window=timedelta(hours=1)))
        assert stats.total == 0
        assert _run(store.count_jobs_by_status_since(utcnow())) == {}
