"""Read-only rollup of embedding job counts over a trailing window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from embed_queue.config import settings
from embed_queue.db.models import JobStatus, utcnow
from embed_queue.services.job_store import JobStore


@dataclass(frozen=True)
class JobStats:
    pending: int = 0
    processing: int = 0
    complete: int = 0
    error: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.complete + self.error


class StatsAggregator:
    def __init__(self, job_store: JobStore):
        self.job_store = job_store

    async def get_stats(self, window: timedelta | None = None) -> JobStats:
        """Counts of jobs created within `window` (default: stats_window_hours)."""
        window = window or timedelta(hours=settings.stats_window_hours)
        counts = await self.job_store.count_jobs_by_status_since(utcnow() - window)
        return JobStats(
            pending=counts.get(JobStatus.PENDING.value, 0),
            processing=counts.get(JobStatus.PROCESSING.value, 0),
            complete=counts.get(JobStatus.COMPLETE.value, 0),
            error=counts.get(JobStatus.ERROR.value, 0),
        )
