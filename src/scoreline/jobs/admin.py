"""Operator surface for background jobs: list, inspect, cancel and retry."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from scoreline.errors import JobNotFound, MaxRetriesExceeded
from scoreline.jobs import state
from scoreline.jobs.events import publish
from scoreline.jobs.state import Job, JobStatus
from scoreline.utils.clock import Clock, utc_now

if TYPE_CHECKING:
    from scoreline.jobs.dispatcher import JobDispatcher
    from scoreline.state.repository import SettlementRepository

logger = structlog.get_logger("scoreline.jobs.admin")

MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class JobPage:
    jobs: list[Job]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0


class JobAdmin:
    """Queries and operator commands over the job store."""

    def __init__(
        self,
        repository: SettlementRepository,
        dispatcher: JobDispatcher,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._repo = repository
        self._dispatcher = dispatcher
        self._clock = clock

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        job_type: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> JobPage:
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        jobs, total = self._repo.list_jobs(
            status=status,
            job_type=job_type,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return JobPage(jobs=jobs, total=total, page=page, page_size=page_size)

    def get_job(self, job_id: str) -> Job:
        job = self._repo.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def job_stats(self) -> dict[str, int]:
        """Job counts for every status, zero-filled, plus a total."""
        counts = self._repo.count_jobs_by_status()
        stats = {s.value: counts.get(s.value, 0) for s in JobStatus}
        stats["total"] = sum(stats.values())
        return stats

    def get_failure(self, job_id: str) -> MaxRetriesExceeded | None:
        """The exhausted-retries error of a Failed job, else None."""
        job = self.get_job(job_id)
        if job.status != JobStatus.FAILED:
            return None
        return MaxRetriesExceeded(job.id, job.retry_count, job.max_retries, job.error)

    def cancel_job(self, job_id: str) -> Job:
        """Cancel a Pending, Processing or Retrying job.

        A Processing job keeps running until its handler returns; the worker
        then sees the Cancelled status and discards the result.
        """
        job = self.get_job(job_id)
        transition = state.cancel(job, now=self._clock())
        if not self._repo.save_job(transition.job, expected_status=job.status):
            # Status moved underneath us; re-validate against the fresh row.
            return self.cancel_job(job_id)
        publish(transition.events)
        logger.info("job_cancelled", job_id=job.id, job_type=job.job_type, previous_status=job.status.value)
        return transition.job

    async def retry_job(self, job_id: str) -> Job:
        """Send a Failed or Cancelled job back to Pending and dispatch it."""
        job = self.get_job(job_id)
        transition = state.retry(job, now=self._clock())
        if not self._repo.save_job(transition.job, expected_status=job.status):
            return await self.retry_job(job_id)
        publish(transition.events)
        await self._dispatcher.dispatch(transition.job)
        logger.info(
            "job_manually_retried",
            job_id=job.id,
            job_type=job.job_type,
            retry_count=transition.job.retry_count,
        )
        return transition.job
