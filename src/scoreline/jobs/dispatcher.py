"""Job dispatch.

:class:`JobDispatcher` is the contract the pipeline uses to schedule work.
:class:`InMemoryJobDispatcher` persists each job through the repository and
hands job ids to in-process workers over an ``asyncio.Queue``; a broker-backed
dispatcher only has to implement the same two methods.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from scoreline.jobs.events import publish
from scoreline.jobs.state import DEFAULT_MAX_RETRIES, Job, create_job
from scoreline.monitoring.metrics import metrics
from scoreline.utils.clock import Clock, utc_now

if TYPE_CHECKING:
    from scoreline.state.repository import SettlementRepository

logger = structlog.get_logger("scoreline.jobs.dispatcher")


class JobDispatcher(Protocol):
    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        max_retries: int | None = None,
        scheduled_at: datetime.datetime | None = None,
        created_by_user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> str: ...

    async def dispatch(self, job: Job, *, delay_seconds: float = 0.0) -> None: ...


class InMemoryJobDispatcher:
    """Persist-then-queue dispatcher for a single process worker pool."""

    def __init__(
        self,
        repository: SettlementRepository,
        *,
        clock: Clock = utc_now,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self._repo = repository
        self._clock = clock
        self._default_max_retries = default_max_retries
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._delayed: set[asyncio.Task[None]] = set()

    @property
    def queue(self) -> asyncio.Queue[str]:
        return self._queue

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        max_retries: int | None = None,
        scheduled_at: datetime.datetime | None = None,
        created_by_user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> str:
        """Create a Pending job, persist it and schedule it."""
        transition = create_job(
            job_type,
            payload,
            now=self._clock(),
            max_retries=self._default_max_retries if max_retries is None else max_retries,
            scheduled_at=scheduled_at,
            created_by_user_id=created_by_user_id,
            correlation_id=correlation_id,
        )
        job = transition.job
        self._repo.add_job(job)
        publish(transition.events)
        metrics.increment("jobs_enqueued")

        delay = 0.0
        if scheduled_at is not None:
            delay = max((scheduled_at - self._clock()).total_seconds(), 0.0)
        await self.dispatch(job, delay_seconds=delay)
        logger.info("job_enqueued", job_id=job.id, job_type=job_type, delay_seconds=delay)
        return job.id

    async def dispatch(self, job: Job, *, delay_seconds: float = 0.0) -> None:
        """Hand an existing job to the workers, optionally after a delay."""
        if delay_seconds <= 0:
            self._queue.put_nowait(job.id)
            logger.debug("job_dispatched", job_id=job.id, job_type=job.job_type)
            return

        async def _later() -> None:
            await asyncio.sleep(delay_seconds)
            self._queue.put_nowait(job.id)
            logger.debug("job_dispatched", job_id=job.id, job_type=job.job_type, delayed=delay_seconds)

        task = asyncio.create_task(_later())
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    @property
    def pending_delayed(self) -> int:
        return len(self._delayed)

    async def close(self) -> None:
        """Cancel delayed dispatches. Their jobs stay persisted for recovery."""
        for task in list(self._delayed):
            task.cancel()
        for task in list(self._delayed):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._delayed.clear()
