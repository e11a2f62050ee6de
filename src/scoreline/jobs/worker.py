"""Job worker: runs handlers under the job state machine.

Retry policy:

- A handler exception moves the job Processing -> Retrying and the job is
  re-dispatched after an exponential backoff, until ``retry_count`` reaches
  ``max_retries``; then it is Failed and reported as
  :class:`~scoreline.errors.MaxRetriesExceeded`.
- Cancellation is cooperative. Cancelled jobs are skipped when picked up,
  and every worker write is a compare-and-set on the status it expects, so
  a job cancelled while its handler runs stays Cancelled and the handler's
  result is discarded.
"""

from __future__ import annotations

import asyncio
import datetime
import time
from typing import TYPE_CHECKING, Any

import structlog

from scoreline.errors import MaxRetriesExceeded
from scoreline.jobs.events import publish
from scoreline.jobs.handlers import get_handler
from scoreline.jobs.state import Job, JobStatus, mark_completed, mark_failed, mark_processing
from scoreline.monitoring.logging import job_log_context
from scoreline.monitoring.metrics import metrics
from scoreline.utils.clock import Clock, utc_now

if TYPE_CHECKING:
    from scoreline.jobs.dispatcher import JobDispatcher
    from scoreline.jobs.handlers import HandlerContext
    from scoreline.monitoring.discord import DiscordAlerter
    from scoreline.state.repository import SettlementRepository

logger = structlog.get_logger("scoreline.jobs.worker")

_RUNNABLE = (JobStatus.PENDING, JobStatus.RETRYING)
_MAX_ERROR_LENGTH = 2000


def safe_error_message(e: BaseException, fallback: str = "job interrupted") -> str:
    """Extract a meaningful error message, falling back to the class name."""
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg[:_MAX_ERROR_LENGTH]


class JobWorker:
    """Executes one job at a time; run several for a pool."""

    def __init__(
        self,
        repository: SettlementRepository,
        dispatcher: JobDispatcher,
        context: HandlerContext,
        *,
        clock: Clock = utc_now,
        retry_backoff_seconds: float = 5.0,
        max_backoff_seconds: float = 300.0,
        alerter: DiscordAlerter | None = None,
        name: str = "worker-0",
    ) -> None:
        self._repo = repository
        self._dispatcher = dispatcher
        self._context = context
        self._clock = clock
        self._retry_backoff = retry_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._alerter = alerter
        self.name = name
        self.processed = 0

    def backoff_for(self, retry_count: int) -> float:
        """Delay before the *retry_count*-th automatic retry."""
        if self._retry_backoff <= 0:
            return 0.0
        return min(self._retry_backoff * 2 ** max(retry_count - 1, 0), self._max_backoff)

    # ── Execution ─────────────────────────────────────────────────────

    async def execute(self, job_id: str) -> Job | None:
        """Run one job through Processing to its next state."""
        job = self._repo.get_job(job_id)
        if job is None:
            logger.warning("job_missing", job_id=job_id, worker=self.name)
            return None

        if job.status not in _RUNNABLE:
            logger.info("job_skipped", job_id=job.id, status=job.status.value, worker=self.name)
            return job

        now = self._clock()
        if job.scheduled_at is not None and job.scheduled_at > now:
            delay = (job.scheduled_at - now).total_seconds()
            await self._dispatcher.dispatch(job, delay_seconds=delay)
            logger.debug("job_not_due", job_id=job.id, delay_seconds=delay)
            return job

        claimed = mark_processing(job, now=now)
        if not self._repo.save_job(claimed.job, expected_status=job.status):
            logger.info("job_claim_lost", job_id=job.id, worker=self.name)
            return self._repo.get_job(job.id)
        publish(claimed.events)
        processing = claimed.job

        log = logger.bind(job_id=job.id, job_type=job.job_type, attempt=job.retry_count + 1, worker=self.name)
        log.info("job_started")
        self.processed += 1

        started = time.monotonic()
        with job_log_context(processing.id, processing.job_type, processing.correlation_id):
            try:
                handler = get_handler(processing.job_type)
                result = await handler(processing, self._context)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("job_attempt_failed", error=safe_error_message(e), error_type=type(e).__name__)
                return await self._fail(processing, e, time.monotonic() - started)
        return self._complete(processing, result, time.monotonic() - started)

    def _complete(self, job: Job, result: dict[str, Any] | None, duration: float) -> Job | None:
        transition = mark_completed(job, result or {}, now=self._clock())
        if not self._repo.save_job(transition.job, expected_status=JobStatus.PROCESSING):
            current = self._repo.get_job(job.id)
            logger.info(
                "job_result_discarded",
                job_id=job.id,
                status=current.status.value if current else None,
            )
            return current
        publish(transition.events)
        metrics.observe_job(job.job_type, "completed", duration)
        logger.info("job_completed", job_id=job.id, job_type=job.job_type, duration_seconds=round(duration, 3))
        return transition.job

    async def _fail(self, job: Job, exc: BaseException, duration: float) -> Job | None:
        transition = mark_failed(job, safe_error_message(exc), now=self._clock())
        if not self._repo.save_job(transition.job, expected_status=JobStatus.PROCESSING):
            current = self._repo.get_job(job.id)
            logger.info(
                "job_failure_discarded",
                job_id=job.id,
                status=current.status.value if current else None,
            )
            return current
        publish(transition.events)
        failed = transition.job

        if failed.status == JobStatus.RETRYING:
            metrics.observe_job(failed.job_type, "retrying", duration)
            delay = self.backoff_for(failed.retry_count)
            await self._dispatcher.dispatch(failed, delay_seconds=delay)
            logger.info(
                "job_retry_scheduled",
                job_id=failed.id,
                retry_count=failed.retry_count,
                max_retries=failed.max_retries,
                delay_seconds=delay,
            )
            return failed

        exhausted = MaxRetriesExceeded(failed.id, failed.retry_count, failed.max_retries, failed.error)
        metrics.observe_job(failed.job_type, "failed", duration)
        logger.error("job_retries_exhausted", job_type=failed.job_type, **exhausted.to_dict())
        if self._alerter is not None:
            await self._alerter.send_job_failed_alert(failed.job_type, exhausted)
        return failed

    # ── Loop ──────────────────────────────────────────────────────────

    async def run(self, queue: asyncio.Queue[str]) -> None:
        """Consume job ids until cancelled."""
        logger.info("job_worker_started", worker=self.name)
        try:
            while True:
                job_id = await queue.get()
                try:
                    await self.execute(job_id)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("job_worker_error", job_id=job_id, worker=self.name)
                finally:
                    queue.task_done()
        finally:
            logger.info("job_worker_stopped", worker=self.name, processed=self.processed)


# ── Startup recovery ─────────────────────────────────────────────────────


async def recover_stale_jobs(
    repository: SettlementRepository,
    dispatcher: JobDispatcher,
    *,
    stale_minutes: int = 15,
    clock: Clock = utc_now,
) -> list[Job]:
    """Fail jobs stuck in Processing for longer than *stale_minutes*.

    Call on startup to recover from crashes that stranded jobs. The failure
    goes through the normal retry policy.
    """
    now = clock()
    cutoff = now - datetime.timedelta(minutes=stale_minutes)
    recovered: list[Job] = []
    for job in repository.find_stale_jobs(cutoff):
        transition = mark_failed(
            job, f"Recovered on startup: job was processing for >{stale_minutes} minutes", now=now
        )
        if not repository.save_job(transition.job, expected_status=JobStatus.PROCESSING):
            continue
        publish(transition.events)
        if transition.job.status == JobStatus.RETRYING:
            await dispatcher.dispatch(transition.job)
        logger.warning("stale_job_recovered", job_id=job.id, started_at=str(job.started_at))
        recovered.append(transition.job)
    if recovered:
        logger.info("stale_jobs_recovered", count=len(recovered))
    return recovered


async def requeue_unfinished_jobs(repository: SettlementRepository, dispatcher: JobDispatcher) -> int:
    """Re-dispatch Pending and Retrying jobs left over from a previous run."""
    jobs = repository.find_jobs([JobStatus.PENDING, JobStatus.RETRYING])
    for job in jobs:
        await dispatcher.dispatch(job)
    if jobs:
        logger.info("unfinished_jobs_requeued", count=len(jobs))
    return len(jobs)
