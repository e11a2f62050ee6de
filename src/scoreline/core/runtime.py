"""Process runtime that wires the settlement pipeline together.

The :class:`SettlementRuntime` owns:

- **SettlementRepository**: jobs, settlements and standings
- **InMemoryJobDispatcher**: persists jobs and queues their ids
- **SettlementOrchestrator** / **StandingsAggregator**: the two job steps
- **JobWorker** pool: runs queued jobs under the retry policy
- **DiscordAlerter**: failed-job notifications

On startup, unfinished jobs are re-queued. Jobs stranded in Processing are
recovered on startup and again on every pass of the run loop. While running,
the loop also sweeps for finished matches with unsettled bets and logs a
metrics summary.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING

import structlog

from scoreline.jobs.admin import JobAdmin
from scoreline.jobs.dispatcher import InMemoryJobDispatcher
from scoreline.jobs.handlers import HandlerContext
from scoreline.jobs.state import Job, JobStatus
from scoreline.jobs.worker import JobWorker, recover_stale_jobs, requeue_unfinished_jobs
from scoreline.monitoring.discord import DiscordAlerter
from scoreline.monitoring.metrics import metrics
from scoreline.settlement.orchestrator import SettlementOrchestrator
from scoreline.settlement.sweep import enqueue_pending_settlements
from scoreline.standings.aggregator import StandingsAggregator
from scoreline.state.repository import SettlementRepository
from scoreline.utils.clock import Clock, utc_now

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from scoreline.config.models import AppConfig

logger = structlog.get_logger("scoreline.core.runtime")


class SettlementRuntime:
    """Async runtime hosting the job worker pool.

    Usage::

        runtime = SettlementRuntime(config)
        await runtime.initialize(session_factory)
        await runtime.run()       # blocks until stop() is called
        await runtime.shutdown()
    """

    def __init__(self, config: AppConfig, *, clock: Clock = utc_now) -> None:
        self._config = config
        self._clock = clock
        self._running = False
        self._stop_event = asyncio.Event()
        self._sweeps = 0

        # Components, created in initialize()
        self._repo: SettlementRepository | None = None
        self._dispatcher: InMemoryJobDispatcher | None = None
        self._alerter: DiscordAlerter | None = None
        self._admin: JobAdmin | None = None
        self._workers: list[JobWorker] = []
        self._worker_tasks: list[asyncio.Task[None]] = []

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def initialize(self, session_factory: sessionmaker[Session], *, recover: bool = True) -> None:
        """Create all components.

        With *recover*, jobs left by a previous run are re-queued and jobs
        stuck in Processing are failed through the retry policy. One-shot
        CLI runs pass False so they only execute the jobs they enqueue.
        """
        jobs_cfg = self._config.jobs
        self._repo = SettlementRepository(session_factory)
        self._dispatcher = InMemoryJobDispatcher(
            self._repo,
            clock=self._clock,
            default_max_retries=jobs_cfg.default_max_retries,
        )

        self._alerter = DiscordAlerter(self._config.discord)
        await self._alerter.initialize()

        context = HandlerContext(
            orchestrator=SettlementOrchestrator(self._repo, self._dispatcher, clock=self._clock),
            aggregator=StandingsAggregator(self._repo, clock=self._clock),
            is_cancelled=self._is_cancelled,
        )
        self._workers = [
            JobWorker(
                self._repo,
                self._dispatcher,
                context,
                clock=self._clock,
                retry_backoff_seconds=jobs_cfg.retry_backoff_seconds,
                max_backoff_seconds=jobs_cfg.max_backoff_seconds,
                alerter=self._alerter,
                name=f"worker-{i}",
            )
            for i in range(self._config.runtime.worker_count)
        ]
        self._admin = JobAdmin(self._repo, self._dispatcher, clock=self._clock)

        requeued = 0
        recovered: list[Job] = []
        if recover:
            # Requeue first: recovered jobs are dispatched by recover_stale_jobs itself.
            requeued = await requeue_unfinished_jobs(self._repo, self._dispatcher)
            recovered = await self.recover_stale()

        logger.info(
            "runtime_initialized",
            environment=self._config.environment.value,
            workers=len(self._workers),
            stale_recovered=len(recovered),
            requeued=requeued,
            discord=self._alerter.enabled,
        )

    def _is_cancelled(self, job_id: str) -> bool:
        job = self.repository.get_job(job_id)
        return job is not None and job.status == JobStatus.CANCELLED

    def start_workers(self) -> None:
        """Start one consumer task per worker."""
        if self._dispatcher is None:
            raise RuntimeError("Call initialize() before start_workers()")
        if self._worker_tasks:
            return
        queue = self._dispatcher.queue
        self._worker_tasks = [
            asyncio.create_task(worker.run(queue), name=worker.name) for worker in self._workers
        ]

    async def run(self) -> None:
        """Start the workers and the sweep loop. Blocks until :meth:`stop` is called."""
        if self._dispatcher is None:
            raise RuntimeError("Call initialize() before run()")

        self._running = True
        self._stop_event.clear()
        self.start_workers()

        poll = self._config.jobs.poll_interval_seconds
        summary_every = self._config.runtime.metrics_log_interval_seconds
        last_summary = time.monotonic()
        logger.info("runtime_started", poll_interval_seconds=poll or "disabled")

        while self._running:
            if poll:
                await self.sweep()
            try:
                await self.recover_stale()
            except Exception:
                logger.exception("stale_job_recovery_failed")
            metrics.set_gauge("queue_depth", self._dispatcher.queue.qsize())
            if summary_every and time.monotonic() - last_summary >= summary_every:
                metrics.log_summary()
                last_summary = time.monotonic()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=poll or 1)

        logger.info("runtime_stopped", sweeps=self._sweeps)

    async def recover_stale(self) -> list[Job]:
        """Fail jobs stuck in Processing past ``jobs.stale_minutes`` and report them."""
        recovered = await recover_stale_jobs(
            self.repository,
            self.dispatcher,
            stale_minutes=self._config.jobs.stale_minutes,
            clock=self._clock,
        )
        if recovered and self._alerter is not None:
            await self._alerter.send_recovery_alert(recovered)
        return recovered

    async def sweep(self) -> list[str]:
        """Enqueue settlement jobs for finished matches with unsettled bets."""
        self._sweeps += 1
        try:
            return await enqueue_pending_settlements(self.repository, self.dispatcher)
        except Exception:
            logger.exception("settlement_sweep_failed", sweep=self._sweeps)
            return []

    async def drain(self, poll_seconds: float = 0.05) -> None:
        """Wait until no job is queued, running or waiting on a retry delay."""
        while True:
            await self.dispatcher.queue.join()
            if not self.dispatcher.pending_delayed:
                return
            await asyncio.sleep(poll_seconds)

    def stop(self) -> None:
        """Signal the run loop to stop."""
        self._running = False
        self._stop_event.set()
        logger.info("runtime_stop_requested")

    async def shutdown(self) -> None:
        """Stop workers and tear down components.

        Jobs still queued or waiting on a retry delay stay persisted and are
        re-queued on the next startup.
        """
        for task in self._worker_tasks:
            task.cancel()
        for task in self._worker_tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._worker_tasks = []

        if self._dispatcher:
            await self._dispatcher.close()
        if self._alerter:
            await self._alerter.teardown()
        metrics.log_summary()
        logger.info("runtime_shutdown")

    # ── Accessors ─────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def repository(self) -> SettlementRepository:
        if self._repo is None:
            raise RuntimeError("Runtime not initialized")
        return self._repo

    @property
    def dispatcher(self) -> InMemoryJobDispatcher:
        if self._dispatcher is None:
            raise RuntimeError("Runtime not initialized")
        return self._dispatcher

    @property
    def admin(self) -> JobAdmin:
        if self._admin is None:
            raise RuntimeError("Runtime not initialized")
        return self._admin

    @property
    def workers(self) -> list[JobWorker]:
        return list(self._workers)
