"""Unit tests for the job worker and startup recovery."""

from __future__ import annotations

import asyncio
import dataclasses
import datetime
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog

from scoreline.errors import MaxRetriesExceeded
from scoreline.jobs import state
from scoreline.jobs.dispatcher import InMemoryJobDispatcher
from scoreline.jobs.handlers import JOB_HANDLERS, HandlerContext, register_job_handler
from scoreline.jobs.state import Job, JobStatus
from scoreline.jobs.worker import JobWorker, recover_stale_jobs, requeue_unfinished_jobs, safe_error_message
from scoreline.state.database import create_db_engine, get_session_factory, init_db
from scoreline.state.repository import SettlementRepository
from scoreline.utils.clock import FrozenClock

NOW = datetime.datetime(2026, 3, 14, 15, 0, tzinfo=datetime.UTC)


@pytest.fixture
def handler_types() -> Iterator[list[str]]:
    """Job types registered by a test; removed from the registry afterwards."""
    registered: list[str] = []
    yield registered
    for job_type in registered:
        JOB_HANDLERS.pop(job_type, None)


def _register(registered: list[str], job_type: str, func: Any) -> None:
    register_job_handler(job_type)(func)
    registered.append(job_type)


def _setup(**worker_kwargs: Any) -> tuple[JobWorker, SettlementRepository, InMemoryJobDispatcher, FrozenClock]:
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    repo = SettlementRepository(get_session_factory(engine))
    clock = FrozenClock(NOW)
    dispatcher = InMemoryJobDispatcher(repo, clock=clock)
    context = HandlerContext(orchestrator=MagicMock(), aggregator=MagicMock())
    worker_kwargs.setdefault("retry_backoff_seconds", 0.0)
    worker = JobWorker(repo, dispatcher, context, clock=clock, **worker_kwargs)
    return worker, repo, dispatcher, clock


async def _enqueue(dispatcher: InMemoryJobDispatcher, job_type: str, **kwargs: Any) -> str:
    job_id = await dispatcher.enqueue(job_type, kwargs.pop("payload", {}), **kwargs)
    dispatcher.queue.get_nowait()
    return job_id


async def _echo(job: Job, context: HandlerContext) -> dict[str, Any]:
    return {"echo": job.payload.get("value")}


async def _boom(job: Job, context: HandlerContext) -> dict[str, Any]:
    raise RuntimeError("kaboom")


# ── Execute ──────────────────────────────────────────────────────────────


class TestExecute:
    async def test_success(self, handler_types: list[str]) -> None:
        _register(handler_types, "Echo", _echo)
        worker, repo, dispatcher, _ = _setup()
        job_id = await _enqueue(dispatcher, "Echo", payload={"value": 7})

        job = await worker.execute(job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.result == {"echo": 7}
        assert job.started_at == NOW
        assert job.completed_at == NOW
        assert repo.get_job(job_id) == job
        assert worker.processed == 1

    async def test_failure_schedules_retry(self, handler_types: list[str]) -> None:
        _register(handler_types, "Boom", _boom)
        worker, repo, dispatcher, _ = _setup()
        job_id = await _enqueue(dispatcher, "Boom")

        job = await worker.execute(job_id)

        assert job.status == JobStatus.RETRYING
        assert job.retry_count == 1
        assert job.error == "kaboom"
        assert dispatcher.queue.get_nowait() == job_id

    async def test_retries_until_failed(self, handler_types: list[str]) -> None:
        _register(handler_types, "Boom", _boom)
        alerter = MagicMock()
        alerter.send_job_failed_alert = AsyncMock()
        worker, repo, dispatcher, _ = _setup(alerter=alerter)
        job_id = await _enqueue(dispatcher, "Boom")

        statuses = []
        for _ in range(3):
            job = await worker.execute(job_id)
            statuses.append(job.status)
        assert statuses == [JobStatus.RETRYING, JobStatus.RETRYING, JobStatus.FAILED]
        assert dispatcher.queue.qsize() == 2

        job = repo.get_job(job_id)
        assert job.retry_count == 3
        assert job.completed_at == NOW
        alerter.send_job_failed_alert.assert_awaited_once()
        job_type, failure = alerter.send_job_failed_alert.call_args.args
        assert job_type == "Boom"
        assert isinstance(failure, MaxRetriesExceeded)
        assert (failure.job_id, failure.retry_count, failure.max_retries) == (job_id, 3, 3)
        assert failure.error == "kaboom"

    async def test_unknown_job_type_goes_through_retry(self) -> None:
        worker, _, dispatcher, _ = _setup()
        job_id = await _enqueue(dispatcher, "Nobody", max_retries=1)

        job = await worker.execute(job_id)

        assert job.status == JobStatus.FAILED
        assert "Unknown job type" in job.error

    async def test_cancelled_job_is_skipped(self, handler_types: list[str]) -> None:
        handler = AsyncMock(return_value={})
        _register(handler_types, "Echo", handler)
        worker, repo, dispatcher, _ = _setup()
        job_id = await _enqueue(dispatcher, "Echo")
        repo.save_job(state.cancel(repo.get_job(job_id), now=NOW).job)

        job = await worker.execute(job_id)

        assert job.status == JobStatus.CANCELLED
        handler.assert_not_called()

    async def test_cancel_while_running_discards_result(self, handler_types: list[str]) -> None:
        worker, repo, dispatcher, _ = _setup()

        async def cancel_mid_run(job: Job, context: HandlerContext) -> dict[str, Any]:
            current = repo.get_job(job.id)
            repo.save_job(state.cancel(current, now=NOW).job)
            return {"done": True}

        _register(handler_types, "Slow", cancel_mid_run)
        job_id = await _enqueue(dispatcher, "Slow")

        job = await worker.execute(job_id)

        assert job.status == JobStatus.CANCELLED
        assert job.result is None

    async def test_cancel_while_running_discards_failure(self, handler_types: list[str]) -> None:
        worker, repo, dispatcher, _ = _setup()

        async def cancel_then_fail(job: Job, context: HandlerContext) -> dict[str, Any]:
            repo.save_job(state.cancel(repo.get_job(job.id), now=NOW).job)
            raise RuntimeError("late failure")

        _register(handler_types, "Slow", cancel_then_fail)
        job_id = await _enqueue(dispatcher, "Slow")

        job = await worker.execute(job_id)

        assert job.status == JobStatus.CANCELLED
        assert job.retry_count == 0
        assert dispatcher.queue.empty()

    async def test_missing_job(self) -> None:
        worker, _, _, _ = _setup()
        assert await worker.execute("nope") is None

    async def test_not_yet_due_is_redispatched(self, handler_types: list[str]) -> None:
        handler = AsyncMock(return_value={})
        _register(handler_types, "Echo", handler)
        worker, repo, dispatcher, _ = _setup()
        job_id = await dispatcher.enqueue("Echo", {}, scheduled_at=NOW + datetime.timedelta(hours=1))

        job = await worker.execute(job_id)

        assert job.status == JobStatus.PENDING
        handler.assert_not_called()
        assert dispatcher.pending_delayed == 2
        await dispatcher.close()

    async def test_job_claimed_elsewhere_is_skipped(self, handler_types: list[str]) -> None:
        handler = AsyncMock(return_value={})
        _register(handler_types, "Echo", handler)
        worker, repo, dispatcher, _ = _setup()
        job_id = await _enqueue(dispatcher, "Echo")
        pending = repo.get_job(job_id)
        # Another worker claims it first
        repo.save_job(state.mark_processing(pending, now=NOW).job)

        job = await worker.execute(job_id)

        assert job.status == JobStatus.PROCESSING
        handler.assert_not_called()

    async def test_outcomes_recorded_per_job_type(self, handler_types: list[str]) -> None:
        _register(handler_types, "Echo", _echo)
        _register(handler_types, "Boom", _boom)
        worker, _, dispatcher, _ = _setup()
        ok = await _enqueue(dispatcher, "Echo")
        bad = await _enqueue(dispatcher, "Boom")

        with patch("scoreline.jobs.worker.metrics") as recorded:
            await worker.execute(ok)
            await worker.execute(bad)

        calls = [c.args[:2] for c in recorded.observe_job.call_args_list]
        assert calls == [("Echo", "completed"), ("Boom", "retrying")]

    async def test_handler_logs_carry_job_identity(self, handler_types: list[str]) -> None:
        seen: dict[str, Any] = {}

        async def capture(job: Job, context: HandlerContext) -> dict[str, Any]:
            seen.update(structlog.contextvars.get_contextvars())
            return {}

        _register(handler_types, "Capture", capture)
        worker, _, dispatcher, _ = _setup()
        job_id = await _enqueue(dispatcher, "Capture", correlation_id="settle-m1")

        await worker.execute(job_id)

        assert seen == {"job_id": job_id, "job_type": "Capture", "correlation_id": "settle-m1"}
        assert "job_id" not in structlog.contextvars.get_contextvars()


class TestBackoff:
    def test_exponential_with_cap(self) -> None:
        worker, _, _, _ = _setup(retry_backoff_seconds=5.0, max_backoff_seconds=30.0)
        assert [worker.backoff_for(n) for n in (1, 2, 3, 4, 5)] == [5.0, 10.0, 20.0, 30.0, 30.0]

    def test_disabled(self) -> None:
        worker, _, _, _ = _setup(retry_backoff_seconds=0.0)
        assert worker.backoff_for(3) == 0.0

    async def test_retry_dispatched_with_backoff(self, handler_types: list[str]) -> None:
        _register(handler_types, "Boom", _boom)
        worker, _, dispatcher, _ = _setup(retry_backoff_seconds=60.0)
        job_id = await _enqueue(dispatcher, "Boom")

        await worker.execute(job_id)

        assert dispatcher.queue.empty()
        assert dispatcher.pending_delayed == 1
        await dispatcher.close()


class TestRunLoop:
    async def test_consumes_queue(self, handler_types: list[str]) -> None:
        _register(handler_types, "Echo", _echo)
        worker, repo, dispatcher, _ = _setup()
        task = asyncio.create_task(worker.run(dispatcher.queue))
        try:
            ids = [await dispatcher.enqueue("Echo", {"value": i}) for i in range(3)]
            await asyncio.wait_for(dispatcher.queue.join(), timeout=5)
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert [repo.get_job(i).result for i in ids] == [{"echo": 0}, {"echo": 1}, {"echo": 2}]


# ── Recovery ─────────────────────────────────────────────────────────────


class TestRecovery:
    async def test_stale_processing_job_retried(self) -> None:
        _, repo, dispatcher, clock = _setup()
        job_id = await _enqueue(dispatcher, "Echo")
        repo.save_job(state.mark_processing(repo.get_job(job_id), now=NOW - datetime.timedelta(hours=1)).job)

        recovered = await recover_stale_jobs(repo, dispatcher, stale_minutes=15, clock=clock)

        assert [j.id for j in recovered] == [job_id]
        job = repo.get_job(job_id)
        assert job.status == JobStatus.RETRYING
        assert job.retry_count == 1
        assert job.error.startswith("Recovered on startup")
        assert dispatcher.queue.get_nowait() == job_id

    async def test_fresh_processing_job_left_alone(self) -> None:
        _, repo, dispatcher, clock = _setup()
        job_id = await _enqueue(dispatcher, "Echo")
        repo.save_job(state.mark_processing(repo.get_job(job_id), now=NOW).job)

        assert await recover_stale_jobs(repo, dispatcher, clock=clock) == []
        assert repo.get_job(job_id).status == JobStatus.PROCESSING

    async def test_stale_job_on_last_attempt_fails(self) -> None:
        _, repo, dispatcher, clock = _setup()
        job_id = await _enqueue(dispatcher, "Echo", max_retries=1)
        repo.save_job(state.mark_processing(repo.get_job(job_id), now=NOW - datetime.timedelta(hours=1)).job)

        await recover_stale_jobs(repo, dispatcher, clock=clock)

        assert repo.get_job(job_id).status == JobStatus.FAILED
        assert dispatcher.queue.empty()

    async def test_requeue_unfinished(self) -> None:
        _, repo, dispatcher, _ = _setup()
        pending = await _enqueue(dispatcher, "Echo")
        retrying = await _enqueue(dispatcher, "Echo")
        done = await _enqueue(dispatcher, "Echo")
        repo.save_job(dataclasses.replace(repo.get_job(retrying), status=JobStatus.RETRYING))
        repo.save_job(dataclasses.replace(repo.get_job(done), status=JobStatus.COMPLETED))

        assert await requeue_unfinished_jobs(repo, dispatcher) == 2
        queued = {dispatcher.queue.get_nowait(), dispatcher.queue.get_nowait()}
        assert queued == {pending, retrying}


class TestSafeErrorMessage:
    def test_message(self) -> None:
        assert safe_error_message(ValueError("bad input")) == "bad input"

    def test_empty_message_uses_class_name(self) -> None:
        assert safe_error_message(TimeoutError()) == "TimeoutError: job interrupted"

    def test_truncated(self) -> None:
        assert len(safe_error_message(ValueError("x" * 5000))) == 2000
