"""Job record and its state machine.

Jobs are immutable values. Each transition is a pure function that checks
the transition table and returns a :class:`Transition` holding the new job
and the events it emitted; nothing is mutated in place. Illegal transitions
raise :class:`~scoreline.errors.InvalidStateTransition`.

::

    pending ──► processing ──► completed
       ▲            │
       │            ├──► retrying ──► processing   (retry_count < max_retries)
       │            └──► failed                     (retry_count >= max_retries)
       │
       └── retry ◄── failed | cancelled
    cancel: pending | processing | retrying ──► cancelled
"""

from __future__ import annotations

import dataclasses
import datetime
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from scoreline.errors import InvalidStateTransition
from scoreline.jobs.events import JobCreated, JobEvent, JobFailed, JobRetrying, JobStatusChanged

DEFAULT_MAX_RETRIES = 3


class JobStatus(StrEnum):
    """Lifecycle status of a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"


class JobAction(StrEnum):
    """Operations that move a job between states."""

    MARK_PROCESSING = "mark_processing"
    MARK_COMPLETED = "mark_completed"
    MARK_FAILED = "mark_failed"
    CANCEL = "cancel"
    RETRY = "retry"


# action -> statuses it may be applied from
TRANSITIONS: dict[JobAction, frozenset[JobStatus]] = {
    JobAction.MARK_PROCESSING: frozenset({JobStatus.PENDING, JobStatus.RETRYING}),
    JobAction.MARK_COMPLETED: frozenset({JobStatus.PROCESSING}),
    JobAction.MARK_FAILED: frozenset({JobStatus.PROCESSING}),
    JobAction.CANCEL: frozenset({JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.RETRYING}),
    JobAction.RETRY: frozenset({JobStatus.FAILED, JobStatus.CANCELLED}),
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
RETRYABLE_STATUSES = TRANSITIONS[JobAction.RETRY]


@dataclass(frozen=True)
class Job:
    """A retryable, state-tracked unit of asynchronous work."""

    id: str
    job_type: str
    status: JobStatus
    created_at: datetime.datetime
    payload: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    error: str | None = None
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    started_at: datetime.datetime | None = None
    completed_at: datetime.datetime | None = None
    scheduled_at: datetime.datetime | None = None
    created_by_user_id: str | None = None
    correlation_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_be_retried(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the job envelope."""

        def _iso(value: datetime.datetime | None) -> str | None:
            return value.isoformat() if value is not None else None

        return {
            "id": self.id,
            "job_type": self.job_type,
            "status": self.status.value,
            "payload": dict(self.payload),
            "result": dict(self.result) if self.result is not None else None,
            "error": self.error,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "scheduled_at": _iso(self.scheduled_at),
            "created_by_user_id": self.created_by_user_id,
            "correlation_id": self.correlation_id,
        }


@dataclass(frozen=True)
class Transition:
    """Result of applying a state transition."""

    job: Job
    events: tuple[JobEvent, ...]


def can_apply(status: JobStatus, action: JobAction) -> bool:
    return status in TRANSITIONS[action]


def _guard(job: Job, action: JobAction) -> None:
    if not can_apply(job.status, action):
        raise InvalidStateTransition(job.id, job.status.value, action.value)


def _status_changed(job: Job, new_status: JobStatus, now: datetime.datetime) -> JobStatusChanged:
    return JobStatusChanged(
        job_id=job.id,
        job_type=job.job_type,
        occurred_at=now,
        old_status=job.status.value,
        new_status=new_status.value,
    )


# ── Transitions ──────────────────────────────────────────────────────────


def create_job(
    job_type: str,
    payload: dict[str, Any] | None = None,
    *,
    now: datetime.datetime,
    max_retries: int = DEFAULT_MAX_RETRIES,
    scheduled_at: datetime.datetime | None = None,
    created_by_user_id: str | None = None,
    correlation_id: str | None = None,
    job_id: str | None = None,
) -> Transition:
    """Create a new Pending job."""
    if not job_type or not job_type.strip():
        raise ValueError("job_type must not be empty")
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")

    job = Job(
        id=job_id or str(uuid.uuid4()),
        job_type=job_type,
        status=JobStatus.PENDING,
        created_at=now,
        payload=dict(payload or {}),
        max_retries=max_retries,
        scheduled_at=scheduled_at,
        created_by_user_id=created_by_user_id,
        correlation_id=correlation_id,
    )
    event = JobCreated(job_id=job.id, job_type=job_type, occurred_at=now, correlation_id=correlation_id)
    return Transition(job=job, events=(event,))


def mark_processing(job: Job, *, now: datetime.datetime) -> Transition:
    _guard(job, JobAction.MARK_PROCESSING)
    updated = dataclasses.replace(job, status=JobStatus.PROCESSING, started_at=now)
    return Transition(job=updated, events=(_status_changed(job, JobStatus.PROCESSING, now),))


def mark_completed(job: Job, result: dict[str, Any] | None = None, *, now: datetime.datetime) -> Transition:
    _guard(job, JobAction.MARK_COMPLETED)
    updated = dataclasses.replace(job, status=JobStatus.COMPLETED, result=result, completed_at=now)
    return Transition(job=updated, events=(_status_changed(job, JobStatus.COMPLETED, now),))


def mark_failed(job: Job, error: str, *, now: datetime.datetime) -> Transition:
    """Record a processing failure.

    Moves to Retrying while retries remain, otherwise to Failed.
    """
    _guard(job, JobAction.MARK_FAILED)
    retry_count = job.retry_count + 1

    if retry_count >= job.max_retries:
        updated = dataclasses.replace(
            job, status=JobStatus.FAILED, error=error, retry_count=retry_count, completed_at=now
        )
        failed = JobFailed(
            job_id=job.id, job_type=job.job_type, occurred_at=now, retry_count=retry_count, error=error
        )
        return Transition(job=updated, events=(failed, _status_changed(job, JobStatus.FAILED, now)))

    updated = dataclasses.replace(job, status=JobStatus.RETRYING, error=error, retry_count=retry_count)
    retrying = JobRetrying(
        job_id=job.id,
        job_type=job.job_type,
        occurred_at=now,
        retry_count=retry_count,
        max_retries=job.max_retries,
        error=error,
    )
    return Transition(job=updated, events=(retrying, _status_changed(job, JobStatus.RETRYING, now)))


def cancel(job: Job, *, now: datetime.datetime) -> Transition:
    _guard(job, JobAction.CANCEL)
    updated = dataclasses.replace(job, status=JobStatus.CANCELLED, completed_at=now)
    return Transition(job=updated, events=(_status_changed(job, JobStatus.CANCELLED, now),))


def retry(job: Job, *, now: datetime.datetime) -> Transition:
    """Operator retry from Failed or Cancelled.

    Shares ``retry_count`` with automatic retries and is not bounded by
    ``max_retries``.
    """
    _guard(job, JobAction.RETRY)
    updated = dataclasses.replace(
        job,
        status=JobStatus.PENDING,
        error=None,
        completed_at=None,
        retry_count=job.retry_count + 1,
    )
    return Transition(job=updated, events=(_status_changed(job, JobStatus.PENDING, now),))
