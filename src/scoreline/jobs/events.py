"""Events emitted by job state transitions."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger("scoreline.jobs.events")


@dataclass(frozen=True)
class JobEvent:
    """Base class for job lifecycle events."""

    job_id: str
    job_type: str
    occurred_at: datetime.datetime

    @property
    def name(self) -> str:
        return _EVENT_NAMES[type(self)]

    def to_log_fields(self) -> dict[str, Any]:
        fields = {k: v for k, v in self.__dict__.items() if k != "occurred_at"}
        fields["event"] = self.name
        fields["occurred_at"] = self.occurred_at.isoformat()
        return fields


@dataclass(frozen=True)
class JobCreated(JobEvent):
    correlation_id: str | None = None


@dataclass(frozen=True)
class JobStatusChanged(JobEvent):
    old_status: str = ""
    new_status: str = ""


@dataclass(frozen=True)
class JobRetrying(JobEvent):
    retry_count: int = 0
    max_retries: int = 0
    error: str = ""


@dataclass(frozen=True)
class JobFailed(JobEvent):
    retry_count: int = 0
    error: str = ""


_EVENT_NAMES: dict[type[JobEvent], str] = {
    JobEvent: "job_event",
    JobCreated: "job_created",
    JobStatusChanged: "job_status_changed",
    JobRetrying: "job_retrying",
    JobFailed: "job_failed",
}


def publish(events: tuple[JobEvent, ...] | list[JobEvent]) -> None:
    """Log each event as a structured record."""
    for event in events:
        fields = event.to_log_fields()
        name = fields.pop("event")
        logger.info(name, **fields)
