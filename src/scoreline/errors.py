"""Domain errors raised by the settlement pipeline."""

from __future__ import annotations

from typing import Any


class ScorelineError(Exception):
    """Base class for all scoreline domain errors."""


class InvalidStateTransition(ScorelineError):
    """An illegal job state transition was attempted."""

    def __init__(self, job_id: str, status: str, action: str) -> None:
        self.job_id = job_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} job {job_id} in status '{status}'")


class MatchNotFound(ScorelineError):
    def __init__(self, match_id: str) -> None:
        self.match_id = match_id
        super().__init__(f"Match not found: {match_id}")


class ScoresNotFinal(ScorelineError):
    """Settlement was attempted before the match had a final score."""

    def __init__(self, match_id: str) -> None:
        self.match_id = match_id
        super().__init__(f"Match {match_id} does not have final scores yet")


class MaxRetriesExceeded(ScorelineError):
    """A job exhausted its automatic retries and is now Failed."""

    def __init__(self, job_id: str, retry_count: int, max_retries: int, error: str | None) -> None:
        self.job_id = job_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.error = error
        super().__init__(
            f"Job {job_id} failed after {retry_count}/{max_retries} attempts: {error or 'unknown error'}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "error": self.error,
        }


class JobNotFound(ScorelineError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class UnknownJobType(ScorelineError):
    def __init__(self, job_type: str) -> None:
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


class InvalidPayload(ScorelineError):
    """A job payload could not be parsed by its handler."""

    def __init__(self, job_type: str, detail: str) -> None:
        self.job_type = job_type
        self.detail = detail
        super().__init__(f"Invalid payload for {job_type}: {detail}")


class StandingsRecalculationFailed(ScorelineError):
    """One or more leagues in a batch could not be recalculated."""

    def __init__(self, league_ids: list[str], errors: dict[str, str] | None = None) -> None:
        self.league_ids = league_ids
        self.errors = errors or {}
        super().__init__(f"Standings recalculation failed for leagues: {', '.join(league_ids)}")
