"""Job handlers for the settlement pipeline.

Each handler parses its job's payload, runs the matching pipeline step and
returns the dict stored as the job result. Register new job types with
:func:`register_job_handler`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from scoreline.errors import InvalidPayload, UnknownJobType
from scoreline.settlement.orchestrator import CALCULATE_BET_RESULTS, RECALCULATE_LEAGUE_STANDINGS

if TYPE_CHECKING:
    from scoreline.jobs.state import Job
    from scoreline.settlement.orchestrator import SettlementOrchestrator
    from scoreline.standings.aggregator import StandingsAggregator


@dataclass(frozen=True)
class HandlerContext:
    """Collaborators available to every handler."""

    orchestrator: SettlementOrchestrator
    aggregator: StandingsAggregator
    is_cancelled: Callable[[str], bool] | None = None

    def cancelled(self, job_id: str) -> bool:
        return self.is_cancelled is not None and self.is_cancelled(job_id)


JobHandler = Callable[["Job", HandlerContext], Awaitable[dict[str, Any]]]

# Job handler registry - add new job types here
JOB_HANDLERS: dict[str, JobHandler] = {}


def register_job_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """Decorator to register a job handler function."""

    def decorator(func: JobHandler) -> JobHandler:
        JOB_HANDLERS[job_type] = func
        return func

    return decorator


def get_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if handler is None:
        raise UnknownJobType(job_type)
    return handler


# ── Payloads ─────────────────────────────────────────────────────────────


_ModelT = TypeVar("_ModelT", bound=BaseModel)


class CalculateBetResultsPayload(BaseModel):
    match_id: str = Field(validation_alias=AliasChoices("match_id", "matchId"))
    competition_id: str | None = Field(
        default=None, validation_alias=AliasChoices("competition_id", "competitionId")
    )


class RecalculateLeagueStandingsPayload(BaseModel):
    league_ids: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("league_ids", "leagueIds")
    )


def _parse(model: type[_ModelT], job: Job) -> _ModelT:
    try:
        return model.model_validate(job.payload)
    except ValidationError as e:
        raise InvalidPayload(job.job_type, str(e)) from e


# ── Handlers ─────────────────────────────────────────────────────────────


@register_job_handler(CALCULATE_BET_RESULTS)
async def handle_calculate_bet_results(job: Job, context: HandlerContext) -> dict[str, Any]:
    """Score every prediction on a finished match."""
    payload = _parse(CalculateBetResultsPayload, job)
    summary = await context.orchestrator.calculate(
        payload.match_id,
        payload.competition_id,
        correlation_id=job.correlation_id or job.id,
    )
    return summary.to_dict()


@register_job_handler(RECALCULATE_LEAGUE_STANDINGS)
async def handle_recalculate_league_standings(job: Job, context: HandlerContext) -> dict[str, Any]:
    """Rebuild and rank the standings of each affected league."""
    payload = _parse(RecalculateLeagueStandingsPayload, job)
    report = await context.aggregator.recalculate(
        payload.league_ids, should_stop=lambda: context.cancelled(job.id)
    )
    return report.to_dict()
