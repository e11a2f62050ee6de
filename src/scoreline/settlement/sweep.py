"""Catch-up sweep for matches that finished without being settled."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from scoreline.jobs.state import JobStatus
from scoreline.settlement.orchestrator import CALCULATE_BET_RESULTS

if TYPE_CHECKING:
    from scoreline.jobs.dispatcher import JobDispatcher
    from scoreline.state.repository import SettlementRepository

logger = structlog.get_logger("scoreline.settlement.sweep")

_ACTIVE = [JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.RETRYING]


async def enqueue_pending_settlements(
    repository: SettlementRepository,
    dispatcher: JobDispatcher,
    *,
    created_by_user_id: str | None = None,
) -> list[str]:
    """Enqueue one CalculateBetResults job per finished match with unsettled bets.

    Matches that already have an active settlement job are left alone.
    Returns the ids of the jobs created.
    """
    pending = repository.find_matches_pending_settlement()
    if not pending:
        logger.debug("no_pending_settlements")
        return []

    in_flight = {
        job.payload.get("match_id")
        for job in repository.find_jobs(_ACTIVE)
        if job.job_type == CALCULATE_BET_RESULTS
    }

    job_ids: list[str] = []
    for match_id, competition_id in pending:
        if match_id in in_flight:
            continue
        job_id = await dispatcher.enqueue(
            CALCULATE_BET_RESULTS,
            {"match_id": match_id, "competition_id": competition_id},
            created_by_user_id=created_by_user_id,
            correlation_id=f"settle-{match_id}",
        )
        job_ids.append(job_id)

    logger.info(
        "pending_settlements_enqueued",
        matches=len(pending),
        enqueued=len(job_ids),
        already_queued=len(pending) - len(job_ids),
    )
    return job_ids
