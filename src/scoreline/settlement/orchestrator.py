"""Settlement orchestrator for the CalculateBetResults job.

Once a match has a final score, every prediction on it is scored against
its league's rules and its settlement upserted. The leagues touched are then
handed to a single RecalculateLeagueStandings job.

Validation happens before any write: a missing match or a match without a
final score fails with no side effects. Re-running on an unchanged match
overwrites each settlement with identical values and creates no duplicates.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import structlog

from scoreline.errors import MatchNotFound, ScoresNotFinal
from scoreline.monitoring.metrics import metrics
from scoreline.scoring.engine import score_with_rules
from scoreline.settlement.types import MatchInfo, Prediction, Settlement, SettlementSummary
from scoreline.utils.clock import Clock, utc_now

if TYPE_CHECKING:
    from scoreline.jobs.dispatcher import JobDispatcher
    from scoreline.scoring.engine import ScoringRules

logger = structlog.get_logger("scoreline.settlement.orchestrator")

CALCULATE_BET_RESULTS = "CalculateBetResults"
RECALCULATE_LEAGUE_STANDINGS = "RecalculateLeagueStandings"


class SettlementStore(Protocol):
    def get_match(self, match_id: str) -> MatchInfo | None: ...

    def get_predictions_for_match(self, match_id: str) -> list[Prediction]: ...

    def get_scoring_rules(self, league_ids: list[str]) -> dict[str, ScoringRules]: ...

    def upsert_settlement(self, settlement: Settlement) -> bool: ...


class SettlementOrchestrator:
    """Scores all predictions on a finished match."""

    def __init__(
        self,
        store: SettlementStore,
        dispatcher: JobDispatcher,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock

    async def calculate(
        self,
        match_id: str,
        competition_id: str | None = None,
        *,
        correlation_id: str | None = None,
    ) -> SettlementSummary:
        """Settle every prediction on *match_id*.

        *competition_id* is only a scoping hint carried for logging.
        """
        match = self._store.get_match(match_id)
        if match is None:
            raise MatchNotFound(match_id)
        if not match.has_final_score:
            raise ScoresNotFinal(match_id)

        summary = SettlementSummary(match_id=match_id)
        predictions = self._store.get_predictions_for_match(match_id)
        if not predictions:
            logger.info("settlement_no_predictions", match_id=match_id, competition_id=competition_id)
            return summary

        league_ids = sorted({p.league_id for p in predictions})
        rules = self._store.get_scoring_rules(league_ids)
        now = self._clock()
        touched: set[str] = set()

        for prediction in predictions:
            league_rules = rules.get(prediction.league_id)
            if league_rules is None:
                logger.warning(
                    "settlement_league_missing",
                    bet_id=prediction.id,
                    league_id=prediction.league_id,
                )
                summary.skipped += 1
                continue

            result = score_with_rules(
                prediction.predicted_home,
                prediction.predicted_away,
                match.home_score,  # type: ignore[arg-type]
                match.away_score,  # type: ignore[arg-type]
                league_rules,
            )
            created = self._store.upsert_settlement(
                Settlement(
                    bet_id=prediction.id,
                    points_earned=result.points,
                    is_exact_match=result.is_exact,
                    is_correct_result=result.is_correct,
                    calculated_at=now,
                )
            )
            summary.bets_settled += 1
            if created:
                summary.created += 1
            else:
                summary.updated += 1
            touched.add(prediction.league_id)

        summary.league_ids = sorted(touched)
        metrics.increment("bets_settled", summary.bets_settled)

        if summary.league_ids:
            summary.follow_up_job_id = await self._dispatcher.enqueue(
                RECALCULATE_LEAGUE_STANDINGS,
                {"league_ids": summary.league_ids},
                correlation_id=correlation_id,
            )

        logger.info(
            "match_settled",
            match_id=match_id,
            competition_id=competition_id,
            final_score=f"{match.home_score}-{match.away_score}",
            bets_settled=summary.bets_settled,
            created=summary.created,
            updated=summary.updated,
            skipped=summary.skipped,
            leagues=len(summary.league_ids),
            follow_up_job_id=summary.follow_up_job_id,
        )
        return summary
