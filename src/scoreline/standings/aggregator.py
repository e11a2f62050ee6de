"""League standings aggregator.

Standings are never patched incrementally. Each recalculation rebuilds every
member's row from the full settlement set of the league and re-ranks the
whole table, so replaying a recalculation in any order converges on the same
leaderboard.

Rank tie-break chain (strict total order):

1. total points, descending
2. exact matches, descending
3. bets placed, ascending
4. user id, ascending
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import structlog

from scoreline.errors import StandingsRecalculationFailed
from scoreline.monitoring.metrics import metrics
from scoreline.utils.clock import Clock, utc_now

if TYPE_CHECKING:
    from scoreline.settlement.types import LeagueSettlement

logger = structlog.get_logger("scoreline.standings.aggregator")


@dataclass(frozen=True)
class Standing:
    """A member's aggregate within one league."""

    league_id: str
    user_id: str
    total_points: int = 0
    bets_placed: int = 0
    exact_matches: int = 0
    correct_results: int = 0
    current_streak: int = 0
    best_streak: int = 0
    last_updated_at: datetime.datetime | None = None
    rank: int = 0


class StandingsStore(Protocol):
    def get_league_members(self, league_id: str) -> list[str]: ...

    def get_league_settlements(self, league_id: str) -> list[LeagueSettlement]: ...

    def get_standings(self, league_id: str) -> list[Standing]: ...

    def replace_standings(self, league_id: str, standings: list[Standing]) -> None: ...


# ── Pure rebuild / ranking ───────────────────────────────────────────────


def _settlement_order(s: LeagueSettlement) -> tuple[object, ...]:
    # Match order, not settlement time: re-settling an old match must not move it.
    kickoff = s.match_kickoff_at
    return (kickoff is None, kickoff or s.calculated_at, s.bet_id)


def build_standing(
    league_id: str,
    user_id: str,
    settlements: Iterable[LeagueSettlement],
    *,
    previous_best_streak: int = 0,
    now: datetime.datetime,
) -> Standing:
    """Rebuild one member's standing from all of their settlements."""
    ordered = sorted(settlements, key=_settlement_order)

    total = exact = correct = 0
    run = longest = 0
    for s in ordered:
        total += s.points_earned
        exact += int(s.is_exact_match)
        correct += int(s.is_correct_result)
        if s.points_earned > 0:
            run += 1
            longest = max(longest, run)
        else:
            run = 0

    return Standing(
        league_id=league_id,
        user_id=user_id,
        total_points=total,
        bets_placed=len(ordered),
        exact_matches=exact,
        correct_results=correct,
        current_streak=run,
        best_streak=max(previous_best_streak, longest),
        last_updated_at=now,
    )


def rank_key(standing: Standing) -> tuple[int, int, int, str]:
    return (-standing.total_points, -standing.exact_matches, standing.bets_placed, standing.user_id)


def rank_standings(standings: Iterable[Standing]) -> list[Standing]:
    """Sort by the tie-break chain and assign ranks 1..N."""
    ordered = sorted(standings, key=rank_key)
    return [dataclasses.replace(s, rank=i) for i, s in enumerate(ordered, start=1)]


def rebuild_league(
    league_id: str,
    member_ids: Iterable[str],
    settlements: Iterable[LeagueSettlement],
    previous: Iterable[Standing] = (),
    *,
    now: datetime.datetime,
) -> list[Standing]:
    """Rebuild and rank the full table of one league.

    Only current members get a row; settlements of users who left the league
    are ignored.
    """
    by_user: dict[str, list[LeagueSettlement]] = defaultdict(list)
    for s in settlements:
        by_user[s.user_id].append(s)
    previous_best = {p.user_id: p.best_streak for p in previous}

    rebuilt = [
        build_standing(
            league_id,
            user_id,
            by_user.get(user_id, []),
            previous_best_streak=previous_best.get(user_id, 0),
            now=now,
        )
        for user_id in dict.fromkeys(member_ids)
    ]
    return rank_standings(rebuilt)


# ── Orchestration ────────────────────────────────────────────────────────


class LeagueLocks:
    """Per-league locks so a league's table has a single writer at a time."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, league_id: str) -> asyncio.Lock:
        lock = self._locks.get(league_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[league_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class RecalculationReport:
    """Outcome of recalculating a batch of leagues."""

    recalculated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    standings_written: int = 0
    interrupted: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "recalculated": list(self.recalculated),
            "failed": dict(self.failed),
            "standings_written": self.standings_written,
            "interrupted": self.interrupted,
        }


class StandingsAggregator:
    """Rebuilds league tables for the RecalculateLeagueStandings job.

    A failure in one league does not stop the others. Once the batch is
    done, :class:`StandingsRecalculationFailed` is raised if any league
    failed so the job goes through the retry path; leagues that already
    succeeded are simply rebuilt again.
    """

    def __init__(
        self,
        store: StandingsStore,
        *,
        clock: Clock = utc_now,
        locks: LeagueLocks | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._locks = locks or LeagueLocks()

    @property
    def locks(self) -> LeagueLocks:
        return self._locks

    async def recalculate(
        self,
        league_ids: Iterable[str],
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> RecalculationReport:
        """Rebuild each league in turn.

        *should_stop* is polled between leagues; when it returns True the
        batch ends early and the report is marked interrupted.
        """
        report = RecalculationReport()
        unique_ids = list(dict.fromkeys(league_ids))
        if not unique_ids:
            logger.info("standings_recalculation_skipped", reason="no_leagues")
            return report

        for league_id in unique_ids:
            if should_stop is not None and should_stop():
                logger.info(
                    "standings_recalculation_interrupted",
                    done=len(report.recalculated),
                    remaining=len(unique_ids) - len(report.recalculated) - len(report.failed),
                )
                report.interrupted = True
                break
            try:
                table = await self.recalculate_league(league_id)
            except Exception as e:
                logger.exception("league_recalculation_failed", league_id=league_id)
                metrics.increment("standings_failed")
                report.failed[league_id] = str(e) or type(e).__name__
                continue
            report.recalculated.append(league_id)
            report.standings_written += len(table)

        if report.failed:
            raise StandingsRecalculationFailed(sorted(report.failed), report.failed)
        return report

    async def recalculate_league(self, league_id: str) -> list[Standing]:
        async with self._locks.lock_for(league_id):
            members = self._store.get_league_members(league_id)
            settlements = self._store.get_league_settlements(league_id)
            previous = self._store.get_standings(league_id)

            table = rebuild_league(league_id, members, settlements, previous, now=self._clock())
            self._store.replace_standings(league_id, table)

        metrics.increment("standings_rebuilt")
        logger.info(
            "league_standings_rebuilt",
            league_id=league_id,
            members=len(table),
            settlements=len(settlements),
            leader=table[0].user_id if table else None,
        )
        return table
