"""Leaderboard read path over the rebuilt standings."""

from __future__ import annotations

import datetime  # noqa: TCH003
from dataclasses import dataclass
from typing import TYPE_CHECKING

from scoreline.standings.aggregator import Standing, rank_key, rank_standings

if TYPE_CHECKING:
    from scoreline.state.repository import SettlementRepository


@dataclass(frozen=True)
class UserStats:
    """One member's standing plus derived accuracy."""

    league_id: str
    user_id: str
    rank: int
    total_points: int
    bets_placed: int
    exact_matches: int
    correct_results: int
    current_streak: int
    best_streak: int
    accuracy_pct: float
    last_updated_at: datetime.datetime | None


def get_league_standings(repository: SettlementRepository, league_id: str) -> list[Standing]:
    """Standings of current members, ordered by rank.

    Ranks are recomputed from the tie-break chain rather than trusted from
    storage.
    """
    members = set(repository.get_league_members(league_id))
    rows = [s for s in repository.get_standings(league_id) if s.user_id in members]
    return rank_standings(rows)


def accuracy_pct(correct_results: int, bets_placed: int) -> float:
    if bets_placed <= 0:
        return 0.0
    return round(correct_results / bets_placed * 100, 2)


def get_user_stats(repository: SettlementRepository, league_id: str, user_id: str) -> UserStats | None:
    """Stats for one member, or None if they are not in the league."""
    if not repository.is_league_member(league_id, user_id):
        return None

    table = get_league_standings(repository, league_id)
    standing = next((s for s in table if s.user_id == user_id), None)
    if standing is None:
        # Member without a rebuilt row yet: rank after everyone who outranks an empty record.
        empty = Standing(league_id=league_id, user_id=user_id)
        rank = sum(1 for s in table if rank_key(s) < rank_key(empty)) + 1
        standing = Standing(league_id=league_id, user_id=user_id, rank=rank)

    return UserStats(
        league_id=league_id,
        user_id=user_id,
        rank=standing.rank,
        total_points=standing.total_points,
        bets_placed=standing.bets_placed,
        exact_matches=standing.exact_matches,
        correct_results=standing.correct_results,
        current_streak=standing.current_streak,
        best_streak=standing.best_streak,
        accuracy_pct=accuracy_pct(standing.correct_results, standing.bets_placed),
        last_updated_at=standing.last_updated_at,
    )
