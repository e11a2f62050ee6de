"""League standings: rebuild, ranking and read path."""

from scoreline.standings.aggregator import (
    LeagueLocks,
    RecalculationReport,
    Standing,
    StandingsAggregator,
    build_standing,
    rank_standings,
    rebuild_league,
)

__all__ = [
    "LeagueLocks",
    "RecalculationReport",
    "Standing",
    "StandingsAggregator",
    "build_standing",
    "rank_standings",
    "rebuild_league",
]
