"""Value types shared by the settlement orchestrator and the aggregator."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field


@dataclass(frozen=True)
class MatchInfo:
    """A match as seen by settlement. Scores are ``None`` until final."""

    id: str
    competition_id: str | None
    home_score: int | None
    away_score: int | None
    status: str = "scheduled"
    kickoff_at: datetime.datetime | None = None

    @property
    def has_final_score(self) -> bool:
        return self.home_score is not None and self.away_score is not None


@dataclass(frozen=True)
class Prediction:
    """A member's forecast for one match within one league."""

    id: str
    league_id: str
    user_id: str
    match_id: str
    predicted_home: int
    predicted_away: int
    placed_at: datetime.datetime | None = None


@dataclass(frozen=True)
class Settlement:
    """Computed outcome for exactly one prediction."""

    bet_id: str
    points_earned: int
    is_exact_match: bool
    is_correct_result: bool
    calculated_at: datetime.datetime

    def __post_init__(self) -> None:
        if self.points_earned < 0:
            raise ValueError(f"points_earned cannot be negative, got {self.points_earned}")


@dataclass(frozen=True)
class LeagueSettlement:
    """A settlement joined with the bet it belongs to, for standings rebuilds."""

    bet_id: str
    user_id: str
    points_earned: int
    is_exact_match: bool
    is_correct_result: bool
    calculated_at: datetime.datetime
    match_kickoff_at: datetime.datetime | None = None


@dataclass
class SettlementSummary:
    """What a CalculateBetResults run did."""

    match_id: str
    bets_settled: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    league_ids: list[str] = field(default_factory=list)
    follow_up_job_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "match_id": self.match_id,
            "bets_settled": self.bets_settled,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "league_ids": list(self.league_ids),
            "follow_up_job_id": self.follow_up_job_id,
        }
