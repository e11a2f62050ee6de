"""Bet scoring engine.

Scoring rule for a single prediction against a final score:

- exact score                          -> ``exact_points``
- same outcome (home win / draw / away) -> ``correct_points``
- anything else                        -> 0

The engine is a pure function of its inputs. It never sees an unfinished
match: callers must raise :class:`~scoreline.errors.ScoresNotFinal` first.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Outcome(StrEnum):
    """Outcome class of a scoreline."""

    HOME_WIN = "home_win"
    DRAW = "draw"
    AWAY_WIN = "away_win"


def outcome_of(home: int, away: int) -> Outcome:
    if home > away:
        return Outcome.HOME_WIN
    if home < away:
        return Outcome.AWAY_WIN
    return Outcome.DRAW


@dataclass(frozen=True)
class ScoringRules:
    """Per-league point values."""

    exact_points: int = 3
    correct_points: int = 1

    def __post_init__(self) -> None:
        if self.exact_points < 0 or self.correct_points < 0:
            raise ValueError(
                f"Scoring points must be non-negative, got exact={self.exact_points} correct={self.correct_points}"
            )


@dataclass(frozen=True)
class ScoreResult:
    """Points and flags for one settled prediction."""

    points: int
    is_exact: bool
    is_correct: bool


def score(
    predicted_home: int,
    predicted_away: int,
    actual_home: int,
    actual_away: int,
    exact_points: int,
    correct_points: int,
) -> ScoreResult:
    """Score a prediction against the final result."""
    if exact_points < 0 or correct_points < 0:
        raise ValueError("Scoring points must be non-negative")

    if predicted_home == actual_home and predicted_away == actual_away:
        return ScoreResult(points=exact_points, is_exact=True, is_correct=True)

    if outcome_of(predicted_home, predicted_away) == outcome_of(actual_home, actual_away):
        return ScoreResult(points=correct_points, is_exact=False, is_correct=True)

    return ScoreResult(points=0, is_exact=False, is_correct=False)


def score_with_rules(
    predicted_home: int,
    predicted_away: int,
    actual_home: int,
    actual_away: int,
    rules: ScoringRules,
) -> ScoreResult:
    """Convenience wrapper around :func:`score` taking a :class:`ScoringRules`."""
    return score(predicted_home, predicted_away, actual_home, actual_away, rules.exact_points, rules.correct_points)
