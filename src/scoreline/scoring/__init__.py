"""Prediction scoring for scoreline."""

from scoreline.scoring.engine import Outcome, ScoreResult, ScoringRules, outcome_of, score, score_with_rules

__all__ = ["Outcome", "ScoreResult", "ScoringRules", "outcome_of", "score", "score_with_rules"]
