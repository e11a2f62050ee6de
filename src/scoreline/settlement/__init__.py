"""Bet settlement for finished matches."""

from scoreline.settlement.orchestrator import (
    CALCULATE_BET_RESULTS,
    RECALCULATE_LEAGUE_STANDINGS,
    SettlementOrchestrator,
)
from scoreline.settlement.types import LeagueSettlement, MatchInfo, Prediction, Settlement, SettlementSummary

__all__ = [
    "CALCULATE_BET_RESULTS",
    "RECALCULATE_LEAGUE_STANDINGS",
    "LeagueSettlement",
    "MatchInfo",
    "Prediction",
    "Settlement",
    "SettlementOrchestrator",
    "SettlementSummary",
]
