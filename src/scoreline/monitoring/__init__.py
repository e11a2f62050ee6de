"""Logging, metrics and alerting."""

from scoreline.monitoring.discord import DiscordAlerter
from scoreline.monitoring.logging import get_logger, setup_logging
from scoreline.monitoring.metrics import Metrics, metrics, start_metrics_server, stop_metrics_server

__all__ = [
    "DiscordAlerter",
    "Metrics",
    "get_logger",
    "metrics",
    "setup_logging",
    "start_metrics_server",
    "stop_metrics_server",
]
