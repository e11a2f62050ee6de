"""Configuration management for the settlement pipeline."""

from scoreline.config.loader import load_config
from scoreline.config.models import AppConfig, Environment

__all__ = ["AppConfig", "Environment", "load_config"]
