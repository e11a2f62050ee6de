"""Scoreline: settlement pipeline for prediction leagues."""

__version__ = "0.1.0"
