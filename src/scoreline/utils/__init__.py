"""Utility modules for scoreline."""

from scoreline.utils.clock import Clock, FrozenClock, utc_now

__all__ = ["Clock", "FrozenClock", "utc_now"]
