"""Process runtime."""

from scoreline.core.runtime import SettlementRuntime

__all__ = ["SettlementRuntime"]
