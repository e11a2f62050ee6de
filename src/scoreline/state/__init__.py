"""State management and persistence."""

from scoreline.state.database import create_db_engine, get_session_factory, init_db
from scoreline.state.repository import SettlementRepository

__all__ = ["SettlementRepository", "create_db_engine", "get_session_factory", "init_db"]
