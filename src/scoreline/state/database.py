"""Database engine and session management."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TCH002
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from scoreline.state.models import Base


def create_db_engine(url: str = "sqlite:///scoreline.db", echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine.

    In-memory SQLite URLs share one connection so every session sees the
    same database.
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo)


def init_db(engine: Engine) -> None:
    """Create all tables if they don't exist."""
    Base.metadata.create_all(engine)


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Get a session factory bound to the given engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)
