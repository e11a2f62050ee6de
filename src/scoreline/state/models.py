"""SQLAlchemy ORM models for settlement state."""

from __future__ import annotations

import datetime  # noqa: TCH003
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class JobRow(Base):
    """Persisted job envelope."""

    __tablename__ = "background_jobs"
    __table_args__ = (Index("ix_background_jobs_type_status", "job_type", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scheduled_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)


class MatchRow(Base):
    __tablename__ = "matches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    competition_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    home_team: Mapped[str] = mapped_column(String(100), default="")
    away_team: Mapped[str] = mapped_column(String(100), default="")
    kickoff_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="scheduled")
    home_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    away_score: Mapped[int | None] = mapped_column(Integer, nullable=True)


class LeagueRow(Base):
    __tablename__ = "leagues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), default="")
    score_exact_match: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    score_correct_result: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class LeagueMemberRow(Base):
    __tablename__ = "league_members"
    __table_args__ = (UniqueConstraint("league_id", "user_id", name="uq_league_member"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    league_id: Mapped[str] = mapped_column(ForeignKey("leagues.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    joined_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BetRow(Base):
    __tablename__ = "bets"
    __table_args__ = (UniqueConstraint("league_id", "user_id", "match_id", name="uq_bet_per_match"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    league_id: Mapped[str] = mapped_column(ForeignKey("leagues.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    match_id: Mapped[str] = mapped_column(ForeignKey("matches.id"), nullable=False, index=True)
    predicted_home_score: Mapped[int] = mapped_column(Integer, nullable=False)
    predicted_away_score: Mapped[int] = mapped_column(Integer, nullable=False)
    placed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class BetResultRow(Base):
    """Settlement of one bet; keyed by the bet id."""

    __tablename__ = "bet_results"
    __table_args__ = (CheckConstraint("points_earned >= 0", name="ck_bet_results_points_non_negative"),)

    bet_id: Mapped[str] = mapped_column(ForeignKey("bets.id"), primary_key=True)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    is_exact_match: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_correct_result: Mapped[bool] = mapped_column(Boolean, nullable=False)
    calculated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LeagueStandingRow(Base):
    __tablename__ = "league_standings"
    __table_args__ = (UniqueConstraint("league_id", "user_id", name="uq_league_standing"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    league_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    bets_placed: Mapped[int] = mapped_column(Integer, default=0)
    exact_matches: Mapped[int] = mapped_column(Integer, default=0)
    correct_results: Mapped[int] = mapped_column(Integer, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    best_streak: Mapped[int] = mapped_column(Integer, default=0)
    rank: Mapped[int] = mapped_column(Integer, default=0)
    last_updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
