"""Repository over the settlement database.

Every public method opens its own short-lived session, so no session (and
no lock) is held across the awaits of the async job handlers.
"""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from scoreline.jobs.state import Job, JobStatus
from scoreline.scoring.engine import ScoringRules
from scoreline.settlement.types import LeagueSettlement, MatchInfo, Prediction, Settlement
from scoreline.standings.aggregator import Standing
from scoreline.state.models import (
    BetResultRow,
    BetRow,
    JobRow,
    LeagueMemberRow,
    LeagueRow,
    LeagueStandingRow,
    MatchRow,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

logger = structlog.get_logger("scoreline.state.repository")


def _as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """SQLite drops tzinfo; stored datetimes are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


def _job_from_row(row: JobRow) -> Job:
    return Job(
        id=row.id,
        job_type=row.job_type,
        status=JobStatus(row.status),
        created_at=_as_utc(row.created_at),  # type: ignore[arg-type]
        payload=dict(row.payload or {}),
        result=dict(row.result) if row.result is not None else None,
        error=row.error,
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        started_at=_as_utc(row.started_at),
        completed_at=_as_utc(row.completed_at),
        scheduled_at=_as_utc(row.scheduled_at),
        created_by_user_id=row.created_by_user_id,
        correlation_id=row.correlation_id,
    )


def _job_values(job: Job) -> dict[str, Any]:
    return {
        "job_type": job.job_type,
        "status": job.status.value,
        "payload": dict(job.payload),
        "result": dict(job.result) if job.result is not None else None,
        "error": job.error,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "created_at": job.created_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "scheduled_at": job.scheduled_at,
        "created_by_user_id": job.created_by_user_id,
        "correlation_id": job.correlation_id,
    }


class SettlementRepository:
    """Persistence for jobs, settlements and standings."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # ── Jobs ──────────────────────────────────────────────────────────

    def add_job(self, job: Job) -> None:
        with self._session_factory() as session:
            session.add(JobRow(id=job.id, **_job_values(job)))
            session.commit()

    def get_job(self, job_id: str) -> Job | None:
        with self._session_factory() as session:
            row = session.get(JobRow, job_id)
            return _job_from_row(row) if row is not None else None

    def save_job(self, job: Job, *, expected_status: JobStatus | None = None) -> bool:
        """Persist a transitioned job.

        With *expected_status* the write is a compare-and-set: it only
        applies if the stored status still matches, and returns False when
        another writer got there first.
        """
        with self._session_factory() as session:
            stmt = update(JobRow).where(JobRow.id == job.id)
            if expected_status is not None:
                stmt = stmt.where(JobRow.status == expected_status.value)
            result = session.execute(stmt.values(**_job_values(job)))
            session.commit()
            return bool(result.rowcount)

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        job_type: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Job], int]:
        """Return one page of jobs (newest first) and the total match count."""
        with self._session_factory() as session:
            query = select(JobRow)
            if status is not None:
                query = query.where(JobRow.status == status.value)
            if job_type:
                query = query.where(JobRow.job_type == job_type)

            total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
            rows = session.scalars(
                query.order_by(JobRow.created_at.desc(), JobRow.id).offset(offset).limit(limit)
            ).all()
            return [_job_from_row(r) for r in rows], int(total)

    def count_jobs_by_status(self) -> dict[str, int]:
        with self._session_factory() as session:
            rows = session.execute(select(JobRow.status, func.count()).group_by(JobRow.status)).all()
            return {status: int(count) for status, count in rows}

    def find_jobs(self, statuses: list[JobStatus]) -> list[Job]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(JobRow)
                .where(JobRow.status.in_([s.value for s in statuses]))
                .order_by(JobRow.created_at)
            ).all()
            return [_job_from_row(r) for r in rows]

    def find_stale_jobs(self, started_before: datetime.datetime) -> list[Job]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(JobRow).where(
                    JobRow.status == JobStatus.PROCESSING.value,
                    JobRow.started_at < started_before,
                )
            ).all()
            return [_job_from_row(r) for r in rows]

    # ── Settlement inputs ─────────────────────────────────────────────

    def get_match(self, match_id: str) -> MatchInfo | None:
        with self._session_factory() as session:
            row = session.get(MatchRow, match_id)
            if row is None:
                return None
            return MatchInfo(
                id=row.id,
                competition_id=row.competition_id,
                home_score=row.home_score,
                away_score=row.away_score,
                status=row.status,
                kickoff_at=_as_utc(row.kickoff_at),
            )

    def get_predictions_for_match(self, match_id: str) -> list[Prediction]:
        with self._session_factory() as session:
            rows = session.scalars(select(BetRow).where(BetRow.match_id == match_id).order_by(BetRow.id)).all()
            return [
                Prediction(
                    id=r.id,
                    league_id=r.league_id,
                    user_id=r.user_id,
                    match_id=r.match_id,
                    predicted_home=r.predicted_home_score,
                    predicted_away=r.predicted_away_score,
                    placed_at=_as_utc(r.placed_at),
                )
                for r in rows
            ]

    def get_scoring_rules(self, league_ids: list[str]) -> dict[str, ScoringRules]:
        if not league_ids:
            return {}
        with self._session_factory() as session:
            rows = session.scalars(select(LeagueRow).where(LeagueRow.id.in_(league_ids))).all()
            return {
                r.id: ScoringRules(exact_points=r.score_exact_match, correct_points=r.score_correct_result)
                for r in rows
            }

    def find_matches_pending_settlement(self) -> list[tuple[str, str | None]]:
        """Finished matches with a final score and at least one unsettled bet.

        Bets whose league no longer exists are never settled, so they do not count.
        """
        with self._session_factory() as session:
            rows = session.execute(
                select(MatchRow.id, MatchRow.competition_id)
                .join(BetRow, BetRow.match_id == MatchRow.id)
                .join(LeagueRow, LeagueRow.id == BetRow.league_id)
                .outerjoin(BetResultRow, BetResultRow.bet_id == BetRow.id)
                .where(
                    MatchRow.status == "finished",
                    MatchRow.home_score.is_not(None),
                    MatchRow.away_score.is_not(None),
                    BetResultRow.bet_id.is_(None),
                )
                .distinct()
                .order_by(MatchRow.id)
            ).all()
            return [(match_id, competition_id) for match_id, competition_id in rows]

    # ── Settlements ───────────────────────────────────────────────────

    def upsert_settlement(self, settlement: Settlement) -> bool:
        """Create or overwrite the settlement of a bet. Returns True if created.

        A concurrent insert of the same bet surfaces as an IntegrityError,
        in which case the write is replayed as an update.
        """
        values = {
            "points_earned": settlement.points_earned,
            "is_exact_match": settlement.is_exact_match,
            "is_correct_result": settlement.is_correct_result,
            "calculated_at": settlement.calculated_at,
        }
        with self._session_factory() as session:
            row = session.get(BetResultRow, settlement.bet_id)
            if row is not None:
                for key, value in values.items():
                    setattr(row, key, value)
                session.commit()
                return False

            session.add(BetResultRow(bet_id=settlement.bet_id, **values))
            try:
                session.commit()
                return True
            except IntegrityError:
                session.rollback()
                logger.warning("settlement_insert_race", bet_id=settlement.bet_id)

        with self._session_factory() as session:
            session.execute(update(BetResultRow).where(BetResultRow.bet_id == settlement.bet_id).values(**values))
            session.commit()
        return False

    def get_settlement(self, bet_id: str) -> Settlement | None:
        with self._session_factory() as session:
            row = session.get(BetResultRow, bet_id)
            if row is None:
                return None
            return Settlement(
                bet_id=row.bet_id,
                points_earned=row.points_earned,
                is_exact_match=row.is_exact_match,
                is_correct_result=row.is_correct_result,
                calculated_at=_as_utc(row.calculated_at),  # type: ignore[arg-type]
            )

    def count_settlements(self) -> int:
        with self._session_factory() as session:
            return int(session.scalar(select(func.count()).select_from(BetResultRow)) or 0)

    # ── Standings ─────────────────────────────────────────────────────

    def get_league_members(self, league_id: str) -> list[str]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(LeagueMemberRow.user_id)
                    .where(LeagueMemberRow.league_id == league_id)
                    .order_by(LeagueMemberRow.user_id)
                ).all()
            )

    def get_league_settlements(self, league_id: str) -> list[LeagueSettlement]:
        with self._session_factory() as session:
            rows = session.execute(
                select(BetRow.id, BetRow.user_id, BetResultRow, MatchRow.kickoff_at)
                .join(BetResultRow, BetResultRow.bet_id == BetRow.id)
                .join(MatchRow, MatchRow.id == BetRow.match_id)
                .where(BetRow.league_id == league_id)
            ).all()
            return [
                LeagueSettlement(
                    bet_id=bet_id,
                    user_id=user_id,
                    points_earned=result.points_earned,
                    is_exact_match=result.is_exact_match,
                    is_correct_result=result.is_correct_result,
                    calculated_at=_as_utc(result.calculated_at),  # type: ignore[arg-type]
                    match_kickoff_at=_as_utc(kickoff_at),
                )
                for bet_id, user_id, result, kickoff_at in rows
            ]

    def get_standings(self, league_id: str) -> list[Standing]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(LeagueStandingRow)
                .where(LeagueStandingRow.league_id == league_id)
                .order_by(LeagueStandingRow.rank, LeagueStandingRow.user_id)
            ).all()
            return [
                Standing(
                    league_id=r.league_id,
                    user_id=r.user_id,
                    total_points=r.total_points,
                    bets_placed=r.bets_placed,
                    exact_matches=r.exact_matches,
                    correct_results=r.correct_results,
                    current_streak=r.current_streak,
                    best_streak=r.best_streak,
                    last_updated_at=_as_utc(r.last_updated_at),
                    rank=r.rank,
                )
                for r in rows
            ]

    def replace_standings(self, league_id: str, standings: list[Standing]) -> None:
        """Swap a league's whole table in one transaction."""
        with self._session_factory() as session:
            session.execute(delete(LeagueStandingRow).where(LeagueStandingRow.league_id == league_id))
            session.add_all(
                LeagueStandingRow(
                    league_id=league_id,
                    user_id=s.user_id,
                    total_points=s.total_points,
                    bets_placed=s.bets_placed,
                    exact_matches=s.exact_matches,
                    correct_results=s.correct_results,
                    current_streak=s.current_streak,
                    best_streak=s.best_streak,
                    rank=s.rank,
                    last_updated_at=s.last_updated_at,
                )
                for s in standings
            )
            session.commit()

    def is_league_member(self, league_id: str, user_id: str) -> bool:
        with self._session_factory() as session:
            found = session.scalar(
                select(LeagueMemberRow.id).where(
                    LeagueMemberRow.league_id == league_id,
                    LeagueMemberRow.user_id == user_id,
                )
            )
            return found is not None
