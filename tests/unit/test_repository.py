"""Unit tests for the SettlementRepository."""

from __future__ import annotations

import dataclasses
import datetime

from sqlalchemy.orm import Session, sessionmaker

from scoreline.jobs.state import JobStatus, create_job, mark_processing
from scoreline.scoring.engine import ScoringRules
from scoreline.settlement.types import Settlement
from scoreline.standings.aggregator import Standing
from scoreline.state.database import create_db_engine, get_session_factory, init_db
from scoreline.state.models import BetRow, LeagueMemberRow, LeagueRow, MatchRow
from scoreline.state.repository import SettlementRepository

NOW = datetime.datetime(2026, 3, 14, 15, 0, tzinfo=datetime.UTC)


def _repo() -> tuple[SettlementRepository, sessionmaker[Session]]:
    """Create a repository backed by an in-memory SQLite database."""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    sf = get_session_factory(engine)
    return SettlementRepository(sf), sf


def _seed(sf: sessionmaker[Session]) -> None:
    """League l1 (3/1) with u1,u2; league l2 (5/2) with u1; match m1 finished 2-1."""
    with sf() as s:
        s.add_all(
            [
                LeagueRow(id="l1", name="Office", score_exact_match=3, score_correct_result=1),
                LeagueRow(id="l2", name="Family", score_exact_match=5, score_correct_result=2),
                LeagueMemberRow(league_id="l1", user_id="u1"),
                LeagueMemberRow(league_id="l1", user_id="u2"),
                LeagueMemberRow(league_id="l2", user_id="u1"),
                MatchRow(id="m1", competition_id="c1", status="finished", home_score=2, away_score=1, kickoff_at=NOW),
                MatchRow(id="m2", competition_id="c1", status="scheduled"),
                BetRow(id="b1", league_id="l1", user_id="u1", match_id="m1", predicted_home_score=2, predicted_away_score=1),
                BetRow(id="b2", league_id="l1", user_id="u2", match_id="m1", predicted_home_score=0, predicted_away_score=0),
                BetRow(id="b3", league_id="l2", user_id="u1", match_id="m1", predicted_home_score=1, predicted_away_score=0),
            ]
        )
        s.commit()


def _settlement(bet_id: str = "b1", points: int = 3, **overrides: object) -> Settlement:
    values: dict[str, object] = {
        "bet_id": bet_id,
        "points_earned": points,
        "is_exact_match": points == 3,
        "is_correct_result": points > 0,
        "calculated_at": NOW,
    }
    values.update(overrides)
    return Settlement(**values)  # type: ignore[arg-type]


# ── Jobs ─────────────────────────────────────────────────────────────────


class TestJobPersistence:
    def test_add_and_get_job(self) -> None:
        repo, _ = _repo()
        job = create_job("CalculateBetResults", {"match_id": "m1"}, now=NOW, correlation_id="c").job
        repo.add_job(job)
        loaded = repo.get_job(job.id)
        assert loaded == job
        assert loaded.created_at.tzinfo is not None

    def test_get_missing_job(self) -> None:
        repo, _ = _repo()
        assert repo.get_job("nope") is None

    def test_save_job(self) -> None:
        repo, _ = _repo()
        job = create_job("X", now=NOW).job
        repo.add_job(job)
        processing = mark_processing(job, now=NOW).job
        assert repo.save_job(processing) is True
        assert repo.get_job(job.id).status == JobStatus.PROCESSING

    def test_save_job_compare_and_set(self) -> None:
        repo, _ = _repo()
        job = create_job("X", now=NOW).job
        repo.add_job(job)
        processing = mark_processing(job, now=NOW).job

        assert repo.save_job(processing, expected_status=JobStatus.RETRYING) is False
        assert repo.get_job(job.id).status == JobStatus.PENDING
        assert repo.save_job(processing, expected_status=JobStatus.PENDING) is True

    def test_list_jobs_newest_first_with_total(self) -> None:
        repo, _ = _repo()
        for i in range(5):
            repo.add_job(create_job("X", now=NOW + datetime.timedelta(minutes=i), job_id=f"j{i}").job)
        jobs, total = repo.list_jobs(offset=0, limit=2)
        assert total == 5
        assert [j.id for j in jobs] == ["j4", "j3"]

        jobs, _ = repo.list_jobs(offset=4, limit=2)
        assert [j.id for j in jobs] == ["j0"]

    def test_list_jobs_filters(self) -> None:
        repo, _ = _repo()
        a = create_job("A", now=NOW).job
        b = create_job("B", now=NOW).job
        repo.add_job(a)
        repo.add_job(b)
        repo.save_job(mark_processing(b, now=NOW).job)

        jobs, total = repo.list_jobs(status=JobStatus.PROCESSING)
        assert total == 1
        assert jobs[0].id == b.id
        jobs, total = repo.list_jobs(job_type="A")
        assert total == 1
        assert jobs[0].id == a.id

    def test_count_by_status(self) -> None:
        repo, _ = _repo()
        repo.add_job(create_job("X", now=NOW).job)
        repo.add_job(create_job("X", now=NOW).job)
        job = create_job("X", now=NOW).job
        repo.add_job(job)
        repo.save_job(mark_processing(job, now=NOW).job)
        assert repo.count_jobs_by_status() == {"pending": 2, "processing": 1}

    def test_find_stale_jobs(self) -> None:
        repo, _ = _repo()
        old = create_job("X", now=NOW).job
        fresh = create_job("X", now=NOW).job
        repo.add_job(old)
        repo.add_job(fresh)
        repo.save_job(mark_processing(old, now=NOW - datetime.timedelta(hours=1)).job)
        repo.save_job(mark_processing(fresh, now=NOW).job)

        stale = repo.find_stale_jobs(NOW - datetime.timedelta(minutes=15))
        assert [j.id for j in stale] == [old.id]

    def test_find_jobs_by_status(self) -> None:
        repo, _ = _repo()
        job = create_job("X", now=NOW).job
        repo.add_job(job)
        repo.save_job(dataclasses.replace(job, status=JobStatus.RETRYING))
        repo.add_job(create_job("X", now=NOW).job)
        found = repo.find_jobs([JobStatus.RETRYING])
        assert [j.id for j in found] == [job.id]


# ── Settlement inputs ────────────────────────────────────────────────────


class TestSettlementInputs:
    def test_get_match(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        match = repo.get_match("m1")
        assert match.home_score == 2
        assert match.away_score == 1
        assert match.has_final_score
        assert match.kickoff_at == NOW
        assert repo.get_match("nope") is None

    def test_scheduled_match_has_no_final_score(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        assert not repo.get_match("m2").has_final_score

    def test_predictions_for_match(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        predictions = repo.get_predictions_for_match("m1")
        assert [p.id for p in predictions] == ["b1", "b2", "b3"]
        assert predictions[0].predicted_home == 2
        assert predictions[0].league_id == "l1"
        assert repo.get_predictions_for_match("m2") == []

    def test_scoring_rules_batch(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        rules = repo.get_scoring_rules(["l1", "l2", "missing"])
        assert rules == {
            "l1": ScoringRules(exact_points=3, correct_points=1),
            "l2": ScoringRules(exact_points=5, correct_points=2),
        }
        assert repo.get_scoring_rules([]) == {}

    def test_matches_pending_settlement(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        assert repo.find_matches_pending_settlement() == [("m1", "c1")]

        for bet_id in ("b1", "b2", "b3"):
            repo.upsert_settlement(_settlement(bet_id, 0))
        assert repo.find_matches_pending_settlement() == []

    def test_bets_of_deleted_league_not_pending(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        for bet_id in ("b1", "b2", "b3"):
            repo.upsert_settlement(_settlement(bet_id, 0))
        with sf() as s:
            s.add_all(
                [
                    MatchRow(id="m3", competition_id="c1", status="finished", home_score=0, away_score=0),
                    BetRow(id="b9", league_id="gone", user_id="u1", match_id="m3", predicted_home_score=0, predicted_away_score=0),
                ]
            )
            s.commit()

        assert repo.find_matches_pending_settlement() == []


# ── Settlements ──────────────────────────────────────────────────────────


class TestUpsertSettlement:
    def test_insert_then_update(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        assert repo.upsert_settlement(_settlement("b1", 3)) is True
        assert repo.upsert_settlement(_settlement("b1", 1, is_exact_match=False)) is False

        stored = repo.get_settlement("b1")
        assert stored.points_earned == 1
        assert stored.is_exact_match is False
        assert repo.count_settlements() == 1

    def test_repeated_upsert_is_idempotent(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        for _ in range(3):
            repo.upsert_settlement(_settlement("b1", 3))
        assert repo.count_settlements() == 1
        assert repo.get_settlement("b1") == _settlement("b1", 3)

    def test_get_missing_settlement(self) -> None:
        repo, _ = _repo()
        assert repo.get_settlement("b1") is None


# ── Standings ────────────────────────────────────────────────────────────


class TestStandingsPersistence:
    def test_league_members_sorted(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        assert repo.get_league_members("l1") == ["u1", "u2"]
        assert repo.get_league_members("nope") == []
        assert repo.is_league_member("l2", "u1")
        assert not repo.is_league_member("l2", "u2")

    def test_league_settlements_scoped_to_league(self) -> None:
        repo, sf = _repo()
        _seed(sf)
        repo.upsert_settlement(_settlement("b1", 3))
        repo.upsert_settlement(_settlement("b3", 2))

        l1 = repo.get_league_settlements("l1")
        assert [(s.bet_id, s.user_id, s.points_earned) for s in l1] == [("b1", "u1", 3)]
        assert l1[0].match_kickoff_at == NOW
        assert [s.bet_id for s in repo.get_league_settlements("l2")] == ["b3"]

    def test_replace_standings(self) -> None:
        repo, _ = _repo()
        first = [
            Standing("l1", "u1", total_points=3, bets_placed=1, rank=1, last_updated_at=NOW),
            Standing("l1", "u2", total_points=0, bets_placed=1, rank=2, last_updated_at=NOW),
        ]
        repo.replace_standings("l1", first)
        assert repo.get_standings("l1") == first

        second = [Standing("l1", "u2", total_points=5, bets_placed=2, rank=1, last_updated_at=NOW)]
        repo.replace_standings("l1", second)
        assert repo.get_standings("l1") == second

    def test_replace_standings_leaves_other_leagues(self) -> None:
        repo, _ = _repo()
        repo.replace_standings("l1", [Standing("l1", "u1", rank=1, last_updated_at=NOW)])
        repo.replace_standings("l2", [Standing("l2", "u1", rank=1, last_updated_at=NOW)])
        repo.replace_standings("l1", [])
        assert repo.get_standings("l1") == []
        assert len(repo.get_standings("l2")) == 1
