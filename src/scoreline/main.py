"""CLI entry point for the scoreline settlement pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import click

from scoreline import __version__

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from scoreline.config.models import AppConfig
    from scoreline.core.runtime import SettlementRuntime
    from scoreline.jobs.admin import JobAdmin
    from scoreline.jobs.state import Job

_config_dir_option = click.option("--config-dir", default="config", help="Path to configuration directory.")


def _open_database(config_dir: str) -> tuple[AppConfig, sessionmaker[Session]]:
    from scoreline.config.loader import load_config
    from scoreline.state.database import create_db_engine, get_session_factory, init_db

    config = load_config(config_dir=config_dir)
    engine = create_db_engine(url=config.database.url, echo=config.database.echo)
    init_db(engine)
    return config, get_session_factory(engine)


def _run_once(config_dir: str, action: Callable[[SettlementRuntime], Awaitable[Any]]) -> Any:
    """Run *action* on a private runtime and wait for every job it causes."""
    from scoreline.core.runtime import SettlementRuntime
    from scoreline.monitoring.logging import setup_logging

    config, session_factory = _open_database(config_dir)
    setup_logging(
        level=config.logging.level,
        json_output=config.logging.json_output,
        log_dir=config.logging.log_dir,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count,
    )

    async def _main() -> Any:
        runtime = SettlementRuntime(config)
        await runtime.initialize(session_factory, recover=False)
        runtime.start_workers()
        try:
            result = await action(runtime)
            await runtime.drain()
            return result
        finally:
            await runtime.shutdown()

    return asyncio.run(_main())


def _echo_job(job: Job) -> None:
    click.echo(f"Job {job.id}")
    click.echo(f"  Type: {job.job_type}")
    click.echo(f"  Status: {job.status.value}")
    click.echo(f"  Retries: {job.retry_count}/{job.max_retries}")
    click.echo(f"  Created: {job.created_at.isoformat()}")
    if job.correlation_id:
        click.echo(f"  Correlation: {job.correlation_id}")
    if job.error:
        click.echo(f"  Error: {job.error}")
    if job.result is not None:
        click.echo(f"  Result: {job.result}")


@click.group()
@click.version_option(version=__version__, prog_name="scoreline")
def cli() -> None:
    """Scoreline: bet settlement and league standings for prediction leagues."""


@cli.command()
@_config_dir_option
@click.option(
    "--environment",
    type=click.Choice(["development", "production"]),
    default=None,
    help="Override environment (default: from config).",
)
def run(config_dir: str, environment: str | None) -> None:
    """Start the job worker pool."""
    import signal as signal_mod

    from scoreline.config.loader import load_config
    from scoreline.core.runtime import SettlementRuntime
    from scoreline.monitoring.logging import get_logger, setup_logging
    from scoreline.monitoring.metrics import start_metrics_server, stop_metrics_server
    from scoreline.state.database import create_db_engine, get_session_factory, init_db

    config = load_config(config_dir=config_dir, environment=environment)
    setup_logging(
        level=config.logging.level,
        json_output=config.logging.json_output,
        log_dir=config.logging.log_dir,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count,
    )
    log = get_logger("scoreline.main")
    log.info("scoreline_starting", version=__version__, environment=config.environment.value)

    db_engine = create_db_engine(url=config.database.url, echo=config.database.echo)
    init_db(db_engine)
    session_factory = get_session_factory(db_engine)
    log.info("database_initialized", url=config.database.url)

    click.echo(f"Scoreline v{__version__}")
    click.echo(f"Environment: {config.environment.value}")
    click.echo(f"Database: {config.database.url}")
    click.echo(f"Workers: {config.runtime.worker_count}")

    if config.metrics.enabled:
        start_metrics_server(config.metrics.port)

    async def _run() -> None:
        runtime = SettlementRuntime(config)
        await runtime.initialize(session_factory)

        # Graceful shutdown on SIGINT / SIGTERM
        loop = asyncio.get_running_loop()
        for sig in (signal_mod.SIGINT, signal_mod.SIGTERM):
            loop.add_signal_handler(sig, runtime.stop)

        click.echo("Scoreline running. Press Ctrl+C to stop.")
        try:
            await runtime.run()
        finally:
            await runtime.shutdown()
            click.echo("Scoreline stopped.")

    try:
        asyncio.run(_run())
    finally:
        stop_metrics_server()


@cli.command()
@_config_dir_option
def validate_config(config_dir: str) -> None:
    """Validate configuration files without starting the system."""
    from scoreline.config.loader import load_config

    try:
        config = load_config(config_dir=config_dir)
        click.echo("Configuration is valid.")
        click.echo(f"  Environment: {config.environment.value}")
        click.echo(f"  Database: {config.database.url}")
        click.echo(f"  Workers: {config.runtime.worker_count}")
        click.echo(f"  Max retries: {config.jobs.default_max_retries}")
        click.echo(
            f"  Retry backoff: {config.jobs.retry_backoff_seconds}s (max {config.jobs.max_backoff_seconds}s)"
        )
        click.echo(f"  Discord alerts: {'on' if config.discord.enabled else 'off'}")
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1) from e


@cli.command()
@_config_dir_option
def init_db_cmd(config_dir: str) -> None:
    """Initialize the database (create tables)."""
    from scoreline.config.loader import load_config
    from scoreline.state.database import create_db_engine, init_db

    config = load_config(config_dir=config_dir)
    engine = create_db_engine(url=config.database.url, echo=config.database.echo)
    init_db(engine)
    click.echo(f"Database initialized at {config.database.url}")


@cli.command()
@_config_dir_option
@click.argument("predicted", nargs=2, type=click.IntRange(min=0))
@click.argument("actual", nargs=2, type=click.IntRange(min=0))
@click.option("--exact-points", default=None, type=click.IntRange(min=0), help="Default: scoring config.")
@click.option("--correct-points", default=None, type=click.IntRange(min=0), help="Default: scoring config.")
def score(
    config_dir: str,
    predicted: tuple[int, int],
    actual: tuple[int, int],
    exact_points: int | None,
    correct_points: int | None,
) -> None:
    """Score a PREDICTED home/away scoreline against the ACTUAL one."""
    from scoreline.config.loader import load_config
    from scoreline.scoring.engine import outcome_of
    from scoreline.scoring.engine import score as score_prediction

    scoring = load_config(config_dir=config_dir).scoring
    if exact_points is None:
        exact_points = scoring.exact_match_points
    if correct_points is None:
        correct_points = scoring.correct_result_points

    result = score_prediction(*predicted, *actual, exact_points, correct_points)
    click.echo(f"Prediction {predicted[0]}-{predicted[1]} vs result {actual[0]}-{actual[1]}")
    click.echo(f"  Outcome: {outcome_of(*predicted).value} predicted, {outcome_of(*actual).value} actual")
    click.echo(f"  Exact match: {'yes' if result.is_exact else 'no'}")
    click.echo(f"  Correct result: {'yes' if result.is_correct else 'no'}")
    click.echo(f"  Points: {result.points}")


@cli.command()
@_config_dir_option
@click.argument("match_id")
@click.option("--competition-id", default=None, help="Competition the match belongs to.")
def settle_match(config_dir: str, match_id: str, competition_id: str | None) -> None:
    """Settle every bet on MATCH_ID and rebuild the affected standings."""
    from scoreline.jobs.state import JobStatus
    from scoreline.settlement.orchestrator import CALCULATE_BET_RESULTS

    async def _settle(runtime: SettlementRuntime) -> str:
        return await runtime.dispatcher.enqueue(
            CALCULATE_BET_RESULTS,
            {"match_id": match_id, "competition_id": competition_id},
            created_by_user_id="cli",
            correlation_id=f"settle-{match_id}",
        )

    job_id = _run_once(config_dir, _settle)
    job = _admin(config_dir).get_job(job_id)
    _echo_job(job)
    if job.status == JobStatus.FAILED:
        raise SystemExit(1)


@cli.command()
@_config_dir_option
def settle_pending(config_dir: str) -> None:
    """Settle every finished match that still has unsettled bets."""
    from scoreline.settlement.sweep import enqueue_pending_settlements

    async def _sweep(runtime: SettlementRuntime) -> list[str]:
        return await enqueue_pending_settlements(runtime.repository, runtime.dispatcher, created_by_user_id="cli")

    job_ids = _run_once(config_dir, _sweep)
    if not job_ids:
        click.echo("No matches pending settlement.")
        return
    click.echo(f"Settled {len(job_ids)} match(es).")


# ── Jobs ─────────────────────────────────────────────────────────────────


@cli.group()
def jobs() -> None:
    """Inspect and manage background jobs."""


def _admin(config_dir: str) -> JobAdmin:
    from scoreline.jobs.admin import JobAdmin
    from scoreline.jobs.dispatcher import InMemoryJobDispatcher
    from scoreline.state.repository import SettlementRepository

    _, session_factory = _open_database(config_dir)
    repo = SettlementRepository(session_factory)
    return JobAdmin(repo, InMemoryJobDispatcher(repo))


@jobs.command("list")
@_config_dir_option
@click.option(
    "--status",
    type=click.Choice(["pending", "processing", "completed", "failed", "retrying", "cancelled"]),
    default=None,
)
@click.option("--type", "job_type", default=None, help="Filter by job type.")
@click.option("--page", default=1, show_default=True, type=click.IntRange(min=1))
@click.option("--page-size", default=20, show_default=True, type=click.IntRange(min=1, max=100))
def list_jobs(config_dir: str, status: str | None, job_type: str | None, page: int, page_size: int) -> None:
    """List jobs, newest first."""
    from scoreline.jobs.state import JobStatus

    result = _admin(config_dir).list_jobs(
        status=JobStatus(status) if status else None,
        job_type=job_type,
        page=page,
        page_size=page_size,
    )
    if not result.jobs:
        click.echo("No jobs found.")
        return

    header = f"{'ID':<36} {'Type':<28} {'Status':<11} {'Retries':>7} {'Created':<20}"
    click.echo(header)
    click.echo("-" * len(header))
    for job in result.jobs:
        created = job.created_at.strftime("%Y-%m-%d %H:%M:%S")
        retries = f"{job.retry_count}/{job.max_retries}"
        click.echo(f"{job.id:<36} {job.job_type:<28} {job.status.value:<11} {retries:>7} {created:<20}")
    click.echo("-" * len(header))
    click.echo(f"Page {result.page}/{result.total_pages} ({result.total} jobs)")


@jobs.command("show")
@_config_dir_option
@click.argument("job_id")
def show_job(config_dir: str, job_id: str) -> None:
    """Show one job."""
    from scoreline.errors import JobNotFound

    try:
        job = _admin(config_dir).get_job(job_id)
    except JobNotFound as e:
        click.echo(str(e), err=True)
        raise SystemExit(1) from e
    _echo_job(job)


@jobs.command("stats")
@_config_dir_option
def job_stats(config_dir: str) -> None:
    """Show job counts per status."""
    stats = _admin(config_dir).job_stats()
    for name, count in stats.items():
        click.echo(f"  {name:<11} {count:>6}")


@jobs.command("cancel")
@_config_dir_option
@click.argument("job_id")
def cancel_job(config_dir: str, job_id: str) -> None:
    """Cancel a pending, processing or retrying job."""
    from scoreline.errors import InvalidStateTransition, JobNotFound

    try:
        job = _admin(config_dir).cancel_job(job_id)
    except (JobNotFound, InvalidStateTransition) as e:
        click.echo(str(e), err=True)
        raise SystemExit(1) from e
    click.echo(f"Job {job.id} cancelled.")


@jobs.command("retry")
@_config_dir_option
@click.argument("job_id")
def retry_job(config_dir: str, job_id: str) -> None:
    """Retry a failed or cancelled job and run it."""
    from scoreline.errors import InvalidStateTransition, JobNotFound

    async def _retry(runtime: SettlementRuntime) -> Job:
        return await runtime.admin.retry_job(job_id)

    try:
        job = _run_once(config_dir, _retry)
    except (JobNotFound, InvalidStateTransition) as e:
        click.echo(str(e), err=True)
        raise SystemExit(1) from e
    _echo_job(_admin(config_dir).get_job(job.id))


# ── Standings ────────────────────────────────────────────────────────────


@cli.command()
@_config_dir_option
@click.argument("league_id")
@click.option("--user", "user_id", default=None, help="Show one member's stats.")
def standings(config_dir: str, league_id: str, user_id: str | None) -> None:
    """Show the standings of LEAGUE_ID."""
    from scoreline.standings.leaderboard import get_league_standings, get_user_stats
    from scoreline.state.repository import SettlementRepository

    _, session_factory = _open_database(config_dir)
    repo = SettlementRepository(session_factory)

    if user_id is not None:
        stats = get_user_stats(repo, league_id, user_id)
        if stats is None:
            click.echo(f"User {user_id} is not a member of league {league_id}.", err=True)
            raise SystemExit(1)
        click.echo(f"{user_id} in {league_id}")
        click.echo(f"  Rank: {stats.rank}")
        click.echo(f"  Points: {stats.total_points}")
        click.echo(f"  Bets: {stats.bets_placed}")
        click.echo(f"  Exact: {stats.exact_matches}")
        click.echo(f"  Correct: {stats.correct_results}")
        click.echo(f"  Accuracy: {stats.accuracy_pct:.2f}%")
        click.echo(f"  Streak: {stats.current_streak} (best {stats.best_streak})")
        return

    table = get_league_standings(repo, league_id)
    if not table:
        click.echo("No standings found.")
        return

    header = f"{'#':>3} {'User':<24} {'Pts':>5} {'Exact':>5} {'Correct':>7} {'Bets':>5} {'Streak':>6} {'Best':>5}"
    click.echo(header)
    click.echo("-" * len(header))
    for s in table:
        click.echo(
            f"{s.rank:>3} {s.user_id:<24} {s.total_points:>5} {s.exact_matches:>5} "
            f"{s.correct_results:>7} {s.bets_placed:>5} {s.current_streak:>6} {s.best_streak:>5}"
        )


if __name__ == "__main__":
    cli()
