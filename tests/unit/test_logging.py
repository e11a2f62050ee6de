"""Unit tests for structured logging setup."""

from __future__ import annotations

import json
import logging
import logging.handlers
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

from scoreline.monitoring.logging import get_logger, job_log_context, setup_logging


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


class TestSetupLogging:
    def test_default_setup(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", json_output=True, log_dir=str(tmp_path))
        root = logging.getLogger()
        assert root.level == logging.INFO
        # Console and file
        assert len(root.handlers) == 2

    def test_debug_level(self, tmp_path: Path) -> None:
        setup_logging(level="DEBUG", json_output=False, log_dir=str(tmp_path))
        assert logging.getLogger().level == logging.DEBUG

    def test_log_dir_created(self, tmp_path: Path) -> None:
        log_dir = tmp_path / "nested" / "logs"
        setup_logging(level="INFO", log_dir=str(log_dir))
        assert log_dir.exists()

    def test_stdlib_records_reach_file(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", json_output=True, log_dir=str(tmp_path))
        logging.getLogger("test.file_write").info("hello from test")
        _flush()

        content = (tmp_path / "scoreline.log").read_text()
        assert "hello from test" in content

    def test_structlog_events_are_json_lines(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", json_output=True, log_dir=str(tmp_path))
        get_logger("scoreline.test").info("job_completed", job_id="j-1", bets_settled=4)
        _flush()

        lines = [line for line in (tmp_path / "scoreline.log").read_text().splitlines() if "job_completed" in line]
        assert lines
        record = json.loads(lines[-1])
        assert record["event"] == "job_completed"
        assert record["job_id"] == "j-1"
        assert record["bets_settled"] == 4
        assert record["level"] == "info"

    def test_level_filters_debug(self, tmp_path: Path) -> None:
        setup_logging(level="WARNING", log_dir=str(tmp_path))
        logging.getLogger("test.filtered").info("should not appear")
        _flush()
        assert "should not appear" not in (tmp_path / "scoreline.log").read_text()

    def test_noisy_loggers_suppressed(self, tmp_path: Path) -> None:
        setup_logging(level="DEBUG", log_dir=str(tmp_path))
        for name in ("httpx", "httpcore", "sqlalchemy.engine", "urllib3"):
            assert logging.getLogger(name).level == logging.WARNING

    def test_console_output_mode(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", json_output=False, log_dir=str(tmp_path))
        logging.getLogger("test.console_mode").info("console test message")

    def test_handlers_cleared_on_reinit(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", log_dir=str(tmp_path))
        setup_logging(level="DEBUG", log_dir=str(tmp_path))
        # Exactly 2 handlers, not 4
        assert len(logging.getLogger().handlers) == 2


    def test_rotation_settings(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", log_dir=str(tmp_path), max_bytes=1024, backup_count=2)
        (rotating,) = [h for h in logging.getLogger().handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert rotating.maxBytes == 1024
        assert rotating.backupCount == 2


class TestJobLogContext:
    def test_job_fields_bound_inside_block(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", json_output=True, log_dir=str(tmp_path))
        log = get_logger("scoreline.test")
        with job_log_context("j-7", "CalculateBetResults", "settle-m1"):
            log.info("bets_settled_inside")
        log.info("bets_settled_outside")
        _flush()

        records = [json.loads(line) for line in (tmp_path / "scoreline.log").read_text().splitlines()]
        inside = next(r for r in records if r["event"] == "bets_settled_inside")
        outside = next(r for r in records if r["event"] == "bets_settled_outside")
        assert inside["job_id"] == "j-7"
        assert inside["job_type"] == "CalculateBetResults"
        assert inside["correlation_id"] == "settle-m1"
        assert "job_id" not in outside

    def test_correlation_optional(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", json_output=True, log_dir=str(tmp_path))
        with job_log_context("j-8", "RecalculateLeagueStandings"):
            get_logger("scoreline.test").info("standings_rebuilt_ctx")
        _flush()

        records = [json.loads(line) for line in (tmp_path / "scoreline.log").read_text().splitlines()]
        record = next(r for r in records if r["event"] == "standings_rebuilt_ctx")
        assert record["job_id"] == "j-8"
        assert "correlation_id" not in record


class TestGetLogger:
    def test_returns_bound_logger(self, tmp_path: Path) -> None:
        setup_logging(level="INFO", log_dir=str(tmp_path))
        logger = get_logger("scoreline.test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")
        assert hasattr(logger, "bind")
