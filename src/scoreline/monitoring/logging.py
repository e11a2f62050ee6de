"""Structured logging setup using structlog.

Every record (structlog event or plain stdlib record) goes through the same
processor chain and is written to stdout and to a size-rotated
``scoreline.log``. Job workers bind the running job's identity with
:func:`job_log_context` so that anything logged underneath it, including
records from the settlement and standings code, carries ``job_id``.
"""

from __future__ import annotations

import contextlib
import logging
import logging.handlers
import sys
from collections.abc import Iterator
from pathlib import Path

import structlog

_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "urllib3")
LOG_FILE_NAME = "scoreline.log"


def _build_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def setup_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_dir: str = "logs",
    *,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure structured logging for the pipeline.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: If True, output JSON lines. If False, output human-readable.
        log_dir: Directory for the ``scoreline.log`` file.
        max_bytes: Rotate the log file once it reaches this size. 0 disables rotation.
        backup_count: Number of rotated files to keep.
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    shared_processors = _build_processors()
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
        logging.handlers.RotatingFileHandler(
            log_path / LOG_FILE_NAME, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ),
    ]

    root_logger = logging.getLogger()
    for old in root_logger.handlers[:]:
        root_logger.removeHandler(old)
        old.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


@contextlib.contextmanager
def job_log_context(job_id: str, job_type: str, correlation_id: str | None = None) -> Iterator[None]:
    """Bind a job's identity to every log record emitted inside the block."""
    bound: dict[str, str] = {"job_id": job_id, "job_type": job_type}
    if correlation_id:
        bound["correlation_id"] = correlation_id
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger bound to the given name."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
