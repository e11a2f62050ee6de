"""In-process metrics for observability.

Tracks counters and gauges that are:
- Logged periodically via structlog
- Exposed as JSON on an optional HTTP endpoint (``/metrics``)
- Mirrored into a per-instance ``prometheus_client`` registry and served
  on ``/prometheus`` in the Prometheus text format

Finished job attempts are additionally recorded per job type: an outcome
counter (``scoreline_job_outcomes_total{job_type, outcome}``) and a handler
duration histogram (``scoreline_job_duration_seconds{job_type}``).
"""

from __future__ import annotations

import json
import re
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any

import structlog
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client import Counter as PromCounter
from prometheus_client import Gauge as PromGauge
from prometheus_client import Histogram as PromHistogram

logger = structlog.get_logger("scoreline.monitoring.metrics")

_INVALID_METRIC_CHARS = re.compile(r"[^a-zA-Z0-9_]")

# Settlement of a busy match or a large league rebuild can take seconds.
_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


def _prom_name(name: str) -> str:
    return "scoreline_" + _INVALID_METRIC_CHARS.sub("_", name)


class Metrics:
    """Thread-safe in-memory metrics store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._start_time = time.monotonic()

        self.registry = CollectorRegistry()
        self._prom_counters: dict[str, PromCounter] = {}
        self._prom_gauges: dict[str, PromGauge] = {}

        self._job_runs: dict[str, dict[str, float]] = {}
        self._job_outcomes = PromCounter(
            "scoreline_job_outcomes",
            "Finished job attempts by job type and outcome",
            ["job_type", "outcome"],
            registry=self.registry,
        )
        self._job_duration = PromHistogram(
            "scoreline_job_duration_seconds",
            "Handler run time by job type",
            ["job_type"],
            buckets=_DURATION_BUCKETS,
            registry=self.registry,
        )

    def observe_job(self, job_type: str, outcome: str, duration_seconds: float) -> None:
        """Record one finished handler run (completed, retrying or failed)."""
        self.increment(f"jobs_{outcome}")
        with self._lock:
            runs = self._job_runs.setdefault(job_type, {"runs": 0, "total_seconds": 0.0, "max_seconds": 0.0})
            runs["runs"] += 1
            runs["total_seconds"] += duration_seconds
            runs["max_seconds"] = max(runs["max_seconds"], duration_seconds)
        self._job_outcomes.labels(job_type=job_type, outcome=outcome).inc()
        self._job_duration.labels(job_type=job_type).observe(duration_seconds)

    def increment(self, name: str, value: int = 1) -> None:
        """Increment a counter by *value*."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value
            pc = self._prom_counters.get(name)
            if pc is None:
                pc = PromCounter(_prom_name(name), f"Counter: {name}", registry=self.registry)
                self._prom_counters[name] = pc
        pc.inc(value)

    def set_gauge(self, name: str, value: float) -> None:
        """Set a gauge to an absolute value."""
        with self._lock:
            self._gauges[name] = value
            pg = self._prom_gauges.get(name)
            if pg is None:
                pg = PromGauge(_prom_name(name), f"Gauge: {name}", registry=self.registry)
                self._prom_gauges[name] = pg
        pg.set(value)

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, Any]:
        """Return a point-in-time snapshot of all metrics."""
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "jobs": {
                    job_type: {
                        "runs": int(runs["runs"]),
                        "avg_seconds": round(runs["total_seconds"] / runs["runs"], 3),
                        "max_seconds": round(runs["max_seconds"], 3),
                    }
                    for job_type, runs in self._job_runs.items()
                },
                "uptime_seconds": round(time.monotonic() - self._start_time, 1),
            }

    def log_summary(self) -> None:
        """Emit a structured log with all current metrics."""
        snap = self.snapshot()
        logger.info("metrics_summary", **snap)


# Singleton instance; import this from other modules.
metrics = Metrics()


# ── HTTP metrics endpoint ────────────────────────────────────────────────


class _MetricsHandler(BaseHTTPRequestHandler):
    """Serves /metrics (JSON), /prometheus and /health."""

    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/metrics":
            self._reply(json.dumps(metrics.snapshot(), indent=2).encode(), "application/json")
        elif self.path == "/prometheus":
            self._reply(generate_latest(metrics.registry), "text/plain; version=0.0.4; charset=utf-8")
        elif self.path == "/health":
            self._reply(b'{"status":"ok"}', "application/json")
        else:
            self.send_response(404)
            self.end_headers()

    def _reply(self, body: bytes, content_type: str) -> None:
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        """Suppress default HTTP server logging; use structlog instead."""


_server: HTTPServer | None = None
_server_thread: threading.Thread | None = None


def start_metrics_server(port: int = 9090) -> None:
    """Start the metrics HTTP server in a background daemon thread."""
    global _server, _server_thread  # noqa: PLW0603
    if _server is not None:
        return  # already running
    _server = HTTPServer(("0.0.0.0", port), _MetricsHandler)
    _server_thread = threading.Thread(target=_server.serve_forever, daemon=True)
    _server_thread.start()
    logger.info("metrics_server_started", port=port)


def stop_metrics_server() -> None:
    """Stop the metrics HTTP server."""
    global _server, _server_thread  # noqa: PLW0603
    if _server is not None:
        _server.shutdown()
        _server.server_close()
        _server = None
        _server_thread = None
        logger.info("metrics_server_stopped")
