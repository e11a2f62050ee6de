"""Discord webhook alerter for failed jobs and system events."""

from __future__ import annotations

import asyncio
import collections
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx
import structlog

if TYPE_CHECKING:
    from scoreline.config.models import DiscordConfig
    from scoreline.errors import MaxRetriesExceeded
    from scoreline.jobs.state import Job

logger = structlog.get_logger("scoreline.monitoring.discord")

# Maximum number of failed payloads retained in the dead-letter queue.
_MAX_DEAD_LETTERS = 100
_MAX_LISTED_JOBS = 20


class DiscordAlerter:
    """Sends alerts to a Discord channel via webhook.

    Failed sends are retried up to 3 times with exponential backoff. After
    all retries are exhausted the payload is kept in ``dead_letters``.
    """

    MAX_RETRIES = 3
    # Cap retry-after so a rate limit cannot stall a worker for long.
    MAX_RETRY_AFTER_SECONDS = 5.0

    def __init__(self, config: DiscordConfig, *, backoff_base: float = 1.0) -> None:
        self._config = config
        self._backoff_base = backoff_base
        self._client: httpx.AsyncClient | None = None
        self.dead_letters: collections.deque[dict[str, Any]] = collections.deque(maxlen=_MAX_DEAD_LETTERS)

    async def initialize(self) -> None:
        if not self.enabled:
            logger.info("discord_alerter_disabled")
            return
        self._client = httpx.AsyncClient(timeout=10.0)
        logger.info("discord_alerter_initialized")

    async def teardown(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def enabled(self) -> bool:
        return self._config.enabled and bool(self._config.webhook_url)

    # ── Alert methods ─────────────────────────────────────────────────

    async def send_job_failed_alert(self, job_type: str, failure: MaxRetriesExceeded) -> None:
        if not self._config.alert_on_failed_jobs:
            return
        embed = {
            "title": f"Job failed: {job_type}",
            "description": (failure.error or "no error recorded")[:2000],
            "color": 0xFF0000,
            "fields": [
                {"name": "Job", "value": failure.job_id, "inline": False},
                {"name": "Attempts", "value": str(failure.retry_count), "inline": True},
                {"name": "Max retries", "value": str(failure.max_retries), "inline": True},
            ],
        }
        await self._send(embeds=[embed])

    async def send_system_alert(self, title: str, message: str) -> None:
        embed = {
            "title": title,
            "description": message[:2000],
            "color": 0x9B59B6,
        }
        await self._send(embeds=[embed])

    async def send_recovery_alert(self, recovered: Sequence[Job]) -> None:
        """Report jobs found stranded in Processing at startup."""
        if not recovered or not self._config.alert_on_recovery:
            return
        lines = [f"`{job.id}` {job.job_type} -> {job.status.value}" for job in recovered[:_MAX_LISTED_JOBS]]
        if len(recovered) > _MAX_LISTED_JOBS:
            lines.append(f"... and {len(recovered) - _MAX_LISTED_JOBS} more")
        embed = {
            "title": f"Recovered {len(recovered)} stale job(s)",
            "description": "\n".join(lines)[:2000],
            "color": 0xF1C40F,
        }
        await self._send(embeds=[embed])

    # ── Internal ──────────────────────────────────────────────────────

    def _delay_for(self, resp: httpx.Response | None, attempt: int) -> float | None:
        """Seconds to wait before the next attempt, or None when not retryable."""
        if resp is None or resp.status_code >= 500:
            return self._backoff_base * 2**attempt
        if resp.status_code == 429:
            # Discord rate limit: honour Retry-After
            retry_after = min(float(resp.headers.get("Retry-After", "1")), self.MAX_RETRY_AFTER_SECONDS)
            return retry_after * self._backoff_base
        return None

    async def _send(self, content: str = "", embeds: list[dict[str, Any]] | None = None) -> None:
        if not self._client or not self.enabled:
            return
        payload: dict[str, Any] = {}
        if content:
            payload["content"] = content
        if embeds:
            payload["embeds"] = embeds

        for attempt in range(self.MAX_RETRIES):
            resp: httpx.Response | None = None
            try:
                resp = await self._client.post(self._config.webhook_url, json=payload)
            except httpx.HTTPError:
                logger.exception("discord_send_error", attempt=attempt + 1)
            else:
                if resp.status_code < 400:
                    return
                logger.warning("discord_send_failed", status=resp.status_code, attempt=attempt + 1)

            delay = self._delay_for(resp, attempt)
            if delay is None or attempt == self.MAX_RETRIES - 1:
                break
            await asyncio.sleep(delay)

        self.dead_letters.append(payload)
        logger.error(
            "discord_alert_dead_lettered",
            dead_letter_count=len(self.dead_letters),
            payload_title=payload.get("embeds", [{}])[0].get("title", ""),
        )
