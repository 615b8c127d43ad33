"""Slug resolution for the public redirect path.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │ GET /:slug  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  storage error   ┌──────────────┐
    │ exact slug  ├─────────────────►│ NotFound     │
    │ lookup      │  no row          │ (logged)     │
    └──────┬──────┘─────────────────►└──────────────┘
           │ hit
           ▼
    ┌─────────────┐
    │ limits      │  (only when ENFORCE_LINK_LIMITS)
    └──────┬──────┘
           ▼
    ┌─────────────┐        ┌──────────────────────┐
    │ spawn click ├───────►│ detached task:        │
    │ recording   │        │ ClickRecorder         │
    └──────┬──────┘        │ errors → logger only  │
           ▼               └──────────────────────┘
    ┌─────────────┐
    │ Found(url)  │ → 302
    └─────────────┘

Key Behaviours
===============
- Every resolution re-queries storage; links are never cached in process.
- Resolution never raises: every failure looks like a missing link.
- The redirect response never waits on click recording.
"""

import asyncio
import logging
from collections.abc import Coroutine, Mapping
from dataclasses import dataclass
from typing import Any

from prometheus_client import Counter

from shortlink.enums import RedirectStatus
from shortlink.errors import RecordingFailure
from shortlink.models import Link, as_utc, utcnow
from shortlink.recorder import ClickRecorder, snapshot_headers
from shortlink.repository import LinkRepository

__all__ = ["Found", "NotFound", "RedirectOutcome", "RedirectResolver", "ClickTaskSupervisor"]

REDIRECT_REQUESTS_TOTAL = Counter(
    "shortlink_redirect_requests_total",
    "Total redirect resolutions",
    ["status"],
)
RECORDING_FAILURES_TOTAL = Counter(
    "shortlink_recording_failures_total",
    "Click recordings that failed after the redirect was sent",
)


@dataclass(frozen=True)
class Found:
    target_url: str


@dataclass(frozen=True)
class NotFound:
    reason: RedirectStatus = RedirectStatus.NOT_FOUND


RedirectOutcome = Found | NotFound


class ClickTaskSupervisor:
    """Owns fire-and-forget tasks spawned by the redirect path.

    Tasks are referenced until they finish so the event loop cannot drop them,
    and their exceptions are observed by a done-callback that logs them.
    """

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter):
        self._logger = logger
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, None], name: str | None = None) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        RECORDING_FAILURES_TOTAL.inc()
        if isinstance(exc, RecordingFailure):
            self._logger.error(f"{exc}", exc_info=exc)
        else:
            self._logger.error(f"Background task {task.get_name()} failed: {exc}", exc_info=exc)

    async def drain(self) -> None:
        """Wait for every in-flight task; used on shutdown and by tests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class RedirectResolver:
    def __init__(
        self,
        repository: LinkRepository,
        recorder: ClickRecorder,
        supervisor: ClickTaskSupervisor,
        logger: logging.Logger | logging.LoggerAdapter,
        enforce_limits: bool = False,
    ):
        self._repository = repository
        self._recorder = recorder
        self._supervisor = supervisor
        self._logger = logger
        self._enforce_limits = enforce_limits

    async def resolve(self, slug: str, headers: Mapping[str, str]) -> RedirectOutcome:
        try:
            link = await self._repository.find_link_by_slug(slug)
            if link is None:
                return self._not_found(slug, RedirectStatus.NOT_FOUND)
            if self._enforce_limits:
                blocked = await self._limit_status(link)
                if blocked is not None:
                    return self._not_found(slug, blocked)
        except Exception as exc:
            self._logger.error(f"Redirect lookup failed for slug {slug!r}: {exc}", exc_info=exc)
            return self._not_found(slug, RedirectStatus.ERROR)

        self._supervisor.spawn(
            self._recorder.record_click(link.id, snapshot_headers(headers)),
            name=f"record-click-{link.slug}",
        )
        REDIRECT_REQUESTS_TOTAL.labels(status=RedirectStatus.FOUND).inc()
        return Found(target_url=link.target_url)

    async def _limit_status(self, link: Link) -> RedirectStatus | None:
        if link.expires_at is not None and as_utc(link.expires_at) <= utcnow():
            return RedirectStatus.EXPIRED
        if link.click_limit is not None:
            clicks = await self._repository.count_clicks_for_link(link.id)
            if clicks >= link.click_limit:
                return RedirectStatus.LIMIT_REACHED
        return None

    def _not_found(self, slug: str, reason: RedirectStatus) -> NotFound:
        REDIRECT_REQUESTS_TOTAL.labels(status=reason).inc()
        self._logger.info(
            f"Redirect miss for slug {slug!r}: {reason}",
            extra={"operation": "redirect", "slug": slug, "reason": reason.value},
        )
        return NotFound(reason=reason)
