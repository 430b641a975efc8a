"""Background worker that fires due auto-approval timers.

Polls the durable timer table; anything with ``fire_at <= now`` that is
still scheduled gets fired, so fires missed during downtime are caught on
the next poll. A timer whose fire fails is pushed back with its own
exponential delay derived from ``attempts``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from grc_core.settings import SchedulerSettings

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from approval_engine.domain.request_engine import RequestEngine
    from approval_engine.domain.timeout_scheduler import TimeoutScheduler

logger = logging.getLogger(__name__)


@dataclass
class TimerUnit:
    """Engine and scheduler bound to one transaction."""

    engine: RequestEngine
    scheduler: TimeoutScheduler


class TimeoutWorker:
    """Fires due step timeouts, each in its own unit of work.

    Example:
        worker = TimeoutWorker(unit_factory, SchedulerSettings())
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        unit_factory: Callable[[], AbstractAsyncContextManager[TimerUnit]],
        settings: SchedulerSettings | None = None,
    ) -> None:
        self._unit_factory = unit_factory
        self._settings = settings or SchedulerSettings()
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._backoff = 0.0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Timeout worker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info("Timeout worker started (poll every %ss)", self._settings.poll_interval_seconds)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        logger.info("Timeout worker stopped")

    async def run_once(self, now: datetime | None = None) -> int:
        """Fire every timer due at ``now``. Returns how many fired."""
        now = now or datetime.now(UTC)
        async with self._unit_factory() as unit:
            due = await unit.scheduler.due(now, limit=self._settings.batch_size)

        fired = 0
        for timeout in due:
            try:
                async with self._unit_factory() as unit:
                    await unit.engine.handle_timeout(timeout.step_id)
                    await unit.scheduler.mark_fired(timeout.step_id)
                fired += 1
            except Exception as e:
                retry_at = now + timedelta(seconds=self.retry_delay(timeout.attempts + 1))
                logger.error(
                    "Failed to fire timeout for step %s (attempt %d), retrying at %s: %s",
                    timeout.step_id,
                    timeout.attempts + 1,
                    retry_at.isoformat(),
                    e,
                    exc_info=True,
                )
                async with self._unit_factory() as unit:
                    await unit.scheduler.mark_failed(timeout.step_id, str(e), retry_at=retry_at)

        if fired:
            logger.info("Fired %d of %d due timeouts", fired, len(due))
        return fired

    def retry_delay(self, attempts: int) -> float:
        """Seconds until a timer that has failed ``attempts`` times is fired again."""
        delay = self._settings.fire_retry_base_seconds * 2 ** max(attempts - 1, 0)
        return min(delay, self._settings.fire_retry_max_seconds)

    def next_delay(self, *, failed: bool) -> float:
        """Poll interval after success, exponential backoff after a failure."""
        if not failed:
            self._backoff = 0.0
            return self._settings.poll_interval_seconds
        if self._backoff == 0.0:
            self._backoff = self._settings.base_backoff_seconds
        else:
            self._backoff = min(self._backoff * 2, self._settings.max_backoff_seconds)
        return self._backoff

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
                delay = self.next_delay(failed=False)
            except asyncio.CancelledError:
                break
            except Exception as e:
                delay = self.next_delay(failed=True)
                logger.error("Timer store unavailable, retrying in %.1fs: %s", delay, e, exc_info=True)
            await asyncio.sleep(delay)
