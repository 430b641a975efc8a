"""Durable auto-approval timers for activated steps."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from grc_core.enums import TimeoutStatus
from grc_core.exceptions import TimerStoreError
from grc_core.models import StepTimeout

if TYPE_CHECKING:
    import uuid

    from approval_engine.repository.protocols import TimeoutRepository

logger = logging.getLogger(__name__)


class TimeoutScheduler:
    """Stores timers in the same unit of work as the step transition.

    A timer fires at most once: ``due`` only returns scheduled timers and
    firing moves them to ``fired``.
    """

    def __init__(self, repo: TimeoutRepository) -> None:
        self._repo = repo

    async def schedule(self, step_id: uuid.UUID, request_id: uuid.UUID, fire_at: datetime) -> StepTimeout:
        timeout = StepTimeout(step_id=step_id, request_id=request_id, fire_at=fire_at)
        try:
            saved = await self._repo.upsert(timeout)
        except Exception as e:
            raise TimerStoreError(f"Could not schedule timeout for step {step_id}") from e
        logger.info("Timeout for step %s scheduled at %s", step_id, fire_at.isoformat())
        return saved

    async def cancel(self, step_id: uuid.UUID) -> None:
        """Cancel a scheduled timer. No-op when absent or already settled."""
        timeout = await self._repo.get(step_id)
        if timeout is None or timeout.status != TimeoutStatus.SCHEDULED:
            return
        timeout.status = TimeoutStatus.CANCELLED
        timeout.updated_at = datetime.now(UTC)
        await self._repo.update(timeout)
        logger.debug("Timeout for step %s cancelled", step_id)

    async def get(self, step_id: uuid.UUID) -> StepTimeout | None:
        return await self._repo.get(step_id)

    async def due(self, now: datetime | None = None, *, limit: int = 100) -> list[StepTimeout]:
        try:
            return await self._repo.list_due(now or datetime.now(UTC), limit=limit)
        except Exception as e:
            raise TimerStoreError("Could not read due timeouts") from e

    async def mark_fired(self, step_id: uuid.UUID) -> None:
        timeout = await self._repo.get(step_id)
        if timeout is None:
            return
        timeout.status = TimeoutStatus.FIRED
        timeout.attempts += 1
        timeout.last_error = None
        timeout.updated_at = datetime.now(UTC)
        await self._repo.update(timeout)

    async def mark_failed(self, step_id: uuid.UUID, error: str, *, retry_at: datetime | None = None) -> None:
        """Record a failed fire. The timer stays scheduled, pushed back to ``retry_at`` when given."""
        timeout = await self._repo.get(step_id)
        if timeout is None:
            return
        timeout.attempts += 1
        timeout.last_error = error
        if retry_at is not None:
            timeout.fire_at = retry_at
        timeout.updated_at = datetime.now(UTC)
        await self._repo.update(timeout)
        logger.warning("Timeout for step %s failed (attempt %d): %s", step_id, timeout.attempts, error)
