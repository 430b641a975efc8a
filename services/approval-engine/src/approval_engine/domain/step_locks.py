"""In-process per-step mutual exclusion."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncGenerator


class LocalStepLocker:
    """One ``asyncio.Lock`` per step id.

    Serializes decide/delegate/timeout work on a step inside one process.
    Across processes the repository's row lock does the same job.
    """

    def __init__(self) -> None:
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._waiters: dict[uuid.UUID, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, step_id: uuid.UUID) -> AsyncGenerator[None]:
        lock = self._locks.setdefault(step_id, asyncio.Lock())
        self._waiters[step_id] = self._waiters.get(step_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[step_id] -= 1
            if self._waiters[step_id] == 0:
                del self._waiters[step_id]
                self._locks.pop(step_id, None)

    def __len__(self) -> int:
        return len(self._locks)
