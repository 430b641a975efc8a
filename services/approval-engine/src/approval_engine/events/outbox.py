"""Hold engine events until the surrounding transaction has committed.

The session dependency and each timer unit open an outbox around their
``session.begin()`` block. Engine operations queue into it, and the queue is
only published once the block exits cleanly, so a failed commit publishes
nothing. Outside any outbox, events are published straight away.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable

    from approval_engine.events.publisher import EventPublisher

logger = logging.getLogger(__name__)

Event = tuple[str, dict[str, Any]]

_outbox: contextvars.ContextVar[list[Event] | None] = contextvars.ContextVar("approval_outbox", default=None)


@contextlib.asynccontextmanager
async def publish_after_commit(publisher: EventPublisher) -> AsyncGenerator[None]:
    """Collect events queued inside the block and publish them once it exits without error."""
    events: list[Event] = []
    token = _outbox.set(events)
    try:
        yield
    finally:
        _outbox.reset(token)
    if events:
        logger.debug("Publishing %d events after commit", len(events))
    for subject_key, payload in events:
        await publisher.publish(subject_key, payload)


async def dispatch(publisher: EventPublisher, events: Iterable[Event]) -> None:
    """Queue ``events`` on the open outbox, or publish them now when none is open."""
    outbox = _outbox.get()
    if outbox is not None:
        outbox.extend(events)
        return
    for subject_key, payload in events:
        await publisher.publish(subject_key, payload)
