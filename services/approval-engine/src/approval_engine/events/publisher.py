"""Approval workflow events on NATS JetStream.

Every message is a JSON envelope::

    {"event": "step_activated", "event_id": "...", "occurred_at": "...", "data": {...}, "_trace": {...}}

``event_id`` doubles as the ``Nats-Msg-Id`` header so JetStream drops
duplicates inside its dedupe window.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import nats
from grc_core.telemetry.context import get_trace_headers

if TYPE_CHECKING:
    from grc_core.settings import NATSSettings
    from nats.aio.client import Client as NATSClient
    from nats.js.client import JetStreamContext

logger = logging.getLogger(__name__)

SUBJECTS = {
    "request_submitted": "approvals.requests.submitted",
    "request_completed": "approvals.requests.completed",
    "step_activated": "approvals.steps.activated",
    "step_resolution_failed": "approvals.steps.resolution_failed",
    "decision_recorded": "approvals.decisions.recorded",
}

_NANOS_PER_DAY = 24 * 60 * 60 * 1_000_000_000


def build_envelope(subject_key: str, payload: dict[str, Any]) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "event": subject_key,
        "event_id": str(uuid.uuid4()),
        "occurred_at": datetime.now(UTC).isoformat(),
        "data": payload,
    }
    trace_headers = get_trace_headers()
    if trace_headers:
        envelope["_trace"] = trace_headers
    return envelope


class EventPublisher(Protocol):
    """Anything the engine can hand events to."""

    async def publish(self, subject_key: str, payload: dict[str, Any]) -> None: ...


class NullPublisher:
    """Drops every event. Used when NATS is disabled."""

    async def publish(self, subject_key: str, payload: dict[str, Any]) -> None:
        logger.debug("Event %s dropped (publisher disabled)", subject_key)


class NATSPublisher:
    """JetStream publisher that degrades to a no-op while NATS is unreachable."""

    def __init__(self) -> None:
        self._nc: NATSClient | None = None
        self._js: JetStreamContext | None = None

    async def connect(self, settings: NATSSettings) -> None:
        try:
            self._nc = await nats.connect(settings.url, name="approval-engine")
            self._js = self._nc.jetstream()
            await self._js.add_stream(
                name=settings.stream_name,
                subjects=["approvals.>"],
                retention="limits",
                max_msgs=settings.stream_max_msgs,
                max_age=settings.stream_max_age_days * _NANOS_PER_DAY,
            )
            logger.info("Publishing approval events to stream %s at %s", settings.stream_name, settings.url)
        except Exception:
            logger.warning("NATS unavailable at %s, approval events will be skipped", settings.url, exc_info=True)
            self._nc = None
            self._js = None

    async def disconnect(self) -> None:
        if self._nc and not self._nc.is_closed:
            await self._nc.drain()
            logger.info("Disconnected from NATS")

    async def publish(self, subject_key: str, payload: dict[str, Any]) -> None:
        """Publish one event. Failures are logged and never raised.

        Events are published after the transition that produced them, so a
        broker outage cannot undo or block a decision.
        """
        if self._js is None:
            return

        subject = SUBJECTS.get(subject_key)
        if subject is None:
            logger.warning("Unknown event subject: %s", subject_key)
            return

        envelope = build_envelope(subject_key, payload)
        try:
            await self._js.publish(
                subject,
                json.dumps(envelope, default=str).encode(),
                headers={"Nats-Msg-Id": envelope["event_id"]},
            )
            logger.debug("Published %s to %s", subject_key, subject)
        except Exception:
            logger.warning("Failed to publish %s to %s", subject_key, subject, exc_info=True)

    @property
    def is_connected(self) -> bool:
        return self._nc is not None and not self._nc.is_closed
