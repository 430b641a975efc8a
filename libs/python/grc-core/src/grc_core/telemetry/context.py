"""W3C Trace Context helpers for propagation into published events."""

from __future__ import annotations

from opentelemetry.propagate import inject


def get_trace_headers() -> dict[str, str]:
    """Extract current trace context as headers for outbound NATS messages."""
    headers: dict[str, str] = {}
    inject(headers)
    return headers

