"""OTel counters for approval decisions and outcomes."""

from __future__ import annotations

from opentelemetry import metrics

_meter = metrics.get_meter("grc.approvals")
_decision_counter = _meter.create_counter(
    name="grc.approvals.decisions",
    description="Ledger actions per action type, including late attempts",
    unit="actions",
)
_auto_approval_counter = _meter.create_counter(
    name="grc.approvals.auto_approvals",
    description="Steps approved by the system after their SLA elapsed",
    unit="steps",
)
_completion_counter = _meter.create_counter(
    name="grc.approvals.requests_completed",
    description="Requests reaching a terminal status",
    unit="requests",
)


def record_decision(action: str, *, late: bool = False) -> None:
    _decision_counter.add(1, attributes={"action": action, "late": late})


def record_auto_approval(entity_type: str) -> None:
    _auto_approval_counter.add(1, attributes={"entity_type": entity_type})


def record_completion(outcome: str, entity_type: str) -> None:
    """Count a request reaching a terminal outcome."""
    _completion_counter.add(1, attributes={"outcome": outcome, "entity_type": entity_type})
