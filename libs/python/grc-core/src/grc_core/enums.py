"""Domain enums for the approval workflow engine."""

from enum import StrEnum


class ApproverType(StrEnum):
    """How a step's approvers are specified."""

    ROLE = "role"
    USER = "user"


class StepStatus(StrEnum):
    """Lifecycle states of a single approval step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class RequestStatus(StrEnum):
    """Lifecycle states of an approval request."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ActionType(StrEnum):
    """Actions recorded in the decision ledger."""

    APPROVE = "approve"
    REJECT = "reject"
    COMMENT = "comment"


class TimeoutStatus(StrEnum):
    """State of a durable step timeout."""

    SCHEDULED = "scheduled"
    FIRED = "fired"
    CANCELLED = "cancelled"


class EntityType(StrEnum):
    """Entity kinds that workflows are commonly attached to.

    ``trigger_entity_type`` is a free string; these are the kinds the
    built-in templates use.
    """

    POLICY = "policy"
    RISK = "risk"
    CONTROL = "control"
    VENDOR = "vendor"
    INCIDENT = "incident"
    DOCUMENT = "document"
    CHANGE_REQUEST = "change_request"
    ACCESS_REQUEST = "access_request"
    BUDGET = "budget"
    AUDIT_FINDING = "audit_finding"


TERMINAL_REQUEST_STATUSES = frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED})
