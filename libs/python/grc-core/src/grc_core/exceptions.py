"""Approval engine exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from grc_core.ledger import ApprovalAction


class ApprovalError(Exception):
    """Base exception for all approval engine errors."""


class ValidationError(ApprovalError):
    """Malformed submission or an inactive/mismatched workflow.

    Always raised before any state is mutated.
    """


class NotFoundError(ApprovalError):
    """Referenced workflow, request or step does not exist."""


class ResolutionError(ApprovalError):
    """A role on a required step resolved to zero members."""

    def __init__(self, message: str, *, step_number: int | None = None, roles: list[str] | None = None) -> None:
        super().__init__(message)
        self.step_number = step_number
        self.roles = roles or []


class AlreadyDecidedError(ApprovalError):
    """Decision attempted on a step or request that is no longer open.

    The attempt is still written to the ledger; ``action`` is that entry.
    """

    def __init__(self, message: str, action: ApprovalAction | None = None) -> None:
        super().__init__(message)
        self.action = action


class NotAuthorizedError(ApprovalError):
    """Actor is not an eligible approver and holds no delegation."""


class InvalidTransitionError(ApprovalError):
    """Operation is not legal in the current step or request state."""


class InvariantViolation(ApprovalError):
    """A transition would leave a request in an invalid state."""


class IdentityServiceError(ApprovalError):
    """The identity/role directory could not be reached or answered badly."""


class TimerStoreError(ApprovalError):
    """The durable timer store is unavailable."""
