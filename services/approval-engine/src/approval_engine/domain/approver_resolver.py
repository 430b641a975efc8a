"""Turns a step's approver rule into concrete identities."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from grc_core.enums import ApproverType
from grc_core.exceptions import ResolutionError

if TYPE_CHECKING:
    from grc_core.models import StepTemplate

    from approval_engine.identity.directory import IdentityDirectory

logger = logging.getLogger(__name__)


class ApproverResolver:
    """Resolves roles through the identity directory; user steps pass through.

    Runs on every activation, so membership changes between submission and
    activation are picked up.
    """

    def __init__(self, directory: IdentityDirectory) -> None:
        self._directory = directory

    async def resolve(self, step: StepTemplate, tenant_id: str) -> set[str]:
        if step.approver_type == ApproverType.USER:
            return set(step.approver_emails)

        approvers: set[str] = set()
        for role in step.approver_roles:
            members = await self._directory.members(role, tenant_id)
            logger.debug("Role %s resolved to %d members", role, len(members))
            approvers |= members

        if not approvers and step.required:
            raise ResolutionError(
                f"Step {step.step_number} ({step.step_name}): roles {', '.join(step.approver_roles)} have no members",
                step_number=step.step_number,
                roles=list(step.approver_roles),
            )
        return approvers
