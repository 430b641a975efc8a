"""Decision ledger: append-only, hash-chained record of every action."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from grc_core.ledger import GENESIS_HASH, ApprovalAction, verify_ledger

if TYPE_CHECKING:
    import uuid

    from grc_core.enums import ActionType

    from approval_engine.repository.protocols import ActionRepository

logger = logging.getLogger(__name__)


class LedgerService:
    """Records approval actions. Never consulted to derive request state."""

    def __init__(self, repo: ActionRepository) -> None:
        self._repo = repo

    async def record(
        self,
        *,
        request_id: uuid.UUID,
        step_order: int,
        actor: str,
        action: ActionType,
        comments: str | None = None,
        attempted_action: ActionType | None = None,
    ) -> ApprovalAction:
        """Append an action sealed against the previous entry of the same request."""
        last = await self._repo.get_last(request_id)
        entry = ApprovalAction(
            request_id=request_id,
            sequence=last.sequence + 1 if last else 1,
            step_order=step_order,
            approver_email=actor,
            action=action,
            comments=comments,
            attempted_action=attempted_action,
            previous_hash=last.action_hash if last else GENESIS_HASH,
        ).seal()
        saved = await self._repo.append(entry)
        logger.info("Ledger %s: %s by %s at step %d", request_id, action, actor, step_order)
        return saved

    async def list_actions(self, request_id: uuid.UUID) -> list[ApprovalAction]:
        return await self._repo.list_by_request(request_id)

    async def verify(self, request_id: uuid.UUID) -> bool:
        actions = await self._repo.list_by_request(request_id)
        valid = verify_ledger(actions)
        if not valid:
            logger.error("Ledger chain broken for request %s", request_id)
        return valid
