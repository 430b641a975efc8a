"""SHA-256 hash-chained decision ledger entries.

Each request owns its own chain: the first action of a request (``sequence``
1) points at ``GENESIS_HASH`` and every later action at the hash of the one
before it. Chain order is ``sequence``, never ``action_date``.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from grc_core.enums import ActionType

GENESIS_HASH = "0" * 64


class ApprovalAction(BaseModel):
    """An immutable entry in a request's decision ledger.

    ``attempted_action`` is set when a decisive action arrived after the
    step was already decided; the entry is then stored as a comment.
    """

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    request_id: uuid.UUID
    sequence: int = Field(default=1, ge=1)
    step_order: int = Field(ge=1)
    approver_email: str = Field(min_length=1, max_length=200)
    action: ActionType
    comments: str | None = None
    attempted_action: ActionType | None = None
    action_date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    previous_hash: str = Field(default=GENESIS_HASH, max_length=64)
    action_hash: str = Field(default="", max_length=64)

    def compute_hash(self) -> str:
        """Compute SHA-256 over every field except ``id`` and ``action_hash``."""
        payload = {
            "request_id": str(self.request_id),
            "sequence": self.sequence,
            "step_order": self.step_order,
            "approver_email": self.approver_email,
            "action": self.action,
            "comments": self.comments,
            "attempted_action": self.attempted_action,
            "action_date": self.action_date.isoformat(),
            "previous_hash": self.previous_hash,
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def seal(self) -> ApprovalAction:
        """Compute and set the action hash. Returns self for chaining."""
        self.action_hash = self.compute_hash()
        return self

    def verify(self) -> bool:
        return self.action_hash == self.compute_hash()

    @property
    def is_decisive(self) -> bool:
        return self.action != ActionType.COMMENT


def verify_ledger(actions: list[ApprovalAction]) -> bool:
    """Verify one request's chain of actions in sequence order."""
    if not actions:
        return True

    if actions[0].previous_hash != GENESIS_HASH:
        return False

    for i, action in enumerate(actions):
        if action.sequence != i + 1 or not action.verify():
            return False
        if i > 0 and action.previous_hash != actions[i - 1].action_hash:
            return False

    return True
