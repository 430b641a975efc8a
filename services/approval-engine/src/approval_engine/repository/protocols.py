"""Repository protocols consumed by the domain services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from grc_core.enums import RequestStatus
    from grc_core.ledger import ApprovalAction
    from grc_core.models import ApprovalRequest, ApprovalStep, StepTimeout, WorkflowDefinition


class WorkflowRepository(Protocol):
    async def create(self, workflow: WorkflowDefinition) -> WorkflowDefinition: ...

    async def get_by_id(self, workflow_id: uuid.UUID) -> WorkflowDefinition | None: ...

    async def update(self, workflow: WorkflowDefinition) -> WorkflowDefinition: ...

    async def delete(self, workflow_id: uuid.UUID) -> None: ...

    async def list_workflows(
        self,
        *,
        tenant_id: str,
        entity_type: str | None = None,
        active_only: bool = False,
        include_deleted: bool = False,
    ) -> list[WorkflowDefinition]: ...


class RequestRepository(Protocol):
    async def create(self, request: ApprovalRequest) -> ApprovalRequest: ...

    async def get_by_id(self, request_id: uuid.UUID, *, for_update: bool = False) -> ApprovalRequest | None: ...

    async def update(self, request: ApprovalRequest) -> ApprovalRequest: ...

    async def count_by_workflow(self, workflow_id: uuid.UUID) -> int: ...

    async def list_requests(
        self,
        *,
        tenant_id: str,
        status: RequestStatus | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        requested_by: str | None = None,
        request_ids: set[uuid.UUID] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ApprovalRequest]: ...


class StepRepository(Protocol):
    async def create_many(self, steps: list[ApprovalStep]) -> list[ApprovalStep]: ...

    async def get_by_id(self, step_id: uuid.UUID, *, for_update: bool = False) -> ApprovalStep | None: ...

    async def update(self, step: ApprovalStep) -> ApprovalStep: ...

    async def list_by_request(self, request_id: uuid.UUID) -> list[ApprovalStep]: ...

    async def list_active_for_approver(self, approver: str) -> list[ApprovalStep]: ...


class ActionRepository(Protocol):
    async def append(self, action: ApprovalAction) -> ApprovalAction: ...

    async def get_last(self, request_id: uuid.UUID) -> ApprovalAction | None: ...

    async def list_by_request(self, request_id: uuid.UUID) -> list[ApprovalAction]: ...


class TimeoutRepository(Protocol):
    async def upsert(self, timeout: StepTimeout) -> StepTimeout: ...

    async def get(self, step_id: uuid.UUID) -> StepTimeout | None: ...

    async def update(self, timeout: StepTimeout) -> StepTimeout: ...

    async def list_due(self, now: datetime, *, limit: int = 100) -> list[StepTimeout]: ...
