"""PostgreSQL repository implementations using SQLAlchemy 2.0 async."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from grc_core.db.tables import (
    ApprovalActionRow,
    ApprovalRequestRow,
    ApprovalStepRow,
    StepTimeoutRow,
    WorkflowDefinitionRow,
)
from grc_core.enums import StepStatus, TimeoutStatus
from grc_core.ledger import ApprovalAction
from grc_core.models import ApprovalRequest, ApprovalStep, StepTimeout, WorkflowDefinition
from sqlalchemy import func, or_, select

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from grc_core.enums import RequestStatus
    from pydantic import BaseModel
    from sqlalchemy.ext.asyncio import AsyncSession

_WORKFLOW_MUTABLE_FIELDS = (
    "name",
    "description",
    "trigger_entity_type",
    "trigger_conditions",
    "require_all_approvers",
    "allow_parallel_approval",
    "auto_approve_if_creator_is_approver",
    "is_active",
    "is_deleted",
    "version",
    "updated_at",
)

_REQUEST_MUTABLE_FIELDS = (
    "current_step_number",
    "overall_status",
    "final_decision",
    "final_decision_by",
    "final_decision_notes",
    "approved_at",
    "rejected_at",
    "cancelled_at",
    "updated_at",
)

_STEP_MUTABLE_FIELDS = (
    "resolved_approvers",
    "approvals",
    "delegations",
    "step_status",
    "decision",
    "decision_by",
    "decision_at",
    "decision_notes",
    "delegated_to",
    "delegated_at",
    "started_at",
    "completed_at",
    "resolution_error",
)

_TIMEOUT_MUTABLE_FIELDS = ("request_id", "fire_at", "status", "attempts", "last_error", "updated_at")


def _apply(row: Any, model: BaseModel, fields: tuple[str, ...]) -> None:
    data = model.model_dump(mode="json", include=set(fields))
    for field in fields:
        value = getattr(model, field)
        # JSON columns get plain JSON values, everything else keeps its Python type
        if isinstance(value, (list, dict)):
            value = data[field]
        setattr(row, field, value)


class PgWorkflowRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        data = workflow.model_dump(mode="json", include={"steps", "trigger_conditions"})
        row = WorkflowDefinitionRow(
            id=workflow.id,
            tenant_id=workflow.tenant_id,
            name=workflow.name,
            description=workflow.description,
            trigger_entity_type=workflow.trigger_entity_type,
            trigger_conditions=data["trigger_conditions"],
            steps=data["steps"],
            require_all_approvers=workflow.require_all_approvers,
            allow_parallel_approval=workflow.allow_parallel_approval,
            auto_approve_if_creator_is_approver=workflow.auto_approve_if_creator_is_approver,
            is_active=workflow.is_active,
            is_deleted=workflow.is_deleted,
            version=workflow.version,
            created_by=workflow.created_by,
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
        )
        self._session.add(row)
        await self._session.flush()
        return WorkflowDefinition.model_validate(row)

    async def get_by_id(self, workflow_id: uuid.UUID) -> WorkflowDefinition | None:
        row = await self._session.get(WorkflowDefinitionRow, workflow_id)
        if row is None:
            return None
        return WorkflowDefinition.model_validate(row)

    async def update(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        row = await self._session.get(WorkflowDefinitionRow, workflow.id)
        if row is None:
            raise ValueError(f"Workflow {workflow.id} not found")
        _apply(row, workflow, _WORKFLOW_MUTABLE_FIELDS)
        row.steps = workflow.model_dump(mode="json", include={"steps"})["steps"]
        await self._session.flush()
        return WorkflowDefinition.model_validate(row)

    async def delete(self, workflow_id: uuid.UUID) -> None:
        row = await self._session.get(WorkflowDefinitionRow, workflow_id)
        if row is not None:
            await self._session.delete(row)
            await self._session.flush()

    async def list_workflows(
        self,
        *,
        tenant_id: str,
        entity_type: str | None = None,
        active_only: bool = False,
        include_deleted: bool = False,
    ) -> list[WorkflowDefinition]:
        stmt = select(WorkflowDefinitionRow).where(WorkflowDefinitionRow.tenant_id == tenant_id)
        if entity_type:
            stmt = stmt.where(WorkflowDefinitionRow.trigger_entity_type == entity_type)
        if active_only:
            stmt = stmt.where(WorkflowDefinitionRow.is_active.is_(True))
        if not include_deleted:
            stmt = stmt.where(WorkflowDefinitionRow.is_deleted.is_(False))
        stmt = stmt.order_by(WorkflowDefinitionRow.name)
        result = await self._session.execute(stmt)
        return [WorkflowDefinition.model_validate(r) for r in result.scalars()]


class PgRequestRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, request: ApprovalRequest) -> ApprovalRequest:
        row = ApprovalRequestRow(**request.model_dump(exclude={"entity_snapshot"}))
        row.entity_snapshot = request.model_dump(mode="json", include={"entity_snapshot"})["entity_snapshot"]
        self._session.add(row)
        await self._session.flush()
        return ApprovalRequest.model_validate(row)

    async def get_by_id(self, request_id: uuid.UUID, *, for_update: bool = False) -> ApprovalRequest | None:
        stmt = select(ApprovalRequestRow).where(ApprovalRequestRow.id == request_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return ApprovalRequest.model_validate(row)

    async def update(self, request: ApprovalRequest) -> ApprovalRequest:
        row = await self._session.get(ApprovalRequestRow, request.id)
        if row is None:
            raise ValueError(f"Approval request {request.id} not found")
        _apply(row, request, _REQUEST_MUTABLE_FIELDS)
        await self._session.flush()
        return ApprovalRequest.model_validate(row)

    async def count_by_workflow(self, workflow_id: uuid.UUID) -> int:
        stmt = select(func.count()).select_from(ApprovalRequestRow).where(ApprovalRequestRow.workflow_id == workflow_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

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
    ) -> list[ApprovalRequest]:
        stmt = select(ApprovalRequestRow).where(ApprovalRequestRow.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(ApprovalRequestRow.overall_status == status)
        if entity_type:
            stmt = stmt.where(ApprovalRequestRow.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(ApprovalRequestRow.entity_id == entity_id)
        if requested_by:
            stmt = stmt.where(ApprovalRequestRow.requested_by == requested_by)
        if request_ids is not None:
            stmt = stmt.where(ApprovalRequestRow.id.in_(request_ids))
        stmt = stmt.order_by(ApprovalRequestRow.requested_at.desc()).limit(limit).offset(offset)
        result = await self._session.execute(stmt)
        return [ApprovalRequest.model_validate(r) for r in result.scalars()]


class PgStepRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_many(self, steps: list[ApprovalStep]) -> list[ApprovalStep]:
        rows = [ApprovalStepRow(**step.model_dump()) for step in steps]
        self._session.add_all(rows)
        await self._session.flush()
        return [ApprovalStep.model_validate(r) for r in rows]

    async def get_by_id(self, step_id: uuid.UUID, *, for_update: bool = False) -> ApprovalStep | None:
        stmt = select(ApprovalStepRow).where(ApprovalStepRow.id == step_id)
        if for_update:
            # Row lock held until commit: one writer per step
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return ApprovalStep.model_validate(row)

    async def update(self, step: ApprovalStep) -> ApprovalStep:
        row = await self._session.get(ApprovalStepRow, step.id)
        if row is None:
            raise ValueError(f"Approval step {step.id} not found")
        _apply(row, step, _STEP_MUTABLE_FIELDS)
        await self._session.flush()
        return ApprovalStep.model_validate(row)

    async def list_by_request(self, request_id: uuid.UUID) -> list[ApprovalStep]:
        stmt = (
            select(ApprovalStepRow)
            .where(ApprovalStepRow.approval_request_id == request_id)
            .order_by(ApprovalStepRow.step_number)
        )
        result = await self._session.execute(stmt)
        return [ApprovalStep.model_validate(r) for r in result.scalars()]

    async def list_active_for_approver(self, approver: str) -> list[ApprovalStep]:
        stmt = select(ApprovalStepRow).where(
            ApprovalStepRow.step_status == StepStatus.IN_PROGRESS,
            or_(
                ApprovalStepRow.resolved_approvers.contains([approver]),
                ApprovalStepRow.delegations.has_key(approver),
            ),
        )
        result = await self._session.execute(stmt)
        return [ApprovalStep.model_validate(r) for r in result.scalars()]


class PgActionRepository:
    """Append-only access to the decision ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(self, action: ApprovalAction) -> ApprovalAction:
        row = ApprovalActionRow(
            id=action.id,
            request_id=action.request_id,
            sequence=action.sequence,
            step_order=action.step_order,
            approver_email=action.approver_email,
            action=action.action,
            comments=action.comments,
            attempted_action=action.attempted_action,
            action_date=action.action_date,
            previous_hash=action.previous_hash,
            action_hash=action.action_hash,
        )
        self._session.add(row)
        await self._session.flush()
        return ApprovalAction.model_validate(row)

    async def get_last(self, request_id: uuid.UUID) -> ApprovalAction | None:
        stmt = (
            select(ApprovalActionRow)
            .where(ApprovalActionRow.request_id == request_id)
            .order_by(ApprovalActionRow.sequence.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return ApprovalAction.model_validate(row) if row is not None else None

    async def list_by_request(self, request_id: uuid.UUID) -> list[ApprovalAction]:
        stmt = (
            select(ApprovalActionRow)
            .where(ApprovalActionRow.request_id == request_id)
            .order_by(ApprovalActionRow.sequence)
        )
        result = await self._session.execute(stmt)
        return [ApprovalAction.model_validate(r) for r in result.scalars()]


class PgTimeoutRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, timeout: StepTimeout) -> StepTimeout:
        row = await self._session.get(StepTimeoutRow, timeout.step_id)
        if row is None:
            row = StepTimeoutRow(step_id=timeout.step_id, created_at=timeout.created_at)
            self._session.add(row)
        _apply(row, timeout, _TIMEOUT_MUTABLE_FIELDS)
        await self._session.flush()
        return StepTimeout.model_validate(row)

    async def get(self, step_id: uuid.UUID) -> StepTimeout | None:
        row = await self._session.get(StepTimeoutRow, step_id)
        if row is None:
            return None
        return StepTimeout.model_validate(row)

    async def update(self, timeout: StepTimeout) -> StepTimeout:
        row = await self._session.get(StepTimeoutRow, timeout.step_id)
        if row is None:
            raise ValueError(f"Timeout for step {timeout.step_id} not found")
        _apply(row, timeout, _TIMEOUT_MUTABLE_FIELDS)
        await self._session.flush()
        return StepTimeout.model_validate(row)

    async def list_due(self, now: datetime, *, limit: int = 100) -> list[StepTimeout]:
        # Read only. Exclusivity comes from handle_timeout re-checking the step under FOR UPDATE.
        stmt = (
            select(StepTimeoutRow)
            .where(StepTimeoutRow.status == TimeoutStatus.SCHEDULED, StepTimeoutRow.fire_at <= now)
            .order_by(StepTimeoutRow.fire_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [StepTimeout.model_validate(r) for r in result.scalars()]
