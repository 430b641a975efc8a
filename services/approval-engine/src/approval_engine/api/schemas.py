"""API request/response schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from grc_core.enums import ActionType, ApproverType, RequestStatus, StepStatus
from grc_core.ledger import ApprovalAction
from grc_core.models import ApprovalRequest, ApprovalStep, StepTemplate, WorkflowDefinition
from pydantic import BaseModel, Field

# ─── Workflow schemas ────────────────────────────────────


class ApprovalStepsPayload(BaseModel):
    steps: list[StepTemplate] = Field(min_length=1)


class WorkflowUpsertRequest(BaseModel):
    """Create a workflow, or update it when ``id`` is given."""

    id: uuid.UUID | None = None
    workflow_name: str = Field(min_length=1, max_length=200)
    workflow_description: str | None = None
    trigger_entity_type: str = Field(min_length=1, max_length=50)
    trigger_conditions: dict[str, Any] | None = None
    approval_steps: ApprovalStepsPayload
    require_all_approvers: bool = False
    allow_parallel_approval: bool = False
    auto_approve_if_creator_is_approver: bool = False
    is_active: bool = True

    def to_changes(self) -> dict[str, Any]:
        return {
            "name": self.workflow_name,
            "description": self.workflow_description or "",
            "trigger_entity_type": self.trigger_entity_type,
            "trigger_conditions": self.trigger_conditions or {},
            "steps": self.approval_steps.steps,
            "require_all_approvers": self.require_all_approvers,
            "allow_parallel_approval": self.allow_parallel_approval,
            "auto_approve_if_creator_is_approver": self.auto_approve_if_creator_is_approver,
            "is_active": self.is_active,
        }


class WorkflowPatchRequest(BaseModel):
    workflow_name: str | None = Field(default=None, min_length=1, max_length=200)
    workflow_description: str | None = None
    trigger_entity_type: str | None = Field(default=None, min_length=1, max_length=50)
    trigger_conditions: dict[str, Any] | None = None
    approval_steps: ApprovalStepsPayload | None = None
    require_all_approvers: bool | None = None
    allow_parallel_approval: bool | None = None
    auto_approve_if_creator_is_approver: bool | None = None
    is_active: bool | None = None

    def to_changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude_none=True)
        changes: dict[str, Any] = {}
        if "workflow_name" in data:
            changes["name"] = data.pop("workflow_name")
        if "workflow_description" in data:
            changes["description"] = data.pop("workflow_description")
        if self.approval_steps is not None:
            data.pop("approval_steps")
            changes["steps"] = self.approval_steps.steps
        changes.update(data)
        return changes


class WorkflowResponse(BaseModel):
    id: uuid.UUID
    tenant_id: str
    workflow_name: str
    workflow_description: str
    trigger_entity_type: str
    trigger_conditions: dict[str, Any]
    approval_steps: ApprovalStepsPayload
    require_all_approvers: bool
    allow_parallel_approval: bool
    auto_approve_if_creator_is_approver: bool
    is_active: bool
    is_deleted: bool
    version: int
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, workflow: WorkflowDefinition) -> WorkflowResponse:
        return cls(
            id=workflow.id,
            tenant_id=workflow.tenant_id,
            workflow_name=workflow.name,
            workflow_description=workflow.description,
            trigger_entity_type=workflow.trigger_entity_type,
            trigger_conditions=workflow.trigger_conditions,
            approval_steps=ApprovalStepsPayload(steps=workflow.steps),
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


class WorkflowListResponse(BaseModel):
    items: list[WorkflowResponse]


class WorkflowDeleteResponse(BaseModel):
    id: uuid.UUID
    soft_deleted: bool


class InstantiateTemplateRequest(BaseModel):
    workflow_name: str | None = Field(default=None, min_length=1, max_length=200)


# ─── Approval request schemas ────────────────────────────


class CreateApprovalRequest(BaseModel):
    workflow_id: uuid.UUID
    entity_type: str = Field(min_length=1, max_length=50)
    entity_id: str = Field(min_length=1, max_length=200)
    request_title: str = Field(min_length=1, max_length=500)
    request_description: str | None = None
    entity_data: dict[str, Any] | None = None


class ApprovalRequestResponse(BaseModel):
    id: uuid.UUID
    tenant_id: str
    workflow_id: uuid.UUID
    workflow_version: int
    request_number: str
    request_title: str
    request_description: str | None = None
    entity_type: str
    entity_id: str
    entity_data: dict[str, Any]
    requested_by: str
    requested_at: datetime
    current_step_number: int
    overall_status: RequestStatus
    require_all_approvers: bool
    allow_parallel_approval: bool
    expires_at: datetime | None = None
    final_decision: str | None = None
    final_decision_by: str | None = None
    final_decision_notes: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, request: ApprovalRequest) -> ApprovalRequestResponse:
        data = request.model_dump(exclude={"entity_snapshot", "auto_approve_if_creator_is_approver"})
        return cls(**data, entity_data=request.entity_snapshot)


class ApprovalStepResponse(BaseModel):
    id: uuid.UUID
    approval_request_id: uuid.UUID
    step_number: int
    step_name: str
    approver_type: ApproverType
    approver_roles: list[str]
    approver_emails: list[str]
    resolved_approvers: list[str]
    approvals: list[str]
    delegations: dict[str, str]
    step_status: StepStatus
    decision: str | None = None
    decision_by: str | None = None
    decision_at: datetime | None = None
    decision_notes: str | None = None
    delegated_to: str | None = None
    delegated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    is_required: bool
    auto_approve_hours: float | None = None
    resolution_error: str | None = None
    created_at: datetime

    @classmethod
    def from_domain(cls, step: ApprovalStep) -> ApprovalStepResponse:
        return cls.model_validate(step, from_attributes=True)


class ApprovalActionResponse(BaseModel):
    id: uuid.UUID
    request_id: uuid.UUID
    sequence: int
    step_order: int
    approver_email: str
    action: ActionType
    comments: str | None = None
    attempted_action: ActionType | None = None
    action_date: datetime
    previous_hash: str
    action_hash: str

    @classmethod
    def from_domain(cls, action: ApprovalAction) -> ApprovalActionResponse:
        return cls.model_validate(action, from_attributes=True)


class ApprovalRequestDetailResponse(BaseModel):
    request: ApprovalRequestResponse
    steps: list[ApprovalStepResponse]
    actions: list[ApprovalActionResponse] = Field(default_factory=list)

    @classmethod
    def build(
        cls,
        request: ApprovalRequest,
        steps: list[ApprovalStep],
        actions: list[ApprovalAction] | None = None,
    ) -> ApprovalRequestDetailResponse:
        return cls(
            request=ApprovalRequestResponse.from_domain(request),
            steps=[ApprovalStepResponse.from_domain(s) for s in steps],
            actions=[ApprovalActionResponse.from_domain(a) for a in actions or []],
        )


class ApprovalRequestListResponse(BaseModel):
    items: list[ApprovalRequestResponse]


class DecisionRequest(BaseModel):
    step_id: uuid.UUID
    decision_notes: str | None = None


class CommentRequest(BaseModel):
    comment: str = Field(min_length=1)


class DelegateRequest(BaseModel):
    step_id: uuid.UUID
    delegate_to: str = Field(min_length=1, max_length=200)


class CancelRequest(BaseModel):
    reason: str | None = None


class LedgerVerifyResponse(BaseModel):
    request_id: uuid.UUID
    is_valid: bool
