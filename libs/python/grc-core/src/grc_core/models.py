"""Pydantic V2 domain models for the approval workflow engine."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from grc_core.enums import (
    TERMINAL_REQUEST_STATUSES,
    ApproverType,
    RequestStatus,
    StepStatus,
    TimeoutStatus,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _dedupe(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        cleaned = value.strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


class StepTemplate(BaseModel):
    """One step of a workflow definition.

    Exactly one of ``approver_roles`` / ``approver_emails`` is populated,
    matching ``approver_type``.
    """

    model_config = ConfigDict(from_attributes=True)

    step_number: int = Field(ge=1)
    step_name: str = Field(min_length=1, max_length=200)
    approver_type: ApproverType
    approver_roles: list[str] = Field(default_factory=list)
    approver_emails: list[str] = Field(default_factory=list)
    required: bool = True
    auto_approve_hours: float | None = Field(default=None, gt=0)

    @field_validator("approver_roles", "approver_emails")
    @classmethod
    def _normalize(cls, value: list[str]) -> list[str]:
        return _dedupe(value)

    @model_validator(mode="after")
    def _check_approvers(self) -> StepTemplate:
        if self.approver_type == ApproverType.ROLE:
            if not self.approver_roles or self.approver_emails:
                raise ValueError(f"Step {self.step_number}: role steps need approver_roles and no approver_emails")
        elif not self.approver_emails or self.approver_roles:
            raise ValueError(f"Step {self.step_number}: user steps need approver_emails and no approver_roles")
        return self


class WorkflowDefinition(BaseModel):
    """A named, versioned approval workflow for one entity type."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant_id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(default="")
    trigger_entity_type: str = Field(min_length=1, max_length=50)
    trigger_conditions: dict[str, Any] = Field(default_factory=dict)
    steps: list[StepTemplate]
    require_all_approvers: bool = False
    allow_parallel_approval: bool = False
    auto_approve_if_creator_is_approver: bool = False
    is_active: bool = True
    is_deleted: bool = False
    version: int = Field(default=1, ge=1)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_step_sequence(self) -> WorkflowDefinition:
        if not self.steps:
            raise ValueError("Workflow must define at least one step")
        numbers = sorted(s.step_number for s in self.steps)
        if numbers != list(range(1, len(numbers) + 1)):
            raise ValueError(f"Step numbers must be contiguous from 1, got {numbers}")
        self.steps.sort(key=lambda s: s.step_number)
        return self

    @property
    def accepts_requests(self) -> bool:
        return self.is_active and not self.is_deleted


class ApprovalStep(BaseModel):
    """Per-request copy of a step template plus its runtime state."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    approval_request_id: uuid.UUID
    step_number: int = Field(ge=1)
    step_name: str
    approver_type: ApproverType
    approver_roles: list[str] = Field(default_factory=list)
    approver_emails: list[str] = Field(default_factory=list)
    resolved_approvers: list[str] = Field(default_factory=list)
    approvals: list[str] = Field(default_factory=list)
    delegations: dict[str, str] = Field(default_factory=dict)
    step_status: StepStatus = StepStatus.PENDING
    decision: str | None = None
    decision_by: str | None = None
    decision_at: datetime | None = None
    decision_notes: str | None = None
    delegated_to: str | None = None
    delegated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    is_required: bool = True
    auto_approve_hours: float | None = None
    resolution_error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_template(cls, template: StepTemplate, request_id: uuid.UUID) -> ApprovalStep:
        return cls(
            approval_request_id=request_id,
            step_number=template.step_number,
            step_name=template.step_name,
            approver_type=template.approver_type,
            approver_roles=list(template.approver_roles),
            approver_emails=list(template.approver_emails),
            is_required=template.required,
            auto_approve_hours=template.auto_approve_hours,
        )

    def to_template(self) -> StepTemplate:
        return StepTemplate(
            step_number=self.step_number,
            step_name=self.step_name,
            approver_type=self.approver_type,
            approver_roles=self.approver_roles,
            approver_emails=self.approver_emails,
            required=self.is_required,
            auto_approve_hours=self.auto_approve_hours,
        )

    @property
    def eligible_approvers(self) -> set[str]:
        """Resolved approvers plus anyone holding a delegation."""
        return set(self.resolved_approvers) | set(self.delegations)

    def principal_for(self, actor: str) -> str:
        """Follow delegations back to the resolved approver an actor stands in for."""
        seen: set[str] = set()
        current = actor
        while current in self.delegations and current not in seen:
            seen.add(current)
            current = self.delegations[current]
        return current

    @property
    def outstanding_approvers(self) -> set[str]:
        return set(self.resolved_approvers) - set(self.approvals)


class ApprovalRequest(BaseModel):
    """An entity submitted for sign-off against a workflow."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant_id: str = Field(min_length=1, max_length=100)
    workflow_id: uuid.UUID
    workflow_version: int = Field(default=1, ge=1)
    request_number: str = Field(default="")
    request_title: str = Field(min_length=1, max_length=500)
    request_description: str | None = None
    entity_type: str = Field(min_length=1, max_length=50)
    entity_id: str = Field(min_length=1, max_length=200)
    entity_snapshot: dict[str, Any] = Field(default_factory=dict)
    requested_by: str = Field(min_length=1, max_length=200)
    requested_at: datetime = Field(default_factory=_utcnow)
    current_step_number: int = Field(default=1, ge=1)
    overall_status: RequestStatus = RequestStatus.PENDING
    require_all_approvers: bool = False
    allow_parallel_approval: bool = False
    auto_approve_if_creator_is_approver: bool = False
    expires_at: datetime | None = None
    final_decision: str | None = None
    final_decision_by: str | None = None
    final_decision_notes: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _assign_number(self) -> ApprovalRequest:
        if not self.request_number:
            self.request_number = f"APR-{self.requested_at:%Y%m%d}-{self.id.hex[:6].upper()}"
        return self

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in TERMINAL_REQUEST_STATUSES


class StepTimeout(BaseModel):
    """Durable auto-approval timer for one activated step."""

    model_config = ConfigDict(from_attributes=True)

    step_id: uuid.UUID
    request_id: uuid.UUID
    fire_at: datetime
    status: TimeoutStatus = TimeoutStatus.SCHEDULED
    attempts: int = Field(default=0, ge=0)
    last_error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
