"""SQLAlchemy 2.0 ORM mapped classes for the approval engine."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

_FK_APPROVAL_REQUEST = "approval_requests.id"
_CASCADE_ALL_DELETE_ORPHAN = "all, delete-orphan"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class WorkflowDefinitionRow(Base):
    __tablename__ = "approval_workflows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    trigger_entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_conditions: Mapped[dict[str, object] | None] = mapped_column(JSONB, default=dict)
    steps: Mapped[list[dict[str, object]]] = mapped_column(JSONB, nullable=False)
    require_all_approvers: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_parallel_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_approve_if_creator_is_approver: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by: Mapped[str | None] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (Index("ix_workflows_tenant_entity", "tenant_id", "trigger_entity_type"),)


class ApprovalRequestRow(Base):
    __tablename__ = "approval_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    workflow_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("approval_workflows.id"), nullable=False, index=True)
    workflow_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    request_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    request_title: Mapped[str] = mapped_column(String(500), nullable=False)
    request_description: Mapped[str | None] = mapped_column(Text)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_snapshot: Mapped[dict[str, object] | None] = mapped_column(JSONB, default=dict)
    requested_by: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    current_step_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    overall_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    require_all_approvers: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_parallel_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_approve_if_creator_is_approver: Mapped[bool] = mapped_column(Boolean, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    final_decision: Mapped[str | None] = mapped_column(String(20))
    final_decision_by: Mapped[str | None] = mapped_column(String(200))
    final_decision_notes: Mapped[str | None] = mapped_column(Text)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    steps: Mapped[list[ApprovalStepRow]] = relationship(
        back_populates="request", cascade=_CASCADE_ALL_DELETE_ORPHAN, order_by="ApprovalStepRow.step_number"
    )

    __table_args__ = (
        Index("ix_requests_status_entity", "overall_status", "entity_type"),
        Index("ix_requests_entity", "entity_type", "entity_id"),
    )


class ApprovalStepRow(Base):
    __tablename__ = "approval_steps"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    approval_request_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey(_FK_APPROVAL_REQUEST), nullable=False, index=True
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_type: Mapped[str] = mapped_column(String(10), nullable=False)
    approver_roles: Mapped[list[str] | None] = mapped_column(JSONB, default=list)
    approver_emails: Mapped[list[str] | None] = mapped_column(JSONB, default=list)
    resolved_approvers: Mapped[list[str] | None] = mapped_column(JSONB, default=list)
    approvals: Mapped[list[str] | None] = mapped_column(JSONB, default=list)
    delegations: Mapped[dict[str, str] | None] = mapped_column(JSONB, default=dict)
    step_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    decision: Mapped[str | None] = mapped_column(String(20))
    decision_by: Mapped[str | None] = mapped_column(String(200))
    decision_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    decision_notes: Mapped[str | None] = mapped_column(Text)
    delegated_to: Mapped[str | None] = mapped_column(String(200))
    delegated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_approve_hours: Mapped[float | None] = mapped_column(Float)
    resolution_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    request: Mapped[ApprovalRequestRow] = relationship(back_populates="steps")

    __table_args__ = (Index("ix_steps_request_number", "approval_request_id", "step_number", unique=True),)


class ApprovalActionRow(Base):
    """Append-only decision ledger.

    PostgreSQL trigger prevents UPDATE and DELETE on this table.
    """

    __tablename__ = "approval_actions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(ForeignKey(_FK_APPROVAL_REQUEST), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_email: Mapped[str] = mapped_column(String(200), nullable=False)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text)
    attempted_action: Mapped[str | None] = mapped_column(String(10))
    action_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    action_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (Index("ix_actions_request_sequence", "request_id", "sequence", unique=True),)


class StepTimeoutRow(Base):
    """Durable auto-approval timers, keyed by step."""

    __tablename__ = "approval_step_timeouts"

    step_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("approval_steps.id"), primary_key=True)
    request_id: Mapped[uuid.UUID] = mapped_column(ForeignKey(_FK_APPROVAL_REQUEST), nullable=False, index=True)
    fire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (Index("ix_timeouts_status_fire_at", "status", "fire_at"),)
