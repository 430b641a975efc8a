"""Initial schema: workflows, approval requests, steps, ledger, step timeouts.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

_FK_APPROVAL_REQUEST = "approval_requests.id"

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Workflow definitions
    op.create_table(
        "approval_workflows",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("trigger_entity_type", sa.String(50), nullable=False),
        sa.Column("trigger_conditions", JSONB, server_default="{}"),
        sa.Column("steps", JSONB, nullable=False),
        sa.Column("require_all_approvers", sa.Boolean, server_default="false"),
        sa.Column("allow_parallel_approval", sa.Boolean, server_default="false"),
        sa.Column("auto_approve_if_creator_is_approver", sa.Boolean, server_default="false"),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("is_deleted", sa.Boolean, server_default="false"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(200)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_approval_workflows_tenant_id", "approval_workflows", ["tenant_id"])
    op.create_index("ix_workflows_tenant_entity", "approval_workflows", ["tenant_id", "trigger_entity_type"])

    # Approval requests
    op.create_table(
        "approval_requests",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("workflow_id", sa.Uuid, sa.ForeignKey("approval_workflows.id"), nullable=False),
        sa.Column("workflow_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("request_number", sa.String(40), nullable=False, unique=True),
        sa.Column("request_title", sa.String(500), nullable=False),
        sa.Column("request_description", sa.Text),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(200), nullable=False),
        sa.Column("entity_snapshot", JSONB, server_default="{}"),
        sa.Column("requested_by", sa.String(200), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("current_step_number", sa.Integer, nullable=False, server_default="1"),
        sa.Column("overall_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("require_all_approvers", sa.Boolean, server_default="false"),
        sa.Column("allow_parallel_approval", sa.Boolean, server_default="false"),
        sa.Column("auto_approve_if_creator_is_approver", sa.Boolean, server_default="false"),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("final_decision", sa.String(20)),
        sa.Column("final_decision_by", sa.String(200)),
        sa.Column("final_decision_notes", sa.Text),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("rejected_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_approval_requests_tenant_id", "approval_requests", ["tenant_id"])
    op.create_index("ix_approval_requests_workflow_id", "approval_requests", ["workflow_id"])
    op.create_index("ix_approval_requests_requested_by", "approval_requests", ["requested_by"])
    op.create_index("ix_requests_status_entity", "approval_requests", ["overall_status", "entity_type"])
    op.create_index("ix_requests_entity", "approval_requests", ["entity_type", "entity_id"])

    # Approval steps (current state)
    op.create_table(
        "approval_steps",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("approval_request_id", sa.Uuid, sa.ForeignKey(_FK_APPROVAL_REQUEST), nullable=False),
        sa.Column("step_number", sa.Integer, nullable=False),
        sa.Column("step_name", sa.String(200), nullable=False),
        sa.Column("approver_type", sa.String(10), nullable=False),
        sa.Column("approver_roles", JSONB, server_default="[]"),
        sa.Column("approver_emails", JSONB, server_default="[]"),
        sa.Column("resolved_approvers", JSONB, server_default="[]"),
        sa.Column("approvals", JSONB, server_default="[]"),
        sa.Column("delegations", JSONB, server_default="{}"),
        sa.Column("step_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("decision", sa.String(20)),
        sa.Column("decision_by", sa.String(200)),
        sa.Column("decision_at", sa.DateTime(timezone=True)),
        sa.Column("decision_notes", sa.Text),
        sa.Column("delegated_to", sa.String(200)),
        sa.Column("delegated_at", sa.DateTime(timezone=True)),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("is_required", sa.Boolean, server_default="true"),
        sa.Column("auto_approve_hours", sa.Float),
        sa.Column("resolution_error", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_approval_steps_approval_request_id", "approval_steps", ["approval_request_id"])
    op.create_index("ix_steps_request_number", "approval_steps", ["approval_request_id", "step_number"], unique=True)

    # Decision ledger (append-only)
    op.create_table(
        "approval_actions",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("request_id", sa.Uuid, sa.ForeignKey(_FK_APPROVAL_REQUEST), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("step_order", sa.Integer, nullable=False),
        sa.Column("approver_email", sa.String(200), nullable=False),
        sa.Column("action", sa.String(10), nullable=False),
        sa.Column("comments", sa.Text),
        sa.Column("attempted_action", sa.String(10)),
        sa.Column("action_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("previous_hash", sa.String(64), nullable=False),
        sa.Column("action_hash", sa.String(64), nullable=False),
    )
    op.create_index("ix_approval_actions_request_id", "approval_actions", ["request_id"])
    op.create_index("ix_actions_request_sequence", "approval_actions", ["request_id", "sequence"], unique=True)

    # Immutability trigger: prevent UPDATE and DELETE on approval_actions
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_ledger_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'approval_actions table is append-only: % operations are not allowed', TG_OP;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_approval_actions_immutable
        BEFORE UPDATE OR DELETE ON approval_actions
        FOR EACH ROW
        EXECUTE FUNCTION prevent_ledger_mutation();
    """)

    # Durable step timeouts
    op.create_table(
        "approval_step_timeouts",
        sa.Column("step_id", sa.Uuid, sa.ForeignKey("approval_steps.id"), primary_key=True),
        sa.Column("request_id", sa.Uuid, sa.ForeignKey(_FK_APPROVAL_REQUEST), nullable=False),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_approval_step_timeouts_request_id", "approval_step_timeouts", ["request_id"])
    op.create_index("ix_timeouts_status_fire_at", "approval_step_timeouts", ["status", "fire_at"])


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_approval_actions_immutable ON approval_actions")
    op.execute("DROP FUNCTION IF EXISTS prevent_ledger_mutation()")
    op.drop_table("approval_step_timeouts")
    op.drop_table("approval_actions")
    op.drop_table("approval_steps")
    op.drop_table("approval_requests")
    op.drop_table("approval_workflows")
