"""Built-in workflow templates.

Each template becomes a role-based, sequential workflow; a step's
``timeout_hours`` becomes its ``auto_approve_hours``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from grc_core.enums import ApproverType, EntityType
from grc_core.exceptions import NotFoundError
from grc_core.models import StepTemplate
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from grc_core.models import WorkflowDefinition

    from approval_engine.domain.workflow_service import WorkflowService


class TemplateStep(BaseModel):
    name: str
    role: str
    timeout_hours: float = Field(gt=0)


class WorkflowTemplate(BaseModel):
    id: str
    name: str
    description: str
    entity_type: EntityType
    steps: list[TemplateStep]

    def to_steps(self) -> list[StepTemplate]:
        return [
            StepTemplate(
                step_number=i,
                step_name=step.name,
                approver_type=ApproverType.ROLE,
                approver_roles=[step.role],
                auto_approve_hours=step.timeout_hours,
            )
            for i, step in enumerate(self.steps, start=1)
        ]


def _template(
    template_id: str, name: str, description: str, entity_type: EntityType, *steps: tuple[str, str, float]
) -> WorkflowTemplate:
    return WorkflowTemplate(
        id=template_id,
        name=name,
        description=description,
        entity_type=entity_type,
        steps=[TemplateStep(name=n, role=r, timeout_hours=h) for n, r, h in steps],
    )


WORKFLOW_TEMPLATES: tuple[WorkflowTemplate, ...] = (
    _template(
        "policy-approval",
        "Policy Approval Workflow",
        "Two-step approval for policy updates",
        EntityType.POLICY,
        ("Manager Review", "manager", 72),
        ("Compliance Team Approval", "compliance", 48),
    ),
    _template(
        "risk-acceptance",
        "Risk Acceptance Workflow",
        "Multi-level approval for accepting risks",
        EntityType.RISK,
        ("Risk Owner Review", "risk_owner", 48),
        ("Security Team Assessment", "security", 72),
        ("Executive Approval", "executive", 96),
    ),
    _template(
        "control-exception",
        "Control Exception Approval",
        "Approve exceptions to security controls",
        EntityType.CONTROL,
        ("Security Manager Review", "security_manager", 48),
        ("CISO Approval", "ciso", 72),
    ),
    _template(
        "vendor-approval",
        "Vendor Onboarding Approval",
        "Multi-step vendor security approval",
        EntityType.VENDOR,
        ("Procurement Review", "procurement", 24),
        ("Security Assessment", "security", 72),
        ("Legal Approval", "legal", 48),
    ),
    _template(
        "document-approval",
        "Simple Document Approval",
        "Single-step approval for documents",
        EntityType.DOCUMENT,
        ("Manager Approval", "manager", 72),
    ),
    _template(
        "change-request",
        "Infrastructure Change Approval",
        "CAB approval for infrastructure changes",
        EntityType.CHANGE_REQUEST,
        ("Team Lead Review", "team_lead", 24),
        ("Security Review", "security", 48),
        ("CAB Approval", "cab", 72),
    ),
    _template(
        "access-request",
        "Privileged Access Request",
        "Approval for privileged system access",
        EntityType.ACCESS_REQUEST,
        ("Manager Approval", "manager", 24),
        ("IT Security Approval", "it_security", 48),
    ),
    _template(
        "budget-approval",
        "Security Budget Approval",
        "Approval workflow for security expenditures",
        EntityType.BUDGET,
        ("Department Head", "department_head", 48),
        ("Finance Approval", "finance", 72),
    ),
    _template(
        "incident-response",
        "Major Incident Escalation",
        "Escalation workflow for major incidents",
        EntityType.INCIDENT,
        ("Security Manager Notification", "security_manager", 4),
        ("Executive Notification", "executive", 8),
    ),
    _template(
        "audit-finding",
        "Audit Finding Remediation",
        "Approval to close audit findings",
        EntityType.AUDIT_FINDING,
        ("Control Owner Verification", "control_owner", 72),
        ("Audit Lead Approval", "audit_lead", 48),
    ),
)

_BY_ID = {t.id: t for t in WORKFLOW_TEMPLATES}


def get_template(template_id: str) -> WorkflowTemplate:
    template = _BY_ID.get(template_id)
    if template is None:
        raise NotFoundError(f"Workflow template {template_id} not found")
    return template


async def instantiate_template(
    service: WorkflowService,
    template_id: str,
    *,
    tenant_id: str,
    created_by: str | None = None,
    name: str | None = None,
) -> WorkflowDefinition:
    """Create a tenant workflow from a built-in template."""
    template = get_template(template_id)
    return await service.create_workflow(
        tenant_id=tenant_id,
        name=name or template.name,
        description=template.description,
        trigger_entity_type=template.entity_type.value,
        steps=template.to_steps(),
        created_by=created_by,
    )
