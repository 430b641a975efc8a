"""Tests for the workflow definition store and built-in templates."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import pytest
from approval_engine.domain.templates import WORKFLOW_TEMPLATES, get_template, instantiate_template
from conftest import TENANT, role_step, user_step
from grc_core.enums import ApproverType
from grc_core.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from approval_engine.domain.workflow_service import WorkflowService
    from conftest import MakeWorkflow, Submit


class TestCreateWorkflow:
    async def test_create(self, make_workflow: MakeWorkflow) -> None:
        workflow = await make_workflow(role_step(1, "manager"), user_step(2, "ciso@example.com"))

        assert workflow.version == 1
        assert workflow.is_active is True
        assert [s.approver_type for s in workflow.steps] == [ApproverType.ROLE, ApproverType.USER]

    async def test_steps_sorted_by_number(self, make_workflow: MakeWorkflow) -> None:
        workflow = await make_workflow(role_step(2, "ciso"), role_step(1, "manager"))
        assert [s.step_number for s in workflow.steps] == [1, 2]

    async def test_gap_in_step_numbers_rejected(self, make_workflow: MakeWorkflow) -> None:
        with pytest.raises(ValidationError, match="contiguous"):
            await make_workflow(role_step(1, "manager"), role_step(3, "ciso"))

    async def test_empty_steps_rejected(self, make_workflow: MakeWorkflow) -> None:
        with pytest.raises(ValidationError):
            await make_workflow()

    async def test_role_step_with_emails_rejected(self, make_workflow: MakeWorkflow) -> None:
        bad = role_step(1, "manager")
        bad["approver_emails"] = ["someone@example.com"]
        with pytest.raises(ValidationError, match="role steps"):
            await make_workflow(bad)

    async def test_user_step_without_emails_rejected(self, make_workflow: MakeWorkflow) -> None:
        with pytest.raises(ValidationError, match="user steps"):
            await make_workflow(user_step(1))

    async def test_non_positive_sla_rejected(self, make_workflow: MakeWorkflow) -> None:
        with pytest.raises(ValidationError):
            await make_workflow(role_step(1, "manager", hours=0))

    async def test_duplicate_approvers_collapsed(self, make_workflow: MakeWorkflow) -> None:
        workflow = await make_workflow(role_step(1, "manager", "manager", " ciso "))
        assert workflow.steps[0].approver_roles == ["manager", "ciso"]


class TestUpdateWorkflow:
    async def test_update_bumps_version(self, make_workflow: MakeWorkflow, workflow_service: WorkflowService) -> None:
        workflow = await make_workflow(role_step(1, "manager"))

        updated = await workflow_service.update_workflow(
            workflow.id, TENANT, {"name": "Policy Approval v2", "steps": [role_step(1, "ciso")]}
        )

        assert updated.version == 2
        assert updated.name == "Policy Approval v2"
        assert updated.steps[0].approver_roles == ["ciso"]
        assert updated.created_at == workflow.created_at

    async def test_unknown_field_rejected(self, make_workflow: MakeWorkflow, workflow_service: WorkflowService) -> None:
        workflow = await make_workflow(role_step(1, "manager"))
        with pytest.raises(ValidationError, match="not editable"):
            await workflow_service.update_workflow(workflow.id, TENANT, {"tenant_id": "other"})

    async def test_invalid_update_leaves_workflow_untouched(
        self, make_workflow: MakeWorkflow, workflow_service: WorkflowService
    ) -> None:
        workflow = await make_workflow(role_step(1, "manager"))
        with pytest.raises(ValidationError):
            await workflow_service.update_workflow(workflow.id, TENANT, {"steps": []})

        stored = await workflow_service.get_workflow(workflow.id, TENANT)
        assert stored.version == 1

    async def test_in_flight_request_keeps_its_steps(
        self, make_workflow: MakeWorkflow, submit: Submit, workflow_service: WorkflowService
    ) -> None:
        workflow = await make_workflow(role_step(1, "manager"))
        request, steps = await submit(workflow)

        await workflow_service.update_workflow(workflow.id, TENANT, {"steps": [role_step(1, "ciso")]})

        assert request.workflow_version == 1
        assert steps[0].approver_roles == ["manager"]

    async def test_set_active(self, make_workflow: MakeWorkflow, workflow_service: WorkflowService) -> None:
        workflow = await make_workflow(role_step(1, "manager"))

        inactive = await workflow_service.set_active(workflow.id, TENANT, active=False)
        assert inactive.is_active is False
        assert inactive.version == 2

        unchanged = await workflow_service.set_active(workflow.id, TENANT, active=False)
        assert unchanged.version == 2


class TestLookup:
    async def test_other_tenant_not_found(self, make_workflow: MakeWorkflow, workflow_service: WorkflowService) -> None:
        workflow = await make_workflow(role_step(1, "manager"))
        with pytest.raises(NotFoundError):
            await workflow_service.get_workflow(workflow.id, "other-tenant")

    async def test_list_filters(self, make_workflow: MakeWorkflow, workflow_service: WorkflowService) -> None:
        policy = await make_workflow(role_step(1, "manager"), entity_type="policy")
        risk = await make_workflow(role_step(1, "ciso"), entity_type="risk")
        await workflow_service.set_active(risk.id, TENANT, active=False)

        assert {w.id for w in await workflow_service.list_workflows(TENANT)} == {policy.id, risk.id}
        assert [w.id for w in await workflow_service.list_workflows(TENANT, entity_type="policy")] == [policy.id]
        assert [w.id for w in await workflow_service.list_workflows(TENANT, active_only=True)] == [policy.id]

    async def test_get_for_submission_checks_entity_type(
        self, make_workflow: MakeWorkflow, workflow_service: WorkflowService
    ) -> None:
        workflow = await make_workflow(role_step(1, "manager"), entity_type="vendor")

        found = await workflow_service.get_for_submission(workflow.id, TENANT, "vendor")
        assert found.id == workflow.id
        with pytest.raises(ValidationError):
            await workflow_service.get_for_submission(workflow.id, TENANT, "policy")


class TestDeleteWorkflow:
    async def test_unreferenced_workflow_hard_deleted(
        self, make_workflow: MakeWorkflow, workflow_service: WorkflowService
    ) -> None:
        workflow = await make_workflow(role_step(1, "manager"))

        assert await workflow_service.delete_workflow(workflow.id, TENANT) is False
        with pytest.raises(NotFoundError):
            await workflow_service.get_workflow(workflow.id, TENANT)

    async def test_referenced_workflow_soft_deleted(
        self, make_workflow: MakeWorkflow, submit: Submit, workflow_service: WorkflowService
    ) -> None:
        workflow = await make_workflow(role_step(1, "manager"))
        await submit(workflow)

        assert await workflow_service.delete_workflow(workflow.id, TENANT) is True
        with pytest.raises(NotFoundError):
            await workflow_service.get_workflow(workflow.id, TENANT)
        assert await workflow_service.list_workflows(TENANT) == []
        with pytest.raises(ValidationError):
            await submit(workflow)

    async def test_delete_unknown(self, workflow_service: WorkflowService) -> None:
        with pytest.raises(NotFoundError):
            await workflow_service.delete_workflow(uuid.uuid4(), TENANT)


class TestTemplates:
    def test_catalog(self) -> None:
        ids = [t.id for t in WORKFLOW_TEMPLATES]
        assert len(ids) == 10
        assert len(set(ids)) == 10
        assert "risk-acceptance" in ids

    def test_template_steps_are_role_steps_with_sla(self) -> None:
        steps = get_template("risk-acceptance").to_steps()

        assert [s.step_number for s in steps] == [1, 2, 3]
        assert [s.approver_roles for s in steps] == [["risk_owner"], ["security"], ["executive"]]
        assert [s.auto_approve_hours for s in steps] == [48, 72, 96]
        assert all(s.approver_type == ApproverType.ROLE for s in steps)

    def test_unknown_template(self) -> None:
        with pytest.raises(NotFoundError):
            get_template("does-not-exist")

    async def test_instantiate(self, workflow_service: WorkflowService) -> None:
        workflow = await instantiate_template(
            workflow_service, "policy-approval", tenant_id=TENANT, created_by="admin@example.com"
        )

        assert workflow.name == "Policy Approval Workflow"
        assert workflow.trigger_entity_type == "policy"
        assert len(workflow.steps) == 2
        assert workflow.created_by == "admin@example.com"

    async def test_instantiate_with_custom_name(self, workflow_service: WorkflowService) -> None:
        workflow = await instantiate_template(workflow_service, "document-approval", tenant_id=TENANT, name="Docs")
        assert workflow.name == "Docs"
