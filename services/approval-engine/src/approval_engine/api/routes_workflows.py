"""Workflow definition endpoints: /workflows and /workflow-templates."""

from __future__ import annotations

import uuid

from fastapi import APIRouter

from approval_engine.api.deps import AdminUserDep, TenantDep, WorkflowServiceDep
from approval_engine.api.schemas import (
    InstantiateTemplateRequest,
    WorkflowDeleteResponse,
    WorkflowListResponse,
    WorkflowPatchRequest,
    WorkflowResponse,
    WorkflowUpsertRequest,
)
from approval_engine.domain.templates import WORKFLOW_TEMPLATES, WorkflowTemplate, instantiate_template

router = APIRouter(prefix="/workflows", tags=["workflows"])
templates_router = APIRouter(prefix="/workflow-templates", tags=["workflows"])


@router.post("", status_code=201, responses={400: {"description": "Invalid workflow definition"}})
async def upsert_workflow(
    body: WorkflowUpsertRequest,
    service: WorkflowServiceDep,
    tenant_id: TenantDep,
    user: AdminUserDep,
) -> WorkflowResponse:
    if body.id is not None:
        workflow = await service.update_workflow(body.id, tenant_id, body.to_changes())
    else:
        changes = body.to_changes()
        workflow = await service.create_workflow(tenant_id=tenant_id, created_by=user.identity, **changes)
    return WorkflowResponse.from_domain(workflow)


@router.get("")
async def list_workflows(
    service: WorkflowServiceDep,
    tenant_id: TenantDep,
    entity_type: str | None = None,
    active_only: bool = False,
) -> WorkflowListResponse:
    workflows = await service.list_workflows(tenant_id, entity_type=entity_type, active_only=active_only)
    return WorkflowListResponse(items=[WorkflowResponse.from_domain(w) for w in workflows])


@router.get("/{workflow_id}", responses={404: {"description": "Workflow not found"}})
async def get_workflow(workflow_id: uuid.UUID, service: WorkflowServiceDep, tenant_id: TenantDep) -> WorkflowResponse:
    workflow = await service.get_workflow(workflow_id, tenant_id)
    return WorkflowResponse.from_domain(workflow)


@router.patch("/{workflow_id}", responses={400: {"description": "Invalid change"}, 404: {"description": "Not found"}})
async def patch_workflow(
    workflow_id: uuid.UUID,
    body: WorkflowPatchRequest,
    service: WorkflowServiceDep,
    tenant_id: TenantDep,
    _user: AdminUserDep,
) -> WorkflowResponse:
    workflow = await service.update_workflow(workflow_id, tenant_id, body.to_changes())
    return WorkflowResponse.from_domain(workflow)


@router.delete("/{workflow_id}", responses={404: {"description": "Workflow not found"}})
async def delete_workflow(
    workflow_id: uuid.UUID,
    service: WorkflowServiceDep,
    tenant_id: TenantDep,
    _user: AdminUserDep,
) -> WorkflowDeleteResponse:
    soft_deleted = await service.delete_workflow(workflow_id, tenant_id)
    return WorkflowDeleteResponse(id=workflow_id, soft_deleted=soft_deleted)


@router.post("/{workflow_id}/activate", responses={404: {"description": "Workflow not found"}})
async def activate_workflow(
    workflow_id: uuid.UUID,
    service: WorkflowServiceDep,
    tenant_id: TenantDep,
    _user: AdminUserDep,
) -> WorkflowResponse:
    workflow = await service.set_active(workflow_id, tenant_id, active=True)
    return WorkflowResponse.from_domain(workflow)


@router.post("/{workflow_id}/deactivate", responses={404: {"description": "Workflow not found"}})
async def deactivate_workflow(
    workflow_id: uuid.UUID,
    service: WorkflowServiceDep,
    tenant_id: TenantDep,
    _user: AdminUserDep,
) -> WorkflowResponse:
    workflow = await service.set_active(workflow_id, tenant_id, active=False)
    return WorkflowResponse.from_domain(workflow)


@templates_router.get("")
async def list_templates() -> list[WorkflowTemplate]:
    return list(WORKFLOW_TEMPLATES)


@templates_router.post("/{template_id}/instantiate", status_code=201, responses={404: {"description": "Unknown"}})
async def instantiate(
    template_id: str,
    service: WorkflowServiceDep,
    tenant_id: TenantDep,
    user: AdminUserDep,
    body: InstantiateTemplateRequest | None = None,
) -> WorkflowResponse:
    workflow = await instantiate_template(
        service,
        template_id,
        tenant_id=tenant_id,
        created_by=user.identity,
        name=body.workflow_name if body else None,
    )
    return WorkflowResponse.from_domain(workflow)
