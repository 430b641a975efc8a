"""Approval request endpoints: /approval-requests."""

from __future__ import annotations

import uuid

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from grc_core.enums import RequestStatus
from grc_core.exceptions import AlreadyDecidedError

from approval_engine.api.deps import (
    AdminUserDep,
    AuthenticatedUserDep,
    EngineSettingsDep,
    RequestEngineDep,
    TenantDep,
)
from approval_engine.api.errors import already_decided_response
from approval_engine.api.schemas import (
    ApprovalActionResponse,
    ApprovalRequestDetailResponse,
    ApprovalRequestListResponse,
    ApprovalRequestResponse,
    ApprovalStepResponse,
    CancelRequest,
    CommentRequest,
    CreateApprovalRequest,
    DecisionRequest,
    DelegateRequest,
    LedgerVerifyResponse,
)

router = APIRouter(prefix="/approval-requests", tags=["approval-requests"])

_CONFLICT = {409: {"description": "Step already decided"}}


@router.post("", status_code=201, responses={400: {"description": "Invalid submission"}})
async def submit_request(
    body: CreateApprovalRequest,
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    user: AuthenticatedUserDep,
) -> ApprovalRequestDetailResponse:
    request, steps = await engine.submit(
        tenant_id=tenant_id,
        workflow_id=body.workflow_id,
        entity_type=body.entity_type,
        entity_id=body.entity_id,
        request_title=body.request_title,
        request_description=body.request_description,
        entity_snapshot=body.entity_data,
        requested_by=user.identity,
    )
    return ApprovalRequestDetailResponse.build(request, steps)


@router.get("")
async def list_requests(
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    status: RequestStatus | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    requested_by: str | None = None,
    approver: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> ApprovalRequestListResponse:
    requests = await engine.list_requests(
        tenant_id,
        status=status,
        entity_type=entity_type,
        entity_id=entity_id,
        requested_by=requested_by,
        approver=approver,
        limit=limit,
        offset=offset,
    )
    return ApprovalRequestListResponse(items=[ApprovalRequestResponse.from_domain(r) for r in requests])


@router.get("/{request_id}", responses={404: {"description": "Approval request not found"}})
async def get_request(request_id: uuid.UUID, engine: RequestEngineDep, tenant_id: TenantDep) -> ApprovalRequestDetailResponse:
    request, steps, actions = await engine.get_detail(tenant_id, request_id)
    return ApprovalRequestDetailResponse.build(request, steps, actions)


@router.post("/{request_id}/approve", responses=_CONFLICT, response_model=ApprovalRequestDetailResponse)
async def approve(
    request_id: uuid.UUID,
    body: DecisionRequest,
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    user: AuthenticatedUserDep,
) -> ApprovalRequestDetailResponse | JSONResponse:
    try:
        request, steps = await engine.approve(
            tenant_id=tenant_id,
            request_id=request_id,
            step_id=body.step_id,
            actor=user.identity,
            comments=body.decision_notes,
        )
    except AlreadyDecidedError as e:
        return already_decided_response(e)
    return ApprovalRequestDetailResponse.build(request, steps)


@router.post("/{request_id}/reject", responses=_CONFLICT, response_model=ApprovalRequestDetailResponse)
async def reject(
    request_id: uuid.UUID,
    body: DecisionRequest,
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    user: AuthenticatedUserDep,
) -> ApprovalRequestDetailResponse | JSONResponse:
    try:
        request, steps = await engine.reject(
            tenant_id=tenant_id,
            request_id=request_id,
            step_id=body.step_id,
            actor=user.identity,
            comments=body.decision_notes,
        )
    except AlreadyDecidedError as e:
        return already_decided_response(e)
    return ApprovalRequestDetailResponse.build(request, steps)


@router.post("/{request_id}/comment", status_code=201)
async def comment(
    request_id: uuid.UUID,
    body: CommentRequest,
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    user: AuthenticatedUserDep,
) -> ApprovalActionResponse:
    action = await engine.comment(tenant_id=tenant_id, request_id=request_id, actor=user.identity, comment=body.comment)
    return ApprovalActionResponse.from_domain(action)


@router.post("/{request_id}/delegate", responses={403: {"description": "Not an approver"}})
async def delegate(
    request_id: uuid.UUID,
    body: DelegateRequest,
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    user: AuthenticatedUserDep,
) -> ApprovalStepResponse:
    step = await engine.delegate(
        tenant_id=tenant_id,
        request_id=request_id,
        step_id=body.step_id,
        actor=user.identity,
        delegate_to=body.delegate_to,
    )
    return ApprovalStepResponse.from_domain(step)


@router.post("/{request_id}/cancel", responses={403: {"description": "Not the requester"}})
async def cancel(
    request_id: uuid.UUID,
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    user: AuthenticatedUserDep,
    settings: EngineSettingsDep,
    body: CancelRequest | None = None,
) -> ApprovalRequestResponse:
    request = await engine.cancel(
        tenant_id=tenant_id,
        request_id=request_id,
        actor=user.identity,
        is_admin=user.has_role(settings.admin_role),
        reason=body.reason if body else None,
    )
    return ApprovalRequestResponse.from_domain(request)


@router.post("/{request_id}/steps/{step_id}/retry-resolution", responses={409: {"description": "Step not stuck"}})
async def retry_resolution(
    request_id: uuid.UUID,
    step_id: uuid.UUID,
    engine: RequestEngineDep,
    tenant_id: TenantDep,
    _user: AdminUserDep,
) -> ApprovalRequestDetailResponse:
    request, steps = await engine.retry_resolution(tenant_id=tenant_id, request_id=request_id, step_id=step_id)
    return ApprovalRequestDetailResponse.build(request, steps)


@router.get("/{request_id}/actions")
async def list_actions(request_id: uuid.UUID, engine: RequestEngineDep, tenant_id: TenantDep) -> list[ApprovalActionResponse]:
    actions = await engine.list_actions(tenant_id, request_id)
    return [ApprovalActionResponse.from_domain(a) for a in actions]


@router.get("/{request_id}/actions/verify")
async def verify_actions(request_id: uuid.UUID, engine: RequestEngineDep, tenant_id: TenantDep) -> LedgerVerifyResponse:
    is_valid = await engine.verify_ledger(tenant_id, request_id)
    return LedgerVerifyResponse(request_id=request_id, is_valid=is_valid)
