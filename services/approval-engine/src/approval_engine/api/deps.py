"""FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, Header, HTTPException, Request
from grc_core.auth.dependencies import get_current_user, require_authenticated, require_role
from grc_core.auth.models import UserContext
from grc_core.settings import EngineSettings
from sqlalchemy.ext.asyncio import AsyncSession

from approval_engine.domain.approver_resolver import ApproverResolver
from approval_engine.domain.ledger_service import LedgerService
from approval_engine.domain.request_engine import RequestEngine
from approval_engine.domain.timeout_scheduler import TimeoutScheduler
from approval_engine.domain.workflow_service import WorkflowService
from approval_engine.events.outbox import publish_after_commit
from approval_engine.repository.postgres import (
    PgActionRepository,
    PgRequestRepository,
    PgStepRepository,
    PgTimeoutRepository,
    PgWorkflowRepository,
)


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """One transaction per request. Engine events go out after it commits."""
    state = request.app.state
    async with publish_after_commit(state.publisher), state.session_factory() as session, session.begin():
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_session)]


def get_engine_settings(request: Request) -> EngineSettings:
    settings = getattr(request.app.state, "engine_settings", None)
    return settings or EngineSettings()


EngineSettingsDep = Annotated[EngineSettings, Depends(get_engine_settings)]


def build_request_engine(session: AsyncSession, state: Any) -> RequestEngine:
    """Wire a request engine onto one session. Shared by routes and the timeout worker."""
    requests = PgRequestRepository(session)
    return RequestEngine(
        workflows=WorkflowService(repo=PgWorkflowRepository(session), request_repo=requests),
        requests=requests,
        steps=PgStepRepository(session),
        resolver=ApproverResolver(state.directory),
        ledger=LedgerService(repo=PgActionRepository(session)),
        timeouts=TimeoutScheduler(repo=PgTimeoutRepository(session)),
        publisher=state.publisher,
        locker=state.step_locker,
        settings=getattr(state, "engine_settings", None),
    )


def get_workflow_service(session: SessionDep) -> WorkflowService:
    return WorkflowService(repo=PgWorkflowRepository(session), request_repo=PgRequestRepository(session))


def get_request_engine(request: Request, session: SessionDep) -> RequestEngine:
    return build_request_engine(session, request.app.state)


CurrentUserDep = Annotated[UserContext, Depends(get_current_user)]
AuthenticatedUserDep = Annotated[UserContext, Depends(require_authenticated)]


def get_tenant_id(
    user: CurrentUserDep,
    settings: EngineSettingsDep,
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> str:
    """Tenant from ``X-Tenant-Id``, else the token, else the configured default."""
    if x_tenant_id and user.tenant_id and x_tenant_id != user.tenant_id:
        raise HTTPException(status_code=403, detail="Tenant header does not match token")
    return x_tenant_id or user.tenant_id or settings.default_tenant_id


TenantDep = Annotated[str, Depends(get_tenant_id)]
AdminUserDep = Annotated[UserContext, Depends(require_role(EngineSettings().admin_role))]
WorkflowServiceDep = Annotated[WorkflowService, Depends(get_workflow_service)]
RequestEngineDep = Annotated[RequestEngine, Depends(get_request_engine)]
