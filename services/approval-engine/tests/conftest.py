"""Shared test fixtures with in-memory mock repositories."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import datetime
from typing import Any
from unittest.mock import MagicMock

import pytest
from approval_engine.domain.approver_resolver import ApproverResolver
from approval_engine.domain.ledger_service import LedgerService
from approval_engine.domain.request_engine import RequestEngine
from approval_engine.domain.step_locks import LocalStepLocker
from approval_engine.domain.timeout_scheduler import TimeoutScheduler
from approval_engine.domain.workflow_service import WorkflowService
from approval_engine.identity.directory import StaticIdentityDirectory
from fastapi import FastAPI, HTTPException, Request
from grc_core.auth.dependencies import get_current_user
from grc_core.auth.models import UserContext
from grc_core.enums import RequestStatus, StepStatus, TimeoutStatus
from grc_core.ledger import ApprovalAction
from grc_core.models import ApprovalRequest, ApprovalStep, StepTimeout, WorkflowDefinition
from grc_core.settings import EngineSettings
from httpx import AsyncClient

TENANT = "acme"
ADMIN = "admin@example.com"

# ─── In-memory mock repositories ─────────────────────────


class MockWorkflowRepository:
    def __init__(self) -> None:
        self._store: dict[uuid.UUID, WorkflowDefinition] = {}

    async def create(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        await asyncio.sleep(0)
        self._store[workflow.id] = workflow.model_copy(deep=True)
        return workflow

    async def get_by_id(self, workflow_id: uuid.UUID) -> WorkflowDefinition | None:
        await asyncio.sleep(0)
        workflow = self._store.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def update(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        return await self.create(workflow)

    async def delete(self, workflow_id: uuid.UUID) -> None:
        await asyncio.sleep(0)
        self._store.pop(workflow_id, None)

    async def list_workflows(
        self,
        *,
        tenant_id: str,
        entity_type: str | None = None,
        active_only: bool = False,
        include_deleted: bool = False,
    ) -> list[WorkflowDefinition]:
        await asyncio.sleep(0)
        result = [w for w in self._store.values() if w.tenant_id == tenant_id]
        if entity_type:
            result = [w for w in result if w.trigger_entity_type == entity_type]
        if active_only:
            result = [w for w in result if w.is_active]
        if not include_deleted:
            result = [w for w in result if not w.is_deleted]
        return [w.model_copy(deep=True) for w in result]


class MockRequestRepository:
    def __init__(self) -> None:
        self._store: dict[uuid.UUID, ApprovalRequest] = {}

    async def create(self, request: ApprovalRequest) -> ApprovalRequest:
        await asyncio.sleep(0)
        self._store[request.id] = request.model_copy(deep=True)
        return request

    async def get_by_id(self, request_id: uuid.UUID, *, for_update: bool = False) -> ApprovalRequest | None:
        await asyncio.sleep(0)
        request = self._store.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def update(self, request: ApprovalRequest) -> ApprovalRequest:
        return await self.create(request)

    async def count_by_workflow(self, workflow_id: uuid.UUID) -> int:
        await asyncio.sleep(0)
        return sum(1 for r in self._store.values() if r.workflow_id == workflow_id)

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
        await asyncio.sleep(0)
        result = [r for r in self._store.values() if r.tenant_id == tenant_id]
        if status:
            result = [r for r in result if r.overall_status == status]
        if entity_type:
            result = [r for r in result if r.entity_type == entity_type]
        if entity_id:
            result = [r for r in result if r.entity_id == entity_id]
        if requested_by:
            result = [r for r in result if r.requested_by == requested_by]
        if request_ids is not None:
            result = [r for r in result if r.id in request_ids]
        result.sort(key=lambda r: r.requested_at, reverse=True)
        return [r.model_copy(deep=True) for r in result[offset : offset + limit]]


class MockStepRepository:
    def __init__(self) -> None:
        self._store: dict[uuid.UUID, ApprovalStep] = {}

    async def create_many(self, steps: list[ApprovalStep]) -> list[ApprovalStep]:
        await asyncio.sleep(0)
        for step in steps:
            self._store[step.id] = step.model_copy(deep=True)
        return steps

    async def get_by_id(self, step_id: uuid.UUID, *, for_update: bool = False) -> ApprovalStep | None:
        await asyncio.sleep(0)
        step = self._store.get(step_id)
        return step.model_copy(deep=True) if step else None

    async def update(self, step: ApprovalStep) -> ApprovalStep:
        await asyncio.sleep(0)
        self._store[step.id] = step.model_copy(deep=True)
        return step

    async def list_by_request(self, request_id: uuid.UUID) -> list[ApprovalStep]:
        await asyncio.sleep(0)
        steps = [s for s in self._store.values() if s.approval_request_id == request_id]
        return [s.model_copy(deep=True) for s in sorted(steps, key=lambda s: s.step_number)]

    async def list_active_for_approver(self, approver: str) -> list[ApprovalStep]:
        await asyncio.sleep(0)
        return [
            s.model_copy(deep=True)
            for s in self._store.values()
            if s.step_status == StepStatus.IN_PROGRESS
            and (approver in s.resolved_approvers or approver in s.delegations)
        ]


class MockActionRepository:
    def __init__(self) -> None:
        self._actions: list[ApprovalAction] = []

    async def append(self, action: ApprovalAction) -> ApprovalAction:
        await asyncio.sleep(0)
        self._actions.append(action)
        return action

    async def get_last(self, request_id: uuid.UUID) -> ApprovalAction | None:
        chain = await self.list_by_request(request_id)
        return chain[-1] if chain else None

    async def list_by_request(self, request_id: uuid.UUID) -> list[ApprovalAction]:
        await asyncio.sleep(0)
        return sorted((a for a in self._actions if a.request_id == request_id), key=lambda a: a.sequence)


class MockTimeoutRepository:
    def __init__(self) -> None:
        self._store: dict[uuid.UUID, StepTimeout] = {}

    async def upsert(self, timeout: StepTimeout) -> StepTimeout:
        await asyncio.sleep(0)
        self._store[timeout.step_id] = timeout.model_copy()
        return timeout

    async def get(self, step_id: uuid.UUID) -> StepTimeout | None:
        await asyncio.sleep(0)
        timeout = self._store.get(step_id)
        return timeout.model_copy() if timeout else None

    async def update(self, timeout: StepTimeout) -> StepTimeout:
        return await self.upsert(timeout)

    async def list_due(self, now: datetime, *, limit: int = 100) -> list[StepTimeout]:
        await asyncio.sleep(0)
        due = [t for t in self._store.values() if t.status == TimeoutStatus.SCHEDULED and t.fire_at <= now]
        due.sort(key=lambda t: t.fire_at)
        return [t.model_copy() for t in due[:limit]]


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, subject_key: str, payload: dict[str, Any]) -> None:
        self.events.append((subject_key, payload))

    def subjects(self) -> list[str]:
        return [subject for subject, _ in self.events]


# ─── Fixtures ─────────────────────────────────────────────


@pytest.fixture
def directory() -> StaticIdentityDirectory:
    return StaticIdentityDirectory(
        {
            "manager": ["manager@example.com"],
            "ciso": ["ciso@example.com"],
            "security": ["sec1@example.com", "sec2@example.com", "sec3@example.com"],
            "compliance": ["compliance@example.com"],
        }
    )


@pytest.fixture
def workflow_repo() -> MockWorkflowRepository:
    return MockWorkflowRepository()


@pytest.fixture
def request_repo() -> MockRequestRepository:
    return MockRequestRepository()


@pytest.fixture
def step_repo() -> MockStepRepository:
    return MockStepRepository()


@pytest.fixture
def action_repo() -> MockActionRepository:
    return MockActionRepository()


@pytest.fixture
def timeout_repo() -> MockTimeoutRepository:
    return MockTimeoutRepository()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def locker() -> LocalStepLocker:
    return LocalStepLocker()


@pytest.fixture
def engine_settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def workflow_service(workflow_repo: MockWorkflowRepository, request_repo: MockRequestRepository) -> WorkflowService:
    return WorkflowService(repo=workflow_repo, request_repo=request_repo)


@pytest.fixture
def ledger_service(action_repo: MockActionRepository) -> LedgerService:
    return LedgerService(repo=action_repo)


@pytest.fixture
def timeout_scheduler(timeout_repo: MockTimeoutRepository) -> TimeoutScheduler:
    return TimeoutScheduler(repo=timeout_repo)


@pytest.fixture
def request_engine(
    workflow_service: WorkflowService,
    request_repo: MockRequestRepository,
    step_repo: MockStepRepository,
    directory: StaticIdentityDirectory,
    ledger_service: LedgerService,
    timeout_scheduler: TimeoutScheduler,
    publisher: RecordingPublisher,
    locker: LocalStepLocker,
    engine_settings: EngineSettings,
) -> RequestEngine:
    return RequestEngine(
        workflows=workflow_service,
        requests=request_repo,
        steps=step_repo,
        resolver=ApproverResolver(directory),
        ledger=ledger_service,
        timeouts=timeout_scheduler,
        publisher=publisher,
        locker=locker,
        settings=engine_settings,
    )


def role_step(number: int, *roles: str, required: bool = True, hours: float | None = None) -> dict[str, Any]:
    return {
        "step_number": number,
        "step_name": f"{' / '.join(roles).title()} Review",
        "approver_type": "role",
        "approver_roles": list(roles),
        "required": required,
        "auto_approve_hours": hours,
    }


def user_step(number: int, *emails: str, required: bool = True, hours: float | None = None) -> dict[str, Any]:
    return {
        "step_number": number,
        "step_name": f"Step {number}",
        "approver_type": "user",
        "approver_emails": list(emails),
        "required": required,
        "auto_approve_hours": hours,
    }


MakeWorkflow = Callable[..., Awaitable[WorkflowDefinition]]
Submit = Callable[..., Awaitable[tuple[ApprovalRequest, list[ApprovalStep]]]]


@pytest.fixture
def make_workflow(workflow_service: WorkflowService) -> MakeWorkflow:
    async def _make(*steps: dict[str, Any], entity_type: str = "policy", **flags: Any) -> WorkflowDefinition:
        return await workflow_service.create_workflow(
            tenant_id=TENANT,
            name="Policy Approval",
            trigger_entity_type=entity_type,
            steps=list(steps),
            created_by=ADMIN,
            **flags,
        )

    return _make


@pytest.fixture
def submit(request_engine: RequestEngine) -> Submit:
    async def _submit(
        workflow: WorkflowDefinition, requested_by: str = "author@example.com", **kwargs: Any
    ) -> tuple[ApprovalRequest, list[ApprovalStep]]:
        return await request_engine.submit(
            tenant_id=TENANT,
            workflow_id=workflow.id,
            entity_type=workflow.trigger_entity_type,
            entity_id=kwargs.pop("entity_id", "POL-001"),
            request_title=kwargs.pop("request_title", "Approve data retention policy"),
            requested_by=requested_by,
            **kwargs,
        )

    return _submit


@pytest.fixture
def app(
    workflow_service: WorkflowService,
    request_engine: RequestEngine,
    engine_settings: EngineSettings,
) -> Generator[FastAPI]:
    """Create a test FastAPI app with mocked dependencies.

    ``Authorization: Bearer <email>`` authenticates as that email;
    ``admin@example.com`` also holds the admin role.
    """
    from approval_engine.api.deps import get_request_engine, get_workflow_service
    from approval_engine.main import app as main_app

    main_app.state.session_factory = MagicMock()
    main_app.state.engine_settings = engine_settings

    main_app.dependency_overrides[get_workflow_service] = lambda: workflow_service
    main_app.dependency_overrides[get_request_engine] = lambda: request_engine

    async def _get_mock_user(request: Request) -> UserContext:
        auth = request.headers.get("Authorization")
        if not auth:
            return UserContext(user_id="anonymous", username="anonymous", is_authenticated=False)
        if not auth.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        email = auth.removeprefix("Bearer ")
        roles = [engine_settings.admin_role] if email == ADMIN else []
        return UserContext(user_id=email, username=email, email=email, roles=roles, tenant_id=TENANT)

    main_app.dependency_overrides[get_current_user] = _get_mock_user

    yield main_app

    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create a test client for the FastAPI app."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth(email: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {email}"}
