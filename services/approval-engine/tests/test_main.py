"""Tests for main FastAPI application."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from approval_engine.api.errors import approval_error_handler
from approval_engine.domain.request_engine import RequestEngine
from approval_engine.domain.step_locks import LocalStepLocker
from approval_engine.domain.timeout_scheduler import TimeoutScheduler
from approval_engine.events.outbox import dispatch
from approval_engine.events.publisher import NullPublisher
from approval_engine.identity.directory import StaticIdentityDirectory
from approval_engine.main import app, make_unit_factory
from approval_engine.run import run_server
from fastapi import FastAPI, status
from grc_core.exceptions import ApprovalError, IdentityServiceError, InvariantViolation, NotFoundError
from grc_core.settings import EngineSettings, ServerSettings
from httpx import ASGITransport, AsyncClient


async def test_health_endpoint() -> None:
    """Test the main health endpoint."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ok"}


async def test_ready_endpoint() -> None:
    """Test the main ready endpoint."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/ready")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ready"}


def test_routes_registered() -> None:
    paths = {route.path for route in app.routes}  # type: ignore[attr-defined]
    assert "/workflows" in paths
    assert "/workflow-templates/{template_id}/instantiate" in paths
    assert "/approval-requests/{request_id}/approve" in paths
    assert "/approval-requests/{request_id}/steps/{step_id}/retry-resolution" in paths


async def test_unit_factory_opens_one_transaction_per_unit() -> None:
    """Each timer unit binds the engine and scheduler to its own session."""
    target = FastAPI()
    target.state.directory = StaticIdentityDirectory()
    target.state.publisher = NullPublisher()
    target.state.step_locker = LocalStepLocker()
    target.state.engine_settings = EngineSettings()

    session = MagicMock()
    session_factory = MagicMock()
    session_factory.return_value.__aenter__.return_value = session

    unit_factory = make_unit_factory(target, session_factory)
    async with unit_factory() as unit:
        assert isinstance(unit.engine, RequestEngine)
        assert isinstance(unit.scheduler, TimeoutScheduler)
        assert unit.engine.system_actor == "system"

    session_factory.assert_called_once()
    session.begin.assert_called_once()


async def test_unit_factory_publishes_only_after_commit() -> None:
    target = FastAPI()
    target.state.directory = StaticIdentityDirectory()
    target.state.publisher = AsyncMock()
    target.state.step_locker = LocalStepLocker()
    target.state.engine_settings = EngineSettings()

    session = MagicMock()
    session.begin.return_value.__aexit__.side_effect = ConnectionError("commit failed")
    session_factory = MagicMock()
    session_factory.return_value.__aenter__.return_value = session

    unit_factory = make_unit_factory(target, session_factory)
    with pytest.raises(ConnectionError):
        async with unit_factory():
            await dispatch(target.state.publisher, [("request_completed", {"request_id": "1"})])

    target.state.publisher.publish.assert_not_awaited()


async def test_run_server_uses_settings() -> None:
    with patch("approval_engine.run.uvicorn.Server") as server_cls:
        server_cls.return_value.serve = AsyncMock()
        await run_server(ServerSettings(host="127.0.0.1", port=9000))

    config = server_cls.call_args[0][0]
    assert config.host == "127.0.0.1"
    assert config.port == 9000
    server_cls.return_value.serve.assert_awaited_once()


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (NotFoundError("request missing"), 404),
        (IdentityServiceError("identity service down"), 502),
        (InvariantViolation("terminal request has open steps"), 500),
    ],
)
async def test_error_handler_maps_status(exc: ApprovalError, expected: int) -> None:
    request = MagicMock()
    request.method = "POST"
    request.url.path = "/approval-requests"

    response = await approval_error_handler(request, exc)

    assert response.status_code == expected
    assert json.loads(response.body)["error"] == type(exc).__name__
