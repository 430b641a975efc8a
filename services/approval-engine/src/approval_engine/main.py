"""Approval Engine FastAPI application."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from grc_core.db.engine import create_async_engine_factory, get_async_session_factory
from grc_core.settings import DatabaseSettings, EngineSettings, IdentitySettings, NATSSettings, SchedulerSettings
from grc_core.telemetry import init_telemetry, shutdown_telemetry
from grc_core.telemetry.instrumentation import instrument_app, instrument_engine

from approval_engine.api.deps import build_request_engine
from approval_engine.api.errors import register_error_handlers
from approval_engine.api.routes_requests import router as requests_router
from approval_engine.api.routes_workflows import router as workflows_router
from approval_engine.api.routes_workflows import templates_router
from approval_engine.domain.step_locks import LocalStepLocker
from approval_engine.domain.timeout_scheduler import TimeoutScheduler
from approval_engine.events.outbox import publish_after_commit
from approval_engine.events.publisher import EventPublisher, NATSPublisher, NullPublisher
from approval_engine.identity.directory import build_directory
from approval_engine.repository.postgres import PgTimeoutRepository
from approval_engine.scheduler.worker import TimeoutWorker, TimerUnit

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def make_unit_factory(
    app: FastAPI, session_factory: async_sessionmaker[AsyncSession]
) -> Callable[[], AbstractAsyncContextManager[TimerUnit]]:
    """Each timer unit gets its own session and transaction; its events publish after commit."""

    @asynccontextmanager
    async def unit() -> AsyncGenerator[TimerUnit]:
        async with publish_after_commit(app.state.publisher), session_factory() as session, session.begin():
            yield TimerUnit(
                engine=build_request_engine(session, app.state),
                scheduler=TimeoutScheduler(PgTimeoutRepository(session)),
            )

    return unit


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:  # pragma: no cover
    """Manage application lifecycle: OTel + DB engine + NATS + timeout worker."""
    init_telemetry("approval-engine")

    db_settings = DatabaseSettings()
    engine = create_async_engine_factory(db_settings)
    instrument_engine(engine)
    session_factory = get_async_session_factory(engine)
    app.state.session_factory = session_factory

    nats_settings = NATSSettings()
    publisher: EventPublisher
    if nats_settings.enabled:
        publisher = NATSPublisher()
        await publisher.connect(nats_settings)
    else:
        publisher = NullPublisher()
    app.state.publisher = publisher

    app.state.directory = build_directory(IdentitySettings())
    app.state.step_locker = LocalStepLocker()
    app.state.engine_settings = EngineSettings()

    scheduler_settings = SchedulerSettings()
    worker: TimeoutWorker | None = None
    if scheduler_settings.enabled:
        worker = TimeoutWorker(make_unit_factory(app, session_factory), scheduler_settings)
        await worker.start()
    app.state.timeout_worker = worker

    yield

    if worker is not None:
        await worker.stop()
    if isinstance(publisher, NATSPublisher):
        await publisher.disconnect()
    close = getattr(app.state.directory, "close", None)
    if close is not None:
        await close()
    await engine.dispose()
    shutdown_telemetry()


app = FastAPI(
    title="GRC Approval Engine",
    version="0.1.0",
    lifespan=lifespan,
)

instrument_app(app)
register_error_handlers(app)

app.include_router(workflows_router)
app.include_router(templates_router)
app.include_router(requests_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/ready")
async def ready() -> dict[str, str]:
    return {"status": "ready"}
