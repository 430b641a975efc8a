"""Auto-instrumentation for the HTTP app and the database engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

if TYPE_CHECKING:
    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine

# Liveness and readiness probes are not traced
PROBE_PATHS = "health,ready"


def instrument_app(app: FastAPI) -> None:
    FastAPIInstrumentor.instrument_app(app, excluded_urls=PROBE_PATHS)


def instrument_engine(engine: AsyncEngine) -> None:
    # SQLAlchemy instrumentation hooks the sync engine behind the async facade
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
