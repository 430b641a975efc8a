"""Tests for the SQL the Postgres repositories issue."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

from approval_engine.repository.postgres import PgActionRepository, PgTimeoutRepository
from sqlalchemy.dialects import postgresql


def _session() -> MagicMock:
    result = MagicMock()
    result.scalars.return_value = []
    result.scalar_one_or_none.return_value = None
    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    return session


def _sql(session: MagicMock) -> str:
    stmt = session.execute.call_args[0][0]
    return str(stmt.compile(dialect=postgresql.dialect())).upper().replace('"', "")


async def test_due_timers_read_without_row_locks() -> None:
    session = _session()

    assert await PgTimeoutRepository(session).list_due(datetime.now(UTC)) == []

    sql = _sql(session)
    assert "FOR UPDATE" not in sql
    assert "ORDER BY APPROVAL_STEP_TIMEOUTS.FIRE_AT" in sql


async def test_ledger_tail_ordered_by_sequence() -> None:
    session = _session()

    assert await PgActionRepository(session).get_last(uuid.uuid4()) is None

    assert "ORDER BY APPROVAL_ACTIONS.SEQUENCE DESC" in _sql(session)


async def test_ledger_listing_ordered_by_sequence() -> None:
    session = _session()

    assert await PgActionRepository(session).list_by_request(uuid.uuid4()) == []

    sql = _sql(session)
    assert "ORDER BY APPROVAL_ACTIONS.SEQUENCE" in sql
    assert "ACTION_DATE" not in sql.split("ORDER BY")[1]
