"""Concurrent decisions on one step: first committed wins."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from approval_engine.domain.step_locks import LocalStepLocker
from conftest import TENANT, role_step
from grc_core.enums import ActionType, RequestStatus
from grc_core.exceptions import AlreadyDecidedError

if TYPE_CHECKING:
    from approval_engine.domain.request_engine import RequestEngine
    from conftest import MakeWorkflow, Submit


class TestConcurrentDecisions:
    async def test_approve_vs_reject_single_winner(
        self, make_workflow: MakeWorkflow, submit: Submit, request_engine: RequestEngine
    ) -> None:
        workflow = await make_workflow(role_step(1, "security"))
        request, steps = await submit(workflow)
        step_id = steps[0].id

        results = await asyncio.gather(
            request_engine.approve(tenant_id=TENANT, request_id=request.id, step_id=step_id, actor="sec1@example.com"),
            request_engine.reject(tenant_id=TENANT, request_id=request.id, step_id=step_id, actor="sec2@example.com"),
            return_exceptions=True,
        )

        losers = [r for r in results if isinstance(r, AlreadyDecidedError)]
        winners = [r for r in results if not isinstance(r, BaseException)]
        assert len(losers) == 1
        assert len(winners) == 1

        final, _, actions = await request_engine.get_detail(TENANT, request.id)
        assert final.overall_status in {RequestStatus.APPROVED, RequestStatus.REJECTED}
        assert len(actions) == 2
        assert sum(1 for a in actions if a.is_decisive) == 1
        late = next(a for a in actions if not a.is_decisive)
        assert late.attempted_action in {ActionType.APPROVE, ActionType.REJECT}
        assert await request_engine.verify_ledger(TENANT, request.id) is True

    async def test_many_approvers_race(
        self, make_workflow: MakeWorkflow, submit: Submit, request_engine: RequestEngine
    ) -> None:
        workflow = await make_workflow(role_step(1, "security"), role_step(2, "manager"))
        request, steps = await submit(workflow)
        step_id = steps[0].id

        results = await asyncio.gather(
            *(
                request_engine.approve(tenant_id=TENANT, request_id=request.id, step_id=step_id, actor=actor)
                for actor in ("sec1@example.com", "sec2@example.com", "sec3@example.com")
            ),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, AlreadyDecidedError)) == 2
        _, final_steps, _ = await request_engine.get_detail(TENANT, request.id)
        # Step 2 activated exactly once
        assert final_steps[1].started_at is not None

    async def test_timeout_vs_human_rejection(
        self, make_workflow: MakeWorkflow, submit: Submit, request_engine: RequestEngine
    ) -> None:
        workflow = await make_workflow(role_step(1, "manager", hours=1))
        request, steps = await submit(workflow)
        step_id = steps[0].id

        results = await asyncio.gather(
            request_engine.handle_timeout(step_id),
            request_engine.reject(tenant_id=TENANT, request_id=request.id, step_id=step_id, actor="manager@example.com"),
            return_exceptions=True,
        )

        final, _, actions = await request_engine.get_detail(TENANT, request.id)
        assert sum(1 for a in actions if a.is_decisive) == 1
        if final.overall_status == RequestStatus.REJECTED:
            assert results[0] is None
        else:
            assert final.overall_status == RequestStatus.APPROVED
            assert isinstance(results[1], AlreadyDecidedError)

    async def test_independent_requests_do_not_block(
        self, make_workflow: MakeWorkflow, submit: Submit, request_engine: RequestEngine
    ) -> None:
        workflow = await make_workflow(role_step(1, "manager"))
        submitted = [await submit(workflow, entity_id=f"POL-{i}") for i in range(5)]

        results = await asyncio.gather(
            *(
                request_engine.approve(
                    tenant_id=TENANT, request_id=request.id, step_id=steps[0].id, actor="manager@example.com"
                )
                for request, steps in submitted
            )
        )

        assert all(request.overall_status == RequestStatus.APPROVED for request, _ in results)


class TestLocalStepLocker:
    async def test_serializes_same_key(self) -> None:
        import uuid

        locker = LocalStepLocker()
        key = uuid.uuid4()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locker.hold(key):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_locks_released_after_use(self) -> None:
        import uuid

        locker = LocalStepLocker()
        async with locker.hold(uuid.uuid4()):
            assert len(locker) == 1
        assert len(locker) == 0
