"""Approval request lifecycle engine.

Drives a request from submission to a terminal outcome:

    submit -> activate step(s) -> decide / timeout -> advance -> finish

Step statuses are the source of truth. The request's ``overall_status`` is
derived from them (plus the cancellation marker) and re-checked at the end
of every transition. Every decisive or late action lands in the ledger.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pydantic
from grc_core.enums import ActionType, RequestStatus, StepStatus
from grc_core.exceptions import (
    AlreadyDecidedError,
    InvalidTransitionError,
    InvariantViolation,
    NotAuthorizedError,
    NotFoundError,
    ResolutionError,
    ValidationError,
)
from grc_core.models import ApprovalRequest, ApprovalStep
from grc_core.settings import EngineSettings
from grc_core.telemetry.metrics import record_auto_approval, record_completion, record_decision

from approval_engine.events.outbox import dispatch

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncGenerator

    from grc_core.ledger import ApprovalAction

    from approval_engine.domain.approver_resolver import ApproverResolver
    from approval_engine.domain.ledger_service import LedgerService
    from approval_engine.domain.step_locks import LocalStepLocker
    from approval_engine.domain.timeout_scheduler import TimeoutScheduler
    from approval_engine.domain.workflow_service import WorkflowService
    from approval_engine.events.publisher import EventPublisher
    from approval_engine.repository.protocols import RequestRepository, StepRepository

logger = logging.getLogger(__name__)

_OPEN_STEP_STATUSES = frozenset({StepStatus.PENDING, StepStatus.IN_PROGRESS})

CREATOR_APPROVAL_COMMENT = "auto-approved: requester is an approver"

_pending_events: contextvars.ContextVar[list[tuple[str, dict[str, Any]]]] = contextvars.ContextVar(
    "approval_pending_events"
)


def _now() -> datetime:
    return datetime.now(UTC)


def derive_overall_status(steps: list[ApprovalStep], *, cancelled: bool = False) -> RequestStatus:
    """Compute a request's status from its steps."""
    statuses = [s.step_status for s in steps]
    if StepStatus.REJECTED in statuses:
        return RequestStatus.REJECTED
    if cancelled:
        return RequestStatus.CANCELLED
    if not any(s in _OPEN_STEP_STATUSES for s in statuses) and all(
        s.step_status == StepStatus.APPROVED for s in steps if s.is_required
    ):
        return RequestStatus.APPROVED
    if all(s == StepStatus.PENDING for s in statuses):
        return RequestStatus.PENDING
    return RequestStatus.IN_PROGRESS


def check_invariants(request: ApprovalRequest, steps: list[ApprovalStep]) -> None:
    """Raise ``InvariantViolation`` when a request and its steps disagree."""
    if request.is_terminal:
        open_steps = [s.step_number for s in steps if s.step_status in _OPEN_STEP_STATUSES]
        if open_steps:
            raise InvariantViolation(
                f"Request {request.id} is {request.overall_status} with open steps {open_steps}"
            )

    derived = derive_overall_status(steps, cancelled=request.overall_status == RequestStatus.CANCELLED)
    if derived != request.overall_status:
        raise InvariantViolation(
            f"Request {request.id} stored as {request.overall_status} but steps derive {derived}"
        )

    for step in steps:
        if step.step_status == StepStatus.PENDING and step.started_at is not None:
            raise InvariantViolation(f"Step {step.id} is pending but has started_at")
        if step.step_status == StepStatus.IN_PROGRESS and step.started_at is None:
            raise InvariantViolation(f"Step {step.id} is in progress without started_at")


def _ready_to_approve(steps: list[ApprovalStep]) -> bool:
    required = [s for s in steps if s.is_required]
    if required:
        return all(s.step_status == StepStatus.APPROVED for s in required)
    # All-optional workflows finish once nothing is left open
    return not any(s.step_status in _OPEN_STEP_STATUSES for s in steps)


def _expires_at(requested_at: datetime, steps: list[ApprovalStep]) -> datetime | None:
    hours = [s.auto_approve_hours for s in steps]
    if any(h is None for h in hours):
        return None
    return requested_at + timedelta(hours=sum(h for h in hours if h is not None))


class RequestEngine:
    """Owns every state transition of approval requests and their steps."""

    def __init__(
        self,
        *,
        workflows: WorkflowService,
        requests: RequestRepository,
        steps: StepRepository,
        resolver: ApproverResolver,
        ledger: LedgerService,
        timeouts: TimeoutScheduler,
        publisher: EventPublisher,
        locker: LocalStepLocker,
        settings: EngineSettings | None = None,
    ) -> None:
        self._workflows = workflows
        self._requests = requests
        self._steps = steps
        self._resolver = resolver
        self._ledger = ledger
        self._timeouts = timeouts
        self._publisher = publisher
        self._locker = locker
        self._settings = settings or EngineSettings()

    @property
    def system_actor(self) -> str:
        return self._settings.system_actor

    # ─── Submit ──────────────────────────────────────────

    async def submit(
        self,
        *,
        tenant_id: str,
        workflow_id: uuid.UUID,
        entity_type: str,
        entity_id: str,
        request_title: str,
        requested_by: str,
        request_description: str | None = None,
        entity_snapshot: dict[str, Any] | None = None,
    ) -> tuple[ApprovalRequest, list[ApprovalStep]]:
        """Create a request for ``entity_id`` and activate its first step(s)."""
        workflow = await self._workflows.get_for_submission(workflow_id, tenant_id, entity_type)
        try:
            request = ApprovalRequest(
                tenant_id=tenant_id,
                workflow_id=workflow.id,
                workflow_version=workflow.version,
                request_title=request_title,
                request_description=request_description,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_snapshot=dict(entity_snapshot or {}),
                requested_by=requested_by,
                overall_status=RequestStatus.IN_PROGRESS,
                require_all_approvers=workflow.require_all_approvers,
                allow_parallel_approval=workflow.allow_parallel_approval,
                auto_approve_if_creator_is_approver=workflow.auto_approve_if_creator_is_approver,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid approval request: {e.errors(include_url=False)}") from e

        steps = [ApprovalStep.from_template(t, request.id) for t in workflow.steps]
        request.expires_at = _expires_at(request.requested_at, steps)

        async with self._collect_events():
            request = await self._requests.create(request)
            steps = await self._steps.create_many(steps)
            logger.info(
                "Request %s submitted for %s/%s by %s (workflow %s v%d)",
                request.request_number,
                entity_type,
                entity_id,
                requested_by,
                workflow.id,
                workflow.version,
            )
            self._emit("request_submitted", request)

            now = _now()
            to_activate = steps if request.allow_parallel_approval else steps[:1]
            for step in to_activate:
                await self._activate(request, step, now)
                await self._apply_creator_approval(request, step, now)
            await self._advance(request, steps, now)
            request = await self._save_request(request, steps)
        return request, steps

    # ─── Decide ──────────────────────────────────────────

    async def approve(
        self,
        *,
        tenant_id: str,
        request_id: uuid.UUID,
        step_id: uuid.UUID,
        actor: str,
        comments: str | None = None,
    ) -> tuple[ApprovalRequest, list[ApprovalStep]]:
        return await self._decide(tenant_id, request_id, step_id, actor, ActionType.APPROVE, comments)

    async def reject(
        self,
        *,
        tenant_id: str,
        request_id: uuid.UUID,
        step_id: uuid.UUID,
        actor: str,
        comments: str | None = None,
    ) -> tuple[ApprovalRequest, list[ApprovalStep]]:
        return await self._decide(tenant_id, request_id, step_id, actor, ActionType.REJECT, comments)

    async def _decide(
        self,
        tenant_id: str,
        request_id: uuid.UUID,
        step_id: uuid.UUID,
        actor: str,
        action: ActionType,
        comments: str | None,
    ) -> tuple[ApprovalRequest, list[ApprovalStep]]:
        async with self._collect_events(), self._locker.hold(request_id), self._locker.hold(step_id):
            request, steps, step = await self._load_for_step(tenant_id, request_id, step_id)

            if actor not in step.eligible_approvers:
                logger.info("Actor %s is not an approver of step %s", actor, step_id)
                raise NotAuthorizedError(f"{actor} is not an approver for step {step.step_number}")

            principal = step.principal_for(actor)
            duplicate = action == ActionType.APPROVE and principal in step.approvals
            if step.step_status != StepStatus.IN_PROGRESS or request.is_terminal or duplicate:
                entry = await self._ledger.record(
                    request_id=request.id,
                    step_order=step.step_number,
                    actor=actor,
                    action=ActionType.COMMENT,
                    comments=comments,
                    attempted_action=action,
                )
                logger.info("Late %s by %s on step %s logged as comment", action, actor, step_id)
                record_decision(action.value, late=True)
                raise AlreadyDecidedError(f"Step {step.step_number} is already decided", action=entry)

            entry = await self._ledger.record(
                request_id=request.id,
                step_order=step.step_number,
                actor=actor,
                action=action,
                comments=comments,
            )
            self._emit_decision(request, step, entry)
            record_decision(action.value)

            now = _now()
            if action == ActionType.REJECT:
                await self._reject_step(request, steps, step, actor, comments, now)
            else:
                await self._approve_step(request, steps, step, actor, comments, now)
            request = await self._save_request(request, steps)
        return request, steps

    async def handle_timeout(self, step_id: uuid.UUID) -> ApprovalRequest | None:
        """Auto-approve a step whose SLA elapsed.

        No-op (returns None) when the step has already left ``in_progress``.
        """
        existing = await self._steps.get_by_id(step_id)
        if existing is None:
            logger.warning("Timeout fired for unknown step %s", step_id)
            return None

        request_id = existing.approval_request_id
        async with self._collect_events(), self._locker.hold(request_id), self._locker.hold(step_id):
            request = await self._requests.get_by_id(request_id, for_update=True)
            step = await self._steps.get_by_id(step_id, for_update=True)
            if request is None or step is None:
                return None
            if step.step_status != StepStatus.IN_PROGRESS or request.is_terminal:
                logger.info("Timeout for step %s ignored: step is %s", step_id, step.step_status)
                return None
            if step.resolution_error:
                logger.warning("Timeout for step %s ignored: approvers never resolved", step_id)
                return None

            steps = await self._steps_with(request.id, step)
            comment = self._settings.auto_approve_comment
            entry = await self._ledger.record(
                request_id=request.id,
                step_order=step.step_number,
                actor=self.system_actor,
                action=ActionType.APPROVE,
                comments=comment,
            )
            self._emit_decision(request, step, entry)
            now = _now()
            # System approval stands in for every outstanding approver
            await self._resolve_step(step, StepStatus.APPROVED, self.system_actor, comment, now)
            logger.info("Step %s auto-approved after SLA", step_id)
            record_auto_approval(request.entity_type)
            await self._advance(request, steps, now)
            request = await self._save_request(request, steps)
        return request

    # ─── Delegate / cancel / comment / retry ─────────────

    async def delegate(
        self,
        *,
        tenant_id: str,
        request_id: uuid.UUID,
        step_id: uuid.UUID,
        actor: str,
        delegate_to: str,
    ) -> ApprovalStep:
        """Let ``delegate_to`` act on the step on behalf of ``actor``. The timer keeps running."""
        delegate_to = delegate_to.strip()
        async with self._collect_events(), self._locker.hold(request_id), self._locker.hold(step_id):
            request, steps, step = await self._load_for_step(tenant_id, request_id, step_id)
            if step.step_status != StepStatus.IN_PROGRESS or request.is_terminal:
                raise InvalidTransitionError(f"Step {step.step_number} is {step.step_status}, cannot delegate")
            if actor not in step.eligible_approvers:
                raise NotAuthorizedError(f"{actor} cannot delegate step {step.step_number}")
            if not delegate_to:
                raise ValidationError("delegate_to is required")
            if delegate_to in step.eligible_approvers:
                raise ValidationError(f"{delegate_to} can already act on step {step.step_number}")

            now = _now()
            step.delegations[delegate_to] = actor
            step.delegated_to = delegate_to
            step.delegated_at = now
            await self._steps.update(step)
            await self._ledger.record(
                request_id=request.id,
                step_order=step.step_number,
                actor=actor,
                action=ActionType.COMMENT,
                comments=f"Delegated to {delegate_to}",
            )
            logger.info("Step %s delegated by %s to %s", step_id, actor, delegate_to)
            self._emit("step_activated", request, step=step, approvers=[delegate_to], delegated_by=actor)
            check_invariants(request, steps)
        return step

    async def cancel(
        self,
        *,
        tenant_id: str,
        request_id: uuid.UUID,
        actor: str,
        is_admin: bool = False,
        reason: str | None = None,
    ) -> ApprovalRequest:
        """Cancel a request. Already-terminal requests are returned unchanged."""
        async with self._collect_events(), self._locker.hold(request_id):
            request = await self._get_request(tenant_id, request_id, for_update=True)
            if request.is_terminal:
                return request
            if actor != request.requested_by and not is_admin:
                raise NotAuthorizedError("Only the requester or an admin can cancel a request")

            steps = await self._steps.list_by_request(request.id)
            await self._ledger.record(
                request_id=request.id,
                step_order=request.current_step_number,
                actor=actor,
                action=ActionType.COMMENT,
                comments=f"Request cancelled: {reason}" if reason else "Request cancelled",
            )
            await self._finish(request, steps, RequestStatus.CANCELLED, actor, reason, _now())
            request = await self._save_request(request, steps)
        return request

    async def comment(
        self, *, tenant_id: str, request_id: uuid.UUID, actor: str, comment: str
    ) -> ApprovalAction:
        """Append a comment at the request's current step. Never changes state."""
        if not comment.strip():
            raise ValidationError("Comment must not be empty")
        async with self._collect_events(), self._locker.hold(request_id):
            request = await self._get_request(tenant_id, request_id, for_update=True)
            entry = await self._ledger.record(
                request_id=request.id,
                step_order=request.current_step_number,
                actor=actor,
                action=ActionType.COMMENT,
                comments=comment,
            )
            _pending_events.get().append(("decision_recorded", self._decision_payload(request, entry)))
        return entry

    async def retry_resolution(
        self, *, tenant_id: str, request_id: uuid.UUID, step_id: uuid.UUID
    ) -> tuple[ApprovalRequest, list[ApprovalStep]]:
        """Re-run approver resolution for a step stuck on an empty role."""
        async with self._collect_events(), self._locker.hold(request_id), self._locker.hold(step_id):
            request, steps, step = await self._load_for_step(tenant_id, request_id, step_id)
            if request.is_terminal or step.step_status != StepStatus.IN_PROGRESS or not step.resolution_error:
                raise InvalidTransitionError(f"Step {step.step_number} is not awaiting approver resolution")
            now = _now()
            await self._activate(request, step, now)
            await self._apply_creator_approval(request, step, now)
            await self._advance(request, steps, now)
            request = await self._save_request(request, steps)
        return request, steps

    # ─── Queries ─────────────────────────────────────────

    async def get_request(self, tenant_id: str, request_id: uuid.UUID) -> ApprovalRequest:
        return await self._get_request(tenant_id, request_id)

    async def get_detail(
        self, tenant_id: str, request_id: uuid.UUID
    ) -> tuple[ApprovalRequest, list[ApprovalStep], list[ApprovalAction]]:
        request = await self._get_request(tenant_id, request_id)
        steps = await self._steps.list_by_request(request.id)
        actions = await self._ledger.list_actions(request.id)
        return request, steps, actions

    async def list_requests(
        self,
        tenant_id: str,
        *,
        status: RequestStatus | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        requested_by: str | None = None,
        approver: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ApprovalRequest]:
        request_ids: set[uuid.UUID] | None = None
        if approver:
            active = await self._steps.list_active_for_approver(approver)
            request_ids = {s.approval_request_id for s in active}
            if not request_ids:
                return []
        return await self._requests.list_requests(
            tenant_id=tenant_id,
            status=status,
            entity_type=entity_type,
            entity_id=entity_id,
            requested_by=requested_by,
            request_ids=request_ids,
            limit=limit,
            offset=offset,
        )

    async def list_actions(self, tenant_id: str, request_id: uuid.UUID) -> list[ApprovalAction]:
        request = await self._get_request(tenant_id, request_id)
        return await self._ledger.list_actions(request.id)

    async def verify_ledger(self, tenant_id: str, request_id: uuid.UUID) -> bool:
        request = await self._get_request(tenant_id, request_id)
        return await self._ledger.verify(request.id)

    # ─── Transitions ─────────────────────────────────────

    async def _activate(self, request: ApprovalRequest, step: ApprovalStep, now: datetime) -> None:
        """Resolve approvers and open the step, or skip it when optional and empty."""
        try:
            approvers = await self._resolver.resolve(step.to_template(), request.tenant_id)
        except ResolutionError as e:
            step.step_status = StepStatus.IN_PROGRESS
            step.started_at = step.started_at or now
            step.resolved_approvers = []
            step.resolution_error = str(e)
            await self._steps.update(step)
            logger.error("Request %s step %d: %s", request.request_number, step.step_number, e)
            self._emit("step_resolution_failed", request, step=step, error=str(e), roles=e.roles)
            return

        if not approvers:
            step.step_status = StepStatus.SKIPPED
            await self._steps.update(step)
            logger.info("Optional step %d of %s skipped: no approvers", step.step_number, request.request_number)
            return

        step.step_status = StepStatus.IN_PROGRESS
        step.started_at = step.started_at or now
        step.resolved_approvers = sorted(approvers)
        step.resolution_error = None
        await self._steps.update(step)

        if step.auto_approve_hours is not None:
            await self._timeouts.schedule(step.id, request.id, now + timedelta(hours=step.auto_approve_hours))

        logger.info(
            "Request %s step %d active with %d approvers",
            request.request_number,
            step.step_number,
            len(step.resolved_approvers),
        )
        self._emit("step_activated", request, step=step, approvers=step.resolved_approvers)

    async def _apply_creator_approval(self, request: ApprovalRequest, step: ApprovalStep, now: datetime) -> None:
        if not request.auto_approve_if_creator_is_approver:
            return
        if step.step_status != StepStatus.IN_PROGRESS or request.requested_by not in step.resolved_approvers:
            return
        entry = await self._ledger.record(
            request_id=request.id,
            step_order=step.step_number,
            actor=request.requested_by,
            action=ActionType.APPROVE,
            comments=CREATOR_APPROVAL_COMMENT,
        )
        self._emit_decision(request, step, entry)
        requester = request.requested_by
        await self._credit_approval(request, step, requester, requester, CREATOR_APPROVAL_COMMENT, now)

    async def _approve_step(
        self,
        request: ApprovalRequest,
        steps: list[ApprovalStep],
        step: ApprovalStep,
        actor: str,
        comments: str | None,
        now: datetime,
    ) -> None:
        await self._credit_approval(request, step, actor, step.principal_for(actor), comments, now)
        if step.step_status == StepStatus.APPROVED:
            await self._advance(request, steps, now)

    async def _credit_approval(
        self,
        request: ApprovalRequest,
        step: ApprovalStep,
        actor: str,
        principal: str,
        comments: str | None,
        now: datetime,
    ) -> None:
        if request.require_all_approvers:
            if principal not in step.approvals:
                step.approvals.append(principal)
            if step.outstanding_approvers:
                await self._steps.update(step)
                logger.info(
                    "Step %s: %d of %d approvals",
                    step.id,
                    len(step.approvals),
                    len(step.resolved_approvers),
                )
                return
        elif principal not in step.approvals:
            step.approvals.append(principal)
        await self._resolve_step(step, StepStatus.APPROVED, actor, comments, now)

    async def _reject_step(
        self,
        request: ApprovalRequest,
        steps: list[ApprovalStep],
        step: ApprovalStep,
        actor: str,
        comments: str | None,
        now: datetime,
    ) -> None:
        await self._resolve_step(step, StepStatus.REJECTED, actor, comments, now)
        await self._finish(request, steps, RequestStatus.REJECTED, actor, comments, now)

    async def _resolve_step(
        self, step: ApprovalStep, status: StepStatus, actor: str, comments: str | None, now: datetime
    ) -> None:
        step.step_status = status
        step.decision = status.value
        step.decision_by = actor
        step.decision_at = now
        step.decision_notes = comments
        step.completed_at = now
        await self._steps.update(step)
        await self._timeouts.cancel(step.id)

    async def _advance(self, request: ApprovalRequest, steps: list[ApprovalStep], now: datetime) -> None:
        """Finish the request or open the next sequential step."""
        while not request.is_terminal:
            if _ready_to_approve(steps):
                last = max(
                    (s for s in steps if s.step_status == StepStatus.APPROVED),
                    key=lambda s: s.completed_at or now,
                    default=None,
                )
                await self._finish(
                    request,
                    steps,
                    RequestStatus.APPROVED,
                    last.decision_by if last else self.system_actor,
                    last.decision_notes if last else None,
                    now,
                )
                return
            if request.allow_parallel_approval:
                return
            if any(s.step_status == StepStatus.IN_PROGRESS for s in steps):
                return

            next_step = next((s for s in steps if s.step_status == StepStatus.PENDING), None)
            if next_step is None:
                return
            request.current_step_number = next_step.step_number
            await self._activate(request, next_step, now)
            await self._apply_creator_approval(request, next_step, now)

    async def _finish(
        self,
        request: ApprovalRequest,
        steps: list[ApprovalStep],
        outcome: RequestStatus,
        actor: str,
        notes: str | None,
        now: datetime,
    ) -> None:
        for step in steps:
            if step.step_status not in _OPEN_STEP_STATUSES:
                continue
            if step.step_status == StepStatus.IN_PROGRESS:
                step.completed_at = now
            step.step_status = StepStatus.SKIPPED
            await self._steps.update(step)
            await self._timeouts.cancel(step.id)

        request.overall_status = outcome
        request.final_decision = outcome.value
        request.final_decision_by = actor
        request.final_decision_notes = notes
        if outcome == RequestStatus.APPROVED:
            request.approved_at = now
        elif outcome == RequestStatus.REJECTED:
            request.rejected_at = now
        else:
            request.cancelled_at = now

        logger.info("Request %s %s by %s", request.request_number, outcome, actor)
        record_completion(outcome.value, request.entity_type)
        self._emit("request_completed", request, outcome=outcome.value, decided_by=actor)

    # ─── Helpers ─────────────────────────────────────────

    async def _get_request(
        self, tenant_id: str, request_id: uuid.UUID, *, for_update: bool = False
    ) -> ApprovalRequest:
        request = await self._requests.get_by_id(request_id, for_update=for_update)
        if request is None or request.tenant_id != tenant_id:
            raise NotFoundError(f"Approval request {request_id} not found")
        return request

    async def _load_for_step(
        self, tenant_id: str, request_id: uuid.UUID, step_id: uuid.UUID
    ) -> tuple[ApprovalRequest, list[ApprovalStep], ApprovalStep]:
        request = await self._get_request(tenant_id, request_id, for_update=True)
        step = await self._steps.get_by_id(step_id, for_update=True)
        if step is None or step.approval_request_id != request.id:
            raise NotFoundError(f"Step {step_id} not found on request {request_id}")
        steps = await self._steps_with(request.id, step)
        return request, steps, step

    async def _steps_with(self, request_id: uuid.UUID, locked: ApprovalStep) -> list[ApprovalStep]:
        """All steps of a request, with the locked copy standing in for its row."""
        steps = await self._steps.list_by_request(request_id)
        return [locked if s.id == locked.id else s for s in steps]

    async def _save_request(self, request: ApprovalRequest, steps: list[ApprovalStep]) -> ApprovalRequest:
        if not request.is_terminal:
            request.overall_status = derive_overall_status(steps)
        request.updated_at = _now()
        check_invariants(request, steps)
        return await self._requests.update(request)

    def _emit(
        self, subject_key: str, request: ApprovalRequest, *, step: ApprovalStep | None = None, **extra: Any
    ) -> None:
        payload: dict[str, Any] = {
            "tenant_id": request.tenant_id,
            "request_id": str(request.id),
            "request_number": request.request_number,
            "entity_type": request.entity_type,
            "entity_id": request.entity_id,
            "status": request.overall_status.value,
        }
        if step is not None:
            payload["step_id"] = str(step.id)
            payload["step_number"] = step.step_number
            payload["step_name"] = step.step_name
        payload.update(extra)
        _pending_events.get().append((subject_key, payload))

    def _emit_decision(self, request: ApprovalRequest, step: ApprovalStep, entry: ApprovalAction) -> None:
        _pending_events.get().append(("decision_recorded", self._decision_payload(request, entry, step=step)))

    @staticmethod
    def _decision_payload(
        request: ApprovalRequest, entry: ApprovalAction, *, step: ApprovalStep | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tenant_id": request.tenant_id,
            "request_id": str(request.id),
            "request_number": request.request_number,
            "action_id": str(entry.id),
            "action": entry.action.value,
            "actor": entry.approver_email,
            "step_number": entry.step_order,
            "comments": entry.comments,
        }
        if step is not None:
            payload["step_id"] = str(step.id)
        return payload

    @contextlib.asynccontextmanager
    async def _collect_events(self) -> AsyncGenerator[None]:
        """Buffer events raised by one operation and hand them on only if it succeeds.

        Inside an open outbox they wait for the transaction to commit.
        """
        token = _pending_events.set([])
        try:
            yield
            events = _pending_events.get()
        finally:
            _pending_events.reset(token)
        await dispatch(self._publisher, events)
