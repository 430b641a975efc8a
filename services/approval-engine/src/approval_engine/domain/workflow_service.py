"""Workflow definition store."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pydantic
from grc_core.exceptions import NotFoundError, ValidationError
from grc_core.models import StepTemplate, WorkflowDefinition

if TYPE_CHECKING:
    import uuid

    from approval_engine.repository.protocols import RequestRepository, WorkflowRepository

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "trigger_entity_type",
        "trigger_conditions",
        "steps",
        "require_all_approvers",
        "allow_parallel_approval",
        "auto_approve_if_creator_is_approver",
        "is_active",
    }
)


def _build(data: dict[str, Any]) -> WorkflowDefinition:
    try:
        return WorkflowDefinition.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid workflow definition: {e.errors(include_url=False)}") from e


class WorkflowService:
    """CRUD for workflow definitions.

    Every edit bumps ``version``. In-flight requests keep the step copies
    and flags they were submitted with. A workflow referenced by any request
    is only ever soft-deleted.
    """

    def __init__(self, repo: WorkflowRepository, request_repo: RequestRepository) -> None:
        self._repo = repo
        self._request_repo = request_repo

    async def create_workflow(
        self,
        *,
        tenant_id: str,
        name: str,
        trigger_entity_type: str,
        steps: list[StepTemplate] | list[dict[str, Any]],
        description: str = "",
        trigger_conditions: dict[str, Any] | None = None,
        require_all_approvers: bool = False,
        allow_parallel_approval: bool = False,
        auto_approve_if_creator_is_approver: bool = False,
        is_active: bool = True,
        created_by: str | None = None,
    ) -> WorkflowDefinition:
        workflow = _build(
            {
                "tenant_id": tenant_id,
                "name": name,
                "description": description,
                "trigger_entity_type": trigger_entity_type,
                "trigger_conditions": trigger_conditions or {},
                "steps": [s.model_dump() if isinstance(s, StepTemplate) else s for s in steps],
                "require_all_approvers": require_all_approvers,
                "allow_parallel_approval": allow_parallel_approval,
                "auto_approve_if_creator_is_approver": auto_approve_if_creator_is_approver,
                "is_active": is_active,
                "created_by": created_by,
            }
        )
        saved = await self._repo.create(workflow)
        logger.info("Workflow %s (%s) created for %s", saved.id, saved.name, saved.trigger_entity_type)
        return saved

    async def get_workflow(self, workflow_id: uuid.UUID, tenant_id: str) -> WorkflowDefinition:
        workflow = await self._repo.get_by_id(workflow_id)
        if workflow is None or workflow.tenant_id != tenant_id or workflow.is_deleted:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def list_workflows(
        self,
        tenant_id: str,
        *,
        entity_type: str | None = None,
        active_only: bool = False,
    ) -> list[WorkflowDefinition]:
        return await self._repo.list_workflows(tenant_id=tenant_id, entity_type=entity_type, active_only=active_only)

    async def update_workflow(
        self, workflow_id: uuid.UUID, tenant_id: str, changes: dict[str, Any]
    ) -> WorkflowDefinition:
        """Apply a partial edit and bump the version."""
        current = await self.get_workflow(workflow_id, tenant_id)
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        data = current.model_dump()
        data.update(changes)
        data["version"] = current.version + 1
        data["updated_at"] = datetime.now(UTC)
        updated = await self._repo.update(_build(data))
        logger.info("Workflow %s updated to version %d", workflow_id, updated.version)
        return updated

    async def set_active(self, workflow_id: uuid.UUID, tenant_id: str, *, active: bool) -> WorkflowDefinition:
        """Activate or deactivate. Deactivation only blocks new requests."""
        current = await self.get_workflow(workflow_id, tenant_id)
        if current.is_active == active:
            return current
        return await self.update_workflow(workflow_id, tenant_id, {"is_active": active})

    async def delete_workflow(self, workflow_id: uuid.UUID, tenant_id: str) -> bool:
        """Delete a workflow. Returns True when it was soft-deleted."""
        current = await self.get_workflow(workflow_id, tenant_id)
        references = await self._request_repo.count_by_workflow(workflow_id)
        if references == 0:
            await self._repo.delete(workflow_id)
            logger.info("Workflow %s deleted", workflow_id)
            return False

        current.is_deleted = True
        current.is_active = False
        current.updated_at = datetime.now(UTC)
        await self._repo.update(current)
        logger.info("Workflow %s soft-deleted (%d requests reference it)", workflow_id, references)
        return True

    async def get_for_submission(self, workflow_id: uuid.UUID, tenant_id: str, entity_type: str) -> WorkflowDefinition:
        """Fetch a workflow that may accept a new request for ``entity_type``."""
        workflow = await self._repo.get_by_id(workflow_id)
        if workflow is None or workflow.tenant_id != tenant_id:
            raise ValidationError(f"Workflow {workflow_id} does not exist")
        if not workflow.accepts_requests:
            raise ValidationError(f"Workflow {workflow_id} is not active")
        if workflow.trigger_entity_type != entity_type:
            raise ValidationError(
                f"Workflow {workflow_id} handles {workflow.trigger_entity_type}, not {entity_type}"
            )
        return workflow

