"""Workflow service — trigger matching, version snapshots and publishing."""

import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import TriggerType, WorkflowStatus
from db.models.workflow_definition import WorkflowDefinition, WorkflowDefinitionVersion
from services.base import BaseService

logger = logging.getLogger(__name__)


def trigger_matches(trigger: Optional[dict], event_name: str) -> bool:
    """True for ``{"type": "event", "event_name": <event_name>}`` triggers."""
    if not isinstance(trigger, dict):
        return False
    return (
        trigger.get("type") == TriggerType.EVENT.value
        and trigger.get("event_name") == event_name
    )


class WorkflowService(BaseService[WorkflowDefinition]):
    """Service for the workflow definitions the engine reads."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowDefinition, db)

    async def create_workflow(
        self,
        name: str,
        trigger: dict,
        definition: dict,
        district_id: Optional[str] = None,
        school_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> WorkflowDefinition:
        """Create a draft workflow at version 1."""
        return await self.create({
            "name": name,
            "description": description,
            "trigger": trigger,
            "definition": definition,
            "district_id": district_id,
            "school_id": school_id,
            "created_by": created_by,
            "status": WorkflowStatus.DRAFT.value,
            "version": 1,
        })

    async def save_snapshot(self, workflow: WorkflowDefinition) -> WorkflowDefinitionVersion:
        """Store the current definition as the immutable snapshot for its version."""
        snapshot = WorkflowDefinitionVersion(
            workflow_id=workflow.id,
            version=workflow.version,
            definition=workflow.definition or {},
            trigger=workflow.trigger,
        )
        self.db.add(snapshot)
        await self.db.flush()
        return snapshot

    async def publish(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Snapshot the current version and make it the published one."""
        await self.save_snapshot(workflow)
        workflow.published_version = workflow.version
        workflow.status = WorkflowStatus.PUBLISHED.value
        await self.db.flush()
        logger.info("Workflow %s published at v%s", workflow.id, workflow.version)
        return workflow

    async def get_snapshot(self, workflow_id: str, version: int) -> Optional[WorkflowDefinitionVersion]:
        result = await self.db.execute(
            select(WorkflowDefinitionVersion).where(
                WorkflowDefinitionVersion.workflow_id == workflow_id,
                WorkflowDefinitionVersion.version == version,
            )
        )
        return result.scalar_one_or_none()

    async def get_visible(self, workflow_id: str, district_id: Optional[str]) -> Optional[WorkflowDefinition]:
        """A workflow in the given district or global (no district = unrestricted)."""
        query = select(WorkflowDefinition).where(WorkflowDefinition.id == workflow_id)
        if district_id:
            query = query.where(
                or_(WorkflowDefinition.district_id.is_(None), WorkflowDefinition.district_id == district_id)
            )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_matching(
        self,
        event_name: str,
        district_id: Optional[str],
        school_id: Optional[str],
    ) -> list[WorkflowDefinition]:
        """Published workflows triggered by ``event_name`` that are global or in the actor's scope.

        The JSON trigger is matched in Python so the query stays portable
        across database backends.
        """
        query = select(WorkflowDefinition).where(
            WorkflowDefinition.status == WorkflowStatus.PUBLISHED.value
        )

        district_clause = WorkflowDefinition.district_id.is_(None)
        if district_id:
            district_clause = or_(district_clause, WorkflowDefinition.district_id == district_id)
        school_clause = WorkflowDefinition.school_id.is_(None)
        if school_id:
            school_clause = or_(school_clause, WorkflowDefinition.school_id == school_id)

        query = query.where(district_clause, school_clause).order_by(
            WorkflowDefinition.updated_at.desc()
        )
        result = await self.db.execute(query)
        return [wf for wf in result.scalars().all() if trigger_matches(wf.trigger, event_name)]

    async def resolve_definition(self, workflow: WorkflowDefinition) -> Optional[tuple[int, dict]]:
        """Return ``(effective_version, definition)`` for event dispatch.

        A pinned/published version that differs from the current draft is
        always served from its snapshot; None when that snapshot is missing.
        """
        version = workflow.effective_version
        if version == workflow.version:
            return version, workflow.definition or {}

        snapshot = await self.get_snapshot(workflow.id, version)
        if snapshot is None:
            logger.error(
                "Workflow %s snapshot v%s missing (current v%s)",
                workflow.id, version, workflow.version,
            )
            return None
        return version, snapshot.definition or {}
