"""Workflow endpoints — run history and manual dry runs."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import PaginationParams
from api.schemas.runs import (
    ManualRunRequest,
    RunDetailResponse,
    RunListResponse,
    RunResponse,
    RunStepResponse,
)
from app.dependencies import get_db
from core.constants import Action
from core.exceptions import NotFoundError
from core.rbac import require_action
from core.utils import calculate_offset
from services.actor_service import ActorScope
from services.run_service import RunService
from services.workflow_service import WorkflowService
from workflow.dispatcher import InboundEvent, WorkflowDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


@router.get("/{workflow_id}/runs", response_model=RunListResponse)
async def list_workflow_runs(
    workflow_id: str,
    pagination: PaginationParams = Depends(),
    actor: ActorScope = Depends(require_action(Action.MANAGE.value)),
    db: AsyncSession = Depends(get_db),
) -> RunListResponse:
    """
    List runs of one workflow, newest first.
    """
    workflow = await WorkflowService(db).get_visible(workflow_id, actor.district_id)
    if not workflow:
        raise NotFoundError("Workflow not found")

    offset = calculate_offset(pagination.page, pagination.per_page)
    runs, total = await RunService(db).list_runs(
        workflow_id,
        district_id=actor.district_id,
        offset=offset,
        limit=pagination.per_page,
    )
    return RunListResponse(
        runs=[RunResponse.model_validate(run) for run in runs],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/{workflow_id}/run", response_model=RunDetailResponse, status_code=status.HTTP_201_CREATED)
async def run_workflow(
    workflow_id: str,
    request: ManualRunRequest = None,
    actor: ActorScope = Depends(require_action(Action.MANAGE.value)),
    db: AsyncSession = Depends(get_db),
) -> RunDetailResponse:
    """
    Dry-run the workflow's current draft definition and return the run.

    Side-effecting steps only report what they would write.
    """
    event = None
    if request is not None and request.eventName:
        event = InboundEvent(
            event_name=request.eventName,
            entity_type=request.entityType,
            entity_id=request.entityId,
            metadata=request.metadata,
        )

    run = await WorkflowDispatcher(db).run_manual(workflow_id, actor, event)
    steps = await RunService(db).get_steps(run.id)

    logger.info("Manual run %s of workflow %s by %s", run.id, workflow_id, actor.user_id)
    return RunDetailResponse(
        **RunResponse.model_validate(run).model_dump(),
        steps=[RunStepResponse.model_validate(step) for step in steps],
    )
