"""Workflow run detail endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.runs import RunDetailResponse, RunResponse, RunStepResponse
from app.dependencies import get_db
from core.constants import Action
from core.exceptions import NotFoundError
from core.rbac import require_action
from services.actor_service import ActorScope
from services.run_service import RunService

router = APIRouter(tags=["runs"])


@router.get("/{run_id}", response_model=RunDetailResponse)
async def get_run(
    run_id: str,
    actor: ActorScope = Depends(require_action(Action.MANAGE.value)),
    db: AsyncSession = Depends(get_db),
) -> RunDetailResponse:
    """
    Get a run with its step log.
    """
    svc = RunService(db)
    run = await svc.get_by_id_and_district(run_id, actor.district_id)
    if not run:
        raise NotFoundError("Run not found")

    steps = await svc.get_steps(run.id)
    return RunDetailResponse(
        **RunResponse.model_validate(run).model_dump(),
        steps=[RunStepResponse.model_validate(step) for step in steps],
    )
