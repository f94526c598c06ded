"""Dead letter listing endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import PaginationParams
from api.schemas.runs import DeadLetterListResponse, DeadLetterResponse
from app.dependencies import get_db
from core.constants import Action
from core.rbac import require_action
from core.utils import calculate_offset
from services.actor_service import ActorScope
from services.run_service import RunService

router = APIRouter(tags=["dead-letters"])


@router.get("", response_model=DeadLetterListResponse)
async def list_dead_letters(
    pagination: PaginationParams = Depends(),
    workflow_id: Optional[str] = Query(None, description="Filter by workflow ID"),
    actor: ActorScope = Depends(require_action(Action.MANAGE.value)),
    db: AsyncSession = Depends(get_db),
) -> DeadLetterListResponse:
    """
    List dead-lettered steps in the actor's district, newest first.
    """
    offset = calculate_offset(pagination.page, pagination.per_page)
    items, total = await RunService(db).list_dead_letters(
        district_id=actor.district_id,
        workflow_id=workflow_id,
        offset=offset,
        limit=pagination.per_page,
    )
    return DeadLetterListResponse(
        dead_letters=[DeadLetterResponse.model_validate(item) for item in items],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )
