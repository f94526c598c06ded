"""Event ingestion endpoint.

Records an application event and dispatches matching workflows. Workflow
outcomes never change the response: a recorded event is always
acknowledged with ``{"ok": true, "id": ...}``.
"""

import logging

from fastapi import APIRouter, Depends, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.events import EventIngestRequest, EventIngestResponse
from app.config import get_settings
from app.dependencies import get_current_actor, get_db
from core.exceptions import PayloadTooLargeError
from core.utils import json_size
from services.actor_service import ActorScope
from services.analytics_service import AnalyticsService
from workflow.dispatcher import InboundEvent, WorkflowDispatcher, check_privileged_flags

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.post("", response_model=EventIngestResponse, status_code=http_status.HTTP_200_OK)
async def ingest_event(
    request: EventIngestRequest,
    actor: ActorScope = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> EventIngestResponse:
    """
    Record an application event, then run the workflows it triggers.
    """
    settings = get_settings()
    metadata = request.metadata or {}

    if json_size(metadata) > settings.EVENT_MAX_METADATA_BYTES:
        raise PayloadTooLargeError(
            f"metadata exceeds {settings.EVENT_MAX_METADATA_BYTES} bytes"
        )

    check_privileged_flags(metadata, actor.role)

    recorded = await AnalyticsService(db).record_event(
        request.eventName,
        actor_user_id=actor.user_id,
        district_id=actor.district_id,
        school_id=actor.school_id,
        entity_type=request.entityType,
        entity_id=request.entityId,
        metadata={**metadata, "actor_role": actor.role},
    )
    await db.commit()

    event = InboundEvent(
        event_name=request.eventName,
        entity_type=request.entityType,
        entity_id=request.entityId,
        metadata=metadata,
    )
    try:
        await WorkflowDispatcher(db).dispatch(event, actor, event_id=recorded.id)
    except Exception as exc:
        logger.error(
            "Workflow dispatch failed for event %s (%s): %s",
            recorded.id, request.eventName, exc,
            exc_info=True,
        )
        await db.rollback()

    return EventIngestResponse(ok=True, id=recorded.id)
