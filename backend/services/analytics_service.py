"""Analytics service — append-only writes to the analytics/audit stream."""

import logging
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import AnalyticsEventName
from db.models.analytics_event import AnalyticsEvent
from services.base import BaseService

logger = logging.getLogger(__name__)


class AnalyticsService(BaseService[AnalyticsEvent]):
    """Records inbound application events and engine audit events."""

    def __init__(self, db: AsyncSession):
        super().__init__(AnalyticsEvent, db)

    async def record_event(
        self,
        event_name: str,
        actor_user_id: Optional[str] = None,
        district_id: Optional[str] = None,
        school_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AnalyticsEvent:
        """Append one event row and return it (with its id)."""
        return await self.create({
            "event_name": event_name,
            "actor_user_id": actor_user_id,
            "district_id": district_id,
            "school_id": school_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata_": metadata or {},
        })

    async def emit(
        self,
        name: Union[AnalyticsEventName, str],
        **fields,
    ) -> AnalyticsEvent:
        """Record one of the engine's ``workflow.*`` audit events."""
        event_name = name.value if isinstance(name, AnalyticsEventName) else str(name)
        logger.debug("Analytics event: %s %s", event_name, fields.get("metadata"))
        return await self.record_event(event_name, **fields)
