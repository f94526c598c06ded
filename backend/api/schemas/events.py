"""Event ingestion schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from core.constants import EVENT_NAME_PATTERN


class EventIngestRequest(BaseModel):
    """Inbound application event."""

    eventName: str = Field(description="Event name, e.g. attendance.missed", pattern=EVENT_NAME_PATTERN)
    entityType: Optional[str] = Field(default=None, max_length=64, description="Type of the entity the event concerns")
    entityId: Optional[str] = Field(default=None, max_length=128, description="ID of the entity the event concerns")
    metadata: Optional[dict[str, Any]] = Field(default=None, description="Free-form event context")

    @field_validator("eventName", mode="before")
    @classmethod
    def _strip_event_name(cls, value):
        return value.strip() if isinstance(value, str) else value


class EventIngestResponse(BaseModel):
    """Acknowledgement of a recorded event."""

    ok: bool = Field(default=True)
    id: str = Field(description="Recorded event ID")
