"""AnalyticsEvent model.

Holds both recorded inbound application events and the engine's own
append-only audit/analytics stream (``workflow.*`` event names).
"""

from typing import Optional

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class AnalyticsEvent(BaseModel):
    """One append-only analytics/audit record."""

    __tablename__ = "analytics_events"

    event_name: Mapped[str] = mapped_column(nullable=False, index=True)
    actor_user_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    school_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
