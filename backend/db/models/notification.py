"""Notification model — in-app notifications written by ``notify`` steps."""

from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class Notification(BaseModel):
    """An in-app notification for one user."""

    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(nullable=False, index=True)
    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    school_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    type: Mapped[str] = mapped_column(nullable=False, default="workflow")
    severity: Mapped[str] = mapped_column(nullable=False, default="info")
    title: Mapped[str] = mapped_column(nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    is_read: Mapped[bool] = mapped_column(default=False)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
