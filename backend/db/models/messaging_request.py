"""MessagingRequest model — a request to open a messaging channel between users."""

from typing import Optional

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class MessagingRequest(BaseModel):
    """Request by one user to message another inside a school."""

    __tablename__ = "messaging_requests"

    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    school_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    requester_user_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    target_user_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(default="pending", index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_by: Mapped[Optional[str]] = mapped_column(nullable=True)
