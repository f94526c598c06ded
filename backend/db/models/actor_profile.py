"""ActorProfile model — a user's role and tenant placement."""

from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class ActorProfile(BaseModel):
    """Role and district/school placement of an authenticated user."""

    __tablename__ = "actor_profiles"

    user_id: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(nullable=False, default="parent")
    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    school_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(nullable=True)
