"""Partner program models that workflows may create or update."""

from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class PartnerSubmission(BaseModel):
    """Content or program submitted by a partner for district review."""

    __tablename__ = "partner_submissions"

    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    partner_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    submitted_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    title: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(default="pending", index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)


class PartnerIncentiveApplication(BaseModel):
    """A partner's application for a district incentive."""

    __tablename__ = "partner_incentive_applications"

    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    partner_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    incentive_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(default="pending", index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)


class PartnerContract(BaseModel):
    """Contract between a district and a partner."""

    __tablename__ = "partner_contracts"

    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    partner_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(default="draft", index=True)
    starts_on: Mapped[Optional[str]] = mapped_column(nullable=True)
    ends_on: Mapped[Optional[str]] = mapped_column(nullable=True)
    terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
