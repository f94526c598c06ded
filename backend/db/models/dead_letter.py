"""WorkflowDeadLetter model."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import BaseModel


class WorkflowDeadLetter(BaseModel):
    """A step that failed permanently after exhausting its retries.

    Write-once: remediation happens outside the engine.

    Attributes:
        workflow_id / run_id / step_key: Where the failure happened
        actor_id: Triggering actor
        district_id / school_id: Tenant scope of the run
        input: Step definition and attempt count
        error: Last error message
        metadata_: Attempts, backoff and last output
    """

    __tablename__ = "workflow_dead_letters"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    run_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_key: Mapped[str] = mapped_column(nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(nullable=True)
    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    school_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    input: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
