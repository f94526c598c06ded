"""WorkflowRun and WorkflowRunStep models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import RunStatus
from db.base import BaseModel


class WorkflowRun(BaseModel):
    """One execution of a specific workflow version for one triggering event.

    Attributes:
        workflow_id: Foreign key to WorkflowDefinition
        workflow_version: Effective version actually executed
        district_id / school_id: Tenant scope of the run
        actor_id: User whose event triggered the run
        event_id: Recorded inbound event (NULL for manual runs)
        idempotency_key: event:{eventId}:wf:{workflowId}:v:{version}, unique per workflow
        status: running, succeeded or failed
        input: Trigger context snapshot
        output: Summary (executed steps, per-step results, terminal error)
        started_at / finished_at: Execution timestamps
    """

    __tablename__ = "workflow_runs"
    __table_args__ = (
        UniqueConstraint("workflow_id", "idempotency_key", name="uq_workflow_runs_idempotency"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    workflow_version: Mapped[int] = mapped_column(nullable=False)
    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    school_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    event_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    status: Mapped[str] = mapped_column(default=RunStatus.RUNNING.value, index=True)
    input: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    steps: Mapped[list["WorkflowRunStep"]] = relationship(
        "WorkflowRunStep",
        back_populates="run",
        cascade="all, delete-orphan",
        lazy="noload",
    )


class WorkflowRunStep(BaseModel):
    """Final outcome of one step inside a run (one row per step, not per attempt)."""

    __tablename__ = "workflow_run_steps"

    run_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_key: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(nullable=False, index=True)
    input: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    run: Mapped["WorkflowRun"] = relationship(
        "WorkflowRun", back_populates="steps", lazy="noload"
    )
