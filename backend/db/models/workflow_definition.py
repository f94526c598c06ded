"""WorkflowDefinition and WorkflowDefinitionVersion models."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import WorkflowStatus
from db.base import BaseModel


class WorkflowDefinition(BaseModel):
    """A versioned, tenant-scoped trigger plus step graph.

    Authored and edited outside the engine; the engine only reads it.

    Attributes:
        id: Unique identifier (UUID string)
        district_id / school_id: Tenant scope (NULL means global)
        name: Workflow name
        description: Workflow description
        trigger: Trigger descriptor, e.g. {"type": "event", "event_name": "attendance.missed"}
        status: draft, in_review, approved or published
        version: Current (mutable) draft version, monotonic
        pinned_version / published_version: Historical snapshot to execute instead of the draft
        definition: Mutable current definition {"start"?: id, "steps": [...]}
        created_by: User who authored the workflow
    """

    __tablename__ = "workflow_definitions"

    district_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    school_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    trigger: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        default=WorkflowStatus.DRAFT.value, index=True
    )
    version: Mapped[int] = mapped_column(default=1)
    pinned_version: Mapped[Optional[int]] = mapped_column(nullable=True)
    published_version: Mapped[Optional[int]] = mapped_column(nullable=True)
    definition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(nullable=True)

    versions: Mapped[list["WorkflowDefinitionVersion"]] = relationship(
        "WorkflowDefinitionVersion",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    @property
    def effective_version(self) -> int:
        """Version that event dispatch executes: pinned, else published, else current."""
        if self.pinned_version is not None:
            return self.pinned_version
        if self.published_version is not None:
            return self.published_version
        return self.version


class WorkflowDefinitionVersion(BaseModel):
    """Immutable snapshot of a workflow definition at one version."""

    __tablename__ = "workflow_definition_versions"
    __table_args__ = (
        UniqueConstraint("workflow_id", "version", name="uq_workflow_definition_versions_version"),
    )

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(nullable=False)
    definition: Mapped[dict] = mapped_column(JSON, nullable=False)
    trigger: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    workflow: Mapped["WorkflowDefinition"] = relationship(
        "WorkflowDefinition", back_populates="versions", lazy="noload"
    )
