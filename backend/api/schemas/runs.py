"""Workflow run, run step and dead letter schemas."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunStepResponse(BaseModel):
    """Final outcome of one step inside a run."""

    id: str
    step_key: str
    status: str = Field(description="succeeded, failed or skipped")
    input: Optional[dict] = None
    output: Optional[dict] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RunResponse(BaseModel):
    """Workflow run information response."""

    id: str = Field(description="Run ID")
    workflow_id: str = Field(description="Workflow ID")
    workflow_version: int = Field(description="Effective version executed")
    status: str = Field(description="Run status (running, succeeded, failed)")
    actor_id: Optional[str] = None
    event_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    district_id: Optional[str] = None
    school_id: Optional[str] = None
    input: Optional[dict] = None
    output: Optional[dict] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RunDetailResponse(RunResponse):
    """Run with its step log."""

    steps: List[RunStepResponse] = Field(default_factory=list)


class RunListResponse(BaseModel):
    """Paginated list of runs."""

    runs: List[RunResponse]
    total: int
    page: int
    per_page: int


class DeadLetterResponse(BaseModel):
    """Permanently failed step."""

    id: str
    workflow_id: str
    run_id: str
    step_key: str
    actor_id: Optional[str] = None
    district_id: Optional[str] = None
    school_id: Optional[str] = None
    input: Optional[dict] = None
    error: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeadLetterListResponse(BaseModel):
    """Paginated list of dead letters."""

    dead_letters: List[DeadLetterResponse]
    total: int
    page: int
    per_page: int


class ManualRunRequest(BaseModel):
    """Trigger context for a manual dry run."""

    eventName: Optional[str] = Field(default=None, description="Event name to simulate")
    entityType: Optional[str] = None
    entityId: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
