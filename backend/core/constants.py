"""Constants and enums for the workflow automation engine."""

from enum import Enum


class WorkflowStatus(str, Enum):
    """Workflow definition lifecycle status."""

    DRAFT = "draft"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    PUBLISHED = "published"


class RunStatus(str, Enum):
    """Workflow run status."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Final outcome of a single step inside a run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepType(str, Enum):
    """Supported workflow step types."""

    CONDITION = "condition"
    NOOP = "noop"
    NOTIFY = "notify"
    CREATE_ENTITY = "create_entity"
    UPDATE_ENTITY = "update_entity"


class TriggerType(str, Enum):
    """Workflow trigger type."""

    EVENT = "event"


class DispatchOutcome(str, Enum):
    """What happened to one matched workflow during dispatch."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEDUPED = "deduped"
    SKIPPED = "skipped"


class WalkError(str, Enum):
    """Graph-integrity errors that terminate a run."""

    LOOP_DETECTED = "loop_detected"
    MAX_STEPS_EXCEEDED = "max_steps_exceeded"
    MISSING_STEP = "missing_step"


class AnalyticsEventName(str, Enum):
    """Event names written to the analytics/audit stream by the engine."""

    DISPATCHED = "workflow.dispatched"
    RUN_STARTED = "workflow.run_started"
    RUN_SUCCEEDED = "workflow.run_succeeded"
    RUN_FAILED = "workflow.run_failed"
    RUN_DEDUPED = "workflow.run_deduped"
    STEP_FAILED = "workflow.step_failed"
    DEAD_LETTERED = "workflow.dead_lettered"
    SNAPSHOT_MISSING = "workflow.snapshot_missing"


class Action(str, Enum):
    """Privileged automation actions checked against the role table."""

    MANAGE = "automation:manage"
    REQUEST_REVIEW = "automation:request_review"
    APPROVE = "automation:approve"
    PUBLISH = "automation:publish"
    REPLAY = "automation:replay"


EVENT_NAME_PATTERN = r"^[a-z0-9][a-z0-9._-]{0,63}$"

INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
