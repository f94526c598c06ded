"""Workflow dispatcher — turns one inbound event into workflow runs.

For each published workflow whose trigger and tenant scope match the
event, the dispatcher resolves the effective version's snapshot, checks
the idempotency key, creates the run, walks the step graph and finalizes
the run. Matches are processed one after another within a dispatch.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import Action, AnalyticsEventName, DispatchOutcome, RunStatus
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.logging_config import run_log_context
from core.rbac import role_allows
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_run import WorkflowRun
from services.actor_service import ActorScope
from services.analytics_service import AnalyticsService
from services.run_service import RunService, build_idempotency_key
from services.workflow_service import WorkflowService
from workflow.engine import ExecutionContext, StepExecutor, StepRunner, WorkflowEngine
from workflow.entity_registry import EntityStore
from workflow.graph import validate_definition

logger = logging.getLogger(__name__)

# metadata flag -> action the caller must hold to set it
PRIVILEGED_FLAGS: dict[str, str] = {
    "replayed": Action.REPLAY.value,
    "simulated": Action.MANAGE.value,
    "workflow_editor": Action.MANAGE.value,
}


def check_privileged_flags(metadata: Optional[dict], actor_role: Optional[str]) -> None:
    """Raise ForbiddenError if ``metadata`` sets a flag the role may not set."""
    if not isinstance(metadata, dict):
        return
    for flag, action in PRIVILEGED_FLAGS.items():
        if metadata.get(flag) is True and not role_allows(actor_role, action):
            raise ForbiddenError(f"metadata.{flag} requires {action}")


def is_dry_run(metadata: Optional[dict]) -> bool:
    return isinstance(metadata, dict) and metadata.get("simulated") is True


@dataclass
class InboundEvent:
    """A validated application event."""

    event_name: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass
class DispatchResult:
    """What happened to one matched workflow."""

    workflow_id: str
    outcome: DispatchOutcome
    version: Optional[int] = None
    run_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    steps_executed: int = 0
    error: Optional[dict] = None


class WorkflowDispatcher:
    """Matches events to workflows and executes them."""

    def __init__(self, db: AsyncSession, sleep: Callable = asyncio.sleep):
        self.db = db
        self.workflows = WorkflowService(db)
        self.runs = RunService(db)
        self.analytics = AnalyticsService(db)
        self._sleep = sleep

    def _build_engine(self) -> WorkflowEngine:
        executor = StepExecutor(EntityStore(self.db))
        runner = StepRunner(executor, self.runs, analytics=self.analytics, sleep=self._sleep)
        return WorkflowEngine(runner)

    async def dispatch(
        self,
        event: InboundEvent,
        actor: ActorScope,
        event_id: Optional[str] = None,
    ) -> list[DispatchResult]:
        """Run every matching workflow for ``event``.

        Returns:
            One DispatchResult per matched workflow, in match order
        """
        matches = await self.workflows.find_matching(
            event.event_name, actor.district_id, actor.school_id
        )
        logger.info(
            "Dispatching %s: %s workflow(s) matched (actor=%s event=%s)",
            event.event_name, len(matches), actor.user_id, event_id,
        )
        await self.analytics.emit(
            AnalyticsEventName.DISPATCHED,
            actor_user_id=actor.user_id,
            district_id=actor.district_id,
            school_id=actor.school_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            metadata={
                "workflow_count": len(matches),
                "source_event": event.event_name,
                "event_id": event_id,
            },
        )

        results = []
        for workflow in matches:
            results.append(await self._dispatch_one(workflow, event, actor, event_id))
        return results

    async def _dispatch_one(
        self,
        workflow: WorkflowDefinition,
        event: InboundEvent,
        actor: ActorScope,
        event_id: Optional[str],
    ) -> DispatchResult:
        resolved = await self.workflows.resolve_definition(workflow)
        if resolved is None:
            await self.analytics.emit(
                AnalyticsEventName.SNAPSHOT_MISSING,
                actor_user_id=actor.user_id,
                district_id=workflow.district_id,
                school_id=workflow.school_id,
                entity_type="workflow",
                entity_id=workflow.id,
                metadata={"workflow_id": workflow.id, "version": workflow.effective_version},
            )
            return DispatchResult(
                workflow_id=workflow.id,
                outcome=DispatchOutcome.SKIPPED,
                version=workflow.effective_version,
                error={"error": "snapshot_missing"},
            )

        version, definition = resolved
        key = build_idempotency_key(event_id, workflow.id, version) if event_id else None

        if key and await self.runs.find_by_idempotency_key(workflow.id, key):
            return await self._deduped(workflow, actor, version, key)

        context = ExecutionContext(
            run_id="",
            workflow_id=workflow.id,
            workflow_version=version,
            actor_id=actor.user_id,
            actor_role=actor.role,
            district_id=workflow.district_id or actor.district_id,
            school_id=workflow.school_id or actor.school_id,
            event_id=event_id,
            event_name=event.event_name,
            event_metadata=event.metadata or {},
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            trigger=workflow.trigger or {},
            dry_run=is_dry_run(event.metadata),
        )

        run = await self.runs.create_run(
            workflow_id=workflow.id,
            workflow_version=version,
            input=context.input_snapshot(),
            actor_id=actor.user_id,
            district_id=context.district_id,
            school_id=context.school_id,
            event_id=event_id,
            idempotency_key=key,
        )
        if run is None:
            return await self._deduped(workflow, actor, version, key)

        result = await self._execute(run, definition, context)
        return DispatchResult(
            workflow_id=workflow.id,
            outcome=DispatchOutcome.SUCCEEDED if result.succeeded else DispatchOutcome.FAILED,
            version=version,
            run_id=run.id,
            idempotency_key=key,
            steps_executed=len(result.executed),
            error=result.error,
        )

    async def _deduped(
        self,
        workflow: WorkflowDefinition,
        actor: ActorScope,
        version: int,
        key: Optional[str],
    ) -> DispatchResult:
        logger.info("Workflow %s v%s deduped (key=%s)", workflow.id, version, key)
        await self.analytics.emit(
            AnalyticsEventName.RUN_DEDUPED,
            actor_user_id=actor.user_id,
            district_id=workflow.district_id or actor.district_id,
            school_id=workflow.school_id or actor.school_id,
            entity_type="workflow",
            entity_id=workflow.id,
            metadata={"workflow_id": workflow.id, "version": version, "idempotency_key": key},
        )
        return DispatchResult(
            workflow_id=workflow.id,
            outcome=DispatchOutcome.DEDUPED,
            version=version,
            idempotency_key=key,
        )

    async def _execute(self, run: WorkflowRun, definition: dict, context: ExecutionContext):
        context.run_id = run.id
        with run_log_context(run.id, context.workflow_id, context.workflow_version):
            return await self._run_and_finalize(run, definition, context)

    async def _run_and_finalize(self, run: WorkflowRun, definition: dict, context: ExecutionContext):
        audit = {
            "actor_user_id": context.actor_id,
            "district_id": context.district_id,
            "school_id": context.school_id,
            "entity_type": "workflow_run",
            "entity_id": run.id,
        }
        base_meta = {
            "workflow_id": context.workflow_id,
            "version": context.workflow_version,
            "run_id": run.id,
            "dry_run": context.dry_run,
        }

        logger.info(
            "Run %s started: workflow=%s v%s dry_run=%s",
            run.id, context.workflow_id, context.workflow_version, context.dry_run,
        )
        await self.analytics.emit(AnalyticsEventName.RUN_STARTED, metadata=base_meta, **audit)

        result = await self._build_engine().execute(definition, context)
        output = result.to_output()
        await self.runs.finalize_run(run, result.status, output)

        if result.succeeded:
            await self.analytics.emit(
                AnalyticsEventName.RUN_SUCCEEDED,
                metadata={**base_meta, "steps_executed": len(result.executed)},
                **audit,
            )
        else:
            await self.analytics.emit(
                AnalyticsEventName.RUN_FAILED,
                metadata={
                    **base_meta,
                    "steps_executed": len(result.executed),
                    "error": result.error,
                },
                **audit,
            )
        await self.db.commit()

        logger.info(
            "Run %s finished: status=%s steps=%s",
            run.id, result.status.value, len(result.executed),
        )
        return result

    async def run_manual(
        self,
        workflow_id: str,
        actor: ActorScope,
        event: Optional[InboundEvent] = None,
    ) -> WorkflowRun:
        """Dry-run the workflow's current draft definition.

        Raises:
            NotFoundError: workflow missing or outside the actor's district
            ValidationError: the draft definition does not validate
        """
        workflow = await self.workflows.get_visible(workflow_id, actor.district_id)
        if workflow is None:
            raise NotFoundError("Workflow not found")

        errors = validate_definition(workflow.definition)
        if errors:
            raise ValidationError("; ".join(errors))

        event = event or InboundEvent(event_name=(workflow.trigger or {}).get("event_name") or "manual")
        context = ExecutionContext(
            run_id="",
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            actor_id=actor.user_id,
            actor_role=actor.role,
            district_id=workflow.district_id or actor.district_id,
            school_id=workflow.school_id or actor.school_id,
            event_name=event.event_name,
            event_metadata=event.metadata or {},
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            trigger=workflow.trigger or {},
            dry_run=True,
        )
        run = await self.runs.create_run(
            workflow_id=workflow.id,
            workflow_version=workflow.version,
            input={**context.input_snapshot(), "manual": True},
            actor_id=actor.user_id,
            district_id=context.district_id,
            school_id=context.school_id,
        )
        await self._execute(run, workflow.definition, context)
        return run
