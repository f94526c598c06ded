"""Workflow Execution Engine — event-triggered step graph runner.

Given a normalized step graph and a run context, the engine walks from
the start step to termination:

- condition steps branch through ``on_true`` / ``on_false``
- notify / create_entity / update_entity steps write through the entity registry
- steps carrying ``config.required_action`` run only if the actor's role grants it
- failed steps are retried per ``config.retry`` and then dead-lettered
- a visited-set stops cycles, a step ceiling stops runaway graphs

Step-level errors never escape ``WorkflowEngine.execute``: they become
failed outcomes and, in turn, a failed ``WalkResult``. Only persistence
failures (run step log, dead letter writes) propagate as exceptions.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.config import get_settings
from core.constants import AnalyticsEventName, RunStatus, StepStatus, StepType, WalkError
from core.exceptions import InsufficientPermissionsError, NonRetryableStepError
from core.rbac import role_allows
from workflow.entity_registry import EntityStore, get_entity_spec, prepare_fields
from workflow.expressions import ConditionEvaluator, TemplateResolver
from workflow.graph import SUPPORTED_STEP_TYPES, StepDef, StepGraph
from workflow.retry_strategies import RetryStrategy, execute_with_retry

logger = logging.getLogger(__name__)

UNGATED_STEP_TYPES = frozenset({StepType.CONDITION.value, StepType.NOOP.value})


# ─── Execution Context ────────────────────────────────────────

@dataclass
class ExecutionContext:
    """Everything a run knows about its trigger, actor and progress.

    ``steps`` accumulates each completed step's output so later steps can
    reference it as ``{{ steps.<id>.<field> }}``.
    """

    run_id: str
    workflow_id: str
    workflow_version: int
    actor_id: Optional[str] = None
    actor_role: Optional[str] = None
    district_id: Optional[str] = None
    school_id: Optional[str] = None
    event_id: Optional[str] = None
    event_name: Optional[str] = None
    event_metadata: dict[str, Any] = field(default_factory=dict)
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    trigger: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False
    steps: dict[str, Any] = field(default_factory=dict)

    def input_snapshot(self) -> dict:
        """Trigger context persisted as the run's ``input``."""
        return {
            "event_id": self.event_id,
            "event_name": self.event_name,
            "event_metadata": self.event_metadata,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "trigger": self.trigger,
            "dry_run": self.dry_run,
        }

    def to_template_context(self) -> dict:
        """Namespace that ``{{ ... }}`` placeholders resolve against."""
        return {
            **self.input_snapshot(),
            "actor": {
                "id": self.actor_id,
                "user_id": self.actor_id,
                "role": self.actor_role,
                "district_id": self.district_id,
                "school_id": self.school_id,
            },
            "workflow": {
                "id": self.workflow_id,
                "version": self.workflow_version,
                "run_id": self.run_id,
            },
            "steps": self.steps,
        }


@dataclass
class StepOutcome:
    """Result of executing one step (possibly after several attempts)."""

    step_id: str
    step_type: str
    ok: bool
    output: dict[str, Any] = field(default_factory=dict)
    next_step_id: Optional[str] = None
    status: StepStatus = StepStatus.SUCCEEDED
    retryable: bool = True
    attempts: int = 1
    duration_ms: int = 0

    def summary(self) -> dict:
        return {
            "step_id": self.step_id,
            "type": self.step_type,
            "status": self.status.value,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
        }


@dataclass
class WalkResult:
    """Terminal state of a graph walk."""

    status: RunStatus
    executed: list[StepOutcome] = field(default_factory=list)
    error: Optional[dict[str, Any]] = None
    failed_step_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def to_output(self) -> dict:
        """Run ``output`` summary: executed steps, per-step results, terminal error."""
        return {
            "steps_executed": len(self.executed),
            "executed": [o.summary() for o in self.executed],
            "results": {o.step_id: o.output for o in self.executed},
            "error": self.error,
            "failed_step_id": self.failed_step_id,
        }


# ─── Step Executor ─────────────────────────────────────────────

class StepExecutor:
    """Executes a single workflow step; never raises.

    Applies permission gating and template resolution, then dispatches on
    the step type. Side-effecting steps write through ``EntityStore``
    unless the context is a dry run.
    """

    def __init__(self, entity_store: Optional[EntityStore] = None):
        self._store = entity_store
        self._resolver = TemplateResolver()
        self._handlers = {
            StepType.CONDITION.value: self._execute_condition,
            StepType.NOOP.value: self._execute_noop,
            StepType.NOTIFY.value: self._execute_notify,
            StepType.CREATE_ENTITY.value: self._execute_create_entity,
            StepType.UPDATE_ENTITY.value: self._execute_update_entity,
        }

    async def execute_step(
        self,
        step: StepDef,
        graph: StepGraph,
        context: ExecutionContext,
    ) -> StepOutcome:
        """Execute one attempt of ``step``.

        Returns:
            StepOutcome with output and successor, or a failed outcome
        """
        started = time.monotonic()
        outcome = StepOutcome(step_id=step.id, step_type=step.type, ok=False)

        try:
            if step.type not in SUPPORTED_STEP_TYPES:
                raise NonRetryableStepError(f"unsupported step type: {step.type}")

            self._check_permission(step, context)

            output, next_step_id = await self._handlers[step.type](step, graph, context)
            outcome.ok = True
            outcome.output = output
            outcome.next_step_id = next_step_id

        except InsufficientPermissionsError as exc:
            outcome.status = StepStatus.SKIPPED
            outcome.retryable = False
            outcome.output = exc.to_output()
        except NonRetryableStepError as exc:
            outcome.status = StepStatus.FAILED
            outcome.retryable = False
            outcome.output = exc.to_output()
        except Exception as exc:
            outcome.status = StepStatus.FAILED
            outcome.output = {"error": str(exc) or type(exc).__name__}

        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        return outcome

    @staticmethod
    def _check_permission(step: StepDef, context: ExecutionContext) -> None:
        required = step.config.get("required_action")
        if not required or step.type in UNGATED_STEP_TYPES:
            return
        if not role_allows(context.actor_role, str(required)):
            logger.warning(
                "Step %s denied: role=%s lacks %s", step.id, context.actor_role, required
            )
            raise InsufficientPermissionsError(str(required), context.actor_role)

    def _resolve(self, value: Any, context: ExecutionContext) -> Any:
        return self._resolver.resolve(value, context.to_template_context())

    def _require_store(self) -> EntityStore:
        if self._store is None:
            raise RuntimeError("No entity store configured")
        return self._store

    async def _execute_condition(self, step: StepDef, graph: StepGraph, context: ExecutionContext):
        left = self._resolve(step.config.get("left"), context)
        right = self._resolve(step.config.get("right"), context)
        op = step.config.get("op", "eq")
        result = ConditionEvaluator.evaluate(left, op, right)
        output = {"result": result, "left": left, "op": op, "right": right}
        return output, graph.branch_successor(step, result)

    async def _execute_noop(self, step: StepDef, graph: StepGraph, context: ExecutionContext):
        return {"ok": True}, graph.successor(step)

    async def _write(
        self,
        entity: str,
        fields: dict,
        context: ExecutionContext,
    ) -> dict:
        if context.dry_run:
            return {
                "dry_run": True,
                "entity": get_entity_spec(entity).name,
                "fields": prepare_fields(entity, fields, context.district_id, context.school_id),
            }
        return await self._require_store().create_entity(
            entity, fields, district_id=context.district_id, school_id=context.school_id
        )

    async def _execute_notify(self, step: StepDef, graph: StepGraph, context: ExecutionContext):
        config = self._resolve(step.config, context)
        metadata = config.get("metadata") if isinstance(config.get("metadata"), dict) else {}
        payload = {
            "user_id": config.get("user_id") or context.actor_id,
            "type": config.get("type") or "workflow",
            "severity": config.get("severity") or "info",
            "title": config.get("title") or "Workflow notification",
            "body": config.get("body"),
            "entity_type": config.get("entity_type") or context.entity_type,
            "entity_id": config.get("entity_id") or context.entity_id,
            "metadata": {
                **metadata,
                "workflow_id": context.workflow_id,
                "workflow_run_id": context.run_id,
            },
        }
        output = await self._write("notifications", payload, context)
        return output, graph.successor(step)

    async def _execute_create_entity(self, step: StepDef, graph: StepGraph, context: ExecutionContext):
        entity = step.config.get("entity")
        get_entity_spec(entity)
        fields = self._resolve(step.config.get("fields") or {}, context)
        output = await self._write(entity, fields, context)
        return output, graph.successor(step)

    async def _execute_update_entity(self, step: StepDef, graph: StepGraph, context: ExecutionContext):
        entity = step.config.get("entity")
        spec = get_entity_spec(entity)
        pk = self._resolve(step.config.get("pk") or {}, context)
        values = self._resolve(step.config.get("set") or {}, context)

        if context.dry_run:
            if not isinstance(pk, dict) or pk.get("id") in (None, ""):
                raise NonRetryableStepError("missing_pk", {"entity": spec.name})
            output = {
                "dry_run": True,
                "entity": spec.name,
                "id": pk["id"],
                "fields": prepare_fields(spec.name, values, context.district_id, context.school_id),
            }
        else:
            output = await self._require_store().update_entity_by_pk(
                spec.name, pk, values, district_id=context.district_id, school_id=context.school_id
            )
        return output, graph.successor(step)


# ─── Retry / Dead-Letter Controller ───────────────────────────

class StepRunner:
    """Wraps the StepExecutor with retries, the run step log and dead letters."""

    def __init__(
        self,
        executor: StepExecutor,
        run_service,
        analytics=None,
        sleep: Callable = asyncio.sleep,
    ):
        self._executor = executor
        self._runs = run_service
        self._analytics = analytics
        self._sleep = sleep

    async def run_step(
        self,
        step: StepDef,
        graph: StepGraph,
        context: ExecutionContext,
    ) -> StepOutcome:
        strategy = RetryStrategy.from_step_config(step.config)

        async def _attempt(attempt: int) -> StepOutcome:
            outcome = await self._executor.execute_step(step, graph, context)
            if not outcome.ok:
                logger.warning(
                    "Step %s attempt %s/%s failed: %s",
                    step.id, attempt, strategy.max_attempts, outcome.output.get("error"),
                )
            return outcome

        def _on_retry(attempt: int, outcome: StepOutcome, delay: float) -> None:
            logger.info("Step %s retry %s/%s in %.3fs", step.id, attempt + 1, strategy.max_attempts, delay)

        result = await execute_with_retry(_attempt, strategy, on_retry=_on_retry, sleep=self._sleep)
        outcome = result.outcome
        outcome.attempts = result.attempts
        if not outcome.ok:
            outcome.next_step_id = None

        attempt_meta = {
            "attempts": result.attempts,
            **strategy.to_dict(),
            "delays_ms": [int(d * 1000) for d in result.delays],
        }
        await self._runs.log_step(
            run_id=context.run_id,
            step_key=step.id,
            status=outcome.status.value,
            input={"type": step.type, "config": step.config, **attempt_meta},
            output=outcome.output,
        )

        if outcome.status == StepStatus.FAILED:
            await self._handle_failure(step, context, outcome, attempt_meta)

        return outcome

    async def _handle_failure(
        self,
        step: StepDef,
        context: ExecutionContext,
        outcome: StepOutcome,
        attempt_meta: dict,
    ) -> None:
        error = outcome.output.get("error")
        await self._emit(
            AnalyticsEventName.STEP_FAILED,
            context,
            {"step_key": step.id, "error": error, "attempts": outcome.attempts},
        )

        if step.config.get("dead_letter") is False:
            return

        dead_letter = await self._runs.record_dead_letter(
            workflow_id=context.workflow_id,
            run_id=context.run_id,
            step_key=step.id,
            actor_id=context.actor_id,
            district_id=context.district_id,
            school_id=context.school_id,
            input={"step": step.to_dict(), "attempts": outcome.attempts},
            error=str(error) if error is not None else None,
            metadata={**attempt_meta, "last_output": outcome.output},
        )
        logger.error(
            "Step %s dead-lettered after %s attempt(s): run=%s error=%s",
            step.id, outcome.attempts, context.run_id, error,
        )
        await self._emit(
            AnalyticsEventName.DEAD_LETTERED,
            context,
            {"step_key": step.id, "dead_letter_id": dead_letter.id},
        )

    async def _emit(self, name: AnalyticsEventName, context: ExecutionContext, metadata: dict) -> None:
        if self._analytics is None:
            return
        await self._analytics.emit(
            name,
            actor_user_id=context.actor_id,
            district_id=context.district_id,
            school_id=context.school_id,
            metadata={"workflow_id": context.workflow_id, "run_id": context.run_id, **metadata},
        )


# ─── Workflow Engine (graph walker) ────────────────────────────

class WorkflowEngine:
    """Walks a workflow's step graph from its start step to termination."""

    def __init__(self, step_runner: StepRunner, max_steps: Optional[int] = None):
        self._runner = step_runner
        self._max_steps = max_steps or get_settings().WORKFLOW_MAX_STEPS

    async def execute(self, definition: Optional[dict], context: ExecutionContext) -> WalkResult:
        """Execute ``definition`` for the run described by ``context``.

        Returns:
            WalkResult — succeeded when the walk runs out of successors,
            failed when a step fails permanently or a guard trips.
        """
        graph = StepGraph.from_definition(definition)
        executed: list[StepOutcome] = []
        visited: set[str] = set()
        current = graph.start
        counter = 0

        while current is not None:
            counter += 1
            if counter > self._max_steps:
                return self._abort(WalkError.MAX_STEPS_EXCEEDED, current, executed, context,
                                   max_steps=self._max_steps)
            if current in visited:
                return self._abort(WalkError.LOOP_DETECTED, current, executed, context)
            visited.add(current)

            step = graph.get(current)
            if step is None:
                return self._abort(WalkError.MISSING_STEP, current, executed, context)

            outcome = await self._runner.run_step(step, graph, context)
            executed.append(outcome)

            if not outcome.ok:
                return WalkResult(
                    status=RunStatus.FAILED,
                    executed=executed,
                    error=outcome.output,
                    failed_step_id=step.id,
                )

            context.steps[step.id] = outcome.output
            current = outcome.next_step_id

        return WalkResult(status=RunStatus.SUCCEEDED, executed=executed)

    @staticmethod
    def _abort(
        error: WalkError,
        step_id: str,
        executed: list[StepOutcome],
        context: ExecutionContext,
        **details,
    ) -> WalkResult:
        logger.error(
            "Run %s aborted: %s at step %s after %s step(s)",
            context.run_id, error.value, step_id, len(executed),
        )
        return WalkResult(
            status=RunStatus.FAILED,
            executed=executed,
            error={"error": error.value, "step_id": step_id, **details},
            failed_step_id=step_id,
        )
