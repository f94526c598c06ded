"""Tests for the workflow execution engine (step executor, retries, graph walker)."""

import pytest
from sqlalchemy import func, select

from core.constants import RunStatus, StepStatus
from db.models.dead_letter import WorkflowDeadLetter
from db.models.notification import Notification
from db.models.partner import PartnerSubmission
from db.models.workflow_run import WorkflowRunStep
from services.analytics_service import AnalyticsService
from services.run_service import RunService
from services.workflow_service import WorkflowService
from workflow.engine import (
    ExecutionContext,
    StepExecutor,
    StepOutcome,
    StepRunner,
    WorkflowEngine,
)
from workflow.entity_registry import EntityStore
from workflow.graph import StepGraph


class _RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class _FlakyExecutor(StepExecutor):
    """Fails the first ``failures`` attempts, then executes normally."""

    def __init__(self, failures: int):
        super().__init__(None)
        self.failures = failures
        self.calls = 0

    async def execute_step(self, step, graph, context):
        self.calls += 1
        if self.calls <= self.failures:
            return StepOutcome(
                step_id=step.id,
                step_type=step.type,
                ok=False,
                status=StepStatus.FAILED,
                output={"error": "transient"},
            )
        return await super().execute_step(step, graph, context)


async def _build(db_session, role="teacher", executor=None, dry_run=False, metadata=None):
    workflow = await WorkflowService(db_session).create_workflow(
        name="wf",
        trigger={"type": "event", "event_name": "attendance.missed"},
        definition={"steps": []},
        district_id="d1",
    )
    runs = RunService(db_session)
    run = await runs.create_run(workflow_id=workflow.id, workflow_version=1, input={})
    context = ExecutionContext(
        run_id=run.id,
        workflow_id=workflow.id,
        workflow_version=1,
        actor_id="user-1",
        actor_role=role,
        district_id="d1",
        school_id="s1",
        event_id="evt-1",
        event_name="attendance.missed",
        event_metadata=metadata or {},
        dry_run=dry_run,
    )
    sleep = _RecordingSleep()
    runner = StepRunner(
        executor or StepExecutor(EntityStore(db_session)),
        runs,
        analytics=AnalyticsService(db_session),
        sleep=sleep,
    )
    return WorkflowEngine(runner), context, sleep


async def _count(db_session, model, *where):
    result = await db_session.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar()


async def _steps(db_session, run_id):
    result = await db_session.execute(select(WorkflowRunStep).where(WorkflowRunStep.run_id == run_id))
    return {s.step_key: s for s in result.scalars().all()}


@pytest.mark.unit
class TestExecutionContext:

    def test_template_context_namespaces(self):
        ctx = ExecutionContext(
            run_id="r1",
            workflow_id="wf-1",
            workflow_version=2,
            actor_id="u1",
            actor_role="teacher",
            event_metadata={"tier": "high"},
        )
        ctx.steps["check"] = {"result": True}
        data = ctx.to_template_context()
        assert data["event_metadata"]["tier"] == "high"
        assert data["actor"]["id"] == "u1"
        assert data["workflow"] == {"id": "wf-1", "version": 2, "run_id": "r1"}
        assert data["steps"]["check"]["result"] is True


@pytest.mark.unit
class TestStepExecutor:

    async def test_condition_branches(self):
        ctx = ExecutionContext(run_id="r", workflow_id="w", workflow_version=1, event_metadata={"tier": "high"})
        graph = StepGraph.from_definition({
            "steps": [
                {
                    "id": "check",
                    "type": "condition",
                    "config": {"left": "{{ event_metadata.tier }}", "op": "eq", "right": "high"},
                    "on_true": "yes",
                    "on_false": "no",
                },
                {"id": "no", "type": "noop"},
                {"id": "yes", "type": "noop"},
            ]
        })
        outcome = await StepExecutor().execute_step(graph.get("check"), graph, ctx)
        assert outcome.ok
        assert outcome.output == {"result": True, "left": "high", "op": "eq", "right": "high"}
        assert outcome.next_step_id == "yes"

    async def test_unsupported_type_is_terminal(self):
        ctx = ExecutionContext(run_id="r", workflow_id="w", workflow_version=1)
        graph = StepGraph.from_definition({"steps": [{"id": "h", "type": "http_request"}]})
        outcome = await StepExecutor().execute_step(graph.get("h"), graph, ctx)
        assert outcome.ok is False
        assert outcome.retryable is False
        assert outcome.output == {"error": "unsupported step type: http_request"}

    async def test_permission_gate_skips(self):
        ctx = ExecutionContext(run_id="r", workflow_id="w", workflow_version=1, actor_role="teacher")
        graph = StepGraph.from_definition({
            "steps": [{"id": "n", "type": "notify", "config": {"required_action": "automation:approve"}}]
        })
        outcome = await StepExecutor().execute_step(graph.get("n"), graph, ctx)
        assert outcome.status == StepStatus.SKIPPED
        assert outcome.output == {
            "error": "insufficient_permissions",
            "required_action": "automation:approve",
            "actor_role": "teacher",
        }

    async def test_condition_and_noop_are_never_gated(self):
        ctx = ExecutionContext(run_id="r", workflow_id="w", workflow_version=1, actor_role="parent")
        graph = StepGraph.from_definition({
            "steps": [{"id": "n", "type": "noop", "config": {"required_action": "automation:approve"}}]
        })
        outcome = await StepExecutor().execute_step(graph.get("n"), graph, ctx)
        assert outcome.ok
        assert outcome.output == {"ok": True}


@pytest.mark.integration
class TestGraphWalker:

    async def test_empty_definition_succeeds(self, db_session):
        engine, ctx, _ = await _build(db_session)
        result = await engine.execute({"steps": []}, ctx)
        assert result.status == RunStatus.SUCCEEDED
        assert result.executed == []

    async def test_loop_detected(self, db_session):
        engine, ctx, _ = await _build(db_session)
        definition = {"steps": [{"id": "a", "type": "noop", "next": "b"}, {"id": "b", "type": "noop", "next": "a"}]}
        result = await engine.execute(definition, ctx)
        assert result.status == RunStatus.FAILED
        assert result.error["error"] == "loop_detected"
        assert [o.step_id for o in result.executed] == ["a", "b"]

    async def test_step_ceiling(self, db_session):
        engine, ctx, _ = await _build(db_session)
        steps = [{"id": f"s{i}", "type": "noop", "next": f"s{i + 1}"} for i in range(50)]
        steps.append({"id": "s50", "type": "noop"})
        result = await engine.execute({"steps": steps}, ctx)
        assert result.status == RunStatus.FAILED
        assert result.error["error"] == "max_steps_exceeded"
        assert len(result.executed) == 50

    async def test_missing_step(self, db_session):
        engine, ctx, _ = await _build(db_session)
        result = await engine.execute({"steps": [{"id": "a", "type": "noop", "next": "ghost"}]}, ctx)
        assert result.status == RunStatus.FAILED
        assert result.error == {"error": "missing_step", "step_id": "ghost"}
        assert len(result.executed) == 1

    async def test_step_outputs_feed_later_templates(self, db_session):
        engine, ctx, _ = await _build(db_session, metadata={"tier": "high"})
        definition = {
            "steps": [
                {"id": "check", "type": "condition",
                 "config": {"left": "{{ event_metadata.tier }}", "op": "eq", "right": "high"}},
                {"id": "again", "type": "condition",
                 "config": {"left": "{{ steps.check.result }}", "op": "eq", "right": True}},
            ]
        }
        result = await engine.execute(definition, ctx)
        assert result.succeeded
        assert result.to_output()["results"]["again"]["result"] is True


@pytest.mark.integration
class TestPermissionGate:

    async def test_denied_step_skipped_not_retried_and_not_dead_lettered(self, db_session):
        engine, ctx, sleep = await _build(db_session, role="teacher")
        definition = {
            "steps": [{
                "id": "approve",
                "type": "notify",
                "config": {
                    "required_action": "automation:approve",
                    "retry": {"max_attempts": 3, "backoff_ms": 100},
                },
            }]
        }
        result = await engine.execute(definition, ctx)

        assert result.status == RunStatus.FAILED
        assert result.error["error"] == "insufficient_permissions"
        assert result.executed[0].attempts == 1
        assert sleep.calls == []

        steps = await _steps(db_session, ctx.run_id)
        assert steps["approve"].status == "skipped"
        assert await _count(db_session, WorkflowDeadLetter) == 0
        assert await _count(db_session, Notification) == 0

    async def test_allowed_role_runs_step(self, db_session):
        engine, ctx, _ = await _build(db_session, role="district_admin")
        definition = {
            "steps": [{"id": "approve", "type": "notify",
                       "config": {"required_action": "automation:approve", "title": "ok"}}]
        }
        result = await engine.execute(definition, ctx)
        assert result.succeeded
        assert await _count(db_session, Notification) == 1


@pytest.mark.integration
class TestRetryAndDeadLetter:

    async def test_fail_fail_succeed(self, db_session):
        executor = _FlakyExecutor(failures=2)
        engine, ctx, sleep = await _build(db_session, executor=executor)
        definition = {
            "steps": [{"id": "flaky", "type": "noop", "config": {"retry": {"max_attempts": 3, "backoff_ms": 200}}}]
        }
        result = await engine.execute(definition, ctx)

        assert result.succeeded
        assert executor.calls == 3
        assert sleep.calls == [0.2, 0.4]

        steps = await _steps(db_session, ctx.run_id)
        assert list(steps) == ["flaky"]
        assert steps["flaky"].status == "succeeded"
        assert steps["flaky"].input["attempts"] == 3
        assert steps["flaky"].input["max_attempts"] == 3
        assert steps["flaky"].input["backoff_ms"] == 200
        assert steps["flaky"].input["delays_ms"] == [200, 400]
        assert await _count(db_session, WorkflowDeadLetter) == 0

    async def test_exhausted_retries_dead_letter(self, db_session):
        engine, ctx, sleep = await _build(db_session)
        definition = {
            "steps": [{
                "id": "upd",
                "type": "update_entity",
                "config": {
                    "entity": "partner_submissions",
                    "pk": {"id": "missing-row"},
                    "set": {"status": "approved"},
                    "retry": {"max_attempts": 3, "backoff_ms": 50},
                },
            }]
        }
        result = await engine.execute(definition, ctx)

        assert result.status == RunStatus.FAILED
        assert result.executed[0].attempts == 3
        assert len(sleep.calls) == 2

        dead = (await db_session.execute(select(WorkflowDeadLetter))).scalars().all()
        assert len(dead) == 1
        assert dead[0].run_id == ctx.run_id
        assert dead[0].step_key == "upd"
        assert dead[0].input["attempts"] == 3
        assert dead[0].metadata_["attempts"] == 3

    async def test_dead_letter_disabled(self, db_session):
        engine, ctx, _ = await _build(db_session)
        definition = {
            "steps": [{
                "id": "upd",
                "type": "update_entity",
                "config": {
                    "entity": "partner_submissions",
                    "pk": {"id": "missing-row"},
                    "set": {"status": "approved"},
                    "retry": {"max_attempts": 3},
                    "dead_letter": False,
                },
            }]
        }
        result = await engine.execute(definition, ctx)
        assert result.status == RunStatus.FAILED
        assert await _count(db_session, WorkflowDeadLetter) == 0

    async def test_missing_pk_not_retried(self, db_session):
        engine, ctx, sleep = await _build(db_session)
        definition = {
            "steps": [{
                "id": "upd",
                "type": "update_entity",
                "config": {"entity": "partner_submissions", "set": {"status": "x"},
                           "retry": {"max_attempts": 3}},
            }]
        }
        result = await engine.execute(definition, ctx)
        assert result.error["error"] == "missing_pk"
        assert result.executed[0].attempts == 1
        assert sleep.calls == []


@pytest.mark.integration
class TestWhitelistEnforcement:

    async def test_unregistered_entity_rejected(self, db_session):
        engine, ctx, _ = await _build(db_session)
        definition = {
            "steps": [{"id": "mk", "type": "create_entity",
                       "config": {"entity": "users", "fields": {"is_admin": True}}}]
        }
        result = await engine.execute(definition, ctx)
        assert result.status == RunStatus.FAILED
        assert result.error["error"] == "unsupported entity: users"

    async def test_extra_field_dropped(self, db_session):
        engine, ctx, _ = await _build(db_session)
        definition = {
            "steps": [{"id": "mk", "type": "create_entity",
                       "config": {"entity": "partner_submissions",
                                  "fields": {"title": "{{ event_name }}", "is_admin": True}}}]
        }
        result = await engine.execute(definition, ctx)
        assert result.succeeded

        row = (await db_session.execute(select(PartnerSubmission))).scalar_one()
        assert row.title == "attendance.missed"
        assert row.district_id == "d1"
        assert not hasattr(row, "is_admin")
        assert "is_admin" not in result.executed[0].output["fields"]


@pytest.mark.integration
class TestNotifyAndDryRun:

    async def test_notify_defaults(self, db_session):
        engine, ctx, _ = await _build(db_session)
        result = await engine.execute({"steps": [{"id": "n", "type": "notify", "config": {"body": "x"}}]}, ctx)
        assert result.succeeded

        note = (await db_session.execute(select(Notification))).scalar_one()
        assert note.user_id == "user-1"
        assert note.type == "workflow"
        assert note.severity == "info"
        assert note.district_id == "d1"
        assert note.school_id == "s1"
        assert note.metadata_["workflow_run_id"] == ctx.run_id

    async def test_dry_run_writes_nothing(self, db_session):
        engine, ctx, _ = await _build(db_session, dry_run=True)
        definition = {
            "steps": [
                {"id": "n", "type": "notify", "config": {"title": "hi"}},
                {"id": "c", "type": "create_entity", "config": {"entity": "partner_contracts", "fields": {"terms": "t"}}},
            ]
        }
        result = await engine.execute(definition, ctx)
        assert result.succeeded
        assert all(o.output["dry_run"] is True for o in result.executed)
        assert await _count(db_session, Notification) == 0
