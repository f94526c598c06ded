"""Run service — workflow runs, their step log and dead letters."""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import RunStatus
from core.utils import utc_now
from db.models.dead_letter import WorkflowDeadLetter
from db.models.workflow_run import WorkflowRun, WorkflowRunStep
from services.base import BaseService

logger = logging.getLogger(__name__)


def build_idempotency_key(event_id: str, workflow_id: str, version: int) -> str:
    return f"event:{event_id}:wf:{workflow_id}:v:{version}"


class RunService(BaseService[WorkflowRun]):
    """Service for run records written during dispatch."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowRun, db)

    async def find_by_idempotency_key(self, workflow_id: str, key: str) -> Optional[WorkflowRun]:
        result = await self.db.execute(
            select(WorkflowRun).where(
                WorkflowRun.workflow_id == workflow_id,
                WorkflowRun.idempotency_key == key,
            )
        )
        return result.scalar_one_or_none()

    async def create_run(
        self,
        workflow_id: str,
        workflow_version: int,
        input: dict,
        actor_id: Optional[str] = None,
        district_id: Optional[str] = None,
        school_id: Optional[str] = None,
        event_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Optional[WorkflowRun]:
        """Insert a ``running`` run.

        Returns None when another run already holds the idempotency key;
        the insert happens in a savepoint so the caller's transaction
        survives the unique violation.
        """
        run = WorkflowRun(
            workflow_id=workflow_id,
            workflow_version=workflow_version,
            actor_id=actor_id,
            district_id=district_id,
            school_id=school_id,
            event_id=event_id,
            idempotency_key=idempotency_key,
            status=RunStatus.RUNNING.value,
            input=input,
            started_at=utc_now(),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(run)
                await self.db.flush()
        except IntegrityError:
            logger.info(
                "Run for workflow %s already exists (key=%s), skipping",
                workflow_id, idempotency_key,
            )
            return None
        return run

    async def log_step(
        self,
        run_id: str,
        step_key: str,
        status: str,
        input: Optional[dict] = None,
        output: Optional[dict] = None,
    ) -> WorkflowRunStep:
        """Record the final outcome of one step."""
        step = WorkflowRunStep(
            run_id=run_id,
            step_key=step_key,
            status=status,
            input=input,
            output=output,
        )
        self.db.add(step)
        await self.db.flush()
        return step

    async def record_dead_letter(
        self,
        workflow_id: str,
        run_id: str,
        step_key: str,
        actor_id: Optional[str] = None,
        district_id: Optional[str] = None,
        school_id: Optional[str] = None,
        input: Optional[dict] = None,
        error: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> WorkflowDeadLetter:
        dead_letter = WorkflowDeadLetter(
            workflow_id=workflow_id,
            run_id=run_id,
            step_key=step_key,
            actor_id=actor_id,
            district_id=district_id,
            school_id=school_id,
            input=input,
            error=error,
            metadata_=metadata,
        )
        self.db.add(dead_letter)
        await self.db.flush()
        return dead_letter

    async def finalize_run(self, run: WorkflowRun, status: RunStatus, output: dict) -> WorkflowRun:
        """Terminal status/output/finished_at update; the only mutation after creation."""
        run.status = status.value
        run.output = output
        run.finished_at = utc_now()
        await self.db.flush()
        return run

    async def get_steps(self, run_id: str) -> Sequence[WorkflowRunStep]:
        result = await self.db.execute(
            select(WorkflowRunStep)
            .where(WorkflowRunStep.run_id == run_id)
            .order_by(WorkflowRunStep.created_at.asc())
        )
        return result.scalars().all()

    async def list_runs(
        self,
        workflow_id: str,
        district_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ):
        return await self.list(
            district_id=district_id,
            offset=offset,
            limit=limit,
            filters={"workflow_id": workflow_id},
        )

    async def list_dead_letters(
        self,
        district_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[Sequence[WorkflowDeadLetter], int]:
        dead_letters = BaseService(WorkflowDeadLetter, self.db)
        filters = {"workflow_id": workflow_id} if workflow_id else None
        return await dead_letters.list(
            district_id=district_id,
            offset=offset,
            limit=limit,
            filters=filters,
        )
