"""Job scheduler: decomposes expressions into binary-operation jobs.

A compiled expression is folded into a tree of jobs, one per operator.
A job whose operands are both literals is PENDING immediately; the others
wait in WAITING until the jobs feeding them report. When the root job
reports, the expression's final value is known. Once an expression finishes,
its job records are dropped.

A claimed job that is not reported within ``claim_timeout`` seconds goes
back to PENDING and is handed out again. A late report from the first
worker is still accepted; whichever report arrives second is ignored.

Job state lives in a ``TaskRegistry[JobRecord]``. The scheduler's own lock
serialises planning and reporting and is always taken before the registry
lock.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import structlog

from calcgrid.calculator.compiler import Token
from calcgrid.calculator.evaluator import format_result, reduce_rpn
from calcgrid.cluster.models import Job, JobRecord, JobReport, TaskStatus
from calcgrid.cluster.registry import TaskRegistry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _JobRef:
    """Stack entry standing for the value a job will produce."""

    job_id: str


@dataclass(frozen=True)
class _PlannedJob:
    job_id: str
    operation: str
    left: Union[float, _JobRef]
    right: Union[float, _JobRef]


@dataclass
class Plan:
    """Result of folding an RPN sequence: a literal value or jobs to run."""

    value: Optional[float] = None
    jobs: list[_PlannedJob] = field(default_factory=list)


@dataclass(frozen=True)
class Outcome:
    """Final result of an expression task.

    Attributes:
        task_id: Expression task that finished.
        result: Formatted value, or ``"Error: <message>"``.
    """

    task_id: str
    result: str


class JobScheduler:
    """Plans jobs for expressions and advances them as workers report.

    Args:
        jobs: Registry holding job records. A fresh one is created if omitted.
        claim_timeout: Seconds a claimed job may go unreported before it is
            handed out again. None keeps claims forever.
    """

    def __init__(
        self,
        jobs: Optional[TaskRegistry[JobRecord]] = None,
        claim_timeout: Optional[float] = None,
    ) -> None:
        self.jobs: TaskRegistry[JobRecord] = jobs or TaskRegistry(JobRecord, name="jobs")
        self.claim_timeout = claim_timeout
        self._lock = asyncio.Lock()
        self._task_jobs: dict[str, list[str]] = {}

    # ── Planning ──────────────────────────────────────────────────

    def prepare(self, rpn: Sequence[Token]) -> Plan:
        """Fold ``rpn`` into planned jobs without registering anything.

        Raises:
            CalculationError: If the sequence is malformed.
        """
        planned: list[_PlannedJob] = []

        def combine(operation: str, left, right) -> _JobRef:
            job_id = str(uuid.uuid4())
            planned.append(_PlannedJob(job_id, operation, left, right))
            return _JobRef(job_id)

        root = reduce_rpn(rpn, lambda value: value, combine)
        if not isinstance(root, _JobRef):
            return Plan(value=root)
        return Plan(jobs=planned)

    async def register(self, task_id: str, plan: Plan) -> None:
        """Create the job records of a prepared plan for ``task_id``."""
        consumers: dict[str, tuple[str, str]] = {}
        for job in plan.jobs:
            for slot, operand in (("arg1", job.left), ("arg2", job.right)):
                if isinstance(operand, _JobRef):
                    consumers[operand.job_id] = (job.job_id, slot)

        async with self._lock:
            self._task_jobs[task_id] = [job.job_id for job in plan.jobs]
            for job in plan.jobs:
                parent_id, slot = consumers.get(job.job_id, (None, None))
                arg1 = job.left if not isinstance(job.left, _JobRef) else None
                arg2 = job.right if not isinstance(job.right, _JobRef) else None
                status = TaskStatus.PENDING if arg1 is not None and arg2 is not None else TaskStatus.WAITING
                await self.jobs.create(
                    job.job_id,
                    status=status,
                    task_id=task_id,
                    operation=job.operation,
                    arg1=arg1,
                    arg2=arg2,
                    parent_id=parent_id,
                    slot=slot,
                )

        await logger.ainfo("expression_planned", task_id=task_id, jobs=len(plan.jobs))

    async def plan(self, task_id: str, rpn: Sequence[Token]) -> Optional[float]:
        """Prepare and register jobs for ``rpn`` in one step.

        Returns:
            The value itself when the expression has no operators, otherwise None.
        """
        plan = self.prepare(rpn)
        if plan.value is not None:
            return plan.value
        await self.register(task_id, plan)
        return None

    # ── Claim / report ────────────────────────────────────────────

    async def claim(self) -> Optional[Job]:
        """Hand out one ready job, marking it CLAIMED so no other worker gets it.

        Claims older than ``claim_timeout`` are released first.
        """
        now = time.monotonic()
        if self.claim_timeout is not None:
            deadline = now - self.claim_timeout
            released = await self.jobs.release_claims(
                lambda job: job.claimed_at is not None and job.claimed_at <= deadline,
                claimed_at=None,
            )
            if released:
                await logger.awarning("claims_expired", job_ids=released, claim_timeout=self.claim_timeout)

        record = await self.jobs.claim_next(claimed_at=now)
        if record is None:
            return None
        return record.to_job()

    async def report(self, report: JobReport) -> Optional[Outcome]:
        """Apply a worker's report.

        Reports for unknown, waiting or already completed jobs are ignored.

        Returns:
            An Outcome when the report finishes its expression, otherwise None.
        """
        async with self._lock:
            record = await self.jobs.get(report.id)
            if record is None or record.status not in (TaskStatus.PENDING, TaskStatus.CLAIMED):
                logger.warning(
                    "report_ignored",
                    job_id=report.id,
                    status=record.status.value if record else None,
                )
                return None

            if report.error is not None:
                await self._forget(record.task_id)
                return Outcome(record.task_id, f"Error: {report.error}")

            value = report.result
            if record.parent_id is None:
                await self._forget(record.task_id)
                return Outcome(record.task_id, format_result(value))

            await self.jobs.complete(record.id, format_result(value))
            parent = await self.jobs.update(record.parent_id, **{record.slot: value})
            if parent is not None and parent.ready and parent.status == TaskStatus.WAITING:
                await self.jobs.update(parent.id, status=TaskStatus.PENDING)
            return None

    async def _forget(self, task_id: str) -> None:
        """Drop every job record of a finished expression."""
        job_ids = self._task_jobs.pop(task_id, [])
        await self.jobs.remove(*job_ids)
