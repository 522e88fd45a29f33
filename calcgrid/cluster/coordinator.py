"""Coordinator: owns the task registry and runs calculations.

The coordinator is the only owner of shared state. Clients and workers reach
it through the HTTP layer in ``calcgrid.api.server``; tests use it directly.
"""

from __future__ import annotations

import itertools
from typing import Optional

import structlog

from calcgrid.calculator import CalculationError, calc, compile_expression, format_result
from calcgrid.cluster.models import Job, JobReport, Task, TaskStatus
from calcgrid.cluster.registry import TaskRegistry
from calcgrid.cluster.scheduler import JobScheduler
from calcgrid.config import CalculationMode

logger = structlog.get_logger(__name__)


class Coordinator:
    """Creates expression tasks and drives them to completion.

    Args:
        mode: "distributed", "local" or "sync" (see CoordinatorSettings).
        registry: Expression task registry. A fresh one is created if omitted.
        scheduler: Job scheduler for distributed mode. Created if omitted.
        claim_timeout: Lease in seconds for claimed jobs when the scheduler is
            created here (see JobScheduler).
    """

    def __init__(
        self,
        mode: CalculationMode = "distributed",
        registry: Optional[TaskRegistry[Task]] = None,
        scheduler: Optional[JobScheduler] = None,
        claim_timeout: Optional[float] = None,
    ) -> None:
        self.mode = mode
        self.registry: TaskRegistry[Task] = registry or TaskRegistry(Task, name="expressions")
        self.scheduler = scheduler or JobScheduler(claim_timeout=claim_timeout)
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return f"expr_{next(self._ids)}"

    # ── Client operations ─────────────────────────────────────────

    async def submit(self, expression: str) -> Task:
        """Accept an expression for asynchronous evaluation.

        In distributed mode the expression is decomposed into jobs for
        workers; in local mode the caller must schedule
        ``evaluate_locally`` for the returned task.

        Raises:
            CalculationError: If the expression does not compile, or (in
                distributed mode) cannot be decomposed.
        """
        if self.mode == "sync":
            return await self.calculate(expression)

        rpn = compile_expression(expression)
        plan = self.scheduler.prepare(rpn) if self.mode == "distributed" else None

        # The task must exist before any of its jobs can be claimed.
        task_id = self._next_id()
        task = await self.registry.create(task_id, expression=expression)
        if plan is not None:
            if plan.value is not None:
                await self.registry.complete(task_id, format_result(plan.value))
                task = await self.registry.get(task_id)
            else:
                await self.scheduler.register(task_id, plan)

        await logger.ainfo("expression_accepted", task_id=task_id, mode=self.mode)
        return task

    async def calculate(self, expression: str) -> Task:
        """Evaluate an expression inline and record it as a completed task.

        Raises:
            CalculationError: Any domain error from compilation or evaluation.
        """
        value = calc(expression)
        task_id = self._next_id()
        await self.registry.create(task_id, expression=expression)
        await self.registry.complete(task_id, format_result(value))
        await logger.ainfo("expression_calculated", task_id=task_id)
        return await self.registry.get(task_id)

    async def evaluate_locally(self, task_id: str, expression: str) -> None:
        """Evaluate a submitted task on the coordinator and store the outcome."""
        try:
            result = format_result(calc(expression))
        except CalculationError as e:
            result = f"Error: {e.message}"
            await logger.ainfo("expression_failed", task_id=task_id, kind=e.kind)
        await self.registry.complete(task_id, result)

    async def list_tasks(self) -> list[Task]:
        return await self.registry.list()

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self.registry.get(task_id)

    # ── Worker operations ─────────────────────────────────────────

    async def claim_job(self) -> Optional[Job]:
        """Hand one ready job to a worker, or None when nothing is ready."""
        job = await self.scheduler.claim()
        if job is not None:
            await logger.ainfo("job_claimed", job_id=job.id, operation=job.operation)
        return job

    async def report_job(self, report: JobReport) -> None:
        """Record a worker's outcome; completes the expression when it finishes."""
        outcome = await self.scheduler.report(report)
        if outcome is None:
            return
        await self.registry.complete(outcome.task_id, outcome.result)
        await logger.ainfo("expression_completed", task_id=outcome.task_id, result=outcome.result)

    async def stats(self) -> dict:
        """Counts for the health endpoint."""
        return {
            "expressions": await self.registry.count(),
            "pending_expressions": await self.registry.count(TaskStatus.PENDING),
            "jobs": await self.scheduler.jobs.count(),
            "ready_jobs": await self.scheduler.jobs.count(TaskStatus.PENDING),
        }
