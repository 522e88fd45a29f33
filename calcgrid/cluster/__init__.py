"""CalcGrid cluster: task registry, job scheduling and the worker protocol.

Roles:
  - coordinator: owns the registries, creates expression tasks and hands
                 ready binary-operation jobs to workers.
  - worker: stateless poll loop that claims a job, computes it and reports.
"""

from calcgrid.cluster.coordinator import Coordinator
from calcgrid.cluster.models import Job, JobRecord, JobReport, Task, TaskStatus
from calcgrid.cluster.registry import TaskRegistry
from calcgrid.cluster.scheduler import JobScheduler

__all__ = [
    "Coordinator",
    "Job",
    "JobRecord",
    "JobReport",
    "JobScheduler",
    "Task",
    "TaskRegistry",
    "TaskStatus",
]
