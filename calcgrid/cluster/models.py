"""Records and wire payloads exchanged between coordinator, workers and clients."""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class TaskStatus(str, Enum):
    """Record lifecycle status.

    Expression tasks only ever move PENDING → COMPLETED. Jobs additionally
    use WAITING (operands not yet computed) and CLAIMED (handed to a worker).

    Attributes:
        WAITING: Job whose operands depend on unfinished jobs.
        PENDING: Ready to be claimed (jobs) or awaiting a result (tasks).
        CLAIMED: Job handed to exactly one worker.
        COMPLETED: Result stored; no further transitions.
    """

    WAITING = "waiting"
    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"


class TaskRecord(BaseModel):
    """Fields shared by every record kept in a TaskRegistry.

    Attributes:
        id: Unique identifier, never reused within a registry.
        status: Current lifecycle status.
        result: Formatted result, present once completed.
    """

    id: str = Field(description="Unique record identifier")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Lifecycle status")
    result: Optional[str] = Field(default=None, description="Result, set on completion")


class Task(TaskRecord):
    """An expression submitted by a client."""

    expression: str = Field(default="", description="Submitted infix expression")

    def to_dict(self) -> dict:
        """Serialise for the client API; ``result`` is omitted while pending."""
        return self.model_dump(mode="json", exclude_none=True)


Operation = Literal["+", "-", "*", "/"]
Slot = Literal["arg1", "arg2"]


class JobRecord(TaskRecord):
    """Coordinator bookkeeping for one binary operation of an expression.

    Attributes:
        task_id: Expression task this job belongs to.
        operation: Operator to apply.
        arg1: Left operand, once known.
        arg2: Right operand, once known.
        parent_id: Job consuming this job's value; None for the root job.
        slot: Which operand of the parent this job's value fills.
        claimed_at: Monotonic clock reading when a worker last claimed it.
    """

    task_id: str
    operation: Operation
    arg1: Optional[float] = None
    arg2: Optional[float] = None
    parent_id: Optional[str] = None
    slot: Optional[Slot] = None
    claimed_at: Optional[float] = None

    @property
    def ready(self) -> bool:
        return self.arg1 is not None and self.arg2 is not None

    def to_job(self) -> "Job":
        return Job(id=self.id, arg1=self.arg1, arg2=self.arg2, operation=self.operation)


class Job(BaseModel):
    """Binary-operation payload handed to a worker."""

    id: str
    arg1: float
    arg2: float
    operation: Operation


class JobReport(BaseModel):
    """Outcome posted by a worker: exactly one of ``result`` or ``error``."""

    id: str
    result: Optional[float] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _one_outcome(self) -> "JobReport":
        if (self.result is None) == (self.error is None):
            raise ValueError("report must carry exactly one of 'result' or 'error'")
        return self


class CalculateRequest(BaseModel):
    expression: str
