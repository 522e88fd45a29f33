"""Task registry: coordinator-side store of task and job records.

The registry is an explicitly owned object: the coordinator creates one for
expression tasks and one for jobs and passes them to whatever needs them.
Every operation holds the same ``asyncio.Lock`` for its full duration and
never awaits I/O while holding it, so operations are serialised but cannot
deadlock. Reads hand out copies; callers never see a record mutate under them.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog

from calcgrid.cluster.models import Task, TaskRecord, TaskStatus

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=TaskRecord)


class TaskRegistry(Generic[R]):
    """In-memory mapping from record id to record.

    Args:
        record_type: Model class instantiated by ``create``.
        name: Label used in log events.
    """

    def __init__(self, record_type: type[R] = Task, name: str = "tasks") -> None:
        self.record_type = record_type
        self.name = name
        self._records: dict[str, R] = {}
        self._lock = asyncio.Lock()

    # ── Mutations ─────────────────────────────────────────────────

    async def create(self, record_id: str, **fields: Any) -> R:
        """Insert a new record, PENDING unless ``status`` is given.

        Raises:
            ValueError: If ``record_id`` is already present.
        """
        async with self._lock:
            if record_id in self._records:
                raise ValueError(f"{self.name}: record {record_id!r} already exists")
            record = self.record_type(id=record_id, **fields)
            self._records[record_id] = record
            logger.debug("record_created", registry=self.name, record_id=record_id)
            return record.model_copy()

    async def complete(self, record_id: str, result: str) -> bool:
        """Mark a record COMPLETED with ``result``.

        Unknown ids are ignored. A completed record keeps its first result.

        Returns:
            True if this call completed the record.
        """
        async with self._lock:
            record = self._records.get(record_id)
            if record is None:
                logger.debug("complete_unknown_record", registry=self.name, record_id=record_id)
                return False
            if record.status == TaskStatus.COMPLETED:
                logger.debug("complete_already_completed", registry=self.name, record_id=record_id)
                return False
            record.status = TaskStatus.COMPLETED
            record.result = result
            return True

    async def claim_next(self, **changes: Any) -> Optional[R]:
        """Atomically move one PENDING record to CLAIMED and return it.

        ``changes`` are set on the claimed record in the same step.
        """
        async with self._lock:
            for record in self._records.values():
                if record.status == TaskStatus.PENDING:
                    record.status = TaskStatus.CLAIMED
                    for key, value in changes.items():
                        setattr(record, key, value)
                    return record.model_copy()
            return None

    async def release_claims(self, expired: Callable[[R], bool], **changes: Any) -> list[str]:
        """Return CLAIMED records for which ``expired`` holds to PENDING.

        Returns:
            Ids of the released records.
        """
        released = []
        async with self._lock:
            for record in self._records.values():
                if record.status == TaskStatus.CLAIMED and expired(record):
                    record.status = TaskStatus.PENDING
                    for key, value in changes.items():
                        setattr(record, key, value)
                    released.append(record.id)
        return released

    async def remove(self, *record_ids: str) -> int:
        """Delete records by id; unknown ids are skipped. Returns how many went."""
        async with self._lock:
            removed = 0
            for record_id in record_ids:
                if self._records.pop(record_id, None) is not None:
                    removed += 1
            if removed:
                logger.debug("records_removed", registry=self.name, count=removed)
            return removed

    async def update(self, record_id: str, **changes: Any) -> Optional[R]:
        """Set fields on a record that is not yet completed.

        Returns:
            A copy of the updated record, or None if it is absent or completed.
        """
        async with self._lock:
            record = self._records.get(record_id)
            if record is None or record.status == TaskStatus.COMPLETED:
                return None
            for key, value in changes.items():
                setattr(record, key, value)
            return record.model_copy()

    # ── Queries ───────────────────────────────────────────────────

    async def list(self) -> list[R]:
        """Snapshot of every record. Order is unspecified."""
        async with self._lock:
            return [record.model_copy() for record in self._records.values()]

    async def get(self, record_id: str) -> Optional[R]:
        """Copy of one record, or None if not found."""
        async with self._lock:
            record = self._records.get(record_id)
            return record.model_copy() if record is not None else None

    async def next_pending(self) -> Optional[R]:
        """Any PENDING record, without changing its status."""
        async with self._lock:
            for record in self._records.values():
                if record.status == TaskStatus.PENDING:
                    return record.model_copy()
            return None

    async def count(self, status: Optional[TaskStatus] = None) -> int:
        """Number of records, optionally restricted to one status."""
        async with self._lock:
            if status is None:
                return len(self._records)
            return sum(1 for r in self._records.values() if r.status == status)
