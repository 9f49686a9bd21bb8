"""In-process tracking of import operations.

Every import run is an :class:`ImportOperation` owned by an
:class:`OperationTracker`.  Nothing is persisted: an operation that was in
flight when the process died is simply gone, and callers must treat an
unknown ID as "unknown, presumed failed".
"""

from __future__ import annotations

import datetime
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC

from .models import ExecutionSummary, ImportPlan, OperationStatus, StepResult

log = logging.getLogger("sunnyvale.tracker")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=UTC)


@dataclass
class ImportOperation:
    """Mutable record of one import run.

    Only the executor running the operation writes ``status`` and
    ``results``; other parties only read it or set ``cancel_requested``
    through :meth:`OperationTracker.cancel`.  Once terminal the record is
    frozen until the tracker sweeps it away.
    """

    id: str
    guild_id: str
    plan: ImportPlan
    started_at: datetime.datetime
    status: OperationStatus = OperationStatus.PENDING
    results: list[StepResult] = field(default_factory=list)
    finished_at: datetime.datetime | None = None
    cancel_requested: bool = False
    requested_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_running(self) -> None:
        if self.status is not OperationStatus.PENDING:
            raise RuntimeError(f"Operation {self.id} is {self.status.value}, not pending")
        self.status = OperationStatus.RUNNING

    def record(self, result: StepResult) -> None:
        if self.status is not OperationStatus.RUNNING:
            raise RuntimeError(f"Operation {self.id} is {self.status.value}, not running")
        self.results.append(result)

    def finish(
        self, status: OperationStatus, finished_at: datetime.datetime | None = None
    ) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Operation {self.id} already {self.status.value}")
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.status = status
        self.finished_at = finished_at or _utcnow()

    def summary(self) -> ExecutionSummary:
        return ExecutionSummary(
            operation_id=self.id, status=self.status, results=tuple(self.results)
        )


class OperationTracker:
    """Keyed store of :class:`ImportOperation` records.

    IDs are random tokens, never derived from the guild ID.  Reads are plain
    dictionary lookups; ``start`` and ``sweep`` take a lock so a sweep can
    run while other tasks read or cancel.
    """

    def __init__(self, clock: Callable[[], datetime.datetime] | None = None) -> None:
        self._operations: dict[str, ImportOperation] = {}
        self._lock = threading.Lock()
        self._clock = clock or _utcnow

    def __len__(self) -> int:
        return len(self._operations)

    def now(self) -> datetime.datetime:
        return self._clock()

    def start(
        self, guild_id: str, plan: ImportPlan, *, requested_by: str | None = None
    ) -> str:
        """Register a new ``pending`` operation and return its ID."""
        if plan is None:
            raise ValueError("start() requires a plan")
        operation_id = f"import_{uuid.uuid4().hex}"
        operation = ImportOperation(
            id=operation_id,
            guild_id=str(guild_id),
            plan=plan,
            started_at=self._clock(),
            requested_by=requested_by,
        )
        with self._lock:
            self._operations[operation_id] = operation
        log.info(
            "Started import %s for guild %s (%d steps)",
            operation_id,
            guild_id,
            len(plan.steps),
        )
        return operation_id

    def get(self, operation_id: str) -> ImportOperation | None:
        return self._operations.get(operation_id)

    def for_guild(self, guild_id: str) -> list[ImportOperation]:
        return [op for op in list(self._operations.values()) if op.guild_id == str(guild_id)]

    def cancel(self, operation_id: str) -> bool:
        """Request cancellation of a pending or running operation.

        Returns ``False`` for unknown IDs and operations that already ended.
        The executor honours the request at its next step boundary.
        """
        operation = self._operations.get(operation_id)
        if operation is None or operation.is_terminal:
            return False
        operation.cancel_requested = True
        log.info("Cancellation requested for import %s", operation_id)
        return True

    def sweep(self, max_age_ms: int) -> int:
        """Drop terminal operations that finished more than ``max_age_ms`` ago."""
        cutoff = self._clock() - datetime.timedelta(milliseconds=max_age_ms)
        with self._lock:
            expired = [
                op_id
                for op_id, op in self._operations.items()
                if op.is_terminal
                and op.finished_at is not None
                and op.finished_at < cutoff
            ]
            for op_id in expired:
                del self._operations[op_id]
        if expired:
            log.info("Swept %d finished import operations", len(expired))
        return len(expired)
