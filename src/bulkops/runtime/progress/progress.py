"""Live progress for bulk runs.

ProgressTracker owns the only mutable state of a run's progress: counts,
rate and ETA. Every settlement goes through one lock-guarded update path and
produces an immutable OperationProgress snapshot for the caller's callback.

Uses Pydantic for validation and serialization of snapshots and events.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Any, Callable

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, computed_field

from bulkops.foundation.errors import InvariantViolation
from bulkops.runtime.observability import get_logger

if TYPE_CHECKING:
    from bulkops.runtime.concurrency.pool import TaskOutcome


class OperationProgress(BaseModel):
    """Snapshot of a run's progress.

    Attributes:
        current_step: Human-readable phase ("processing batch 2 of 5")
        completed: Tasks settled so far (succeeded + failed)
        total: Tasks in the run, fixed at start
        percentage: Completion percentage (0-100)
        estimated_time_remaining: Seconds left at the current rate, None while the rate is 0
        current_rate: Settled tasks per second since start
        error_count: Tasks settled as failed
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "title": "Operation Progress",
            "examples": [{"current_step": "processing batch 1 of 3", "completed": 12, "total": 60,
                          "percentage": 20.0, "estimated_time_remaining": 9.6, "current_rate": 5.0,
                          "error_count": 1}],
        },
    )

    current_step: str = "initializing"
    completed: NonNegativeInt = 0
    total: NonNegativeInt = 0
    percentage: Annotated[float, Field(ge=0.0, le=100.0)] = 0.0
    estimated_time_remaining: Annotated[float, Field(ge=0.0)] | None = None
    current_rate: Annotated[float, Field(ge=0.0)] = 0.0
    error_count: NonNegativeInt = 0
    start_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_update: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @computed_field
    @property
    def is_complete(self) -> bool:
        return self.completed >= self.total

    def to_dict(self) -> dict[str, object]:
        """Serialize for JSON transmission."""
        return self.model_dump(mode="json")


ProgressCallback = Callable[[OperationProgress], None]


class ProgressTracker:
    """Accumulates settlement counts and emits progress snapshots.

    The callback is invoked synchronously from the settlement path. With
    ``min_interval`` > 0 intermediate snapshots are coalesced; finish()
    always delivers the final one. Exceptions raised by the callback are
    logged and swallowed so a faulty listener cannot stall scheduling.

    Example:
        >>> tracker = ProgressTracker(total=100, callback=print)
        >>> tracker.start()
        >>> tracker.on_task_settled(outcome)
        >>> tracker.finish("completed")
    """

    __slots__ = ("total", "_callback", "_min_interval", "_clock", "_lock", "_completed", "_errors",
                 "_step", "_started", "_start_time", "_last_emit", "_finished", "_log")

    def __init__(
        self,
        total: int,
        callback: ProgressCallback | None = None,
        *,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if total < 0:
            raise ValueError("total must be >= 0")
        self.total = total
        self._callback = callback
        self._min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._completed = 0
        self._errors = 0
        self._step = "initializing"
        self._started: float | None = None
        self._start_time = datetime.now(UTC)
        self._last_emit: float | None = None
        self._finished = False
        self._log = get_logger("bulkops.progress")

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def error_count(self) -> int:
        return self._errors

    def start(self, step: str = "processing") -> OperationProgress:
        """Reset the clock and emit the initial snapshot."""
        with self._lock:
            self._started = self._clock()
            self._start_time = datetime.now(UTC)
            self._step = step
            snap = self._snapshot()
        self._emit(snap, force=True)
        return snap

    def set_step(self, step: str) -> None:
        with self._lock:
            self._step = step

    def on_task_settled(self, outcome: TaskOutcome[Any]) -> OperationProgress:
        """Record a terminal task outcome and notify the callback."""
        return self.record(failed=not outcome.ok)

    def record(self, *, failed: bool) -> OperationProgress:
        """Count one settlement. Raises InvariantViolation past total."""
        with self._lock:
            if self._finished:
                raise InvariantViolation("settlement recorded after tracker finished")
            if self._completed >= self.total:
                raise InvariantViolation(f"settlement {self._completed + 1} exceeds total {self.total}")
            self._completed += 1
            self._errors += int(failed)
            snap = self._snapshot()
        self._emit(snap, force=snap.completed == self.total)
        return snap

    def finish(self, step: str = "completed") -> OperationProgress:
        """Seal the tracker and always deliver the final snapshot."""
        with self._lock:
            self._step = step
            self._finished = True
            snap = self._snapshot()
        self._emit(snap, force=True)
        return snap

    def snapshot(self) -> OperationProgress:
        with self._lock:
            return self._snapshot()

    def _elapsed(self) -> float:
        return 0.0 if self._started is None else max(self._clock() - self._started, 0.0)

    def _snapshot(self) -> OperationProgress:
        elapsed = self._elapsed()
        rate = self._completed / elapsed if elapsed > 0 else 0.0
        remaining = self.total - self._completed
        eta = remaining / rate if rate > 0 else None
        return OperationProgress(
            current_step=self._step,
            completed=self._completed,
            total=self.total,
            percentage=(self._completed / self.total) * 100 if self.total else 100.0,
            estimated_time_remaining=eta,
            current_rate=rate,
            error_count=self._errors,
            start_time=self._start_time,
            last_update=datetime.now(UTC),
        )

    def _emit(self, snap: OperationProgress, *, force: bool = False) -> None:
        if self._callback is None:
            return
        now = self._clock()
        if not force and self._min_interval > 0 and self._last_emit is not None \
                and now - self._last_emit < self._min_interval:
            return
        self._last_emit = now
        try:
            self._callback(snap)
        except Exception as e:
            self._log.warning("progress callback failed", error=str(e), error_type=type(e).__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Progress Events
# ─────────────────────────────────────────────────────────────────────────────


class ProgressEventKind(StrEnum):
    """Lifecycle events a bulk operation emits to its listeners."""
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class ProgressEvent(BaseModel):
    """Envelope handed to operation-level listeners (e.g. AccountManager callbacks)."""

    model_config = ConfigDict(frozen=True)

    kind: ProgressEventKind
    operation_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    progress: OperationProgress | None = None
    error: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Whether this is a terminal event (completed, error, or cancelled)."""
        return self.kind in (ProgressEventKind.COMPLETED, ProgressEventKind.ERROR, ProgressEventKind.CANCELLED)


ProgressEventCallback = Callable[[ProgressEvent], None]
