"""Public contracts of the batch executor: configuration and results."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Annotated, Any, Generic, Self, TypeVar

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator

from bulkops.foundation.errors import ErrorCode, classify_exception, status_code_of
from bulkops.runtime.concurrency import TaskOutcome

R = TypeVar("R")


class BatchOperationConfig(BaseModel):
    """Configuration for a bulk run.

    Durations are in seconds. ``batch_size`` and ``concurrency`` below 1 are
    clamped to 1; other invalid values fail validation.

    Example:
        >>> config = BatchOperationConfig(concurrency=5, request_delay=0.2, max_retries=2)
        >>> result = await BatchExecutor(config).run(items, worker)
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", validate_default=True,
        json_schema_extra={"title": "Batch Operation Configuration",
                           "examples": [{"batch_size": 20, "concurrency": 3, "request_delay": 1.0,
                                         "max_retries": 3, "retry_delay": 2.0}]},
    )

    batch_size: int = 20
    concurrency: int = 3
    request_delay: Annotated[float, Field(ge=0.0)] = 1.0
    max_retries: Annotated[int, Field(ge=0)] = 3
    retry_delay: Annotated[float, Field(ge=0.0)] = 2.0
    max_retry_delay: Annotated[float, Field(gt=0.0)] | None = None
    enable_progress_tracking: bool = True
    enable_performance_metrics: bool = True
    progress_interval: Annotated[float, Field(ge=0.0)] = 0.0
    timeout: Annotated[float, Field(gt=0.0)] | None = None

    @field_validator("batch_size", "concurrency", mode="before")
    @classmethod
    def _clamp_to_one(cls, v: Any) -> Any:
        return max(v, 1) if isinstance(v, (int, float)) and not isinstance(v, bool) else v

    @classmethod
    def from_settings(cls, **overrides: Any) -> Self:
        """Defaults from BULKOPS_EXECUTOR_* environment settings."""
        from bulkops.foundation.config import get_settings

        return cls(**{**get_settings().executor.model_dump(), **overrides})


class OperationFailure(BaseModel):
    """One task that settled as failed.

    Attributes:
        item_id: Identifier of the failed task
        index: Position of the item in the input
        error: Error message of the last attempt
        error_type: Exception class name
        error_code: Classified error code
        status_code: HTTP status of the last attempt, if any
        timestamp: UTC settlement time
        retry_attempts: Retries performed (invocations - 1)
        context: Worker-supplied detail plus executor flags
    """

    model_config = ConfigDict(frozen=True)

    item_id: str
    index: NonNegativeInt
    error: str
    error_type: str = "Exception"
    error_code: ErrorCode = ErrorCode.UNKNOWN
    status_code: int | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    retry_attempts: NonNegativeInt = 0
    context: dict[str, Any] | None = None

    @classmethod
    def from_outcome(cls, outcome: TaskOutcome[Any]) -> Self:
        """Build from a failed outcome."""
        exc = outcome.error
        ctx: dict[str, Any] = dict(getattr(exc, "context", None) or {})
        if outcome.cancelled:
            ctx["cancelled"] = True
        return cls(
            item_id=outcome.task.id,
            index=outcome.task.index,
            error=str(exc) if exc is not None else "unknown error",
            error_type=type(exc).__name__ if exc is not None else "None",
            error_code=classify_exception(exc) if exc is not None else ErrorCode.UNKNOWN,
            status_code=status_code_of(exc) if exc is not None else None,
            timestamp=outcome.settled_at,
            retry_attempts=outcome.retries,
            context=ctx or None,
        )


class OperationMetrics(BaseModel):
    """Run-level metrics, computed once at completion."""

    model_config = ConfigDict(frozen=True)

    total_time_ms: float = 0.0
    api_time_ms: float = 0.0
    average_response_time_ms: float = 0.0
    requests_per_second: float = 0.0
    total_requests: NonNegativeInt = 0
    total_retries: NonNegativeInt = 0
    error_rate: Annotated[float, Field(ge=0.0, le=100.0)] = 0.0

    @classmethod
    def compute(cls, outcomes: list[TaskOutcome[Any]], total_time_ms: float, *, detailed: bool = True) -> Self:
        settled = len(outcomes)
        failed = sum(1 for o in outcomes if not o.ok)
        error_rate = (failed / settled) * 100 if settled else 0.0
        retries = sum(o.retries for o in outcomes)
        if not detailed:
            return cls(total_time_ms=total_time_ms, total_retries=retries, error_rate=error_rate)
        durations = [d for o in outcomes for d in o.durations_ms]
        api_ms = sum(durations)
        return cls(
            total_time_ms=total_time_ms,
            api_time_ms=api_ms,
            average_response_time_ms=api_ms / len(durations) if durations else 0.0,
            requests_per_second=len(durations) / (total_time_ms / 1000) if total_time_ms > 0 else 0.0,
            total_requests=len(durations),
            total_retries=retries,
            error_rate=error_rate,
        )


class BatchSummary(BaseModel):
    """Counts and rates derived from a finished run."""

    model_config = ConfigDict(frozen=True)

    total_attempted: NonNegativeInt = 0
    success_count: NonNegativeInt = 0
    failure_count: NonNegativeInt = 0
    unprocessed_count: NonNegativeInt = 0
    success_rate: Annotated[float, Field(ge=0.0, le=100.0)] = 0.0
    total_time_ms: float = 0.0
    average_time_per_item_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class BatchResult(Generic[R]):
    """Terminal result of a run. Successes, failures, metrics, and summary.

    ``successful`` and ``failed`` partition the input unless ``cancelled``,
    in which case ids of never-started items are listed in ``unprocessed``.
    ``outcomes`` keeps every settled task in completion order.
    """
    successful: list[R]
    failed: list[OperationFailure]
    metrics: OperationMetrics
    summary: BatchSummary
    cancelled: bool = False
    unprocessed: list[str] = field(default_factory=list)
    outcomes: list[TaskOutcome[R]] = field(default_factory=list, repr=False)

    @classmethod
    def empty(cls) -> BatchResult[R]:
        return cls([], [], OperationMetrics(), BatchSummary())

    @property
    def success_rate(self) -> float:
        return self.summary.success_rate

    @property
    def all_ok(self) -> bool:
        return not self.failed and not self.cancelled

    def by_id(self) -> dict[str, TaskOutcome[R]]:
        """Settled outcomes keyed by item id."""
        return {o.task.id: o for o in self.outcomes}

    def in_input_order(self) -> list[TaskOutcome[R]]:
        """Settled outcomes re-sorted by input position."""
        return sorted(self.outcomes, key=lambda o: o.task.index)

    def __len__(self) -> int: return len(self.successful) + len(self.failed)

    def __iter__(self) -> Iterator[TaskOutcome[R]]: return iter(self.outcomes)
