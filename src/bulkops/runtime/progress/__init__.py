"""Progress tracking and lifecycle events for bulk runs."""

from .progress import (
    OperationProgress,
    ProgressCallback,
    ProgressEvent,
    ProgressEventCallback,
    ProgressEventKind,
    ProgressTracker,
)

__all__ = [
    "OperationProgress",
    "ProgressCallback",
    "ProgressTracker",
    "ProgressEvent",
    "ProgressEventKind",
    "ProgressEventCallback",
]
