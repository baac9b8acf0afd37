"""Foundation layer: errors and configuration shared by the runtime."""

from .config import BulkOpsSettings, clear_settings_cache, get_settings
from .errors import (
    BulkOpsError,
    ConfigurationError,
    ErrorCode,
    InvariantViolation,
    OperationError,
    PermanentError,
    TransientError,
    classify_exception,
)

__all__ = [
    "BulkOpsSettings",
    "get_settings",
    "clear_settings_cache",
    "ErrorCode",
    "BulkOpsError",
    "OperationError",
    "TransientError",
    "PermanentError",
    "ConfigurationError",
    "InvariantViolation",
    "classify_exception",
]
