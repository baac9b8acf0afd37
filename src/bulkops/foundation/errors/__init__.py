"""Unified error handling for bulkops.

- ErrorCode: Standard error codes for failed operations
- OperationError/TransientError/PermanentError: raised by worker functions
- ConfigurationError/InvariantViolation: raised by the executor itself
- classify_exception/status_code_of/is_permanent: inspection helpers
"""

from .errors import (
    BulkOpsError,
    ConfigurationError,
    ErrorCode,
    InvariantViolation,
    OperationError,
    PermanentError,
    TransientError,
    classify_exception,
    is_permanent,
    status_code_of,
)

__all__ = [
    "ErrorCode",
    "BulkOpsError",
    "OperationError",
    "TransientError",
    "PermanentError",
    "ConfigurationError",
    "InvariantViolation",
    "classify_exception",
    "is_permanent",
    "status_code_of",
]
