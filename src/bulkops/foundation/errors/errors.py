"""Standardized error handling for bulk operations.

Provides error codes, the exception hierarchy raised by worker functions and
by the executor itself, and pattern-based classification of arbitrary
exceptions into error codes.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Any, Self


class ErrorCode(StrEnum):
    """Standard error codes for failed operations.

    Used for programmatic error handling and reporting on failures.
    """
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    AUTH_FAILED = "AUTH_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_INPUT = "INVALID_INPUT"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


# Flattened pattern -> code mapping, checked in insertion order
_PATTERN_CODES: dict[str, ErrorCode] = {
    "timeout": ErrorCode.TIMEOUT,
    "timed out": ErrorCode.TIMEOUT,
    "connection": ErrorCode.NETWORK_ERROR,
    "network": ErrorCode.NETWORK_ERROR,
    "too many requests": ErrorCode.RATE_LIMITED,
    "rate": ErrorCode.RATE_LIMITED,
    "unauthorized": ErrorCode.AUTH_FAILED,
    "auth": ErrorCode.AUTH_FAILED,
    "credential": ErrorCode.AUTH_FAILED,
    "permission": ErrorCode.PERMISSION_DENIED,
    "forbidden": ErrorCode.PERMISSION_DENIED,
    "already": ErrorCode.CONFLICT,
    "duplicate": ErrorCode.CONFLICT,
    "conflict": ErrorCode.CONFLICT,
    "notfound": ErrorCode.NOT_FOUND,
    "not found": ErrorCode.NOT_FOUND,
    "parse": ErrorCode.PARSE_ERROR,
    "json": ErrorCode.PARSE_ERROR,
    "decode": ErrorCode.PARSE_ERROR,
    "validation": ErrorCode.INVALID_INPUT,
    "invalid": ErrorCode.INVALID_INPUT,
    "value": ErrorCode.INVALID_INPUT,
}
_PATTERN_KEYS = tuple(_PATTERN_CODES.keys())

_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.INVALID_INPUT,
    401: ErrorCode.AUTH_FAILED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.TIMEOUT,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.INVALID_INPUT,
    429: ErrorCode.RATE_LIMITED,
}


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    """Cached classification by exception signature."""
    haystack = exc_key.lower()
    for pattern in _PATTERN_KEYS:
        if pattern in haystack:
            return _PATTERN_CODES[pattern]
    return ErrorCode.EXTERNAL_SERVICE_ERROR


def status_code_of(exc: BaseException) -> int | None:
    """Extract an HTTP status code from an exception, if it carries one.

    Looks at ``exc.status_code`` first, then ``exc.response.status_code``
    (the shape of ``httpx.HTTPStatusError``).
    """
    code = getattr(exc, "status_code", None)
    if code is None:
        code = getattr(getattr(exc, "response", None), "status_code", None)
    return code if isinstance(code, int) else None


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map exception to error code.

    Explicit codes on BulkOpsError win, then HTTP status codes, then pattern
    matching on the exception name and message.
    """
    if isinstance(exc, BulkOpsError) and exc.code is not ErrorCode.UNKNOWN:
        return exc.code
    if (status := status_code_of(exc)) is not None:
        if status in _STATUS_CODES:
            return _STATUS_CODES[status]
        if status >= 500:
            return ErrorCode.EXTERNAL_SERVICE_ERROR
    return _classify_cached(f"{type(exc).__name__} {exc}")


def is_permanent(exc: BaseException) -> bool:
    """Whether a worker error is marked terminal (never worth retrying)."""
    return getattr(exc, "retryable", True) is False


class BulkOpsError(Exception):
    """Base class for all bulkops exceptions."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class OperationError(BulkOpsError):
    """Failure of a single unit of work, raised from worker functions.

    Attributes:
        status_code: HTTP status of the remote call, if any
        context: Extra detail copied onto the resulting OperationFailure
        retryable: Whether the executor may retry the unit of work
    """

    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code
        self.context = dict(context) if context else {}

    @classmethod
    def from_exc(cls, exc: BaseException, context: str = "", **kw: Any) -> Self:
        """Wrap another exception, keeping its status code and classification."""
        kw.setdefault("status_code", status_code_of(exc))
        kw.setdefault("code", classify_exception(exc))
        return cls(f"{context}: {exc}" if context else str(exc), **kw)


class TransientError(OperationError):
    """Retryable failure (timeouts, throttling, 5xx responses)."""


class PermanentError(OperationError):
    """Terminal failure: the executor records it without retrying."""

    retryable = False


class ConfigurationError(BulkOpsError, ValueError):
    """Invalid batch setup, raised before any task runs."""

    code = ErrorCode.CONFIGURATION_ERROR


class InvariantViolation(BulkOpsError, RuntimeError):
    """Internal accounting bug. Fatal: the run is aborted without a result."""

    code = ErrorCode.INVARIANT_VIOLATION
