"""Structured logging for bulk runs.

Events are short lowercase phrases ("batch started", "task failed") with
key=value context. A logger carries bound context (logger name, batch id,
operation id) and hands each entry to the process-wide renderer:
console for humans, JSON lines for collectors, nothing in tests.

Quick Start:
    >>> from bulkops.runtime.observability import configure_logging, get_logger
    >>> configure_logging(format="json", level="DEBUG")
    >>> log = get_logger("bulkops.accounts").bind_batch("5f1c2a9be0d4", total=50)
    >>> log.warning("task failed", item_id="qa-3@duckmail.sbs", attempts=4)
"""

from __future__ import annotations

import inspect
import sys
import time
import traceback
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, ParamSpec, Protocol, TextIO, TypeVar, runtime_checkable

import orjson

if TYPE_CHECKING:
    from types import TracebackType

P = ParamSpec("P")
T = TypeVar("T")

JsonValue = str | int | float | bool | None | list[Any] | dict[str, Any]
JsonDict = dict[str, Any]

LEVELS: dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}
_LEVEL_NAMES = {v: k for k, v in LEVELS.items()}

_scoped: ContextVar[JsonDict] = ContextVar("bulkops_log_scope", default={})


def _level_no(level: str | int) -> int:
    if isinstance(level, int):
        return level
    try:
        return LEVELS[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


# ─────────────────────────────────────────────────────────────────────────────
# Entries & Loggers
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class LogEntry:
    timestamp: float
    level: str
    event: str
    context: JsonDict

    @property
    def ts_iso(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=UTC).isoformat()

    @property
    def ts_human(self) -> str:
        """Wall-clock time as HH:MM:SS.mmm."""
        return datetime.fromtimestamp(self.timestamp, tz=UTC).strftime("%H:%M:%S.%f")[:-3]


@dataclass(slots=True)
class BoundLogger:
    """Logger with immutable bound context; bind() returns a new logger.

    ``_renderer`` pins output to one renderer (tests); otherwise entries go
    to whatever configure_logging() installed at the time they are emitted.

    Example:
        >>> log = get_logger("bulkops.batch").bind_batch("5f1c2a9be0d4")
        >>> log.info("batch started", total=120, concurrency=3)
        # => 10:30:45.120 [info] batch started batch_id="5f1c2a9be0d4" concurrency=3 ...
    """

    context: JsonDict = field(default_factory=dict)
    _renderer: LogRenderer | None = None
    _level: int = LEVELS["debug"]

    def _derive(self, context: JsonDict) -> BoundLogger:
        return BoundLogger(context=context, _renderer=self._renderer, _level=self._level)

    def bind(self, **kw: JsonValue) -> BoundLogger:
        return self._derive({**self.context, **kw})

    def bind_batch(self, batch_id: str, **kw: JsonValue) -> BoundLogger:
        """Context for one executor run."""
        return self.bind(batch_id=batch_id, **kw)

    def unbind(self, *keys: str) -> BoundLogger:
        return self._derive({k: v for k, v in self.context.items() if k not in keys})

    def log(self, level: str | int, event: str, **kw: JsonValue) -> None:
        levelno = _level_no(level)
        if levelno < self._level:
            return
        entry = LogEntry(time.time(), _LEVEL_NAMES.get(levelno, str(levelno)), event,
                         {**_scoped.get(), **self.context, **kw})
        (self._renderer or _active_renderer()).render(entry)

    def debug(self, event: str, **kw: JsonValue) -> None:
        self.log("debug", event, **kw)

    def info(self, event: str, **kw: JsonValue) -> None:
        self.log("info", event, **kw)

    def warning(self, event: str, **kw: JsonValue) -> None:
        self.log("warning", event, **kw)

    def error(self, event: str, **kw: JsonValue) -> None:
        self.log("error", event, **kw)

    def exception(self, event: str, **kw: JsonValue) -> None:
        """Error entry with the active traceback attached as ``exc_info``."""
        self.log("error", event, exc_info=traceback.format_exc(), **kw)


# ─────────────────────────────────────────────────────────────────────────────
# Renderers
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class LogRenderer(Protocol):
    def render(self, entry: LogEntry) -> None: ...


_ANSI = {
    "reset": "\033[0m", "bold": "\033[1m", "dim": "\033[2m", "key": "\033[36m",
    "str": "\033[33m", "num": "\033[34m", "other": "\033[37m", "exc": "\033[31m",
    "debug": "\033[2m", "info": "\033[32m", "warning": "\033[33m", "error": "\033[31m",
    "critical": "\033[1;31m",
}
_PLAIN = dict.fromkeys(_ANSI, "")


def _console_value(v: object, style: dict[str, str]) -> str:
    match v:
        case str():
            text, tone = f'"{v}"', "str"
        case bool():
            text, tone = str(v).lower(), "num"
        case int() | float():
            text, tone = str(v), "num"
        case dict() | list() | tuple():
            text, tone = f"<{type(v).__name__} of {len(v)}>", "dim"
        case _:
            text, tone = repr(v), "other"
    return f"{style[tone]}{text}{style['reset']}"


@dataclass(slots=True)
class ConsoleRenderer:
    """One line per entry: ``time [level] event key=value ...`` (keys sorted)."""

    output: TextIO = field(default_factory=lambda: sys.stderr)
    colors: bool | None = None  # None: colour only on a TTY
    show_timestamp: bool = True

    def __post_init__(self) -> None:
        if self.colors is None:
            self.colors = bool(getattr(self.output, "isatty", lambda: False)())

    def render(self, entry: LogEntry) -> None:
        s = _ANSI if self.colors else _PLAIN
        head = f"{s['dim']}{entry.ts_human}{s['reset']} " if self.show_timestamp else ""
        line = f"{head}{s.get(entry.level, '')}[{entry.level}]{s['reset']} {s['bold']}{entry.event}{s['reset']}"
        pairs = [
            f"{s['key']}{k}{s['reset']}={_console_value(v, s)}"
            for k, v in sorted(entry.context.items())
            if k != "exc_info"
        ]
        print(" ".join([line, *pairs]), file=self.output)
        if exc := entry.context.get("exc_info"):
            print(f"{s['exc']}{exc}{s['reset']}", file=self.output)


@dataclass(slots=True)
class JsonRenderer:
    """JSON Lines, one object per entry, for log collectors."""

    output: TextIO = field(default_factory=lambda: sys.stdout)

    def render(self, entry: LogEntry) -> None:
        record = {"timestamp": entry.ts_iso, "level": entry.level, "event": entry.event, **entry.context}
        line = orjson.dumps(record, option=orjson.OPT_NON_STR_KEYS | orjson.OPT_APPEND_NEWLINE, default=str)
        self.output.write(line.decode())


@dataclass(slots=True)
class NoOpRenderer:
    def render(self, entry: LogEntry) -> None:
        return None


@dataclass(slots=True)
class CaptureRenderer:
    """Keeps entries in memory so tests can assert on emitted events."""

    entries: list[LogEntry] = field(default_factory=list)

    def render(self, entry: LogEntry) -> None:
        self.entries.append(entry)

    def events(self, level: str | None = None) -> list[str]:
        return [e.event for e in self.entries if level is None or e.level == level]


# ─────────────────────────────────────────────────────────────────────────────
# Process-wide Configuration
# ─────────────────────────────────────────────────────────────────────────────


_renderer: LogRenderer | None = None
_default_level: int = LEVELS["info"]

_FORMATS: dict[str, Callable[[TextIO | None, bool | None], LogRenderer]] = {
    "console": lambda out, colors: ConsoleRenderer(output=out or sys.stderr, colors=colors),
    "json": lambda out, _colors: JsonRenderer(output=out or sys.stdout),
    "none": lambda _out, _colors: NoOpRenderer(),
}


def configure_logging(
    format: str = "console",  # noqa: A002
    level: str = "INFO",
    *,
    output: TextIO | None = None,
    colors: bool | None = None,
) -> LogRenderer:
    """Install the process-wide renderer and minimum level for new loggers.

    Args:
        format: "console", "json" or "none"
        level: Minimum level name for loggers created afterwards
        output: Stream override (default: stderr for console, stdout for json)
        colors: Force ANSI colours on or off (console only)
    """
    global _renderer, _default_level
    try:
        factory = _FORMATS[format]
    except KeyError:
        raise ValueError(f"Unknown format: {format!r}. Use one of {sorted(_FORMATS)}") from None
    _default_level = _level_no(level)
    _renderer = factory(output, colors)
    return _renderer


def configure_from_settings() -> LogRenderer:
    """configure_logging() driven by BULKOPS_LOG_* settings."""
    from bulkops.foundation.config import get_settings

    cfg = get_settings().logging
    return configure_logging(format=cfg.format, level=cfg.level, colors=cfg.colors)


def get_logger(name: str | None = None, **initial_context: JsonValue) -> BoundLogger:
    """Logger at the configured level; ``name`` is bound as ``logger``."""
    if name:
        initial_context["logger"] = name
    return BoundLogger(context=initial_context, _level=_default_level)


def _active_renderer() -> LogRenderer:
    global _renderer
    if _renderer is None:
        _renderer = ConsoleRenderer()
    return _renderer


# ─────────────────────────────────────────────────────────────────────────────
# Utilities
# ─────────────────────────────────────────────────────────────────────────────


def timed(
    log: BoundLogger | None = None,
    *,
    level: str = "info",
    event: str = "operation completed",
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Log ``event`` with ``duration_ms`` when the wrapped call returns (``<event> failed`` on error)."""

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        def report(start: float, error: Exception | None) -> None:
            logger = log or get_logger()
            ms = round((time.perf_counter() - start) * 1000, 2)
            if error is None:
                logger.log(level, event, function=func.__name__, duration_ms=ms)
            else:
                logger.error(f"{event} failed", function=func.__name__, duration_ms=ms, error=str(error))

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)  # type: ignore[misc]
                except Exception as e:
                    report(start, e)
                    raise
                report(start, None)
                return result

            return async_wrapper  # type: ignore[return-value]

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(start, e)
                raise
            report(start, None)
            return result

        return wrapper

    return decorator


class log_context:  # noqa: N801
    """Adds key-value pairs to every entry emitted inside the ``with`` block.

    Example:
        >>> with log_context(operation_id="account-creation-9f2e"):
        ...     await executor.run(addresses, create)
    """

    __slots__ = ("_values", "_token")

    def __init__(self, **kw: JsonValue) -> None:
        self._values: JsonDict = kw
        self._token: Any = None

    def __enter__(self) -> log_context:
        self._token = _scoped.set({**_scoped.get(), **self._values})
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _scoped.reset(self._token)
            self._token = None
