from __future__ import annotations

"""
waqueue.core.log
================

Structured logging on top of stdlib `logging`:
- Context fields (worker_id, dedupe_key, attempt, ...) carried in a contextvar and
  stamped onto every record by `ContextFilter`.
- JSON lines for containers, one compact line per event for local runs.
- Call sites pass fields as keywords: log.info("claimed", event="lease.claim.ok", dedupe_key=k).
- Credentials never reach the output: known secret fields are masked.
- Silent by default; entrypoints call `configure_from_env()`.
"""

import contextvars
import json
import logging
import os
import sys
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final, TextIO

__all__ = [
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "swallow",
    "warn_once",
]

_ROOT: Final[str] = "waqueue"
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_SECRET_FIELDS: Final[frozenset[str]] = frozenset({"access_token", "authorization", "verify_token"})
_MASK: Final[str] = "***"

# Attributes every LogRecord has; anything else on a record came from `extra` or context.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# ---------- Context ----------

_ctx: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar("waqueue_log_ctx", default={})


def _merged(fields: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(_ctx.get())
    out.update((k, v) for k, v in fields.items() if v is not None)
    return out


def bind_context(**fields: Any) -> None:
    """Merge fields into the current context for the rest of this task (process, worker loop)."""
    _ctx.set(_merged(fields))


@contextmanager
def log_context(**fields: Any):
    """Add fields for the duration of the block, e.g. while one job is handled."""
    token = _ctx.set(_merged(fields))
    try:
        yield
    finally:
        _ctx.reset(token)


# ---------- Record helpers ----------


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
    for k in _SECRET_FIELDS & fields.keys():
        if fields[k]:
            fields[k] = _MASK
    return fields


def _json_default(v: Any) -> Any:
    if isinstance(v, datetime):
        return v.isoformat()
    if hasattr(v, "value"):  # str enums (JobStatus, LogStatus)
        return v.value
    return str(v)


class ContextFilter(logging.Filter):
    """Stamp context fields onto the record; explicit `extra` wins over context."""

    def filter(self, record: logging.LogRecord) -> bool:
        for k, v in _ctx.get().items():
            record.__dict__.setdefault(k, v)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, fields, error."""

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")
        out: dict[str, Any] = {
            "ts": ts.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for k, v in _record_fields(record).items():
            out.setdefault(k, v)

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            out["error"] = {"type": exc_type.__name__, "message": str(exc)}
            if self.include_stack:
                out["error"]["stack"] = self.formatException(record.exc_info)

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=_json_default)


class HumanFormatter(logging.Formatter):
    """
    Single line per event for local runs:

        09:00:01.204 WARN  worker  delivery failed, retry scheduled  [w=whatsapp-processor-1a2b3c4d job=appt1#1] event=job.retry
    """

    default_time_format = "%H:%M:%S"
    default_msec_format = "%s.%03d"

    _SHOWN_INLINE: ClassVar[tuple[str, ...]] = ("event", "error")

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        name = record.name.removeprefix(f"{_ROOT}.")
        line = f"{self.formatTime(record)} {record.levelname[:4]:<5} {name:<8} {record.getMessage()}"

        tags = []
        if fields.get("worker_id"):
            tags.append(f"w={fields['worker_id']}")
        if fields.get("dedupe_key"):
            job = str(fields["dedupe_key"])
            tags.append(f"job={job}#{fields['attempt']}" if fields.get("attempt") else f"job={job}")
        if tags:
            line += "  [" + " ".join(tags) + "]"
        shown = [f"{k}={fields[k]}" for k in self._SHOWN_INLINE if fields.get(k) is not None]
        if shown:
            line += " " + " ".join(shown)

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _BandFilter(logging.Filter):
    def __init__(self, lo: int, hi: int) -> None:
        super().__init__()
        self.lo, self.hi = lo, hi

    def filter(self, record: logging.LogRecord) -> bool:
        return self.lo <= record.levelno <= self.hi


class _FieldsAdapter(logging.LoggerAdapter):
    """Turns keyword arguments other than the stdlib ones into `extra` fields."""

    _STDLIB_KW: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        for k in [k for k in kwargs if k not in self._STDLIB_KW]:
            # a field may not shadow a LogRecord attribute (e.g. `name`, `module`)
            extra.setdefault(f"field_{k}" if k in _RECORD_ATTRS else k, kwargs.pop(k))
        kwargs["extra"] = extra
        return msg, kwargs


def _adapt(logger: logging.Logger | logging.LoggerAdapter) -> logging.LoggerAdapter:
    return logger if isinstance(logger, logging.LoggerAdapter) else _FieldsAdapter(logger, {})


_warned: set[str] = set()
_warned_lock = threading.Lock()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log `msg` the first time `code` is seen in this process; later calls are no-ops."""
    with _warned_lock:
        if code in _warned:
            return
        _warned.add(code)
    _adapt(logger).log(level, msg, code=code, **extra)


# ---------- Configuration ----------

_HANDLER_NAMES: Final[tuple[str, str]] = ("waqueue.stdout", "waqueue.stderr")


def _root() -> logging.Logger:
    lg = logging.getLogger(_ROOT)
    if not lg.handlers:
        lg.setLevel(logging.INFO)
        lg.addHandler(logging.NullHandler())
    return lg


def _level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Invalid level name: {level!r}")
    return value


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Logger under `waqueue` (e.g. `waqueue.worker`) that accepts keyword fields."""
    root = _root()
    return _FieldsAdapter(root.getChild(name) if name else root, {})


def set_level(level: int | str) -> None:
    _root().setLevel(_level(level))


def _stream_handler(name: str, stream: TextIO, fmt: logging.Formatter, lo: int, hi: int) -> logging.Handler:
    h = logging.StreamHandler(stream)
    h.set_name(name)
    h.setLevel(lo)
    h.addFilter(_BandFilter(lo, hi))
    h.addFilter(ContextFilter())
    h.setFormatter(fmt)
    return h


def enable_stdout_logging(
    *,
    level: int | str = logging.INFO,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    (Re)attach stream handlers to the `waqueue` logger.

    pretty -> HumanFormatter; otherwise JsonFormatter, or a plain stdlib line when json_output=False.
    route_errors_to_stderr -> ERROR and above go to stderr, the rest to stdout.
    """
    lvl = _level(level)
    disable_stdout_logging()
    if pretty:
        fmt: logging.Formatter = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    lg = _root()
    if route_errors_to_stderr:
        lg.addHandler(_stream_handler(_HANDLER_NAMES[0], sys.stdout, fmt, lvl, logging.WARNING))
        lg.addHandler(_stream_handler(_HANDLER_NAMES[1], sys.stderr, fmt, max(lvl, logging.ERROR), logging.CRITICAL))
    else:
        lg.addHandler(_stream_handler(_HANDLER_NAMES[0], sys.stdout, fmt, lvl, logging.CRITICAL))


def disable_stdout_logging() -> None:
    lg = _root()
    for h in [h for h in lg.handlers if h.get_name() in _HANDLER_NAMES]:
        lg.removeHandler(h)


def configure_from_env() -> None:
    """
    Honors:
      - WAQUEUE_LOG_STDOUT=1 -> write logs to stdout (JSON unless pretty)
      - WAQUEUE_LOG_LEVEL=DEBUG|INFO|...
      - WAQUEUE_LOG_PRETTY=1 -> human formatter
      - WAQUEUE_LOG_STACK=1 -> include tracebacks in JSON
    """

    def flag(name: str) -> bool:
        return os.getenv(name, "").strip().lower() in _TRUTHY

    level = os.getenv("WAQUEUE_LOG_LEVEL", "INFO")
    set_level(level)
    if flag("WAQUEUE_LOG_STDOUT"):
        pretty = flag("WAQUEUE_LOG_PRETTY")
        enable_stdout_logging(
            level=level, json_output=not pretty, include_stack=flag("WAQUEUE_LOG_STACK"), pretty=pretty
        )
    else:
        disable_stdout_logging()


# ---------- Logged suppression ----------


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
    code: str,
    msg: str | None = None,
    reraise: bool = False,
    extra: Mapping[str, Any] | None = None,
    expected: bool = True,
):
    """
    Log an exception instead of silently dropping it:

        with swallow(logger=log, code="job.fallback.push", msg="push fallback raised", level=logging.ERROR):
            await push.notify(payload)

    `expected=False` marks suppressions that indicate a bug rather than an outage.
    """
    try:
        yield
    except Exception as e:
        fields = {**dict(extra or {}), "code": code, "expected": expected}
        _adapt(logger or get_logger("swallow")).log(level, msg or "Suppressed exception", exc_info=e, **fields)
        if reraise:
            raise
