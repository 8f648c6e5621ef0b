import json
import logging
import os
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

LOGGER_NAME = "persona_quiz"

_ctx_trace_id: ContextVar[str | None] = ContextVar("trace_id", default=None)
_ctx_span_id: ContextVar[str | None] = ContextVar("span_id", default=None)
_ctx_parent_span_id: ContextVar[str | None] = ContextVar("parent_span_id", default=None)
_ctx_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)
_ctx_mask: ContextVar[bool] = ContextVar("mask", default=False)

# Attributes every LogRecord carries; anything else was passed through `extra`.
_RECORD_BUILTINS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()) | {
    "message",
    "asctime",
    "taskName",
}

_TRUTHY = {"1", "true", "yes", "on"}


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _ctx_trace_id.get()
        record.span_id = _ctx_span_id.get()
        record.parent_span_id = _ctx_parent_span_id.get()
        record.run_id = _ctx_run_id.get()
        record.component = getattr(record, "component", None)
        record.operation = getattr(record, "operation", None)
        if not hasattr(record, "event"):
            record.event = record.name
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; correlation fields first, extras after."""

    _ordered_fields = (
        "event",
        "trace_id",
        "span_id",
        "parent_span_id",
        "run_id",
        "component",
        "operation",
        "duration_ms",
        "status",
        "error_type",
        "error_msg",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
        }
        for key in self._ordered_fields:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        for key, value in record.__dict__.items():
            if key in _RECORD_BUILTINS or key in payload:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _coerce_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return logging.INFO
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def init_logging(
    level: str | int | None = None,
    fmt: str | None = None,
    file_path: str | None = None,
    mask: bool | None = None,
    use_stderr: bool = True,
) -> logging.Logger:
    """Install the application log handler on the root logger.

    Arguments win over the environment (`PERSONA_QUIZ_LOG_LEVEL`,
    `PERSONA_QUIZ_LOG_FORMAT`, `PERSONA_QUIZ_LOG_FILE`, `PERSONA_QUIZ_LOG_MASK`).
    Console output defaults to stderr so it does not interleave with the quiz
    prompts on stdout.
    """
    resolved_level = _coerce_level(level or os.getenv("PERSONA_QUIZ_LOG_LEVEL") or logging.INFO)
    resolved_format = (fmt or os.getenv("PERSONA_QUIZ_LOG_FORMAT") or "text").lower()
    resolved_file = file_path or os.getenv("PERSONA_QUIZ_LOG_FILE")
    if mask is None:
        mask = (os.getenv("PERSONA_QUIZ_LOG_MASK") or "").lower() in _TRUTHY

    root = logging.getLogger()
    root.setLevel(resolved_level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler: logging.Handler
    if resolved_file:
        try:
            handler = logging.FileHandler(resolved_file, encoding="utf-8")
        except OSError as e:
            print(f"Warning: could not open log file '{resolved_file}': {e}", file=sys.stderr)
            handler = logging.StreamHandler(sys.stderr)
            resolved_file = None
    else:
        handler = logging.StreamHandler(sys.stderr if use_stderr else sys.stdout)

    formatter: logging.Formatter
    if resolved_format == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(event)s %(message)s [run=%(run_id)s span=%(span_id)s]",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    root.addHandler(handler)

    if not _ctx_run_id.get():
        set_run_id(short_uuid())
    set_masking(mask)

    logger = logging.getLogger(LOGGER_NAME)
    logger.debug(
        "logging initialized",
        extra={
            "event": "logging.init",
            "component": "logging",
            "operation": "init",
            "format": resolved_format,
            "file": resolved_file or "stream",
            "mask": mask,
        },
    )
    return logger


def short_uuid() -> str:
    return uuid.uuid4().hex[:12]


def set_trace_id(trace_id: str | None) -> None:
    _ctx_trace_id.set(trace_id)


def get_trace_id() -> str | None:
    return _ctx_trace_id.get()


def set_run_id(run_id: str | None) -> None:
    _ctx_run_id.set(run_id)


def get_run_id() -> str | None:
    return _ctx_run_id.get()


def set_masking(mask: bool) -> None:
    _ctx_mask.set(mask)


def is_masking() -> bool:
    return _ctx_mask.get()


def mask_text(text: str) -> str:
    if not is_masking():
        return text
    return f"[masked len={len(text)}]"


@contextmanager
def span(event: str, **fields: Any) -> Iterator[None]:
    """Time the enclosed block and emit one structured record when it exits.

    Usage:
        with span("llm.call", component="gateway", operation="call", model=model):
            ...
    """
    logger = logging.getLogger(LOGGER_NAME)
    parent = _ctx_span_id.get()
    parent_token = _ctx_parent_span_id.set(parent)
    span_token = _ctx_span_id.set(short_uuid())
    start = time.perf_counter()
    status = "ok"
    error_type: str | None = None
    error_msg: str | None = None
    try:
        yield
    except BaseException as e:
        status = "error"
        error_type = type(e).__name__
        error_msg = str(e)
        raise
    finally:
        payload: dict[str, Any] = {
            "event": event,
            "component": fields.pop("component", None),
            "operation": fields.pop("operation", None),
            "duration_ms": round((time.perf_counter() - start) * 1000.0, 3),
            "status": status,
        }
        if error_type:
            payload["error_type"] = error_type
            payload["error_msg"] = error_msg
        payload.update(fields)
        logger.info("span", extra=payload)
        _ctx_span_id.reset(span_token)
        _ctx_parent_span_id.reset(parent_token)


def log_event(event: str, level: int = logging.INFO, **fields: Any) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    extra: dict[str, Any] = {"event": event}
    extra.update(fields)
    logger.log(level, event, extra=extra)
