"""
SpecGate Structured Logging

Log records carry the session they belong to. Context set with
``log_context`` (or ``session_log_context`` for a live session) is copied
onto every record, rendered either as key=value text or as JSON.

Requirement and answer text is free-form and often long, so it is clipped
before it reaches a handler; secret-looking keys are redacted.
"""

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Generator, Optional


STANDARD_FIELDS = ("request_id", "session_id", "task_id", "phase")

_RESERVED_LOG_RECORD_ATTRS = set(
    logging.LogRecord(
        name="",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg="",
        args=(),
        exc_info=None,
    ).__dict__.keys()
)
_RESERVED_LOG_RECORD_ATTRS.update({"asctime", "message"})

_MISSING = "-"
_REDACTED = "[REDACTED]"
_SECRET_KEY_MARKERS = ("token", "secret", "password", "passwd", "api_key", "apikey", "private_key", "credential")

# Keys whose values are user-supplied prose.
FREE_TEXT_KEYS = frozenset({"answer_text", "statement", "task_description", "excerpt", "question"})
FREE_TEXT_LIMIT = 120


def _json_fallback(value: Any) -> str:
    """Enums log as their value; anything else as str()."""
    enum_value = getattr(value, "value", None)
    if isinstance(enum_value, (str, int, float)):
        return str(enum_value)
    return str(value)


def _looks_sensitive_key(key: str) -> bool:
    lower = (key or "").lower()
    return any(marker in lower for marker in _SECRET_KEY_MARKERS)


def clip_text(value: str, limit: int = FREE_TEXT_LIMIT) -> str:
    """Shorten prose to ``limit`` characters, marking the cut."""
    if len(value) <= limit:
        return value
    return value[: limit - 3].rstrip() + "..."


def _sanitize_for_logging(key: str, value: Any) -> Any:
    if _looks_sensitive_key(key):
        return _REDACTED
    if isinstance(value, dict):
        return {k: _sanitize_for_logging(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize_for_logging(key, v) for v in value]
    if isinstance(value, str) and key in FREE_TEXT_KEYS:
        return clip_text(value)
    return value


# =============================================================================
# Context propagation
# =============================================================================

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("SPECGATE_LOG_CONTEXT", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current log context."""
    return dict(_LOG_CONTEXT.get() or {})


def set_log_context(**fields: Any) -> None:
    current = get_log_context()
    current.update({k: v for k, v in fields.items() if v is not None})
    _LOG_CONTEXT.set(current)


def clear_log_context() -> None:
    _LOG_CONTEXT.set({})


@contextmanager
def log_context(**fields: Any) -> Generator[None, None, None]:
    """Add fields to the log context for the duration of the block."""
    token = _LOG_CONTEXT.set({**get_log_context(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


@contextmanager
def session_log_context(session: Any) -> Generator[None, None, None]:
    """Bind a questioning session's id, task and current phase to the log context."""
    task = getattr(session, "task_context", None)
    phase = getattr(session, "current_phase", None)
    with log_context(
        session_id=getattr(session, "session_id", None),
        task_id=getattr(task, "task_id", None),
        phase=getattr(phase, "value", phase),
    ):
        yield


class SessionContextFilter(logging.Filter):
    """
    Copy the log context onto each record and default the standard fields,
    so formatters can rely on ``session_id``, ``task_id`` and ``phase``.
    """

    def __init__(self, defaults: Optional[Dict[str, Any]] = None) -> None:
        super().__init__()
        self.defaults = {field: _MISSING for field in STANDARD_FIELDS}
        if defaults:
            self.defaults.update({k: v for k, v in defaults.items() if v is not None})

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if value is None or key in _RESERVED_LOG_RECORD_ATTRS:
                continue
            if not hasattr(record, key):
                setattr(record, key, value)

        for key, default in self.defaults.items():
            if not hasattr(record, key):
                setattr(record, key, default)
        return True


# =============================================================================
# Formatters
# =============================================================================

def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Standard fields that are set, then everything passed via ``extra=``."""
    fields: Dict[str, Any] = {}
    for field in STANDARD_FIELDS:
        value = getattr(record, field, _MISSING)
        if value != _MISSING:
            fields[field] = value
    for key, value in record.__dict__.items():
        if key in _RESERVED_LOG_RECORD_ATTRS or key in fields or key in STANDARD_FIELDS:
            continue
        fields[key] = value
    return {k: _sanitize_for_logging(k, v) for k, v in fields.items()}


class TextFormatter(logging.Formatter):
    """``<time> <level> <logger> <event> key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        head = f"{self.formatTime(record, self.datefmt)} {record.levelname} {record.name} {record.getMessage()}"
        pairs = " ".join(f"{k}={_json_fallback(v)}" for k, v in _record_fields(record).items())
        line = f"{head} {pairs}" if pairs else head
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per record; unset standard fields are reported as "-"."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update({field: _MISSING for field in STANDARD_FIELDS})
        data.update(_record_fields(record))
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=_json_fallback)


# =============================================================================
# Setup
# =============================================================================

def setup_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """
    Configure the root logger with session-aware formatting.

    Args:
        level: Log level (default: from SPECGATE_LOG_LEVEL or INFO)
        json_output: If True, use JSON formatting; otherwise key=value text

    Returns:
        The specgate logger instance
    """
    resolved_level = level or os.environ.get("SPECGATE_LOG_LEVEL") or "INFO"

    handler = logging.StreamHandler()
    handler.addFilter(SessionContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter())

    root = logging.getLogger()
    root.handlers = []
    root.setLevel(getattr(logging, str(resolved_level).upper(), logging.INFO))
    root.addHandler(handler)

    return logging.getLogger("specgate")


def get_logger(name: str = "specgate") -> logging.Logger:
    return logging.getLogger(name)


def init_cli_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """Initialize logging for the CLI; SPECGATE_LOG_JSON forces JSON output."""
    return setup_logging(
        level or os.environ.get("SPECGATE_LOG_LEVEL") or "INFO",
        json_output=json_output or json_logging_from_env(),
    )


def json_logging_from_env() -> bool:
    return os.environ.get("SPECGATE_LOG_JSON", "").lower() in ("1", "true", "yes")


def log_extra(
    *,
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
    task_id: Optional[str] = None,
    phase: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Build a consistent extra dict for structured logging.

    Only non-None values are included so defaults from SessionContextFilter still apply.

    Example:
        logger.info("answer_processed", extra=log_extra(session_id="qs_1", confidence=72.5))
    """
    payload: Dict[str, Any] = {}
    if request_id is not None:
        payload["request_id"] = request_id
    if session_id is not None:
        payload["session_id"] = session_id
    if task_id is not None:
        payload["task_id"] = task_id
    if phase is not None:
        payload["phase"] = phase
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


# Standard exit codes for CLIs
EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_BLOCKED = 3
