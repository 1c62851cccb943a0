# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across stores, services and API
# CREATED: 06 OCT 2026
# ============================================================================
"""
Structured Logging

JSON (LOG_FORMAT=json) or console logging for the asset hierarchy engine.

Every record emitted inside a log_context() block carries the tenant,
asset and operation it belongs to. The context lives in a ContextVar, so
concurrent coroutines (two moves, a rollup walk and a tree read) never
see each other's fields.

Usage:
    from core.logging import get_logger, log_context, ComponentType

    logger = get_logger(__name__, ComponentType.SERVICE)

    with log_context(tenant_id="t1", asset_id="a1", operation="move"):
        logger.info("Moving subtree", extra={"size": 12})
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    API = "api"
    REPOSITORY = "repository"
    SERVICE = "service"
    ROLLUP = "rollup"
    INFRASTRUCTURE = "infrastructure"


# Libraries that are chatty at INFO
_QUIET_LOGGERS = ("psycopg.pool", "uvicorn.access")


@dataclass(frozen=True)
class LogContext:
    """Fields stamped onto every record logged inside log_context()."""
    tenant_id: Optional[str] = None
    asset_id: Optional[str] = None
    operation: Optional[str] = None
    actor: Optional[str] = None
    correlation_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Set fields only, with `extra` flattened in."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result


_NAMED_FIELDS = {f.name for f in fields(LogContext)} - {"extra"}

_current_context: ContextVar[LogContext] = ContextVar("asset_log_context", default=LogContext())


def get_current_context() -> LogContext:
    return _current_context.get()


@contextmanager
def log_context(**kwargs):
    """
    Layer fields over the current context for the duration of the block.

    Keywords that are not LogContext fields go into `extra`.

    Example:
        with log_context(tenant_id="t1", asset_id="pump-7", batch=3):
            logger.info("State updated")
    """
    parent = get_current_context()
    named = {k: v for k, v in kwargs.items() if k in _NAMED_FIELDS}
    loose = {k: v for k, v in kwargs.items() if k not in _NAMED_FIELDS}
    token = _current_context.set(replace(parent, **named, extra={**parent.extra, **loose}))
    try:
        yield _current_context.get()
    finally:
        _current_context.reset(token)


# ============================================================================
# RECORD ENRICHMENT AND FORMATTING
# ============================================================================

class ContextFilter(logging.Filter):
    """Copies the task-local LogContext onto each record as `twin_context`."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.twin_context = get_current_context().to_dict()
        return True


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """One JSON object per line for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        component = getattr(record, "component", None)
        if component:
            payload["component"] = component
        context = getattr(record, "twin_context", None)
        if context:
            payload["context"] = context
        data = getattr(record, "data", None)
        if data:
            payload["data"] = data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload["source"] = f"{record.filename}:{record.lineno}"
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line output for local development."""

    def format(self, record: logging.LogRecord) -> str:
        context = getattr(record, "twin_context", None) or {}
        context_str = ""
        if context:
            context_str = " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        data = getattr(record, "data", None)
        data_str = f" {data}" if data else ""

        line = (
            f"{_timestamp(record):%Y-%m-%d %H:%M:%S} {record.levelname:<8} "
            f"{record.name}{context_str}: {record.getMessage()}{data_str}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """
    Adapter that files caller `extra` under `record.data` and tags the
    record with the logger's component, so formatters never collide with
    LogRecord's own attributes.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {
            "data": dict(kwargs.get("extra") or {}),
            "component": self.extra.get("component"),
        }
        return msg, kwargs


def get_logger(
    name: str,
    component: Optional[ComponentType] = None,
) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name, normally __name__
        component: Optional component type for categorization
    """
    return ContextLogger(
        logging.getLogger(name),
        {"component": component.value if component else None},
    )


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Log level name or number
        json_output: JSON lines instead of console format (also LOG_FORMAT=json)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    use_json = json_output or os.getenv("LOG_FORMAT", "").lower() == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if use_json else ConsoleFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


# ============================================================================
# CHECKPOINT LOGGING
# ============================================================================

_checkpoint_logger = logging.getLogger("checkpoint")


def log_checkpoint(name: str, data: Optional[Dict[str, Any]] = None) -> None:
    """
    Log a named structural milestone (asset_moved, subtree_deleted,
    rollup_transferred) with its payload under `data`.
    """
    _checkpoint_logger.info(
        f"CHECKPOINT: {name}",
        extra={"data": {"checkpoint": name, **(data or {})}},
    )


__all__ = [
    "ComponentType",
    "LogContext",
    "ContextFilter",
    "JsonFormatter",
    "ConsoleFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
