"""Structured logging for cashout tracing.

Every record emitted while a cashout is being handled carries the ids bound
through ``LogContext``: the correlation id of the inbound call, the cashout,
the user and the payout channel. ``setup_logging`` renders them either as one
JSON object per line or as a bracketed prefix in plain text.
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
cashout_id_var: ContextVar[Optional[str]] = ContextVar("cashout_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
channel_id_var: ContextVar[Optional[str]] = ContextVar("channel_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[Optional[str]]] = {
    "correlation_id": correlation_id_var,
    "cashout_id": cashout_id_var,
    "user_id": user_id_var,
    "channel_id": channel_id_var,
}

# Attributes every LogRecord has; anything else on a record came from ``extra=``.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"} | set(_CONTEXT_VARS)

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(correlation_id)s %(cashout_id)s] %(message)s"


def current_context() -> dict[str, Optional[str]]:
    return {name: var.get() for name, var in _CONTEXT_VARS.items()}


class CorrelationIDFilter(logging.Filter):
    """Copies the bound cashout context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in current_context().items():
            setattr(record, name, value)
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record. Unset context ids are left out."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update(
            (name, getattr(record, name)) for name in _CONTEXT_VARS if getattr(record, name, None)
        )
        payload.update(
            (key, value) for key, value in record.__dict__.items() if key not in _STANDARD_ATTRS
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Replace the root handlers with context-aware ones.

    Args:
        level: Root level name, case insensitive
        json_format: Emit JSON lines instead of the plain text layout
        log_file: Also write to this file when given
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    for existing in list(root.handlers):
        root.removeHandler(existing)

    formatter = StructuredFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIDFilter())
        root.addHandler(handler)


def generate_correlation_id() -> str:
    return f"cor_{uuid.uuid4().hex[:16]}"


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(None)


class LogContext:
    """Bind context ids for the duration of a block.

    Only the ids that are given are bound, so nested blocks can add a
    cashout or channel id without losing the outer user or correlation id.
    """

    def __init__(
        self,
        correlation_id: Optional[str] = None,
        cashout_id: Optional[str] = None,
        user_id: Optional[str] = None,
        channel_id: Optional[str] = None,
    ):
        self._bindings = {
            "correlation_id": correlation_id,
            "cashout_id": cashout_id,
            "user_id": user_id,
            "channel_id": channel_id,
        }
        self._tokens: list[tuple[ContextVar[Optional[str]], Any]] = []

    def __enter__(self) -> "LogContext":
        for name, value in self._bindings.items():
            if value:
                var = _CONTEXT_VARS[name]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
