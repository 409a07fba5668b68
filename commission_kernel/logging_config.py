"""
Structured JSON logging for commission runs.

Every line is one JSON object: ``ts``, ``level``, ``logger`` and
``message`` (a snake_case event name such as ``run_locked`` or
``credit_applied``), followed by whichever of ``run_id`` / ``event_id`` /
``rule_id`` / ``actor_id`` / ``correlation_id`` are bound for the current
thread, followed by the ``extra`` payload of the call.

Amounts are logged as strings.  A ``DecimalValue`` or ``Decimal`` that
slips into a payload unconverted is written through its exact decimal
text, never as a float.  When a ``CommissionKernelError`` is logged with
``exc_info`` its ``code`` and public attributes (``run_id``, ``status``,
``credit_id``...) are copied into ``exc_*`` fields so replay and lock
failures can be filtered without parsing tracebacks.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_CONTEXT_FIELDS = ("correlation_id", "run_id", "event_id", "actor_id", "rule_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"commission_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Identifiers of the run, event and rule currently being processed.

    Values live in context variables, so each executor worker thread
    carries its own ``event_id`` while sharing nothing with its siblings.
    """

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Bind fields for the rest of the current context; ``None`` is skipped."""
        for name, value in fields.items():
            if name not in _context_vars:
                raise TypeError(f"Unknown log context field: {name}")
            if value is not None:
                _context_vars[name].set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """
        Scope fields to a ``with`` block, e.g. one event inside a batch.

        Unknown names are ignored so callers can pass a wider dict.
        """
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "to_decimal"):
        return str(obj.to_decimal())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; bound context wins over ``extra`` keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_NAMESPACE = "commission_kernel"

_configured = False
_setup_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """``get_logger("batch.executor")`` -> ``commission_kernel.batch.executor``."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install one JSON handler on the ``commission_kernel`` logger.

    Engines, batch services and exporters all log below that namespace.
    Only the first call has an effect until ``reset_logging`` runs; the
    CLI and the test suite may both try to configure logging.
    """
    global _configured
    with _setup_lock:
        if _configured:
            return
        _configured = True

    namespace = logging.getLogger(_NAMESPACE)
    namespace.setLevel(level)
    namespace.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    namespace.addHandler(target)


def reset_logging() -> None:
    """Drop installed handlers and allow ``configure_logging`` again (tests)."""
    global _configured
    with _setup_lock:
        _configured = False
    namespace = logging.getLogger(_NAMESPACE)
    namespace.handlers.clear()
    namespace.setLevel(logging.WARNING)
