"""
Structured JSON logging for the billing core.

Every record is one JSON line with a fixed billing envelope::

    ts, level, logger, message,
    correlation_id, operation, actor_id, job_id, entity_type, entity_id,
    <extra fields>, exc_* (when an exception is attached)

Envelope keys are always present and null when unbound.  ``BillingLedger``
binds the operation fields for each call; invoice and draw services fill in
``job_id`` once they have loaded the entity.
"""

__all__ = [
    "ENVELOPE_FIELDS",
    "OperationContext",
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, fields, replace
from datetime import UTC, datetime
from typing import Any

# ---------------------------------------------------------------------------
# Operation context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OperationContext:
    """The envelope values in force for the current operation."""

    correlation_id: str | None = None
    operation: str | None = None
    actor_id: str | None = None
    job_id: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None

    def merged(self, **values: Any) -> "OperationContext":
        """Copy with the non-None ``values`` applied (stringified)."""
        unknown = set(values) - set(ENVELOPE_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
        return replace(self, **{k: str(v) for k, v in values.items() if v is not None})

    def as_dict(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in ENVELOPE_FIELDS}


ENVELOPE_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(OperationContext))

_current: ContextVar[OperationContext] = ContextVar(
    "billing_operation_context", default=OperationContext(),
)


class LogContext:
    """Reads and scopes the operation context (contextvar-backed)."""

    @staticmethod
    def current() -> OperationContext:
        return _current.get()

    @staticmethod
    def set(**values: Any) -> None:
        """Update fields in place; inside ``bind`` the change ends with the block."""
        _current.set(_current.get().merged(**values))

    @staticmethod
    def get_all() -> dict[str, str]:
        """Bound fields only."""
        return {k: v for k, v in _current.get().as_dict().items() if v is not None}

    @staticmethod
    def clear() -> None:
        _current.set(OperationContext())

    @staticmethod
    @contextmanager
    def bind(**values: Any) -> Iterator[OperationContext]:
        """Apply ``values`` for the block and restore the outer context after it."""
        token = _current.set(_current.get().merged(**values))
        try:
            yield _current.get()
        finally:
            _current.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    # UUID, Decimal and anything else without a JSON form
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    out: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        out["exc_code"] = code
        out["exc_retryable"] = bool(getattr(exc, "retryable", False))
    for key, value in vars(exc).items():
        if not key.startswith("_"):
            out[f"exc_{key}"] = value
    return out


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, extra fields, exception fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.current().as_dict())
        for key, value in vars(record).items():
            # extra fields fill unbound envelope keys but never overwrite bound ones
            if key not in _RECORD_ATTRS and payload.get(key) is None:
                payload[key] = value

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            payload.update(_exception_fields(exc))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Logger tree
# ---------------------------------------------------------------------------

ROOT_LOGGER = "billing_kernel"

_state_lock = threading.Lock()
_installed: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Logger ``billing_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Install one structured handler on the ``billing_kernel`` tree.

    Idempotent: later calls return the handler installed by the first.
    """
    global _installed
    with _state_lock:
        if _installed is None:
            installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
            installed.setFormatter(StructuredFormatter())
            root = logging.getLogger(ROOT_LOGGER)
            root.setLevel(level)
            root.propagate = False
            root.addHandler(installed)
            _installed = installed
        return _installed


def reset_logging() -> None:
    """Remove the installed handler (tests only)."""
    global _installed
    with _state_lock:
        root = logging.getLogger(ROOT_LOGGER)
        if _installed is not None:
            root.removeHandler(_installed)
            _installed = None
        root.setLevel(logging.WARNING)
