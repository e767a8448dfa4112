"""
Structured JSON logging for the giving kernel.

One JSON object per line.  Every line carries the correlation fields bound
through ``LogContext`` (the worker tick, the transaction, gateway session,
plan and payer being handled), then the record's ``extra`` keys.  Giving
errors logged with ``exc_info`` contribute their ``code`` and their
structured attributes as ``exc_*`` keys.
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Iterator, Mapping
from uuid import UUID

_LOGGER_PREFIX = "giving_kernel"


class LogContext:
    """Correlation fields for the unit of work in progress.

    Held in a single ContextVar, so worker threads and asyncio tasks each
    see their own copy.
    """

    FIELDS = (
        "correlation_id",
        "transaction_id",
        "session_id",
        "plan_id",
        "payer_id",
        "actor_id",
    )

    _fields: ContextVar[Mapping[str, str]] = ContextVar("giving_log_context", default={})

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields for the rest of the current context; None leaves a field as is."""
        unknown = set(fields) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"unknown log context fields: {sorted(unknown)}")
        cls._fields.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the ``with`` block, then restore the outer values.

        UUIDs may be passed directly.  Unknown names and None values are
        skipped.
        """
        known = {k: v for k, v in fields.items() if k in cls.FIELDS}
        token = cls._fields.set(cls._merged(known))
        try:
            yield cls
        finally:
            cls._fields.reset(token)

    @classmethod
    def _merged(cls, fields: Mapping[str, Any]) -> dict[str, str]:
        merged = dict(cls._fields.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged


# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.threadName != "MainThread":
            payload["thread"] = record.threadName
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _RECORD_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # e.g. DuplicateSettlementError.existing_gateway_tx_id
        for name, val in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = val
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the giving_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Send giving_kernel logs to ``handler`` (stderr by default) as JSON.

    Idempotent: later calls are no-ops until ``reset_logging()``.  ``level``
    may be a number or a name such as ``"DEBUG"``.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False

    out = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    out.setFormatter(StructuredFormatter())
    root.addHandler(out)


def reset_logging() -> None:
    """Undo ``configure_logging``. Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    root.propagate = True
