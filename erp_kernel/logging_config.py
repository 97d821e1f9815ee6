"""
Module: erp_kernel.logging_config
Responsibility: One JSON object per log record for every erp_kernel,
    erp_engines and erp_modules logger, with request-scoped context
    (company, document, actor) carried through ContextVars.
Architecture position: Kernel.  Imported by every layer; imports nothing
    from the project.

Usage:
    logger = get_logger("engines.numbering")
    with LogContext.bind(company_id="acme", document_id=doc.id):
        logger.info("document_number_assigned", extra={"number": number})
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID

_LOGGER_PREFIX = "erp_kernel"


class LogContext:
    """ContextVar-backed fields added to every record in the current context."""

    FIELDS: ClassVar[tuple[str, ...]] = (
        "correlation_id",
        "company_id",
        "document_id",
        "actor_id",
    )

    _vars: ClassVar[dict[str, ContextVar[str | None]]] = {
        name: ContextVar(f"erp_log_{name}", default=None) for name in FIELDS
    }

    @classmethod
    def _var(cls, name: str) -> ContextVar[str | None]:
        try:
            return cls._vars[name]
        except KeyError:
            raise TypeError(f"Unknown log context field: {name!r}") from None

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields; ``None`` values leave a field untouched."""
        for name, value in fields.items():
            var = cls._var(name)
            if value is not None:
                var.set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Every field that currently has a value."""
        return {
            name: value
            for name, var in cls._vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens = []
        for name, value in fields.items():
            var = cls._var(name)
            if value is not None:
                tokens.append((var, var.set(str(value))))
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}

# Exception attributes that are reported under fixed keys or not at all.
_EXCEPTION_SKIP = frozenset({"args", "code", "retryable"})


def _to_json(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """
    Renders a record as a single JSON line.

    Keys, in order: ``ts``, ``level``, ``logger``, ``message``, the bound
    LogContext fields, the record's ``extra`` fields, and for records with
    ``exc_info`` the ``exc_*`` fields plus ``traceback``.  Typed engine
    errors contribute ``exc_code``, ``exc_retryable`` and one
    ``exc_<attribute>`` per public attribute.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
            fields["exc_retryable"] = bool(getattr(exc, "retryable", False))
        for key, value in vars(exc).items():
            if not key.startswith("_") and key not in _EXCEPTION_SKIP:
                fields[f"exc_{key}"] = value
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger ``erp_kernel.<name>``; every project logger lives under it."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``erp_kernel`` logger.

    Only the first call has any effect until ``reset_logging`` runs.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(_LOGGER_PREFIX)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(handler)


def reset_logging() -> None:
    """Remove the handler and forget the configuration. Tests only."""
    global _configured
    with _lock:
        _configured = False
        root = logging.getLogger(_LOGGER_PREFIX)
        for handler in list(root.handlers):
            root.removeHandler(handler)
        root.setLevel(logging.WARNING)
