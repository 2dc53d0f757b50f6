"""Structured logging configuration.

Uses standard library logging with a JSON formatter. The run being executed is
bound with `bind_run_context`; `RunContextFilter` stamps its fields (``key``,
``run_id``) onto every record emitted on that thread, so step, dispatcher and
sandbox logs can be correlated without threading identifiers through each call.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, TextIO

_run_context: ContextVar[dict[str, Any]] = ContextVar("run_context", default={})

_STANDARD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_CONTEXT_ATTRS: tuple[str, ...] = ("key", "run_id")

_NOISY_LOGGERS: tuple[str, ...] = ("github", "openai", "httpx", "httpcore", "urllib3")


@contextmanager
def bind_run_context(**fields: Any) -> Iterator[None]:
    """Attach run fields to every log record emitted inside the block."""

    token = _run_context.set({**_run_context.get(), **fields})
    try:
        yield
    finally:
        _run_context.reset(token)


def current_run_context() -> dict[str, Any]:
    return dict(_run_context.get())


class RunContextFilter(logging.Filter):
    """Copy bound run fields onto records that do not already carry them."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (record)
        for name, value in _run_context.get().items():
            if not hasattr(record, name):
                setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object; run fields are promoted to the top level."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_ATTRS:
            if name in record.__dict__:
                payload[name] = record.__dict__[name]

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key not in _CONTEXT_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, fmt: str = "json", stream: TextIO | None = None) -> None:
    """Configure root logging.

    Args:
        level: Root level name (``DEBUG``, ``INFO``...).
        fmt: ``json`` for one JSON object per line, ``text`` for a plain
            human-readable layout.
        stream: Destination; defaults to stderr so command output on stdout
            stays machine-readable.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    elif fmt == "text":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    else:
        raise ValueError(f"Unknown log format: {fmt!r}")
    handler.addFilter(RunContextFilter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
