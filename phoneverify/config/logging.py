"""Structured logging configuration and initialization."""

from __future__ import annotations

import contextlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final, cast

if sys.version_info >= (3, 12):
    from typing import override
else:
    from typing_extensions import override

from phoneverify.verification.phone import mask_phone_number

if TYPE_CHECKING:
    from collections.abc import Iterator

    from phoneverify.config.settings import LogLevel

current_attempt_id: ContextVar[str | None] = ContextVar("attempt_id", default=None)
current_view_id: ContextVar[str | None] = ContextVar("view_id", default=None)

_PHONE_KEYS: Final = frozenset({"phone", "phone_number"})
_SECRET_KEYS: Final = frozenset(
    {"token", "assertion_token", "challenge_token", "session_handle"},
)
_REDACTED: Final = "[redacted]"

_STANDARD_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    },
)


class JSONFormatter(logging.Formatter):
    """Formatter that renders each record as single-line JSON."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a JSON string."""
        log_data: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "attempt_id": current_attempt_id.get(),
            "view_id": current_view_id.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_trace"] = self.formatStack(record.stack_info)

        protected_attrs = set(log_data.keys())
        record_dict = cast("dict[str, object]", record.__dict__)
        for key, value in record_dict.items():
            if key in _STANDARD_RECORD_ATTRS or key.startswith("_"):
                continue
            if key in protected_attrs:
                log_data[f"extra_{key}"] = value
                continue
            log_data[key] = _scrub(key, value)

        return json.dumps(log_data, default=str)


def _scrub(key: str, value: object) -> object:
    if key in _SECRET_KEYS and value is not None:
        return _REDACTED
    if key in _PHONE_KEYS and isinstance(value, str):
        return mask_phone_number(value)
    return value


@contextlib.contextmanager
def attempt_logging_context(
    attempt_id: str,
    view_id: str | None = None,
) -> Iterator[None]:
    """Tag log lines emitted inside the block with the attempt and view ids."""
    attempt_token = current_attempt_id.set(attempt_id)
    view_token = current_view_id.set(view_id)
    try:
        yield
    finally:
        current_view_id.reset(view_token)
        current_attempt_id.reset(attempt_token)


def init_logging(level: LogLevel) -> None:
    """Initialize structured logging for the service."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Keep pytest capture handlers so caplog still works.
    for existing in root_logger.handlers[:]:
        if type(existing).__name__ != "LogCaptureHandler":
            root_logger.removeHandler(existing)

    root_logger.addHandler(handler)
