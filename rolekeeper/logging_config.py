"""Structured logging configuration for RoleKeeper.

Environment variables:
    RK_LOG_FORMAT  -- ``json`` for structured JSON output, ``text`` for human-readable (default).
    RK_LOG_LEVEL   -- Python log level name (default: ``INFO``).
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import Any

#: LogRecord attributes promoted to top-level JSON fields when present.
STRUCTURED_FIELDS: tuple[str, ...] = (
    "role_id",
    "user_id",
    "action",
    "actor",
    "chain",
)


def _is_json_mode() -> bool:
    """Return True when structured JSON logging is requested."""
    return os.environ.get("RK_LOG_FORMAT", "text").lower() == "json"


def _get_log_level() -> int:
    """Return the numeric log level from RK_LOG_LEVEL (default INFO)."""
    name = os.environ.get("RK_LOG_LEVEL", "INFO").upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


class StructuredJsonFormatter(logging.Formatter):
    """JSON formatter that emits one JSON object per log line.

    Uses ``pythonjsonlogger`` under the hood but injects the RoleKeeper
    specific fields (role_id, user_id, action, actor, chain) when they are
    present on the LogRecord.
    """

    def __init__(self) -> None:
        super().__init__()
        from pythonjsonlogger.json import JsonFormatter

        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        extras: dict[str, Any] = {}
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                extras[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            extras["traceback"] = traceback.format_exception(*record.exc_info)
            # Keep the inner formatter from appending the traceback as text.
            record.exc_info = None
            record.exc_text = None

        for k, v in extras.items():
            setattr(record, k, v)

        return self._inner.format(record)


def setup_logging() -> None:
    """Configure the root logger according to RK_LOG_FORMAT and RK_LOG_LEVEL."""
    level = _get_log_level()
    root = logging.getLogger()
    root.setLevel(level)

    # Remove any existing handlers so we don't double-log during tests.
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if _is_json_mode():
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root.addHandler(handler)


def log_startup_info(db_path: str) -> None:
    """Emit a structured startup log line with the active configuration."""
    import rolekeeper
    from rolekeeper.config import settings

    logger = logging.getLogger("rolekeeper")
    logger.info(
        "RoleKeeper started",
        extra={
            "version": rolekeeper.__version__,
            "db_path": db_path,
            "max_role_depth": settings.max_role_depth,
            "audit_enabled": settings.audit_enabled,
            "log_format": settings.log_format,
            "log_level": settings.log_level,
        },
    )
