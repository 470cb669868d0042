"""Structured logging utilities for the thought server.

Provides:
- loguru sink configuration (text for development, JSON for production)
- Context variables for session and tool correlation, injected into every
  record's ``extra`` by a patcher
- Redaction of sensitive values in extra payloads
"""

from __future__ import annotations

import os
import sys
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

_session_id: ContextVar[str | None] = ContextVar("session_id", default=None)
_tool_name: ContextVar[str | None] = ContextVar("tool_name", default=None)


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"
    TEXT = "text"


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


SENSITIVE_KEYS = frozenset(
    {
        "apikey",
        "password",
        "secret",
        "token",
        "authorization",
        "credential",
        "privatekey",
    }
)

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{extra[context]}<level>{message}</level>"
)


def redact_sensitive(data: dict[str, Any], depth: int = 0) -> dict[str, Any]:
    """Recursively redact sensitive values from a dictionary.

    Args:
        data: Dictionary to redact.
        depth: Current recursion depth (prevents infinite recursion).

    Returns:
        Dictionary with sensitive values replaced with "[REDACTED]".

    """
    if depth > 10:
        return data

    result: dict[str, Any] = {}
    for key, value in data.items():
        key_lower = key.lower().replace("_", "").replace("-", "")
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = redact_sensitive(value, depth + 1)
        elif isinstance(value, list):
            result[key] = [
                redact_sensitive(item, depth + 1) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def _context_prefix() -> str:
    parts = []
    if session_id := _session_id.get():
        parts.append(f"sess={session_id[:8]}")
    if tool_name := _tool_name.get():
        parts.append(f"tool={tool_name}")
    return f"[{' '.join(parts)}] " if parts else ""


def inject_context(record: Record) -> None:
    """Loguru patcher adding session/tool context to the record."""
    extra = record["extra"]
    if session_id := _session_id.get():
        extra["session_id"] = session_id
    if tool_name := _tool_name.get():
        extra["tool"] = tool_name
    redacted = redact_sensitive(dict(extra))
    extra.clear()
    extra.update(redacted)
    extra["context"] = _context_prefix()


def configure_logging(
    level: LogLevel | str | None = None,
    log_format: LogFormat | str | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Configure loguru sinks for the server process.

    Reads configuration from environment variables if not specified:
    - LOG_LEVEL: Minimum log level (DEBUG, INFO, WARNING, ERROR)
    - LOG_FORMAT: Output format (json, text)
    - LOG_FILE: Optional file path for log output

    All console output goes to stderr; stdout belongs to the stdio transport.
    """
    resolved_level = LogLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    resolved_format = LogFormat((log_format or os.getenv("LOG_FORMAT", "text")).lower())
    resolved_file = log_file or os.getenv("LOG_FILE")

    logger.remove()
    logger.configure(patcher=inject_context, extra={"context": ""})

    if resolved_format == LogFormat.JSON:
        logger.add(sys.stderr, format="{message}", level=resolved_level.value, serialize=True)
    else:
        logger.add(sys.stderr, format=TEXT_FORMAT, level=resolved_level.value, colorize=True)

    if resolved_file:
        log_path = Path(resolved_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format="{message}",
            level=resolved_level.value,
            serialize=True,
            rotation="100 MB",
            retention="7 days",
            compression="gz",
        )


@contextmanager
def log_context(
    session_id: str | None = None,
    tool_name: str | None = None,
) -> Generator[None, None, None]:
    """Scope session/tool identifiers to the enclosed log records.

    Example:
        with log_context(session_id="abc123", tool_name="sequentialThought"):
            logger.info("Processing")  # record carries session_id and tool

    """
    tokens = []
    if session_id:
        tokens.append(_session_id.set(session_id))
    if tool_name:
        tokens.append(_tool_name.set(tool_name))
    try:
        yield
    finally:
        for token in reversed(tokens):
            token.var.reset(token)


def get_session_id() -> str | None:
    """Get the current session ID from context."""
    return _session_id.get()


def get_tool_name() -> str | None:
    """Get the current tool name from context."""
    return _tool_name.get()
