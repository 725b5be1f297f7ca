"""Logging configuration for cdpbrowser.

Two loggers matter: ``cdpbrowser`` carries lifecycle messages (sessions
attached, targets announced, contexts closed) and ``cdpbrowser.protocol``
carries every raw frame (``SEND ►`` / ``◀ RECV``). Frames stay hidden
unless protocol debugging is requested, even at verbose level.

Note: Named logging_setup.py to avoid conflicts with Python's built-in logging module.
"""

import sys
import json
import logging
from typing import Optional, Dict, Any, TextIO
from datetime import datetime

from .config import Configuration

PACKAGE_LOGGER = "cdpbrowser"
PROTOCOL_LOGGER = "cdpbrowser.protocol"
DEFAULT_MAX_FRAME_LENGTH = 2000


def _context_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = getattr(record, "extra", None)
    return fields if isinstance(fields, dict) else {}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Fields passed through log_with_context land under "extra"; DEBUG records
    outside the protocol logger also carry their source location.

    Example output:
        {"timestamp": "2025-10-24T23:30:00.123Z", "level": "DEBUG",
         "logger": "cdpbrowser.connection", "message": "Session attached",
         "extra": {"session_id": "8B1F", "target_id": "PAGE-1"},
         "location": "connection.py:287 in _register_session"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = _context_fields(record)
        if fields:
            entry["extra"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.levelno <= logging.DEBUG and record.name != PROTOCOL_LOGGER:
            entry["location"] = f"{record.filename}:{record.lineno} in {record.funcName}"
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] logger: message (key=value, ...)``"""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _context_fields(record)
        if fields:
            line += " (" + ", ".join(f"{k}={v}" for k, v in fields.items()) + ")"
        return line


class FrameTruncationFilter(logging.Filter):
    """Shortens protocol frames longer than max_length characters.

    Screenshots and trace chunks travel as base64 inside a single frame and
    would otherwise flood the log.
    """

    def __init__(self, max_length: int = DEFAULT_MAX_FRAME_LENGTH):
        super().__init__()
        self.max_length = max_length

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if len(message) > self.max_length:
            record.msg = f"{message[:self.max_length]}... ({len(message)} chars)"
            record.args = ()
        return True


def resolve_level(level: Optional[str] = None, quiet: bool = False, verbose: bool = False) -> int:
    """quiet beats verbose, verbose beats level, INFO otherwise."""
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    if level:
        return getattr(logging, level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(
    config: Optional[Configuration] = None,
    *,
    format_type: Optional[str] = None,
    level: Optional[str] = None,
    quiet: bool = False,
    verbose: bool = False,
    debug_protocol: bool = False,
    max_frame_length: int = DEFAULT_MAX_FRAME_LENGTH,
    stream: Optional[TextIO] = None,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        config: Source of log_level / log_format when not given explicitly
        format_type: "json" or "text"
        level: Level name, overridden by quiet / verbose
        quiet: Errors only
        verbose: DEBUG for cdpbrowser loggers
        debug_protocol: Also log every protocol frame sent and received
        max_frame_length: Frames longer than this are truncated in the log
        stream: Output stream (default: sys.stderr)
    """
    if config is not None:
        format_type = format_type or config.log_format
        level = level or config.log_level
    log_level = resolve_level(level, quiet, verbose)
    formatter = JSONFormatter() if format_type == "json" else TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(logging.DEBUG if debug_protocol else log_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger(PACKAGE_LOGGER).setLevel(log_level)

    protocol_logger = logging.getLogger(PROTOCOL_LOGGER)
    protocol_logger.setLevel(logging.DEBUG if debug_protocol else max(log_level, logging.INFO))
    for existing in [f for f in protocol_logger.filters if isinstance(f, FrameTruncationFilter)]:
        protocol_logger.removeFilter(existing)
    protocol_logger.addFilter(FrameTruncationFilter(max_frame_length))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger, level: int, message: str, **extra_fields
) -> None:
    """Log message with context fields rendered by both formatters.

    Example:
        log_with_context(
            logger, logging.DEBUG, "Session attached",
            session_id="8B1F", target_id="PAGE-1"
        )
    """
    if not logger.isEnabledFor(level):
        return
    if not extra_fields:
        logger.log(level, message)
        return
    record = logger.makeRecord(logger.name, level, "(log_with_context)", 0, message, (), None)
    record.extra = extra_fields
    logger.handle(record)
