"""
Loguru setup for the bridge.

stdout carries the MCP stream, so every sink writes to stderr. Libraries
that log through the standard library (pygls, mcp, asyncio) are routed
into loguru with their own levels.
"""

import json
import logging
import os
import sys
import traceback
from contextlib import contextmanager
from typing import Optional

from loguru import logger as _loguru_logger

_LOGGING_CONFIGURED = False
_logger = _loguru_logger

DEVELOPMENT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
)

# stdlib loggers -> level; anything unlisted is held at WARNING by the root logger
STDLIB_LEVELS = {
    "pygls": "WARNING",
    "mcp": "INFO",
    "mcp.server.lowlevel.server": "WARNING",
    "asyncio": "WARNING",
}


def json_stderr_sink(message) -> None:
    """Write each record as one JSON object per line, extras flattened in."""
    record = message.record
    entry = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "logger": record["extra"].get("name", record["name"]),
        "line": record["line"],
        "message": record["message"],
    }
    entry.update((key, value) for key, value in record["extra"].items() if key != "name")

    error = record["exception"]
    if error is not None and error.type is not None:
        entry["exception"] = {
            "type": error.type.__name__,
            "value": str(error.value),
            "traceback": "".join(
                traceback.format_exception(error.type, error.value, error.traceback)
            ),
        }

    sys.stderr.write(json.dumps(entry, default=str) + "\n")
    sys.stderr.flush()


class InterceptHandler(logging.Handler):
    """Forward standard library records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = str(record.levelno)

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.bind(name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(level: Optional[str] = None):
    """
    Install the stderr sink once per process.

    ``level`` defaults to ``$LOG_LEVEL`` (INFO). ``ENV=production`` switches
    to JSON lines.
    """
    global _LOGGING_CONFIGURED, _logger

    if _LOGGING_CONFIGURED:
        return

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    _logger.remove()
    _logger = _logger.patch(
        lambda record: record["extra"].setdefault("name", record["name"])
    )

    if os.getenv("ENV", "development") == "production":
        _logger.add(json_stderr_sink, level=level)
    else:
        _logger.add(sys.stderr, format=DEVELOPMENT_FORMAT, level=level, colorize=True)

    handler = InterceptHandler()
    logging.basicConfig(handlers=[handler], level=logging.WARNING, force=True)
    for name, lib_level in STDLIB_LEVELS.items():
        lib_logger = logging.getLogger(name)
        lib_logger.handlers = [handler]
        lib_logger.setLevel(lib_level)
        lib_logger.propagate = False

    _LOGGING_CONFIGURED = True


@contextmanager
def log_context(**kwargs):
    """
    Attach ``kwargs`` to every record logged inside the block.

    Usage:
        with log_context(tool="get_hover"):
            logger.info("Handling tool call")
    """
    with _logger.contextualize(**kwargs):
        yield


def setup_logger(name: str):
    """Return a loguru logger bound to ``name``, configuring logging on first use."""
    if not _LOGGING_CONFIGURED:
        configure_logging()

    return _logger.bind(name=name)
