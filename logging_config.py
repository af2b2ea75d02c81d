"""
Logging configuration for the sub-agent orchestrator.

Colored console output plus a rotating key=value log file. Records that
carry a ``task_id`` (pass ``extra={"task_id": ...}``) get it as its own
field, so one sub-agent's lifecycle can be grepped out of the file.
Uses only Python stdlib (logging, logging.handlers).

Usage:
    from logging_config import setup_logging, get_logger

    setup_logging()                # call once at startup
    logger = get_logger(__name__)  # per-module logger
    logger.info("Spawned sub-agent", extra={"task_id": task_id})

Environment variables:
    RAIN_SUBAGENTS_LOG_LEVEL - root log level (default: INFO)
                               accepts: DEBUG, INFO, WARNING, ERROR, CRITICAL
"""

import copy
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_LOG_DIR = Path.home() / ".rain-subagents" / "logs"
_LOG_FILE = _LOG_DIR / "subagents.log"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB per file
_BACKUP_COUNT = 3
_CONFIGURED_ATTR = "_subagents_logging_handlers"

# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class _ConsoleFormatter(logging.Formatter):
    """Colored, human-readable formatter for terminal output."""

    _COLORS = {
        logging.DEBUG:    "\033[36m",   # cyan
        logging.INFO:     "\033[32m",   # green
        logging.WARNING:  "\033[33m",   # yellow
        logging.ERROR:    "\033[31m",   # red
        logging.CRITICAL: "\033[1;31m", # bold red
    }
    _RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s [%(name)s]%(task_suffix)s %(message)s",
            datefmt="%H:%M:%S",
        )
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so ANSI codes don't leak into other handlers
        record = copy.copy(record)
        task_id = getattr(record, "task_id", None)
        record.task_suffix = f" ({task_id[:8]})" if task_id else ""
        if self._use_color:
            color = self._COLORS.get(record.levelno, "")
            reset = self._RESET if color else ""
            record.levelname = f"{color}{record.levelname}{reset}"
        return super().format(record)


class KeyValueFormatter(logging.Formatter):
    """Structured key=value formatter for the log file.

    Produces lines like:
        ts=2026-02-22T14:30:00.123Z level=INFO logger=subagents.manager task=3f2a... msg="Spawned sub-agent"
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%dT%H:%M:%S.%f"
        )[:-3] + "Z"

        msg = record.getMessage()
        if record.exc_info:
            if not record.exc_text:
                record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            msg = msg + " | " + record.exc_text
        if record.stack_info:
            msg = msg + " | " + record.stack_info

        # Escape so one record is always one line
        msg = msg.replace("\\", "\\\\").replace('"', '\\"')
        msg = msg.replace("\n", "\\n").replace("\r", "\\r")

        parts = [f"ts={ts}", f"level={record.levelname}", f"logger={record.name}"]
        task_id = getattr(record, "task_id", None)
        if task_id:
            parts.append(f"task={task_id}")
        parts.append(f'msg="{msg}"')
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def setup_logging(level: str | None = None, log_file: str | Path | None = _LOG_FILE) -> None:
    """Initialize logging for the process hosting the sub-agent scheduler.

    Safe to call multiple times; handlers are only added once. Pass
    ``log_file=None`` for console-only logging.
    """
    root = logging.getLogger()
    if getattr(root, _CONFIGURED_ATTR, None):
        return

    level_name = (level or os.environ.get("RAIN_SUBAGENTS_LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    root.setLevel(resolved)

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(resolved)
    console_handler.setFormatter(_ConsoleFormatter(use_color=sys.stderr.isatty()))
    handlers.append(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(log_path),
                maxBytes=_MAX_BYTES,
                backupCount=_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(KeyValueFormatter())
            handlers.append(file_handler)
        except OSError:
            root.warning("Could not create log file at %s, file logging disabled", log_path)

    for handler in handlers:
        root.addHandler(handler)

    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    setattr(root, _CONFIGURED_ATTR, handlers)


def teardown_logging() -> None:
    """Remove the handlers added by setup_logging()."""
    root = logging.getLogger()
    for handler in getattr(root, _CONFIGURED_ATTR, None) or []:
        root.removeHandler(handler)
        handler.close()
    setattr(root, _CONFIGURED_ATTR, None)


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the given name.

    Convention: use ``get_logger(__name__)`` in each module.
    """
    return logging.getLogger(name)
