"""
Logging configuration for eval-engine.

Provides structured logging with multiple outputs:
- Colored console output (human-readable)
- Rotating file log (human-readable)
- JSON structured log (machine-parseable)
- Error-only log (quick problem identification)
"""

import json
import logging
import logging.handlers
import sys
import traceback
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "eval_engine"


class StructuredFormatter(logging.Formatter):
    """JSON-structured log formatter for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        if hasattr(record, "extra_data"):
            log_data["data"] = record.extra_data
        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Color a copy; the same record is also written to the file handlers.
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, "")
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(module)s:%(lineno)d | %(message)s"
ERROR_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d\n%(message)s\n---"


def _rotating_handler(
    path: Path, level: int, formatter: logging.Formatter, max_bytes: int, backup_count: int
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    console: bool = True,
    json_logs: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the ``eval_engine`` logger. Safe to call repeatedly; existing
    handlers are replaced.

    Writes eval_engine.log (everything), eval_engine.error.log (ERROR and
    above) and, with ``json_logs``, eval_engine.json.log, whose records carry
    any active LogContext fields under ``data``.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files (default ~/.eval_engine/logs)
        console: Also log to stderr
        json_logs: Enable the JSON structured log
        max_bytes: Max size per log file before rotation
        backup_count: Rotated files to keep

    Returns:
        The configured ``eval_engine`` logger
    """
    log_dir = log_dir or Path.home() / ".eval_engine" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, level.upper()))
    for old in list(root_logger.handlers):
        root_logger.removeHandler(old)
        old.close()

    handlers = []
    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG)
        formatter_cls = ColoredFormatter if sys.stderr.isatty() else logging.Formatter
        console_handler.setFormatter(formatter_cls(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        handlers.append(console_handler)

    handlers.append(
        _rotating_handler(
            log_dir / "eval_engine.log",
            logging.DEBUG,
            logging.Formatter(FILE_FORMAT),
            max_bytes,
            backup_count,
        )
    )
    if json_logs:
        handlers.append(
            _rotating_handler(
                log_dir / "eval_engine.json.log",
                logging.DEBUG,
                StructuredFormatter(),
                max_bytes,
                backup_count,
            )
        )
    handlers.append(
        _rotating_handler(
            log_dir / "eval_engine.error.log",
            logging.ERROR,
            logging.Formatter(ERROR_FORMAT),
            max_bytes,
            backup_count,
        )
    )

    context_filter = ContextFilter()
    for handler in handlers:
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)

    return root_logger


_log_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "eval_engine_log_context", default=None
)


class ContextFilter(logging.Filter):
    """Copies the active LogContext fields onto each record as ``extra_data``."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _log_context.get()
        if context:
            record.extra_data = dict(context)
        return True


class LogContext:
    """Attach structured fields (e.g. evaluator_id) to records logged in a block.

    Context lives in a ContextVar, so concurrent evaluations running as
    separate asyncio tasks each see only their own fields. Nested contexts
    merge, inner keys winning.

    Usage:
        with LogContext(logger, evaluator_id="gate"):
            logger.info("evaluating")
    """

    def __init__(self, logger: logging.Logger, **context: Any):
        self.logger = logger
        self.context = context
        self._token: Optional[Token] = None

    def __enter__(self) -> "LogContext":
        merged = {**(_log_context.get() or {}), **self.context}
        self._token = _log_context.set(merged)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
