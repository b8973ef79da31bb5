"""structlog setup: events are forwarded to stdlib logging and written as JSON lines."""

from __future__ import annotations

import logging
import logging.config
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from .config.loader import project_root

LOGGER_NAME = "page_sentinel"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

_configured = False


def log_dir() -> Path:
    return project_root() / "logs"


def monitor_log_path() -> Path:
    return log_dir() / "monitor.log"


def source_log_path(source_id: str) -> Path:
    return log_dir() / "sources" / f"{source_id}.log"


def _rotating(filename: Path, level: str) -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "filename": str(filename),
        "maxBytes": MAX_LOG_BYTES,
        "backupCount": LOG_BACKUPS,
        "encoding": "utf-8",
        "formatter": "json",
    }


def _dict_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
            }
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            "monitor_file": _rotating(monitor_log_path(), "INFO"),
            "error_file": _rotating(log_dir() / "error.log", "ERROR"),
        },
        "loggers": {
            LOGGER_NAME: {
                "handlers": ["console", "monitor_file", "error_file"],
                "level": level,
                "propagate": False,
            },
            # APScheduler chatters at INFO on every job run
            "apscheduler": {
                "handlers": ["console", "error_file"],
                "level": "WARNING",
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.stdlib.BoundLogger:
    """Install handlers once per process and return the application logger."""

    global _configured
    if not _configured:
        (log_dir() / "sources").mkdir(parents=True, exist_ok=True)
        logging.config.dictConfig(_dict_config("DEBUG" if verbose else "INFO"))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", key="ts"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                # event dict -> ``extra``; the JSON formatter renders the fields
                structlog.stdlib.render_to_log_kwargs,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _configured = True
    return structlog.get_logger(LOGGER_NAME)


def source_logger(source_id: str, verbose: bool = False) -> structlog.stdlib.BoundLogger:
    """Logger bound to ``source_id`` whose events also land in ``logs/sources/<id>.log``."""

    configure_logging(verbose)
    path = source_log_path(source_id)
    name = f"{LOGGER_NAME}.source.{source_id}"
    stdlib_logger = logging.getLogger(name)
    attached = {getattr(handler, "baseFilename", None) for handler in stdlib_logger.handlers}
    if str(path) not in attached:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
        handler.setLevel(logging.INFO)
        parent_handlers = logging.getLogger(LOGGER_NAME).handlers
        if parent_handlers:
            handler.setFormatter(parent_handlers[0].formatter)
        stdlib_logger.addHandler(handler)
    return structlog.get_logger(name).bind(source_id=source_id)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


def available_source_logs() -> list[Path]:
    directory = log_dir() / "sources"
    if not directory.is_dir():
        return []
    return sorted(directory.glob("*.log"))


__all__ = [
    "LOGGER_NAME",
    "available_source_logs",
    "configure_logging",
    "log_dir",
    "monitor_log_path",
    "source_log_path",
    "source_logger",
    "tail_log",
]
