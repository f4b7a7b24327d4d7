"""
Logging for the event series backend.

Three application loggers share one configuration driven by AppSettings:
``api`` (routes and tenant headers), ``services`` (series, occurrence and
event services) and ``db`` (persistence errors). Development writes
readable lines to stdout; production (EVSERIES_ENV=production) writes one
JSON object per line to a rotating file per logger under EVSERIES_LOG_DIR.

Context passed through ``extra={...}`` is kept as top-level JSON keys.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from backend.src.config.settings import AppSettings, get_settings


LOGGER_NAMES = ("api", "services", "db")
LOGGER_NAMESPACE = "event_series"

CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s - %(message)s"
CONSOLE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Attributes every LogRecord carries; anything else came from ``extra``
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the caller's ``extra`` context merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def _build_handler(name: str, settings: AppSettings) -> logging.Handler:
    if settings.is_production:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{name}.log",
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATE_FORMAT))
    return handler


def configure_logging(settings: Optional[AppSettings] = None) -> Dict[str, logging.Logger]:
    """
    (Re)configure the application loggers.

    Existing handlers are closed and replaced, so calling this again with
    different settings switches output in place for every module that
    already holds one of these loggers.

    Args:
        settings: Settings to apply (defaults to cached settings)

    Returns:
        Mapping of short logger name to Logger
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    loggers = {}
    for name in LOGGER_NAMES:
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
        logger.setLevel(level)
        logger.propagate = False

        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.addHandler(_build_handler(name, settings))

        loggers[name] = logger

    return loggers


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Get one of the application loggers, configuring logging on first use.

    Raises:
        ValueError: If name is not one of LOGGER_NAMES
    """
    global _loggers

    if _loggers is None:
        _loggers = configure_logging()

    if name not in _loggers:
        raise ValueError(
            f"Unknown logger name: {name}. Valid names: {', '.join(LOGGER_NAMES)}"
        )
    return _loggers[name]


def init_logging(settings: Optional[AppSettings] = None) -> Dict[str, logging.Logger]:
    """Configure logging at application startup."""
    global _loggers
    _loggers = configure_logging(settings)
    return _loggers
