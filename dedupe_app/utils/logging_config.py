# dedupe_app/utils/logging_config.py

"""
Logging setup for the Flask app.

Console and rotating file handlers are attached according to the
``LOG_*`` / ``ENABLE_*_LOGGING`` settings in ``config.monitoring``.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Attributes present on every LogRecord; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def __init__(self, app_name=None, app_version=None):
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if self.app_name:
            payload["app"] = self.app_name
        if self.app_version:
            payload["version"] = self.app_version
        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(config):
    if str(config.get("LOG_FORMAT", "json")).lower() == "json":
        return JsonFormatter(config.get("APP_NAME"), config.get("APP_VERSION"))
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(value):
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(app):
    """
    Configure the app logger and the ``dedupe_app`` package logger.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.
    """
    config = app.config
    level = _resolve_level(config.get("LOG_LEVEL", "INFO"))
    formatter = _build_formatter(config)

    handlers = []
    if config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if config.get("ENABLE_FILE_LOGGING", False):
        log_dir = config.get("LOG_DIR", "logs")
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, config.get("LOG_FILE_NAME", "dedupe.log")),
                maxBytes=int(config.get("LOG_FILE_MAX_BYTES", 10485760)),
                backupCount=int(config.get("LOG_FILE_BACKUP_COUNT", 10)),
                encoding="utf-8",
            )
        except OSError as exc:
            app.logger.warning(f"File logging disabled, could not open log directory {log_dir}: {exc}")
        else:
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

    for logger in (app.logger, logging.getLogger("dedupe_app")):
        for handler in list(logger.handlers):
            if getattr(handler, "_dedupe_managed", False):
                logger.removeHandler(handler)
                handler.close()
        logger.setLevel(level)
        for handler in handlers:
            handler._dedupe_managed = True
            logger.addHandler(handler)

    app.logger.debug(
        f"Logging configured: level={logging.getLevelName(level)}, handlers={len(handlers)}"
    )
    return handlers
