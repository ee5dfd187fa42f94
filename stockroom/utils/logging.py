from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, g, has_app_context


LOG_FORMAT = "%(asctime)s [%(levelname)s] [op=%(operator)s] %(name)s: %(message)s"
LOG_FILENAME = "stockroom.log"


class OperatorFilter(logging.Filter):
    """Tag records with the operator acting in the current app context."""

    def filter(self, record: logging.LogRecord) -> bool:
        operator = getattr(g, "operator", None) if has_app_context() else None
        record.operator = operator or "-"
        return True


def _enabled(value: object) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _attach(root: logging.Logger, handler: logging.Handler, operator_filter: OperatorFilter) -> None:
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(operator_filter)
    root.addHandler(handler)


def _log_file(app: Flask) -> Path | None:
    if app.testing or not _enabled(app.config.get("STOCKROOM_LOG_TO_FILE", "true")):
        return None
    log_dir = Path(app.config["STOCKROOM_LOG_DIR"])
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / LOG_FILENAME


def configure_logging(app: Flask) -> Path | None:
    """Send INFO and above to stdout and, outside tests, to a rotating file.

    Returns the log file path, or ``None`` when file logging is off.
    """

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    operator_filter = OperatorFilter()

    if not any(isinstance(handler, logging.StreamHandler) for handler in root.handlers):
        _attach(root, logging.StreamHandler(sys.stdout), operator_filter)

    log_path = _log_file(app)
    if log_path is not None and not any(
        isinstance(handler, RotatingFileHandler) and handler.baseFilename == str(log_path)
        for handler in root.handlers
    ):
        _attach(root, RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5), operator_filter)

    for handler in app.logger.handlers:
        if not any(isinstance(existing, OperatorFilter) for existing in handler.filters):
            handler.addFilter(operator_filter)

    app.logger.setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return log_path
