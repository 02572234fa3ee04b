"""File logging in JSON lines with size-based rotation."""

from __future__ import annotations

import json
import logging
import os
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler

LOGGER_NAME = "multinic"
MAX_SIZE_MB = 500
MAX_BACKUPS = 3

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}


class JsonFormatter(logging.Formatter):
    """Format records as JSON objects with level, ts, caller and msg keys."""

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created).astimezone()
        offset = when.strftime("%z")
        ts = when.strftime("%Y-%m-%dT%H:%M:%S.") + f"{when.microsecond // 1000:03d}"
        ts += "Z" if offset == "+0000" else offset
        caller_dir = os.path.basename(os.path.dirname(record.pathname))
        entry = {
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "ts": ts,
            "caller": f"{caller_dir}/{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }
        if record.levelno >= logging.ERROR:
            if record.exc_info:
                entry["stacktrace"] = self.formatException(record.exc_info)
            elif record.stack_info:
                entry["stacktrace"] = record.stack_info
            else:
                entry["stacktrace"] = "".join(traceback.format_stack()[:-1])
        return json.dumps(entry)


def initialize_logger(log_file_path: str) -> logging.Logger:
    """Send the package's debug logging to a rotating JSON file and return its logger."""
    log = logging.getLogger(LOGGER_NAME)
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    handler = RotatingFileHandler(
        log_file_path,
        maxBytes=MAX_SIZE_MB * 1024 * 1024,
        backupCount=MAX_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())
    handler.setLevel(logging.DEBUG)
    log.addHandler(handler)
    log.setLevel(logging.DEBUG)
    log.propagate = False
    return log