"""JSON line loggers writing to standard output or an append-only file."""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from datetime import datetime

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "FATAL",
}


class _JSONFormatter(logging.Formatter):
    """One JSON object per record; mapping messages are merged into it."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "time": datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds"),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
        }
        if isinstance(record.msg, Mapping) and not record.args:
            entry.update(record.msg)
        else:
            entry["message"] = record.getMessage()
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def new_logger(directory: str, filename: str) -> logging.Logger:
    """Create a JSON logger on stdout, or appending to ``directory/filename``.

    Raises OSError when the file cannot be opened.
    """
    path = os.path.join(directory or "", filename or "")
    if path:
        handler: logging.Handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JSONFormatter())

    logger = logging.Logger("hitcounter", logging.INFO)
    logger.propagate = False
    logger.addHandler(handler)
    return logger