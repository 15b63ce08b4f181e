"""Console + rotating JSON file logging for the thermal sentinel agent."""

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_LOGGER_NAME = "thermal_sentinel"
_CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, message (+ traceback)."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    keep_files: int = 7,
    console: bool = True,
) -> logging.Logger:
    """
    Attach handlers to the package logger once; module loggers
    (thermal_sentinel.services.*) propagate to it.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    numeric = logging.getLevelName(level.upper())
    logger.setLevel(numeric if isinstance(numeric, int) else logging.INFO)

    handlers = []
    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        handlers.append(stream)
    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.TimedRotatingFileHandler(
            directory / "sentinel.log",
            when="midnight",
            backupCount=keep_files,
            encoding="utf-8",
        )
        rotating.setFormatter(JsonFormatter())
        handlers.append(rotating)

    for handler in handlers:
        logger.addHandler(handler)

    logger.info("logging configured (level=%s, dir=%s)", logging.getLevelName(logger.level), log_dir or "-")
    return logger
