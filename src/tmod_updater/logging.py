"""
Structured logging for the tModLoader server updater.

stdout carries the upgrade report an operator reads (or a cron mail
captures); diagnostics go to stderr, one JSON object per line, and can be
mirrored to a log file for unattended runs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tmod_updater.errors import ConfigurationError

if TYPE_CHECKING:
    from tmod_updater.config import LoggingConfig

ROOT_LOGGER_NAME = "tmod_updater"

# Used when json_format is disabled
PLAIN_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Attributes every LogRecord carries; anything else came in through extra=
_STANDARD_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """
    Render records as single-line JSON documents.

    Keys: ``timestamp`` (UTC, ISO 8601, taken from the record's creation
    time), ``level``, ``logger``, ``message``, ``exception`` when exc_info is
    set, and every non-None ``extra`` field. Values that are not JSON types
    (paths, enums) are stringified.
    """

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)

        document.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_ATTRS and value is not None
        )
        return json.dumps(document, default=str)


def _make_handlers(
    formatter: logging.Formatter, log_path: str | None
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_path:
        path = Path(log_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(path, encoding="utf-8"))
        except OSError as e:
            raise ConfigurationError(
                f"Cannot open log file {path}: {e}",
                details={"path": str(path), "error": str(e)},
            ) from e
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "WARNING",
    json_format: bool = True,
    log_path: str | None = None,
) -> logging.Logger:
    """
    Configure the ``tmod_updater`` logger.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        config: Logging section of the application config. When given, its
            values win over the keyword arguments.
        level: Level name used without a config.
        json_format: Emit JSON lines (True) or plain text.
        log_path: Also append records to this file; parent directories are
            created.

    Returns:
        The configured package logger.

    Raises:
        ConfigurationError: If the log file cannot be created or opened.

    Example:
        >>> logger = setup_logging(level="INFO")
        >>> logger.info("Resolved release", extra={"version": "2024.5.3.0"})
    """
    if config is not None:
        level = config.level
        json_format = config.json_format
        log_path = config.log_path

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.WARNING

    formatter = JSONFormatter() if json_format else logging.Formatter(PLAIN_LOG_FORMAT)
    handlers = _make_handlers(formatter, log_path)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(numeric_level)
    # Records stop here; the root logger would print them a second time
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger below ``tmod_updater``, adding the prefix if missing."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
