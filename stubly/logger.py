"""
Structured Logging.

Every Stubly logger lives under the ``stubly`` namespace.  Handlers are
attached once to that namespace root and child loggers propagate to it,
so ``get_logger("remote")`` and ``get_logger("stubly.remote")`` name the
same logger.

Records are rendered as one JSON object per line.  The ``event`` extra
is promoted to a top-level key; extras whose names look like secrets
(tokens, passwords, keys) are masked before they reach any handler.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

ROOT_LOGGER_NAME = "stubly"
REDACTED = "***"
_SECRET_MARKERS: tuple[str, ...] = ("token", "password", "secret", "key")

_configure_lock = threading.Lock()


def _is_secret_field(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


class JSONFormatter(logging.Formatter):
    """One JSON object per record: ``timestamp``, ``level``, ``logger``,
    ``event`` (when given), ``message``, ``extra`` and ``exception``."""

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Union[str, dict[str, str]]] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        event = getattr(record, "event", None)
        if event:
            entry["event"] = str(event)
        entry["message"] = record.getMessage()

        extra: dict[str, str] = {}
        for key, value in record.__dict__.items():
            if key in self._STANDARD_ATTRS or key == "event":
                continue
            extra[key] = REDACTED if _is_secret_field(key) else str(value)
        if extra:
            entry["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


def configure_logging(
    level: Union[int, str, None] = None,
    stream: Optional[TextIO] = None,
    log_file: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
) -> logging.Logger:
    """Attach console and rotating-file handlers to the ``stubly`` root.

    Runs once per process; later calls return the configured root
    unchanged.  Unset arguments come from :class:`~stubly.config.AppConfig`.
    An empty ``LOG_FILE`` keeps output on the console only.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _configure_lock:
        if root.handlers:
            return root

        from stubly.config import get_config

        cfg = get_config()
        root.setLevel(level if level is not None else cfg.LOG_LEVEL.upper())
        root.propagate = False
        formatter = JSONFormatter()

        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        root.addHandler(console)

        path = log_file if log_file is not None else cfg.LOG_FILE
        if path:
            try:
                Path(path).parent.mkdir(parents=True, exist_ok=True)
                rotating = RotatingFileHandler(
                    filename=path,
                    maxBytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                    backupCount=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
            except OSError as exc:
                root.warning("Log file %s unavailable, console only: %s", path, exc)
            else:
                rotating.setFormatter(formatter)
                root.addHandler(rotating)
    return root


class StructuredLogger:
    """Thin injectable wrapper around a namespaced ``logging.Logger``.

    Usage::

        log = get_logger("auth")
        log.info("Login succeeded for %s", username, extra={"event": "LOGIN"})
    """

    def __init__(self, name: str = ROOT_LOGGER_NAME) -> None:
        configure_logging()
        if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
            name = f"{ROOT_LOGGER_NAME}.{name}"
        self._logger: logging.Logger = logging.getLogger(name)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def exception(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.exception(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = ROOT_LOGGER_NAME) -> StructuredLogger:
    """Return a :class:`StructuredLogger` under the ``stubly`` namespace."""
    return StructuredLogger(name=name)
