"""RelayLogger — Singleton JSON logger with console and rotating file output.

Provides a single, project-wide logger instance that writes structured JSON to
stdout and, unless ``LOG_DIR`` is set to an empty string, to
``<LOG_DIR>/tgrelay.log`` (with automatic rotation).
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional


class _JsonFormatter(logging.Formatter):
    """Format every log record as a single-line JSON object.

    Standard fields (timestamp, level, logger, message, module, func_name)
    are always present.  Any *extra* key-value pairs passed via the ``extra``
    parameter of a logging call are merged into the JSON object automatically,
    giving callers an easy way to attach dispatch context such as
    ``update_id``, ``command``, ``kind`` or ``offset``.

    Example::

        logger.info(
            "Handler finished",
            extra={"update_id": 42, "command": "ping", "outcome": "handled"},
        )

    Produces::

        {"timestamp": "…", "level": "INFO", …, "update_id": 42, "command": "ping", …}
    """

    # Keys that belong to the standard LogRecord; everything else is extra.
    _BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None,
    ))) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        """Serialize *record* to a JSON string."""
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func_name": record.funcName,
        }

        for key, value in record.__dict__.items():
            if key not in self._BUILTIN_ATTRS and key not in log_entry:
                log_entry[key] = value

        if record.exc_info:
            log_entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class RelayLogger:
    """Singleton logger with dual handlers (console + rotating file).

    Usage::

        from core.logger import RelayLogger

        logger = RelayLogger.get_logger()
        logger.info("Polling started")

    Child loggers (``logging.getLogger("tgrelay.sdk")``) propagate to the
    same handlers.
    """

    _instance: Optional["RelayLogger"] = None
    _logger: Optional[logging.Logger] = None

    LOGGER_NAME: str = "tgrelay"

    # Rotation settings
    _LOG_FILE: str = "tgrelay.log"
    _MAX_BYTES: int = 5 * 1024 * 1024  # 5 MB
    _BACKUP_COUNT: int = 5

    def __new__(cls, level: Optional[int] = None) -> "RelayLogger":
        """Ensure only one instance is ever created (Singleton)."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._init_logger(level)
        return cls._instance

    # ------------------------------------------------------------------
    # Initialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_level(level: Optional[int]) -> int:
        if level is not None:
            return level
        name = os.environ.get("LOG_LEVEL", "INFO").strip().upper()
        resolved = logging.getLevelName(name)
        return resolved if isinstance(resolved, int) else logging.INFO

    def _init_logger(self, level: Optional[int]) -> None:
        """Create the underlying :class:`logging.Logger` and attach handlers."""
        resolved = self._resolve_level(level)
        self._logger = logging.getLogger(self.LOGGER_NAME)
        self._logger.setLevel(resolved)

        # Avoid duplicate handlers if the module is reloaded.
        if self._logger.handlers:
            return

        formatter = _JsonFormatter()

        # --- Console handler (StreamHandler) ---
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(resolved)
        stream_handler.setFormatter(formatter)
        self._logger.addHandler(stream_handler)

        # --- Rotating file handler ---
        log_dir = os.environ.get("LOG_DIR", "logs")
        if not log_dir:
            return
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, self._LOG_FILE)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=self._MAX_BYTES,
            backupCount=self._BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(resolved)
        file_handler.setFormatter(formatter)
        self._logger.addHandler(file_handler)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def get_logger(level: Optional[int] = None) -> logging.Logger:
        """Return the shared :class:`logging.Logger` instance.

        Creates the singleton on first call; subsequent calls return the
        same logger regardless of the *level* argument.
        """
        instance = RelayLogger(level)
        assert instance._logger is not None  # guaranteed by __new__
        return instance._logger

    def cleanup(self) -> None:
        """Flush and close all handlers attached to the logger."""
        if self._logger is None:
            return
        for handler in list(self._logger.handlers):
            handler.flush()
            handler.close()
            self._logger.removeHandler(handler)
