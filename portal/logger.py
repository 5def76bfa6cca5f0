"""
Structured JSON Logging.

Every record is written as one JSON object per line, to stdout and to a
rotating file.  A logger can carry bound context (see
:meth:`StructuredLogger.bind`) that is merged into the ``extra`` of each
record; fields passed on the call itself take precedence.

Credentials never reach a log sink: extra fields named like a token or
password are masked, and ``Bearer`` values inside messages are replaced.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping, Optional, TextIO, Union

REDACTED: str = "***"

# Compared case-insensitively against extra field names.
SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "token",
        "access_token",
        "refresh_token",
        "refreshtoken",
        "password",
        "new_password",
        "newpassword",
        "current_password",
        "currentpassword",
        "authorization",
    }
)

_BEARER_RE: re.Pattern[str] = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")


def redact(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Return *fields* with every credential-bearing value masked."""
    return {
        key: REDACTED if key.lower() in SENSITIVE_FIELDS else value
        for key, value in fields.items()
    }


def scrub_message(message: str) -> str:
    """Mask bearer credentials embedded in free text."""
    return _BEARER_RE.sub(rf"\g<1>{REDACTED}", message)


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class JSONFormatter(logging.Formatter):
    """Renders a ``LogRecord`` as a JSON object.

    Keys: ``timestamp`` (ISO-8601, UTC), ``level``, ``logger_name``,
    ``message``, and when present ``extra`` and ``exception``.  Extra
    values keep their JSON type when they have one.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": scrub_message(record.getMessage()),
        }

        extra = redact(
            {
                key: _json_value(value)
                for key, value in record.__dict__.items()
                if key not in self._STANDARD_ATTRS
            }
        )
        if extra:
            entry["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = scrub_message(record.exc_text)

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable JSON logger.

    Parameters
    ----------
    name:
        Name of the underlying ``logging.Logger``.  Handlers are attached
        only the first time a name is used.
    level:
        Level name or number; defaults to ``LOG_LEVEL`` from the config.
    stream:
        Console stream (``sys.stdout`` by default).
    log_file, max_bytes, backup_count:
        Rotating file settings; default to the ``LOG_*`` config values.
    to_file:
        Attach the rotating file handler.
    context:
        Fields merged into the ``extra`` of every record.

    Usage::

        log = StructuredLogger(name="portal.auth", context={"component": "auth"})
        log.info("User authenticated", extra={"event": "LOGIN"})
    """

    _DEFAULT_LOG_FILE: str = "portal.log"

    def __init__(
        self,
        name: str = "portal",
        level: Union[int, str, None] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
        to_file: bool = True,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        # Deferred so importing the logger never loads settings.
        from portal.config import get_config

        cfg = get_config()
        resolved_level: Union[int, str] = level if level is not None else cfg.LOG_LEVEL.upper()

        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)
        self._context: dict[str, Any] = dict(context or {})

        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setLevel(resolved_level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        if not to_file:
            return

        path = Path(log_file or cfg.LOG_FILE or self._DEFAULT_LOG_FILE)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                filename=str(path),
                maxBytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backupCount=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to console only.", path, exc
            )
            return
        file_handler.setLevel(resolved_level)
        file_handler.setFormatter(formatter)
        self._logger.addHandler(file_handler)

    @property
    def logger(self) -> logging.Logger:
        """The underlying ``logging.Logger``."""
        return self._logger

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a logger sharing this one's handlers with extra bound context."""
        child = object.__new__(StructuredLogger)
        child._logger = self._logger
        child._context = {**self._context, **fields}
        return child

    # -- Delegates --------------------------------------------------------

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, args, kwargs)

    def _log(self, level: int, msg: str, args: tuple[object, ...], kwargs: dict[str, Any]) -> None:
        if self._context or "extra" in kwargs:
            kwargs["extra"] = {**self._context, **(kwargs.get("extra") or {})}
        self._logger.log(level, msg, *args, **kwargs)


def get_logger(name: str = "portal", **context: Any) -> StructuredLogger:
    """Build a ``StructuredLogger`` for *name* with the configured defaults.

    Keyword arguments become bound context.
    """
    return StructuredLogger(name=name, context=context)
