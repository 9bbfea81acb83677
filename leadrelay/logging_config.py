"""
Logging setup for leadrelay.

Everything logs under the 'leadrelay' logger; module loggers
(leadrelay.engine.ingestion, leadrelay.engine.reminders, ...) propagate into it.

  File     : logs/leadrelay.log, rotated at 5 MB, 3 backups kept
  Console  : stderr, only for long-running processes (`leadrelay serve`)
  Level    : LOG_LEVEL env var, INFO when unset or unknown

    configure_logging()              # every CLI entry
    configure_logging(console=True)  # serve: also mirror to stderr

    @log_call
    def poll(feed_id): ...

Trace lines written by log_call:
    2026-03-01 12:00:01 | DEBUG    | CALL poll | args=('form-guid')
    2026-03-01 12:00:01 | INFO     | OK   poll | 412ms
    2026-03-01 12:00:01 | ERROR    | FAIL poll | LeadSourceError: 401 | 38ms
"""

import functools
import logging
import logging.handlers
import os
import time
from pathlib import Path

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "leadrelay.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3
# Webhook payloads and lead objects can be large
_MAX_ARG_CHARS = 200


def _has_console_handler(logger: logging.Logger) -> bool:
    # RotatingFileHandler subclasses StreamHandler, so compare exact types
    return any(type(h) is logging.StreamHandler for h in logger.handlers)


def configure_logging(console: bool = False) -> logging.Logger:
    """
    Attach the rotating file handler once. console=True adds a stderr handler,
    also when the file handler was already attached by an earlier call.
    """
    logger = logging.getLogger("leadrelay")
    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    if not logger.handlers:
        _LOG_DIR.mkdir(exist_ok=True)
        level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level_name, logging.INFO))

        file_handler = logging.handlers.RotatingFileHandler(
            _LOG_FILE,
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console and not _has_console_handler(logger):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    return logger


def _short_repr(value) -> str:
    text = repr(value)
    if len(text) > _MAX_ARG_CHARS:
        return text[:_MAX_ARG_CHARS] + "..."
    return text


def log_call(func):
    """Trace a call: CALL on entry (DEBUG), OK with timing, FAIL with the error (re-raised)."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger("leadrelay")
        name = func.__name__
        start = time.perf_counter()

        parts = [_short_repr(a) for a in args] + [f"{k}={_short_repr(v)}" for k, v in kwargs.items()]
        logger.debug(f"CALL {name} | args=({', '.join(parts) or '-'})")

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            ms = int((time.perf_counter() - start) * 1000)
            logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
            raise

        ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"OK   {name} | {ms}ms")
        return result

    return wrapper
