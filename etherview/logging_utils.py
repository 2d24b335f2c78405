from __future__ import annotations

import logging
import os
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Any, Iterable

import orjson

DEFAULT_FORMAT = "%(asctime)sZ [%(levelname)s] %(name)s:%(lineno)d | %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "aiohttp.access")

_warn_once_lock = threading.Lock()
_warn_once_last_emit: dict[str, float] = {}


class _UTCFormatter(logging.Formatter):
    """Formatter that renders timestamps in UTC."""

    converter = time.gmtime


_LOG_RECORD_RESERVED = set(logging.LogRecord(None, 0, "", 0, "", (), None).__dict__.keys())


class JsonFormatter(logging.Formatter):
    """Structured logging formatter producing JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - short summary sufficient
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .replace(tzinfo=None)
            .isoformat(timespec="milliseconds")
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "msg": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in payload or key.startswith("_") or key in _LOG_RECORD_RESERVED:
                continue
            payload[key] = value

        return orjson.dumps(payload, default=str).decode()


def _parse_log_level(value: str | None) -> int:
    if not value:
        return logging.INFO
    candidate = value.strip().upper()
    if candidate.isdigit():
        return int(candidate)
    level = logging.getLevelName(candidate)
    return level if isinstance(level, int) else logging.INFO


def setup_stdout_logging(
    *,
    level: int | None = None,
    json_output: bool | None = None,
    propagate_off: Iterable[str] = _NOISY_LOGGERS,
) -> logging.StreamHandler:
    """Ensure a single ``StreamHandler`` to ``sys.stdout`` exists on the root logger.

    ``level`` defaults to ``ETHERVIEW_LOG_LEVEL`` and ``json_output`` to
    ``ETHERVIEW_LOG_JSON``.
    """

    if level is None:
        level = _parse_log_level(os.getenv("ETHERVIEW_LOG_LEVEL"))
    if json_output is None:
        json_output = os.getenv("ETHERVIEW_LOG_JSON", "").lower() in {"1", "true", "yes"}

    root = logging.getLogger()
    root.setLevel(level)

    sentinel_key = "_etherview_stdout_handler"
    handler = getattr(root, sentinel_key, None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        root.addHandler(handler)
        setattr(root, sentinel_key, handler)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(_UTCFormatter(DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))

    for name in propagate_off:
        logging.getLogger(name).propagate = False

    return handler


def warn_once_per(
    interval: float,
    key: str,
    message: str,
    *args: Any,
    logger: logging.Logger | None = None,
    **kwargs: Any,
) -> bool:
    """Emit ``logger.warning`` for *message* at most once per *interval* seconds."""

    now = time.monotonic()

    with _warn_once_lock:
        last = _warn_once_last_emit.get(key)
        if last is not None and interval > 0 and now - last < interval:
            return False
        _warn_once_last_emit[key] = now

    target = logger or logging.getLogger()
    target.warning(message, *args, **kwargs)
    return True


def reset_warn_once_cache() -> None:
    """Clear cached emission timestamps for :func:`warn_once_per`."""

    with _warn_once_lock:
        _warn_once_last_emit.clear()


__all__ = [
    "JsonFormatter",
    "setup_stdout_logging",
    "warn_once_per",
    "reset_warn_once_cache",
]
