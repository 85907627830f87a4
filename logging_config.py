from __future__ import annotations

import logging
import re
from logging.config import dictConfig
from typing import Iterable, Sequence

from settings import get_settings

CONTEXT_KEYS = (
    "route",
    "upstream",
    "status",
    "elapsed_ms",
    "reason",
    "field",
    "state",
    "alert_count",
    "topic",
    "model",
    "results",
)

# ThingSpeak, Gemini and OpenCage all take their credentials as query parameters.
_SECRET_PARAM = re.compile(r"((?:api_)?key=)[^&\s'\"]+", re.IGNORECASE)

_configured = False


def scrub(text: str) -> str:
    return _SECRET_PARAM.sub(r"\1***", text)


class ContextualFormatter(logging.Formatter):
    """Append whitelisted ``extra`` values as ``key=value`` pairs, keys scrubbed."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        context_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._context_keys: Sequence[str] = tuple(context_keys or CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        pairs = [
            f"{key}={getattr(record, key)}"
            for key in self._context_keys
            if getattr(record, key, None) is not None
        ]
        if pairs:
            message = f"{message} | {' '.join(pairs)}"
        return scrub(message)


def configure_logging(level: str | int | None = None) -> None:
    """Install the gateway's handlers once per process.

    httpx logs every request URL at INFO, so it is held at WARNING to keep
    the per-request noise (and the query strings) out of the output.
    """
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_settings().log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "context_keys": list(CONTEXT_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            "loggers": {
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True
