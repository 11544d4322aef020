from __future__ import annotations

import os

from loguru import logger

_SENSITIVE = ("token", "secret", "password", "api_key", "private_key", "dsn")
_MIN_REDACT_LEN = 6


def _redact(message: str) -> str:
    """Redact sensitive env values from log messages."""
    for name, value in os.environ.items():
        # short values would blank out unrelated numbers in the message
        if not value or len(value) < _MIN_REDACT_LEN:
            continue
        lowered = name.lower()
        if any(token in lowered for token in _SENSITIVE):
            message = message.replace(value, "[REDACTED]")
    return message


def _sink(message: str) -> None:
    print(_redact(message), end="")


_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | {message} | {extra}"
)


def init_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO")
    json_logs = os.getenv("JSON_LOGS", "0") in {"1", "true", "True"}
    logger.remove()
    logger.add(_sink, level=level, serialize=json_logs, format=_FORMAT)
