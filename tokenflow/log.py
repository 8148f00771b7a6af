"""Logging utilities for tokenflow.

Module loggers live under the ``tokenflow`` namespace (``tokenflow.flow``,
``tokenflow.storage``...). ``get_logger`` attaches a single stderr handler
to the parent logger. Loggers obtained through ``module_logger`` mask any
``access_token=...`` that slips into a message before the record reaches
a handler, so redirect URLs can be logged as they are.
"""

from __future__ import annotations

import logging
import re

from collections.abc import Mapping
from typing import Any


_ROOT = "tokenflow"
_HANDLER_NAME = "tokenflow-stderr"
_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

_TOKEN_IN_TEXT = re.compile(r"(access_token=)([^&#\s]+)")

# Key names whose values are never logged in clear
_SECRET_KEYS = frozenset({"secret", "client_secret", "password", "credential", "redis_url"})

_REDACTED = "[REDACTED]"


def mask_token(token: str | None) -> str:
    """Shorten a token to a recognisable but unusable prefix.

    Parameters
    ----------
    token : str or None
        The raw token.

    Returns
    -------
    str
        The first four characters followed by an ellipsis; short tokens
        are fully redacted and a missing token renders as ``"-"``.
    """
    if not token:
        return "-"
    if len(token) <= 8:
        return _REDACTED
    return f"{token[:4]}..."


def scrub(text: str) -> str:
    """Mask access tokens embedded in a URL, fragment or message."""
    return _TOKEN_IN_TEXT.sub(lambda m: m.group(1) + mask_token(m.group(2)), text)


class TokenScrubFilter(logging.Filter):
    """Rewrite records so rendered messages carry no raw access token."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "access_token=" in message:
            record.msg = scrub(message)
            record.args = None
        return True


_SCRUB_FILTER = TokenScrubFilter()


def module_logger(name: str) -> logging.Logger:
    """Return the ``tokenflow.<name>`` logger with token scrubbing attached.

    The filter sits on the logger itself, so records are masked before
    they reach any handler, including ones the host application installs
    on the root logger.
    """
    logger = logging.getLogger(f"{_ROOT}.{name}")
    if _SCRUB_FILTER not in logger.filters:
        logger.addFilter(_SCRUB_FILTER)
    return logger


def get_logger() -> logging.Logger:
    """Return the ``tokenflow`` parent logger.

    The stderr handler is attached on first use only; a level already set
    by the host application is left alone.
    """
    logger = logging.getLogger(_ROOT)
    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler.addFilter(_SCRUB_FILTER)
        logger.addHandler(handler)
        if logger.level == logging.NOTSET:
            logger.setLevel(logging.WARNING)
    return logger


def set_level(level: int | str) -> None:
    """Set the level of every tokenflow logger.

    Parameters
    ----------
    level : int or str
        A logging level or its name (case-insensitive).

    Raises
    ------
    ValueError
        If ``level`` is not a known level name.
    """
    if isinstance(level, str):
        names = logging.getLevelNamesMapping()
        if level.upper() not in names:
            msg = f"Unknown log level: {level}"
            raise ValueError(msg)
        level = names[level.upper()]
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Log flow initiation, redirect processing and storage access."""
    set_level(logging.DEBUG)


def _is_secret(key: object) -> bool:
    name = str(key).lower()
    return name.endswith("token") or name in _SECRET_KEYS


def redact_sensitive_data(data: Any) -> Any:
    """Return a copy of ``data`` that is safe to log.

    Values under token-like keys (``access_token``, ``id_token``...) are
    masked with ``mask_token``; other secrets are replaced outright.
    Strings anywhere in the structure are scrubbed of embedded
    ``access_token=`` pairs. Mappings, lists and tuples are traversed.
    """
    if isinstance(data, Mapping):
        result: dict[Any, Any] = {}
        for key, value in data.items():
            if not _is_secret(key):
                result[key] = redact_sensitive_data(value)
            elif isinstance(value, str) and str(key).lower().endswith("token"):
                result[key] = mask_token(value)
            else:
                result[key] = _REDACTED
        return result
    if isinstance(data, (list, tuple)):
        return type(data)(redact_sensitive_data(item) for item in data)
    if isinstance(data, str):
        return scrub(data)
    return data
