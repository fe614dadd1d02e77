"""Logging setup for the chat gateway.

All gateway modules log through the "chat_gateway" logger. It does not
propagate to the root logger, so uvicorn's own handlers never duplicate
gateway records.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import colorlog

LOGGER_NAME = "chat_gateway"

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_COLOR_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s - %(message)s"
_LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

# httpx/httpcore log every upstream request line at INFO; too chatty next to our own attempt logs.
_NOISY_LIBRARY_LOGGERS = ("httpx", "httpcore")


def setup_logging(log_path: str, level_name: str = "INFO") -> logging.Logger:
    """
    Configure the gateway logger.

    Records go to a rotating file (1 MB, 3 backups). If the file cannot be
    opened the logger falls back to stderr and says so once.

    level_name="DISABLE" turns logging off entirely.
    """
    level_name = (level_name or "INFO").upper().strip()
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    handler, open_err = _open_handler(log_path)
    handler.setFormatter(_formatter(use_color=_color_enabled()))
    logger.addHandler(handler)

    for name in _NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if open_err is not None:
        logger.warning("Cannot write log file %r (%s); logging to stderr instead", log_path, open_err)
    return logger


def _open_handler(log_path: str) -> tuple[logging.Handler, OSError | None]:
    try:
        handler = RotatingFileHandler(log_path, maxBytes=1_048_576, backupCount=3, encoding="utf-8")
    except OSError as e:
        return logging.StreamHandler(), e
    return handler, None


def _color_enabled() -> bool:
    return os.getenv("LOG_COLOR", "true").strip().lower() in ("true", "1", "yes", "on")


def _formatter(use_color: bool) -> logging.Formatter:
    if use_color:
        return colorlog.ColoredFormatter(_COLOR_FORMAT, reset=True, log_colors=_LEVEL_COLORS)
    return logging.Formatter(_PLAIN_FORMAT)


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask an API key for logging, keeping only its first and last characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"
