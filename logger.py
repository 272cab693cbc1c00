"""Logging setup for the Ollama bridge service."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import colorlog

LOGGER_NAME = "ollama_bridge"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
COLOR_LOG_FORMAT = "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s - %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}
LOG_FILE_MAX_BYTES = 1_048_576  # 1 MB
LOG_FILE_BACKUPS = 3


def setup_logging(log_path: str | None = None) -> logging.Logger:
    """
    Configure the `ollama_bridge` logger from LOG_LEVEL and LOG_COLOR.

    LOG_LEVEL=DISABLE silences everything. With `log_path` set, records go to
    a rotating file (1 MB x 3); otherwise, or when the file cannot be opened,
    they go to the console.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = False

    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    handler: logging.Handler
    file_error: OSError | None = None
    to_console = True
    if log_path:
        try:
            handler = RotatingFileHandler(
                log_path,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            )
            to_console = False
        except OSError as e:
            file_error = e
            handler = logging.StreamHandler()
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(_make_formatter(colored=to_console and _color_enabled()))
    logger.addHandler(handler)

    if file_error is not None:
        logger.warning("Cannot open log file %r (%s); logging to console instead", log_path, file_error)
    return logger


def _color_enabled() -> bool:
    return os.getenv("LOG_COLOR", "true").strip().lower() in {"1", "true", "yes", "on"}


def _make_formatter(colored: bool) -> logging.Formatter:
    if colored:
        return colorlog.ColoredFormatter(COLOR_LOG_FORMAT, log_colors=LOG_COLORS, reset=True)
    return logging.Formatter(LOG_FORMAT)


def mask_secret(secret: str | None, head: int = 6, tail: int = 4) -> str:
    """Show only the ends of a credential, e.g. `sk-or-...ijkl`."""
    value = (secret or "").strip()
    if len(value) <= head + tail:
        return "*" * len(value)
    return f"{value[:head]}...{value[-tail:]}"
