"""Logging setup for hosts embedding a teachable session."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import ConfigError, LoggingConfig

FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAIN_LOG_NAME = "teachable.log"
DEBUG_LOG_NAME = "debug.log"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ConsoleFormatter(logging.Formatter):
    """Level-symbol formatter; debug records also name their module."""

    SYMBOLS: dict[int, tuple[str, str]] = {
        logging.DEBUG: (".", "\x1b[2m"),
        logging.INFO: ("-", "\x1b[32m"),
        logging.WARNING: ("!", "\x1b[33m"),
        logging.ERROR: ("E", "\x1b[31m"),
        logging.CRITICAL: ("E", "\x1b[1;31m"),
    }

    RESET = "\x1b[0m"

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        symbol, color = self.SYMBOLS.get(record.levelno, ("?", ""))
        message = super().format(record)
        if record.levelno <= logging.DEBUG:
            message = f"{record.name.rsplit('.', 1)[-1]}: {message}"
        if not self.use_color:
            return f"{symbol} {message}"
        return f"{color}{symbol} {message}{self.RESET}"


def configure_logging(
    logging_config: LoggingConfig,
    root_dir: Path | None,
    *,
    console: bool = True,
) -> None:
    """Initialise logging handlers.

    With ``root_dir`` set to None no file handlers are created, which keeps
    one-shot CLI runs from touching the filesystem.
    """

    level = level_from_string(logging_config.level)
    handlers: list[logging.Handler] = []

    if root_dir is not None:
        log_dir = (root_dir / "logs").expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_build_file_handler(log_dir / MAIN_LOG_NAME, level=logging.INFO))
        if logging_config.debug_file:
            handlers.append(_build_file_handler(log_dir / DEBUG_LOG_NAME, level=logging.DEBUG))

    if console:
        handlers.append(_build_console_handler())

    logging.basicConfig(level=level, handlers=handlers, force=True)


def level_from_string(level: str) -> int:
    normalized = level.strip().upper()
    try:
        return LEVELS[normalized]
    except KeyError as exc:
        raise ConfigError(f"Unknown log level: {level}") from exc


def _build_file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=5)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def _build_console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(ConsoleFormatter(_stream_supports_color(handler)))
    return handler


def _stream_supports_color(handler: logging.Handler) -> bool:
    stream = getattr(handler, "stream", None)
    return bool(getattr(stream, "isatty", lambda: False)())


__all__ = ["ConsoleFormatter", "configure_logging", "level_from_string"]
