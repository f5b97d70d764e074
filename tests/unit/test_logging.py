from __future__ import annotations

import logging
from pathlib import Path

import pytest

from teachable.config import ConfigError, LoggingConfig
from teachable.logging import ConsoleFormatter, configure_logging, level_from_string


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


def test_configure_logging_writes_main_and_debug_files(tmp_path: Path) -> None:
    configure_logging(LoggingConfig(level="debug", debug_file=True), tmp_path, console=False)

    logger = logging.getLogger("teachable.test")
    logger.debug("debug detail")
    logger.info("lifecycle event")
    for handler in logging.getLogger().handlers:
        handler.flush()

    main_log = (tmp_path / "logs" / "teachable.log").read_text(encoding="utf-8")
    debug_log = (tmp_path / "logs" / "debug.log").read_text(encoding="utf-8")
    assert "lifecycle event" in main_log
    assert "debug detail" not in main_log
    assert "debug detail" in debug_log


def test_configure_logging_without_root_dir_skips_files(tmp_path: Path) -> None:
    configure_logging(LoggingConfig(), None, console=True)

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, ConsoleFormatter)
    assert not (tmp_path / "logs").exists()


def test_console_formatter_symbols() -> None:
    formatter = ConsoleFormatter(use_color=False)
    record = logging.LogRecord("teachable", logging.WARNING, __file__, 1, "careful", None, None)

    assert formatter.format(record) == "! careful"

    debug = logging.LogRecord("teachable.capture", logging.DEBUG, __file__, 1, "queued", None, None)
    assert formatter.format(debug) == ". capture: queued"


def test_unknown_level_is_config_error() -> None:
    assert level_from_string(" warn ") == logging.WARNING
    with pytest.raises(ConfigError):
        level_from_string("chatty")
