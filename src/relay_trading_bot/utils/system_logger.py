"""Shared system logger utilities."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER_NAME = "relay_trading_bot"
SYSTEM_LOG_NAME = "system.log"
_DEBUG_MODE = os.getenv("DEBUG_MODE", "0") == "1"

_log_dir = Path(os.getenv("RELAY_BOT_LOG_DIR", "logs"))


def get_log_dir() -> Path:
    """Directory holding system.log and anomalies.log."""
    return _log_dir


def set_log_dir(log_dir: str | Path) -> Path:
    """Move every relay_trading_bot log file into ``log_dir``.

    Handlers already attached are re-pointed and reopen lazily on the next
    record; handlers created later pick the directory up from ``get_log_dir``.
    """
    global _log_dir  # pylint: disable=global-statement
    target = Path(log_dir)
    if target == _log_dir:
        return _log_dir
    _log_dir = target
    prefix = ROOT_LOGGER_NAME + "."
    names = [ROOT_LOGGER_NAME] + [n for n in logging.root.manager.loggerDict if n.startswith(prefix)]
    for name in names:
        for handler in logging.getLogger(name).handlers:
            if not isinstance(handler, RotatingFileHandler):
                continue
            handler.acquire()
            try:
                if handler.stream is not None:
                    handler.stream.close()
                    handler.stream = None
                handler.baseFilename = os.path.abspath(target / Path(handler.baseFilename).name)
            finally:
                handler.release()
    target.mkdir(parents=True, exist_ok=True)
    return _log_dir


def get_system_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a configured RotatingFile logger for system diagnostics."""

    logger = logging.getLogger(name)
    if logger.hasHandlers():
        return logger

    log_path = get_log_dir() / SYSTEM_LOG_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=10 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
        delay=True,
    )
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if _DEBUG_MODE else logging.INFO)
    logger.propagate = False
    return logger
