"""
log_rotation.py

Rotating JSONL loggers with gzip compression of rotated files.
"""

import gzip
import json
import logging
import os
import shutil
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from relay_trading_bot.utils.system_logger import get_log_dir

# Standardize rotation policy: 10MB, keep 3 backups
MAX_LOG_SIZE = 10 * 1024 * 1024
BACKUP_COUNT = 3

_ANOMALIES_LOGGER_NAME = "relay_trading_bot.anomalies"


def get_anomalies_logger() -> logging.Logger:
    """Return a shared rotating logger for logs/anomalies.log.

    - Rotates at MAX_LOG_SIZE with BACKUP_COUNT, compressing old files
    - UTF-8 encoding; compact message-only lines (JSONL provided by caller)
    - Singleton per process to avoid duplicate handlers
    """
    logger = logging.getLogger(_ANOMALIES_LOGGER_NAME)
    if logger.handlers:
        return logger

    log_dir = get_log_dir()
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        filename=os.path.join(log_dir, "anomalies.log"),
        mode="a",
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
        delay=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.rotator = compress_old_log
    handler.namer = compress_namer

    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def log_anomaly(kind: str, **context: Any) -> None:
    """Write one compact JSON anomaly line with a UTC timestamp."""
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), "type": kind}
    payload.update(context)
    get_anomalies_logger().info(json.dumps(payload, separators=(",", ":"), default=str))


def compress_old_log(source: str, dest: str):
    """
    Compresses a rotated log file to .gz format.

    Args:
        source (str): Source file path
        dest (str): Destination file path
    """
    with open(source, "rb") as f_in, gzip.open(dest + ".gz", "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    os.remove(source)


def compress_namer(default_name: str) -> str:
    """Keep the default rotated name; the .gz suffix is added in `compress_old_log`."""
    return default_name
