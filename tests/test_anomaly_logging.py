"""Smoke tests for anomaly logging and rotation settings.

Anomalies are emitted as compact JSONL on a shared rotating logger whose
rotated files are gzip-compressed.
"""

import gzip
import json
import uuid
from logging.handlers import RotatingFileHandler

import pytest

from relay_trading_bot.safety.invariants import InvariantViolation, check_capital_conservation
from relay_trading_bot.utils.log_rotation import (
    BACKUP_COUNT,
    MAX_LOG_SIZE,
    compress_old_log,
    get_anomalies_logger,
    log_anomaly,
)

# pylint: disable=missing-function-docstring


def _anomaly_lines():
    logger = get_anomalies_logger()
    handler = logger.handlers[0]
    handler.flush()
    with open(handler.baseFilename, "r", encoding="utf-8") as handle:
        return [json.loads(line) for line in handle if line.strip()]


def test_anomaly_logger_rotation_settings():
    logger = get_anomalies_logger()
    assert logger is get_anomalies_logger()
    assert len(logger.handlers) == 1
    handler = logger.handlers[0]
    assert isinstance(handler, RotatingFileHandler)
    assert handler.maxBytes == MAX_LOG_SIZE
    assert handler.backupCount == BACKUP_COUNT
    assert handler.rotator is compress_old_log
    assert not logger.propagate


def test_log_anomaly_writes_compact_json():
    marker = uuid.uuid4().hex
    log_anomaly("Ledger Write Failure", trade_id=marker, path="logs/trades.jsonl")
    entry = [line for line in _anomaly_lines() if line.get("trade_id") == marker][-1]
    assert entry["type"] == "Ledger Write Failure"
    assert entry["path"] == "logs/trades.jsonl"
    assert "timestamp" in entry


def test_invariant_violation_is_logged_with_context():
    with pytest.raises(InvariantViolation) as excinfo:
        check_capital_conservation([2500.0, 2500.0], [100.0], 5000.0, 0.0)
    assert excinfo.value.context["drift"] == pytest.approx(100.0)
    entry = _anomaly_lines()[-1]
    assert entry["type"] == "Invariant Violation"
    assert entry["message"] == "capital conservation broken"


def test_compress_old_log(tmp_path):
    source = tmp_path / "anomalies.log.1"
    source.write_text('{"type":"x"}\n', encoding="utf-8")
    compress_old_log(str(source), str(source))
    assert not source.exists()
    with gzip.open(str(source) + ".gz", "rt", encoding="utf-8") as handle:
        assert handle.read() == '{"type":"x"}\n'
