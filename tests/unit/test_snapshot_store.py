"""Tests for atomic snapshot persistence."""

from __future__ import annotations

from datetime import timedelta

import pytest

from relay_trading_bot.bot.state.snapshot_store import load_snapshot, save_snapshot
from relay_trading_bot.utils import file_locks
from relay_trading_bot.utils.file_locks import PersistenceError

# pylint: disable=missing-function-docstring


def test_save_then_load(tmp_path, now):
    path = tmp_path / "state" / "state.json"
    blob = {"savedAt": now.isoformat(), "realizedPnL": 1.5}
    save_snapshot(path, blob)
    assert load_snapshot(path, timedelta(hours=24), now=now) == blob
    assert not path.with_suffix(".json.tmp").exists()


def test_missing_or_corrupt_snapshot_returns_none(tmp_path, now):
    path = tmp_path / "state.json"
    assert load_snapshot(path) is None
    path.write_text("{truncated", encoding="utf-8")
    assert load_snapshot(path) is None


def test_stale_snapshot_is_discarded(tmp_path, now):
    path = tmp_path / "state.json"
    save_snapshot(path, {"savedAt": (now - timedelta(hours=25)).isoformat()})
    assert load_snapshot(path, timedelta(hours=24), now=now) is None
    assert load_snapshot(path, None, now=now) is not None


def test_write_failure_raises_after_retries(tmp_path, monkeypatch):
    calls = []

    def broken_replace(src, dst):
        calls.append(dst)
        raise OSError("read-only file system")

    monkeypatch.setattr(file_locks.os, "replace", broken_replace)
    with pytest.raises(PersistenceError):
        save_snapshot(tmp_path / "state.json", {"savedAt": "x"})
    assert len(calls) == file_locks.WRITE_ATTEMPTS
