"""Shared fixtures: isolated log directory, fixed clock and config factory."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone

import pytest

# Module-level loggers resolve their directory at import time.
os.environ.setdefault("RELAY_BOT_LOG_DIR", tempfile.mkdtemp(prefix="relay-bot-test-logs-"))

from relay_trading_bot.config import BotConfig  # noqa: E402  pylint: disable=wrong-import-position

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture(name="now")
def fixture_now():
    return NOW


@pytest.fixture(name="make_config")
def fixture_make_config(tmp_path):
    def _make(**overrides) -> BotConfig:
        overrides.setdefault("log_dir", tmp_path / "logs")
        overrides.setdefault("state_file", tmp_path / "state.json")
        return BotConfig(**overrides)

    return _make


@pytest.fixture(name="config")
def fixture_config(make_config):
    return make_config()
