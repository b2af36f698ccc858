"""Shared configuration constants for the relay trading bot."""

from __future__ import annotations

from datetime import timedelta

# --- Targets and exits ---

DEFAULT_DAILY_TARGET_MIN: float = 0.003
DEFAULT_DAILY_TARGET_MAX: float = 0.005
DEFAULT_STOP_LOSS_PERCENT: float = 0.015
DEFAULT_MAX_HOLD = timedelta(hours=24)
DEFAULT_STAGNATION_AFTER = timedelta(hours=4)
DEFAULT_STAGNATION_MIN_PROFIT: float = 0.001

# --- Capital ---

DEFAULT_TOTAL_CAPITAL: float = 10_000.0
DEFAULT_SUB_PORTFOLIOS: int = 4
DEFAULT_MAX_POSITION_PERCENT: float = 0.05
REFERENCE_STOP_LOSS: float = 0.02
HARD_POSITION_CEILING: float = 0.10

# --- Safety limits ---

DEFAULT_MAX_TRADES_PER_DAY: int = 3
DEFAULT_MAX_CONSECUTIVE_LOSSES: int = 3
DEFAULT_COOLDOWN_AFTER_LOSS = timedelta(hours=1)

# --- Signals ---

DEFAULT_MIN_SIGNAL_SCORE: float = 40.0
DEFAULT_SYMBOLS: tuple[str, ...] = ("BTCUSDT", "ETHUSDT", "ADAUSDT")

# --- Relay scheduling ---

VALID_TIME_SLOTS: frozenset[int] = frozenset({0, 6, 12, 18})
DEFAULT_TICK_INTERVAL: float = 30.0
DEFAULT_MAX_RUNTIME = timedelta(hours=5, minutes=57)
DEFAULT_SNAPSHOT_MAX_AGE = timedelta(hours=24)
RUNTIME_WARNING_WINDOW = timedelta(minutes=12)

__all__ = [
    "DEFAULT_COOLDOWN_AFTER_LOSS",
    "DEFAULT_DAILY_TARGET_MAX",
    "DEFAULT_DAILY_TARGET_MIN",
    "DEFAULT_MAX_CONSECUTIVE_LOSSES",
    "DEFAULT_MAX_HOLD",
    "DEFAULT_MAX_POSITION_PERCENT",
    "DEFAULT_MAX_RUNTIME",
    "DEFAULT_MAX_TRADES_PER_DAY",
    "DEFAULT_MIN_SIGNAL_SCORE",
    "DEFAULT_SNAPSHOT_MAX_AGE",
    "DEFAULT_STAGNATION_AFTER",
    "DEFAULT_STAGNATION_MIN_PROFIT",
    "DEFAULT_STOP_LOSS_PERCENT",
    "DEFAULT_SUB_PORTFOLIOS",
    "DEFAULT_SYMBOLS",
    "DEFAULT_TICK_INTERVAL",
    "DEFAULT_TOTAL_CAPITAL",
    "HARD_POSITION_CEILING",
    "REFERENCE_STOP_LOSS",
    "RUNTIME_WARNING_WINDOW",
    "VALID_TIME_SLOTS",
]
