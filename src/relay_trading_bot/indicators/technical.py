"""
technical.py

Stateless indicator functions used by the signal strategy.

Short input never raises: every function returns a documented fallback
(neutral RSI, last price, default volatility) that callers must treat as a
low-confidence value.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

NEUTRAL_RSI = 50.0
DEFAULT_VOLATILITY = 0.02


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(list(values), dtype=float)


def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
    """
    Relative Strength Index over the last ``period`` price changes.

    Simple average gain / average loss over the trailing window (no recursive
    smoothing).

    Args:
        prices: Historical close prices, oldest first.
        period: Number of trailing price changes to average.

    Returns:
        float: RSI in [0, 100]; 50.0 when fewer than ``period + 1`` prices exist,
        100.0 when the window holds no losses.
    """
    series = _as_array(prices)
    if period <= 0 or series.size < period + 1:
        return NEUTRAL_RSI

    deltas = np.diff(series[-(period + 1) :])
    avg_gain = float(np.where(deltas > 0, deltas, 0.0).sum()) / period
    avg_loss = float(np.where(deltas < 0, -deltas, 0.0).sum()) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def sma(prices: Sequence[float], period: int) -> float:
    """Arithmetic mean of the trailing ``period`` values; last value when data is short."""
    series = _as_array(prices)
    if series.size == 0:
        return 0.0
    if period <= 0 or series.size < period:
        return float(series[-1])
    return float(series[-period:].mean())


def ema(prices: Sequence[float], period: int) -> float:
    """Exponential moving average seeded with the first price, k = 2 / (period + 1)."""
    series = _as_array(prices)
    if series.size == 0:
        return 0.0
    k = 2.0 / (period + 1)
    value = float(series[0])
    for price in series[1:]:
        value = float(price) * k + value * (1.0 - k)
    return value


def volatility(prices: Sequence[float], period: int = 20) -> float:
    """
    Relative volatility of the trailing window.

    Population standard deviation divided by the window mean (coefficient of
    variation). Returns ``DEFAULT_VOLATILITY`` when fewer than ``period``
    prices exist or the mean is zero.
    """
    series = _as_array(prices)
    if period <= 0 or series.size < period:
        return DEFAULT_VOLATILITY
    window = series[-period:]
    mean = float(window.mean())
    if mean == 0:
        return DEFAULT_VOLATILITY
    return float(window.std(ddof=0)) / mean


def volume_ratio(volumes: Sequence[float], period: int = 20) -> float:
    """Latest volume relative to its trailing average; 1.0 when undefined."""
    series = _as_array(volumes)
    if series.size == 0:
        return 1.0
    average = sma(series, period)
    if average <= 0:
        return 1.0
    return float(series[-1]) / average
