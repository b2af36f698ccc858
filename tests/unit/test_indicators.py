"""Tests for the stateless indicator functions."""

import numpy as np
import pytest

from relay_trading_bot.indicators import calculate_rsi, ema, sma, volatility, volume_ratio

# pylint: disable=missing-function-docstring


def test_rsi_neutral_when_history_is_short():
    assert calculate_rsi([100.0] * 14, period=14) == 50.0


def test_rsi_is_100_without_losses():
    prices = list(range(1, 20))
    assert calculate_rsi(prices, period=14) == 100.0


def test_rsi_uses_only_the_trailing_window():
    # big drop outside the last 14 changes must not matter
    prices = [200.0, 50.0] + [50.0 + i for i in range(15)]
    assert calculate_rsi(prices, period=14) == 100.0


def test_rsi_balanced_gains_and_losses():
    prices = [100.0, 101.0] * 8
    assert calculate_rsi(prices, period=14) == pytest.approx(50.0)


def test_rsi_stays_in_range():
    rng = np.random.default_rng(7)
    prices = 100 + np.cumsum(rng.normal(size=200))
    value = calculate_rsi(prices)
    assert 0.0 <= value <= 100.0


def test_sma_short_series_returns_last_price():
    assert sma([1.0, 2.0, 3.0], period=5) == 3.0
    assert sma([], period=5) == 0.0


def test_sma_trailing_mean():
    assert sma([1.0, 2.0, 3.0, 4.0], period=2) == pytest.approx(3.5)


def test_ema_seeded_with_first_price():
    # k = 2 / (3 + 1) = 0.5
    assert ema([10.0, 20.0], period=3) == pytest.approx(15.0)
    assert ema([10.0], period=3) == 10.0


def test_volatility_fallback_and_value():
    assert volatility([1.0, 2.0], period=20) == 0.02
    prices = [99.0, 101.0] * 10
    assert volatility(prices, period=20) == pytest.approx(0.01)


def test_volume_ratio():
    volumes = [100.0] * 19 + [300.0]
    assert volume_ratio(volumes, period=20) == pytest.approx(300.0 / 110.0)
    assert volume_ratio([]) == 1.0
