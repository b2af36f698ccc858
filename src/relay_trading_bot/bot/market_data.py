"""
market_data.py

Price points and the seeded synthetic feed used in paper trading.

The feed only produces data; it never touches engine state. Callers hand
its output to ``TradingEngine.submit`` as ``MarketUpdate`` messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

BASE_PRICES = {"BTCUSDT": 43000.0, "ETHUSDT": 2600.0}
DEFAULT_BASE_PRICE = 0.4
HISTORY_LENGTH = 100
POINT_SPACING = timedelta(minutes=1)


@dataclass(frozen=True)
class PricePoint:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricePoint":
        close = float(data["close"])
        return cls(
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
            open=float(data.get("open", close)),
            high=float(data.get("high", close)),
            low=float(data.get("low", close)),
            close=close,
            volume=float(data.get("volume", 0.0)),
        )


class SyntheticMarketFeed:
    """
    Oscillating random walk around a per-symbol base price.

    Each point moves the base price by a sine trend plus noise scaled by a
    random per-point volatility between 0.5% and 3%; roughly one point in ten
    carries a 3x volume spike.
    """

    def __init__(self, symbols: Sequence[str], seed: Optional[int] = None):
        self.symbols = tuple(symbols)
        self._rng = np.random.default_rng(seed)
        self._step: Dict[str, int] = {}
        self._last: Dict[str, PricePoint] = {}

    @staticmethod
    def base_price(symbol: str) -> float:
        return BASE_PRICES.get(symbol, DEFAULT_BASE_PRICE)

    def _point(self, symbol: str, timestamp: datetime) -> PricePoint:
        step = self._step.get(symbol, 0)
        self._step[symbol] = step + 1
        base = self.base_price(symbol)

        trend = np.sin(step * 0.1) * 0.5
        point_volatility = 0.005 + self._rng.random() * 0.025
        noise = (self._rng.random() - 0.5) * 2
        change = base * point_volatility * (trend + noise * 0.3)
        close = base + change
        spike = 3.0 if self._rng.random() > 0.9 else 1.0
        volume = (800 + self._rng.random() * 2000) * spike

        previous = self._last.get(symbol)
        point = PricePoint(
            timestamp=timestamp,
            open=previous.close if previous else float(close),
            high=float(close + abs(change) * 0.5),
            low=float(close - abs(change) * 0.5),
            close=float(close),
            volume=float(volume),
        )
        self._last[symbol] = point
        return point

    def history(self, symbol: str, now: datetime, length: int = HISTORY_LENGTH) -> List[PricePoint]:
        """``length`` one-minute points ending at ``now``."""
        return [self._point(symbol, now - (length - 1 - i) * POINT_SPACING) for i in range(length)]

    def next_point(self, symbol: str, now: datetime) -> PricePoint:
        return self._point(symbol, now)

    def poll(self, now: datetime) -> Dict[str, List[PricePoint]]:
        """New data for every symbol: full history on first poll, one point after."""
        batch = {}
        for symbol in self.symbols:
            if symbol in self._last:
                batch[symbol] = [self.next_point(symbol, now)]
            else:
                batch[symbol] = self.history(symbol, now)
        return batch


__all__ = ["PricePoint", "SyntheticMarketFeed", "BASE_PRICES", "DEFAULT_BASE_PRICE"]
