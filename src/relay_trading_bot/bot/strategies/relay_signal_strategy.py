"""
relay_signal_strategy.py

Score-based entry signals: RSI extremes, volume spikes and a healthy
volatility band each add points toward a direction.
"""

from __future__ import annotations

from typing import Sequence

from relay_trading_bot.bot.market_data import PricePoint
from relay_trading_bot.bot.position_manager import Direction
from relay_trading_bot.bot.strategies.base import BaseStrategy, Signal
from relay_trading_bot.indicators import calculate_rsi, sma, volatility, volume_ratio
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("relay_signal_strategy")


class RelaySignalStrategy(BaseStrategy):
    """
    Points-based strategy.

    LONG collects the oversold bonus, SHORT the overbought bonus; the volume
    and volatility bonuses count for both. Excess volatility is penalised.
    Ties go to LONG.
    """

    def __init__(
        self,
        rsi_period: int = 14,
        oversold: float = 35.0,
        overbought: float = 65.0,
        high_volume_ratio: float = 1.3,
        volatility_band: tuple = (0.01, 0.05),
        max_volatility: float = 0.08,
    ):
        self.rsi_period = rsi_period
        self.oversold = oversold
        self.overbought = overbought
        self.high_volume_ratio = high_volume_ratio
        self.volatility_band = volatility_band
        self.max_volatility = max_volatility

    def analyze(self, points: Sequence[PricePoint]) -> dict:
        closes = [p.close for p in points]
        volumes = [p.volume for p in points]
        return {
            "currentPrice": closes[-1] if closes else 0.0,
            "rsi": calculate_rsi(closes, self.rsi_period),
            "sma20": sma(closes, 20),
            "volatility": volatility(closes, 20),
            "volumeRatio": volume_ratio(volumes, 20),
        }

    def generate_signal(self, symbol: str, points: Sequence[PricePoint]) -> Signal:
        if not points:
            return Signal(symbol=symbol, direction=None, score=0.0)

        analysis = self.analyze(points)
        low, high = self.volatility_band
        signals = {
            "rsiOversold": analysis["rsi"] < self.oversold,
            "rsiOverbought": analysis["rsi"] > self.overbought,
            "highVolume": analysis["volumeRatio"] > self.high_volume_ratio,
            "goodVolatility": low < analysis["volatility"] < high,
        }

        shared = 0.0
        if signals["highVolume"]:
            shared += 20
        if signals["goodVolatility"]:
            shared += 20
        if analysis["volatility"] > self.max_volatility:
            shared -= 20

        long_score = shared + (30 if signals["rsiOversold"] else 0)
        short_score = shared + (30 if signals["rsiOverbought"] else 0)
        if long_score >= short_score:
            direction, score = Direction.LONG, long_score
        else:
            direction, score = Direction.SHORT, short_score
        score = max(score, 0.0)

        logger.debug(
            "Analysis %s: rsi=%.2f volumeRatio=%.2f volatility=%.2f%% score=%.0f",
            symbol,
            analysis["rsi"],
            analysis["volumeRatio"],
            analysis["volatility"] * 100,
            score,
        )
        return Signal(symbol=symbol, direction=direction, score=score, signals=signals, analysis=analysis)
