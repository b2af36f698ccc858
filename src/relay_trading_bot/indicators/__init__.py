"""Technical indicators used by the signal strategy."""

from .technical import calculate_rsi, ema, sma, volatility, volume_ratio

__all__ = ["calculate_rsi", "ema", "sma", "volatility", "volume_ratio"]
