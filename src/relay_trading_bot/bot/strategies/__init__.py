"""Signal strategies."""

from relay_trading_bot.bot.strategies.base import BaseStrategy, Signal
from relay_trading_bot.bot.strategies.relay_signal_strategy import RelaySignalStrategy

__all__ = ["BaseStrategy", "RelaySignalStrategy", "Signal"]
