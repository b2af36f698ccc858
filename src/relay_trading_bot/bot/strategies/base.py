"""
Base strategy interface for relay trading strategies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

if TYPE_CHECKING:
    from relay_trading_bot.bot.market_data import PricePoint
    from relay_trading_bot.bot.position_manager import Direction


@dataclass(frozen=True)
class Signal:
    """Scored trade idea for one symbol."""

    symbol: str
    direction: Optional["Direction"]
    score: float
    signals: Dict[str, bool] = field(default_factory=dict)
    analysis: Dict[str, Any] = field(default_factory=dict)

    def is_actionable(self, threshold: float) -> bool:
        return self.direction is not None and self.score >= threshold


class BaseStrategy(ABC):
    """
    Abstract base class for all trading strategies.
    """

    @abstractmethod
    def generate_signal(self, symbol: str, points: Sequence["PricePoint"]) -> Signal:
        """
        Given the price history of ``symbol`` (oldest first), return a scored
        :class:`Signal`. Strategies never touch positions or portfolios.
        """
        raise NotImplementedError("Subclasses must implement generate_signal.")
