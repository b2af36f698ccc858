"""Risk gate deciding whether a new position may be opened.

Tracks the daily trade budget, the consecutive-loss streak and the
post-loss cooldown. Daily counters reset on calendar-date rollover (UTC
date string comparison); the loss streak and cooldown deliberately carry
across days and only clear on a winning trade or an operator reset.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from relay_trading_bot.config import BotConfig
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("risk_guard")


def _date_key(moment: datetime) -> str:
    return moment.date().isoformat()


def _parse_iso_datetime(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class RiskState:
    """Process-wide risk counters."""

    trading_date: str
    daily_trade_count: int = 0
    consecutive_loss_count: int = 0
    last_loss_at: Optional[datetime] = None
    daily_risk_used: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tradingDate": self.trading_date,
            "dailyTradeCount": self.daily_trade_count,
            "consecutiveLossCount": self.consecutive_loss_count,
            "lastLossTimestamp": self.last_loss_at.isoformat() if self.last_loss_at else None,
            "dailyRiskUsed": self.daily_risk_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskState":
        return cls(
            trading_date=str(data["tradingDate"]),
            daily_trade_count=int(data.get("dailyTradeCount", 0) or 0),
            consecutive_loss_count=int(data.get("consecutiveLossCount", 0) or 0),
            last_loss_at=_parse_iso_datetime(data.get("lastLossTimestamp")),
            daily_risk_used=float(data.get("dailyRiskUsed", 0.0) or 0.0),
        )


class RiskGate:
    """Stateful gate consulted before every open attempt."""

    def __init__(self, config: BotConfig, now: datetime, state: Optional[RiskState] = None):
        self.config = config
        self.state = state or RiskState(trading_date=_date_key(now))

    def rollover(self, now: datetime) -> bool:
        """Reset daily counters when the calendar date changed; return True if it did."""
        today = _date_key(now)
        if today == self.state.trading_date:
            return False
        logger.info(
            "[risk_gate] date rollover %s -> %s (trades=%d, risk_used=%.4f); loss streak kept at %d",
            self.state.trading_date,
            today,
            self.state.daily_trade_count,
            self.state.daily_risk_used,
            self.state.consecutive_loss_count,
        )
        self.state.trading_date = today
        self.state.daily_trade_count = 0
        self.state.daily_risk_used = 0.0
        return True

    def evaluate(
        self,
        now: datetime,
        portfolio_available: Callable[[], bool] | bool = True,
    ) -> Tuple[bool, Dict[str, bool]]:
        """Return ``(allowed, checks)`` without mutating counters other than rollover."""
        self.rollover(now)
        state = self.state
        cooldown_clear = state.last_loss_at is None or (now - state.last_loss_at) > self.config.cooldown_after_loss
        checks = {
            "dailyLimit": state.daily_trade_count < self.config.max_trades_per_day,
            "consecutiveLosses": state.consecutive_loss_count < self.config.max_consecutive_losses,
            "cooldown": cooldown_clear,
        }
        if self.config.max_daily_risk is not None:
            checks["dailyRisk"] = state.daily_risk_used < self.config.max_daily_risk
        if all(checks.values()):
            available = portfolio_available() if callable(portfolio_available) else bool(portfolio_available)
            checks["availablePortfolio"] = available
        return all(checks.values()), checks

    def can_open_position(
        self,
        now: datetime,
        portfolio_available: Callable[[], bool] | bool = True,
    ) -> bool:
        """Single boolean gate: all checks must pass."""
        allowed, checks = self.evaluate(now, portfolio_available)
        if not allowed:
            logger.debug("[risk_gate] blocked: %s", {k: v for k, v in checks.items() if not v})
        return allowed

    def record_trade_opened(self, position_size: float) -> None:
        self.state.daily_trade_count += 1
        self.state.daily_risk_used += position_size / self.config.total_capital

    def record_trade_closed(self, realized_pnl: float, now: datetime) -> None:
        """Update the loss streak: any win clears it, anything else extends it."""
        if realized_pnl > 0:
            if self.state.consecutive_loss_count:
                logger.info(
                    "[risk_gate] loss streak of %d cleared by winning trade",
                    self.state.consecutive_loss_count,
                )
            self.state.consecutive_loss_count = 0
            return
        self.state.consecutive_loss_count += 1
        self.state.last_loss_at = now
        if self.state.consecutive_loss_count >= self.config.max_consecutive_losses:
            logger.warning(
                "[risk_gate] consecutive loss limit reached (%d); new positions blocked",
                self.state.consecutive_loss_count,
            )

    def resume_trading(self) -> None:
        """Operator reset of the loss streak and cooldown."""
        self.state.consecutive_loss_count = 0
        self.state.last_loss_at = None
        logger.info("[risk_gate] loss streak and cooldown cleared; trading may resume")


__all__ = ["RiskGate", "RiskState"]
