"""Sub-portfolio capital allocation.

Total capital is split evenly into isolated sub-portfolios. Each holds at
most one open position; opening debits the position size and closing
credits size plus realized PnL, exactly once per position id.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from relay_trading_bot.config.constants import HARD_POSITION_CEILING, REFERENCE_STOP_LOSS
from relay_trading_bot.safety.invariants import InvariantViolation
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("portfolio_state")


def _format_currency(amount: float) -> str:
    return f"${amount:,.2f}"


def _portfolio_number(portfolio_id: str) -> int:
    try:
        return int(portfolio_id.rsplit("_", 1)[1])
    except (IndexError, ValueError):
        return math.inf  # type: ignore[return-value]


@dataclass
class SubPortfolio:
    """An isolated capital slice."""

    id: str
    balance: float
    initial_balance: float
    active_position_id: Optional[str] = None
    total_trades: int = 0
    profit_loss: float = 0.0
    last_trade_at: Optional[datetime] = None

    @property
    def active_position_count(self) -> int:
        return 0 if self.active_position_id is None else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "balance": self.balance,
            "initialBalance": self.initial_balance,
            "activePositionCount": self.active_position_count,
            "activePositionId": self.active_position_id,
            "totalTrades": self.total_trades,
            "profitLoss": self.profit_loss,
            "lastTradeTime": self.last_trade_at.isoformat() if self.last_trade_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubPortfolio":
        last_trade = data.get("lastTradeTime")
        return cls(
            id=str(data["id"]),
            balance=float(data["balance"]),
            initial_balance=float(data["initialBalance"]),
            active_position_id=data.get("activePositionId"),
            total_trades=int(data.get("totalTrades", 0) or 0),
            profit_loss=float(data.get("profitLoss", 0.0) or 0.0),
            last_trade_at=datetime.fromisoformat(last_trade) if last_trade else None,
        )


class PortfolioAllocator:
    """Owns the fixed set of sub-portfolios and their debit/credit bookkeeping."""

    def __init__(self, total_capital: float, count: int):
        if count < 1:
            raise ValueError("at least one sub-portfolio is required")
        per_portfolio = total_capital / count
        self.portfolios: Dict[str, SubPortfolio] = {
            f"portfolio_{i}": SubPortfolio(
                id=f"portfolio_{i}",
                balance=per_portfolio,
                initial_balance=per_portfolio,
            )
            for i in range(1, count + 1)
        }
        # position id -> (portfolio id, debited amount); cleared on credit
        self._outstanding: Dict[str, Tuple[str, float]] = {}

    def get(self, portfolio_id: str) -> SubPortfolio:
        try:
            return self.portfolios[portfolio_id]
        except KeyError as exc:
            raise InvariantViolation("unknown sub-portfolio", portfolio_id=portfolio_id) from exc

    def get_available_portfolio(self) -> Optional[str]:
        """Return the idle sub-portfolio with the smallest balance (lowest id on ties)."""
        idle = [p for p in self.portfolios.values() if p.active_position_id is None]
        if not idle:
            return None
        idle.sort(key=lambda p: (p.balance, _portfolio_number(p.id)))
        return idle[0].id

    def has_available(self) -> bool:
        return self.get_available_portfolio() is not None

    def size_position(
        self,
        portfolio_id: str,
        volatility: float,
        stop_loss_percent: float,
        max_position_percent: float,
    ) -> float:
        """Position notional for ``portfolio_id``.

        ``balance * max_position_percent`` scaled by a volatility factor
        ``clamp(1 / volatility, 0.5, 1.5)`` and a stop-loss factor
        ``stop_loss_percent / 0.02``, never above 10% of the balance.
        """
        portfolio = self.get(portfolio_id)
        base_size = portfolio.balance * max_position_percent
        if volatility > 0:
            volatility_adjustment = max(0.5, min(1.5, 1.0 / volatility))
        else:
            volatility_adjustment = 1.5
        risk_adjustment = stop_loss_percent / REFERENCE_STOP_LOSS
        adjusted = base_size * volatility_adjustment * risk_adjustment
        size = min(adjusted, portfolio.balance * HARD_POSITION_CEILING)
        logger.debug(
            "Sizing %s: base=%s vol_adj=%.3f risk_adj=%.3f -> %s",
            portfolio_id,
            _format_currency(base_size),
            volatility_adjustment,
            risk_adjustment,
            _format_currency(size),
        )
        return max(size, 0.0)

    def debit(self, portfolio_id: str, amount: float, position_id: str) -> None:
        """Reserve ``amount`` for ``position_id``; exactly once per position."""
        portfolio = self.get(portfolio_id)
        if position_id in self._outstanding:
            raise InvariantViolation("double debit", position_id=position_id, portfolio_id=portfolio_id)
        if portfolio.active_position_id is not None:
            raise InvariantViolation(
                "sub-portfolio already holds a position",
                portfolio_id=portfolio_id,
                active_position_id=portfolio.active_position_id,
                position_id=position_id,
            )
        if amount <= 0 or amount > portfolio.balance:
            raise InvariantViolation(
                "debit would leave a negative balance",
                portfolio_id=portfolio_id,
                balance=portfolio.balance,
                amount=amount,
            )
        portfolio.balance -= amount
        portfolio.active_position_id = position_id
        portfolio.total_trades += 1
        self._outstanding[position_id] = (portfolio_id, amount)

    def credit(
        self,
        portfolio_id: str,
        amount: float,
        position_id: str,
        *,
        realized_pnl: float = 0.0,
        at: Optional[datetime] = None,
    ) -> None:
        """Return ``amount`` (size + realized PnL) for ``position_id``; exactly once."""
        portfolio = self.get(portfolio_id)
        outstanding = self._outstanding.pop(position_id, None)
        if outstanding is None or outstanding[0] != portfolio_id:
            raise InvariantViolation(
                "credit without matching debit",
                position_id=position_id,
                portfolio_id=portfolio_id,
            )
        new_balance = portfolio.balance + amount
        if new_balance < 0:
            raise InvariantViolation(
                "credit would leave a negative balance",
                portfolio_id=portfolio_id,
                balance=portfolio.balance,
                amount=amount,
            )
        portfolio.balance = new_balance
        portfolio.profit_loss += realized_pnl
        portfolio.active_position_id = None
        portfolio.last_trade_at = at

    def outstanding_debits(self) -> Dict[str, Tuple[str, float]]:
        return dict(self._outstanding)

    def total_balance(self) -> float:
        return math.fsum(p.balance for p in self.portfolios.values())

    def to_list(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self.portfolios.values()]

    @classmethod
    def from_list(
        cls,
        rows: List[Dict[str, Any]],
        open_positions: Dict[str, Tuple[str, float]],
    ) -> "PortfolioAllocator":
        """Rebuild from snapshot rows; ``open_positions`` maps position id to (portfolio id, size)."""
        allocator = cls.__new__(cls)
        allocator.portfolios = {}
        for row in rows:
            portfolio = SubPortfolio.from_dict(row)
            allocator.portfolios[portfolio.id] = portfolio
        allocator._outstanding = dict(open_positions)
        for position_id, (portfolio_id, _size) in open_positions.items():
            owner = allocator.portfolios.get(portfolio_id)
            if owner is None or owner.active_position_id != position_id:
                raise InvariantViolation(
                    "snapshot position/portfolio ownership mismatch",
                    position_id=position_id,
                    portfolio_id=portfolio_id,
                )
        busy = {p.active_position_id for p in allocator.portfolios.values() if p.active_position_id}
        orphaned = busy - set(open_positions)
        if orphaned:
            raise InvariantViolation("sub-portfolio holds unknown position", position_ids=sorted(orphaned))
        return allocator


__all__ = ["PortfolioAllocator", "SubPortfolio"]
