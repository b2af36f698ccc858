"""
Position lifecycle management.

Positions move OPEN -> CLOSED exactly once. Closing never edits the open
record: a new, frozen CLOSED record is produced, the owning sub-portfolio is
credited, the risk gate is informed and the trade ledger receives the
record.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from relay_trading_bot.bot.state.portfolio_state import PortfolioAllocator
from relay_trading_bot.config import BotConfig
from relay_trading_bot.ledger.trade_ledger import TradeLedger
from relay_trading_bot.safety.invariants import InvariantViolation
from relay_trading_bot.safety.risk_guard import RiskGate
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("position_manager")


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, Enum):
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    TIME_EXIT = "TIME_EXIT"
    STAGNATION_EXIT = "STAGNATION_EXIT"
    MANUAL_STOP = "MANUAL_STOP"


def new_position_id(symbol: str, now: datetime) -> str:
    """Creation time in milliseconds plus symbol and a random suffix."""
    return f"{int(now.timestamp() * 1000)}_{symbol}_{secrets.token_hex(3)}"


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


@dataclass(frozen=True)
class Position:  # pylint: disable=too-many-instance-attributes
    """An open or closed trade. Instances are immutable."""

    id: str
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    position_size: float
    stop_loss_price: float
    take_profit_price: float
    opened_at: datetime
    portfolio_id: str
    status: PositionStatus = PositionStatus.OPEN
    confidence: float = 0.0
    paper_trading: bool = True
    exit_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    realized_pnl: Optional[float] = None
    pnl_percent: Optional[float] = None
    close_reason: Optional[CloseReason] = None

    def __post_init__(self) -> None:
        if self.position_size <= 0 or self.quantity <= 0 or self.entry_price <= 0:
            raise InvariantViolation(
                "position size, quantity and entry price must be positive",
                position_id=self.id,
                position_size=self.position_size,
            )
        if self.direction is Direction.LONG:
            bracketed = self.stop_loss_price < self.entry_price < self.take_profit_price
        else:
            bracketed = self.take_profit_price < self.entry_price < self.stop_loss_price
        if not bracketed:
            raise InvariantViolation(
                "stop-loss/take-profit do not bracket entry price",
                position_id=self.id,
                direction=self.direction.value,
                entry_price=self.entry_price,
                stop_loss_price=self.stop_loss_price,
                take_profit_price=self.take_profit_price,
            )

    @classmethod
    def open(  # pylint: disable=too-many-arguments
        cls,
        *,
        symbol: str,
        direction: Direction,
        entry_price: float,
        position_size: float,
        portfolio_id: str,
        stop_loss_percent: float,
        take_profit_percent: float,
        opened_at: datetime,
        confidence: float = 0.0,
        paper_trading: bool = True,
        position_id: Optional[str] = None,
    ) -> "Position":
        """Build an OPEN position with direction-correct exit prices."""
        if direction is Direction.LONG:
            stop_loss_price = entry_price * (1 - stop_loss_percent)
            take_profit_price = entry_price * (1 + take_profit_percent)
        else:
            stop_loss_price = entry_price * (1 + stop_loss_percent)
            take_profit_price = entry_price * (1 - take_profit_percent)
        return cls(
            id=position_id or new_position_id(symbol, opened_at),
            symbol=symbol,
            direction=direction,
            entry_price=entry_price,
            quantity=position_size / entry_price,
            position_size=position_size,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            opened_at=opened_at,
            portfolio_id=portfolio_id,
            confidence=confidence,
            paper_trading=paper_trading,
        )

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    def pnl_at(self, price: float) -> float:
        """PnL if the position were closed at ``price``."""
        if self.direction is Direction.LONG:
            return (price - self.entry_price) * self.quantity
        return (self.entry_price - price) * self.quantity

    def closed(self, exit_price: float, reason: CloseReason, at: datetime) -> "Position":
        """Return the CLOSED record for this position."""
        if not self.is_open:
            raise InvariantViolation("position already closed", position_id=self.id)
        realized = self.pnl_at(exit_price)
        return replace(
            self,
            status=PositionStatus.CLOSED,
            exit_price=exit_price,
            closed_at=at,
            realized_pnl=realized,
            pnl_percent=realized / self.position_size * 100.0,
            close_reason=reason,
        )

    def to_record(self) -> Dict[str, Any]:
        """Serialize with the canonical field names."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "direction": self.direction.value,
            "entryPrice": self.entry_price,
            "quantity": self.quantity,
            "positionSize": self.position_size,
            "stopLossPrice": self.stop_loss_price,
            "takeProfitPrice": self.take_profit_price,
            "openedAt": _iso(self.opened_at),
            "portfolioId": self.portfolio_id,
            "status": self.status.value,
            "confidence": self.confidence,
            "paperTrading": self.paper_trading,
            "exitPrice": self.exit_price,
            "closedAt": _iso(self.closed_at),
            "realizedPnL": self.realized_pnl,
            "pnlPercent": self.pnl_percent,
            "closeReason": self.close_reason.value if self.close_reason else None,
        }

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Position":
        closed_at = data.get("closedAt")
        reason = data.get("closeReason")
        return cls(
            id=str(data["id"]),
            symbol=str(data["symbol"]),
            direction=Direction(data["direction"]),
            entry_price=float(data["entryPrice"]),
            quantity=float(data["quantity"]),
            position_size=float(data["positionSize"]),
            stop_loss_price=float(data["stopLossPrice"]),
            take_profit_price=float(data["takeProfitPrice"]),
            opened_at=datetime.fromisoformat(data["openedAt"]),
            portfolio_id=str(data["portfolioId"]),
            status=PositionStatus(data.get("status", PositionStatus.OPEN.value)),
            confidence=float(data.get("confidence", 0.0) or 0.0),
            paper_trading=bool(data.get("paperTrading", True)),
            exit_price=data.get("exitPrice"),
            closed_at=datetime.fromisoformat(closed_at) if closed_at else None,
            realized_pnl=data.get("realizedPnL"),
            pnl_percent=data.get("pnlPercent"),
            close_reason=CloseReason(reason) if reason else None,
        )


class PositionManager:
    """Owns the open-position set and drives every open/close transition."""

    def __init__(
        self,
        config: BotConfig,
        allocator: PortfolioAllocator,
        risk_gate: RiskGate,
        ledger: TradeLedger,
    ):
        self.config = config
        self.allocator = allocator
        self.risk_gate = risk_gate
        self.ledger = ledger
        self.positions: Dict[str, Position] = {}
        self.realized_pnl_total = 0.0

    def open_position(  # pylint: disable=too-many-arguments
        self,
        *,
        symbol: str,
        direction: Direction,
        price: float,
        volatility: float,
        confidence: float,
        now: datetime,
    ) -> Optional[Position]:
        """Open a position if the signal, risk gate and capacity allow it.

        Returns ``None`` when the attempt is skipped; skipped signals are not
        queued.
        """
        if confidence < self.config.min_signal_score:
            logger.debug(
                "Signal for %s below threshold (%.1f < %.1f)", symbol, confidence, self.config.min_signal_score
            )
            return None
        if price <= 0:
            logger.warning("Refusing to open %s at non-positive price %s", symbol, price)
            return None

        allowed, checks = self.risk_gate.evaluate(now, self.allocator.has_available)
        if not allowed:
            if checks.get("availablePortfolio") is False:
                logger.info("No sub-portfolio available; dropping %s signal for %s", direction.value, symbol)
            else:
                logger.info(
                    "Risk gate blocked %s signal for %s: %s",
                    direction.value,
                    symbol,
                    ", ".join(name for name, ok in checks.items() if not ok),
                )
            return None

        portfolio_id = self.allocator.get_available_portfolio()
        if portfolio_id is None:
            logger.info("No sub-portfolio available; dropping %s signal for %s", direction.value, symbol)
            return None

        size = self.allocator.size_position(
            portfolio_id,
            volatility,
            self.config.stop_loss_percent,
            self.config.max_position_percent,
        )
        if size <= 0:
            logger.info("Sized position for %s on %s is zero; skipping", symbol, portfolio_id)
            return None

        position = Position.open(
            symbol=symbol,
            direction=direction,
            entry_price=price,
            position_size=size,
            portfolio_id=portfolio_id,
            stop_loss_percent=self.config.stop_loss_percent,
            take_profit_percent=self.config.take_profit_target,
            opened_at=now,
            confidence=confidence,
            paper_trading=self.config.paper_trading,
        )
        if position.id in self.positions or self.ledger.is_recorded(position.id):
            raise InvariantViolation("duplicate position id", position_id=position.id)

        self.allocator.debit(portfolio_id, size, position.id)
        self.positions[position.id] = position
        self.risk_gate.record_trade_opened(size)
        logger.info(
            "Opened %s %s on %s: entry=%.6f size=%.2f qty=%.8f sl=%.6f tp=%.6f",
            position.direction.value,
            symbol,
            portfolio_id,
            price,
            size,
            position.quantity,
            position.stop_loss_price,
            position.take_profit_price,
            extra={"position_id": position.id},
        )
        return position

    def evaluate_close(self, position: Position, price: float, now: datetime) -> Optional[CloseReason]:
        """First matching close condition: stop-loss, take-profit, time exit, stagnation."""
        if position.direction is Direction.LONG:
            if price <= position.stop_loss_price:
                return CloseReason.STOP_LOSS
            if price >= position.take_profit_price:
                return CloseReason.TAKE_PROFIT
        else:
            if price >= position.stop_loss_price:
                return CloseReason.STOP_LOSS
            if price <= position.take_profit_price:
                return CloseReason.TAKE_PROFIT

        held_for = now - position.opened_at
        if held_for >= self.config.max_hold_duration:
            return CloseReason.TIME_EXIT
        stagnation_after = self.config.stagnation_after
        if stagnation_after is not None and held_for > stagnation_after:
            if position.pnl_at(price) / position.position_size < self.config.stagnation_min_profit:
                return CloseReason.STAGNATION_EXIT
        return None

    def check_exits(self, current_prices: Mapping[str, float], now: datetime) -> List[Position]:
        """Close every open position whose close condition holds at ``current_prices``."""
        closed: List[Position] = []
        for position in list(self.positions.values()):
            price = current_prices.get(position.symbol)
            if price is None or price <= 0:
                # time exits are unconditional; settle at entry like close_all
                if now - position.opened_at >= self.config.max_hold_duration:
                    logger.warning("No price for %s; time exit of %s at entry price", position.symbol, position.id)
                    closed.append(
                        self.close_position(position.id, position.entry_price, CloseReason.TIME_EXIT, now)
                    )
                else:
                    logger.debug("No price for %s; skipping exit check of %s", position.symbol, position.id)
                continue
            reason = self.evaluate_close(position, price, now)
            if reason is not None:
                closed.append(self.close_position(position.id, price, reason, now))
        return closed

    def close_position(self, position_id: str, exit_price: float, reason: CloseReason, now: datetime) -> Position:
        """Transition ``position_id`` to CLOSED and settle it everywhere."""
        position = self.positions.get(position_id)
        if position is None:
            if self.ledger.is_recorded(position_id):
                raise InvariantViolation("double close", position_id=position_id)
            raise InvariantViolation("close of unknown position", position_id=position_id)

        record = position.closed(exit_price, reason, now)
        self.allocator.credit(
            position.portfolio_id,
            position.position_size + record.realized_pnl,
            position.id,
            realized_pnl=record.realized_pnl,
            at=now,
        )
        del self.positions[position_id]
        self.realized_pnl_total += record.realized_pnl
        self.risk_gate.record_trade_closed(record.realized_pnl, now)
        self.ledger.append(record)
        logger.info(
            "Closed %s %s: %s exit=%.6f pnl=%.4f (%.3f%%)",
            record.direction.value,
            record.symbol,
            reason.value,
            exit_price,
            record.realized_pnl,
            record.pnl_percent,
            extra={"position_id": record.id},
        )
        return record

    def close_all(
        self,
        prices: Mapping[str, float],
        now: datetime,
        reason: CloseReason = CloseReason.MANUAL_STOP,
    ) -> List[Position]:
        """Close every open position at its last known price (entry price if none)."""
        closed = []
        for position in list(self.positions.values()):
            price = prices.get(position.symbol) or position.entry_price
            closed.append(self.close_position(position.id, price, reason, now))
        return closed

    def committed_capital(self) -> float:
        return sum(p.position_size for p in self.positions.values())

    def unrealized_pnl(self, prices: Mapping[str, float]) -> float:
        return sum(p.pnl_at(prices[p.symbol]) for p in self.positions.values() if p.symbol in prices)


__all__ = [
    "CloseReason",
    "Direction",
    "Position",
    "PositionManager",
    "PositionStatus",
    "new_position_id",
]
