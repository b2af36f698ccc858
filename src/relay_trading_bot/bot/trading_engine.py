"""
Trading engine: the single owner of positions, sub-portfolios, risk
counters and price history.

Other threads (market data callbacks, operator commands) never mutate state
directly; they ``submit`` messages to the inbox. ``tick`` drains the inbox
and applies every transition on the calling thread, one tick at a time.
"""

from __future__ import annotations

import math
import queue
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple, Union

from relay_trading_bot.bot.market_data import PricePoint
from relay_trading_bot.bot.position_manager import CloseReason, Position, PositionManager
from relay_trading_bot.bot.state.portfolio_state import PortfolioAllocator
from relay_trading_bot.bot.strategies import BaseStrategy, RelaySignalStrategy
from relay_trading_bot.config import BotConfig, get_mode_label
from relay_trading_bot.ledger.trade_ledger import TradeLedger
from relay_trading_bot.safety.invariants import InvariantViolation, check_capital_conservation
from relay_trading_bot.safety.risk_guard import RiskGate, RiskState
from relay_trading_bot.utils.log_rotation import log_anomaly
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("trading_engine")

SNAPSHOT_VERSION = 1
MAX_HISTORY = 500


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MarketUpdate:
    symbol: str
    points: Tuple[PricePoint, ...]


@dataclass(frozen=True)
class ManualStop:
    """Operator request to close one position, or all of them when ``position_id`` is None."""

    position_id: Optional[str] = None


InboxMessage = Union[MarketUpdate, ManualStop]


@dataclass
class TickReport:
    timestamp: datetime
    opened: List[Position] = field(default_factory=list)
    closed: List[Position] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    flushed: int = 0
    rolled_over: bool = False

    def summary(self) -> str:
        return (
            f"opened={len(self.opened)} closed={len(self.closed)} "
            f"skipped={len(self.skipped)} flushed={self.flushed}"
        )


class TradingEngine:  # pylint: disable=too-many-instance-attributes
    """Drives the open/close cycle over the configured symbols."""

    def __init__(
        self,
        config: BotConfig,
        now: Optional[datetime] = None,
        *,
        strategy: Optional[BaseStrategy] = None,
        ledger: Optional[TradeLedger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.clock = clock
        start = now or clock()
        self.strategy = strategy or RelaySignalStrategy()
        self.ledger = ledger or TradeLedger(config.log_dir, start)
        self.allocator = PortfolioAllocator(config.total_capital, config.sub_portfolios)
        self.risk_gate = RiskGate(config, start)
        self.positions = PositionManager(config, self.allocator, self.risk_gate, self.ledger)
        self.inbox: "queue.Queue[InboxMessage]" = queue.Queue()
        self.market_data: Dict[str, Deque[PricePoint]] = {}
        self.last_prices: Dict[str, float] = {}
        self.tick_count = 0
        self.session_started_at = start
        self.total_sessions = 1
        self.last_handoff: Optional[str] = None
        self._tick_lock = threading.Lock()
        logger.info(
            "Engine ready (%s): capital=%.2f sub-portfolios=%d symbols=%s",
            get_mode_label(config),
            config.total_capital,
            config.sub_portfolios,
            ",".join(config.symbols),
        )

    # ---- inbox -------------------------------------------------------------

    def submit(self, message: InboxMessage) -> None:
        """Thread-safe hand-off of market data or operator commands."""
        self.inbox.put(message)

    def submit_prices(self, symbol: str, points: Sequence[PricePoint]) -> None:
        self.submit(MarketUpdate(symbol=symbol, points=tuple(points)))

    def _drain_inbox(self) -> List[ManualStop]:
        stops: List[ManualStop] = []
        while True:
            try:
                message = self.inbox.get_nowait()
            except queue.Empty:
                return stops
            if isinstance(message, MarketUpdate):
                self._apply_market_update(message)
            elif isinstance(message, ManualStop):
                stops.append(message)
            else:
                logger.warning("Ignoring unknown inbox message %r", message)

    def _apply_market_update(self, update: MarketUpdate) -> None:
        if not update.points:
            return
        series = self.market_data.setdefault(update.symbol, deque(maxlen=MAX_HISTORY))
        series.extend(update.points)
        close = update.points[-1].close
        if close > 0:
            self.last_prices[update.symbol] = close
        else:
            logger.warning("Ignoring non-positive price %s for %s", close, update.symbol)

    # ---- tick ---------------------------------------------------------------

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Run one serialized decision cycle."""
        with self._tick_lock:
            now = now or self.clock()
            report = TickReport(timestamp=now)
            stops = self._drain_inbox()

            report.rolled_over = self.risk_gate.rollover(now)
            self.ledger.roll_day(now)
            report.flushed = self.ledger.flush_pending()

            for stop in stops:
                report.closed.extend(self._manual_stop(stop, now))
            report.closed.extend(self.positions.check_exits(self.last_prices, now))

            for symbol in self.config.symbols:
                series = self.market_data.get(symbol)
                if not series:
                    continue
                signal = self.strategy.generate_signal(symbol, list(series))
                if not signal.is_actionable(self.config.min_signal_score):
                    continue
                position = self.positions.open_position(
                    symbol=symbol,
                    direction=signal.direction,
                    price=self.last_prices.get(symbol, signal.analysis.get("currentPrice", 0.0)),
                    volatility=signal.analysis.get("volatility", 0.0),
                    confidence=signal.score,
                    now=now,
                )
                if position is None:
                    report.skipped.append(symbol)
                else:
                    report.opened.append(position)

            self.verify_capital()
            self.tick_count += 1
            logger.debug("Tick %d at %s: %s", self.tick_count, now.isoformat(), report.summary())
            return report

    def _manual_stop(self, stop: ManualStop, now: datetime) -> List[Position]:
        if stop.position_id is None:
            return self.positions.close_all(self.last_prices, now, CloseReason.MANUAL_STOP)
        position = self.positions.positions.get(stop.position_id)
        if position is None:
            logger.warning("Manual stop for unknown or closed position %s ignored", stop.position_id)
            return []
        price = self.last_prices.get(position.symbol, position.entry_price)
        return [self.positions.close_position(position.id, price, CloseReason.MANUAL_STOP, now)]

    def verify_capital(self) -> float:
        return check_capital_conservation(
            (p.balance for p in self.allocator.portfolios.values()),
            (p.position_size for p in self.positions.positions.values()),
            self.config.total_capital,
            self.positions.realized_pnl_total,
        )

    # ---- relay persistence --------------------------------------------------

    def snapshot(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Serializable state blob; ``restore(snapshot())`` reproduces it exactly."""
        saved_at = now or self.clock()
        return {
            "version": SNAPSHOT_VERSION,
            "savedAt": saved_at.isoformat(),
            "riskState": self.risk_gate.state.to_dict(),
            "subPortfolios": self.allocator.to_list(),
            "openPositions": [p.to_record() for p in self.positions.positions.values()],
            "realizedPnL": self.positions.realized_pnl_total,
            "lastPrices": dict(self.last_prices),
            "pendingLedgerRows": self.ledger.pending_rows(),
            "relay": {
                "totalSessions": self.total_sessions,
                "sessionStartedAt": self.session_started_at.isoformat(),
                "lastHandoff": self.last_handoff,
                "timeSlot": self.config.time_slot,
                "nextSlot": self.config.next_time_slot,
            },
        }

    def restore(self, blob: Dict[str, Any]) -> None:
        """Replace in-memory state with ``blob``; nothing changes if validation fails."""
        if blob.get("version") != SNAPSHOT_VERSION:
            raise InvariantViolation("unsupported snapshot version", version=blob.get("version"))

        pending = self.ledger.parse_pending_rows(blob.get("pendingLedgerRows", []))
        pending_trade_ids = {str(row["id"]) for path, row in pending if path == self.ledger.trades_path}

        positions = {}
        settled: List[Position] = []
        for record in blob.get("openPositions", []):
            position = Position.from_record(record)
            if not position.is_open:
                raise InvariantViolation("snapshot lists a closed position as open", position_id=position.id)
            if position.id in pending_trade_ids:
                raise InvariantViolation("snapshot lists a position as both open and closed", position_id=position.id)
            if self.ledger.is_recorded(position.id):
                settled.append(self._settled_from_ledger(position))
            positions[position.id] = position

        allocator = PortfolioAllocator.from_list(
            blob.get("subPortfolios", []),
            {p.id: (p.portfolio_id, p.position_size) for p in positions.values()},
        )
        risk_gate = RiskGate(self.config, self.clock(), state=RiskState.from_dict(blob["riskState"]))
        realized = float(blob.get("realizedPnL", 0.0))

        # closed by a session that stopped before its hand-off; the ledger row wins
        for record in settled:
            allocator.credit(
                record.portfolio_id,
                record.position_size + record.realized_pnl,
                record.id,
                realized_pnl=record.realized_pnl,
                at=record.closed_at,
            )
            del positions[record.id]
            realized += record.realized_pnl
            risk_gate.record_trade_closed(record.realized_pnl, record.closed_at)

        check_capital_conservation(
            (p.balance for p in allocator.portfolios.values()),
            (p.position_size for p in positions.values()),
            self.config.total_capital,
            realized,
        )

        relay = blob.get("relay", {})

        self.allocator = allocator
        self.risk_gate = risk_gate
        self.positions = PositionManager(self.config, self.allocator, self.risk_gate, self.ledger)
        self.positions.positions = positions
        self.positions.realized_pnl_total = realized
        self.ledger.requeue(pending)
        for record in settled:
            logger.warning(
                "Snapshot position %s was already closed in the ledger (%s, pnl=%.4f); settled from ledger",
                record.id,
                record.close_reason.value if record.close_reason else "?",
                record.realized_pnl,
            )
            log_anomaly(
                "Snapshot Reconciled",
                position_id=record.id,
                portfolio_id=record.portfolio_id,
                realized_pnl=record.realized_pnl,
                closed_at=record.closed_at,
            )
        self.last_prices = {str(k): float(v) for k, v in blob.get("lastPrices", {}).items()}
        self.total_sessions = int(relay.get("totalSessions", 1))
        if relay.get("sessionStartedAt"):
            self.session_started_at = datetime.fromisoformat(relay["sessionStartedAt"])
        self.last_handoff = relay.get("lastHandoff")
        logger.info(
            "State restored: %d open positions, realized P&L %.4f, session #%d",
            len(positions),
            realized,
            self.total_sessions,
        )

    def _settled_from_ledger(self, position: Position) -> Position:
        row = self.ledger.recorded_trade(position.id)
        record = Position.from_record(row) if row else None
        if (
            record is None
            or record.is_open
            or record.realized_pnl is None
            or record.closed_at is None
            or record.portfolio_id != position.portfolio_id
            or not math.isclose(record.position_size, position.position_size, rel_tol=1e-9)
        ):
            raise InvariantViolation("snapshot position conflicts with its ledger record", position_id=position.id)
        return record

    def begin_session(self, previous: Dict[str, Any], now: Optional[datetime] = None) -> None:
        """Mark this process as the next relay session after restoring ``previous``."""
        now = now or self.clock()
        self.total_sessions += 1
        self.last_handoff = previous.get("savedAt")
        self.session_started_at = now
        logger.info(
            "Relay session #%d (slot %02d:00) picked up hand-off from %s",
            self.total_sessions,
            self.config.time_slot,
            self.last_handoff,
        )

    # ---- shutdown / status --------------------------------------------------

    def shutdown(self, now: Optional[datetime] = None) -> List[Position]:
        """Drain: close everything at last known prices and persist the day."""
        with self._tick_lock:
            now = now or self.clock()
            self._drain_inbox()
            closed = self.positions.close_all(self.last_prices, now, CloseReason.MANUAL_STOP)
            self.ledger.write_daily_summary(kind="shutdown")
            self.ledger.flush_pending()
            if self.ledger.pending_count:
                logger.error("%d ledger rows could not be persisted at shutdown", self.ledger.pending_count)
            self.verify_capital()
            logger.info("Shutdown complete: %d positions closed", len(closed))
            return closed

    def status(self) -> Dict[str, Any]:
        return {
            "mode": get_mode_label(self.config),
            "tickCount": self.tick_count,
            "openPositions": [p.to_record() for p in self.positions.positions.values()],
            "subPortfolios": self.allocator.to_list(),
            "totalBalance": self.allocator.total_balance(),
            "realizedPnL": self.positions.realized_pnl_total,
            "committedCapital": self.positions.committed_capital(),
            "unrealizedPnL": self.positions.unrealized_pnl(self.last_prices),
            "riskState": self.risk_gate.state.to_dict(),
            "dailyStats": self.ledger.daily_stats.to_dict(),
            "pendingLedgerRows": self.ledger.pending_count,
            "totalSessions": self.total_sessions,
        }
