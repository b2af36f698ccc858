"""Integration tests: engine ticks drive positions, portfolios, risk gate and ledger together."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from relay_trading_bot.bot.market_data import PricePoint, SyntheticMarketFeed
from relay_trading_bot.bot.position_manager import CloseReason, Direction
from relay_trading_bot.bot.strategies import BaseStrategy, Signal
from relay_trading_bot.bot.trading_engine import ManualStop, TradingEngine
from relay_trading_bot.ledger import trade_ledger as trade_ledger_module
from relay_trading_bot.safety.invariants import InvariantViolation
from relay_trading_bot.utils.file_locks import PersistenceError, append_jsonl

# pylint: disable=missing-function-docstring


class FixedStrategy(BaseStrategy):
    """Always proposes the same trade; ``score`` can be lowered to stop entries."""

    def __init__(self, direction=Direction.LONG, score=70.0, volatility=0.75):
        self.direction = direction
        self.score = score
        self.volatility = volatility

    def generate_signal(self, symbol, points):
        return Signal(
            symbol=symbol,
            direction=self.direction,
            score=self.score,
            analysis={"volatility": self.volatility, "currentPrice": points[-1].close},
        )


def _point(at, close):
    return PricePoint(timestamp=at, open=close, high=close, low=close, close=close, volume=1000.0)


@pytest.fixture(name="strategy")
def fixture_strategy():
    return FixedStrategy()


@pytest.fixture(name="engine")
def fixture_engine(make_config, now, strategy):
    config = make_config(symbols=("BTCUSDT",), max_trades_per_day=10)
    return TradingEngine(config, now, strategy=strategy, clock=lambda: now)


def _tick_at(engine, at, price, symbol="BTCUSDT"):
    engine.submit_prices(symbol, [_point(at, price)])
    return engine.tick(at)


def test_take_profit_scenario(engine, strategy, now):
    report = _tick_at(engine, now, 45000.0)
    assert len(report.opened) == 1
    position = report.opened[0]
    assert position.portfolio_id == "portfolio_1"
    assert position.position_size == pytest.approx(125.0)
    assert position.quantity == pytest.approx(0.002778, abs=1e-6)

    strategy.score = 0.0
    report = _tick_at(engine, now + timedelta(minutes=1), 45225.0)
    assert [c.close_reason for c in report.closed] == [CloseReason.TAKE_PROFIT]
    assert report.closed[0].realized_pnl == pytest.approx(0.625)
    assert engine.allocator.get("portfolio_1").balance == pytest.approx(2500.625)
    assert engine.ledger.daily_stats.wins == 1


def test_next_open_goes_to_smallest_balance(engine, now):
    _tick_at(engine, now, 45000.0)
    report = _tick_at(engine, now + timedelta(minutes=1), 45225.0)
    # portfolio_1 closed with profit; the fresh entry lands on portfolio_2
    assert [p.portfolio_id for p in report.opened] == ["portfolio_2"]


def test_three_losses_block_the_fourth_signal(make_config, now, strategy):
    config = make_config(symbols=("BTCUSDT",), max_trades_per_day=10, cooldown_after_loss=timedelta(0))
    engine = TradingEngine(config, now, strategy=strategy)

    price = 45000.0
    minute = 0
    for _ in range(3):
        report = _tick_at(engine, now + timedelta(minutes=minute), price)
        assert len(report.opened) == 1
        price -= 1000.0
        report = _tick_at(engine, now + timedelta(minutes=minute + 1), price)
        assert [c.close_reason for c in report.closed] == [CloseReason.STOP_LOSS]
        minute += 2

    assert engine.risk_gate.state.consecutive_loss_count == 3
    for later in (timedelta(minutes=minute), timedelta(hours=3)):
        report = _tick_at(engine, now + later, price)
        assert not report.opened
        assert report.skipped == ["BTCUSDT"]

    engine.risk_gate.resume_trading()
    assert _tick_at(engine, now + timedelta(hours=3, minutes=1), price).opened


def test_capital_conserved_over_synthetic_session(make_config, now):
    config = make_config(max_trades_per_day=50)
    engine = TradingEngine(config, now)
    feed = SyntheticMarketFeed(config.symbols, seed=11)
    for step in range(120):
        at = now + timedelta(minutes=step)
        for symbol, points in feed.poll(at).items():
            engine.submit_prices(symbol, points)
        engine.tick(at)
        balances = sum(p.balance for p in engine.allocator.portfolios.values())
        committed = sum(p.position_size for p in engine.positions.positions.values())
        assert balances + committed == pytest.approx(config.total_capital + engine.positions.realized_pnl_total)
        for portfolio in engine.allocator.portfolios.values():
            assert portfolio.balance >= 0
            assert portfolio.active_position_count <= 1
    engine.shutdown(now + timedelta(hours=3))
    assert not engine.positions.positions
    ledger_pnl = sum(row["realizedPnL"] for row in engine.ledger.trades())
    assert ledger_pnl == pytest.approx(engine.positions.realized_pnl_total)


def test_snapshot_restore_is_identity(engine, make_config, now, strategy):
    _tick_at(engine, now, 45000.0)
    blob = engine.snapshot(now)
    assert len(blob["openPositions"]) == 1

    other = TradingEngine(engine.config, now, strategy=strategy, clock=lambda: now)
    other.restore(blob)
    assert other.snapshot(now) == blob
    assert other.allocator.outstanding_debits() == engine.allocator.outstanding_debits()

    # the restored position still closes normally
    strategy.score = 0.0
    report = _tick_at(other, now + timedelta(minutes=1), 45225.0)
    assert report.closed[0].realized_pnl == pytest.approx(0.625)


def test_restore_rejects_broken_capital(engine, now, strategy):
    _tick_at(engine, now, 45000.0)
    blob = engine.snapshot(now)
    blob["subPortfolios"][0]["balance"] += 50.0

    other = TradingEngine(engine.config, now, strategy=strategy)
    before = other.snapshot(now)
    with pytest.raises(InvariantViolation):
        other.restore(blob)
    assert other.snapshot(now) == before


def test_manual_stop_from_another_thread(engine, strategy, now):
    _tick_at(engine, now, 45000.0)
    strategy.score = 0.0
    worker = threading.Thread(target=engine.submit, args=(ManualStop(),))
    worker.start()
    worker.join()
    assert engine.positions.positions  # nothing changes until the next tick

    report = _tick_at(engine, now + timedelta(minutes=1), 45100.0)
    assert [c.close_reason for c in report.closed] == [CloseReason.MANUAL_STOP]
    assert report.closed[0].exit_price == 45100.0


def test_manual_stop_of_unknown_position_is_ignored(engine, now):
    engine.submit(ManualStop("nope"))
    report = _tick_at(engine, now, 45000.0)
    assert not report.closed


def test_day_rollover_resets_counts_and_writes_summary(engine, strategy, now):
    _tick_at(engine, now, 45000.0)
    strategy.score = 0.0
    _tick_at(engine, now + timedelta(minutes=1), 45225.0)

    report = _tick_at(engine, now + timedelta(days=1), 45000.0)
    assert report.rolled_over
    assert engine.risk_gate.state.daily_trade_count == 0
    summaries = engine.ledger.daily_summaries()
    assert summaries[-1]["date"] == now.date().isoformat()
    assert summaries[-1]["tradesCount"] == 1


def test_ledger_failure_is_buffered_then_flushed(engine, strategy, now, monkeypatch):
    _tick_at(engine, now, 45000.0)
    strategy.score = 0.0

    def failing_append(path, row):
        raise PersistenceError("disk full")

    monkeypatch.setattr(trade_ledger_module, "append_jsonl", failing_append)
    report = _tick_at(engine, now + timedelta(minutes=1), 45225.0)
    assert len(report.closed) == 1
    assert engine.ledger.pending_count == 1
    assert engine.status()["pendingLedgerRows"] == 1

    monkeypatch.setattr(trade_ledger_module, "append_jsonl", append_jsonl)
    report = _tick_at(engine, now + timedelta(minutes=2), 45225.0)
    assert report.flushed == 1
    assert len(engine.ledger.trades()) == 1
    assert engine.ledger.pending_count == 0


def test_shutdown_drains_positions(engine, now):
    _tick_at(engine, now, 45000.0)
    engine.submit_prices("BTCUSDT", [_point(now, 44900.0)])
    closed = engine.shutdown(now + timedelta(minutes=5))
    assert [c.close_reason for c in closed] == [CloseReason.MANUAL_STOP]
    assert closed[0].exit_price == 44900.0
    assert engine.allocator.total_balance() == pytest.approx(10000.0 + closed[0].realized_pnl)
    assert engine.ledger.daily_summaries()[-1]["kind"] == "shutdown"


def test_status_reports_state(engine, now):
    _tick_at(engine, now, 45000.0)
    status = engine.status()
    assert status["mode"] == "PAPER MODE"
    assert status["tickCount"] == 1
    assert len(status["openPositions"]) == 1
    assert status["riskState"]["dailyTradeCount"] == 1


def test_short_exits_carry_the_right_pnl_sign(make_config, now):
    strategy = FixedStrategy(direction=Direction.SHORT)
    config = make_config(symbols=("BTCUSDT",), max_trades_per_day=10)
    engine = TradingEngine(config, now, strategy=strategy, clock=lambda: now)

    opened = _tick_at(engine, now, 45000.0).opened[0]
    assert opened.direction is Direction.SHORT
    assert opened.take_profit_price < opened.entry_price < opened.stop_loss_price
    strategy.score = 0.0
    report = _tick_at(engine, now + timedelta(minutes=1), 44700.0)
    assert [c.close_reason for c in report.closed] == [CloseReason.TAKE_PROFIT]
    assert report.closed[0].realized_pnl == pytest.approx(300.0 * 125.0 / 45000.0)
    assert report.closed[0].realized_pnl > 0

    strategy.score = 70.0
    reopened = _tick_at(engine, now + timedelta(minutes=2), 45000.0).opened[0]
    assert reopened.portfolio_id == "portfolio_2"
    strategy.score = 0.0
    report = _tick_at(engine, now + timedelta(minutes=3), 45700.0)
    assert [c.close_reason for c in report.closed] == [CloseReason.STOP_LOSS]
    assert report.closed[0].realized_pnl == pytest.approx(-700.0 * 125.0 / 45000.0)
    assert engine.risk_gate.state.consecutive_loss_count == 1
    assert [row["realizedPnL"] > 0 for row in engine.ledger.trades()] == [True, False]


def test_restore_rejects_position_conflicting_with_ledger(engine, now, strategy):
    position = _tick_at(engine, now, 45000.0).opened[0]
    blob = engine.snapshot(now)

    row = position.closed(45100.0, CloseReason.MANUAL_STOP, now).to_record()
    row["positionSize"] = 999.0
    append_jsonl(engine.ledger.trades_path, row)

    other = TradingEngine(engine.config, now, strategy=strategy, clock=lambda: now)
    before = other.snapshot(now)
    with pytest.raises(InvariantViolation, match="conflicts with its ledger record"):
        other.restore(blob)
    assert other.snapshot(now) == before


def test_restore_rejects_position_both_open_and_pending(engine, now, strategy):
    position = _tick_at(engine, now, 45000.0).opened[0]
    blob = engine.snapshot(now)
    closed_row = position.closed(45100.0, CloseReason.MANUAL_STOP, now).to_record()
    blob["pendingLedgerRows"] = [{"file": "trades.jsonl", "row": closed_row}]

    other = TradingEngine(engine.config, now, strategy=strategy, clock=lambda: now)
    with pytest.raises(InvariantViolation, match="both open and closed"):
        other.restore(blob)
    assert not other.ledger.pending_count
    assert not other.ledger.is_recorded(position.id)


def test_snapshot_carries_unwritten_ledger_rows(engine, strategy, now, monkeypatch):
    _tick_at(engine, now, 45000.0)
    strategy.score = 0.0

    def failing_append(path, row):
        raise PersistenceError("disk full")

    monkeypatch.setattr(trade_ledger_module, "append_jsonl", failing_append)
    closed = _tick_at(engine, now + timedelta(minutes=1), 45225.0).closed[0]
    blob = engine.snapshot(now + timedelta(minutes=1))
    assert [entry["row"]["id"] for entry in blob["pendingLedgerRows"]] == [closed.id]

    monkeypatch.setattr(trade_ledger_module, "append_jsonl", append_jsonl)
    other = TradingEngine(engine.config, now, strategy=strategy, clock=lambda: now)
    other.restore(blob)
    assert other.ledger.is_recorded(closed.id)
    assert other.ledger.pending_count == 1
    assert other.ledger.daily_stats.wins == 1
    assert other.snapshot(now + timedelta(minutes=1)) == blob

    report = other.tick(now + timedelta(minutes=2))
    assert report.flushed == 1
    assert [row["id"] for row in other.ledger.trades()] == [closed.id]
