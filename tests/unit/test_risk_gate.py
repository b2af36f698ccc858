"""Tests covering the risk gate counters and checks."""

from __future__ import annotations

from datetime import timedelta

import pytest

from relay_trading_bot.safety.risk_guard import RiskGate, RiskState

# pylint: disable=missing-function-docstring


@pytest.fixture(name="gate")
def fixture_gate(config, now):
    return RiskGate(config, now)


def test_fresh_gate_allows_trading(gate, now):
    allowed, checks = gate.evaluate(now, True)
    assert allowed
    assert checks == {
        "dailyLimit": True,
        "consecutiveLosses": True,
        "cooldown": True,
        "availablePortfolio": True,
    }


def test_daily_limit_blocks_fourth_trade(gate, now):
    for _ in range(3):
        assert gate.can_open_position(now)
        gate.record_trade_opened(125.0)
    allowed, checks = gate.evaluate(now)
    assert not allowed
    assert checks["dailyLimit"] is False
    assert "availablePortfolio" not in checks


def test_rollover_resets_daily_count_but_keeps_loss_streak(gate, now):
    gate.record_trade_opened(100.0)
    gate.record_trade_closed(-1.0, now)
    assert gate.rollover(now + timedelta(days=1))
    assert gate.state.daily_trade_count == 0
    assert gate.state.daily_risk_used == 0.0
    assert gate.state.consecutive_loss_count == 1
    assert not gate.rollover(now + timedelta(days=1, hours=1))


def test_three_losses_block_until_operator_resume(gate, now):
    for i in range(3):
        gate.record_trade_closed(-5.0, now + timedelta(minutes=i))
    assert gate.state.consecutive_loss_count == 3

    allowed, checks = gate.evaluate(now + timedelta(minutes=5))
    assert not allowed
    assert checks["consecutiveLosses"] is False
    assert checks["cooldown"] is False

    later = now + timedelta(hours=3)
    allowed, checks = gate.evaluate(later)
    assert checks["cooldown"] is True
    assert not allowed

    gate.resume_trading()
    assert gate.can_open_position(later)


def test_cooldown_boundary_is_strict(gate, now):
    gate.record_trade_closed(-1.0, now)
    assert not gate.can_open_position(now + timedelta(hours=1))
    assert gate.can_open_position(now + timedelta(hours=1, seconds=1))


def test_breakeven_counts_as_loss_and_win_resets(gate, now):
    gate.record_trade_closed(0.0, now)
    gate.record_trade_closed(-1.0, now)
    assert gate.state.consecutive_loss_count == 2
    gate.record_trade_closed(0.5, now)
    assert gate.state.consecutive_loss_count == 0


def test_portfolio_availability_is_checked_lazily(gate, now):
    calls = []

    def available():
        calls.append(1)
        return False

    allowed, checks = gate.evaluate(now, available)
    assert not allowed
    assert checks["availablePortfolio"] is False
    assert calls == [1]

    for _ in range(3):
        gate.record_trade_opened(10.0)
    gate.evaluate(now, available)
    assert calls == [1]


def test_daily_risk_budget(make_config, now):
    gate = RiskGate(make_config(max_daily_risk=0.02), now)
    gate.record_trade_opened(100.0)
    assert gate.can_open_position(now)
    gate.record_trade_opened(150.0)
    allowed, checks = gate.evaluate(now)
    assert not allowed
    assert checks["dailyRisk"] is False


def test_state_round_trip(gate, now):
    gate.record_trade_opened(125.0)
    gate.record_trade_closed(-2.0, now)
    restored = RiskState.from_dict(gate.state.to_dict())
    assert restored == gate.state
    assert gate.state.to_dict()["lastLossTimestamp"] == now.isoformat()
