"""Accounting invariants whose violation must halt the bot."""

from __future__ import annotations

import math
from typing import Iterable

from relay_trading_bot.utils.log_rotation import log_anomaly

CAPITAL_TOLERANCE = 1e-6


class InvariantViolation(RuntimeError):
    """Raised when bot state is corrupted (double close, capital leak, negative balance)."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context
        log_anomaly("Invariant Violation", message=message, **context)


def check_capital_conservation(
    balances: Iterable[float],
    open_position_sizes: Iterable[float],
    total_capital: float,
    realized_pnl: float,
    *,
    tolerance: float = CAPITAL_TOLERANCE,
) -> float:
    """Verify free balances plus committed capital equal starting capital plus realized PnL.

    Returns the absolute drift; raises :class:`InvariantViolation` when it
    exceeds ``tolerance`` relative to ``total_capital``.
    """

    held = math.fsum(balances) + math.fsum(open_position_sizes)
    expected = total_capital + realized_pnl
    drift = abs(held - expected)
    if drift > tolerance * max(abs(total_capital), 1.0):
        raise InvariantViolation(
            "capital conservation broken",
            held=held,
            expected=expected,
            drift=drift,
        )
    return drift
