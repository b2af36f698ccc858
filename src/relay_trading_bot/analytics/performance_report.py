"""Performance report built from the closed-trade ledger.

Trades are ordered by ``closedAt``; malformed rows (missing id or
realized PnL) are skipped. Drawdown is measured on cumulative realized PnL
from a zero baseline.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from relay_trading_bot.utils.file_locks import read_jsonl, write_json_atomic
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("performance_report")


def _closed_trades(rows: List[dict]) -> List[dict]:
    trades = []
    for row in rows:
        try:
            pnl = float(row["realizedPnL"])
        except (KeyError, TypeError, ValueError):
            continue
        if not row.get("id"):
            continue
        trades.append(dict(row, realizedPnL=pnl))
    trades.sort(key=lambda t: str(t.get("closedAt") or ""))
    return trades


def _max_drawdown(pnls: np.ndarray) -> float:
    if pnls.size == 0:
        return 0.0
    equity = np.concatenate(([0.0], np.cumsum(pnls)))
    peaks = np.maximum.accumulate(equity)
    return float(np.max(peaks - equity))


def _breakdown(trades: List[dict], key: str) -> Dict[str, Dict[str, Any]]:
    groups: Dict[str, List[float]] = defaultdict(list)
    for trade in trades:
        groups[str(trade.get(key) or "UNKNOWN")].append(trade["realizedPnL"])
    return {
        name: {
            "trades": len(values),
            "wins": sum(1 for v in values if v > 0),
            "profitLoss": float(np.sum(values)),
        }
        for name, values in sorted(groups.items())
    }


def build_performance_report(ledger_path: str | Path) -> Dict[str, Any]:
    """Summarize every closed trade in ``ledger_path``."""
    trades = _closed_trades(read_jsonl(ledger_path))
    pnls = np.array([t["realizedPnL"] for t in trades], dtype=float)
    wins = pnls[pnls > 0]
    losses = pnls[pnls <= 0]
    gross_loss = float(-losses.sum()) if losses.size else 0.0

    if gross_loss > 0:
        profit_factor: Optional[float] = float(wins.sum()) / gross_loss
    else:
        profit_factor = None

    best = max(trades, key=lambda t: t["realizedPnL"]) if trades else None
    worst = min(trades, key=lambda t: t["realizedPnL"]) if trades else None

    return {
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "totalTrades": len(trades),
        "wins": int(wins.size),
        "losses": int(losses.size),
        "winRate": (wins.size / len(trades) * 100.0) if trades else 0.0,
        "totalPnL": float(pnls.sum()) if pnls.size else 0.0,
        "averagePnL": float(pnls.mean()) if pnls.size else 0.0,
        "profitFactor": profit_factor,
        "maxDrawdown": _max_drawdown(pnls),
        "bestTrade": {"id": best["id"], "realizedPnL": best["realizedPnL"]} if best else None,
        "worstTrade": {"id": worst["id"], "realizedPnL": worst["realizedPnL"]} if worst else None,
        "bySymbol": _breakdown(trades, "symbol"),
        "byCloseReason": _breakdown(trades, "closeReason"),
    }


def write_performance_report(ledger_path: str | Path, output_path: str | Path) -> Dict[str, Any]:
    report = build_performance_report(ledger_path)
    write_json_atomic(output_path, report)
    logger.info(
        "Performance report: %d trades, win rate %.1f%%, total P&L %.4f -> %s",
        report["totalTrades"],
        report["winRate"],
        report["totalPnL"],
        output_path,
    )
    return report
