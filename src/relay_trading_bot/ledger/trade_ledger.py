"""
Trade Ledger

Append-only JSONL record of closed trades plus per-day summaries. Each
closed trade is written once with a snapshot of the day's statistics after
that trade. Writes that keep failing are held in memory and retried on the
next flush so the trading loop never stops over a full disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from relay_trading_bot.safety.invariants import InvariantViolation
from relay_trading_bot.utils.file_locks import PersistenceError, append_jsonl, read_jsonl
from relay_trading_bot.utils.log_rotation import log_anomaly
from relay_trading_bot.utils.system_logger import get_system_logger

if TYPE_CHECKING:
    from relay_trading_bot.bot.position_manager import Position

logger = get_system_logger().getChild("trade_ledger")

TRADES_FILENAME = "trades.jsonl"
DAILY_STATS_FILENAME = "daily_stats.jsonl"


def _date_key(moment: datetime) -> str:
    return moment.date().isoformat()


@dataclass
class DailyStats:
    date: str
    trades_count: int = 0
    wins: int = 0
    losses: int = 0
    profit_loss: float = 0.0

    @property
    def win_rate(self) -> float:
        """Percentage of winning trades; 0 when nothing closed yet."""
        if not self.trades_count:
            return 0.0
        return self.wins / self.trades_count * 100.0

    def record(self, realized_pnl: float) -> None:
        self.trades_count += 1
        if realized_pnl > 0:
            self.wins += 1
        else:
            self.losses += 1
        self.profit_loss += realized_pnl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "tradesCount": self.trades_count,
            "wins": self.wins,
            "losses": self.losses,
            "profitLoss": self.profit_loss,
            "winRate": self.win_rate,
        }


class TradeLedger:
    """Durable, append-only trade history rooted at ``log_dir``."""

    def __init__(self, log_dir: str | Path, now: datetime):
        self.log_dir = Path(log_dir)
        self.trades_path = self.log_dir / TRADES_FILENAME
        self.daily_stats_path = self.log_dir / DAILY_STATS_FILENAME
        self._pending: List[Tuple[Path, Dict[str, Any]]] = []
        self._recorded_ids: Set[str] = set()
        self.daily_stats = DailyStats(date=_date_key(now))
        self._rebuild()

    def _rebuild(self) -> None:
        """Recover recorded ids and today's stats from the trades file."""
        for row in read_jsonl(self.trades_path):
            trade_id = row.get("id")
            if not trade_id:
                continue
            self._recorded_ids.add(str(trade_id))
            closed_at = row.get("closedAt") or ""
            if closed_at[:10] == self.daily_stats.date:
                self.daily_stats.record(float(row.get("realizedPnL") or 0.0))
        if self._recorded_ids:
            logger.info(
                "Ledger rebuilt: %d trades on file, %d closed today (P&L %.4f)",
                len(self._recorded_ids),
                self.daily_stats.trades_count,
                self.daily_stats.profit_loss,
            )

    def is_recorded(self, trade_id: str) -> bool:
        """True once the trade is on disk or buffered for writing."""
        return trade_id in self._recorded_ids

    def recorded_trade(self, trade_id: str) -> Optional[Dict[str, Any]]:
        """The ledger row for ``trade_id``, buffered rows included."""
        if trade_id not in self._recorded_ids:
            return None
        for row in reversed(self.trades()):
            if str(row.get("id")) == trade_id:
                return row
        return None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def append(self, position: "Position") -> Dict[str, Any]:
        """Record a CLOSED position exactly once and return the written row."""
        if position.is_open or position.closed_at is None or position.realized_pnl is None:
            raise InvariantViolation("only closed positions can be recorded", position_id=position.id)
        if position.id in self._recorded_ids:
            raise InvariantViolation("trade already recorded", position_id=position.id)

        self.roll_day(position.closed_at)
        self.daily_stats.record(position.realized_pnl)
        row = position.to_record()
        row["dailyStats"] = self.daily_stats.to_dict()
        self._recorded_ids.add(position.id)
        self._write(self.trades_path, row)
        return row

    def roll_day(self, now: datetime) -> Optional[Dict[str, Any]]:
        """Write the finished day's summary and start a new day if the date changed."""
        today = _date_key(now)
        if today == self.daily_stats.date:
            return None
        summary = self.write_daily_summary(kind="rollover")
        logger.info("Daily stats rolled over from %s to %s", self.daily_stats.date, today)
        self.daily_stats = DailyStats(date=today)
        return summary

    def write_daily_summary(self, kind: str = "shutdown") -> Dict[str, Any]:
        summary = dict(self.daily_stats.to_dict(), kind=kind)
        self._write(self.daily_stats_path, summary)
        return summary

    def flush_pending(self) -> int:
        """Retry buffered writes in order; stop at the first one that still fails."""
        written = 0
        while self._pending:
            path, row = self._pending[0]
            try:
                append_jsonl(path, row)
            except PersistenceError as exc:
                logger.warning("Ledger flush still failing (%d pending): %s", len(self._pending), exc)
                break
            self._pending.pop(0)
            written += 1
        if written:
            logger.info("Flushed %d buffered ledger rows", written)
        return written

    def pending_rows(self) -> List[Dict[str, Any]]:
        """Buffered rows in write order, for carrying over to the next session."""
        return [{"file": path.name, "row": dict(row)} for path, row in self._pending]

    def parse_pending_rows(self, entries: List[Dict[str, Any]]) -> List[Tuple[Path, Dict[str, Any]]]:
        """Validate carried-over rows without touching the ledger."""
        targets = {TRADES_FILENAME: self.trades_path, DAILY_STATS_FILENAME: self.daily_stats_path}
        parsed = []
        for entry in entries:
            path = targets.get(entry.get("file"))
            row = entry.get("row")
            if path is None or not isinstance(row, dict):
                raise InvariantViolation("malformed pending ledger row", file=entry.get("file"))
            if path == self.trades_path and not row.get("id"):
                raise InvariantViolation("pending trade row without id")
            parsed.append((path, row))
        return parsed

    def requeue(self, rows: List[Tuple[Path, Dict[str, Any]]]) -> int:
        """Adopt rows a previous session could not persist; they are written on the next flush."""
        adopted = 0
        for path, row in rows:
            if (path, row) in self._pending:
                continue
            if path == self.trades_path:
                trade_id = str(row["id"])
                if trade_id in self._recorded_ids:
                    continue
                self._recorded_ids.add(trade_id)
                if (row.get("closedAt") or "")[:10] == self.daily_stats.date:
                    self.daily_stats.record(float(row.get("realizedPnL") or 0.0))
            self._pending.append((path, row))
            adopted += 1
        if adopted:
            logger.warning("Adopted %d unwritten ledger rows from the previous session", adopted)
        return adopted

    def _write(self, path: Path, row: Dict[str, Any]) -> None:
        if self._pending:
            # keep file order identical to close order
            self._pending.append((path, row))
            self.flush_pending()
            return
        try:
            append_jsonl(path, row)
        except PersistenceError as exc:
            self._pending.append((path, row))
            logger.error("Ledger write to %s failed; buffering row: %s", path, exc)
            log_anomaly("Ledger Write Failure", path=str(path), trade_id=row.get("id"), error=str(exc))

    def trades(self) -> List[Dict[str, Any]]:
        """Every recorded trade: rows on disk followed by buffered rows."""
        rows = read_jsonl(self.trades_path)
        rows.extend(row for path, row in self._pending if path == self.trades_path)
        return rows

    def daily_summaries(self) -> List[Dict[str, Any]]:
        return read_jsonl(self.daily_stats_path)
