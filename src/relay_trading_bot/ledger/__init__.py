"""Append-only trade ledger and daily statistics."""

from relay_trading_bot.ledger.trade_ledger import DailyStats, TradeLedger

__all__ = ["DailyStats", "TradeLedger"]
