"""
Main entry point for the Relay Trading Bot.
Runs a single decision tick or a full relay session, and can write the
performance report for the trade ledger.
"""

import argparse
import logging
import sys
from datetime import timedelta

from relay_trading_bot.analytics.performance_report import write_performance_report
from relay_trading_bot.bot.market_data import SyntheticMarketFeed
from relay_trading_bot.bot.scheduler import EXIT_INVARIANT_VIOLATION, build_engine, hand_off, run_scheduler
from relay_trading_bot.config import ConfigurationError, get_mode_label, load_config
from relay_trading_bot.safety.invariants import InvariantViolation
from relay_trading_bot.utils.system_logger import set_log_dir

REPORT_FILENAME = "performance_report.json"


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay Trading Bot (paper trading)")
    parser.add_argument(
        "--mode",
        choices=["once", "schedule"],
        default="once",
        help="Run mode: 'once' for a single tick, 'schedule' for a full relay session",
    )
    parser.add_argument("--interval", type=float, default=None, help="Seconds between ticks")
    parser.add_argument("--max-runtime", type=float, default=None, help="Session length in minutes")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the synthetic market feed")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument(
        "--report",
        action="store_true",
        help="Write the performance report for the trade ledger after the run",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """
    Parses command-line arguments and runs the bot in the requested mode.
    Returns the process exit status.
    """
    args = _parse_args(argv)

    overrides = {}
    if args.interval is not None:
        overrides["tick_interval"] = args.interval
    if args.max_runtime is not None:
        overrides["max_runtime"] = timedelta(minutes=args.max_runtime)

    try:
        config = load_config(overrides, env_file=args.env_file)
    except ConfigurationError as exc:
        logging.critical("Configuration rejected: %s", exc)
        print(f"❌ Configuration error: {exc}", file=sys.stderr)
        return 1

    set_log_dir(config.log_dir)
    print(f"🤖 Relay Trading Bot [{get_mode_label(config)}] slot {config.time_slot:02d}:00")

    try:
        engine = build_engine(config)
    except InvariantViolation as exc:
        print(f"❌ Saved state rejected: {exc}", file=sys.stderr)
        return EXIT_INVARIANT_VIOLATION

    feed = SyntheticMarketFeed(config.symbols, seed=args.seed)
    if args.mode == "schedule":
        status = run_scheduler(engine, feed, config)
    else:
        now = engine.clock()
        for symbol, points in feed.poll(now).items():
            engine.submit_prices(symbol, points)
        try:
            report = engine.tick(now)
        except InvariantViolation as exc:
            print(f"❌ Invariant violated: {exc}", file=sys.stderr)
            return EXIT_INVARIANT_VIOLATION
        print(f"📈 Tick complete: {report.summary()}")
        status = hand_off(engine, config, engine.clock())

    if engine.ledger.pending_count:
        print(
            f"⚠️ {engine.ledger.pending_count} ledger rows not written; kept in {config.state_file}",
            file=sys.stderr,
        )

    daily = engine.ledger.daily_stats
    print(
        f"📊 Today: {daily.trades_count} trades, win rate {daily.win_rate:.1f}%, "
        f"P&L ${daily.profit_loss:,.2f}"
    )
    if args.report:
        report_path = config.log_dir / REPORT_FILENAME
        summary = write_performance_report(engine.ledger.trades_path, report_path)
        print(f"🧾 Report: {summary['totalTrades']} trades, total P&L ${summary['totalPnL']:,.2f} -> {report_path}")
    return status


if __name__ == "__main__":
    raise SystemExit(main())
