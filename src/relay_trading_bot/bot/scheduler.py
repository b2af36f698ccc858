"""
Scheduler Module

Serialized driver loop for one relay session: feed market data into the
engine, tick every ``tick_interval`` seconds, and hand the state over to the
next session when the runtime window closes or a stop signal arrives.
"""

from __future__ import annotations

import signal
import threading
from datetime import datetime
from typing import Callable, Optional

from relay_trading_bot.bot.market_data import SyntheticMarketFeed
from relay_trading_bot.bot.state.snapshot_store import load_snapshot, save_snapshot
from relay_trading_bot.bot.trading_engine import TradingEngine, utc_now
from relay_trading_bot.config import BotConfig
from relay_trading_bot.config.constants import RUNTIME_WARNING_WINDOW
from relay_trading_bot.safety.invariants import InvariantViolation
from relay_trading_bot.utils.file_locks import PersistenceError
from relay_trading_bot.utils.log_rotation import log_anomaly
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("scheduler")

EXIT_OK = 0
EXIT_PERSISTENCE_FAILURE = 1
EXIT_INVARIANT_VIOLATION = 2


def build_engine(
    config: BotConfig,
    now: Optional[datetime] = None,
    clock: Callable[[], datetime] = utc_now,
) -> TradingEngine:
    """Create the engine and resume from the previous session's snapshot if it is fresh."""
    now = now or clock()
    engine = TradingEngine(config, now, clock=clock)
    previous = load_snapshot(config.state_file, config.snapshot_max_age, now=now)
    if previous is not None:
        engine.restore(previous)
        engine.begin_session(previous, now)
    return engine


def _install_stop_handlers(stop_event: threading.Event) -> dict:
    """Route SIGINT/SIGTERM to ``stop_event``; only possible from the main thread."""
    if threading.current_thread() is not threading.main_thread():
        return {}

    def _handler(signum, _frame):
        logger.warning("Received %s; finishing current tick and shutting down", signal.Signals(signum).name)
        stop_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def _restore_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def run_scheduler(  # pylint: disable=too-many-arguments,too-many-locals
    engine: TradingEngine,
    feed: SyntheticMarketFeed,
    config: BotConfig,
    *,
    clock: Optional[Callable[[], datetime]] = None,
    wait: Optional[Callable[[float], object]] = None,
    max_ticks: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
    install_signal_handlers: bool = True,
) -> int:
    """
    Run ticks until stopped; return the process exit status.

    Stops on SIGINT/SIGTERM, once ``config.max_runtime`` has elapsed, after
    ``max_ticks`` ticks or on :class:`InvariantViolation`. A normal stop
    drains the engine and saves the hand-off snapshot.
    """
    clock = clock or engine.clock
    stop_event = stop_event or threading.Event()
    wait = wait or stop_event.wait
    previous_handlers = _install_stop_handlers(stop_event) if install_signal_handlers else {}

    started = clock()
    deadline = started + config.max_runtime
    warned = False
    ticks = 0
    logger.info(
        "Relay session started at %s (slot %02d:00, next %02d:00), deadline %s",
        started.isoformat(),
        config.time_slot,
        config.next_time_slot,
        deadline.isoformat(),
    )

    try:
        while not stop_event.is_set():
            now = clock()
            if now >= deadline:
                logger.info("Runtime window reached; preparing hand-off")
                break
            if not warned and deadline - now <= RUNTIME_WARNING_WINDOW:
                warned = True
                logger.warning("Less than %d minutes of runtime left", RUNTIME_WARNING_WINDOW.seconds // 60)

            for symbol, points in feed.poll(now).items():
                engine.submit_prices(symbol, points)
            try:
                report = engine.tick(now)
            except InvariantViolation as exc:
                logger.critical("Invariant violated, stopping: %s", exc)
                log_anomaly("Scheduler Halt", error=str(exc), tick=ticks, timestamp=now.isoformat())
                engine.ledger.flush_pending()
                return EXIT_INVARIANT_VIOLATION

            ticks += 1
            if report.opened or report.closed:
                logger.info("Tick %d: %s", ticks, report.summary())
            if max_ticks is not None and ticks >= max_ticks:
                break
            wait(config.tick_interval)
    finally:
        _restore_handlers(previous_handlers)

    return finish_session(engine, config, clock())


def finish_session(engine: TradingEngine, config: BotConfig, now: datetime) -> int:
    """Drain the engine and persist the hand-off snapshot."""
    try:
        engine.shutdown(now)
    except InvariantViolation as exc:
        logger.critical("Invariant violated during shutdown: %s", exc)
        return EXIT_INVARIANT_VIOLATION
    return hand_off(engine, config, now)


def hand_off(engine: TradingEngine, config: BotConfig, now: datetime) -> int:
    """Save the snapshot the next session resumes from.

    Open positions and ledger rows that still could not be written travel
    with it. Unwritten rows make the exit status non-zero even when the
    snapshot itself was saved.
    """
    engine.ledger.flush_pending()
    try:
        save_snapshot(config.state_file, engine.snapshot(now))
    except PersistenceError as exc:
        logger.error("Hand-off snapshot not saved: %s", exc)
        log_anomaly(
            "Snapshot Write Failure",
            path=str(config.state_file),
            error=str(exc),
            pending_ledger_rows=engine.ledger.pending_count,
        )
        return EXIT_PERSISTENCE_FAILURE
    if engine.ledger.pending_count:
        logger.error(
            "%d ledger rows still unwritten; carried in the hand-off snapshot",
            engine.ledger.pending_count,
        )
        log_anomaly(
            "Ledger Rows Carried Over",
            path=str(config.state_file),
            pending_ledger_rows=engine.ledger.pending_count,
        )
        return EXIT_PERSISTENCE_FAILURE
    logger.info("Session ended after handing off to slot %02d:00", config.next_time_slot)
    return EXIT_OK
