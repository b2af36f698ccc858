"""Configuration loader for relay_trading_bot.

Builds a validated :class:`BotConfig` from built-in defaults, an optional
``.env`` file, ``RELAY_BOT_*`` environment variables and explicit overrides.
Invalid combinations raise :class:`ConfigurationError` before any trading
begins.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import dotenv_values

from .constants import (
    DEFAULT_COOLDOWN_AFTER_LOSS,
    DEFAULT_DAILY_TARGET_MAX,
    DEFAULT_DAILY_TARGET_MIN,
    DEFAULT_MAX_CONSECUTIVE_LOSSES,
    DEFAULT_MAX_HOLD,
    DEFAULT_MAX_POSITION_PERCENT,
    DEFAULT_MAX_RUNTIME,
    DEFAULT_MAX_TRADES_PER_DAY,
    DEFAULT_MIN_SIGNAL_SCORE,
    DEFAULT_SNAPSHOT_MAX_AGE,
    DEFAULT_STAGNATION_AFTER,
    DEFAULT_STAGNATION_MIN_PROFIT,
    DEFAULT_STOP_LOSS_PERCENT,
    DEFAULT_SUB_PORTFOLIOS,
    DEFAULT_SYMBOLS,
    DEFAULT_TICK_INTERVAL,
    DEFAULT_TOTAL_CAPITAL,
    VALID_TIME_SLOTS,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "RELAY_BOT_"
PAPER_MODE_LABEL = "PAPER MODE"
LIVE_MODE_LABEL = "\U0001f6a8 LIVE MODE \U0001f6a8"

_TRUE_SENTINELS = {"1", "true", "yes", "on"}
_FALSE_SENTINELS = {"0", "false", "no", "off"}


class ConfigurationError(RuntimeError):
    """Raised when mandatory configuration is missing or invalid."""


@dataclass(frozen=True)
class BotConfig:  # pylint: disable=too-many-instance-attributes
    """Validated runtime configuration for one bot instance."""

    paper_trading: bool = True
    daily_target_min: float = DEFAULT_DAILY_TARGET_MIN
    daily_target_max: float = DEFAULT_DAILY_TARGET_MAX
    stop_loss_percent: float = DEFAULT_STOP_LOSS_PERCENT
    take_profit_percent: Optional[float] = None
    max_position_percent: float = DEFAULT_MAX_POSITION_PERCENT
    total_capital: float = DEFAULT_TOTAL_CAPITAL
    sub_portfolios: int = DEFAULT_SUB_PORTFOLIOS
    max_trades_per_day: int = DEFAULT_MAX_TRADES_PER_DAY
    max_consecutive_losses: int = DEFAULT_MAX_CONSECUTIVE_LOSSES
    cooldown_after_loss: timedelta = DEFAULT_COOLDOWN_AFTER_LOSS
    max_daily_risk: Optional[float] = None
    symbols: Tuple[str, ...] = DEFAULT_SYMBOLS
    max_hold_duration: timedelta = DEFAULT_MAX_HOLD
    stagnation_after: Optional[timedelta] = DEFAULT_STAGNATION_AFTER
    stagnation_min_profit: float = DEFAULT_STAGNATION_MIN_PROFIT
    min_signal_score: float = DEFAULT_MIN_SIGNAL_SCORE
    tick_interval: float = DEFAULT_TICK_INTERVAL
    time_slot: int = 0
    max_runtime: timedelta = DEFAULT_MAX_RUNTIME
    snapshot_max_age: timedelta = DEFAULT_SNAPSHOT_MAX_AGE
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    state_file: Path = field(default_factory=lambda: Path("state.json"))

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbols", tuple(self.symbols))
        object.__setattr__(self, "log_dir", Path(self.log_dir))
        object.__setattr__(self, "state_file", Path(self.state_file))
        self._validate()

    def _validate(self) -> None:  # pylint: disable=too-many-branches
        if self.sub_portfolios < 1:
            raise ConfigurationError(f"sub_portfolios must be >= 1 (got {self.sub_portfolios})")
        if self.total_capital <= 0:
            raise ConfigurationError(f"total_capital must be positive (got {self.total_capital})")
        if self.daily_target_min < 0 or self.daily_target_max <= self.daily_target_min:
            raise ConfigurationError(
                "daily_target_max must exceed daily_target_min "
                f"(got min={self.daily_target_min}, max={self.daily_target_max})"
            )
        if self.stop_loss_percent <= self.daily_target_max:
            raise ConfigurationError(
                "stop_loss_percent must exceed daily_target_max "
                f"(got stop_loss={self.stop_loss_percent}, target_max={self.daily_target_max})"
            )
        if self.stop_loss_percent >= 1:
            raise ConfigurationError(f"stop_loss_percent must be below 1 (got {self.stop_loss_percent})")
        if not 0 < self.take_profit_target < 1:
            raise ConfigurationError(f"take_profit_percent must be in (0, 1) (got {self.take_profit_target})")
        if not 0 < self.max_position_percent <= 1:
            raise ConfigurationError(f"max_position_percent must be in (0, 1] (got {self.max_position_percent})")
        if self.max_trades_per_day < 1:
            raise ConfigurationError("max_trades_per_day must be >= 1")
        if self.max_consecutive_losses < 1:
            raise ConfigurationError("max_consecutive_losses must be >= 1")
        if self.cooldown_after_loss < timedelta(0):
            raise ConfigurationError("cooldown_after_loss cannot be negative")
        if self.max_daily_risk is not None and self.max_daily_risk <= 0:
            raise ConfigurationError("max_daily_risk must be positive when set")
        if not self.symbols:
            raise ConfigurationError("at least one symbol is required")
        if self.max_hold_duration <= timedelta(0):
            raise ConfigurationError("max_hold_duration must be positive")
        if self.tick_interval <= 0:
            raise ConfigurationError("tick_interval must be positive")
        if self.max_runtime < timedelta(0):
            raise ConfigurationError("max_runtime cannot be negative")
        if self.time_slot not in VALID_TIME_SLOTS:
            raise ConfigurationError(
                f"time_slot must be one of {sorted(VALID_TIME_SLOTS)} (got {self.time_slot})"
            )

    @property
    def take_profit_target(self) -> float:
        """Take-profit distance; defaults to the upper daily target."""
        if self.take_profit_percent is None:
            return self.daily_target_max
        return self.take_profit_percent

    @property
    def sub_portfolio_capital(self) -> float:
        """Capital assigned to each sub-portfolio at startup."""
        return self.total_capital / self.sub_portfolios

    @property
    def next_time_slot(self) -> int:
        """Relay slot that takes over after this one."""
        return (self.time_slot + 6) % 24

    def with_overrides(self, **changes: Any) -> "BotConfig":
        """Return a re-validated copy with ``changes`` applied."""
        return replace(self, **changes)


def get_mode_label(config: BotConfig) -> str:
    """Return a human-readable label for the configured trading mode."""
    return PAPER_MODE_LABEL if config.paper_trading else LIVE_MODE_LABEL


def _to_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_SENTINELS:
        return True
    if lowered in _FALSE_SENTINELS:
        return False
    logger.warning("Unrecognized boolean value %r; using default %s", raw, default)
    return default


def _to_float(raw: Optional[str], default: Optional[float]) -> Optional[float]:
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid float value %r; using default %s", raw, default)
        return default


def _to_int(raw: Optional[str], default: int) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer value %r; using default %s", raw, default)
        return default


def _to_seconds(raw: Optional[str], default: Optional[timedelta]) -> Optional[timedelta]:
    if raw is None or not raw.strip():
        return default
    if raw.strip().lower() in {"none", "off", "disabled"}:
        return None
    try:
        return timedelta(seconds=float(raw))
    except ValueError:
        logger.warning("Invalid duration (seconds) %r; using default %s", raw, default)
        return default


def _to_symbols(raw: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    if raw is None or not raw.strip():
        return default
    return tuple(item.strip().upper() for item in raw.split(",") if item.strip())


def _read_sources(env_file: Optional[str | Path]) -> Dict[str, str]:
    """Merge ``.env`` values with the process environment (environment wins)."""

    merged: Dict[str, str] = {}
    candidate = Path(env_file) if env_file else Path.cwd() / ".env"
    if candidate.is_file():
        try:
            for key, value in dotenv_values(candidate).items():
                if value is not None:
                    merged[key] = value
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read %s: %s", candidate, exc)
        else:
            logger.debug("Loaded %d entries from %s", len(merged), candidate)
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            merged[key] = value
    return merged


def _env_settings(source: Mapping[str, str]) -> Dict[str, Any]:
    def get(name: str) -> Optional[str]:
        return source.get(ENV_PREFIX + name)

    defaults = BotConfig.__dataclass_fields__  # pylint: disable=no-member
    settings: Dict[str, Any] = {
        "paper_trading": _to_bool(get("PAPER_TRADING"), True),
        "daily_target_min": _to_float(get("DAILY_TARGET_MIN"), DEFAULT_DAILY_TARGET_MIN),
        "daily_target_max": _to_float(get("DAILY_TARGET_MAX"), DEFAULT_DAILY_TARGET_MAX),
        "stop_loss_percent": _to_float(get("STOP_LOSS_PERCENT"), DEFAULT_STOP_LOSS_PERCENT),
        "take_profit_percent": _to_float(get("TAKE_PROFIT_PERCENT"), None),
        "max_position_percent": _to_float(get("MAX_POSITION_PERCENT"), DEFAULT_MAX_POSITION_PERCENT),
        "total_capital": _to_float(get("TOTAL_CAPITAL"), DEFAULT_TOTAL_CAPITAL),
        "sub_portfolios": _to_int(get("SUB_PORTFOLIOS"), DEFAULT_SUB_PORTFOLIOS),
        "max_trades_per_day": _to_int(get("MAX_TRADES_PER_DAY"), DEFAULT_MAX_TRADES_PER_DAY),
        "max_consecutive_losses": _to_int(get("MAX_CONSECUTIVE_LOSSES"), DEFAULT_MAX_CONSECUTIVE_LOSSES),
        "cooldown_after_loss": _to_seconds(get("COOLDOWN_AFTER_LOSS"), DEFAULT_COOLDOWN_AFTER_LOSS),
        "max_daily_risk": _to_float(get("MAX_DAILY_RISK"), None),
        "symbols": _to_symbols(get("SYMBOLS"), DEFAULT_SYMBOLS),
        "max_hold_duration": _to_seconds(get("MAX_HOLD"), DEFAULT_MAX_HOLD),
        "stagnation_after": _to_seconds(get("STAGNATION_AFTER"), DEFAULT_STAGNATION_AFTER),
        "stagnation_min_profit": _to_float(get("STAGNATION_MIN_PROFIT"), DEFAULT_STAGNATION_MIN_PROFIT),
        "min_signal_score": _to_float(get("MIN_SIGNAL_SCORE"), DEFAULT_MIN_SIGNAL_SCORE),
        "tick_interval": _to_float(get("TICK_INTERVAL"), DEFAULT_TICK_INTERVAL),
        "time_slot": _to_int(get("TIME_SLOT") or source.get("TIME_SLOT") or os.getenv("TIME_SLOT"), 0),
        "max_runtime": _to_seconds(get("MAX_RUNTIME"), DEFAULT_MAX_RUNTIME),
        "snapshot_max_age": _to_seconds(get("SNAPSHOT_MAX_AGE"), DEFAULT_SNAPSHOT_MAX_AGE),
    }
    if get("LOG_DIR"):
        settings["log_dir"] = Path(get("LOG_DIR")).expanduser()
    if get("STATE_FILE"):
        settings["state_file"] = Path(get("STATE_FILE")).expanduser()
    # Required durations cannot be disabled; fall back to their defaults.
    for name in ("cooldown_after_loss", "max_hold_duration", "max_runtime", "snapshot_max_age"):
        if settings[name] is None:
            settings[name] = defaults[name].default
    return settings


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    env_file: Optional[str | Path] = None,
) -> BotConfig:
    """Build a validated :class:`BotConfig`.

    Precedence (lowest to highest): defaults, ``.env`` file, ``RELAY_BOT_*``
    environment variables, ``overrides``.
    """

    settings = _env_settings(_read_sources(env_file))
    if overrides:
        known = {f.name for f in fields(BotConfig)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration option(s): {', '.join(unknown)}")
        settings.update(overrides)
    try:
        config = BotConfig(**settings)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
    logger.info(
        "Config loaded: %s capital=%.2f sub_portfolios=%d symbols=%s slot=%dh",
        get_mode_label(config),
        config.total_capital,
        config.sub_portfolios,
        ",".join(config.symbols),
        config.time_slot,
    )
    return config


__all__ = [
    "BotConfig",
    "ConfigurationError",
    "LIVE_MODE_LABEL",
    "PAPER_MODE_LABEL",
    "get_mode_label",
    "load_config",
]
