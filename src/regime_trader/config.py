"""Configuration management module for Regime Trader.

Per-symbol strategy options live in a JSON override table (by default
``config/tokens.json``) with global fallback defaults. Runtime settings for
the polling loop come from environment variables, loaded from a .env file.
"""

import json
import logging
import math
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from regime_trader.models import SizingMethod


logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def _non_finite_errors(config: Any, names: Optional[dict[str, str]] = None) -> list[str]:
    errors = []
    for f in fields(config):
        value = getattr(config, f.name)
        if isinstance(value, float) and not math.isfinite(value):
            name = (names or {}).get(f.name, f.name)
            errors.append(f"{name} must be a finite number, got {value!r}")
    return errors


@dataclass
class TokenConfig:
    """Per-symbol strategy parameters.

    ``volatility_multiplier``, ``stop_loss_multiplier``, ``take_profit_multiplier``,
    ``trailing_stop_multiplier`` and ``adx_threshold`` are accepted so existing
    override tables load cleanly, but nothing reads them. Dynamic stops come
    from the per-regime table in ``RiskManager.STOP_MULTIPLIERS`` and the
    regime detector uses fixed ADX cutoffs.
    """
    # Multi-timeframe EMAs
    ema_fast: int = 8
    ema_slow: int = 21
    ema_trend: int = 50

    # Volatility and risk
    atr_period: int = 14
    volatility_multiplier: float = 2.0
    max_risk_per_trade: float = 0.02   # 2% of capital
    turbulence_std: float = 0.02       # Baseline ATR/price ratio

    # Position sizing
    min_lot_usd: float = 100.0
    max_lot_usd: float = 1000.0
    position_sizing: SizingMethod = SizingMethod.HYBRID
    fixed_position_size: float = 0.2

    # Technical indicators
    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    # Exit multipliers (inert, see class docstring)
    stop_loss_multiplier: float = 2.0
    take_profit_multiplier: float = 3.0
    trailing_stop_multiplier: float = 1.5

    # Market regime
    adx_period: int = 14
    adx_threshold: float = 25.0

    cooldown_sec: float = 30.0

    # Volume analysis
    volume_period: int = 20
    volume_threshold: float = 1.5

    def validate(self) -> None:
        """Validate parameter ranges.

        Raises:
            ConfigValidationError: If any parameter is out of range.
        """
        errors = []
        errors.extend(_non_finite_errors(self))

        for name in ("ema_fast", "ema_slow", "ema_trend", "atr_period", "rsi_period",
                     "bollinger_period", "macd_fast", "macd_slow", "macd_signal",
                     "adx_period", "volume_period"):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be > 0")

        if self.macd_fast >= self.macd_slow:
            errors.append("macd_fast must be < macd_slow")
        if self.min_lot_usd <= 0:
            errors.append("min_lot_usd must be > 0")
        if self.max_lot_usd < self.min_lot_usd:
            errors.append("max_lot_usd must be >= min_lot_usd")
        if not 0 < self.max_risk_per_trade <= 1:
            errors.append("max_risk_per_trade must be in (0, 1]")
        if not 0 < self.fixed_position_size <= 1:
            errors.append("fixed_position_size must be in (0, 1]")
        if self.turbulence_std <= 0:
            errors.append("turbulence_std must be > 0")
        if self.cooldown_sec < 0:
            errors.append("cooldown_sec must be >= 0")

        if errors:
            raise ConfigValidationError("\n".join(errors))


@dataclass
class RiskConfig:
    """Portfolio-level risk limits and initial Kelly estimates."""
    max_portfolio_heat: float = 0.15   # 15% of capital at risk across positions
    max_position_risk: float = 0.05    # 5% of capital at risk per position
    kelly_cap: float = 0.25            # Kelly fraction never above 25%
    initial_win_rate: float = 0.55
    initial_avg_win: float = 0.03
    initial_avg_loss: float = 0.02

    def validate(self) -> None:
        errors = []
        errors.extend(_non_finite_errors(self))
        if not 0 < self.max_portfolio_heat <= 1:
            errors.append("max_portfolio_heat must be in (0, 1]")
        if not 0 < self.max_position_risk <= 1:
            errors.append("max_position_risk must be in (0, 1]")
        if not 0 < self.kelly_cap <= 1:
            errors.append("kelly_cap must be in (0, 1]")
        if not 0 <= self.initial_win_rate <= 1:
            errors.append("initial_win_rate must be in [0, 1]")
        if errors:
            raise ConfigValidationError("\n".join(errors))


@dataclass
class EngineConfig:
    """Runtime settings for the polling loop (from .env)."""
    dry_run: bool = True
    poll_seconds: float = 10.0
    available_capital: float = 10000.0
    base_token: str = "USDC"
    trade_tokens: list[str] = field(default_factory=lambda: [
        "ETH", "WBTC", "SOL", "ARB", "OP", "MATIC"
    ])
    max_daily_trades: int = 30  # <= 0 means no cap
    tp_bps: float = 0.0
    sl_bps: float = 0.0
    use_trailing: bool = False
    trail_bps: float = 0.0
    state_file: str = "data/state.json"
    token_config_path: str = "config/tokens.json"
    replay_file: Optional[str] = None
    log_dir: str = "logs"

    @property
    def has_daily_cap(self) -> bool:
        return self.max_daily_trades > 0

    @property
    def tp_sl_enabled(self) -> bool:
        return self.tp_bps > 0 or self.sl_bps > 0 or self.use_trailing

    def validate(self) -> None:
        """Validate engine configuration.

        Raises:
            ConfigValidationError: If any setting is invalid.
        """
        errors = []
        errors.extend(_non_finite_errors(self, _ENV_NAMES))

        if self.poll_seconds <= 0:
            errors.append("PRICE_POLL_SEC must be > 0")
        if self.available_capital <= 0:
            errors.append("AVAILABLE_CAPITAL must be > 0")
        if not self.trade_tokens:
            errors.append("TRADE_TOKENS must list at least one token")
        if not self.base_token:
            errors.append("BASE is required")
        for name in ("tp_bps", "sl_bps", "trail_bps"):
            if getattr(self, name) < 0:
                errors.append(f"{name.upper()} must be >= 0")
        if self.use_trailing and self.trail_bps <= 0:
            errors.append("TRAIL_BPS must be > 0 when USE_TRAILING is on")

        if errors:
            raise ConfigValidationError("\n".join(errors))


_ENV_NAMES = {
    "poll_seconds": "PRICE_POLL_SEC",
    "available_capital": "AVAILABLE_CAPITAL",
    "tp_bps": "TP_BPS",
    "sl_bps": "SL_BPS",
    "trail_bps": "TRAIL_BPS",
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")
_TOKEN_FIELDS = {f.name: f for f in fields(TokenConfig)}


def _to_snake_case(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


class TokenConfigManager:
    """Resolves per-symbol TokenConfig from an override table.

    Override keys may be camelCase (``emaFast``) or snake_case (``ema_fast``).
    """

    def __init__(
        self,
        overrides: Optional[dict[str, dict[str, Any]]] = None,
        defaults: Optional[TokenConfig] = None,
    ):
        """Initialize token config manager.

        Args:
            overrides: Mapping of symbol -> {option: value}
            defaults: Global fallback configuration
        """
        self.defaults = defaults or TokenConfig()
        self._overrides = {symbol: dict(opts) for symbol, opts in (overrides or {}).items()}
        self._cache: dict[str, TokenConfig] = {}

    @classmethod
    def from_file(cls, path: str | Path) -> "TokenConfigManager":
        """Load overrides from a JSON file.

        A missing file yields global defaults. A malformed file is logged
        and also yields global defaults.
        """
        path = Path(path)
        if not path.exists():
            logger.info(f"No token config at {path}, using global defaults")
            return cls()

        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load token configs from {path}: {e}, using global defaults")
            return cls()

        if not isinstance(data, dict):
            logger.warning(f"Token config {path} is not an object, using global defaults")
            return cls()

        logger.info(f"Loaded config overrides for {len(data)} tokens")
        return cls(overrides=data)

    @property
    def symbols(self) -> list[str]:
        return list(self._overrides.keys())

    def get(self, symbol: str) -> TokenConfig:
        """Get the resolved configuration for a symbol.

        Raises:
            ConfigValidationError: If an override has an invalid value.
        """
        if symbol not in self._cache:
            self._cache[symbol] = self._resolve(symbol)
        return self._cache[symbol]

    def _resolve(self, symbol: str) -> TokenConfig:
        values: dict[str, Any] = {}

        for raw_key, raw_value in self._overrides.get(symbol, {}).items():
            key = _to_snake_case(raw_key)
            if key not in _TOKEN_FIELDS:
                logger.warning(f"Ignoring unknown token option '{raw_key}' for {symbol}")
                continue
            if raw_value is None:
                continue
            values[key] = self._coerce(key, raw_value, symbol)

        config = replace(self.defaults, **values)
        config.validate()
        return config

    def _coerce(self, key: str, value: Any, symbol: str) -> Any:
        if key == "position_sizing":
            try:
                return SizingMethod.from_name(value)
            except ValueError as e:
                raise ConfigValidationError(f"{symbol}: {e}")

        default = getattr(self.defaults, key)
        try:
            if isinstance(default, bool):
                return bool(value)
            if isinstance(default, int):
                return int(value)
            if isinstance(default, float):
                number = float(value)
                if not math.isfinite(number):
                    raise ValueError(value)
                return number
        except (TypeError, ValueError, OverflowError):
            raise ConfigValidationError(f"{symbol}: invalid value {value!r} for {key}")
        return value


def _str_to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_tokens(value: Optional[str], default: list[str]) -> list[str]:
    if value is None:
        return list(default)
    return [t.strip().upper() for t in value.split(",") if t.strip()]


def load_engine_config(load_env: bool = True) -> EngineConfig:
    """Load engine configuration from environment variables.

    Args:
        load_env: Whether to load the .env file first. Set to False for testing.

    Returns:
        EngineConfig with values from the environment or defaults.

    Raises:
        ConfigValidationError: If a numeric variable cannot be parsed.
    """
    if load_env:
        load_dotenv(override=True)

    defaults = EngineConfig()

    def number(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ConfigValidationError(f"{name} must be a number, got {raw!r}")
        if not math.isfinite(value):
            raise ConfigValidationError(f"{name} must be a finite number, got {raw!r}")
        return value

    return EngineConfig(
        dry_run=_str_to_bool(os.getenv("DRY_RUN"), defaults.dry_run),
        poll_seconds=number("PRICE_POLL_SEC", defaults.poll_seconds),
        available_capital=number("AVAILABLE_CAPITAL", defaults.available_capital),
        base_token=(os.getenv("BASE") or defaults.base_token).strip().upper(),
        trade_tokens=_parse_tokens(os.getenv("TRADE_TOKENS"), defaults.trade_tokens),
        max_daily_trades=int(number("MAX_DAILY_TRADES", defaults.max_daily_trades)),
        tp_bps=number("TP_BPS", defaults.tp_bps),
        sl_bps=number("SL_BPS", defaults.sl_bps),
        use_trailing=_str_to_bool(os.getenv("USE_TRAILING"), defaults.use_trailing),
        trail_bps=number("TRAIL_BPS", defaults.trail_bps),
        state_file=os.getenv("STATE_FILE", defaults.state_file),
        token_config_path=os.getenv("TOKEN_CONFIG_PATH", defaults.token_config_path),
        replay_file=os.getenv("REPLAY_FILE") or None,
        log_dir=os.getenv("LOG_DIR", defaults.log_dir),
    )
