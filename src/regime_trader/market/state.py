"""Per-symbol price series state and its registry.

Each tracked symbol owns bounded buffers of prices, volumes and log-returns
plus the indicator values derived from them. State is only mutated by
SymbolStateRegistry.update_price, one symbol at a time.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, Optional

from regime_trader.config import TokenConfig, TokenConfigManager
from regime_trader.indicators import (
    BollingerBands,
    MACDResult,
    adx,
    atr,
    bollinger_bands,
    ema,
    log_return,
    macd,
    rsi,
    sma,
)


logger = logging.getLogger(__name__)


MAX_PRICES = 100
MAX_VOLUMES = 100
MAX_RETURNS = 240  # ~4h with 1-minute polling
MAX_RSI_HISTORY = 20


@dataclass
class PriceSeriesState:
    """Rolling market state for one symbol.

    Derived indicator values stay None until their lookback window is filled.
    """
    symbol: str
    prices: deque = field(default_factory=lambda: deque(maxlen=MAX_PRICES))
    volumes: deque = field(default_factory=lambda: deque(maxlen=MAX_VOLUMES))
    returns: deque = field(default_factory=lambda: deque(maxlen=MAX_RETURNS))
    rsi_history: deque = field(default_factory=lambda: deque(maxlen=MAX_RSI_HISTORY))

    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    ema_trend: Optional[float] = None
    rsi: Optional[float] = None
    bollinger: Optional[BollingerBands] = None
    macd: Optional[MACDResult] = None
    atr: Optional[float] = None
    adx: Optional[float] = None

    last_price: Optional[float] = None
    last_volume: Optional[float] = None

    @property
    def has_trend_emas(self) -> bool:
        return (
            self.ema_fast is not None
            and self.ema_slow is not None
            and self.ema_trend is not None
        )

    @property
    def previous_price(self) -> Optional[float]:
        """Price before the latest one (latest price if only one exists)."""
        if len(self.prices) >= 2:
            return self.prices[-2]
        return self.last_price

    def reference_price(self, lookback: int = 10) -> Optional[float]:
        """Price `lookback` ticks ago, falling back to the latest price."""
        if len(self.prices) >= lookback:
            return self.prices[-lookback]
        return self.last_price

    def average_volume(self, period: int = 20) -> Optional[float]:
        """Mean of the trailing `period` volumes, None without volume data."""
        if not self.volumes:
            return None
        return sma(list(self.volumes)[-period:])


class SymbolStateRegistry:
    """Registry of PriceSeriesState keyed by symbol.

    States are created explicitly with ensure(); update_price() ensures the
    symbol before applying a tick.
    """

    def __init__(self, token_configs: Optional[TokenConfigManager] = None):
        """Initialize registry.

        Args:
            token_configs: Per-symbol indicator configuration. Uses defaults if None.
        """
        self.token_configs = token_configs or TokenConfigManager()
        self._states: dict[str, PriceSeriesState] = {}

    def ensure(self, symbol: str) -> PriceSeriesState:
        """Get the state for a symbol, creating an empty one if needed."""
        state = self._states.get(symbol)
        if state is None:
            state = PriceSeriesState(symbol=symbol)
            self._states[symbol] = state
            logger.debug(f"Created price state for {symbol}")
        return state

    def get(self, symbol: str) -> Optional[PriceSeriesState]:
        return self._states.get(symbol)

    def update_price(
        self,
        symbol: str,
        price: Optional[float],
        volume: Optional[float] = None,
    ) -> bool:
        """Apply one price tick to a symbol's state.

        A missing or invalid price leaves the state untouched.

        Args:
            symbol: Instrument symbol
            price: Latest price (must be a positive finite number)
            volume: Latest volume, if the feed provides it

        Returns:
            True if the tick was applied
        """
        if price is None or not math.isfinite(price) or price <= 0:
            logger.warning(f"[{symbol}] Skipping invalid price {price!r}")
            return False

        state = self.ensure(symbol)
        config = self.token_configs.get(symbol)
        price = float(price)

        state.prices.append(price)
        if volume is not None and math.isfinite(volume) and volume > 0:
            state.volumes.append(float(volume))
            state.last_volume = float(volume)
        else:
            state.last_volume = None

        state.ema_fast = ema(state.ema_fast, price, config.ema_fast)
        state.ema_slow = ema(state.ema_slow, price, config.ema_slow)
        state.ema_trend = ema(state.ema_trend, price, config.ema_trend)

        if state.last_price is not None:
            state.returns.append(log_return(state.last_price, price))

        self._update_indicators(state, config)
        state.last_price = price
        return True

    def _update_indicators(self, state: PriceSeriesState, config: TokenConfig) -> None:
        prices = list(state.prices)

        if len(prices) >= config.rsi_period + 1:
            state.rsi = rsi(prices, config.rsi_period)
            state.rsi_history.append(state.rsi)

        if len(prices) >= config.bollinger_period:
            state.bollinger = bollinger_bands(
                prices, config.bollinger_period, config.bollinger_std_dev
            )

        if len(prices) >= config.macd_slow:
            state.macd = macd(prices, config.macd_fast, config.macd_slow, config.macd_signal)

        if len(prices) >= config.atr_period + 1:
            state.atr = atr(prices, config.atr_period)

        if len(state.returns) >= config.adx_period:
            state.adx = adx(list(state.returns), config.adx_period)

    @property
    def symbols(self) -> list[str]:
        return list(self._states.keys())

    def clear(self) -> None:
        self._states.clear()

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[PriceSeriesState]:
        return iter(self._states.values())
