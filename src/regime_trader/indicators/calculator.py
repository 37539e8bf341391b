"""Technical indicator calculation module for Regime Trader.

All functions are pure: they take price/return sequences and return a value,
or None when the lookback window is not yet filled.

Only a single price per tick is available (no high/low/close triple), so
ATR degenerates to the mean absolute tick-to-tick move and ADX is a
directional-movement proxy built from log-returns.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd


# RSI sentinels for a zero average loss
RSI_NO_LOSS = 100.0  # only gains in the window
RSI_FLAT = 50.0      # no movement at all


@dataclass(frozen=True)
class BollingerBands:
    """Bollinger channel around a simple moving average."""
    upper: float
    middle: float
    lower: float
    std: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class MACDResult:
    """MACD line, EMA-of-MACD signal line and histogram."""
    macd: float
    signal: float
    histogram: float
    previous_histogram: Optional[float] = None


def ema(prev: Optional[float], price: float, length: int) -> float:
    """Advance an Exponential Moving Average by one price.

    Cold start: when there is no previous value the price itself is returned.

    Args:
        prev: Previous EMA value (None on first price)
        price: New price
        length: EMA period

    Returns:
        Updated EMA value
    """
    if prev is None:
        return float(price)
    k = 2 / (length + 1)
    return (price - prev) * k + prev


def sma(values: Sequence[float]) -> float:
    """Simple mean; 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def stdev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1 denominator); 0.0 for fewer than 2 values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=1))


def log_return(prev_price: float, price: float) -> float:
    """Natural log return between two positive prices."""
    return math.log(price / prev_price)


def rsi(prices: Sequence[float], period: int = 14) -> Optional[float]:
    """Calculate Relative Strength Index with Wilder smoothing.

    RSI = 100 - (100 / (1 + RS)), RS = average gain / average loss.
    The averages are seeded with the mean of the first `period` deltas and
    smoothed over the remaining deltas.

    When the average loss is zero the ratio is undefined: the result is
    RSI_NO_LOSS (100) if there were gains, RSI_FLAT (50) if the series is flat.

    Args:
        prices: Price series, oldest first
        period: RSI period

    Returns:
        RSI in [0, 100], or None if fewer than period + 1 prices
    """
    if period <= 0 or len(prices) < period + 1:
        return None

    deltas = np.diff(np.asarray(prices, dtype=float))
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return RSI_NO_LOSS if avg_gain > 0 else RSI_FLAT
    if avg_gain == 0:
        return 0.0

    rs = avg_gain / avg_loss
    return max(0.0, min(100.0, 100 - (100 / (1 + rs))))


def bollinger_bands(
    prices: Sequence[float],
    period: int = 20,
    std_dev_mult: float = 2.0,
) -> Optional[BollingerBands]:
    """Calculate Bollinger Bands over the trailing window.

    Args:
        prices: Price series, oldest first
        period: SMA window
        std_dev_mult: Band width in standard deviations

    Returns:
        BollingerBands, or None if fewer than `period` prices
    """
    if period <= 0 or len(prices) < period:
        return None

    window = list(prices)[-period:]
    middle = sma(window)
    std = stdev(window)
    return BollingerBands(
        upper=middle + std_dev_mult * std,
        middle=middle,
        lower=middle - std_dev_mult * std,
        std=std,
    )


def macd(
    prices: Sequence[float],
    fast: int = 12,
    slow: int = 26,
    signal_period: int = 9,
) -> Optional[MACDResult]:
    """Calculate MACD with a proper EMA-of-MACD signal line.

    The MACD line history is rebuilt over the whole price window so the
    signal line is the `signal_period` EMA of that history, and the
    histogram (line - signal) carries real momentum information.

    Args:
        prices: Price series, oldest first
        fast: Fast EMA period
        slow: Slow EMA period
        signal_period: Signal line EMA period

    Returns:
        MACDResult, or None if fewer than `slow` prices
    """
    if len(prices) < slow:
        return None

    series = pd.Series(list(prices), dtype=float)
    line = (
        series.ewm(span=fast, adjust=False).mean()
        - series.ewm(span=slow, adjust=False).mean()
    )
    signal = line.ewm(span=signal_period, adjust=False).mean()
    histogram = line - signal

    previous = float(histogram.iloc[-2]) if len(histogram) >= 2 else None
    return MACDResult(
        macd=float(line.iloc[-1]),
        signal=float(signal.iloc[-1]),
        histogram=float(histogram.iloc[-1]),
        previous_histogram=previous,
    )


def atr(prices: Sequence[float], period: int = 14) -> Optional[float]:
    """Calculate Average True Range from a single-price series.

    True range degenerates to |price[i-1] - price[i]|; ATR is the mean of
    the trailing `period` true ranges.

    Returns:
        ATR (>= 0), or None if fewer than period + 1 prices
    """
    if period <= 0 or len(prices) < period + 1:
        return None

    window = np.asarray(list(prices)[-(period + 1):], dtype=float)
    return float(np.abs(np.diff(window)).mean())


def adx(returns: Sequence[float], period: int = 14) -> Optional[float]:
    """Average Directional Index proxy from log-returns.

    Each log-return is exponentiated back into a relative move. Upward moves
    are +DM, downward moves are -DM and the true range is their sum, so
    DX = 100 * |+DM - -DM| / (+DM + -DM) over each rolling `period` window.
    ADX is the mean of the trailing `period` DX values.

    Returns:
        ADX in [0, 100], or None if fewer than `period` returns
    """
    if period <= 0 or len(returns) < period:
        return None

    moves = np.expm1(np.asarray(returns, dtype=float))
    frame = pd.DataFrame({
        "plus_dm": np.clip(moves, 0.0, None),
        "minus_dm": np.clip(-moves, 0.0, None),
    })
    sums = frame.rolling(window=period).sum().dropna()

    total = sums["plus_dm"] + sums["minus_dm"]
    spread = (sums["plus_dm"] - sums["minus_dm"]).abs()
    dx = (100 * spread / total).where(total > 1e-12, 0.0)

    return float(dx.tail(period).mean())
