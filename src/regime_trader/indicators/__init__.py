"""Technical indicator library."""
from regime_trader.indicators.calculator import (
    RSI_FLAT,
    RSI_NO_LOSS,
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
    stdev,
)

__all__ = [
    "RSI_FLAT",
    "RSI_NO_LOSS",
    "BollingerBands",
    "MACDResult",
    "adx",
    "atr",
    "bollinger_bands",
    "ema",
    "log_return",
    "macd",
    "rsi",
    "sma",
    "stdev",
]
