"""
Regime Trader - regime-aware multi-indicator trading decision engine

Polls token prices, scores trend/momentum/mean-reversion/volume signals with
regime-dependent weights, sizes positions with Kelly and volatility methods
and gates them against portfolio heat.
"""

__version__ = "1.0.0"

from .models import (
    MarketRegime,
    SignalType,
    SizingMethod,
    Signal,
    StopLevels,
    TradeDecision,
)

__all__ = [
    "MarketRegime",
    "SignalType",
    "SizingMethod",
    "Signal",
    "StopLevels",
    "TradeDecision",
]
