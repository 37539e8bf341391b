"""Per-symbol market state."""
from regime_trader.market.state import PriceSeriesState, SymbolStateRegistry

__all__ = [
    "PriceSeriesState",
    "SymbolStateRegistry",
]
