"""Dry-run execution and recorded price replay."""
from regime_trader.execution.paper import PaperOrderExecutor, ReplayPriceFeed

__all__ = [
    "PaperOrderExecutor",
    "ReplayPriceFeed",
]
