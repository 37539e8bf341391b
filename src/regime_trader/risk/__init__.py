"""Risk management and position sizing."""
from regime_trader.risk.position_sizer import (
    FixedSizing,
    HybridSizing,
    KellySizing,
    PositionSizer,
    SizingStrategy,
    VolatilitySizing,
)
from regime_trader.risk.risk_manager import HeatStatus, RiskManager

__all__ = [
    "FixedSizing",
    "HeatStatus",
    "HybridSizing",
    "KellySizing",
    "PositionSizer",
    "RiskManager",
    "SizingStrategy",
    "VolatilitySizing",
]
