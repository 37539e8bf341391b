"""Position state persistence."""
from regime_trader.persistence.position_state import PositionStateStore

__all__ = [
    "PositionStateStore",
]
