"""Flat JSON position-state store.

Keeps average cost and trailing high per symbol across restarts so that
take-profit / stop-loss / trailing exits can be evaluated against the
average entry price. File layout::

    {"pos": {"ETH": {"qty": 1.5, "cost": 4500.0, "trailing_high": 3100.0}}}
"""

import json
import logging
from pathlib import Path
from typing import Optional

from regime_trader.models import PositionState, TpSlTrigger


logger = logging.getLogger(__name__)


BUY = "BUY"
SELL = "SELL"


class PositionStateStore:
    """Loads, updates and saves per-symbol position state."""

    def __init__(self, path: str = "data/state.json"):
        """Initialize position state store.

        Args:
            path: Path to the JSON state file
        """
        self.path = Path(path)
        self.positions: dict[str, PositionState] = {}

    def load(self) -> dict[str, PositionState]:
        """Load state from disk.

        A missing or corrupt file loads as empty state.

        Returns:
            Mapping of symbol -> PositionState
        """
        self.positions = {}
        if not self.path.exists():
            return self.positions

        try:
            with open(self.path) as f:
                data = json.load(f)
            for symbol, raw in (data.get("pos") or {}).items():
                self.positions[symbol] = PositionState.from_dict(raw)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load position state from {self.path}: {e}, starting empty")
            self.positions = {}

        logger.info(f"Loaded position state for {len(self.positions)} symbols")
        return self.positions

    def save(self) -> None:
        """Write state to disk, creating the parent directory if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"pos": {symbol: p.to_dict() for symbol, p in self.positions.items()}}
        with open(self.path, "w") as f:
            json.dump(data, f, indent=2)

    def get(self, symbol: str) -> PositionState:
        """Get state for a symbol (an empty state if none is recorded)."""
        return self.positions.get(symbol, PositionState())

    def update_position_state(
        self,
        symbol: str,
        side: str,
        qty: float,
        price: float,
    ) -> PositionState:
        """Apply a fill to the symbol's average cost.

        BUY adds qty x price to cost and raises the trailing high. SELL
        removes the average cost of the sold quantity; the sold quantity
        is capped at the holding. The trailing high never moves down.

        Args:
            symbol: Instrument symbol
            side: "BUY" or "SELL"
            qty: Filled quantity in token units
            price: Fill price in USD

        Returns:
            Updated PositionState
        """
        position = self.positions.get(symbol) or PositionState()
        side = side.upper()

        if side == BUY:
            position.cost += qty * price
            position.qty += qty
            if price > position.trailing_high:
                position.trailing_high = price
        elif side == SELL:
            sell_qty = min(qty, position.qty)
            position.cost -= position.avg_entry * sell_qty
            position.qty -= sell_qty
            if position.qty <= 0:
                position.qty = 0.0
                position.cost = 0.0
        else:
            raise ValueError(f"Unknown side '{side}' (expected BUY or SELL)")

        self.positions[symbol] = position
        return position

    def update_trailing_high(self, symbol: str, price: float) -> bool:
        """Raise the trailing high of a held symbol.

        Returns:
            True if the trailing high moved
        """
        position = self.positions.get(symbol)
        if position is None or position.qty <= 0 or price <= position.trailing_high:
            return False
        position.trailing_high = price
        return True

    def check_tp_sl(
        self,
        symbol: str,
        price: float,
        tp_bps: float,
        sl_bps: float,
        use_trailing: bool = False,
        trail_bps: float = 0.0,
    ) -> Optional[TpSlTrigger]:
        """Check take-profit, stop-loss and trailing-stop conditions.

        Thresholds are in basis points relative to the average entry (TP/SL)
        or the trailing high (TRAIL). TP wins over SL, SL over TRAIL.

        Returns:
            TpSlTrigger, or None when nothing is held
        """
        position = self.positions.get(symbol)
        if position is None or position.qty <= 0:
            return None

        avg = position.avg_entry
        hit_tp = tp_bps > 0 and price >= avg * (1 + tp_bps / 1e4)
        hit_sl = sl_bps > 0 and price <= avg * (1 - sl_bps / 1e4)
        hit_trail = (
            use_trailing
            and position.trailing_high > 0
            and price <= position.trailing_high * (1 - trail_bps / 1e4)
        )

        if not (hit_tp or hit_sl or hit_trail):
            return TpSlTrigger(triggered=False)

        reason = "TP" if hit_tp else "SL" if hit_sl else "TRAIL"
        logger.info(
            f"[{symbol}] {reason} hit: qty={position.qty:.6f} avg={avg:.6f} "
            f"px={price:.6f} high={position.trailing_high:.6f}"
        )
        return TpSlTrigger(
            triggered=True,
            reason=reason,
            avg_entry=avg,
            current_price=price,
            qty=position.qty,
            trailing_high=position.trailing_high,
        )
