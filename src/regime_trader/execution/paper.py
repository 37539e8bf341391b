"""Paper order execution and CSV price replay.

Used for dry runs: PaperOrderExecutor logs every leg and always succeeds,
ReplayPriceFeed serves recorded prices one row per symbol per poll.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from regime_trader.interfaces import (
    ExecutionResult,
    OrderExecutor,
    PriceFeed,
    PriceUnavailable,
)


logger = logging.getLogger(__name__)


_REQUIRED_COLUMNS = ["symbol", "price"]


@dataclass(frozen=True)
class PaperFill:
    """One simulated order leg."""
    from_asset: str
    to_asset: str
    amount: float
    reason: str
    timestamp: datetime


class PaperOrderExecutor(OrderExecutor):
    """Executor that records legs without sending them anywhere."""

    def __init__(self):
        self.fills: list[PaperFill] = []

    def execute(self, from_asset, to_asset, amount, reason):
        if amount <= 0:
            return ExecutionResult(success=False, error=f"invalid amount {amount}")

        self.fills.append(PaperFill(from_asset, to_asset, amount, reason, datetime.now()))
        logger.info(f"[DRY RUN] {from_asset} -> {to_asset} amount={amount:.6f} ({reason})")
        return ExecutionResult(success=True)


class ReplayPriceFeed(PriceFeed):
    """Replays recorded prices in file order, per symbol.

    Each get_price() call for a symbol consumes that symbol's next row.
    A symbol with no rows left raises PriceUnavailable.
    """

    def __init__(self, frame: pd.DataFrame):
        """Initialize replay feed.

        Args:
            frame: Rows with columns symbol, price and optional volume

        Raises:
            ValueError: If required columns are missing.
        """
        missing = [col for col in _REQUIRED_COLUMNS if col not in frame.columns]
        if missing:
            raise ValueError(f"missing replay columns: {','.join(missing)}")

        frame = frame.copy()
        frame["symbol"] = frame["symbol"].astype(str).str.strip().str.upper()
        frame["price"] = pd.to_numeric(frame["price"], errors="coerce")
        if "volume" in frame.columns:
            frame["volume"] = pd.to_numeric(frame["volume"], errors="coerce")
        else:
            frame["volume"] = float("nan")
        frame = frame.dropna(subset=["price"])

        self._rows: dict[str, deque] = {}
        for symbol, group in frame.groupby("symbol", sort=False):
            self._rows[symbol] = deque(
                (float(price), None if pd.isna(volume) else float(volume))
                for price, volume in zip(group["price"], group["volume"])
            )
        self._last_volume: dict[str, Optional[float]] = {}

        logger.info(f"Replay feed loaded {len(frame)} rows for {len(self._rows)} symbols")

    @classmethod
    def from_csv(cls, path: str | Path) -> "ReplayPriceFeed":
        """Load a replay feed from a CSV file."""
        return cls(pd.read_csv(path))

    def get_price(self, symbol):
        rows = self._rows.get(symbol)
        if not rows:
            self._last_volume.pop(symbol, None)
            raise PriceUnavailable(f"no replay data left for {symbol}")

        price, volume = rows.popleft()
        self._last_volume[symbol] = volume
        return price

    def get_volume(self, symbol):
        return self._last_volume.get(symbol)

    def remaining(self, symbol: str) -> int:
        return len(self._rows.get(symbol, ()))

    @property
    def exhausted(self) -> bool:
        return all(len(rows) == 0 for rows in self._rows.values())
