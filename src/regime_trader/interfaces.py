"""Collaborator interfaces for price data and order execution.

The decision engine only talks to these abstractions; live API clients
live outside this package.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


class PriceUnavailable(Exception):
    """Raised by a PriceFeed when no price can be obtained for a symbol."""
    pass


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one order leg."""
    success: bool
    error: Optional[str] = None


class PriceFeed(ABC):
    """Source of the latest price (and optionally volume) per symbol."""

    @abstractmethod
    def get_price(self, symbol: str) -> float:
        """Get the latest price.

        Raises:
            PriceUnavailable: If no price is available for the symbol.
        """

    def get_volume(self, symbol: str) -> Optional[float]:
        """Latest volume for the symbol, None if the feed has none."""
        return None


class OrderExecutor(ABC):
    """Executes a single swap leg between two assets."""

    @abstractmethod
    def execute(
        self,
        from_asset: str,
        to_asset: str,
        amount: float,
        reason: str,
    ) -> ExecutionResult:
        """Execute one leg.

        Args:
            from_asset: Asset being sold
            to_asset: Asset being bought
            amount: Quantity of from_asset to spend
            reason: Human-readable reason recorded with the order

        Returns:
            ExecutionResult; failures are reported, not raised
        """
