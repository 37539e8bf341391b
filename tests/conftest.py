"""Pytest configuration and shared fixtures."""

from typing import Optional

import pytest

from regime_trader.config import TokenConfigManager
from regime_trader.interfaces import (
    ExecutionResult,
    OrderExecutor,
    PriceFeed,
    PriceUnavailable,
)
from regime_trader.market.state import PriceSeriesState, SymbolStateRegistry


def rising_prices(n: int = 60, start: float = 100.0, step: float = 0.01) -> list[float]:
    """Strictly increasing geometric price series."""
    return [start * (1 + step) ** i for i in range(n)]


def falling_prices(n: int = 60, start: float = 100.0, step: float = 0.01) -> list[float]:
    """Strictly decreasing geometric price series."""
    return [start * (1 - step) ** i for i in range(n)]


def flat_prices(n: int = 60, price: float = 100.0) -> list[float]:
    return [price] * n


def feed_prices(
    registry: SymbolStateRegistry,
    symbol: str,
    prices: list[float],
    volumes: Optional[list[float]] = None,
) -> PriceSeriesState:
    """Apply a price series to a registry and return the symbol's state."""
    for i, price in enumerate(prices):
        registry.update_price(symbol, price, volumes[i] if volumes else None)
    return registry.get(symbol)


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedFeed(PriceFeed):
    """Feed serving scripted prices per symbol; None entries are unavailable."""

    def __init__(self, prices: dict[str, list[Optional[float]]]):
        self.prices = {symbol: list(series) for symbol, series in prices.items()}
        self.calls: list[str] = []

    def get_price(self, symbol):
        self.calls.append(symbol)
        series = self.prices.get(symbol)
        if not series:
            raise PriceUnavailable(f"no price for {symbol}")
        price = series.pop(0)
        if price is None:
            raise PriceUnavailable(f"no price for {symbol}")
        return price


class RecordingExecutor(OrderExecutor):
    """Executor recording legs; fails every leg when `fail` is set."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.legs: list[tuple[str, str, float, str]] = []

    def execute(self, from_asset, to_asset, amount, reason):
        if self.fail:
            return ExecutionResult(success=False, error="rejected")
        self.legs.append((from_asset, to_asset, amount, reason))
        return ExecutionResult(success=True)


@pytest.fixture
def token_configs():
    return TokenConfigManager()


@pytest.fixture
def registry(token_configs):
    return SymbolStateRegistry(token_configs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def executor():
    return RecordingExecutor()
