"""Regime detection, signal generation and the trading strategy."""
from regime_trader.strategy.engine import TradingStrategy
from regime_trader.strategy.regime_detector import RegimeDetector
from regime_trader.strategy.signal_generator import SignalGenerator

__all__ = [
    "RegimeDetector",
    "SignalGenerator",
    "TradingStrategy",
]
