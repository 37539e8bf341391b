"""Position sizing module.

Converts a signal into a token quantity. A base size comes from the
symbol's configured SizingMethod, then hard constraints are applied in
order: lot bounds, risk-per-trade cap, portfolio heat, confidence and
regime derating.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from regime_trader.config import TokenConfig
from regime_trader.market.state import PriceSeriesState
from regime_trader.models import (
    MarketRegime,
    PositionSizeResult,
    Signal,
    SignalType,
    SizingMethod,
)
from regime_trader.risk.risk_manager import RiskManager


logger = logging.getLogger(__name__)


NO_SIGNAL = "no trading signal"
STOP_UNAVAILABLE = "cannot size risk: stop distance unavailable"
TOO_SMALL = "position too small after adjustments"
SIZED = "position size calculated"


@dataclass
class BaseSize:
    """Pre-constraint size from a sizing method.

    Attributes:
        size: Token quantity
        fraction: Fraction of capital the quantity represents
        details: Method-specific inputs for reporting
    """
    size: float
    fraction: float
    details: dict[str, Any] = field(default_factory=dict)


class SizingStrategy(ABC):
    """Base size calculation for one SizingMethod."""

    method: SizingMethod

    @abstractmethod
    def base_size(
        self,
        signal: Signal,
        state: PriceSeriesState,
        config: TokenConfig,
        available_capital: float,
    ) -> BaseSize:
        """Calculate the base quantity before constraints."""


class KellySizing(SizingStrategy):
    """Kelly fraction from the risk manager's running metrics."""

    method = SizingMethod.KELLY

    def __init__(self, risk_manager: RiskManager):
        self.risk_manager = risk_manager

    def base_size(self, signal, state, config, available_capital):
        metrics = self.risk_manager.risk_metrics
        kelly = self.risk_manager.calculate_kelly_position(
            metrics.win_rate,
            metrics.avg_win,
            metrics.avg_loss,
            signal.regime,
            signal.confidence,
        )
        value = available_capital * kelly.size
        return BaseSize(
            size=value / state.last_price,
            fraction=kelly.size,
            details={
                "kelly_fraction": kelly.kelly_fraction,
                "regime_multiplier": kelly.regime_multiplier,
                "confidence_multiplier": kelly.confidence_multiplier,
                "position_value": value,
            },
        )


class VolatilitySizing(SizingStrategy):
    """Fraction of capital scaled by ATR/price against the baseline."""

    method = SizingMethod.VOLATILITY

    def __init__(self, risk_manager: RiskManager):
        self.risk_manager = risk_manager

    def base_size(self, signal, state, config, available_capital):
        if not state.atr:
            return BaseSize(size=0.0, fraction=0.0, details={"reason": "insufficient volatility data"})

        result = self.risk_manager.calculate_volatility_position(
            state.atr, state.last_price, config.turbulence_std, signal.regime
        )
        value = available_capital * result.size
        return BaseSize(
            size=value / state.last_price,
            fraction=result.size,
            details={
                "volatility_ratio": result.volatility_ratio,
                "adjusted_size": result.adjusted_size,
                "position_value": value,
            },
        )


class FixedSizing(SizingStrategy):
    """Configured fraction of capital, scaled 0.5x-1.0x by confidence."""

    method = SizingMethod.FIXED

    def base_size(self, signal, state, config, available_capital):
        confidence_multiplier = 0.5 + signal.confidence * 0.5
        fraction = config.fixed_position_size * confidence_multiplier
        value = available_capital * fraction
        return BaseSize(
            size=value / state.last_price,
            fraction=fraction,
            details={
                "fixed_percentage": config.fixed_position_size,
                "confidence_multiplier": confidence_multiplier,
                "position_value": value,
            },
        )


class HybridSizing(SizingStrategy):
    """Regime-weighted blend of Kelly and volatility sizes."""

    method = SizingMethod.HYBRID

    # (kelly, volatility)
    REGIME_WEIGHTS = {
        MarketRegime.TRENDING: (0.7, 0.3),
        MarketRegime.WEAK_TREND: (0.6, 0.4),
        MarketRegime.SIDEWAYS: (0.4, 0.6),
        MarketRegime.CHOPPY: (0.3, 0.7),
        MarketRegime.VOLATILE: (0.2, 0.8),
    }

    def __init__(self, kelly: KellySizing, volatility: VolatilitySizing):
        self.kelly = kelly
        self.volatility = volatility

    def base_size(self, signal, state, config, available_capital):
        kelly = self.kelly.base_size(signal, state, config, available_capital)
        volatility = self.volatility.base_size(signal, state, config, available_capital)
        kelly_weight, volatility_weight = self.REGIME_WEIGHTS.get(
            signal.regime, self.REGIME_WEIGHTS[MarketRegime.SIDEWAYS]
        )

        fraction = kelly.fraction * kelly_weight + volatility.fraction * volatility_weight
        return BaseSize(
            size=kelly.size * kelly_weight + volatility.size * volatility_weight,
            fraction=fraction,
            details={
                "kelly_weight": kelly_weight,
                "volatility_weight": volatility_weight,
                "kelly_size": kelly.size,
                "volatility_size": volatility.size,
                "position_value": available_capital * fraction,
            },
        )


class PositionSizer:
    """Calculates constrained position sizes.

    Constraint order:
    1. Clamp to [min_lot_usd, max_lot_usd] / price
    2. Cap at max_risk_per_trade x capital / stop distance
    3. Shrink to the remaining portfolio heat budget
    4. Derate by 0.5 + 0.5 x confidence when confidence < 0.7
    5. Derate by regime multiplier
    A size that ends below the minimum lot becomes 0.
    """

    REGIME_MULTIPLIERS = {
        MarketRegime.TRENDING: 1.0,
        MarketRegime.WEAK_TREND: 0.9,
        MarketRegime.SIDEWAYS: 0.8,
        MarketRegime.CHOPPY: 0.6,
        MarketRegime.VOLATILE: 0.4,
    }
    DEFAULT_REGIME_MULTIPLIER = 0.7
    LOW_CONFIDENCE = 0.7

    def __init__(self, risk_manager: Optional[RiskManager] = None):
        """Initialize position sizer.

        Args:
            risk_manager: Risk manager consulted for metrics, stops and heat.
                Creates one if None.
        """
        self.risk_manager = risk_manager or RiskManager()
        kelly = KellySizing(self.risk_manager)
        volatility = VolatilitySizing(self.risk_manager)
        self.strategies: dict[SizingMethod, SizingStrategy] = {
            SizingMethod.KELLY: kelly,
            SizingMethod.VOLATILITY: volatility,
            SizingMethod.FIXED: FixedSizing(),
            SizingMethod.HYBRID: HybridSizing(kelly, volatility),
        }

    def calculate_position(
        self,
        symbol: str,
        signal: Optional[Signal],
        state: Optional[PriceSeriesState],
        config: TokenConfig,
        available_capital: float,
    ) -> PositionSizeResult:
        """Calculate the position size for a signal.

        Args:
            symbol: Instrument symbol
            signal: Signal from the signal generator
            state: Price series state for the symbol
            config: Per-symbol configuration
            available_capital: Capital available for sizing

        Returns:
            PositionSizeResult (size 0 with a reason when rejected)
        """
        if signal is None or signal.signal_type == SignalType.WAIT:
            return PositionSizeResult(size=0.0, risk=0.0, method=None, reason=NO_SIGNAL)

        method = config.position_sizing
        if state is None or not state.last_price:
            return PositionSizeResult(size=0.0, risk=0.0, method=method, reason="no price available")
        if not math.isfinite(available_capital) or available_capital <= 0:
            return PositionSizeResult(size=0.0, risk=0.0, method=method, reason="no capital available")

        base = self.strategies[method].base_size(signal, state, config, available_capital)
        logger.debug(f"[{symbol}] {method.value} base size {base.size:.6f} ({base.fraction:.1%} of capital)")

        result = self.apply_risk_constraints(base.size, signal, state, config, available_capital, symbol)
        result.method = method
        result.details = base.details
        return result

    def apply_risk_constraints(
        self,
        base_size: float,
        signal: Signal,
        state: PriceSeriesState,
        config: TokenConfig,
        available_capital: float,
        symbol: Optional[str] = None,
    ) -> PositionSizeResult:
        """Apply lot, risk, heat, confidence and regime constraints in order."""
        price = state.last_price
        stops = self.risk_manager.calculate_dynamic_stop_loss(
            state.atr, price, signal.regime, signal.strength
        )
        if not stops.is_available:
            logger.debug(f"[{symbol}] {STOP_UNAVAILABLE}")
            return PositionSizeResult(
                size=0.0, risk=0.0, method=None, reason=STOP_UNAVAILABLE, stop_levels=stops
            )

        adjustments = []
        size = max(0.0, base_size)
        risk_per_unit = stops.stop_distance

        min_lot = config.min_lot_usd / price
        max_lot = config.max_lot_usd / price
        if size < min_lot:
            adjustments.append(f"increased from {size:.6f} to minimum lot {min_lot:.6f}")
            size = min_lot
        if size > max_lot:
            adjustments.append(f"reduced from {size:.6f} to maximum lot {max_lot:.6f}")
            size = max_lot

        max_size_by_risk = available_capital * config.max_risk_per_trade / risk_per_unit
        if size > max_size_by_risk:
            adjustments.append(f"reduced from {size:.6f} to risk limit {max_size_by_risk:.6f}")
            size = max_size_by_risk

        heat_check = self.risk_manager.can_take_position(size * risk_per_unit, available_capital, symbol)
        if not heat_check.can_take:
            max_heat_size = heat_check.remaining_budget / risk_per_unit
            adjustments.append(f"reduced due to portfolio heat: {heat_check.reason}")
            size = min(size, max_heat_size)

        if signal.confidence < self.LOW_CONFIDENCE:
            confidence_multiplier = 0.5 + signal.confidence * 0.5
            adjustments.append(f"reduced by {(1 - confidence_multiplier) * 100:.1f}% due to low confidence")
            size *= confidence_multiplier

        regime_multiplier = self.REGIME_MULTIPLIERS.get(signal.regime, self.DEFAULT_REGIME_MULTIPLIER)
        if regime_multiplier < 1.0:
            regime_name = signal.regime.value if signal.regime else "unknown"
            adjustments.append(f"reduced by {(1 - regime_multiplier) * 100:.1f}% due to {regime_name} market")
            size *= regime_multiplier

        reason = SIZED
        if size < min_lot:
            size = 0.0
            reason = TOO_SMALL

        return PositionSizeResult(
            size=size,
            risk=size * risk_per_unit,
            method=None,
            reason=reason,
            adjustments=adjustments,
            stop_levels=stops,
        )

    def get_position_summary(
        self,
        symbol: str,
        signal: Signal,
        state: PriceSeriesState,
        config: TokenConfig,
        available_capital: float,
    ) -> dict:
        """Size a position and summarize it for reporting."""
        position = self.calculate_position(symbol, signal, state, config, available_capital)
        price = state.last_price or 0.0

        return {
            "symbol": symbol,
            "signal": signal.signal_type.value,
            "confidence": signal.confidence,
            "regime": signal.regime.value if signal.regime else None,
            "position_size": position.size,
            "position_value": position.size * price,
            "risk": position.risk,
            "risk_percentage": position.risk / available_capital * 100 if available_capital > 0 else 0.0,
            "method": position.method.value if position.method else None,
            "reason": position.reason,
            "adjustments": list(position.adjustments),
            "sizing_details": dict(position.details),
        }
