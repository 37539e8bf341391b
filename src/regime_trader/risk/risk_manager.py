"""Risk Manager - portfolio heat, position bookkeeping and dynamic stops.

Portfolio heat is the capital at risk summed over open positions. New
positions are admitted only while heat stays within max_portfolio_heat of
capital and the single position risk stays within max_position_risk.

Each symbol moves through none → open → closed. A closed record is never
reopened; a later open starts a fresh record.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from regime_trader.config import RiskConfig
from regime_trader.models import (
    HeatCheckResult,
    HeatLevel,
    MarketRegime,
    PositionOperationResult,
    PositionRecord,
    PositionStatus,
    RiskMetrics,
    StopLevels,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KellyResult:
    """Regime and confidence adjusted Kelly fraction of capital."""
    size: float
    kelly_fraction: float
    regime_multiplier: float
    confidence_multiplier: float


@dataclass(frozen=True)
class VolatilityResult:
    """Volatility-scaled fraction of capital."""
    size: float
    volatility_ratio: float
    adjusted_size: float


@dataclass(frozen=True)
class HeatStatus:
    """Portfolio heat relative to the heat budget."""
    level: HeatLevel
    percentage: float
    current: float
    maximum: float
    available: float


class RiskManager:
    """Tracks portfolio heat and open/closed positions.

    The Kelly formula:
    f* = (p * W - q * L) / W

    Where:
    - p = win rate, q = 1 - p
    - W = average win, L = average loss
    """

    KELLY_REGIME_MULTIPLIERS = {
        MarketRegime.TRENDING: 1.0,
        MarketRegime.WEAK_TREND: 0.8,
        MarketRegime.SIDEWAYS: 0.6,
        MarketRegime.CHOPPY: 0.3,
        MarketRegime.VOLATILE: 0.2,
    }
    DEFAULT_KELLY_REGIME_MULTIPLIER = 0.5

    # (stop, profit, trail) ATR multipliers
    STOP_MULTIPLIERS = {
        MarketRegime.TRENDING: (2.0, 4.0, 1.5),
        MarketRegime.WEAK_TREND: (2.5, 3.5, 2.0),
        MarketRegime.SIDEWAYS: (1.8, 2.5, 1.2),
        MarketRegime.CHOPPY: (1.5, 2.0, 1.0),
        MarketRegime.VOLATILE: (3.0, 5.0, 2.5),
    }

    VOLATILITY_BASE_SIZE = 0.20
    VOLATILITY_MIN_SIZE = 0.05
    VOLATILITY_MAX_SIZE = 0.40

    MAX_VALIDATED_RISK = 0.10  # of capital

    def __init__(self, config: Optional[RiskConfig] = None):
        """Initialize risk manager.

        Args:
            config: Risk configuration. Uses defaults if None.
        """
        self.config = config or RiskConfig()
        self.portfolio_heat = 0.0
        self._open: dict[str, PositionRecord] = {}
        self._history: list[PositionRecord] = []
        self.risk_metrics = self._initial_metrics()

    def _initial_metrics(self) -> RiskMetrics:
        return RiskMetrics(
            win_rate=self.config.initial_win_rate,
            avg_win=self.config.initial_avg_win,
            avg_loss=self.config.initial_avg_loss,
        )

    # =========================================================================
    # Sizing inputs
    # =========================================================================

    def calculate_kelly_position(
        self,
        win_rate: float,
        avg_win: float,
        avg_loss: float,
        regime: Optional[MarketRegime],
        confidence: float,
    ) -> KellyResult:
        """Calculate a regime-adjusted Kelly fraction.

        Args:
            win_rate: Probability of winning (0.0 to 1.0)
            avg_win: Average winning trade
            avg_loss: Average losing trade (positive number)
            regime: Market regime
            confidence: Signal confidence

        Returns:
            KellyResult with size clamped to [0, kelly_cap]
        """
        if avg_win <= 0:
            kelly_fraction = 0.0
        else:
            kelly_fraction = (win_rate * avg_win - (1 - win_rate) * avg_loss) / avg_win

        regime_multiplier = self.KELLY_REGIME_MULTIPLIERS.get(
            regime, self.DEFAULT_KELLY_REGIME_MULTIPLIER
        )
        confidence_multiplier = max(0.5, min(1.5, confidence))

        size = kelly_fraction * regime_multiplier * confidence_multiplier
        size = max(0.0, min(size, self.config.kelly_cap))

        return KellyResult(
            size=size,
            kelly_fraction=kelly_fraction,
            regime_multiplier=regime_multiplier,
            confidence_multiplier=confidence_multiplier,
        )

    def calculate_volatility_position(
        self,
        atr: Optional[float],
        price: Optional[float],
        baseline_volatility: float,
        regime: Optional[MarketRegime],
    ) -> VolatilityResult:
        """Calculate a volatility-scaled fraction of capital.

        Base 20%, x1.2 trending, x0.5 volatile; then x0.7 when ATR/price is
        more than 1.5x the baseline and x1.3 when below 0.7x. Clamped to
        [5%, 40%].

        Returns:
            VolatilityResult (size 0 when ATR or price is unavailable)
        """
        if not atr or not price or atr <= 0 or price <= 0:
            return VolatilityResult(size=0.0, volatility_ratio=0.0, adjusted_size=0.0)

        current_volatility = atr / price
        volatility_ratio = current_volatility / baseline_volatility if baseline_volatility > 0 else 1.0

        size = self.VOLATILITY_BASE_SIZE
        if regime == MarketRegime.VOLATILE:
            size *= 0.5
        elif regime == MarketRegime.TRENDING:
            size *= 1.2

        if volatility_ratio > 1.5:
            size *= 0.7
        elif volatility_ratio < 0.7:
            size *= 1.3

        return VolatilityResult(
            size=max(self.VOLATILITY_MIN_SIZE, min(self.VOLATILITY_MAX_SIZE, size)),
            volatility_ratio=volatility_ratio,
            adjusted_size=size,
        )

    def calculate_dynamic_stop_loss(
        self,
        atr: Optional[float],
        price: Optional[float],
        regime: Optional[MarketRegime],
        signal_strength: float,
    ) -> StopLevels:
        """Calculate ATR-based stop, target and trailing distances.

        distance = ATR x regime multiplier x (1 + (strength - 0.5) x 0.5)

        Returns:
            StopLevels (all zero when ATR or price is unavailable)
        """
        if not atr or not price or atr <= 0 or price <= 0 or not math.isfinite(atr):
            return StopLevels.zero()

        stop_mult, profit_mult, trail_mult = self.STOP_MULTIPLIERS.get(
            regime, self.STOP_MULTIPLIERS[MarketRegime.SIDEWAYS]
        )
        strength_multiplier = 1 + (signal_strength - 0.5) * 0.5

        stop_distance = atr * stop_mult * strength_multiplier
        profit_distance = atr * profit_mult * strength_multiplier
        trail_distance = atr * trail_mult * strength_multiplier

        return StopLevels(
            stop_loss=price - stop_distance,
            take_profit=price + profit_distance,
            trailing_stop=price - trail_distance,
            stop_distance=stop_distance,
            profit_distance=profit_distance,
            trail_distance=trail_distance,
            stop_multiplier=stop_mult * strength_multiplier,
            profit_multiplier=profit_mult * strength_multiplier,
            trail_multiplier=trail_mult * strength_multiplier,
        )

    # =========================================================================
    # Portfolio heat
    # =========================================================================

    def can_take_position(
        self,
        required_risk: float,
        available_capital: float,
        symbol: Optional[str] = None,
    ) -> HeatCheckResult:
        """Check whether a new position's risk fits the heat budget.

        Does not mutate any state.

        Args:
            required_risk: Capital at risk for the new position
            available_capital: Capital the limits are relative to
            symbol: Symbol of the new position (for logging)

        Returns:
            HeatCheckResult with the decision and reason
        """
        current = self.portfolio_heat
        capital = available_capital if math.isfinite(available_capital) else 0.0
        max_heat = self.config.max_portfolio_heat * max(capital, 0.0)
        max_position_risk = self.config.max_position_risk * max(capital, 0.0)

        def result(can_take: bool, reason: str) -> HeatCheckResult:
            return HeatCheckResult(
                can_take=can_take,
                reason=reason,
                current_heat=current,
                max_heat=max_heat,
                required_risk=required_risk,
                max_position_risk=max_position_risk,
            )

        if not math.isfinite(available_capital):
            return result(False, f"invalid capital {available_capital!r}")
        if available_capital <= 0:
            return result(False, "no capital available")
        if not math.isfinite(required_risk) or required_risk < 0:
            return result(False, f"invalid risk {required_risk!r}")

        if current + required_risk > max_heat:
            logger.debug(f"[{symbol}] Heat check rejected: {current:.2f} + {required_risk:.2f} > {max_heat:.2f}")
            return result(
                False,
                f"portfolio heat limit exceeded ({current / available_capital:.1%} + "
                f"{required_risk / available_capital:.1%} > {self.config.max_portfolio_heat:.0%})",
            )

        if required_risk > max_position_risk:
            return result(
                False,
                f"position risk too high ({required_risk / available_capital:.1%} > "
                f"{self.config.max_position_risk:.0%})",
            )

        return result(True, "position approved")

    def add_position(
        self,
        symbol: str,
        risk: float,
        entry_price: float,
        quantity: float,
    ) -> PositionOperationResult:
        """Open a position and add its risk to portfolio heat.

        A symbol with an open record is rejected rather than overwritten.
        """
        if symbol in self._open:
            logger.warning(f"[{symbol}] Cannot add position: position already open")
            return PositionOperationResult(False, "position already open", self.portfolio_heat)

        if not math.isfinite(risk) or risk < 0:
            return PositionOperationResult(False, f"invalid risk {risk!r}", self.portfolio_heat)

        record = PositionRecord(
            symbol=symbol,
            risk=risk,
            entry_price=entry_price,
            quantity=quantity,
            open_timestamp=datetime.now(),
        )
        self._open[symbol] = record
        self._history.append(record)
        self.portfolio_heat += risk
        self.update_risk_metrics()

        logger.info(f"[{symbol}] Position added: risk ${risk:.2f}, heat ${self.portfolio_heat:.2f}")
        return PositionOperationResult(
            True, f"position added: {symbol} risk ${risk:.2f}", self.portfolio_heat
        )

    def close_position(
        self,
        symbol: str,
        exit_price: float,
        pnl: float,
    ) -> PositionOperationResult:
        """Close the open position for a symbol and release its heat."""
        record = self._open.pop(symbol, None)
        if record is None:
            return PositionOperationResult(False, "position not found", self.portfolio_heat)

        self.portfolio_heat = max(0.0, self.portfolio_heat - record.risk)
        if not self._open:
            self.portfolio_heat = 0.0

        record.status = PositionStatus.CLOSED
        record.exit_price = exit_price
        record.pnl = pnl
        record.close_timestamp = datetime.now()
        self.update_risk_metrics()

        logger.info(f"[{symbol}] Position closed: P&L ${pnl:.2f}, heat ${self.portfolio_heat:.2f}")
        return PositionOperationResult(
            True, f"position closed: {symbol} P&L ${pnl:.2f}", self.portfolio_heat
        )

    def update_risk_metrics(self) -> None:
        """Recompute rolling metrics from all closed records.

        Drawdown is peak-to-trough of cumulative realized P&L.
        """
        self.risk_metrics.total_risk = self.portfolio_heat

        closed = self.closed_positions
        if not closed:
            return

        pnls = [p.pnl or 0.0 for p in closed]
        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p < 0]

        self.risk_metrics.win_rate = len(wins) / len(pnls)
        if wins:
            self.risk_metrics.avg_win = sum(wins) / len(wins)
        if losses:
            self.risk_metrics.avg_loss = abs(sum(losses) / len(losses))

        cumulative = 0.0
        peak = 0.0
        max_drawdown = 0.0
        for pnl in pnls:
            cumulative += pnl
            peak = max(peak, cumulative)
            max_drawdown = max(max_drawdown, peak - cumulative)

        self.risk_metrics.max_drawdown = max_drawdown
        self.risk_metrics.current_drawdown = peak - cumulative

    # =========================================================================
    # Queries and reporting
    # =========================================================================

    def get_open_position(self, symbol: str) -> Optional[PositionRecord]:
        return self._open.get(symbol)

    @property
    def open_positions(self) -> list[PositionRecord]:
        return list(self._open.values())

    @property
    def closed_positions(self) -> list[PositionRecord]:
        closed = [p for p in self._history if p.status == PositionStatus.CLOSED]
        return sorted(closed, key=lambda p: p.close_timestamp or p.open_timestamp)

    def get_portfolio_heat_status(self, available_capital: float) -> HeatStatus:
        """Classify heat usage: LOW, MEDIUM (>40%), HIGH (>60%), CRITICAL (>80%)."""
        max_heat = self.config.max_portfolio_heat * max(available_capital, 0.0)
        percentage = (self.portfolio_heat / max_heat * 100) if max_heat > 0 else 0.0

        if percentage > 80:
            level = HeatLevel.CRITICAL
        elif percentage > 60:
            level = HeatLevel.HIGH
        elif percentage > 40:
            level = HeatLevel.MEDIUM
        else:
            level = HeatLevel.LOW

        return HeatStatus(
            level=level,
            percentage=percentage,
            current=self.portfolio_heat,
            maximum=max_heat,
            available=max(0.0, max_heat - self.portfolio_heat),
        )

    def get_risk_report(self, available_capital: float) -> dict:
        heat = self.get_portfolio_heat_status(available_capital)
        return {
            "portfolio_heat": {
                "level": heat.level.value,
                "percentage": heat.percentage,
                "current": heat.current,
                "max": heat.maximum,
                "available": heat.available,
            },
            "risk_metrics": {
                "win_rate": self.risk_metrics.win_rate,
                "avg_win": self.risk_metrics.avg_win,
                "avg_loss": self.risk_metrics.avg_loss,
                "total_risk": self.risk_metrics.total_risk,
                "max_drawdown": self.risk_metrics.max_drawdown,
                "current_drawdown": self.risk_metrics.current_drawdown,
            },
            "position_count": len(self._history),
            "open_positions": len(self._open),
            "closed_positions": len(self._history) - len(self._open),
        }

    def validate_risk_parameters(self, risk: float, available_capital: float) -> list[str]:
        """Validate a proposed risk amount.

        Returns:
            List of errors (empty when valid)
        """
        errors = []
        if risk <= 0:
            errors.append("risk must be positive")
        if risk > available_capital * self.MAX_VALIDATED_RISK:
            errors.append(f"risk exceeds {self.MAX_VALIDATED_RISK:.0%} of available capital")
        if self.portfolio_heat + risk > self.config.max_portfolio_heat * available_capital:
            errors.append("risk would exceed maximum portfolio heat")
        return errors

    def reset(self) -> None:
        """Clear all positions, heat and metrics."""
        self.portfolio_heat = 0.0
        self._open.clear()
        self._history.clear()
        self.risk_metrics = self._initial_metrics()
        logger.info("Portfolio heat reset to 0")
