"""Core data models for the Regime Trader decision engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class MarketRegime(Enum):
    """Market condition classification, ordered from trending to volatile."""
    TRENDING = "trending"
    WEAK_TREND = "weak_trend"
    SIDEWAYS = "sideways"
    CHOPPY = "choppy"
    VOLATILE = "volatile"


class SignalType(Enum):
    """Verdict emitted by the signal generator."""
    WAIT = "wait"
    BUY = "buy"
    SELL = "sell"
    STRONG_BUY = "strong_buy"
    STRONG_SELL = "strong_sell"

    @property
    def is_buy(self) -> bool:
        return self in (SignalType.BUY, SignalType.STRONG_BUY)

    @property
    def is_sell(self) -> bool:
        return self in (SignalType.SELL, SignalType.STRONG_SELL)


class SizingMethod(Enum):
    """Position sizing method selectable per symbol."""
    KELLY = "kelly"
    VOLATILITY = "volatility"
    FIXED = "fixed"
    HYBRID = "hybrid"

    @classmethod
    def from_name(cls, name: str) -> "SizingMethod":
        """Parse a sizing method name (case-insensitive).

        Raises:
            ValueError: If the name is not a known sizing method.
        """
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown sizing method '{name}' (expected one of: {valid})")


class PositionStatus(Enum):
    """Lifecycle of a risk-manager position record."""
    OPEN = "open"
    CLOSED = "closed"


class HeatLevel(Enum):
    """Portfolio heat band relative to the heat budget."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# =============================================================================
# Indicator analyses
# =============================================================================

@dataclass(frozen=True)
class TrendAnalysis:
    """EMA alignment analysis.

    Attributes:
        direction: "bullish", "bearish" or "neutral"
        strength: Normalized EMA spread (0-1)
        aligned: Whether the three EMAs are stacked in one direction
        price_vs_fast: Relative distance of price from the fast EMA
        price_vs_slow: Relative distance of price from the slow EMA
        above_all: Price above a fully bullish EMA stack
        below_all: Price below a fully bearish EMA stack
    """
    direction: str
    strength: float
    aligned: bool
    price_vs_fast: float
    price_vs_slow: float
    above_all: bool
    below_all: bool


@dataclass(frozen=True)
class RSIAnalysis:
    """RSI oversold/overbought analysis with optional divergence."""
    signal: float
    strength: float
    divergence: Optional[str] = None
    value: Optional[float] = None


@dataclass(frozen=True)
class BollingerAnalysis:
    """Price position relative to the Bollinger channel."""
    signal: float
    strength: float
    position: str = "middle"
    band_width: float = 0.0
    position_in_band: Optional[float] = None


@dataclass(frozen=True)
class MACDAnalysis:
    """MACD line/signal cross and histogram acceleration."""
    signal: float
    strength: float
    momentum: str = "neutral"
    histogram: Optional[float] = None


@dataclass(frozen=True)
class VolumeAnalysis:
    """Volume ratio against the recent average."""
    is_high: bool
    ratio: float
    confirmation: float
    strength: float = 0.0


@dataclass(frozen=True)
class SignalWeights:
    """Regime-dependent weight vector for the sub-signals."""
    trend: float
    momentum: float
    mean_reversion: float
    volume: float


@dataclass(frozen=True)
class SignalThresholds:
    """Normalized score thresholds for a regime."""
    minimum: float
    strong: float


@dataclass(frozen=True)
class SignalBreakdown:
    """Per-indicator analyses that fed a signal."""
    trend: TrendAnalysis
    rsi: RSIAnalysis
    bollinger: BollingerAnalysis
    macd: MACDAnalysis
    volume: VolumeAnalysis


@dataclass(frozen=True)
class Signal:
    """Immutable trading signal produced once per decision cycle.

    Attributes:
        signal_type: Verdict (wait/buy/sell/strong_buy/strong_sell)
        strength: Winning normalized score (0-1)
        confidence: Score relative to the strong threshold (0-1)
        regime: Regime the signal was computed in (None if not enough data)
        reasons: Human-readable reasons
        bullish_score: Normalized bullish score
        bearish_score: Normalized bearish score
        total_weight: Sum of weights used for normalization
        weights: Weight vector used
        indicators: Per-indicator breakdown
    """
    signal_type: SignalType
    strength: float
    confidence: float
    regime: Optional[MarketRegime]
    reasons: tuple[str, ...] = ()
    bullish_score: float = 0.0
    bearish_score: float = 0.0
    total_weight: float = 0.0
    weights: Optional[SignalWeights] = None
    indicators: Optional[SignalBreakdown] = None

    @property
    def reason(self) -> str:
        """Reasons joined into one line."""
        return "; ".join(self.reasons)

    @property
    def is_actionable(self) -> bool:
        return self.signal_type != SignalType.WAIT


# =============================================================================
# Risk
# =============================================================================

@dataclass(frozen=True)
class StopLevels:
    """Dynamic stop-loss / take-profit / trailing-stop levels.

    All distances are zero when ATR or price is unavailable; callers must
    treat that as "cannot size risk".
    """
    stop_loss: float
    take_profit: float
    trailing_stop: float
    stop_distance: float
    profit_distance: float
    trail_distance: float
    stop_multiplier: float = 0.0
    profit_multiplier: float = 0.0
    trail_multiplier: float = 0.0

    @classmethod
    def zero(cls) -> "StopLevels":
        return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    @property
    def is_available(self) -> bool:
        return self.stop_distance > 0


@dataclass(frozen=True)
class HeatCheckResult:
    """Outcome of a portfolio heat admission check."""
    can_take: bool
    reason: str
    current_heat: float
    max_heat: float
    required_risk: float
    max_position_risk: float

    @property
    def remaining_budget(self) -> float:
        """Largest risk that would still be admitted."""
        return max(0.0, min(self.max_heat - self.current_heat, self.max_position_risk))


@dataclass
class PositionRecord:
    """Risk manager record of a single position."""
    symbol: str
    risk: float
    entry_price: float
    quantity: float
    open_timestamp: datetime
    status: PositionStatus = PositionStatus.OPEN
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    close_timestamp: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def to_dict(self) -> dict:
        """Convert to dictionary for reporting."""
        return {
            "symbol": self.symbol,
            "risk": self.risk,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "open_timestamp": self.open_timestamp.isoformat(),
            "status": self.status.value,
            "exit_price": self.exit_price,
            "pnl": self.pnl,
            "close_timestamp": self.close_timestamp.isoformat() if self.close_timestamp else None,
        }


@dataclass
class RiskMetrics:
    """Rolling metrics derived from closed positions (Kelly inputs)."""
    win_rate: float = 0.55
    avg_win: float = 0.03
    avg_loss: float = 0.02
    total_risk: float = 0.0
    max_drawdown: float = 0.0
    current_drawdown: float = 0.0


@dataclass(frozen=True)
class PositionOperationResult:
    """Result of opening or closing a position in the risk manager."""
    success: bool
    message: str
    new_heat: float


@dataclass
class PositionSizeResult:
    """Result of position size calculation.

    Attributes:
        size: Final position size in token units (0 when rejected)
        risk: Capital at risk (size x stop distance)
        method: Sizing method used (None when no signal)
        reason: Why the size is what it is
        adjustments: Human-readable constraint adjustments, in order
        details: Method-specific sizing inputs
        stop_levels: Stop levels used for risk calculation
    """
    size: float
    risk: float
    method: Optional[SizingMethod]
    reason: str
    adjustments: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)
    stop_levels: Optional[StopLevels] = None

    @property
    def is_rejected(self) -> bool:
        return self.size <= 0


@dataclass
class TradeDecision:
    """Signed target position for a symbol (positive buy, negative sell)."""
    symbol: str
    position: float
    reason: str
    signal: Optional[Signal] = None
    sizing: Optional[PositionSizeResult] = None
    stops: Optional[StopLevels] = None

    @property
    def side(self) -> Optional[str]:
        if self.position > 0:
            return "buy"
        if self.position < 0:
            return "sell"
        return None


@dataclass
class PerformanceMetrics:
    """Strategy-level realized performance."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_pnl: float = 0.0
    win_rate: float = 0.0
    max_drawdown: float = 0.0
    current_drawdown: float = 0.0


# =============================================================================
# Persistence
# =============================================================================

@dataclass
class PositionState:
    """Persisted holding used for average-cost and trailing-high tracking."""
    qty: float = 0.0
    cost: float = 0.0
    trailing_high: float = 0.0

    @property
    def avg_entry(self) -> float:
        return self.cost / self.qty if self.qty > 0 else 0.0

    def to_dict(self) -> dict:
        return {"qty": self.qty, "cost": self.cost, "trailing_high": self.trailing_high}

    @classmethod
    def from_dict(cls, data: dict) -> "PositionState":
        return cls(
            qty=float(data.get("qty", 0.0)),
            cost=float(data.get("cost", 0.0)),
            trailing_high=float(data.get("trailing_high", data.get("trailingHigh", 0.0))),
        )


@dataclass(frozen=True)
class TpSlTrigger:
    """Take-profit / stop-loss / trailing-stop check result."""
    triggered: bool
    reason: Optional[str] = None
    avg_entry: float = 0.0
    current_price: float = 0.0
    qty: float = 0.0
    trailing_high: float = 0.0


@dataclass(frozen=True)
class CycleOutcome:
    """What the decision cycle did for one symbol."""
    symbol: str
    action: str
    reason: str
    price: Optional[float] = None
    quantity: float = 0.0
    decision: Optional[TradeDecision] = None
