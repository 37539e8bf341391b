"""Signal Generator - regime-weighted multi-indicator scoring.

Five sub-signals each produce a direction and a strength:
- Trend: EMA fast/slow/trend alignment
- RSI: oversold/overbought distance, with divergence override
- Bollinger: price position in the channel, boosted by high volume
- MACD: line/signal cross and histogram acceleration
- Volume: ratio to average volume confirming the price move

Weighted bullish and bearish scores are normalized by the total weight and
compared against regime-specific thresholds to pick the verdict.
"""

import logging
from typing import Optional, Sequence

from regime_trader.config import TokenConfig
from regime_trader.indicators import BollingerBands, MACDResult
from regime_trader.market.state import PriceSeriesState
from regime_trader.models import (
    BollingerAnalysis,
    MACDAnalysis,
    MarketRegime,
    RSIAnalysis,
    Signal,
    SignalBreakdown,
    SignalThresholds,
    SignalType,
    SignalWeights,
    TrendAnalysis,
    VolumeAnalysis,
)
from regime_trader.strategy.regime_detector import RegimeDetector


logger = logging.getLogger(__name__)


INSUFFICIENT_DATA = "insufficient data"


class SignalGenerator:
    """Generates trading signals from a symbol's price series state.

    Trend weight falls and volume weight rises as the regime degrades from
    TRENDING to VOLATILE; thresholds tighten in the same direction.
    """

    REGIME_WEIGHTS = {
        MarketRegime.TRENDING: SignalWeights(trend=3.0, momentum=2.0, mean_reversion=1.0, volume=1.5),
        MarketRegime.WEAK_TREND: SignalWeights(trend=2.0, momentum=2.5, mean_reversion=1.5, volume=2.0),
        MarketRegime.SIDEWAYS: SignalWeights(trend=1.0, momentum=1.5, mean_reversion=3.0, volume=2.5),
        MarketRegime.CHOPPY: SignalWeights(trend=0.5, momentum=1.0, mean_reversion=2.0, volume=3.0),
        MarketRegime.VOLATILE: SignalWeights(trend=0.0, momentum=0.5, mean_reversion=1.5, volume=3.0),
    }

    REGIME_THRESHOLDS = {
        MarketRegime.TRENDING: SignalThresholds(minimum=0.3, strong=0.6),
        MarketRegime.WEAK_TREND: SignalThresholds(minimum=0.4, strong=0.7),
        MarketRegime.SIDEWAYS: SignalThresholds(minimum=0.5, strong=0.8),
        MarketRegime.CHOPPY: SignalThresholds(minimum=0.6, strong=0.9),
        MarketRegime.VOLATILE: SignalThresholds(minimum=0.7, strong=0.95),
    }

    # Scale factors
    TREND_SPREAD_SCALE = 10.0
    MACD_STRENGTH_SCALE = 0.01
    BAND_PROXIMITY = 0.2
    VOLUME_BOOST = 1.5
    ACCUMULATION_PRICE_CHANGE = 0.001
    DIVERGENCE_LOOKBACK = 5
    DIVERGENCE_STRENGTH = 0.8
    ACCELERATION_STRENGTH = 0.7

    def __init__(self, regime_detector: Optional[RegimeDetector] = None):
        """Initialize signal generator.

        Args:
            regime_detector: Regime detector to use. Creates one if None.
        """
        self.regime_detector = regime_detector or RegimeDetector()

    def get_weights(self, regime: MarketRegime) -> SignalWeights:
        return self.REGIME_WEIGHTS.get(regime, self.REGIME_WEIGHTS[MarketRegime.CHOPPY])

    def get_thresholds(self, regime: MarketRegime) -> SignalThresholds:
        return self.REGIME_THRESHOLDS.get(regime, self.REGIME_THRESHOLDS[MarketRegime.CHOPPY])

    def analyze_trend(
        self,
        ema_fast: float,
        ema_slow: float,
        ema_trend: float,
        price: float,
    ) -> TrendAnalysis:
        """Analyze EMA alignment and spread.

        Bullish iff fast > slow > trend, bearish iff fast < slow < trend.
        Strength is the summed relative spread, scaled and capped at 1.
        """
        bull = ema_fast > ema_slow > ema_trend
        bear = ema_fast < ema_slow < ema_trend

        fast_slow = abs(ema_fast - ema_slow) / ema_slow if ema_slow else 0.0
        slow_trend = abs(ema_slow - ema_trend) / ema_trend if ema_trend else 0.0
        strength = min(1.0, (fast_slow + slow_trend) * self.TREND_SPREAD_SCALE)

        return TrendAnalysis(
            direction="bullish" if bull else "bearish" if bear else "neutral",
            strength=strength,
            aligned=bull or bear,
            price_vs_fast=(price - ema_fast) / ema_fast if ema_fast else 0.0,
            price_vs_slow=(price - ema_slow) / ema_slow if ema_slow else 0.0,
            above_all=bull and price > ema_fast,
            below_all=bear and price < ema_fast,
        )

    def analyze_rsi(
        self,
        rsi_value: Optional[float],
        price: float,
        prev_price: float,
        rsi_history: Sequence[float] = (),
        oversold: float = 30.0,
        overbought: float = 70.0,
    ) -> RSIAnalysis:
        """Analyze RSI extremes and price/RSI divergence.

        Divergence compares the last price move with the RSI slope over the
        last DIVERGENCE_LOOKBACK readings; a mismatch forces strength >= 0.8.
        """
        if rsi_value is None:
            return RSIAnalysis(signal=0.0, strength=0.0)

        signal = 0.0
        strength = 0.0
        divergence = None

        if rsi_value < oversold:
            signal = 1.0
            strength = (oversold - rsi_value) / oversold
        elif rsi_value > overbought:
            signal = -1.0
            strength = (rsi_value - overbought) / (100.0 - overbought)

        if len(rsi_history) >= self.DIVERGENCE_LOOKBACK:
            recent = list(rsi_history)[-self.DIVERGENCE_LOOKBACK:]
            if price < prev_price and recent[-1] > recent[0]:
                divergence = "bullish"
                signal = max(signal, 1.0)
                strength = max(strength, self.DIVERGENCE_STRENGTH)
            elif price > prev_price and recent[-1] < recent[0]:
                divergence = "bearish"
                signal = min(signal, -1.0)
                strength = max(strength, self.DIVERGENCE_STRENGTH)

        return RSIAnalysis(
            signal=signal,
            strength=min(1.0, strength),
            divergence=divergence,
            value=rsi_value,
        )

    def analyze_bollinger(
        self,
        bands: Optional[BollingerBands],
        price: float,
        volume: Optional[float] = None,
        avg_volume: Optional[float] = None,
        volume_threshold: float = 1.5,
    ) -> BollingerAnalysis:
        """Analyze price position relative to the Bollinger channel."""
        if bands is None or bands.width <= 0:
            return BollingerAnalysis(signal=0.0, strength=0.0)

        width = bands.width
        position_in_band = (price - bands.lower) / width
        signal = 0.0
        strength = 0.0
        position = "middle"

        if price < bands.lower:
            signal = 1.0
            strength = min(1.0, (bands.lower - price) / (width * 0.1))
            position = "below_lower"
        elif price > bands.upper:
            signal = -1.0
            strength = min(1.0, (price - bands.upper) / (width * 0.1))
            position = "above_upper"
        elif position_in_band < self.BAND_PROXIMITY:
            signal = 0.5
            strength = 0.5
            position = "near_lower"
        elif position_in_band > 1 - self.BAND_PROXIMITY:
            signal = -0.5
            strength = 0.5
            position = "near_upper"

        if volume and avg_volume and volume / avg_volume > volume_threshold:
            strength = min(1.0, strength * self.VOLUME_BOOST)

        return BollingerAnalysis(
            signal=signal,
            strength=strength,
            position=position,
            band_width=width,
            position_in_band=position_in_band,
        )

    def analyze_macd(self, result: Optional[MACDResult]) -> MACDAnalysis:
        """Analyze MACD cross direction and histogram acceleration."""
        if result is None:
            return MACDAnalysis(signal=0.0, strength=0.0)

        signal = 0.0
        strength = 0.0
        momentum = "neutral"

        if result.macd > 0 and result.macd > result.signal:
            signal = 1.0
            strength = min(1.0, abs(result.macd) / self.MACD_STRENGTH_SCALE)
            momentum = "bullish"
        elif result.macd < 0 and result.macd < result.signal:
            signal = -1.0
            strength = min(1.0, abs(result.macd) / self.MACD_STRENGTH_SCALE)
            momentum = "bearish"

        previous = result.previous_histogram
        if previous is not None:
            if result.histogram > previous and result.histogram > 0:
                signal = max(signal, 0.5)
                strength = max(strength, self.ACCELERATION_STRENGTH)
                momentum = "accelerating_bullish"
            elif result.histogram < previous and result.histogram < 0:
                signal = min(signal, -0.5)
                strength = max(strength, self.ACCELERATION_STRENGTH)
                momentum = "accelerating_bearish"

        return MACDAnalysis(
            signal=signal,
            strength=strength,
            momentum=momentum,
            histogram=result.histogram,
        )

    def analyze_volume(
        self,
        volume: Optional[float],
        avg_volume: Optional[float],
        price: float,
        prev_price: float,
        volume_threshold: float = 1.5,
    ) -> VolumeAnalysis:
        """Analyze volume against its average.

        High volume (ratio > threshold) confirms a price move in the same
        direction, or flags accumulation when the price barely moved.
        """
        if not volume or not avg_volume:
            return VolumeAnalysis(is_high=False, ratio=1.0, confirmation=0.0)

        ratio = volume / avg_volume
        price_change = (price - prev_price) / prev_price if prev_price else 0.0
        confirmation = 0.0

        if ratio > volume_threshold:
            if abs(price_change) < self.ACCUMULATION_PRICE_CHANGE:
                confirmation = 0.5
            elif price_change > 0:
                confirmation = 1.0
            else:
                confirmation = -1.0

        return VolumeAnalysis(
            is_high=ratio > volume_threshold,
            ratio=ratio,
            confirmation=confirmation,
            strength=max(0.0, min(1.0, (ratio - 1) / 2)),
        )

    def generate(
        self,
        symbol: str,
        state: Optional[PriceSeriesState],
        config: Optional[TokenConfig] = None,
    ) -> Signal:
        """Generate a signal for one symbol.

        Deterministic for a given state; the state is not modified.

        Args:
            symbol: Instrument symbol
            state: Price series state for the symbol
            config: Per-symbol configuration. Uses defaults if None.

        Returns:
            Signal with verdict, strength, confidence and breakdown
        """
        config = config or TokenConfig()

        if state is None or not state.has_trend_emas or state.last_price is None:
            return Signal(
                signal_type=SignalType.WAIT,
                strength=0.0,
                confidence=0.0,
                regime=None,
                reasons=(INSUFFICIENT_DATA,),
            )

        price = state.last_price
        prev_price = state.previous_price
        avg_volume = state.average_volume(config.volume_period)

        regime = self.regime_detector.detect(
            state.adx, state.atr, price, state.reference_price()
        )
        weights = self.get_weights(regime)

        breakdown = SignalBreakdown(
            trend=self.analyze_trend(state.ema_fast, state.ema_slow, state.ema_trend, price),
            rsi=self.analyze_rsi(
                state.rsi, price, prev_price, state.rsi_history,
                config.rsi_oversold, config.rsi_overbought,
            ),
            bollinger=self.analyze_bollinger(
                state.bollinger, price, state.last_volume, avg_volume, config.volume_threshold
            ),
            macd=self.analyze_macd(state.macd),
            volume=self.analyze_volume(
                state.last_volume, avg_volume, price, prev_price, config.volume_threshold
            ),
        )

        bullish, bearish, total_weight = self._score(breakdown, weights)
        thresholds = self.get_thresholds(regime)

        signal_type = SignalType.WAIT
        strength = 0.0
        confidence = 0.0
        reasons = []

        if bullish > thresholds.minimum and bullish > bearish:
            signal_type = SignalType.STRONG_BUY if bullish > thresholds.strong else SignalType.BUY
            strength = bullish
            confidence = min(1.0, bullish / thresholds.strong)
            reasons.append(f"bullish signals ({bullish:.1%})")
        elif bearish > thresholds.minimum and bearish > bullish:
            signal_type = SignalType.STRONG_SELL if bearish > thresholds.strong else SignalType.SELL
            strength = bearish
            confidence = min(1.0, bearish / thresholds.strong)
            reasons.append(f"bearish signals ({bearish:.1%})")
        else:
            reasons.append(
                f"insufficient signal strength (bull: {bullish:.1%}, bear: {bearish:.1%})"
            )

        if regime == MarketRegime.CHOPPY:
            reasons.append("choppy market - waiting for clearer signals")
        elif regime == MarketRegime.VOLATILE:
            reasons.append("high volatility - conservative approach")

        logger.debug(
            f"[{symbol}] {signal_type.value} in {regime.value} "
            f"(bull={bullish:.3f}, bear={bearish:.3f}, conf={confidence:.2f})"
        )

        return Signal(
            signal_type=signal_type,
            strength=strength,
            confidence=confidence,
            regime=regime,
            reasons=tuple(reasons),
            bullish_score=bullish,
            bearish_score=bearish,
            total_weight=total_weight,
            weights=weights,
            indicators=breakdown,
        )

    def _score(
        self,
        breakdown: SignalBreakdown,
        weights: SignalWeights,
    ) -> tuple[float, float, float]:
        """Accumulate weighted scores and normalize by the total weight."""
        trend_direction = {"bullish": 1.0, "bearish": -1.0}.get(breakdown.trend.direction, 0.0)
        components = (
            (trend_direction, breakdown.trend.strength, weights.trend),
            (breakdown.rsi.signal, breakdown.rsi.strength, weights.mean_reversion),
            (breakdown.bollinger.signal, breakdown.bollinger.strength, weights.mean_reversion),
            (breakdown.macd.signal, breakdown.macd.strength, weights.momentum),
            (breakdown.volume.confirmation, breakdown.volume.strength, weights.volume),
        )

        bullish = 0.0
        bearish = 0.0
        total_weight = 0.0
        for direction, strength, weight in components:
            if direction > 0:
                bullish += weight * strength
            elif direction < 0:
                bearish += weight * strength
            total_weight += weight

        if total_weight <= 0:
            return 0.0, 0.0, 0.0
        return bullish / total_weight, bearish / total_weight, total_weight
