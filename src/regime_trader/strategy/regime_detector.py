"""Regime Detector - ADX/volatility market regime classification.

Decision table (first match wins):
- ATR/price > 5% and ADX < 20 → VOLATILE
- ADX > 30 → TRENDING
- ADX > 20 → WEAK_TREND
- ADX > 15 → SIDEWAYS
- otherwise → CHOPPY

Missing ADX, ATR or price → CHOPPY, so nothing trades on insufficient data.
"""

import logging
import math
from typing import Optional

from regime_trader.models import MarketRegime


logger = logging.getLogger(__name__)


def _is_positive(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


class RegimeDetector:
    """Classifies the market regime of a single symbol."""

    VOLATILITY_THRESHOLD = 0.05   # ATR/price
    VOLATILE_MAX_ADX = 20.0
    STRONG_TREND_ADX = 45.0
    TRENDING_ADX = 30.0
    WEAK_TREND_ADX = 20.0
    SIDEWAYS_ADX = 15.0

    def detect(
        self,
        adx: Optional[float],
        atr: Optional[float],
        price: Optional[float],
        reference_price: Optional[float] = None,
    ) -> MarketRegime:
        """Detect market regime.

        Args:
            adx: ADX value
            atr: ATR value
            price: Current price
            reference_price: Short-term reference price (e.g. 10 ticks ago)

        Returns:
            MarketRegime, always one of the five values
        """
        if not (_is_positive(adx) and _is_positive(atr) and _is_positive(price)):
            return MarketRegime.CHOPPY

        volatility = atr / price
        regime = self._classify(adx, volatility)

        logger.debug(
            f"Regime detected: {regime.value} (ADX={adx:.1f}, ATR/price={volatility:.4f}, "
            f"deviation={self.price_deviation(price, reference_price):.4f})"
        )
        return regime

    def _classify(self, adx: float, volatility: float) -> MarketRegime:
        if volatility > self.VOLATILITY_THRESHOLD and adx < self.VOLATILE_MAX_ADX:
            return MarketRegime.VOLATILE
        if adx > self.STRONG_TREND_ADX or adx > self.TRENDING_ADX:
            return MarketRegime.TRENDING
        if adx > self.WEAK_TREND_ADX:
            return MarketRegime.WEAK_TREND
        if adx > self.SIDEWAYS_ADX:
            return MarketRegime.SIDEWAYS
        return MarketRegime.CHOPPY

    @staticmethod
    def price_deviation(price: float, reference_price: Optional[float]) -> float:
        """Relative distance of price from the reference price (0.0 if unknown)."""
        if not _is_positive(reference_price):
            return 0.0
        return abs(price - reference_price) / reference_price
