"""Tests for regime-weighted signal generation."""

import pytest

from regime_trader.indicators import BollingerBands, MACDResult
from regime_trader.market.state import SymbolStateRegistry
from regime_trader.models import MarketRegime, SignalType
from regime_trader.strategy.signal_generator import INSUFFICIENT_DATA, SignalGenerator

from conftest import falling_prices, feed_prices, flat_prices, rising_prices


REGIME_ORDER = [
    MarketRegime.TRENDING,
    MarketRegime.WEAK_TREND,
    MarketRegime.SIDEWAYS,
    MarketRegime.CHOPPY,
    MarketRegime.VOLATILE,
]


class TestWeightTables:
    """Weights and thresholds shift as the regime degrades."""

    def test_trend_weight_strictly_decreasing(self):
        weights = [SignalGenerator.REGIME_WEIGHTS[r].trend for r in REGIME_ORDER]
        assert all(a > b for a, b in zip(weights, weights[1:]))

    def test_volume_weight_increasing(self):
        weights = [SignalGenerator.REGIME_WEIGHTS[r].volume for r in REGIME_ORDER]
        assert all(a <= b for a, b in zip(weights, weights[1:]))
        assert weights[0] < weights[-1]

    def test_thresholds_tighten(self):
        thresholds = [SignalGenerator.REGIME_THRESHOLDS[r] for r in REGIME_ORDER]
        assert all(a.minimum < b.minimum for a, b in zip(thresholds, thresholds[1:]))
        assert all(t.minimum < t.strong for t in thresholds)


class TestSubSignals:
    """Tests for the individual indicator analyses."""

    def setup_method(self):
        self.generator = SignalGenerator()

    def test_trend_bullish_alignment(self):
        result = self.generator.analyze_trend(110.0, 105.0, 100.0, 112.0)
        assert result.direction == "bullish"
        assert result.aligned
        assert result.above_all
        assert result.strength == pytest.approx((5 / 105 + 5 / 100) * 10)

    def test_trend_bearish_alignment(self):
        result = self.generator.analyze_trend(90.0, 95.0, 100.0, 88.0)
        assert result.direction == "bearish"
        assert result.below_all

    def test_trend_mixed_is_neutral(self):
        result = self.generator.analyze_trend(105.0, 100.0, 110.0, 104.0)
        assert result.direction == "neutral"
        assert not result.aligned

    def test_rsi_oversold(self):
        result = self.generator.analyze_rsi(20.0, 100.0, 100.0)
        assert result.signal == 1.0
        assert result.strength == pytest.approx(1 / 3)

    def test_rsi_overbought(self):
        result = self.generator.analyze_rsi(85.0, 100.0, 100.0)
        assert result.signal == -1.0
        assert result.strength == pytest.approx(0.5)

    def test_rsi_custom_bounds(self):
        result = self.generator.analyze_rsi(35.0, 100.0, 100.0, oversold=40.0, overbought=60.0)
        assert result.signal == 1.0

    def test_rsi_bullish_divergence(self):
        result = self.generator.analyze_rsi(48.0, 99.0, 100.0, [40.0, 42.0, 44.0, 46.0, 48.0])
        assert result.divergence == "bullish"
        assert result.signal == 1.0
        assert result.strength >= 0.8

    def test_rsi_bearish_divergence(self):
        result = self.generator.analyze_rsi(52.0, 101.0, 100.0, [60.0, 58.0, 56.0, 54.0, 52.0])
        assert result.divergence == "bearish"
        assert result.signal == -1.0
        assert result.strength >= 0.8

    def test_rsi_missing(self):
        result = self.generator.analyze_rsi(None, 100.0, 100.0)
        assert result.signal == 0.0 and result.strength == 0.0

    def test_bollinger_below_lower(self):
        bands = BollingerBands(upper=110.0, middle=100.0, lower=90.0, std=5.0)
        result = self.generator.analyze_bollinger(bands, 85.0)
        assert result.signal == 1.0
        assert result.strength == 1.0
        assert result.position == "below_lower"

    def test_bollinger_near_upper(self):
        bands = BollingerBands(upper=110.0, middle=100.0, lower=90.0, std=5.0)
        result = self.generator.analyze_bollinger(bands, 108.0)
        assert result.signal == -0.5
        assert result.position == "near_upper"

    def test_bollinger_volume_boost(self):
        bands = BollingerBands(upper=110.0, middle=100.0, lower=90.0, std=5.0)
        result = self.generator.analyze_bollinger(bands, 92.0, volume=30.0, avg_volume=10.0)
        assert result.position == "near_lower"
        assert result.strength == pytest.approx(0.75)

    def test_bollinger_zero_width_is_neutral(self):
        bands = BollingerBands(upper=100.0, middle=100.0, lower=100.0, std=0.0)
        result = self.generator.analyze_bollinger(bands, 100.0)
        assert result.signal == 0.0
        assert result.position == "middle"

    def test_macd_bullish_acceleration(self):
        result = self.generator.analyze_macd(MACDResult(0.02, 0.01, 0.01, 0.005))
        assert result.signal == 1.0
        assert result.strength == 1.0
        assert result.momentum == "accelerating_bullish"

    def test_macd_acceleration_overrides_weak_cross(self):
        # Line below zero but histogram rising above zero
        result = self.generator.analyze_macd(MACDResult(-0.001, -0.002, 0.001, 0.0))
        assert result.signal == 0.5
        assert result.strength == pytest.approx(0.7)

    def test_macd_bearish(self):
        result = self.generator.analyze_macd(MACDResult(-0.02, -0.01, -0.01, -0.005))
        assert result.signal == -1.0
        assert result.momentum == "accelerating_bearish"

    def test_volume_confirms_direction(self):
        up = self.generator.analyze_volume(20.0, 10.0, 101.0, 100.0)
        down = self.generator.analyze_volume(20.0, 10.0, 99.0, 100.0)
        assert up.is_high and up.confirmation == 1.0
        assert down.confirmation == -1.0
        assert up.strength == pytest.approx(0.5)

    def test_volume_accumulation(self):
        result = self.generator.analyze_volume(20.0, 10.0, 100.05, 100.0)
        assert result.confirmation == 0.5

    def test_normal_volume_is_neutral(self):
        result = self.generator.analyze_volume(12.0, 10.0, 105.0, 100.0)
        assert not result.is_high
        assert result.confirmation == 0.0


class TestGenerate:
    """End-to-end signal generation from price series."""

    def setup_method(self):
        self.generator = SignalGenerator()
        self.registry = SymbolStateRegistry()

    def test_no_state_is_insufficient_data(self):
        signal = self.generator.generate("ETH", None)
        assert signal.signal_type == SignalType.WAIT
        assert signal.regime is None
        assert signal.reasons == (INSUFFICIENT_DATA,)

    def test_rising_series_is_trending_buy(self):
        state = feed_prices(self.registry, "ETH", rising_prices(60))
        signal = self.generator.generate("ETH", state)

        assert signal.regime == MarketRegime.TRENDING
        assert signal.signal_type in (SignalType.BUY, SignalType.STRONG_BUY)
        assert 0 < signal.strength <= 1
        assert 0 < signal.confidence <= 1
        assert signal.bullish_score > signal.bearish_score

    def test_falling_series_is_sell(self):
        state = feed_prices(self.registry, "ETH", falling_prices(60))
        signal = self.generator.generate("ETH", state)

        assert signal.regime == MarketRegime.TRENDING
        assert signal.signal_type in (SignalType.SELL, SignalType.STRONG_SELL)

    def test_flat_series_is_choppy_wait(self):
        state = feed_prices(self.registry, "ETH", flat_prices(60))
        signal = self.generator.generate("ETH", state)

        assert signal.regime == MarketRegime.CHOPPY
        assert signal.signal_type == SignalType.WAIT
        assert "choppy market - waiting for clearer signals" in signal.reasons

    def test_deterministic_and_does_not_mutate_state(self):
        state = feed_prices(self.registry, "ETH", rising_prices(60))
        prices_before = list(state.prices)
        rsi_before = list(state.rsi_history)

        first = self.generator.generate("ETH", state)
        second = self.generator.generate("ETH", state)

        assert first == second
        assert list(state.prices) == prices_before
        assert list(state.rsi_history) == rsi_before

    def test_stale_volume_spike_not_reused(self):
        prices = rising_prices(60)
        volumes = [10.0] * 58 + [500.0, None]
        state = feed_prices(self.registry, "ETH", prices, volumes)

        volume = self.generator.generate("ETH", state).indicators.volume
        assert not volume.is_high
        assert volume.confirmation == 0.0

    def test_normalized_scores(self):
        state = feed_prices(self.registry, "ETH", rising_prices(60))
        signal = self.generator.generate("ETH", state)
        assert 0 <= signal.bullish_score <= 1
        assert 0 <= signal.bearish_score <= 1
        assert signal.total_weight > 0
