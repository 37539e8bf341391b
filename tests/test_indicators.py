"""Tests for the technical indicator library."""

import math

import pytest
from hypothesis import given, settings, strategies as st

from regime_trader.indicators import (
    RSI_FLAT,
    RSI_NO_LOSS,
    adx,
    atr,
    bollinger_bands,
    ema,
    log_return,
    macd,
    rsi,
    sma,
    stdev,
)

from conftest import falling_prices, flat_prices, rising_prices


prices_strategy = st.lists(
    st.floats(min_value=0.01, max_value=100000, allow_nan=False, allow_infinity=False),
    min_size=0,
    max_size=120,
)


class TestEMA:
    """Tests for EMA cold start and update."""

    @given(
        price=st.floats(min_value=-1e9, max_value=1e9, allow_nan=False),
        length=st.integers(min_value=1, max_value=500),
    )
    @settings(max_examples=100)
    def test_cold_start_returns_price(self, price, length):
        assert ema(None, price, length) == price

    def test_update_uses_smoothing_factor(self):
        # k = 2 / (9 + 1) = 0.2
        assert ema(100.0, 110.0, 9) == pytest.approx(102.0)

    @given(
        prev=st.floats(min_value=1, max_value=1e6, allow_nan=False),
        price=st.floats(min_value=1, max_value=1e6, allow_nan=False),
        length=st.integers(min_value=1, max_value=200),
    )
    @settings(max_examples=100)
    def test_result_between_prev_and_price(self, prev, price, length):
        result = ema(prev, price, length)
        assert min(prev, price) - 1e-6 <= result <= max(prev, price) + 1e-6


class TestStdev:
    """Tests for sample standard deviation."""

    def test_empty_and_single_are_zero(self):
        assert stdev([]) == 0
        assert stdev([42.0]) == 0

    def test_sample_denominator(self):
        # mean 2.5, squared deviations sum 5, / (n - 1) = 5/3
        assert stdev([1, 2, 3, 4]) == pytest.approx(math.sqrt(5 / 3))

    @given(values=prices_strategy)
    @settings(max_examples=100)
    def test_never_negative(self, values):
        assert stdev(values) >= 0

    def test_sma(self):
        assert sma([]) == 0.0
        assert sma([1, 2, 3]) == pytest.approx(2.0)

    def test_log_return(self):
        assert log_return(100.0, 110.0) == pytest.approx(math.log(1.1))


class TestRSI:
    """Tests for RSI and its zero-loss sentinels."""

    def test_insufficient_data(self):
        assert rsi(rising_prices(14), 14) is None

    def test_constant_series_is_flat_sentinel(self):
        value = rsi(flat_prices(30), 14)
        assert value == RSI_FLAT
        assert not math.isnan(value)

    def test_gains_only_is_no_loss_sentinel(self):
        assert rsi(rising_prices(30), 14) == RSI_NO_LOSS

    def test_losses_only_is_zero(self):
        assert rsi(falling_prices(30), 14) == 0.0

    def test_balanced_moves_are_fifty(self):
        prices = [1.0 if i % 2 == 0 else 2.0 for i in range(15)]
        assert rsi(prices, 14) == pytest.approx(50.0)

    @given(values=st.lists(
        st.floats(min_value=1, max_value=1000, allow_nan=False), min_size=15, max_size=100
    ))
    @settings(max_examples=100)
    def test_bounded(self, values):
        value = rsi(values, 14)
        assert value is not None
        assert 0 <= value <= 100


class TestBollingerBands:
    """Tests for Bollinger Bands."""

    def test_insufficient_data(self):
        assert bollinger_bands(rising_prices(19), 20) is None

    def test_known_values(self):
        bands = bollinger_bands([float(i) for i in range(1, 21)], 20, 2.0)
        assert bands.middle == pytest.approx(10.5)
        assert bands.std == pytest.approx(math.sqrt(35.0))
        assert bands.upper == pytest.approx(10.5 + 2 * math.sqrt(35.0))
        assert bands.lower == pytest.approx(10.5 - 2 * math.sqrt(35.0))

    def test_uses_trailing_window(self):
        prices = [1000.0] * 10 + [5.0] * 20
        bands = bollinger_bands(prices, 20)
        assert bands.middle == pytest.approx(5.0)
        assert bands.width == 0


class TestMACD:
    """Tests for MACD with an EMA-of-MACD signal line."""

    def test_insufficient_data(self):
        assert macd(rising_prices(25), 12, 26, 9) is None

    def test_flat_series_is_zero(self):
        result = macd(flat_prices(40))
        assert result.macd == pytest.approx(0.0)
        assert result.signal == pytest.approx(0.0)
        assert result.histogram == pytest.approx(0.0)

    def test_rising_series_line_above_signal(self):
        result = macd(rising_prices(60))
        assert result.macd > 0
        assert result.macd > result.signal
        assert result.histogram != 0

    def test_histogram_is_line_minus_signal(self):
        result = macd(rising_prices(40) + falling_prices(20, start=140.0))
        assert result.histogram == pytest.approx(result.macd - result.signal)
        assert result.previous_histogram is not None


class TestATR:
    """Tests for single-price ATR."""

    def test_insufficient_data(self):
        assert atr([1.0, 2.0, 3.0], 3) is None

    def test_mean_absolute_move(self):
        assert atr([1.0, 2.0, 4.0, 7.0], 3) == pytest.approx(2.0)

    def test_uses_trailing_window(self):
        assert atr([100.0, 1.0, 2.0, 4.0, 7.0], 3) == pytest.approx(2.0)

    def test_flat_series_is_zero(self):
        assert atr(flat_prices(20), 14) == 0


class TestADX:
    """Tests for the log-return ADX proxy."""

    def test_insufficient_data(self):
        assert adx([0.01] * 13, 14) is None

    def test_one_directional_moves_are_max(self):
        assert adx([0.01] * 30, 14) == pytest.approx(100.0)
        assert adx([-0.01] * 30, 14) == pytest.approx(100.0)

    def test_no_movement_is_zero(self):
        assert adx([0.0] * 30, 14) == 0.0

    @given(returns=st.lists(
        st.floats(min_value=-0.2, max_value=0.2, allow_nan=False), min_size=14, max_size=240
    ))
    @settings(max_examples=100)
    def test_bounded(self, returns):
        value = adx(returns, 14)
        assert value is not None
        assert 0 <= value <= 100 + 1e-9
