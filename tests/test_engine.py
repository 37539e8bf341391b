"""Tests for the trading strategy decision cycle."""

import pytest

from regime_trader.config import EngineConfig, TokenConfig
from regime_trader.models import SignalType
from regime_trader.persistence.position_state import PositionStateStore
from regime_trader.strategy.engine import (
    BOUGHT,
    EXITED,
    FAILED,
    HELD,
    SKIPPED,
    SOLD,
    TradingStrategy,
)

from conftest import (
    RecordingExecutor,
    ScriptedFeed,
    falling_prices,
    flat_prices,
    rising_prices,
)


CAPITAL = 10000.0


def make_strategy(clock, tokens=("ETH",), state_store=None, **engine_options) -> TradingStrategy:
    config = EngineConfig(trade_tokens=list(tokens), available_capital=CAPITAL, **engine_options)
    return TradingStrategy(engine_config=config, state_store=state_store, clock=clock)


def feed_strategy(strategy: TradingStrategy, symbol: str, prices: list[float]) -> None:
    for price in prices:
        strategy.update_price(symbol, price)


class TestTargetPosition:
    """End-to-end decisions from price series."""

    def test_insufficient_data(self, clock):
        decision = make_strategy(clock).target_position("ETH", CAPITAL)
        assert decision.position == 0
        assert decision.reason == "insufficient data"

    def test_rising_series_buys_within_max_lot(self, clock):
        strategy = make_strategy(clock)
        prices = rising_prices(60)
        feed_strategy(strategy, "ETH", prices)

        decision = strategy.target_position("ETH", CAPITAL)

        assert decision.signal.signal_type in (SignalType.BUY, SignalType.STRONG_BUY)
        assert decision.side == "buy"
        assert 0 < decision.position <= TokenConfig().max_lot_usd / prices[-1] * (1 + 1e-9)
        assert decision.stops.stop_distance > 0
        assert decision.stops.stop_loss < prices[-1] < decision.stops.take_profit

    def test_falling_series_sells(self, clock):
        strategy = make_strategy(clock)
        feed_strategy(strategy, "ETH", falling_prices(60))
        decision = strategy.target_position("ETH", CAPITAL)
        assert decision.position < 0
        assert decision.side == "sell"

    def test_flat_series_waits(self, clock):
        strategy = make_strategy(clock)
        feed_strategy(strategy, "ETH", flat_prices(60))
        decision = strategy.target_position("ETH", CAPITAL)
        assert decision.position == 0
        assert decision.signal.signal_type == SignalType.WAIT
        assert "insufficient signal strength" in decision.reason

    def test_cooldown_blocks_then_expires(self, clock):
        strategy = make_strategy(clock)
        feed_strategy(strategy, "ETH", rising_prices(60))
        strategy.open_position("ETH", 10.0, 100.0, 1.0)

        decision = strategy.target_position("ETH", CAPITAL)
        assert decision.position == 0
        assert decision.reason == "cooldown active (30s remaining)"

        clock.advance(10.5)
        assert strategy.target_position("ETH", CAPITAL).reason == "cooldown active (20s remaining)"

        clock.advance(20.0)
        assert strategy.target_position("ETH", CAPITAL).position > 0


class TestPositionBookkeeping:
    """Risk and performance bookkeeping through the strategy."""

    def test_heat_rejects_second_large_position(self, clock):
        strategy = make_strategy(clock)
        assert strategy.open_position("ETH", 400.0, 2000.0, 1.0).success

        result = strategy.risk_manager.can_take_position(1200.0, CAPITAL, "SOL")
        assert not result.can_take

    def test_close_updates_metrics(self, clock):
        strategy = make_strategy(clock)
        strategy.open_position("ETH", 100.0, 2000.0, 1.0)
        strategy.close_position("ETH", 1950.0, -50.0)
        strategy.open_position("ETH", 100.0, 2000.0, 1.0)
        strategy.close_position("ETH", 2150.0, 150.0)

        metrics = strategy.risk_manager.risk_metrics
        assert metrics.win_rate == pytest.approx(0.5)
        assert metrics.avg_win == pytest.approx(150.0)

        perf = strategy.performance
        assert perf.total_trades == 2
        assert perf.winning_trades == 1
        assert perf.losing_trades == 1
        assert perf.total_pnl == pytest.approx(100.0)
        assert perf.max_drawdown == pytest.approx(-50.0)
        assert perf.current_drawdown == 0.0

    def test_close_unknown_does_not_touch_performance(self, clock):
        strategy = make_strategy(clock)
        assert not strategy.close_position("ETH", 100.0, 10.0).success
        assert strategy.performance.total_trades == 0


class TestRunCycle:
    """Decision cycle with scripted feeds and executors."""

    def test_buys_once_and_skips_unavailable_symbol(self, clock, executor):
        strategy = make_strategy(clock, tokens=("ETH", "SOL"))
        prices = rising_prices(60)
        feed = ScriptedFeed({"ETH": prices, "SOL": [None] * 60})

        outcomes = []
        for _ in range(60):
            outcomes.extend(strategy.run_cycle(feed, executor))

        bought = [o for o in outcomes if o.action == BOUGHT]
        assert len(bought) == 1
        buy = bought[0]
        assert buy.symbol == "ETH"
        assert executor.legs[0][:2] == ("USDC", "ETH")
        assert executor.legs[0][2] == pytest.approx(buy.quantity * buy.price)
        assert strategy.risk_manager.get_open_position("ETH").quantity == pytest.approx(buy.quantity)
        assert strategy.daily_trades == 1

        sol = [o for o in outcomes if o.symbol == "SOL"]
        assert all(o.action == SKIPPED for o in sol)
        assert all(o.reason.startswith("price unavailable") for o in sol)
        assert strategy.states.get("SOL") is None

    def test_every_outcome_has_reason(self, clock, executor):
        strategy = make_strategy(clock)
        feed = ScriptedFeed({"ETH": flat_prices(30)})
        for _ in range(30):
            for outcome in strategy.run_cycle(feed, executor):
                assert outcome.reason

    def test_sell_closes_open_record(self, clock, executor):
        strategy = make_strategy(clock)
        prices = falling_prices(61)
        feed_strategy(strategy, "ETH", prices[:-1])
        strategy.open_position("ETH", 10.0, 150.0, 2.0)
        clock.advance(60)

        outcomes = strategy.run_cycle(ScriptedFeed({"ETH": [prices[-1]]}), executor)

        assert outcomes[0].action == SOLD
        assert executor.legs == [("ETH", "USDC", 2.0, outcomes[0].reason)]
        assert strategy.risk_manager.get_open_position("ETH") is None
        assert strategy.performance.total_pnl == pytest.approx((prices[-1] - 150.0) * 2.0)

    def test_sell_without_open_record_holds(self, clock, executor):
        strategy = make_strategy(clock)
        prices = falling_prices(61)
        feed_strategy(strategy, "ETH", prices[:-1])

        outcomes = strategy.run_cycle(ScriptedFeed({"ETH": [prices[-1]]}), executor)

        assert outcomes[0].action == HELD
        assert outcomes[0].reason == "no open position to sell"
        assert executor.legs == []

    def test_failed_execution_is_not_booked(self, clock):
        strategy = make_strategy(clock)
        prices = rising_prices(61)
        feed_strategy(strategy, "ETH", prices[:-1])

        outcomes = strategy.run_cycle(ScriptedFeed({"ETH": [prices[-1]]}), RecordingExecutor(fail=True))

        assert outcomes[0].action == FAILED
        assert outcomes[0].reason == "execution failed: rejected"
        assert strategy.risk_manager.open_positions == []
        assert strategy.daily_trades == 0

    def test_daily_trade_cap(self, clock, executor):
        strategy = make_strategy(clock, tokens=("ETH", "SOL"), max_daily_trades=1)
        feed = ScriptedFeed({"ETH": rising_prices(60), "SOL": rising_prices(60)})

        outcomes = []
        for _ in range(60):
            outcomes.extend(strategy.run_cycle(feed, executor))

        assert len([o for o in outcomes if o.action == BOUGHT]) == 1
        assert any(o.reason == "daily trade limit reached" for o in outcomes)

    def test_daily_count_resets_next_day(self, clock, executor):
        strategy = make_strategy(clock, tokens=("ETH",), max_daily_trades=1)
        feed = ScriptedFeed({"ETH": rising_prices(60)})
        for _ in range(60):
            strategy.run_cycle(feed, executor)
        assert strategy.daily_trades == 1

        clock.advance(86400)
        strategy.run_cycle(feed, executor)
        assert strategy.daily_trades == 0

    def test_shutdown_before_cycle(self, clock, executor):
        strategy = make_strategy(clock, tokens=("ETH", "SOL"))
        feed = ScriptedFeed({"ETH": [100.0], "SOL": [10.0]})
        strategy.request_shutdown()

        assert strategy.run_cycle(feed, executor) == []
        assert feed.calls == []

    def test_shutdown_between_symbols(self, clock, executor):
        strategy = make_strategy(clock, tokens=("ETH", "SOL"))

        class StoppingFeed(ScriptedFeed):
            def get_price(self, symbol):
                strategy.request_shutdown()
                return super().get_price(symbol)

        feed = StoppingFeed({"ETH": [100.0], "SOL": [10.0]})
        outcomes = strategy.run_cycle(feed, executor)

        assert [o.symbol for o in outcomes] == ["ETH"]
        assert feed.calls == ["ETH"]
        assert strategy.states.get("ETH").last_price == 100.0

    def test_take_profit_exit(self, clock, executor, tmp_path):
        store = PositionStateStore(tmp_path / "state.json")
        strategy = make_strategy(clock, state_store=store, tp_bps=100.0, sl_bps=100.0)
        strategy.open_position("ETH", 5.0, 100.0, 1.0)
        store.update_position_state("ETH", "BUY", 1.0, 100.0)

        outcomes = strategy.run_cycle(ScriptedFeed({"ETH": [102.0]}), executor)

        assert outcomes[0].action == EXITED
        assert outcomes[0].reason == "TP exit"
        assert executor.legs == [("ETH", "USDC", 1.0, "TP exit")]
        assert strategy.risk_manager.get_open_position("ETH") is None
        assert strategy.performance.total_pnl == pytest.approx(2.0)
        assert PositionStateStore(tmp_path / "state.json").load()["ETH"].qty == 0.0

    def test_buy_records_fill_in_state_file(self, clock, executor, tmp_path):
        store = PositionStateStore(tmp_path / "state.json")
        strategy = make_strategy(clock, state_store=store)
        prices = rising_prices(61)
        feed_strategy(strategy, "ETH", prices[:-1])

        outcome = strategy.run_cycle(ScriptedFeed({"ETH": [prices[-1]]}), executor)[0]

        assert outcome.action == BOUGHT
        saved = PositionStateStore(tmp_path / "state.json").load()["ETH"]
        assert saved.qty == pytest.approx(outcome.quantity)
        assert saved.avg_entry == pytest.approx(prices[-1])


class TestReporting:
    def test_summary_and_token_analysis(self, clock):
        strategy = make_strategy(clock)
        feed_strategy(strategy, "ETH", rising_prices(60))
        strategy.open_position("ETH", 300.0, 180.0, 1.0)

        summary = strategy.get_strategy_summary()
        assert summary["open_positions"] == 1
        assert summary["portfolio_heat"]["current"] == pytest.approx(300.0)
        assert summary["tracked_symbols"] == ["ETH"]

        analysis = strategy.get_token_analysis("ETH")
        assert analysis["data_points"] == 60
        assert analysis["signal"]["regime"] == "trending"
        assert analysis["position"]["risk"] == 300.0
        assert analysis["cooldown_remaining"] == pytest.approx(30.0)
        assert strategy.get_token_analysis("SOL") is None

    def test_reset(self, clock):
        strategy = make_strategy(clock)
        feed_strategy(strategy, "ETH", rising_prices(30))
        strategy.open_position("ETH", 300.0, 180.0, 1.0)
        strategy.request_shutdown()

        strategy.reset()

        assert len(strategy.states) == 0
        assert strategy.risk_manager.portfolio_heat == 0.0
        assert strategy.cooldown_remaining("ETH") == 0.0
        assert not strategy.is_shutdown_requested()
