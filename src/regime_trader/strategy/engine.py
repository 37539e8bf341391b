"""Trading Strategy - the decision cycle.

Ties together per-symbol state, signal generation, position sizing and
risk bookkeeping:

    price tick -> state update -> signal -> cooldown -> sizing -> stops
               -> signed target position -> execution -> open/close booking

One cycle processes the configured symbols sequentially. A shutdown request
is honoured between symbols, so each symbol's update is applied completely
or not at all.
"""

import logging
import math
import time
from dataclasses import asdict
from datetime import date, datetime
from typing import Callable, Optional

from regime_trader.config import EngineConfig, RiskConfig, TokenConfigManager
from regime_trader.interfaces import OrderExecutor, PriceFeed, PriceUnavailable
from regime_trader.market.state import SymbolStateRegistry
from regime_trader.models import (
    CycleOutcome,
    PerformanceMetrics,
    PositionOperationResult,
    SignalType,
    TradeDecision,
)
from regime_trader.persistence.position_state import BUY, SELL, PositionStateStore
from regime_trader.risk.position_sizer import PositionSizer
from regime_trader.risk.risk_manager import RiskManager
from regime_trader.strategy.signal_generator import INSUFFICIENT_DATA, SignalGenerator


logger = logging.getLogger(__name__)


# Cycle outcome actions
BOUGHT = "buy"
SOLD = "sell"
EXITED = "exit"
HELD = "hold"
SKIPPED = "skip"
FAILED = "failed"


class TradingStrategy:
    """Regime-aware multi-indicator trading strategy.

    Owns the per-symbol state registry and the risk manager; the price feed
    and order executor are passed in per cycle.
    """

    def __init__(
        self,
        token_configs: Optional[TokenConfigManager] = None,
        risk_config: Optional[RiskConfig] = None,
        engine_config: Optional[EngineConfig] = None,
        state_store: Optional[PositionStateStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize trading strategy.

        Args:
            token_configs: Per-symbol configuration. Uses defaults if None.
            risk_config: Portfolio risk limits. Uses defaults if None.
            engine_config: Loop settings. Uses defaults if None.
            state_store: Position state file for TP/SL tracking (optional)
            clock: Wall clock in seconds, used for cooldowns and the daily cap
        """
        self.token_configs = token_configs or TokenConfigManager()
        self.engine_config = engine_config or EngineConfig()
        self.states = SymbolStateRegistry(self.token_configs)
        self.signal_generator = SignalGenerator()
        self.risk_manager = RiskManager(risk_config)
        self.position_sizer = PositionSizer(self.risk_manager)
        self.state_store = state_store
        self.performance = PerformanceMetrics()

        self._clock = clock
        self._last_trade_at: dict[str, float] = {}
        self._shutdown_requested = False
        self._trade_day: Optional[date] = None
        self._daily_trades = 0

    # =========================================================================
    # Decisions
    # =========================================================================

    def update_price(self, symbol: str, price: Optional[float], volume: Optional[float] = None) -> bool:
        """Apply a price tick to the symbol's state."""
        return self.states.update_price(symbol, price, volume)

    def target_position(self, symbol: str, available_capital: float) -> TradeDecision:
        """Decide the signed target position for a symbol.

        Args:
            symbol: Instrument symbol
            available_capital: Capital available for sizing

        Returns:
            TradeDecision: position > 0 buy, < 0 sell, 0 with a reason otherwise
        """
        state = self.states.get(symbol)
        if state is None or not state.has_trend_emas:
            return TradeDecision(symbol=symbol, position=0.0, reason=INSUFFICIENT_DATA)

        config = self.token_configs.get(symbol)
        signal = self.signal_generator.generate(symbol, state, config)
        if signal.signal_type == SignalType.WAIT:
            return TradeDecision(symbol=symbol, position=0.0, reason=signal.reason, signal=signal)

        remaining = self.cooldown_remaining(symbol)
        if remaining > 0:
            return TradeDecision(
                symbol=symbol,
                position=0.0,
                reason=f"cooldown active ({math.ceil(remaining)}s remaining)",
                signal=signal,
            )

        sizing = self.position_sizer.calculate_position(symbol, signal, state, config, available_capital)
        if sizing.size == 0:
            return TradeDecision(symbol=symbol, position=0.0, reason=sizing.reason, signal=signal, sizing=sizing)

        stops = sizing.stop_levels
        position = sizing.size if signal.signal_type.is_buy else -sizing.size
        method = sizing.method.value if sizing.method else "none"

        logger.info(
            f"[{symbol}] {signal.signal_type.value.upper()} ({signal.confidence:.1%} confidence) "
            f"in {signal.regime.value} market: size {sizing.size:.6f} "
            f"(${sizing.size * state.last_price:.2f}) via {method}, risk ${sizing.risk:.2f}"
        )
        logger.info(
            f"[{symbol}] Stop ${stops.stop_loss:.4f} / target ${stops.take_profit:.4f}, "
            f"heat {self.risk_manager.portfolio_heat / available_capital:.1%}"
        )
        for adjustment in sizing.adjustments:
            logger.debug(f"[{symbol}] adjustment: {adjustment}")

        return TradeDecision(
            symbol=symbol,
            position=position,
            reason=f"executing {signal.signal_type.value} signal with {method} sizing",
            signal=signal,
            sizing=sizing,
            stops=stops,
        )

    def cooldown_remaining(self, symbol: str) -> float:
        """Seconds left before the symbol may trade again (0 if none)."""
        last = self._last_trade_at.get(symbol)
        if last is None:
            return 0.0
        cooldown = self.token_configs.get(symbol).cooldown_sec
        return max(0.0, cooldown - (self._clock() - last))

    # =========================================================================
    # Position bookkeeping
    # =========================================================================

    def open_position(
        self,
        symbol: str,
        risk: float,
        entry_price: float,
        quantity: float,
    ) -> PositionOperationResult:
        """Book a new position's risk and start the symbol's cooldown."""
        result = self.risk_manager.add_position(symbol, risk, entry_price, quantity)
        if result.success:
            self._last_trade_at[symbol] = self._clock()
            logger.info(f"[{symbol}] Position opened: {result.message}")
        return result

    def close_position(self, symbol: str, exit_price: float, pnl: float) -> PositionOperationResult:
        """Close a position and record its P&L."""
        result = self.risk_manager.close_position(symbol, exit_price, pnl)
        if result.success:
            self._update_performance(pnl)
            logger.info(f"[{symbol}] Position closed: {result.message}")
        return result

    def _update_performance(self, pnl: float) -> None:
        perf = self.performance
        perf.total_trades += 1
        perf.total_pnl += pnl
        if pnl > 0:
            perf.winning_trades += 1
        else:
            perf.losing_trades += 1
        perf.win_rate = perf.winning_trades / perf.total_trades
        perf.current_drawdown = min(0.0, perf.total_pnl)
        perf.max_drawdown = min(perf.max_drawdown, perf.current_drawdown)

    # =========================================================================
    # Decision cycle
    # =========================================================================

    def request_shutdown(self) -> None:
        """Request graceful shutdown after the current symbol."""
        self._shutdown_requested = True
        logger.info("🛑 Shutdown requested")

    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def daily_trades(self) -> int:
        return self._daily_trades

    def _roll_trade_day(self) -> None:
        today = datetime.fromtimestamp(self._clock()).date()
        if today != self._trade_day:
            if self._trade_day is not None:
                logger.info(f"New trading day {today}, resetting daily trade count ({self._daily_trades})")
            self._trade_day = today
            self._daily_trades = 0

    def _daily_cap_reached(self) -> bool:
        cfg = self.engine_config
        return cfg.has_daily_cap and self._daily_trades >= cfg.max_daily_trades

    def run_cycle(
        self,
        feed: PriceFeed,
        executor: OrderExecutor,
        available_capital: Optional[float] = None,
    ) -> list[CycleOutcome]:
        """Run one decision cycle over all configured symbols.

        Args:
            feed: Price source
            executor: Order executor
            available_capital: Capital for sizing (engine config value if None)

        Returns:
            One CycleOutcome per processed symbol
        """
        capital = available_capital if available_capital is not None else self.engine_config.available_capital
        self._roll_trade_day()

        outcomes = []
        for symbol in self.engine_config.trade_tokens:
            if self._shutdown_requested:
                logger.info(f"Shutdown requested, stopping cycle before {symbol}")
                break
            outcome = self._process_symbol(symbol, feed, executor, capital)
            if outcome.action in (SKIPPED, FAILED):
                logger.warning(f"[{symbol}] {outcome.action}: {outcome.reason}")
            outcomes.append(outcome)
        return outcomes

    def _process_symbol(
        self,
        symbol: str,
        feed: PriceFeed,
        executor: OrderExecutor,
        capital: float,
    ) -> CycleOutcome:
        try:
            price = feed.get_price(symbol)
        except PriceUnavailable as e:
            return CycleOutcome(symbol, SKIPPED, f"price unavailable: {e}")

        if not self.update_price(symbol, price, feed.get_volume(symbol)):
            return CycleOutcome(symbol, SKIPPED, f"invalid price {price!r}")

        exit_outcome = self._check_exit(symbol, price, executor)
        if exit_outcome is not None:
            return exit_outcome

        if self._daily_cap_reached():
            return CycleOutcome(symbol, SKIPPED, "daily trade limit reached", price)

        decision = self.target_position(symbol, capital)
        if decision.position > 0:
            return self._buy(symbol, price, decision, executor)
        if decision.position < 0:
            return self._sell(symbol, price, decision, executor)
        return CycleOutcome(symbol, HELD, decision.reason, price, decision=decision)

    def _buy(self, symbol, price, decision, executor) -> CycleOutcome:
        if self.risk_manager.get_open_position(symbol) is not None:
            return CycleOutcome(symbol, HELD, "position already open", price, decision=decision)

        base = self.engine_config.base_token
        quantity = decision.position
        result = executor.execute(base, symbol, quantity * price, decision.reason)
        if not result.success:
            return CycleOutcome(symbol, FAILED, f"execution failed: {result.error}", price, decision=decision)

        self.open_position(symbol, decision.sizing.risk, price, quantity)
        self._record_fill(symbol, BUY, quantity, price)
        self._daily_trades += 1
        return CycleOutcome(symbol, BOUGHT, decision.reason, price, quantity, decision)

    def _sell(self, symbol, price, decision, executor) -> CycleOutcome:
        record = self.risk_manager.get_open_position(symbol)
        if record is None:
            return CycleOutcome(symbol, HELD, "no open position to sell", price, decision=decision)

        result = executor.execute(symbol, self.engine_config.base_token, record.quantity, decision.reason)
        if not result.success:
            return CycleOutcome(symbol, FAILED, f"execution failed: {result.error}", price, decision=decision)

        quantity = record.quantity
        self.close_position(symbol, price, (price - record.entry_price) * quantity)
        self._record_fill(symbol, SELL, quantity, price)
        self._daily_trades += 1
        return CycleOutcome(symbol, SOLD, decision.reason, price, quantity, decision)

    def _check_exit(self, symbol: str, price: float, executor: OrderExecutor) -> Optional[CycleOutcome]:
        """Apply take-profit / stop-loss / trailing exits from the state file."""
        cfg = self.engine_config
        if self.state_store is None or not cfg.tp_sl_enabled:
            return None

        if cfg.use_trailing and self.state_store.update_trailing_high(symbol, price):
            self.state_store.save()

        trigger = self.state_store.check_tp_sl(
            symbol, price, cfg.tp_bps, cfg.sl_bps, cfg.use_trailing, cfg.trail_bps
        )
        if trigger is None or not trigger.triggered:
            return None

        reason = f"{trigger.reason} exit"
        result = executor.execute(symbol, cfg.base_token, trigger.qty, reason)
        if not result.success:
            return CycleOutcome(symbol, FAILED, f"execution failed: {result.error}", price)

        if self.risk_manager.get_open_position(symbol) is not None:
            self.close_position(symbol, price, (price - trigger.avg_entry) * trigger.qty)
        self._record_fill(symbol, SELL, trigger.qty, price)
        self._daily_trades += 1
        return CycleOutcome(symbol, EXITED, reason, price, trigger.qty)

    def _record_fill(self, symbol: str, side: str, quantity: float, price: float) -> None:
        if self.state_store is None:
            return
        self.state_store.update_position_state(symbol, side, quantity, price)
        self.state_store.save()

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_strategy_summary(self, available_capital: Optional[float] = None) -> dict:
        capital = available_capital if available_capital is not None else self.engine_config.available_capital
        report = self.risk_manager.get_risk_report(capital)
        return {
            "portfolio_heat": report["portfolio_heat"],
            "open_positions": report["open_positions"],
            "total_positions": report["position_count"],
            "performance": asdict(self.performance),
            "risk_metrics": report["risk_metrics"],
            "daily_trades": self._daily_trades,
            "tracked_symbols": self.states.symbols,
        }

    def get_token_analysis(self, symbol: str) -> Optional[dict]:
        """Detailed indicator and signal view for one symbol (None if untracked)."""
        state = self.states.get(symbol)
        if state is None:
            return None

        config = self.token_configs.get(symbol)
        signal = self.signal_generator.generate(symbol, state, config)
        bands = state.bollinger
        macd = state.macd

        return {
            "symbol": symbol,
            "last_price": state.last_price,
            "data_points": len(state.prices),
            "indicators": {
                "ema_fast": state.ema_fast,
                "ema_slow": state.ema_slow,
                "ema_trend": state.ema_trend,
                "rsi": state.rsi,
                "bollinger": asdict(bands) if bands else None,
                "macd": asdict(macd) if macd else None,
                "atr": state.atr,
                "adx": state.adx,
            },
            "signal": {
                "type": signal.signal_type.value,
                "strength": signal.strength,
                "confidence": signal.confidence,
                "regime": signal.regime.value if signal.regime else None,
                "reasons": list(signal.reasons),
            },
            "cooldown_remaining": self.cooldown_remaining(symbol),
            "position": (
                self.risk_manager.get_open_position(symbol).to_dict()
                if self.risk_manager.get_open_position(symbol) else None
            ),
        }

    def reset(self) -> None:
        """Clear all symbol state, cooldowns, positions and performance."""
        self.states.clear()
        self._last_trade_at.clear()
        self.risk_manager.reset()
        self.performance = PerformanceMetrics()
        self._daily_trades = 0
        self._shutdown_requested = False
        logger.info("Strategy state reset")
