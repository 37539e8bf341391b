#!/usr/bin/env python3
"""Regime Trader - Main Entry Point.

Runs the polling decision loop against a recorded price file with paper
execution. Settings come from the environment (.env), per-token options
from config/tokens.json.

Usage:
    REPLAY_FILE=data/prices.csv python main.py
"""

import logging
import signal
import sys
import time
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables first
load_dotenv(override=True)

from regime_trader.config import (
    ConfigValidationError,
    TokenConfigManager,
    load_engine_config,
)
from regime_trader.execution import PaperOrderExecutor, ReplayPriceFeed
from regime_trader.persistence import PositionStateStore
from regime_trader.strategy import TradingStrategy


logger = logging.getLogger(__name__)

SUMMARY_EVERY = 10  # cycles


def setup_logging(log_dir: str) -> None:
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s',
        datefmt='%H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(Path(log_dir) / f"trader_{datetime.now():%Y%m%d_%H%M%S}.log"),
        ],
    )


def main() -> int:
    """Main entry point for the trading loop."""
    try:
        config = load_engine_config(load_env=False)
        config.validate()
    except ConfigValidationError as e:
        setup_logging("logs")
        logger.error(f"❌ Configuration error: {e}")
        return 1

    setup_logging(config.log_dir)
    logger.info("=" * 70)
    logger.info("🚀 REGIME TRADER")
    logger.info("=" * 70)
    logger.info(f"Tokens: {', '.join(config.trade_tokens)} | base {config.base_token} | "
                f"capital ${config.available_capital:,.2f} | dry run {config.dry_run}")

    if not config.dry_run:
        logger.error("❌ Live execution is not available in this build, set DRY_RUN=true")
        return 1
    if not config.replay_file:
        logger.error("❌ REPLAY_FILE is required: no live price feed is configured")
        return 1

    try:
        token_configs = TokenConfigManager.from_file(config.token_config_path)
        for symbol in config.trade_tokens:
            token_configs.get(symbol)
        feed = ReplayPriceFeed.from_csv(config.replay_file)
    except ConfigValidationError as e:
        logger.error(f"❌ Token configuration error: {e}")
        return 1
    except (OSError, ValueError) as e:
        logger.error(f"❌ Failed to load replay file {config.replay_file}: {e}")
        return 1

    state_store = PositionStateStore(config.state_file)
    state_store.load()

    strategy = TradingStrategy(
        token_configs=token_configs,
        engine_config=config,
        state_store=state_store,
    )
    executor = PaperOrderExecutor()

    def signal_handler(sig, frame):
        logger.info(f"👋 Received signal {sig}, initiating shutdown...")
        strategy.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    cycles = 0
    while not strategy.is_shutdown_requested():
        strategy.run_cycle(feed, executor)
        cycles += 1

        if cycles % SUMMARY_EVERY == 0:
            summary = strategy.get_strategy_summary()
            heat = summary["portfolio_heat"]
            perf = summary["performance"]
            logger.info(
                f"📊 Cycle {cycles}: heat {heat['level']} ({heat['percentage']:.1f}%), "
                f"open {summary['open_positions']}, trades {perf['total_trades']}, "
                f"P&L ${perf['total_pnl']:.2f}"
            )

        if feed.exhausted:
            logger.info("Replay file exhausted")
            break
        time.sleep(config.poll_seconds)

    state_store.save()
    logger.info(f"👋 Shutdown complete after {cycles} cycles, {len(executor.fills)} paper fills")
    return 0


if __name__ == "__main__":
    sys.exit(main())
