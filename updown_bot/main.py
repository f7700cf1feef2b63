"""
Dual Limit-Start Bot - Main Entry Point
========================================

At the start of every 15-minute period, place limit buys on both the Up
and Down token of the BTC (and optionally ETH, SOL, XRP) up/down markets
at a fixed price. When only one side fills and the other side's price
crosses the trigger, cancel the unfilled buy and limit-sell the filled
side.

USAGE:
    python -m updown_bot.main                      # simulation (default)
    python -m updown_bot.main --no-simulation      # live trading
    python -m updown_bot.main -c my_config.json

IMPORTANT:
    1. Run once to create config.json with defaults, then edit it
    2. Keep simulation on until the strategy is validated
"""

import argparse
import asyncio
import signal
import sys
import time
from typing import Dict, List, Optional, Set, Tuple

from dotenv import load_dotenv

from config.settings import BotConfig, load_config
from updown_bot.data.market_api import MarketDataClient
from updown_bot.data.market_discovery import discover_markets
from updown_bot.data.models import Asset, Market, MarketSnapshot, disabled_market
from updown_bot.data.snapshot import SnapshotProvider, format_prices
from updown_bot.errors import AuthenticationError, BotError
from updown_bot.execution.gateway import LiveGateway, OrderGateway, SimulatedGateway
from updown_bot.execution.trader import Trader
from updown_bot.strategy.dual_limit import (
    build_opportunities,
    enabled_assets,
    hedge_pairs,
    stop_loss_threshold,
)
from updown_bot.utils.clock import (
    PERIOD_DURATION,
    Clock,
    PeriodTracker,
    current_period,
    seconds_elapsed,
)
from updown_bot.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

# Batch placement and hedging are split at this many seconds into a period
MARKET_START_WINDOW_SECONDS = 2


class DualLimitBot:
    """
    Control loop for the dual limit-start strategy.

    Owns the cross-cycle timing state (last seen period, last period a
    batch was placed for, hedges already done this period). The Trader
    owns everything about orders and positions.
    """

    def __init__(
        self,
        config: BotConfig,
        market_api,
        trader: Trader,
        clock: Clock = time.time
    ):
        self.config = config
        self.trading = config.trading
        self.market_api = market_api
        self.trader = trader
        self.clock = clock

        self.enabled: Dict[Asset, bool] = enabled_assets(
            enable_eth=self.trading.enable_eth_trading,
            enable_solana=self.trading.enable_solana_trading,
            enable_xrp=self.trading.enable_xrp_trading
        )
        self.snapshots = SnapshotProvider(market_api, clock)

        # State
        self.markets: Dict[Asset, Market] = {}
        self.period_tracker = PeriodTracker()
        self.last_placed_period: Optional[int] = None
        self.hedged: Set[Tuple[int, str]] = set()
        self.running = False

        # Stats
        self.cycles = 0
        self.cycle_errors = 0
        self.batches_placed = 0

    @property
    def hedging_active(self) -> bool:
        return self.trading.stop_loss_enabled and self.trader.gateway.is_live

    def _log_startup(self):
        extras = [
            asset.display_name for asset in (Asset.ETH, Asset.SOL, Asset.XRP)
            if self.enabled[asset]
        ]
        threshold = stop_loss_threshold(self.trading.sell_trigger_bid)
        logger.info(
            "bot_initializing",
            mode="LIVE" if self.trader.gateway.is_live else "SIMULATION",
            limit_price=f"${self.trading.limit_price:.2f}",
            shares_per_order=self.trading.limit_shares,
            assets=["BTC"] + extras
        )
        logger.info(
            "hedge_config",
            enabled=self.trading.stop_loss_enabled,
            trigger=f"unfilled ask/bid >= ${threshold:.2f}",
            sell_at=f"${self.trading.sell_at_price:.2f}"
        )

    async def refresh_markets(self) -> Dict[Asset, Market]:
        """
        Re-run discovery for all assets.

        Assets with no market fall back to a disabled placeholder. If the
        whole refresh fails, the previous markets are kept.
        """
        try:
            markets = await discover_markets(
                self.market_api,
                self.enabled,
                now=int(self.clock())
            )
        except Exception as e:
            logger.warning("market_refresh_failed", error=str(e), action="using previous markets")
            if not self.markets:
                self.markets = {asset: disabled_market(asset) for asset in Asset}
            return self.markets

        self.markets = markets
        logger.info(
            "markets_refreshed",
            **{asset.value: market.slug for asset, market in markets.items()}
        )
        return markets

    async def place_batch(self, snapshot: MarketSnapshot, reason: str):
        """Place this period's limit buys. At most one attempt per period."""
        self.last_placed_period = snapshot.period

        opportunities = build_opportunities(
            snapshot,
            self.trading.limit_price,
            self.enabled
        )
        if not opportunities:
            logger.warning("no_opportunities", period=snapshot.period)
            return

        logger.info(
            "placing_period_batch",
            reason=reason,
            count=len(opportunities),
            price=f"${self.trading.limit_price:.2f}",
            period=snapshot.period
        )
        try:
            await self.trader.execute_limit_buy_batch(
                opportunities,
                self.trading.limit_price,
                self.trading.limit_shares
            )
            self.batches_placed += 1
        except BotError as e:
            logger.error("limit_buy_batch_error", error=str(e))

    async def run_hedge_checks(self, snapshot: MarketSnapshot):
        for pair in hedge_pairs(snapshot, self.enabled):
            key = (snapshot.period, pair.condition_id)
            if key in self.hedged:
                continue

            try:
                done = await self.trader.check_and_hedge(
                    pair,
                    snapshot,
                    self.trading.sell_trigger_bid,
                    self.trading.sell_at_price
                )
            except BotError as e:
                logger.error("hedge_check_error", asset=pair.asset.value, error=str(e))
                continue

            if done:
                self.hedged.add(key)

    async def run_cycle(self):
        """One poll iteration (without the trailing sleep)."""
        self.cycles += 1
        snapshot = await self.snapshots.fetch(self.markets)
        logger.debug("prices", summary=format_prices(snapshot))

        # Dead zone between periods
        if snapshot.time_remaining == 0:
            return

        # Nothing to compare the very first snapshot against
        if not self.period_tracker.initialized:
            self.period_tracker.observe(snapshot.period)
            return

        if self.period_tracker.observe(snapshot.period):
            self.hedged.clear()
            logger.info("period_changed", period=snapshot.period)

            await self.refresh_markets()
            snapshot = await self.snapshots.fetch(self.markets)
            logger.info("prices", summary=format_prices(snapshot))

            if self.last_placed_period != snapshot.period:
                await self.place_batch(snapshot, reason="new_market")
            return

        elapsed = seconds_elapsed(snapshot.time_remaining)

        # Started mid-period or missed the transition: still inside the start window
        if elapsed <= MARKET_START_WINDOW_SECONDS and self.last_placed_period != snapshot.period:
            await self.place_batch(snapshot, reason="market_start")

        if self.hedging_active and elapsed > MARKET_START_WINDOW_SECONDS:
            await self.run_hedge_checks(snapshot)

    async def start(self):
        """Initial discovery before the first cycle."""
        self._log_startup()

        await self.refresh_markets()

        now = int(self.clock())
        period = current_period(now)
        logger.info(
            "market_monitoring_started",
            period=period,
            next_period_in=f"{period + PERIOD_DURATION - now}s"
        )

        up_id, down_id = self.markets[Asset.BTC].token_ids()
        if up_id or down_id:
            logger.info("btc_tokens", up=up_id, down=down_id)

    async def run(self):
        """Main loop. Runs until stop() is called."""
        await self.start()

        self.running = True
        while self.running:
            try:
                await self.run_cycle()
            except Exception as e:
                self.cycle_errors += 1
                logger.error("cycle_error", error=str(e), exc_info=True)

            if self.running:
                await asyncio.sleep(self.trading.poll_interval_seconds)

        logger.info("bot_stopped", **self.get_stats())

    def stop(self):
        """Finish the in-flight cycle, then exit the loop."""
        if self.running:
            logger.info("bot_shutting_down")
        self.running = False

    def get_stats(self) -> dict:
        return {
            "cycles": self.cycles,
            "cycle_errors": self.cycle_errors,
            "batches_placed": self.batches_placed,
            **self.trader.get_stats(),
            **self.trader.gateway.get_stats(),
        }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Polymarket dual limit-start bot for 15-minute up/down markets"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--simulation",
        dest="simulation",
        action="store_true",
        help="Paper trading, no orders are sent (default)"
    )
    mode.add_argument(
        "--no-simulation",
        dest="simulation",
        action="store_false",
        help="Live trading"
    )
    parser.set_defaults(simulation=True)
    parser.add_argument(
        "-c", "--config",
        default="config.json",
        help="Path to JSON config (created with defaults if missing)"
    )
    parser.add_argument("--log-level", help="Override the configured log level")
    return parser.parse_args(argv)


async def build_gateway(config: BotConfig, simulation: bool) -> OrderGateway:
    """
    Authenticate and pick the order gateway.

    Raises:
        AuthenticationError: live mode without valid credentials
    """
    pm = config.polymarket
    private_key = (pm.private_key or "").strip()

    if not private_key:
        if not simulation:
            raise AuthenticationError("No private_key in config (polymarket.private_key)")
        logger.warning("no_private_key", action="simulation with read-only market data")
        return SimulatedGateway()

    logger.info("authenticating", host=pm.clob_api_url)
    try:
        live = await LiveGateway.connect(
            host=pm.clob_api_url,
            private_key=private_key,
            funder=pm.proxy_wallet_address,
            signature_type=pm.signature_type,
            api_key=pm.api_key,
            api_secret=pm.api_secret,
            api_passphrase=pm.api_passphrase
        )
    except AuthenticationError as e:
        if not simulation:
            raise
        logger.warning("authentication_failed", error=str(e), action="continuing in simulation mode")
        return SimulatedGateway()

    logger.info("authentication_successful")
    return SimulatedGateway() if simulation else live


async def main(argv: Optional[List[str]] = None) -> int:
    """Entry point. Returns the process exit code."""
    args = parse_args(argv)
    load_dotenv()

    config = load_config(args.config)
    configure_logging(
        level=args.log_level or config.log_level,
        json_output=config.log_json,
        log_file=config.log_file
    )

    try:
        gateway = await build_gateway(config, args.simulation)
    except AuthenticationError as e:
        logger.error("authentication_failed", error=str(e), action="bot will not start")
        return 1

    async with MarketDataClient(
        gamma_api_url=config.polymarket.gamma_api_url,
        clob_api_url=config.polymarket.clob_api_url
    ) as api:
        bot = DualLimitBot(config, api, Trader(gateway))

        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, bot.stop)

        try:
            await bot.run()
        except asyncio.CancelledError:
            logger.info("bot_tasks_cancelled")

    return 0


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
