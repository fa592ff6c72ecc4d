"""
Main runner module for the Coinbase rebalancing agent.
"""

import logging
import signal
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from exec.cb_client import CoinbaseExchangeClient
from exec.markets import BASE_CURRENCY, COIN, MANAGED_CURRENCIES, Currency
from exec.order_worker import OrderWorker
from feeds import BalanceFeed, RateFeed, SpreadFeed

from . import config
from .controller import DataUnavailable, RebalancingController
from .reporting import ReportingService, build_report
from .utils import build_holdings_table, console, format_currency, setup_logging

logger = logging.getLogger(__name__)


@dataclass
class Agent:
    """All long-lived components, sharing one shutdown event."""
    client: CoinbaseExchangeClient
    balances: BalanceFeed
    rates: RateFeed
    spreads: SpreadFeed
    orders: OrderWorker
    controller: RebalancingController
    reporting: ReportingService
    stop_event: threading.Event

    def start(self):
        for component in (self.balances, self.rates, self.spreads, self.orders):
            component.start()

    def stop(self, timeout: float = 5.0):
        self.stop_event.set()
        for component in (self.orders, self.balances, self.rates, self.spreads):
            component.stop(timeout)


def build_agent(settings: Dict[str, Any], dry_run: bool, client: CoinbaseExchangeClient = None) -> Agent:
    """Wire the client, feeds, worker, controller and reporting together."""
    stop_event = threading.Event()

    if client is None:
        client = CoinbaseExchangeClient(
            api_key=config.API_KEY,
            api_secret=config.API_SECRET,
            passphrase=config.API_PASSPHRASE,
            base_url=config.API_URL,
            max_retries=settings["max_retries"],
            retry_delay=settings["retry_delay"],
            retry_jitter=settings["retry_jitter"],
            cache_ttl=settings["market_cache_ttl"],
            timeout=settings["request_timeout"],
        )

    balances = BalanceFeed(client, interval=settings["balance_poll_seconds"], stop_event=stop_event)
    rates = RateFeed(client, interval=settings["rate_poll_seconds"], stop_event=stop_event)
    spreads = SpreadFeed(client, interval=settings["spread_poll_seconds"], stop_event=stop_event,
                         max_age=settings["spread_max_age"])
    orders = OrderWorker(client, spreads, dry_run=dry_run, queue_size=settings["order_queue_size"],
                         stop_event=stop_event)
    controller = RebalancingController(client, balances, rates, orders, dry_run=dry_run,
                                       base=BASE_CURRENCY, assets=MANAGED_CURRENCIES)
    reporting = ReportingService(config.DWEET_THING_NAME, dry_run=dry_run)

    return Agent(client, balances, rates, spreads, orders, controller, reporting, stop_event)


def rebalance(agent: Agent):
    """Main rebalancing function."""
    logger.info("🔄 Starting rebalancing cycle...")
    intents = agent.controller.run_cycle()
    if intents is None:
        logger.warning("⚠️ Rebalancing cycle aborted")
    elif not intents:
        logger.info("✅ Portfolio is already balanced")
    else:
        logger.info(f"🎯 Queued {len(intents)} order(s)")


def report(agent: Agent):
    """Publish current metrics if the portfolio can be valued."""
    if not agent.reporting.enabled:
        return
    try:
        distribution = agent.controller.compute_distribution()
    except DataUnavailable as e:
        logger.debug(f"Reporting skipped: {e}")
        return
    agent.reporting.report_metrics(build_report(distribution, agent.rates))


def wait_for_feeds(agent: Agent, timeout: float = 15.0) -> bool:
    """Block until every feed has published a snapshot, or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    feeds = (agent.balances, agent.rates, agent.spreads)
    while time.monotonic() < deadline:
        if all(feed.ready() for feed in feeds):
            return True
        time.sleep(0.2)
    missing = [feed.name for feed in feeds if not feed.ready()]
    logger.warning(f"Feeds not ready after {timeout}s: {', '.join(missing)}")
    return False


def show_portfolio(agent: Agent):
    """Refresh every feed once and print holdings and valuations."""
    for feed in (agent.balances, agent.rates, agent.spreads):
        feed.refresh()

    base = agent.controller.base
    balances = {c: agent.balances.get_native_balance(c) for c in agent.controller.assets}
    rates = {c: agent.rates.current_rate(c, base) for c in agent.controller.assets}
    valuations = {
        c: int(balance * rates[c]) if balance is not None and rates[c] is not None else None
        for c, balance in balances.items()
    }

    console.print(build_holdings_table(balances, valuations, rates, base))

    usd_rate = agent.rates.current_rate(base, Currency.USD)
    if usd_rate is not None:
        total = sum(v for v in valuations.values() if v is not None)
        usd_total = Decimal(total) / COIN * Decimal(str(usd_rate))
        console.print(f"Portfolio value: {format_currency(usd_total)}")


def handle_sigterm(signum, frame):
    """Turn SIGTERM into SystemExit so the normal shutdown path runs."""
    logger.info(f"🛑 Received signal {signum}, shutting down")
    raise SystemExit(0)


def install_signal_handlers():
    signal.signal(signal.SIGTERM, handle_sigterm)


def start_scheduler(agent: Agent, settings: Dict[str, Any]):
    """Start the rebalancing scheduler."""
    tick_seconds = settings["tick_seconds"]

    scheduler = BlockingScheduler()

    # Add rebalancing job; one instance at a time so cycles never overlap
    scheduler.add_job(
        func=rebalance,
        args=[agent],
        trigger=IntervalTrigger(seconds=tick_seconds),
        id='rebalance_job',
        name='Portfolio Rebalancing',
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    if agent.reporting.enabled:
        scheduler.add_job(
            func=report,
            args=[agent],
            trigger=IntervalTrigger(seconds=settings["report_interval_seconds"]),
            id='report_job',
            name='Metrics Reporting',
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

    agent.start()

    logger.info(f"🚀 Rebalancing agent started")
    logger.info(f"   Interval: {tick_seconds} seconds")
    logger.info(f"   Dry run: {agent.controller.dry_run}")
    logger.info(f"   Next run: {datetime.now() + timedelta(seconds=tick_seconds)}")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("🛑 Rebalancing agent stopped")
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=False)
        agent.stop()
        logger.info(f"Execution stats: {agent.orders.get_execution_stats()}")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Coinbase Equal-Weight Rebalancing Agent")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run rebalancing once and exit (don't start scheduler)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run in dry-run mode (no actual trades)"
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration and exit"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Print current holdings and valuations and exit"
    )
    parser.add_argument(
        "--config",
        default=config.CONFIG_FILE,
        help="Path to the YAML settings file"
    )

    args = parser.parse_args()

    setup_logging()

    # Override config with command line arguments
    if args.dry_run:
        config.DRY_RUN = True

    try:
        config.validate_config()
        if args.validate:
            logger.info("✅ Configuration is valid")
            return

        settings = config.load_settings(args.config)
        agent = build_agent(settings, dry_run=config.DRY_RUN)
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"❌ Configuration error: {e}")
        sys.exit(1)

    if args.check:
        show_portfolio(agent)
        return

    install_signal_handlers()

    if args.once:
        logger.info("🔄 Running single rebalancing cycle...")
        agent.start()
        try:
            wait_for_feeds(agent)
            rebalance(agent)
            agent.orders.wait_idle()
        except (KeyboardInterrupt, SystemExit):
            logger.info("🛑 Interrupted, stopping")
        finally:
            agent.stop()
        logger.info(f"Execution stats: {agent.orders.get_execution_stats()}")
        return

    start_scheduler(agent, settings)


if __name__ == "__main__":
    main()
