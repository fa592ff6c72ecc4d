"""
Equal-weight rebalancing controller.

Every tick the controller clears resting orders, values each managed
balance in the base currency, and turns the gap to an equal-weight
target into sell and buy intents for the order worker.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from exec.cb_client import ExchangeError
from exec.markets import BASE_CURRENCY, MANAGED_CURRENCIES, Currency, OrderSide, fmt_amount
from exec.order_worker import OrderIntent
from feeds.rates import RateUnavailable

logger = logging.getLogger(__name__)


class DataUnavailable(RuntimeError):
    """A balance or rate needed for the cycle has not been fetched yet."""


@dataclass(frozen=True)
class Distribution:
    """
    Snapshot of the portfolio valued in the base currency.

    All amounts are native units.  ``diffs`` holds, for each non-base
    asset, target minus current valuation (positive means buy).
    """
    total_assets: int
    target: int
    balances: Dict[Currency, int]
    valuations: Dict[Currency, int]
    diffs: Dict[Currency, int]


class RebalancingController:
    """Drives one rebalancing cycle per tick."""

    def __init__(self,
                 client,
                 balances,
                 rates,
                 orders,
                 dry_run: bool = True,
                 base: Currency = BASE_CURRENCY,
                 assets: Sequence[Currency] = MANAGED_CURRENCIES):
        """
        Initialize the controller.

        Args:
            client: Exchange client (used to cancel open orders)
            balances: Balance feed
            rates: Rate feed
            orders: Order worker receiving intents
            dry_run: Skip order cancellation
            base: Currency all valuation is routed through
            assets: Managed currencies, including ``base``
        """
        if base not in assets:
            raise ValueError(f"Base currency {base.value} must be one of the managed assets")

        self.client = client
        self.balances = balances
        self.rates = rates
        self.orders = orders
        self.dry_run = dry_run
        self.base = base
        self.assets = tuple(assets)

    def compute_distribution(self) -> Distribution:
        """
        Value every managed balance in the base currency.

        Raises:
            DataUnavailable: A balance or rate is missing
        """
        native = {}
        for currency in self.assets:
            balance = self.balances.get_native_balance(currency)
            if balance is None:
                raise DataUnavailable(f"{currency.value} balance unavailable")
            native[currency] = balance

        valuations = {}
        for currency, balance in native.items():
            try:
                valuations[currency] = self.rates.convert(currency, self.base, balance)
            except RateUnavailable as e:
                raise DataUnavailable(str(e)) from e

        total = sum(valuations.values())
        target = total // len(self.assets)
        diffs = {
            currency: target - value
            for currency, value in valuations.items()
            if currency != self.base
        }

        return Distribution(
            total_assets=total,
            target=target,
            balances=native,
            valuations=valuations,
            diffs=diffs,
        )

    def plan_intents(self, distribution: Distribution) -> List[OrderIntent]:
        """
        Convert valuation diffs into native-unit intents, sells first.

        Raises:
            DataUnavailable: A rate needed to convert a diff is missing
        """
        native_diffs = {}
        for currency, diff in distribution.diffs.items():
            try:
                native_diffs[currency] = self.rates.convert(self.base, currency, diff)
            except RateUnavailable as e:
                raise DataUnavailable(str(e)) from e

        goals = "; ".join(f"{fmt_amount(amount)} {currency.value}" for currency, amount in native_diffs.items())
        logger.info(f"Trade Goals: {goals}")

        sells = [
            OrderIntent(currency, OrderSide.SELL, -amount)
            for currency, amount in native_diffs.items()
            if amount < 0
        ]
        buys = [
            OrderIntent(currency, OrderSide.BUY, amount)
            for currency, amount in native_diffs.items()
            if amount > 0
        ]
        return sells + buys

    def _log_state(self, distribution: Distribution):
        rates = []
        for currency in self.assets:
            if currency == self.base:
                continue
            rate = self.rates.current_rate(currency, self.base)
            rates.append(f"{currency.value}/{self.base.value} - {rate:.4f}")
        logger.info(f"Current rates: {'; '.join(rates)}")

        holdings = " ".join(f"{c.value}: {fmt_amount(b)}" for c, b in distribution.balances.items())
        logger.info(f"Current Holdings: {holdings}")
        logger.info(f"Total Assets: {fmt_amount(distribution.total_assets)} {self.base.value}")

    def run_cycle(self) -> Optional[List[OrderIntent]]:
        """
        Run one rebalancing cycle.

        Returns:
            The intents handed to the order worker, or None if the cycle
            was aborted
        """
        if self.dry_run:
            logger.info("[DRY RUN] Skipping order cancel")
        else:
            try:
                self.client.cancel_all_orders()
            except ExchangeError as e:
                logger.error(f"Cancel open orders failed, skipping cycle: {e}")
                return None

        try:
            distribution = self.compute_distribution()
            self._log_state(distribution)
            intents = self.plan_intents(distribution)
        except DataUnavailable as e:
            logger.warning(f"Skipping cycle: {e}")
            return None

        for intent in intents:
            self.orders.place_order(intent.currency, intent.side, intent.amount)

        return intents
