"""
Cross-rate feed.

Only one rate is stored per product (the ticker price of the base
currency in the quote currency).  Rates in the other direction are the
reciprocal, computed on read.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional

from exec.cb_client import ExchangeError
from exec.markets import PRODUCTS, Currency, ProductID, resolve_rate_pair

from .base import PollingFeed

logger = logging.getLogger(__name__)


class RateUnavailable(LookupError):
    """No cached rate exists for the requested conversion."""


class RateFeed(PollingFeed):
    """Ticker prices for every product in the markets table."""

    name = "rates"

    def __init__(self,
                 client,
                 interval: float = 1.0,
                 stop_event=None,
                 products: Iterable[ProductID] = None):
        super().__init__(client, interval, stop_event)
        self.products = tuple(products) if products is not None else tuple(PRODUCTS)

    def _fetch(self, previous: Mapping[ProductID, float]) -> Optional[Dict[ProductID, float]]:
        rates = dict(previous)
        fetched = 0
        for product_id in self.products:
            try:
                ticker = self.client.get_ticker(product_id)
            except ExchangeError as e:
                logger.warning(f"[rates] ticker {product_id.value}: {e}")
                continue

            if ticker.price <= 0:
                logger.warning(f"[rates] ignoring non-positive price for {product_id.value}: {ticker.price}")
                continue
            rates[product_id] = ticker.price
            fetched += 1
        return rates if fetched else None

    def current_rate(self, from_currency: Currency, to_currency: Currency) -> Optional[float]:
        """
        Price of one unit of ``from_currency`` in ``to_currency``.

        Returns:
            The rate, or None when no product quotes the pair or no price
            has been fetched for it yet
        """
        if from_currency == to_currency:
            return 1.0

        resolved = resolve_rate_pair(from_currency, to_currency)
        if resolved is None:
            return None

        product_id, invert = resolved
        rate = self._snapshot.get(product_id)
        if rate is None:
            return None

        return 1.0 / rate if invert else rate

    def convert(self, from_currency: Currency, to_currency: Currency, amount: int) -> int:
        """
        Convert a native amount between currencies, truncating toward zero.

        Raises:
            RateUnavailable: No rate for the pair is cached
        """
        rate = self.current_rate(from_currency, to_currency)
        if rate is None:
            raise RateUnavailable(f"Rate unavailable: {from_currency.value}/{to_currency.value}")

        return int(amount * rate)
