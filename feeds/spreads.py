"""
Top-of-book spread feed.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

from exec.cb_client import ExchangeError
from exec.markets import TRADED_PRODUCTS, ProductID

from .base import PollingFeed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Spread:
    """Best bid and ask in native units, with the time they were fetched."""
    bid: Optional[int]
    ask: Optional[int]
    fetched_at: float


class SpreadFeed(PollingFeed):
    """Best bid/ask for every traded product."""

    name = "spreads"

    def __init__(self,
                 client,
                 interval: float = 1.0,
                 stop_event=None,
                 products: Iterable[ProductID] = None,
                 max_age: float = None):
        super().__init__(client, interval, stop_event)
        self.products = tuple(products) if products is not None else tuple(TRADED_PRODUCTS.values())
        self.max_age = max_age

    def _fetch(self, previous: Mapping[ProductID, Spread]) -> Optional[Dict[ProductID, Spread]]:
        spreads = dict(previous)
        fetched = 0
        for product_id in self.products:
            try:
                book = self.client.get_book(product_id)
            except ExchangeError as e:
                logger.warning(f"[spreads] book {product_id.value}: {e}")
                continue

            if book.bid is not None and book.ask is not None and book.bid > book.ask:
                logger.warning(f"[spreads] crossed book for {product_id.value}: bid {book.bid} > ask {book.ask}")
                continue
            spreads[product_id] = Spread(bid=book.bid, ask=book.ask, fetched_at=time.time())
            fetched += 1
        return spreads if fetched else None

    def current_spread(self, product_id: ProductID) -> Optional[Spread]:
        """
        Latest spread for a product.

        Returns None if nothing has been fetched yet or, when ``max_age`` is
        set, if the last fetch is older than ``max_age`` seconds.
        """
        spread = self._snapshot.get(product_id)
        if spread is None:
            return None
        if self.max_age is not None and time.time() - spread.fetched_at > self.max_age:
            return None
        return spread

    def current_bid(self, product_id: ProductID) -> Optional[int]:
        spread = self.current_spread(product_id)
        return spread.bid if spread is not None else None

    def current_ask(self, product_id: ProductID) -> Optional[int]:
        spread = self.current_spread(product_id)
        return spread.ask if spread is not None else None
