"""
Serialized order execution.

The controller hands trade intents to a single worker thread through a
small bounded queue.  The worker prices each intent off the current
spread, rounds the price to the exchange tick, and submits a post-only
limit order, one at a time.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .cb_client import CoinbaseExchangeClient, ExchangeError
from .markets import (
    MIN_TRADE,
    QUOTE_INCREMENT,
    Currency,
    OrderSide,
    ProductID,
    fmt_amount,
    round_to_tick,
    traded_product,
)


class OrderState(Enum):
    """Lifecycle of an intent within one cycle."""
    QUEUED = "queued"
    PRICE_DERIVED = "price_derived"
    DROPPED = "dropped"
    SIMULATED = "simulated"
    SUBMITTED = "submitted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class OrderIntent:
    """A request to trade ``amount`` native units of ``currency``."""
    currency: Currency
    side: OrderSide
    amount: int


@dataclass(frozen=True)
class PlacedOrder:
    product_id: ProductID
    side: OrderSide
    size: int
    price: int


class OrderWorker:
    """
    Single-consumer order executor.

    ``place_order`` blocks the producer while the queue is full rather
    than dropping the intent.
    """

    def __init__(self,
                 client: CoinbaseExchangeClient,
                 spreads,
                 dry_run: bool = True,
                 queue_size: int = 2,
                 min_trade: int = MIN_TRADE,
                 tick_size: int = QUOTE_INCREMENT,
                 stop_event: threading.Event = None):
        """
        Initialize the worker.

        Args:
            client: Exchange client used for submission
            spreads: Spread feed providing current bid/ask
            dry_run: Log orders instead of submitting them
            queue_size: Capacity of the intent queue
            min_trade: Smallest native amount worth submitting
            tick_size: Exchange price increment in native units
            stop_event: Shared shutdown signal
        """
        self.client = client
        self.spreads = spreads
        self.dry_run = dry_run
        self.min_trade = min_trade
        self.tick_size = tick_size

        self._queue: "queue.Queue[OrderIntent]" = queue.Queue(maxsize=queue_size)
        self._stop = stop_event or threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.execution_stats = {state.value: 0 for state in OrderState}
        self.execution_stats['total_orders'] = 0

        self.logger = logging.getLogger(__name__)

    def place_order(self, currency: Currency, side: OrderSide, amount: int) -> bool:
        """
        Enqueue an intent, blocking while the queue is full.

        Returns:
            False if shutdown was signalled before the intent was accepted
        """
        intent = OrderIntent(currency=currency, side=side, amount=amount)
        while not self._stop.is_set():
            try:
                self._queue.put(intent, timeout=0.5)
                self.execution_stats[OrderState.QUEUED.value] += 1
                return True
            except queue.Full:
                self.logger.debug("Order queue full, waiting...")
        self.logger.warning(f"Shutdown in progress, discarding {side.value} {fmt_amount(amount)} {currency.value}")
        return False

    def derive_price(self, side: OrderSide, product_id: ProductID) -> Optional[int]:
        """
        One tick inside the current spread, rounded to the tick size.

        BUY prices one tick below the ask, SELL one tick above the bid.
        Returns None if the relevant side of the book is unavailable.
        """
        if side == OrderSide.BUY:
            ask = self.spreads.current_ask(product_id)
            if ask is None:
                return None
            price = ask - self.tick_size
        else:
            bid = self.spreads.current_bid(product_id)
            if bid is None:
                return None
            price = bid + self.tick_size

        return round_to_tick(price, self.tick_size)

    def _finish(self, state: OrderState) -> OrderState:
        self.execution_stats[state.value] += 1
        return state

    def process(self, intent: OrderIntent) -> OrderState:
        """
        Run one intent through pricing and submission.

        Returns:
            The terminal OrderState reached
        """
        self.execution_stats['total_orders'] += 1
        self.logger.info(f"Processing order: {intent.side.value} {fmt_amount(intent.amount)} {intent.currency.value}")

        if intent.amount < self.min_trade:
            self.logger.info(f"Skipping: trade too small ({fmt_amount(intent.amount)} < {fmt_amount(self.min_trade)})")
            return self._finish(OrderState.DROPPED)

        product_id = traded_product(intent.currency)
        if product_id is None:
            self.logger.warning(f"Skipping: {intent.currency.value} is not traded against the base currency")
            return self._finish(OrderState.DROPPED)

        price = self.derive_price(intent.side, product_id)
        if price is None:
            self.logger.warning(f"Skipping: spread not available for {product_id.value}")
            return self._finish(OrderState.DROPPED)

        order = PlacedOrder(product_id=product_id, side=intent.side, size=intent.amount, price=price)
        self.execution_stats[OrderState.PRICE_DERIVED.value] += 1
        self.logger.info(f"Order limit price: {fmt_amount(order.price)}")

        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would place: {order.side.value.upper()} {fmt_amount(order.size)} "
                             f"{order.product_id.value} @ {fmt_amount(order.price)}")
            return self._finish(OrderState.SIMULATED)

        try:
            result = self.client.place_order(order.product_id, order.side, order.size, order.price)
        except ExchangeError as e:
            self.logger.error(f"Failed to place order on {order.product_id.value}: {e}")
            return self._finish(OrderState.REJECTED)

        if result.rejected:
            self.logger.warning(f"Order rejected: {result.reject_reason}")
            return self._finish(OrderState.REJECTED)

        return self._finish(OrderState.SUBMITTED)

    def _run(self):
        self.logger.info("Order worker started")
        while not self._stop.is_set():
            try:
                intent = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self.process(intent)
            except Exception as e:
                self.logger.exception(f"Unexpected error processing {intent}: {e}")
            finally:
                self._queue.task_done()
        self.logger.info("Order worker stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(target=self._run, name="order-worker", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def wait_idle(self):
        """Block until every queued intent has been processed."""
        self._queue.join()

    def get_execution_stats(self) -> Dict[str, Any]:
        """
        Get execution statistics.

        Returns:
            Counts per state reached (queued, priced and each outcome)
            plus the total processed
        """
        return self.execution_stats.copy()
