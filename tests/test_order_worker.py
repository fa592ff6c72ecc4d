"""
Unit tests for the order worker.
"""

import threading
import time
from unittest.mock import Mock

import pytest

from exec.cb_client import ApiError, OrderResult, RequestFailed
from exec.markets import COIN, MIN_TRADE, Currency, OrderSide, ProductID
from exec.order_worker import OrderIntent, OrderState, OrderWorker


class FakeSpreads:
    """Spread source with fixed bid/ask per product."""

    def __init__(self, books=None):
        self.books = books or {}

    def current_bid(self, product_id):
        book = self.books.get(product_id)
        return book[0] if book else None

    def current_ask(self, product_id):
        book = self.books.get(product_id)
        return book[1] if book else None


@pytest.fixture
def client():
    client = Mock()
    client.place_order.return_value = OrderResult(order_id="o1", status="pending")
    return client


@pytest.fixture
def spreads():
    return FakeSpreads({
        ProductID.ETH_BTC: (4_990_000, 5_010_000),
        ProductID.LTC_BTC: (1_000_400, 1_002_600),
    })


@pytest.fixture
def worker(client, spreads):
    return OrderWorker(client, spreads, dry_run=False)


class TestPricing:
    """Test limit price derivation."""

    def test_buy_one_tick_below_ask(self, worker):
        assert worker.derive_price(OrderSide.BUY, ProductID.ETH_BTC) == 5_009_000

    def test_sell_one_tick_above_bid(self, worker):
        assert worker.derive_price(OrderSide.SELL, ProductID.ETH_BTC) == 4_991_000

    def test_price_rounded_to_tick(self, worker):
        # ask 1_002_600 - 1000 = 1_001_600 -> 1_002_000
        assert worker.derive_price(OrderSide.BUY, ProductID.LTC_BTC) == 1_002_000
        # bid 1_000_400 + 1000 = 1_001_400 -> 1_001_000
        assert worker.derive_price(OrderSide.SELL, ProductID.LTC_BTC) == 1_001_000

    def test_missing_spread(self, client):
        worker = OrderWorker(client, FakeSpreads(), dry_run=False)
        assert worker.derive_price(OrderSide.BUY, ProductID.ETH_BTC) is None


class TestProcess:
    """Test one intent through to its terminal state."""

    def test_submits_post_only_limit(self, worker, client):
        state = worker.process(OrderIntent(Currency.ETH, OrderSide.BUY, 2 * COIN))

        assert state == OrderState.SUBMITTED
        client.place_order.assert_called_once_with(ProductID.ETH_BTC, OrderSide.BUY, 2 * COIN, 5_009_000)

    def test_below_minimum_dropped_without_submit(self, worker, client):
        state = worker.process(OrderIntent(Currency.ETH, OrderSide.SELL, MIN_TRADE - 1))

        assert state == OrderState.DROPPED
        client.place_order.assert_not_called()

    def test_minimum_itself_is_submitted(self, worker, client):
        assert worker.process(OrderIntent(Currency.ETH, OrderSide.SELL, MIN_TRADE)) == OrderState.SUBMITTED

    def test_untraded_currency_dropped(self, worker, client):
        assert worker.process(OrderIntent(Currency.BTC, OrderSide.BUY, COIN)) == OrderState.DROPPED
        client.place_order.assert_not_called()

    def test_spread_unavailable_dropped(self, client):
        worker = OrderWorker(client, FakeSpreads(), dry_run=False)

        assert worker.process(OrderIntent(Currency.LTC, OrderSide.BUY, COIN)) == OrderState.DROPPED
        client.place_order.assert_not_called()

    def test_dry_run_never_submits(self, client, spreads):
        worker = OrderWorker(client, spreads, dry_run=True)

        assert worker.process(OrderIntent(Currency.ETH, OrderSide.BUY, COIN)) == OrderState.SIMULATED
        client.place_order.assert_not_called()

    def test_rejected_result(self, worker, client):
        client.place_order.return_value = OrderResult(order_id="o2", status="rejected", reject_reason="post only")

        assert worker.process(OrderIntent(Currency.ETH, OrderSide.SELL, COIN)) == OrderState.REJECTED

    def test_exchange_error_rejected(self, worker, client):
        client.place_order.side_effect = ApiError(400, "Insufficient funds", "POST", "/orders")
        assert worker.process(OrderIntent(Currency.ETH, OrderSide.SELL, COIN)) == OrderState.REJECTED

        client.place_order.side_effect = RequestFailed("connection reset")
        assert worker.process(OrderIntent(Currency.ETH, OrderSide.SELL, COIN)) == OrderState.REJECTED

    def test_execution_stats(self, worker, client):
        worker.process(OrderIntent(Currency.ETH, OrderSide.BUY, COIN))
        worker.process(OrderIntent(Currency.ETH, OrderSide.BUY, 1))
        client.place_order.side_effect = RequestFailed("boom")
        worker.process(OrderIntent(Currency.LTC, OrderSide.BUY, COIN))

        stats = worker.get_execution_stats()
        assert stats['total_orders'] == 3
        assert stats['submitted'] == 1
        assert stats['dropped'] == 1
        assert stats['rejected'] == 1
        assert stats['simulated'] == 0
        assert stats['price_derived'] == 2
        assert stats['queued'] == 0

    def test_queued_and_priced_counts(self, worker):
        assert worker.place_order(Currency.ETH, OrderSide.BUY, COIN)
        assert worker.place_order(Currency.LTC, OrderSide.SELL, MIN_TRADE - 1)

        worker.process(worker._queue.get_nowait())
        worker.process(worker._queue.get_nowait())

        stats = worker.get_execution_stats()
        assert stats['queued'] == 2
        assert stats['price_derived'] == 1
        assert stats['submitted'] == 1
        assert stats['dropped'] == 1


class TestQueue:
    """Test the bounded queue and worker thread."""

    def test_full_queue_blocks_producer(self, client, spreads):
        worker = OrderWorker(client, spreads, dry_run=False, queue_size=2)
        worker.place_order(Currency.ETH, OrderSide.BUY, COIN)
        worker.place_order(Currency.LTC, OrderSide.BUY, COIN)

        accepted = threading.Event()

        def produce():
            worker.place_order(Currency.ETH, OrderSide.SELL, COIN)
            accepted.set()

        producer = threading.Thread(target=produce, daemon=True)
        producer.start()

        assert not accepted.wait(0.3)

        worker.start()
        assert accepted.wait(3.0)
        worker.wait_idle()
        worker.stop(2.0)

        assert client.place_order.call_count == 3

    def test_processes_in_enqueue_order(self, client, spreads):
        worker = OrderWorker(client, spreads, dry_run=False)
        worker.start()
        try:
            worker.place_order(Currency.ETH, OrderSide.SELL, COIN)
            worker.place_order(Currency.LTC, OrderSide.BUY, 2 * COIN)
            worker.wait_idle()
        finally:
            worker.stop(2.0)

        products = [call.args[0] for call in client.place_order.call_args_list]
        assert products == [ProductID.ETH_BTC, ProductID.LTC_BTC]

    def test_unexpected_error_does_not_kill_worker(self, client, spreads):
        client.place_order.side_effect = [RuntimeError("bug"), OrderResult(order_id="o3", status="pending")]
        worker = OrderWorker(client, spreads, dry_run=False)
        worker.start()
        try:
            worker.place_order(Currency.ETH, OrderSide.SELL, COIN)
            worker.place_order(Currency.ETH, OrderSide.SELL, COIN)
            worker.wait_idle()
        finally:
            worker.stop(2.0)

        assert client.place_order.call_count == 2
        assert worker.get_execution_stats()['submitted'] == 1

    def test_shutdown_releases_blocked_producer(self, client, spreads):
        stop_event = threading.Event()
        worker = OrderWorker(client, spreads, queue_size=1, stop_event=stop_event)
        assert worker.place_order(Currency.ETH, OrderSide.BUY, COIN)

        stop_event.set()
        started = time.monotonic()
        assert not worker.place_order(Currency.LTC, OrderSide.BUY, COIN)
        assert time.monotonic() - started < 2.0
