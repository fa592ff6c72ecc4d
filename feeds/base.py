"""
Background polling base shared by the balance, rate and spread feeds.

Each feed owns one read-only snapshot.  A single background thread is the
only writer: it fetches fresh values and rebinds the snapshot as a whole,
so readers always see a complete snapshot and never wait on the network.
"""

import logging
import threading
import time
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from exec.cb_client import CoinbaseExchangeClient, ExchangeError

logger = logging.getLogger(__name__)


class PollingFeed:
    """
    Fixed-interval poller holding an immutable snapshot.

    Subclasses implement ``_fetch``: it returns the complete next snapshot,
    or None when nothing could be refreshed.
    """

    name = "feed"

    def __init__(self,
                 client: CoinbaseExchangeClient,
                 interval: float,
                 stop_event: threading.Event = None):
        self.client = client
        self.interval = interval
        self._stop = stop_event or threading.Event()
        self._snapshot: Mapping[Any, Any] = MappingProxyType({})
        self._updated_at: Optional[float] = None
        self._thread: Optional[threading.Thread] = None

    def _fetch(self, previous: Mapping[Any, Any]) -> Optional[Dict[Any, Any]]:
        raise NotImplementedError

    @property
    def snapshot(self) -> Mapping[Any, Any]:
        """The last completed snapshot (empty before the first poll)."""
        return self._snapshot

    @property
    def updated_at(self) -> Optional[float]:
        """Wall-clock time of the last successful refresh."""
        return self._updated_at

    def ready(self) -> bool:
        return self._updated_at is not None

    def refresh(self) -> bool:
        """
        Poll once and replace the snapshot.

        Returns:
            True if a new snapshot was published
        """
        previous = self._snapshot
        try:
            fresh = self._fetch(previous)
        except ExchangeError as e:
            logger.warning(f"[{self.name}] refresh failed, keeping previous snapshot: {e}")
            return False

        if fresh is None:
            return False

        self._snapshot = MappingProxyType(dict(fresh))
        self._updated_at = time.time()
        return True

    def _run(self):
        logger.info(f"[{self.name}] polling every {self.interval}s")
        while not self._stop.is_set():
            try:
                self.refresh()
            except Exception as e:
                logger.exception(f"[{self.name}] unexpected refresh error, keeping previous snapshot: {e}")
            if self._stop.wait(self.interval):
                break
        logger.info(f"[{self.name}] stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(target=self._run, name=f"feed-{self.name}", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
