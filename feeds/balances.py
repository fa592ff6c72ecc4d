"""
Account balance feed.
"""

from typing import Dict, Mapping, Optional

from exec.markets import Currency

from .base import PollingFeed


class BalanceFeed(PollingFeed):
    """Native balances of every known currency, refreshed from /accounts."""

    name = "balances"

    def __init__(self, client, interval: float = 3.0, stop_event=None):
        super().__init__(client, interval, stop_event)

    def _fetch(self, previous: Mapping[Currency, int]) -> Dict[Currency, int]:
        balances = {}
        for account in self.client.get_accounts():
            try:
                currency = Currency(account.currency)
            except ValueError:
                continue
            balances[currency] = balances.get(currency, 0) + account.balance
        return balances

    def get_native_balance(self, currency: Currency) -> Optional[int]:
        """
        Current balance of ``currency`` in native units.

        Returns:
            The balance, or None if no snapshot holds it yet
        """
        return self._snapshot.get(currency)
