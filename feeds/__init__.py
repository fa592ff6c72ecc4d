"""
Market data feeds.

Each feed polls the exchange on its own background thread and exposes
non-blocking reads against its last completed snapshot.  Reads return
None until the first successful poll.
"""

from .balances import BalanceFeed  # noqa: F401
from .rates import RateFeed, RateUnavailable  # noqa: F401
from .spreads import Spread, SpreadFeed  # noqa: F401

__all__ = [
    'BalanceFeed',
    'RateFeed',
    'RateUnavailable',
    'Spread',
    'SpreadFeed',
]
