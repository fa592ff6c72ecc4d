"""
Execution module public API.

This package holds everything that talks to the exchange: the market
tables, the signed REST client, and the serialized order worker.
"""

from .cb_client import (  # noqa: F401
    ApiError,
    CoinbaseExchangeClient,
    ConfigurationError,
    ExchangeError,
    MalformedResponse,
    RequestFailed,
)
from .order_worker import OrderIntent, OrderState, OrderWorker  # noqa: F401

__all__ = [
    'ApiError',
    'CoinbaseExchangeClient',
    'ConfigurationError',
    'ExchangeError',
    'MalformedResponse',
    'OrderIntent',
    'OrderState',
    'OrderWorker',
    'RequestFailed',
]
