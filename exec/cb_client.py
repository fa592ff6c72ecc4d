"""
Signed REST client for the Coinbase Exchange API.

This module provides the transport used by every other part of the
agent: request signing, bounded retries for idempotent calls, error
decoding, and a short-lived cache for public market data.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import os
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from .markets import OrderSide, ProductID, fmt_amount, to_native

API_URL = "https://api.exchange.coinbase.com"

IDEMPOTENT_METHODS = ("GET", "DELETE")
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


class ExchangeError(Exception):
    """Base class for errors raised by the exchange client."""


class ApiError(ExchangeError):
    """The exchange answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, method: str = "", path: str = ""):
        self.status_code = status_code
        self.message = message
        self.method = method
        self.path = path
        super().__init__(f"{method} {path} failed ({status_code}): {message}")


class RequestFailed(ExchangeError):
    """The request never produced a response."""


class MalformedResponse(ExchangeError):
    """A 2xx response whose body could not be decoded or parsed."""


class ConfigurationError(ValueError):
    """Credentials are missing or malformed."""


@dataclass(frozen=True)
class Account:
    id: str
    currency: str
    balance: int
    available: int


@dataclass(frozen=True)
class Ticker:
    trade_id: int
    price: float
    size: float
    bid: float
    ask: float
    volume: float
    time: str


@dataclass(frozen=True)
class Book:
    """Best bid/ask level of a product book, in native units."""
    bid: Optional[int]
    ask: Optional[int]


@dataclass(frozen=True)
class OrderResult:
    order_id: Optional[str]
    status: str
    reject_reason: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.status == "rejected"


def compute_signature(timestamp: str, method: str, request_path: str, body: str, secret: bytes) -> bytes:
    """HMAC-SHA256 over ``timestamp + method + request_path + body``."""
    message = (timestamp + method + request_path + body).encode("utf-8")
    return hmac.new(secret, message, hashlib.sha256).digest()


def decode_secret(api_secret: str) -> bytes:
    """Decode the base64 API secret, raising ConfigurationError if it is malformed."""
    try:
        return base64.b64decode(api_secret, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"API secret is not valid base64: {e}") from e


class CoinbaseExchangeClient:
    """
    Authenticated client for the Coinbase Exchange REST API.

    GET and DELETE requests are retried on transport failures and
    transient server errors with exponential backoff plus jitter.  POST
    requests are sent exactly once so an order is never submitted twice.
    Ticker and book reads are cached per product for ``cache_ttl`` seconds.
    """

    def __init__(self,
                 api_key: str = None,
                 api_secret: str = None,
                 passphrase: str = None,
                 base_url: str = API_URL,
                 max_retries: int = 3,
                 retry_delay: float = 1.0,
                 retry_jitter: float = 1.0,
                 cache_ttl: float = 1.0,
                 timeout: float = 10.0,
                 session: requests.Session = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the client.

        Args:
            api_key: API access key (defaults to env var)
            api_secret: Base64 API secret (defaults to env var)
            passphrase: API passphrase (defaults to env var)
            base_url: REST API root
            max_retries: Retry attempts for idempotent requests
            retry_delay: Base backoff delay in seconds
            retry_jitter: Upper bound of random extra delay in seconds
            cache_ttl: Lifetime of cached ticker/book reads in seconds
            timeout: Per-request timeout in seconds
            session: Optional requests session to send through
            clock: Monotonic clock used for cache expiry
        """
        self.api_key = api_key or os.getenv('COINBASE_API_ACCESS_KEY')
        self.api_secret = api_secret or os.getenv('COINBASE_API_SECRET_KEY')
        self.passphrase = passphrase or os.getenv('COINBASE_API_PASSPHRASE')

        if not all([self.api_key, self.api_secret, self.passphrase]):
            raise ConfigurationError("Missing required Coinbase API credentials")

        self._secret = decode_secret(self.api_secret)

        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_jitter = retry_jitter
        self.timeout = timeout
        self.session = session or requests.Session()

        # Public market data cache: (kind, product) -> (expires_at, value)
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: Dict[Tuple[str, ProductID], Tuple[float, Any]] = {}
        self._cache_lock = threading.Lock()

        self.logger = logging.getLogger(__name__)

    def _auth_headers(self, method: str, request_path: str, body: str) -> Dict[str, str]:
        timestamp = str(int(time.time()))
        signature = compute_signature(timestamp, method, request_path, body, self._secret)

        return {
            "Content-Type": "application/json",
            "CB-ACCESS-KEY": self.api_key,
            "CB-ACCESS-SIGN": base64.b64encode(signature).decode("ascii"),
            "CB-ACCESS-TIMESTAMP": timestamp,
            "CB-ACCESS-PASSPHRASE": self.passphrase,
        }

    def _backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** attempt) + random.uniform(0, self.retry_jitter)

    def _send(self, method: str, path: str, body: str, signed: bool) -> requests.Response:
        headers = self._auth_headers(method, path, body) if signed else {}
        return self.session.request(
            method,
            self.base_url + path,
            data=body or None,
            headers=headers,
            timeout=self.timeout,
        )

    def _request(self, method: str, path: str, payload: Dict[str, Any] = None, signed: bool = True) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            ApiError: The exchange returned a non-2xx status
            RequestFailed: No response could be obtained
        """
        method = method.upper()
        body = json.dumps(payload) if payload is not None else ""
        retries = self.max_retries if method in IDEMPOTENT_METHODS else 0

        attempt = 0
        while True:
            if attempt > 0:
                delay = self._backoff(attempt - 1)
                self.logger.info(f"Retrying {method} {path} in {delay:.2f}s (attempt {attempt + 1}/{retries + 1})")
                time.sleep(delay)

            try:
                response = self._send(method, path, body, signed)
            except requests.RequestException as e:
                self.logger.warning(f"{method} {path} transport failure: {e}")
                if attempt < retries:
                    attempt += 1
                    continue
                raise RequestFailed(f"{method} {path} failed after {attempt + 1} attempt(s): {e}") from e

            if 200 <= response.status_code < 300:
                if not response.content:
                    return None
                try:
                    return response.json()
                except ValueError as e:
                    raise MalformedResponse(f"{method} {path} returned a non-JSON body: {e}") from e

            error = ApiError(response.status_code, self._error_message(response), method, path)
            if response.status_code in RETRYABLE_STATUS_CODES and attempt < retries:
                self.logger.warning(f"{error}; will retry")
                attempt += 1
                continue

            self.logger.error(str(error))
            raise error

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or response.reason or "unknown error"
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
        return json.dumps(payload)

    @staticmethod
    def _parse(what: str, parser: Callable[[Any], Any], payload: Any) -> Any:
        """Apply ``parser`` to a decoded payload, raising MalformedResponse on unexpected shapes."""
        try:
            return parser(payload)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError, ArithmeticError) as e:
            raise MalformedResponse(f"Unexpected {what} payload: {e!r}") from e

    def _cached(self, kind: str, product_id: ProductID, fetch: Callable[[], Any]) -> Any:
        key = (kind, product_id)
        now = self._clock()
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is not None and entry[0] > now:
                return entry[1]

        value = fetch()

        with self._cache_lock:
            self._cache[key] = (self._clock() + self.cache_ttl, value)
        return value

    def get_accounts(self) -> List[Account]:
        """
        Get every trading account with its balance in native units.

        Returns:
            List of Account records
        """
        def parse(payload):
            return [
                Account(
                    id=raw["id"],
                    currency=raw["currency"],
                    balance=to_native(raw["balance"]),
                    available=to_native(raw.get("available", raw["balance"])),
                )
                for raw in payload or []
            ]

        return self._parse("accounts", parse, self._request("GET", "/accounts"))

    def get_ticker(self, product_id: ProductID) -> Ticker:
        """
        Get the latest ticker for a product (cached for ``cache_ttl``).

        Args:
            product_id: Product to query

        Returns:
            Parsed Ticker
        """
        def parse(raw):
            return Ticker(
                trade_id=int(raw.get("trade_id", 0)),
                price=float(raw["price"]),
                size=float(raw.get("size", 0)),
                bid=float(raw.get("bid", 0)),
                ask=float(raw.get("ask", 0)),
                volume=float(raw.get("volume", 0)),
                time=raw.get("time", ""),
            )

        def fetch():
            raw = self._request("GET", f"/products/{product_id.value}/ticker", signed=False)
            return self._parse(f"{product_id.value} ticker", parse, raw)

        return self._cached("ticker", product_id, fetch)

    def get_book(self, product_id: ProductID) -> Book:
        """
        Get the best bid and ask for a product (cached for ``cache_ttl``).

        A side with no resting orders is reported as None.
        """
        def parse(raw):
            bids = raw.get("bids") or []
            asks = raw.get("asks") or []
            return Book(
                bid=to_native(bids[0][0]) if bids else None,
                ask=to_native(asks[0][0]) if asks else None,
            )

        def fetch():
            raw = self._request("GET", f"/products/{product_id.value}/book", signed=False)
            return self._parse(f"{product_id.value} book", parse, raw)

        return self._cached("book", product_id, fetch)

    def place_order(self,
                    product_id: ProductID,
                    side: OrderSide,
                    size: int,
                    price: int) -> OrderResult:
        """
        Place a post-only limit order.

        Args:
            product_id: Product to trade
            side: Order side
            size: Order size in native units of the product's base currency
            price: Limit price in native units of the quote currency

        Returns:
            OrderResult; a "rejected" status is returned, not raised
        """
        order_data = {
            "price": fmt_amount(price),
            "size": fmt_amount(size),
            "side": side.value,
            "type": "limit",
            "product_id": product_id.value,
            "post_only": True,
        }
        self.logger.info(f"Order request: {json.dumps(order_data)}")

        def parse(raw):
            return OrderResult(
                order_id=raw.get("id"),
                status=raw.get("status", "unknown"),
                reject_reason=raw.get("reject_reason"),
            )

        result = self._parse("order", parse, self._request("POST", "/orders", order_data) or {})
        self.logger.info(f"Order response: {result.status} (id={result.order_id})")
        return result

    def cancel_all_orders(self) -> List[str]:
        """
        Cancel every open order on the account.

        Returns:
            IDs of the cancelled orders
        """
        self.logger.info("Cancelling all open orders")
        cancelled = self._request("DELETE", "/orders") or []
        self.logger.info(f"Cancelled {len(cancelled)} order(s)")
        return list(cancelled)
