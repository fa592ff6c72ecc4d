"""
Market definitions for the rebalancing agent.

Every currency and product the agent knows about lives in the tables
below.  Cross-rate resolution, spread polling and order routing all read
from these tables, so supporting a new pair is a matter of adding one
``Product`` entry (and one ``TRADED_PRODUCTS`` entry if the agent should
trade it).
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Dict, Optional, Tuple


# Native amounts are integers at a fixed 1e8 scale
COIN = 100_000_000

# Exchange tick size for the BTC-quoted books, in native units (0.00001)
QUOTE_INCREMENT = 1000

# Smallest order size the exchange accepts (0.01 of the traded asset)
MIN_TRADE = COIN // 100


class Currency(str, Enum):
    """Currencies held or priced by the agent."""
    BTC = "BTC"
    ETH = "ETH"
    LTC = "LTC"
    USD = "USD"


class ProductID(str, Enum):
    """Exchange product identifiers."""
    ETH_BTC = "ETH-BTC"
    LTC_BTC = "LTC-BTC"
    BTC_USD = "BTC-USD"


class OrderSide(str, Enum):
    """Order side enumeration."""
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Product:
    """A quoted pair: the price of one ``base`` unit in ``quote``."""
    product_id: ProductID
    base: Currency
    quote: Currency


PRODUCTS: Dict[ProductID, Product] = {
    ProductID.ETH_BTC: Product(ProductID.ETH_BTC, Currency.ETH, Currency.BTC),
    ProductID.LTC_BTC: Product(ProductID.LTC_BTC, Currency.LTC, Currency.BTC),
    ProductID.BTC_USD: Product(ProductID.BTC_USD, Currency.BTC, Currency.USD),
}

# All valuation and trading is routed through this currency
BASE_CURRENCY = Currency.BTC

# Tradable asset -> the product it trades on against BASE_CURRENCY
TRADED_PRODUCTS: Dict[Currency, ProductID] = {
    Currency.ETH: ProductID.ETH_BTC,
    Currency.LTC: ProductID.LTC_BTC,
}

MANAGED_CURRENCIES: Tuple[Currency, ...] = (BASE_CURRENCY,) + tuple(TRADED_PRODUCTS)


def _build_rate_table(products: Dict[ProductID, Product]) -> Dict[Tuple[Currency, Currency], Tuple[ProductID, bool]]:
    table = {}
    for product in products.values():
        table[(product.base, product.quote)] = (product.product_id, False)
        table[(product.quote, product.base)] = (product.product_id, True)
    return table


# (from, to) -> (product quoting the pair, whether the quote must be inverted)
RATE_TABLE = _build_rate_table(PRODUCTS)


def resolve_rate_pair(from_currency: Currency, to_currency: Currency) -> Optional[Tuple[ProductID, bool]]:
    """
    Find the product that prices ``from_currency`` in ``to_currency``.

    Returns:
        ``(product_id, invert)`` where ``invert`` is True when the requested
        "from" side is the product's quote currency, or None if no product
        quotes the pair.
    """
    return RATE_TABLE.get((from_currency, to_currency))


def traded_product(currency: Currency) -> Optional[ProductID]:
    """Product used to trade ``currency`` against the base currency."""
    return TRADED_PRODUCTS.get(currency)


def to_native(value) -> int:
    """Convert a decimal amount (string or number) to truncated native units."""
    amount = Decimal(str(value)) * COIN
    return int(amount.to_integral_value(rounding=ROUND_DOWN))


def fmt_amount(native: int) -> str:
    """Format a native amount as a fixed 8-decimal-place string."""
    return f"{Decimal(native) / COIN:.8f}"


def round_to_tick(price: int, tick: int) -> int:
    """
    Round ``price`` to the nearest multiple of ``tick``.

    Remainders of half a tick or more round away from zero.
    """
    if tick <= 0:
        raise ValueError(f"Tick size must be positive, got {tick}")

    magnitude = abs(price)
    remainder = magnitude % tick
    rounded = magnitude - remainder
    if remainder * 2 >= tick:
        rounded += tick

    return rounded if price >= 0 else -rounded
