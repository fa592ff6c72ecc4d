"""
Utility functions for the rebalancing agent.
"""

import logging
import os
from decimal import Decimal
from typing import Dict, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from exec.markets import COIN, Currency, fmt_amount

from . import config

# Set up rich console
console = Console()


def setup_logging() -> logging.Logger:
    """Set up logging configuration."""
    log_dir = os.path.dirname(config.LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            RichHandler(console=console, rich_tracebacks=True),
            logging.FileHandler(config.LOG_FILE, mode='a')
        ]
    )

    return logging.getLogger(__name__)


def format_currency(amount: Decimal, currency: str = "USD") -> str:
    """Format a decimal amount as currency."""
    if currency == "USD":
        return f"${amount:,.2f}"
    else:
        return f"{amount} {currency}"


def native_to_float(native: int) -> float:
    """Native units to a float amount of coin."""
    return native / COIN


def build_holdings_table(balances: Dict[Currency, Optional[int]],
                         valuations: Dict[Currency, Optional[int]],
                         rates: Dict[Currency, Optional[float]],
                         base: Currency) -> Table:
    """Holdings, rates and base-currency valuations as a rich table."""
    total = sum(v for v in valuations.values() if v is not None)

    table = Table(title=f"Holdings (valued in {base.value})")
    table.add_column("Asset", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column(f"Rate ({base.value})", justify="right")
    table.add_column(f"Value ({base.value})", justify="right")
    table.add_column("Weight", justify="right")

    for currency, balance in balances.items():
        value = valuations.get(currency)
        rate = rates.get(currency)
        weight = f"{value / total * 100:.2f}%" if value is not None and total > 0 else "[dim]-[/dim]"
        table.add_row(
            currency.value,
            fmt_amount(balance) if balance is not None else "[dim]n/a[/dim]",
            f"{rate:.8f}" if rate is not None else "[dim]n/a[/dim]",
            fmt_amount(value) if value is not None else "[dim]n/a[/dim]",
            weight,
        )

    table.add_row("[bold]Total[/bold]", "", "", f"[bold]{fmt_amount(total)}[/bold]", "")
    return table
