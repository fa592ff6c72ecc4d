"""
Metrics reporting to dweet.io.

Reports are posted on a short-lived daemon thread so a slow or failing
sink never holds up the caller.
"""

import logging
import math
import threading
from dataclasses import asdict, dataclass
from typing import Optional

import requests

from exec.markets import Currency

from .utils import native_to_float

DWEET_API_URL = "https://dweet.io:443"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Report:
    totalAssets: float
    assetValueUsd: Optional[float]
    btcBalance: float
    ethBalance: float
    ltcBalance: float
    ethRate: Optional[float]
    ltcRate: Optional[float]
    usdRate: Optional[float]


def build_report(distribution, rates) -> Report:
    """Assemble a report from a controller distribution and the rate feed."""
    total_assets = native_to_float(distribution.total_assets)
    usd_rate = rates.current_rate(Currency.BTC, Currency.USD)
    asset_value_usd = math.floor(total_assets * usd_rate * 100) / 100 if usd_rate is not None else None

    return Report(
        totalAssets=total_assets,
        assetValueUsd=asset_value_usd,
        btcBalance=native_to_float(distribution.balances.get(Currency.BTC, 0)),
        ethBalance=native_to_float(distribution.balances.get(Currency.ETH, 0)),
        ltcBalance=native_to_float(distribution.balances.get(Currency.LTC, 0)),
        ethRate=rates.current_rate(Currency.ETH, Currency.BTC),
        ltcRate=rates.current_rate(Currency.LTC, Currency.BTC),
        usdRate=usd_rate,
    )


class ReportingService:
    """Fire-and-forget publisher of agent metrics."""

    def __init__(self, thing_name: str, dry_run: bool = True, timeout: float = 5.0,
                 base_url: str = DWEET_API_URL):
        self.thing_name = thing_name
        self.dry_run = dry_run
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.thing_name)

    @property
    def endpoint_url(self) -> str:
        return f"{self.base_url}/dweet/quietly/for/{self.thing_name}"

    def report_metrics(self, report: Report) -> Optional[threading.Thread]:
        """
        Publish a report in the background.

        Returns:
            The sender thread, or None if nothing was sent
        """
        if not self.enabled:
            return None

        if self.dry_run:
            logger.info(f"[DRY RUN] Would report metrics: {asdict(report)}")
            return None

        thread = threading.Thread(target=self.send_report, args=(report,), name="reporting", daemon=True)
        thread.start()
        return thread

    def send_report(self, report: Report) -> bool:
        try:
            response = requests.post(self.endpoint_url, json=asdict(report), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Metrics report failed: {e}")
            return False
        return True
