"""
Coinbase Equal-Weight Rebalancing Agent

An unattended agent that keeps an exchange account split evenly across
its managed assets by polling balances and prices and placing post-only
limit orders through the base currency.
"""

from .config import load_settings, validate_config
from .controller import DataUnavailable, Distribution, RebalancingController
from .reporting import Report, ReportingService, build_report
from .utils import format_currency, setup_logging

__version__ = "1.0.0"

# Expose main classes and functions for external use
__all__ = [
    "load_settings",
    "validate_config",
    "DataUnavailable",
    "Distribution",
    "RebalancingController",
    "Report",
    "ReportingService",
    "build_report",
    "format_currency",
    "setup_logging",
]
