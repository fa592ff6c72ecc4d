"""
Configuration for the rebalancing agent.

Credentials and switches come from the environment (optionally via a
.env file).  Poll intervals and tuning knobs have defaults here and can
be overridden from config.yml.
"""

import base64
import binascii
import os
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def env_flag(name: str, default: str = "true") -> bool:
    """Read a boolean switch; anything but false/0/no/off counts as on."""
    value = os.getenv(name, default).strip().lower()
    return value not in ("false", "0", "no", "off", "")


def load_yaml_config(file_path: str) -> dict:
    """Load YAML configuration from a file safely."""
    try:
        with open(file_path, 'r', encoding='utf-8') as file:
            return yaml.safe_load(file) or {}
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file {file_path} not found.")
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML file {file_path}: {e}")


# API Configuration
API_KEY = os.getenv("COINBASE_API_ACCESS_KEY", "")
API_SECRET = os.getenv("COINBASE_API_SECRET_KEY", "")
API_PASSPHRASE = os.getenv("COINBASE_API_PASSPHRASE", "")
API_URL = os.getenv("COINBASE_API_URL", "https://api.exchange.coinbase.com")

# Trading switches
DRY_RUN = env_flag("DRY_RUN", "true")

# Metrics sink
DWEET_THING_NAME = os.getenv("DWEET_THING_NAME", "")

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/rebalance_agent.log")

CONFIG_FILE = os.getenv("CONFIG_FILE", "config.yml")

# Tunables (seconds unless noted); config.yml keys use the lower-case names
DEFAULTS: Dict[str, Any] = {
    "tick_seconds": 10,
    "balance_poll_seconds": 3,
    "rate_poll_seconds": 1,
    "spread_poll_seconds": 1,
    "report_interval_seconds": 2,
    "market_cache_ttl": 1.0,
    "max_retries": 3,
    "retry_delay": 1.0,
    "retry_jitter": 1.0,
    "request_timeout": 10.0,
    "order_queue_size": 2,
    "spread_max_age": 10.0,
}


def load_settings(file_path: str = None) -> Dict[str, Any]:
    """
    Merge config.yml overrides over the defaults.

    A missing file yields the defaults; unknown keys are rejected.
    """
    settings = dict(DEFAULTS)
    path = file_path or CONFIG_FILE

    if not os.path.exists(path):
        return settings

    overrides = load_yaml_config(path)
    if not isinstance(overrides, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    unknown = sorted(set(overrides) - set(DEFAULTS))
    if unknown:
        raise ValueError(f"Unknown settings in {path}: {', '.join(unknown)}")

    for key, value in overrides.items():
        try:
            settings[key] = type(DEFAULTS[key])(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid value for {key} in {path}: {value!r}")
    return settings


# Validation
def validate_config():
    """Validate configuration settings."""
    required_vars = {
        "COINBASE_API_ACCESS_KEY": API_KEY,
        "COINBASE_API_SECRET_KEY": API_SECRET,
        "COINBASE_API_PASSPHRASE": API_PASSPHRASE,
    }
    missing_vars = [name for name, value in required_vars.items() if not value]
    if missing_vars:
        raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

    try:
        base64.b64decode(API_SECRET, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"COINBASE_API_SECRET_KEY is not valid base64: {e}")

    print(f"✓ Configuration validated")
    print(f"  - API URL: {API_URL}")
    print(f"  - Dry run: {DRY_RUN}")
    print(f"  - Metrics reporting: {DWEET_THING_NAME or 'disabled'}")
