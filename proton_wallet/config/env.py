"""
Environment variable loading and validation for proton_wallet.

- PROTON_ENVIRONMENT: testnet | mainnet (default: testnet)
- PROTON_BASE_URL: SDK API base url; overrides the environment default
- PROTON_DB_PATH: SQLite file for persisted state and the key vault
- PROTON_VAULT_KEY: Fernet key used to encrypt private keys at rest
- PROTON_MAX_CONCURRENCY: concurrent lane width
- PROTON_HTTP_TIMEOUT: per-request timeout in seconds
- PROTON_DISPLAY_CURRENCY: currency used for converted amounts (default: USD)
- Loads .env from project root when available.
"""

from __future__ import annotations

import enum
import os
from pathlib import Path

# Project root: config is proton_wallet/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_DB_FILENAME = "proton_wallet.db"
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_HTTP_TIMEOUT_SEC = 15.0
DEFAULT_DISPLAY_CURRENCY = "USD"


class Environment(str, enum.Enum):
    """SDK API endpoints per network."""

    TESTNET = "https://api-dev.protonchain.com"
    MAINNET = "https://api.protonchain.com"


def load_wallet_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def get_environment() -> Environment:
    """
    Return PROTON_ENVIRONMENT from env: testnet | mainnet.
    Default: testnet.
    """
    load_wallet_env()
    raw = (os.getenv("PROTON_ENVIRONMENT") or "testnet").strip().lower()
    if raw in ("mainnet", "main", "production"):
        return Environment.MAINNET
    return Environment.TESTNET


def get_base_url() -> str:
    """
    Resolve the SDK API base url.
    Order: PROTON_BASE_URL > environment default.
    """
    load_wallet_env()
    url = (os.getenv("PROTON_BASE_URL") or "").strip()
    if url:
        return url.rstrip("/")
    return get_environment().value


def get_db_path() -> Path:
    """Return PROTON_DB_PATH, or proton_wallet.db at project root."""
    load_wallet_env()
    raw = (os.getenv("PROTON_DB_PATH") or "").strip()
    if raw:
        return Path(raw)
    return _ROOT / DEFAULT_DB_FILENAME


def get_vault_key() -> str | None:
    """Return PROTON_VAULT_KEY or None when unset."""
    load_wallet_env()
    key = (os.getenv("PROTON_VAULT_KEY") or "").strip()
    return key or None


def get_max_concurrency() -> int:
    load_wallet_env()
    raw = (os.getenv("PROTON_MAX_CONCURRENCY") or "").strip()
    try:
        return int(raw) if raw else DEFAULT_MAX_CONCURRENCY
    except ValueError:
        return DEFAULT_MAX_CONCURRENCY


def get_http_timeout() -> float:
    load_wallet_env()
    raw = (os.getenv("PROTON_HTTP_TIMEOUT") or "").strip()
    try:
        return float(raw) if raw else DEFAULT_HTTP_TIMEOUT_SEC
    except ValueError:
        return DEFAULT_HTTP_TIMEOUT_SEC


def get_display_currency() -> str:
    load_wallet_env()
    return (os.getenv("PROTON_DISPLAY_CURRENCY") or DEFAULT_DISPLAY_CURRENCY).strip().upper()


def print_wallet_startup(script_name: str) -> None:
    """Print environment and base url at script start."""
    load_wallet_env()
    print(f"[proton_wallet] {script_name} | environment={get_environment().name.lower()} | base_url={get_base_url()}")
