"""
Application settings.

Responsibilities:
- Build a typed Settings object from environment variables and .env.
- Provide defaults for optional values and clamp invalid ones.
- Passed explicitly to WalletContext; nothing reads env after startup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from proton_wallet.config import env


@dataclass
class Settings:
    """Configuration for one WalletContext."""

    base_url: str = field(default_factory=env.get_base_url)
    db_path: Path = field(default_factory=env.get_db_path)
    vault_key: str | None = field(default_factory=env.get_vault_key)
    max_concurrency: int = field(default_factory=env.get_max_concurrency)
    http_timeout_sec: float = field(default_factory=env.get_http_timeout)
    display_currency: str = field(default_factory=env.get_display_currency)
    transaction_expiration_sec: int = 60

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        if self.max_concurrency < 1:
            self.max_concurrency = env.DEFAULT_MAX_CONCURRENCY
        if self.http_timeout_sec <= 0:
            self.http_timeout_sec = env.DEFAULT_HTTP_TIMEOUT_SEC
        if self.transaction_expiration_sec < 1:
            self.transaction_expiration_sec = 60
        self.display_currency = (self.display_currency or env.DEFAULT_DISPLAY_CURRENCY).upper()


def get_settings() -> Settings:
    """Return settings built from the current environment."""
    return Settings()
