"""
Configuration management for proton_wallet.

Loads settings from environment variables and an optional .env file and
exposes them as a single Settings object for WalletContext.
"""

from proton_wallet.config.env import Environment  # noqa: F401
from proton_wallet.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Environment", "Settings", "get_settings"]
