"""
Structured logging for proton_wallet.

JSON logs with timestamp, account_id, event_type.
Use get_logger() in all modules.
"""

from proton_wallet.wallet_logging.logger import bind_account, get_logger

__all__ = ["bind_account", "get_logger"]
