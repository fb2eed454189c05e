"""
proton_wallet: client-side wallet engine for Proton / EOSIO-style chains.

Keeps a local view of accounts, balances, transfer history and contacts in
sync with a chain provider, and resolves, signs and dispatches esr: signing
requests without the requester ever seeing a private key.
"""

from proton_wallet.config import Settings, get_settings
from proton_wallet.core.exceptions import ErrorKind, WalletError
from proton_wallet.wallet import WalletContext

__version__ = "0.1.0"

__all__ = ["ErrorKind", "Settings", "WalletContext", "WalletError", "__version__", "get_settings"]
