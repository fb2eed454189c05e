"""
Core cross-cutting pieces: the error taxonomy and the change-event bus.
"""

from proton_wallet.core.events import Collection, Event, EventBus
from proton_wallet.core.exceptions import (
    ChainError,
    ErrorKind,
    HistoryError,
    SecretStoreError,
    SigningRequestError,
    TransportError,
    ValidationError,
    WalletError,
)

__all__ = [
    "ChainError",
    "Collection",
    "ErrorKind",
    "Event",
    "EventBus",
    "HistoryError",
    "SecretStoreError",
    "SigningRequestError",
    "TransportError",
    "ValidationError",
    "WalletError",
]
