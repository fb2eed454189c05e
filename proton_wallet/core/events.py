"""
Typed change notifications owned by WalletContext.

Subscribers register per event name and get back an unsubscribe callable.
Handlers are called synchronously in registration order; a failing handler
is logged and does not stop delivery to the others.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Any, Callable

from proton_wallet.wallet_logging import get_logger

logger = get_logger(__name__)


class Collection(str, enum.Enum):
    CHAIN_PROVIDERS = "chain_providers"
    TOKEN_CONTRACTS = "token_contracts"
    TOKEN_BALANCES = "token_balances"
    TOKEN_TRANSFER_ACTIONS = "token_transfer_actions"
    CONTACTS = "contacts"
    ESR_SESSIONS = "esr_sessions"
    ACCOUNTS = "accounts"
    ACTIVE_ACCOUNT = "active_account"
    ACTIVE_REQUEST = "active_request"


WILL_SET = "will_set"
DID_SET = "did_set"
ACCOUNT_DID_UPDATE = "account_did_update"
SYNC_COMPLETED = "sync_completed"


def will_set(collection: Collection) -> str:
    return f"{collection.value}.{WILL_SET}"


def did_set(collection: Collection) -> str:
    return f"{collection.value}.{DID_SET}"


@dataclass(frozen=True)
class Event:
    name: str
    value: Any = None


Handler = Callable[[Event], None]


class EventBus:
    """Explicit event emitter; one per WalletContext."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, name: str, handler: Handler) -> Callable[[], None]:
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(name) or []
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def emit(self, name: str, value: Any = None) -> None:
        with self._lock:
            handlers = list(self._handlers.get(name) or [])
        event = Event(name=name, value=value)
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning("event_handler_failed", event_name=name, error=str(e))

    def handler_count(self, name: str) -> int:
        with self._lock:
            return len(self._handlers.get(name) or [])
