"""
Application-level exceptions.

Closed taxonomy: every failure surfaced by proton_wallet is a WalletError
with one ErrorKind and structured context fields. Callers and tests match on
the class or on .kind, never on message text.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    TRANSPORT = "transport"
    CHAIN = "chain"
    HISTORY = "history"
    SIGNING_REQUEST = "signing_request"
    SECRET_STORE = "secret_store"
    VALIDATION = "validation"


class WalletError(Exception):
    """Base error. kind is fixed per subclass; context holds structured fields."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.context}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r}, context={self.context!r})"


class TransportError(WalletError):
    """Network or HTTP failure talking to a remote service."""

    kind = ErrorKind.TRANSPORT


class ChainError(WalletError):
    """Chain RPC returned malformed or unexpected data."""

    kind = ErrorKind.CHAIN


class HistoryError(WalletError):
    """History service failure (key accounts, balances, transfer actions)."""

    kind = ErrorKind.HISTORY


class SigningRequestError(WalletError):
    """Signing request could not be parsed, resolved, signed or dispatched."""

    kind = ErrorKind.SIGNING_REQUEST


class SecretStoreError(WalletError):
    """Vault read or write failed."""

    kind = ErrorKind.SECRET_STORE


class ValidationError(WalletError):
    """Local precondition failed (insufficient balance, no active account, ...)."""

    kind = ErrorKind.VALIDATION


# raised while mapping a fetched payload
MALFORMED_DATA_ERRORS = (KeyError, ValueError, TypeError, AttributeError, IndexError)


def as_wallet_error(exc: BaseException) -> WalletError:
    """
    Wrap a foreign exception so it fits the taxonomy; WalletErrors pass through.

    Mapping failures on a fetched payload become ChainError; anything else
    (OS and network errors, timeouts) becomes TransportError.
    """
    if isinstance(exc, WalletError):
        return exc
    if isinstance(exc, MALFORMED_DATA_ERRORS):
        return ChainError(str(exc) or type(exc).__name__, cause=type(exc).__name__)
    return TransportError(str(exc) or type(exc).__name__, cause=type(exc).__name__)
