"""
Domain models for wallet entities.

Chain providers, accounts, token contracts and balances, transfer history,
contacts and signing-request sessions. Plain dataclasses with to_dict() /
from_dict() for the key/value persistence surface; no storage coupling.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

T = TypeVar("T", bound="_Serializable")

PENDING_SEQUENCE = 0


class _Serializable:
    """to_dict/from_dict via dataclass fields. Unknown keys are ignored on load."""

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls: type[T], data: dict[str, Any]) -> T:
        names = {f.name for f in dataclasses.fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class ChainProvider(_Serializable):
    """A configured ledger endpoint. Immutable once fetched."""

    chain_id: str
    chain_url: str
    state_history_url: str
    name: str = ""
    icon_url: str = ""
    users_info_table_code: str = "eosio.proton"
    users_info_table_scope: str = "eosio.proton"
    exchange_rate_url: str = ""

    @property
    def id(self) -> str:
        return self.chain_id


@dataclass(frozen=True)
class ChainInfo:
    """Chain head snapshot from get_info. Fetched fresh, never cached."""

    chain_id: str
    head_block_num: int
    head_block_id: str
    head_block_time: datetime
    last_irreversible_block_num: int = 0


@dataclass(frozen=True)
class Permission(_Serializable):
    perm_name: str
    parent: str = ""
    threshold: int = 1
    keys: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Permission":
        return cls(
            perm_name=data.get("perm_name", ""),
            parent=data.get("parent", ""),
            threshold=int(data.get("threshold", 1)),
            keys=tuple(data.get("keys") or ()),
        )


@dataclass(frozen=True)
class Account(_Serializable):
    """A named identity on one chain. Permissions come from chain only."""

    chain_id: str
    name: str
    permissions: tuple[Permission, ...] = ()
    nick_name: str = ""
    avatar: str = ""
    verified: bool = False

    @property
    def id(self) -> str:
        return f"{self.chain_id}:{self.name}"

    def keys_for_permission(self, perm_name: str) -> list[str]:
        for permission in self.permissions:
            if permission.perm_name == perm_name:
                return list(permission.keys)
        return []

    def is_key_associated(self, public_key: str) -> bool:
        return any(public_key in p.keys for p in self.permissions)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Account":
        return cls(
            chain_id=data["chain_id"],
            name=data["name"],
            permissions=tuple(Permission.from_dict(p) for p in data.get("permissions") or ()),
            nick_name=data.get("nick_name", ""),
            avatar=data.get("avatar", ""),
            verified=bool(data.get("verified", False)),
        )


@dataclass(frozen=True)
class TokenContract(_Serializable):
    """A fungible-token definition. rates is locally cached (currency -> price)."""

    chain_id: str
    contract: str
    symbol: str
    precision: int
    name: str = ""
    issuer: str = ""
    desc: str = ""
    icon_url: str = ""
    url: str = ""
    supply: float = 0.0
    max_supply: float = 0.0
    rates: dict[str, float] = field(default_factory=dict)
    is_blacklisted: bool = False
    system_token: bool = False

    @property
    def id(self) -> str:
        return f"{self.chain_id}:{self.contract}:{self.symbol}"

    def rate(self, currency: str) -> float:
        return float(self.rates.get(currency.upper(), 0.0))


@dataclass(frozen=True)
class TokenBalance(_Serializable):
    """An account's holding of one token. amount is in whole-token units."""

    account_id: str
    contract: str
    symbol: str
    precision: int
    amount: float

    @property
    def id(self) -> str:
        return f"{self.account_id}:{self.contract}:{self.symbol}"

    @property
    def chain_id(self) -> str:
        return self.account_id.split(":", 1)[0]

    @property
    def token_contract_id(self) -> str:
        return f"{self.chain_id}:{self.contract}:{self.symbol}"


@dataclass(frozen=True)
class TokenTransferAction(_Serializable):
    """A historical transfer event. Immutable once recorded.

    A transfer sent from this wallet is recorded right away with
    global_sequence PENDING_SEQUENCE until history reports the sequenced one.
    """

    chain_id: str
    account_id: str
    token_balance_id: str
    token_contract_id: str
    contract: str
    trx_id: str
    global_sequence: int
    date: str
    sent: bool
    from_account: str
    to_account: str
    quantity: str
    memo: str = ""
    name: str = "transfer"

    @property
    def id(self) -> str:
        return f"{self.trx_id}:{self.global_sequence}"

    @property
    def is_pending(self) -> bool:
        return self.global_sequence == PENDING_SEQUENCE

    @property
    def other(self) -> str:
        """Counterparty name."""
        return self.to_account if self.sent else self.from_account


@dataclass(frozen=True)
class Contact(_Serializable):
    chain_id: str
    name: str
    nick_name: str = ""
    avatar: str = ""
    verified: bool = False

    @property
    def id(self) -> str:
        return f"{self.chain_id}:{self.name}"


@dataclass(frozen=True)
class Session(_Serializable):
    """A revocable grant created by accepting an identity request."""

    requester: str
    signer: str
    chain_id: str
    sid: str
    callback_url: str = ""
    rs: str = ""
    """Revocation token handed out by the requester, echoed on revoke."""
    created_at: str = field(default_factory=lambda: utc_now().isoformat())

    @property
    def id(self) -> str:
        return self.sid


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_chain_time(raw: str) -> datetime:
    """Parse chain timestamps ('2020-04-20T12:00:00' or with .500 / Z); always UTC."""
    s = (raw or "").strip().rstrip("Z")
    if not s:
        raise ValueError("empty timestamp")
    parsed = datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
