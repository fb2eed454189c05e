"""
Transaction building, signing and broadcasting.

Header from fresh chain info (expiration = head block time + window, TaPoS
reference from the head block id), canonical serialization, chain-bound
digest sha256(chain_id || serialized || 32 zero bytes), signature with the
signer's key, push on the scheduler's sequential lane.
"""

from __future__ import annotations

import hashlib
import json
import struct
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from proton_wallet.chain.client import ChainApi
from proton_wallet.chain.keys import PrivateKey
from proton_wallet.core.exceptions import ChainError
from proton_wallet.models import ChainInfo, ChainProvider
from proton_wallet.scheduler import OperationScheduler
from proton_wallet.wallet_logging import get_logger

logger = get_logger(__name__)

DEFAULT_EXPIRATION_SEC = 60
ACTIVE_PERMISSION = "active"


@dataclass(frozen=True)
class PermissionLevel:
    actor: str
    permission: str = ACTIVE_PERMISSION

    def to_dict(self) -> dict[str, str]:
        return {"actor": self.actor, "permission": self.permission}


@dataclass(frozen=True)
class Action:
    account: str
    name: str
    authorization: tuple[PermissionLevel, ...]
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "account": self.account,
            "name": self.name,
            "authorization": [a.to_dict() for a in self.authorization],
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        if not isinstance(data, dict):
            raise ValueError("action is not an object")
        authorization = data.get("authorization") or ()
        if not isinstance(authorization, (list, tuple)) or not all(isinstance(a, dict) for a in authorization):
            raise ValueError("authorization must be a list of objects")
        payload = data.get("data") or {}
        if not isinstance(payload, dict):
            raise ValueError("action data is not an object")
        return cls(
            account=str(data["account"]),
            name=str(data["name"]),
            authorization=tuple(
                PermissionLevel(actor=str(a["actor"]), permission=str(a.get("permission") or ACTIVE_PERMISSION))
                for a in authorization
            ),
            data=dict(payload),
        )


@dataclass(frozen=True)
class TransactionHeader:
    expiration: str
    ref_block_num: int
    ref_block_prefix: int
    max_net_usage_words: int = 0
    max_cpu_usage_ms: int = 0
    delay_sec: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "expiration": self.expiration,
            "ref_block_num": self.ref_block_num,
            "ref_block_prefix": self.ref_block_prefix,
            "max_net_usage_words": self.max_net_usage_words,
            "max_cpu_usage_ms": self.max_cpu_usage_ms,
            "delay_sec": self.delay_sec,
        }


@dataclass(frozen=True)
class Transaction:
    header: TransactionHeader
    actions: tuple[Action, ...]

    def to_dict(self) -> dict[str, Any]:
        out = self.header.to_dict()
        out["context_free_actions"] = []
        out["actions"] = [a.to_dict() for a in self.actions]
        out["transaction_extensions"] = []
        return out

    def serialize(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    @property
    def id(self) -> str:
        return hashlib.sha256(self.serialize()).hexdigest()

    def signing_digest(self, chain_id: str) -> bytes:
        return hashlib.sha256(_chain_id_bytes(chain_id) + self.serialize() + bytes(32)).digest()


@dataclass(frozen=True)
class SignedTransaction:
    transaction: Transaction
    signatures: tuple[str, ...]

    def to_push_payload(self) -> dict[str, Any]:
        return {
            "signatures": list(self.signatures),
            "compression": 0,
            "packed_context_free_data": "",
            "packed_trx": self.transaction.serialize().hex(),
        }


@dataclass(frozen=True)
class PushResult:
    transaction_id: str
    block_num: int | None = None


def _chain_id_bytes(chain_id: str) -> bytes:
    try:
        return bytes.fromhex(chain_id)
    except ValueError:
        return chain_id.encode("utf-8")


def ref_block_prefix(block_id: str) -> int:
    """Little-endian uint32 from bytes 8..12 of the block id."""
    raw = bytes.fromhex(block_id)
    if len(raw) < 12:
        raise ChainError("head block id too short", block_id=block_id)
    return struct.unpack("<I", raw[8:12])[0]


def build_header(info: ChainInfo, expiration_sec: int = DEFAULT_EXPIRATION_SEC) -> TransactionHeader:
    expiration = info.head_block_time + timedelta(seconds=expiration_sec)
    try:
        prefix = ref_block_prefix(info.head_block_id)
    except ValueError as e:
        raise ChainError("malformed head block id", block_id=info.head_block_id) from e
    return TransactionHeader(
        expiration=expiration.strftime("%Y-%m-%dT%H:%M:%S"),
        ref_block_num=info.head_block_num & 0xFFFF,
        ref_block_prefix=prefix,
    )


def sign_transaction(transaction: Transaction, chain_id: str, private_key: PrivateKey) -> SignedTransaction:
    signature = private_key.sign(transaction.signing_digest(chain_id))
    return SignedTransaction(transaction=transaction, signatures=(signature,))


class TransactionSigner:
    """Shared by the transfer API and the signing-request engine."""

    def __init__(
        self,
        api: ChainApi,
        scheduler: OperationScheduler,
        expiration_sec: int = DEFAULT_EXPIRATION_SEC,
    ) -> None:
        self._api = api
        self._scheduler = scheduler
        self.expiration_sec = expiration_sec

    async def fetch_chain_info(self, provider: ChainProvider) -> ChainInfo:
        """Fresh head info, independent of any cache."""
        result = await self._scheduler.sequential(lambda: self._api.get_info(provider), name="get_info")
        return result.unwrap()

    async def build(self, provider: ChainProvider, actions: list[Action]) -> Transaction:
        info = await self.fetch_chain_info(provider)
        return Transaction(header=build_header(info, self.expiration_sec), actions=tuple(actions))

    async def push(self, provider: ChainProvider, signed: SignedTransaction) -> PushResult:
        result = await self._scheduler.sequential(
            lambda: self._api.push_transaction(provider, signed.to_push_payload()),
            name="push_transaction",
        )
        response = result.unwrap()
        processed = response.get("processed") or {}
        block_num = processed.get("block_num")
        push_result = PushResult(
            transaction_id=str(response["transaction_id"]),
            block_num=int(block_num) if block_num is not None else None,
        )
        logger.info(
            "transaction_pushed",
            chain_id=provider.chain_id,
            transaction_id=push_result.transaction_id,
            block_num=push_result.block_num,
        )
        return push_result

    async def sign_and_push(
        self, provider: ChainProvider, actions: list[Action], private_key: PrivateKey
    ) -> tuple[SignedTransaction, PushResult]:
        transaction = await self.build(provider, actions)
        signed = sign_transaction(transaction, provider.chain_id, private_key)
        return signed, await self.push(provider, signed)
