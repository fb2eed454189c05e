"""
Signing-request URIs.

    esr://<base64url, no padding>

The payload is one header byte followed by the body. The low 7 bits of the
header hold the protocol version (2); the high bit marks a raw-deflated
body. The body is the JSON request:

    {
      "chain_id": "...", "requester": "dapp", "sid": "abc123",
      "identity": false, "broadcast": true,
      "actions": [{"account": ..., "name": ..., "authorization": [...], "data": {...}}],
      "callback": {"url": "https://host/cb?s={{sid}}", "background": true},
      "info": {"rs": "..."}
    }

Authorizations and action data may use the signer placeholders, which
resolve to the accepting account and its active permission.
"""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from dataclasses import dataclass, field
from typing import Any

from proton_wallet.chain.abi import is_valid_name
from proton_wallet.chain.transaction import ACTIVE_PERMISSION, Action, PermissionLevel
from proton_wallet.core.exceptions import SigningRequestError

ESR_SCHEME = "esr:"
PROTOCOL_VERSION = 2
COMPRESSED_FLAG = 0x80

PLACEHOLDER_ACTOR = "............1"
PLACEHOLDER_PERMISSION = "............2"


@dataclass(frozen=True)
class RequestCallback:
    url: str
    background: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "background": self.background}


@dataclass(frozen=True)
class SigningRequest:
    """A decoded request. Read-only; resolution produces a ResolvedRequest."""

    chain_id: str
    requester: str
    sid: str = ""
    actions: tuple[Action, ...] = ()
    is_identity: bool = False
    broadcast: bool = True
    callback: RequestCallback | None = None
    info: dict[str, str] = field(default_factory=dict)

    @property
    def contracts(self) -> list[str]:
        """Distinct target contract accounts, in order of first appearance."""
        return list(dict.fromkeys(a.account for a in self.actions))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "chain_id": self.chain_id,
            "requester": self.requester,
            "sid": self.sid,
            "identity": self.is_identity,
            "broadcast": self.broadcast,
            "actions": [a.to_dict() for a in self.actions],
            "info": dict(self.info),
        }
        if self.callback is not None:
            out["callback"] = self.callback.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SigningRequest":
        callback = data.get("callback")
        if isinstance(callback, str):
            callback = {"url": callback}
        if callback is not None and not isinstance(callback, dict):
            raise ValueError("callback must be a url or an object")
        actions = data.get("actions") or ()
        if not isinstance(actions, (list, tuple)):
            raise ValueError("actions must be a list")
        info = data.get("info") or {}
        if not isinstance(info, dict):
            raise ValueError("info must be an object")
        is_identity = bool(data.get("identity", False))
        return cls(
            chain_id=str(data["chain_id"]),
            requester=str(data["requester"]),
            sid=str(data.get("sid") or ""),
            actions=tuple(Action.from_dict(a) for a in actions),
            is_identity=is_identity,
            # identity proofs are never broadcast
            broadcast=bool(data.get("broadcast", True)) and not is_identity,
            callback=RequestCallback(url=str(callback["url"]), background=bool(callback.get("background", True)))
            if callback and callback.get("url")
            else None,
            info={str(k): str(v) for k, v in info.items()},
        )


def resolve_authorization(level: PermissionLevel, signer: str) -> PermissionLevel:
    """Bind placeholder authorizations to signer@active."""
    actor = signer if level.actor == PLACEHOLDER_ACTOR else level.actor
    permission = ACTIVE_PERMISSION if level.permission == PLACEHOLDER_PERMISSION else level.permission
    return PermissionLevel(actor=actor, permission=permission)


def resolve_placeholders(value: Any, signer: str) -> Any:
    """Replace signer placeholders anywhere in action data."""
    if value == PLACEHOLDER_ACTOR:
        return signer
    if value == PLACEHOLDER_PERMISSION:
        return ACTIVE_PERMISSION
    if isinstance(value, dict):
        return {k: resolve_placeholders(v, signer) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_placeholders(v, signer) for v in value]
    return value


def encode_signing_request(request: SigningRequest, compress: bool = True) -> str:
    body = json.dumps(request.to_dict(), separators=(",", ":")).encode("utf-8")
    header = PROTOCOL_VERSION
    if compress:
        deflater = zlib.compressobj(9, zlib.DEFLATED, -15)
        body = deflater.compress(body) + deflater.flush()
        header |= COMPRESSED_FLAG
    encoded = base64.urlsafe_b64encode(bytes([header]) + body).decode("ascii").rstrip("=")
    return f"{ESR_SCHEME}//{encoded}"


def decode_signing_request(uri: str) -> SigningRequest:
    """Decode an esr: URI. Any malformed input raises SigningRequestError."""
    raw = (uri or "").strip()
    if not raw.lower().startswith(ESR_SCHEME):
        raise SigningRequestError("not a signing request uri", stage="parse")
    payload = raw[len(ESR_SCHEME):].lstrip("/")
    try:
        data = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
    except (binascii.Error, ValueError) as e:
        raise SigningRequestError("signing request is not base64url", stage="parse") from e
    if not data:
        raise SigningRequestError("empty signing request", stage="parse")

    header, body = data[0], data[1:]
    version = header & ~COMPRESSED_FLAG
    if version != PROTOCOL_VERSION:
        raise SigningRequestError("unsupported signing request version", stage="parse", version=version)
    if header & COMPRESSED_FLAG:
        try:
            body = zlib.decompress(body, -15)
        except zlib.error as e:
            raise SigningRequestError("signing request body could not be inflated", stage="parse") from e

    try:
        decoded = json.loads(body.decode("utf-8"))
        if not isinstance(decoded, dict):
            raise ValueError("body is not an object")
        request = SigningRequest.from_dict(decoded)
    except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        raise SigningRequestError("malformed signing request body", stage="parse", reason=str(e)) from e

    if not request.chain_id:
        raise SigningRequestError("signing request has no chain id", stage="parse")
    if not is_valid_name(request.requester):
        raise SigningRequestError("invalid requester", stage="parse", requester=request.requester)
    if request.is_identity and not request.sid:
        raise SigningRequestError("identity request has no sid", stage="parse")
    return request
