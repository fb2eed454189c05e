"""
Private keys and signatures.

Keys are ed25519 keypairs (solders.Keypair). Private keys travel as base58
strings of the 64-byte secret (or a JSON array of those bytes); public keys
and signatures are base58 strings. A PrivateKey lives only for the scope of
one signing operation and is never logged.
"""

from __future__ import annotations

import json

import base58

from proton_wallet.core.exceptions import ValidationError

SECRET_KEY_LENGTH = 64


class PrivateKey:
    """Thin wrapper over solders Keypair."""

    def __init__(self, keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_string(cls, private_key: str) -> "PrivateKey":
        """Load from base58 string or JSON array of 64 bytes."""
        from solders.keypair import Keypair

        raw = (private_key or "").strip()
        if not raw:
            raise ValidationError("private key must be non-empty")
        try:
            if raw.startswith("["):
                secret = bytes(json.loads(raw)[:64])
            else:
                secret = base58.b58decode(raw)
            if len(secret) != SECRET_KEY_LENGTH:
                raise ValueError(f"expected {SECRET_KEY_LENGTH} bytes, got {len(secret)}")
            return cls(Keypair.from_bytes(secret))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            raise ValidationError("unable to parse private key", reason=type(e).__name__) from e

    @classmethod
    def generate(cls) -> "PrivateKey":
        from solders.keypair import Keypair

        return cls(Keypair())

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    def sign(self, data: bytes) -> str:
        """Sign data and return the base58 signature."""
        return str(self._keypair.sign_message(data))

    def to_string(self) -> str:
        return base58.b58encode(bytes(self._keypair)).decode("ascii")

    def __repr__(self) -> str:
        return f"PrivateKey(public_key={self.public_key!r})"


def verify_signature(public_key: str, data: bytes, signature: str) -> bool:
    """Check a base58 signature against a base58 public key."""
    from solders.pubkey import Pubkey
    from solders.signature import Signature

    try:
        sig = Signature.from_string(signature)
        return bool(sig.verify(Pubkey.from_string(public_key), data))
    except ValueError:
        return False
