"""
Secret store: private keys keyed by public key.

Secrets are read per signing operation and never cached here. The SQLite
backend encrypts every value with Fernet before it reaches disk.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from proton_wallet.chain.keys import PrivateKey
from proton_wallet.core.exceptions import SecretStoreError, ValidationError
from proton_wallet.models import Account

SCHEMA_SECRETS = """
CREATE TABLE IF NOT EXISTS secrets (
    public_key TEXT PRIMARY KEY,
    secret_encrypted BLOB NOT NULL
);
"""


class SecretStore(ABC):
    @abstractmethod
    def store_secret(self, public_key: str, secret: str) -> None:
        ...

    @abstractmethod
    def retrieve_secret(self, public_key: str) -> str | None:
        """Return the secret or None when no secret is stored for public_key."""
        ...

    @abstractmethod
    def delete_secret(self, public_key: str) -> None:
        ...


class MemorySecretStore(SecretStore):
    def __init__(self) -> None:
        self._secrets: dict[str, str] = {}
        self._lock = threading.Lock()

    def store_secret(self, public_key: str, secret: str) -> None:
        with self._lock:
            self._secrets[public_key] = secret

    def retrieve_secret(self, public_key: str) -> str | None:
        with self._lock:
            return self._secrets.get(public_key)

    def delete_secret(self, public_key: str) -> None:
        with self._lock:
            self._secrets.pop(public_key, None)


class SqliteSecretStore(SecretStore):
    """Fernet-encrypted secrets in SQLite."""

    def __init__(self, db_path: str | Path, key: str | bytes) -> None:
        try:
            self._cipher = Fernet(key.encode("utf-8") if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise SecretStoreError("invalid vault key") from e
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        with self._cursor() as cur:
            cur.executescript(SCHEMA_SECRETS)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _cursor(self):
        conn = self._connect()
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def store_secret(self, public_key: str, secret: str) -> None:
        encrypted = self._cipher.encrypt(secret.encode("utf-8"))
        try:
            with self._lock, self._cursor() as cur:
                cur.execute(
                    "INSERT INTO secrets (public_key, secret_encrypted) VALUES (?, ?) "
                    "ON CONFLICT(public_key) DO UPDATE SET secret_encrypted = excluded.secret_encrypted",
                    (public_key, encrypted),
                )
        except sqlite3.Error as e:
            raise SecretStoreError("unable to store secret", public_key=public_key) from e

    def retrieve_secret(self, public_key: str) -> str | None:
        try:
            with self._lock, self._cursor() as cur:
                row = cur.execute(
                    "SELECT secret_encrypted FROM secrets WHERE public_key = ?", (public_key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise SecretStoreError("unable to read secret", public_key=public_key) from e
        if row is None:
            return None
        try:
            return self._cipher.decrypt(row["secret_encrypted"]).decode("utf-8")
        except InvalidToken as e:
            raise SecretStoreError("secret could not be decrypted", public_key=public_key) from e

    def delete_secret(self, public_key: str) -> None:
        try:
            with self._lock, self._cursor() as cur:
                cur.execute("DELETE FROM secrets WHERE public_key = ?", (public_key,))
        except sqlite3.Error as e:
            raise SecretStoreError("unable to delete secret", public_key=public_key) from e


def retrieve_private_key(vault: SecretStore, account: Account, permission: str = "active") -> PrivateKey:
    """First stored key among the account's keys for permission."""
    keys = account.keys_for_permission(permission)
    if not keys:
        raise ValidationError("account has no keys for permission", account=account.name, permission=permission)
    for public_key in keys:
        secret = vault.retrieve_secret(public_key)
        if secret:
            return PrivateKey.from_string(secret)
    raise SecretStoreError("no private key stored for permission", account=account.name, permission=permission)
