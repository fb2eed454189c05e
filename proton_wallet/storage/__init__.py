"""
Storage: persisted key/value state, the key vault and in-memory canonical collections.
"""

from proton_wallet.storage.collections import CollectionStore, ValueStore
from proton_wallet.storage.kv import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore
from proton_wallet.storage.vault import (
    MemorySecretStore,
    SecretStore,
    SqliteSecretStore,
    retrieve_private_key,
)

__all__ = [
    "CollectionStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "MemorySecretStore",
    "SecretStore",
    "SqliteKeyValueStore",
    "SqliteSecretStore",
    "ValueStore",
    "retrieve_private_key",
]
