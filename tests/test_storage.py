"""
Key/value stores, the Fernet vault, canonical collection stores and the event bus.
"""

from __future__ import annotations

import sqlite3

import pytest

from proton_wallet.chain.keys import PrivateKey
from proton_wallet.core.events import Collection, EventBus, did_set, will_set
from proton_wallet.core.exceptions import ErrorKind, SecretStoreError, ValidationError
from proton_wallet.models import Account, Permission, TokenContract
from proton_wallet.storage import (
    CollectionStore,
    MemoryKeyValueStore,
    MemorySecretStore,
    SqliteKeyValueStore,
    SqliteSecretStore,
    ValueStore,
    retrieve_private_key,
)
from proton_wallet.sync.merge import TOKEN_CONTRACT_PRESERVE


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_kv_set_get_delete(backend, tmp_path):
    store = MemoryKeyValueStore() if backend == "memory" else SqliteKeyValueStore(tmp_path / "kv.db")

    store.set("accounts", [{"name": "alice"}])
    store.set("account", {"name": "alice"})
    store.set("account", {"name": "bob"})

    assert store.get("accounts") == [{"name": "alice"}]
    assert store.get("account") == {"name": "bob"}
    assert store.get("missing") is None

    store.set("account", None)
    assert store.get("account") is None
    store.delete("accounts")
    assert store.get("accounts") is None


def test_sqlite_kv_persists_across_instances(tmp_path):
    SqliteKeyValueStore(tmp_path / "kv.db").set("contacts", [1, 2])

    assert SqliteKeyValueStore(tmp_path / "kv.db").get("contacts") == [1, 2]


def test_sqlite_vault_encrypts_at_rest(tmp_path):
    db_path = tmp_path / "vault.db"
    vault = SqliteSecretStore(db_path, SqliteSecretStore.generate_key())
    key = PrivateKey.generate()

    vault.store_secret(key.public_key, key.to_string())

    assert vault.retrieve_secret(key.public_key) == key.to_string()
    conn = sqlite3.connect(db_path)
    raw = conn.execute("SELECT secret_encrypted FROM secrets").fetchone()[0]
    conn.close()
    assert key.to_string().encode() not in raw

    vault.delete_secret(key.public_key)
    assert vault.retrieve_secret(key.public_key) is None


def test_sqlite_vault_wrong_key(tmp_path):
    db_path = tmp_path / "vault.db"
    SqliteSecretStore(db_path, SqliteSecretStore.generate_key()).store_secret("pub", "secret")

    with pytest.raises(SecretStoreError) as exc_info:
        SqliteSecretStore(db_path, SqliteSecretStore.generate_key()).retrieve_secret("pub")

    assert exc_info.value.kind is ErrorKind.SECRET_STORE


def test_sqlite_vault_invalid_key(tmp_path):
    with pytest.raises(SecretStoreError):
        SqliteSecretStore(tmp_path / "vault.db", "not-a-fernet-key")


def test_retrieve_private_key_for_account():
    key = PrivateKey.generate()
    other = PrivateKey.generate()
    account = Account(
        chain_id="c1",
        name="alice",
        permissions=(Permission("active", "owner", 1, (other.public_key, key.public_key)),),
    )
    vault = MemorySecretStore()

    with pytest.raises(SecretStoreError):
        retrieve_private_key(vault, account)

    vault.store_secret(key.public_key, key.to_string())
    assert retrieve_private_key(vault, account).public_key == key.public_key

    with pytest.raises(ValidationError):
        retrieve_private_key(vault, account, "owner")


def _contract(symbol, rates=None):
    return TokenContract(chain_id="c1", contract="eosio.token", symbol=symbol, precision=4, rates=rates or {})


def test_collection_store_emits_will_and_did_set():
    bus = EventBus()
    store = CollectionStore(Collection.TOKEN_CONTRACTS, bus, preserve=TOKEN_CONTRACT_PRESERVE)
    seen = []
    bus.subscribe(will_set(Collection.TOKEN_CONTRACTS), lambda e: seen.append(("will", len(store), e.value)))
    bus.subscribe(did_set(Collection.TOKEN_CONTRACTS), lambda e: seen.append(("did", len(store), e.value)))

    store.upsert(_contract("XPR", {"USD": 0.01}))

    assert [s[0] for s in seen] == ["will", "did"]
    assert seen[0][1] == 0
    assert seen[1][1] == 1
    assert seen[0][2] == seen[1][2] == store.get()


def test_collection_store_upsert_preserves_and_remove():
    store = CollectionStore(Collection.TOKEN_CONTRACTS, EventBus(), preserve=TOKEN_CONTRACT_PRESERVE)
    store.upsert_many([_contract("XPR", {"USD": 0.01}), _contract("FOO")])

    store.upsert(_contract("XPR"))

    assert store.find("c1:eosio.token:XPR").rates == {"USD": 0.01}
    assert isinstance(store.get(), tuple)
    assert store.remove("c1:eosio.token:FOO").symbol == "FOO"
    assert store.remove("c1:eosio.token:FOO") is None
    assert [c.symbol for c in store.get()] == ["XPR"]

    store.replace_all([_contract("BAR")])
    assert [c.symbol for c in store.get()] == ["BAR"]
    store.clear()
    assert store.get() == ()


def test_value_store_events():
    bus = EventBus()
    store = ValueStore(Collection.ACTIVE_ACCOUNT, bus)
    values = []
    bus.subscribe(did_set(Collection.ACTIVE_ACCOUNT), lambda e: values.append(e.value))

    store.set("alice")
    store.set(None)

    assert values == ["alice", None]
    assert store.get() is None


def test_event_bus_unsubscribe_and_failing_handler():
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("observer bug")

    bus.subscribe("x", broken)
    unsubscribe = bus.subscribe("x", lambda e: calls.append(e.value))

    bus.emit("x", 1)
    unsubscribe()
    bus.emit("x", 2)

    assert calls == [1]
    assert bus.handler_count("x") == 1
