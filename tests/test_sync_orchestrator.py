"""
Sync pipeline tests against FakeChainApi: stage order, placeholders, best-effort fan-outs,
hard failures, sync_all_accounts, requirements and key-account discovery.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import BASE_URL, CHAIN_ID, RATES_URL

from proton_wallet.core.events import ACCOUNT_DID_UPDATE, SYNC_COMPLETED, Collection, did_set
from proton_wallet.core.exceptions import ErrorKind, HistoryError, TransportError, ValidationError
from proton_wallet.models import Account


def test_sync_account_full_pipeline(ctx, fake_api, alice):
    """Profile, balances, history from all balances and contacts in first-seen order."""
    ctx.accounts.upsert(alice)

    synced = asyncio.run(ctx.sync.sync_account(alice))

    assert synced.nick_name == "Alice"
    assert synced.verified is True
    assert synced.keys_for_permission("active") == list(alice.keys_for_permission("active"))
    assert len(ctx.token_balances.filter(lambda b: b.account_id == alice.id)) == 3
    assert len(ctx.token_transfer_actions) == 4
    assert [c.name for c in ctx.contacts.get()] == ["bob", "carol"]
    assert ctx.contacts.find(f"{CHAIN_ID}:carol").verified is True
    assert ctx.kv.get("tokenBalances")
    assert ctx.kv.get("contacts")


def test_sync_account_stage_order(ctx, fake_api, alice):
    ctx.accounts.upsert(alice)

    asyncio.run(ctx.sync.sync_account(alice))

    methods = [m for m, _ in fake_api.calls]
    first = {m: methods.index(m) for m in reversed(methods)}
    assert first["get_account"] < first["get_table_rows"] < first["get_currency_balances"] < first["get_transfer_actions"]
    last_history = max(i for i, m in enumerate(methods) if m == "get_transfer_actions")
    contact_lookups = [i for i, (m, k) in enumerate(fake_api.calls) if m == "get_table_rows" and k in ("bob", "carol")]
    assert contact_lookups and min(contact_lookups) > last_history


def test_unknown_token_gets_blacklisted_placeholder_contract(ctx, alice):
    ctx.accounts.upsert(alice)

    asyncio.run(ctx.sync.sync_account(alice))

    placeholder = ctx.token_contracts.find(f"{CHAIN_ID}:unknown.tkn:FOO")
    assert placeholder is not None
    assert placeholder.is_blacklisted is True
    assert placeholder.supply == 0
    assert placeholder.max_supply == 0
    listed = ctx.token_contracts.find(f"{CHAIN_ID}:eosio.token:XPR")
    assert listed.is_blacklisted is False
    assert listed.rates == {"USD": 0.01}


def test_sync_completes_when_one_of_three_history_fetches_fails(ctx, fake_api, alice):
    fake_api.failures.add(("get_transfer_actions", "xtokens:XUSDC"))
    ctx.accounts.upsert(alice)

    asyncio.run(ctx.sync.sync_account(alice))

    balance_ids = {a.token_balance_id for a in ctx.token_transfer_actions.get()}
    assert balance_ids == {f"{alice.id}:eosio.token:XPR", f"{alice.id}:unknown.tkn:FOO"}
    assert len(ctx.token_transfer_actions) == 3


def test_contact_fetch_failure_is_ignored(ctx, fake_api, alice):
    fake_api.failures.add(("get_table_rows", "bob"))
    ctx.accounts.upsert(alice)

    asyncio.run(ctx.sync.sync_account(alice))

    assert [c.name for c in ctx.contacts.get()] == ["carol"]


def test_stage_one_failure_aborts_before_balances(ctx, fake_api, alice):
    fake_api.failures.add(("get_account", "alice"))
    ctx.accounts.upsert(alice)

    with pytest.raises(TransportError):
        asyncio.run(ctx.sync.sync_account(alice))

    assert not any(m == "get_currency_balances" for m, _ in fake_api.calls)
    assert len(ctx.token_balances) == 0


def test_stage_two_failure_aborts(ctx, fake_api, alice):
    fake_api.failures.add(("get_table_rows", "alice"))
    ctx.accounts.upsert(alice)

    with pytest.raises(TransportError):
        asyncio.run(ctx.sync.sync_account(alice))

    assert not any(m == "get_currency_balances" for m, _ in fake_api.calls)


def test_balance_failure_aborts(ctx, fake_api, alice):
    fake_api.failures.add(("get_currency_balances", "alice"))
    ctx.accounts.upsert(alice)

    with pytest.raises(HistoryError):
        asyncio.run(ctx.sync.sync_account(alice))


def test_sync_events(ctx, alice):
    events = []
    ctx.subscribe(SYNC_COMPLETED, events.append)
    ctx.subscribe(ACCOUNT_DID_UPDATE, events.append)
    ctx.subscribe(did_set(Collection.TOKEN_BALANCES), events.append)
    ctx.accounts.upsert(alice)

    asyncio.run(ctx.sync.sync_account(alice))

    names = [e.name for e in events]
    assert names[-1] == SYNC_COMPLETED
    assert ACCOUNT_DID_UPDATE in names
    assert "token_balances.did_set" in names
    assert events[-1].value.name == "alice"


def test_sync_keeps_active_account_current(ctx, alice):
    ctx.accounts.upsert(alice)
    ctx.active_account.set(alice)

    asyncio.run(ctx.sync.sync_account(alice))

    assert ctx.active_account.get().nick_name == "Alice"


def test_sync_all_accounts_isolates_failures(ctx, fake_api, alice):
    broken = Account(chain_id=CHAIN_ID, name="broken")
    ctx.accounts.upsert_many([broken, alice])

    results = asyncio.run(ctx.sync.sync_all_accounts())

    assert set(results) == {broken.id, alice.id}
    assert not results[broken.id].ok
    assert results[broken.id].error.kind is ErrorKind.TRANSPORT
    assert results[alice.id].ok
    assert results[alice.id].value.nick_name == "Alice"


def test_sync_account_without_provider_is_validation_error(ctx):
    stray = Account(chain_id="other-chain", name="alice")

    with pytest.raises(ValidationError):
        asyncio.run(ctx.sync.sync_account(stray))


def test_fetch_requirements_providers_contracts_and_rates(ctx, fake_api):
    """Providers are added once; contracts merged keeping rates; rates refreshed."""
    ctx.chain_providers.clear()
    fake_api.json_responses[f"{BASE_URL}/v1/chain/info"] = {
        CHAIN_ID: {
            "chainId": CHAIN_ID,
            "chainUrl": "https://rpc.test",
            "stateHistoryUrl": "https://history.test",
            "name": "Proton Testnet",
            "iconUrl": "",
            "usersInfoTableCode": "eosio.proton",
            "usersInfoTableScope": "eosio.proton",
            "exchangeRateUrl": RATES_URL,
        }
    }
    fake_api.json_responses[f"{BASE_URL}/v1/chain/tokens"] = {
        "xpr": {"chainId": CHAIN_ID, "contract": "eosio.token", "symbol": "XPR", "precision": 4, "supply": "1000.0000 XPR"},
        "loan": {"chainId": CHAIN_ID, "contract": "loan.token", "symbol": "LOAN", "precision": 4},
    }
    fake_api.json_responses[RATES_URL] = [
        {"contract": "loan.token", "symbol": "LOAN", "rates": {"usd": 0.5}},
    ]

    asyncio.run(ctx.sync.fetch_requirements())

    assert ctx.chain_provider.chain_url == "https://rpc.test"
    assert ctx.chain_provider.exchange_rate_url == RATES_URL
    xpr = ctx.token_contracts.find(f"{CHAIN_ID}:eosio.token:XPR")
    assert xpr.rates == {"USD": 0.01}
    assert xpr.supply == 1000.0
    assert ctx.token_contracts.find(f"{CHAIN_ID}:loan.token:LOAN").rates == {"USD": 0.5}
    assert ctx.kv.get("chainProviders")


def test_fetch_requirements_survives_rate_failure(ctx, fake_api):
    fake_api.json_responses[f"{BASE_URL}/v1/chain/info"] = {}
    fake_api.json_responses[f"{BASE_URL}/v1/chain/tokens"] = {}

    asyncio.run(ctx.sync.fetch_requirements())

    assert len(ctx.token_contracts) == 2


def test_update_exchange_rates_requires_provider(ctx):
    ctx.chain_providers.clear()

    with pytest.raises(ValidationError):
        asyncio.run(ctx.sync.update_exchange_rates())


def test_find_accounts_enriches_each_account(ctx, fake_api, private_key):
    fake_api.key_accounts[private_key.public_key] = ["alice", "ghost"]

    accounts = asyncio.run(ctx.sync.find_accounts(private_key))

    assert [a.name for a in accounts] == ["alice", "ghost"]
    assert accounts[0].nick_name == "Alice"
    assert accounts[0].is_key_associated(private_key.public_key)
    assert accounts[1].permissions == ()


def test_find_accounts_empty_is_history_error(ctx, private_key):
    with pytest.raises(HistoryError):
        asyncio.run(ctx.sync.find_accounts(private_key.public_key))


def test_find_accounts_malformed_account_falls_back_to_bare_account(ctx, fake_api, private_key):
    fake_api.key_accounts[private_key.public_key] = ["alice", "bob"]
    fake_api.accounts["bob"] = {"permissions": [{"perm_name": "active", "required_auth": {"keys": [{}]}}]}

    accounts = asyncio.run(ctx.sync.find_accounts(private_key))

    assert [a.name for a in accounts] == ["alice", "bob"]
    assert accounts[0].nick_name == "Alice"
    assert accounts[1] == Account(chain_id=CHAIN_ID, name="bob")
