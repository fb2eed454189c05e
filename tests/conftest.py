"""
Pytest fixtures for proton_wallet tests.

FakeChainApi stands in for the chain and history services: canned responses
per account / contract, injectable failures and latencies, and a log of every
call and POST. Contexts run on in-memory stores.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from proton_wallet.chain.keys import PrivateKey
from proton_wallet.config import Settings
from proton_wallet.core.exceptions import HistoryError, TransportError
from proton_wallet.models import Account, ChainInfo, ChainProvider, Permission, TokenBalance, TokenContract
from proton_wallet.wallet import WalletContext

CHAIN_ID = "384da888112027f0321850a169f737c33e53b388aad48b5adace4bab97f437e0"
HEAD_BLOCK_ID = "0a1b2c3d4e5f60718293a4b5c6d7e8f90011223344556677889900aabbccddee"
HEAD_BLOCK_NUM = 123456789
HEAD_BLOCK_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
BASE_URL = "https://sdk.test"
RATES_URL = "https://rates.test/v1/rates"

TOKEN_ABI = {
    "structs": [
        {
            "name": "transfer",
            "base": "",
            "fields": [
                {"name": "from", "type": "name"},
                {"name": "to", "type": "name"},
                {"name": "quantity", "type": "asset"},
                {"name": "memo", "type": "string"},
            ],
        },
        {"name": "open", "base": "", "fields": [{"name": "owner", "type": "name"}, {"name": "symbol", "type": "symbol"}]},
    ],
    "actions": [{"name": "transfer", "type": "transfer"}, {"name": "open", "type": "open"}],
    "types": [],
}


def history_transfer(trx_id: str, seq: int, frm: str, to: str, quantity: str, memo: str = "") -> dict[str, Any]:
    return {
        "trx_id": trx_id,
        "global_sequence": seq,
        "@timestamp": "2024-04-30T10:00:00.000",
        "act": {"account": "eosio.token", "name": "transfer", "data": {"from": frm, "to": to, "quantity": quantity, "memo": memo}},
    }


class FakeChainApi:
    """In-memory ChainApi. failures holds (method, key) pairs that raise; delays holds seconds per pair."""

    def __init__(self) -> None:
        self.accounts: dict[str, dict[str, Any]] = {}
        self.user_info: dict[str, dict[str, Any]] = {}
        self.balances: dict[str, list[dict[str, Any]]] = {}
        self.transfer_actions: dict[tuple[str, str, str], list[dict[str, Any]]] = {}
        self.abis: dict[str, dict[str, Any]] = {}
        self.key_accounts: dict[str, list[str]] = {}
        self.json_responses: dict[str, Any] = {}
        self.failures: set[tuple[str, str]] = set()
        self.delays: dict[tuple[str, str], float] = {}
        self.calls: list[tuple[str, str]] = []
        self.posts: list[tuple[str, dict[str, Any]]] = []
        self.pushed: list[dict[str, Any]] = []
        self.fail_posts = False

    async def _enter(self, method: str, key: str) -> None:
        self.calls.append((method, key))
        delay = self.delays.get((method, key))
        if delay:
            await asyncio.sleep(delay)
        if (method, key) in self.failures:
            if method in ("get_transfer_actions", "get_key_accounts", "get_currency_balances"):
                raise HistoryError(f"{method} failed", key=key)
            raise TransportError(f"{method} failed", key=key)

    def add_account(self, account_name: str, public_key: str, **profile: Any) -> None:
        self.accounts[account_name] = {
            "account_name": account_name,
            "permissions": [
                {"perm_name": "owner", "parent": "", "required_auth": {"threshold": 1, "keys": [{"key": public_key, "weight": 1}]}},
                {"perm_name": "active", "parent": "owner", "required_auth": {"threshold": 1, "keys": [{"key": public_key, "weight": 1}]}},
            ],
        }
        if profile:
            self.user_info[account_name] = {"acc": account_name, **profile}

    async def get_info(self, provider: ChainProvider) -> ChainInfo:
        await self._enter("get_info", provider.chain_id)
        return ChainInfo(
            chain_id=provider.chain_id,
            head_block_num=HEAD_BLOCK_NUM,
            head_block_id=HEAD_BLOCK_ID,
            head_block_time=HEAD_BLOCK_TIME,
        )

    async def get_account(self, provider: ChainProvider, account_name: str) -> dict[str, Any]:
        await self._enter("get_account", account_name)
        if account_name not in self.accounts:
            raise TransportError("unknown account", account=account_name, status_code=500)
        return self.accounts[account_name]

    async def get_table_rows(
        self,
        provider: ChainProvider,
        *,
        code: str,
        table: str,
        scope: str,
        lower_bound: str = "",
        upper_bound: str = "",
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        await self._enter("get_table_rows", lower_bound)
        row = self.user_info.get(lower_bound)
        return [row] if row else []

    async def get_key_accounts(self, provider: ChainProvider, public_key: str) -> list[str]:
        await self._enter("get_key_accounts", public_key)
        return [n for n in self.key_accounts.get(public_key, []) if "." not in n]

    async def get_currency_balances(self, provider: ChainProvider, account_name: str) -> list[dict[str, Any]]:
        await self._enter("get_currency_balances", account_name)
        return self.balances.get(account_name, [])

    async def get_transfer_actions(
        self, provider: ChainProvider, account_name: str, contract: str, symbol: str
    ) -> list[dict[str, Any]]:
        await self._enter("get_transfer_actions", f"{contract}:{symbol}")
        return self.transfer_actions.get((account_name, contract, symbol), [])

    async def get_raw_abi(self, provider: ChainProvider, account_name: str) -> dict[str, Any]:
        await self._enter("get_raw_abi", account_name)
        if account_name not in self.abis:
            raise TransportError("no abi", account=account_name)
        return self.abis[account_name]

    async def push_transaction(self, provider: ChainProvider, signed: dict[str, Any]) -> dict[str, Any]:
        await self._enter("push_transaction", provider.chain_id)
        self.pushed.append(signed)
        return {"transaction_id": f"{len(self.pushed):064x}", "processed": {"block_num": HEAD_BLOCK_NUM + 2}}

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        await self._enter("get_json", url)
        if url not in self.json_responses:
            raise TransportError("not found", url=url, status_code=404)
        return self.json_responses[url]

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any:
        await self._enter("post_json", url)
        self.posts.append((url, payload))
        if self.fail_posts:
            raise TransportError("callback unreachable", url=url)
        return {}


@pytest.fixture
def private_key() -> PrivateKey:
    return PrivateKey.generate()


@pytest.fixture
def provider() -> ChainProvider:
    return ChainProvider(
        chain_id=CHAIN_ID,
        chain_url="https://rpc.test",
        state_history_url="https://history.test",
        name="Proton Testnet",
        exchange_rate_url=RATES_URL,
    )


@pytest.fixture
def xpr_contract() -> TokenContract:
    return TokenContract(
        chain_id=CHAIN_ID, contract="eosio.token", symbol="XPR", precision=4, name="Proton", rates={"USD": 0.01}, system_token=True
    )


@pytest.fixture
def xusdc_contract() -> TokenContract:
    return TokenContract(chain_id=CHAIN_ID, contract="xtokens", symbol="XUSDC", precision=6, name="USD Coin", rates={"USD": 1.0})


@pytest.fixture
def fake_api(private_key) -> FakeChainApi:
    """alice holds XPR, XUSDC and an unlisted token; history for each; bob and carol as counterparties."""
    api = FakeChainApi()
    api.add_account("alice", private_key.public_key, name="Alice", avatar="YWxpY2U=", verified=True)
    api.user_info["bob"] = {"acc": "bob", "name": "Bob", "avatar": "", "verified": False}
    api.user_info["carol"] = {"acc": "carol", "name": "Carol", "avatar": "", "verified": True}
    api.user_info["dapp"] = {"acc": "dapp", "name": "Some Dapp", "avatar": "", "verified": True}
    api.balances["alice"] = [
        {"contract": "eosio.token", "symbol": "XPR", "precision": 4, "amount": 100.0},
        {"contract": "xtokens", "symbol": "XUSDC", "precision": 6, "amount": 25.5},
        {"contract": "unknown.tkn", "symbol": "FOO", "precision": 4, "amount": 3.0},
    ]
    api.transfer_actions[("alice", "eosio.token", "XPR")] = [
        history_transfer("aa" * 32, 11, "alice", "bob", "1.0000 XPR", "lunch"),
        history_transfer("bb" * 32, 12, "carol", "alice", "5.0000 XPR"),
    ]
    api.transfer_actions[("alice", "xtokens", "XUSDC")] = [
        history_transfer("cc" * 32, 13, "bob", "alice", "2.000000 XUSDC"),
    ]
    api.transfer_actions[("alice", "unknown.tkn", "FOO")] = [
        history_transfer("dd" * 32, 14, "carol", "alice", "3.0000 FOO"),
    ]
    api.abis["eosio.token"] = TOKEN_ABI
    api.abis["xtokens"] = TOKEN_ABI
    return api


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        base_url=BASE_URL,
        db_path=tmp_path / "wallet.db",
        vault_key=None,
        max_concurrency=4,
        http_timeout_sec=5.0,
        display_currency="USD",
    )


@pytest.fixture
def alice(private_key) -> Account:
    keys = (private_key.public_key,)
    return Account(
        chain_id=CHAIN_ID,
        name="alice",
        permissions=(Permission("owner", "", 1, keys), Permission("active", "owner", 1, keys)),
    )


@pytest.fixture
def ctx(settings, fake_api, provider, xpr_contract, xusdc_contract) -> WalletContext:
    """Context with the test chain provider and two listed token contracts."""
    context = WalletContext(settings, api=fake_api)
    context.chain_providers.upsert(provider)
    context.token_contracts.upsert_many([xpr_contract, xusdc_contract])
    return context


@pytest.fixture
def active_ctx(ctx, alice, private_key) -> WalletContext:
    """ctx with alice active, her key in the vault and an XPR balance of 100."""
    ctx.vault.store_secret(private_key.public_key, private_key.to_string())
    ctx.accounts.upsert(alice)
    ctx.active_account.set(alice)
    ctx.token_balances.upsert(TokenBalance(account_id=alice.id, contract="eosio.token", symbol="XPR", precision=4, amount=100.0))
    return ctx
