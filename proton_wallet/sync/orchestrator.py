"""
Account sync pipeline.

Stages per account, strictly in order:
  1. account permissions            (hard failure aborts)
  2. user info row                  (hard failure aborts)
  3. balances + placeholder contracts for unknown tokens
  4. transfer history per balance   (fan-out, per-item failures logged)
  5. contact profiles per counterparty (fan-out, per-item failures logged)
  6. persist everything and emit sync_completed

Also the requirement fetches the pipeline depends on: chain providers,
token contracts and exchange rates, and key -> account discovery.
"""

from __future__ import annotations

import dataclasses
import re
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from proton_wallet.chain.abi import Asset
from proton_wallet.chain.keys import PrivateKey
from proton_wallet.core.events import ACCOUNT_DID_UPDATE, SYNC_COMPLETED
from proton_wallet.core.exceptions import ChainError, HistoryError, ValidationError, WalletError
from proton_wallet.models import (
    Account,
    ChainProvider,
    Contact,
    Permission,
    TokenBalance,
    TokenContract,
    TokenTransferAction,
)
from proton_wallet.scheduler import Result
from proton_wallet.sync.merge import merge_transfer_actions
from proton_wallet.wallet_logging import bind_account, get_logger

if TYPE_CHECKING:
    from proton_wallet.chain.client import ChainApi
    from proton_wallet.wallet import WalletContext

logger = get_logger(__name__)

USERS_INFO_TABLE = "usersinfo"

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_keys(data: dict[str, Any]) -> dict[str, Any]:
    """chainUrl -> chain_url; snake_case keys pass through."""
    return {_CAMEL_RE.sub("_", k).lower(): v for k, v in data.items()}


def _as_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, str) and " " in value.strip():
        return Asset.parse(value).amount
    return float(value)


def chain_provider_from_dict(data: dict[str, Any]) -> ChainProvider:
    return ChainProvider.from_dict(_snake_keys(data))


def token_contract_from_dict(data: dict[str, Any]) -> TokenContract:
    fields = _snake_keys(data)
    fields["precision"] = int(fields.get("precision") or 0)
    fields["supply"] = _as_float(fields.get("supply"))
    fields["max_supply"] = _as_float(fields.get("max_supply"))
    fields["rates"] = {str(k).upper(): float(v) for k, v in (fields.get("rates") or {}).items()}
    return TokenContract.from_dict(fields)


def account_from_chain(chain_id: str, data: dict[str, Any]) -> Account:
    """Map a get_account response; permissions only, profile fields left empty."""
    permissions = []
    for raw in data.get("permissions") or ():
        auth = raw.get("required_auth") or {}
        permissions.append(
            Permission(
                perm_name=str(raw.get("perm_name", "")),
                parent=str(raw.get("parent", "")),
                threshold=int(auth.get("threshold", 1)),
                keys=tuple(str(k["key"]) for k in auth.get("keys") or () if k.get("key")),
            )
        )
    return Account(chain_id=chain_id, name=str(data["account_name"]), permissions=tuple(permissions))


def balance_from_history(account: Account, raw: dict[str, Any]) -> TokenBalance:
    return TokenBalance(
        account_id=account.id,
        contract=str(raw["contract"]),
        symbol=str(raw["symbol"]),
        precision=int(raw.get("precision") or 0),
        amount=float(raw.get("amount") or 0.0),
    )


def placeholder_contract(balance: TokenBalance) -> TokenContract:
    """Stand-in for a token the provider does not list, so balances always resolve a contract."""
    return TokenContract(
        chain_id=balance.chain_id,
        contract=balance.contract,
        symbol=balance.symbol,
        precision=balance.precision,
        name=balance.symbol,
        supply=0.0,
        max_supply=0.0,
        is_blacklisted=True,
    )


def transfer_action_from_history(
    account: Account, balance: TokenBalance, raw: dict[str, Any]
) -> TokenTransferAction | None:
    """Map one history action; None when it is not a well-formed transfer."""
    act = raw.get("act") or {}
    data = act.get("data") or {}
    from_account, to_account, quantity = data.get("from"), data.get("to"), data.get("quantity")
    trx_id = raw.get("trx_id")
    if not (trx_id and from_account and to_account and quantity):
        return None
    return TokenTransferAction(
        chain_id=account.chain_id,
        account_id=account.id,
        token_balance_id=balance.id,
        token_contract_id=balance.token_contract_id,
        contract=balance.contract,
        trx_id=str(trx_id),
        global_sequence=int(raw.get("global_sequence") or 0),
        date=str(raw.get("@timestamp") or raw.get("timestamp") or ""),
        sent=from_account == account.name,
        from_account=str(from_account),
        to_account=str(to_account),
        quantity=str(quantity),
        memo=str(data.get("memo") or ""),
        name=str(act.get("name") or "transfer"),
    )


def distinct_counterparties(actions: list[TokenTransferAction]) -> list[str]:
    """Counterparty names in order of first appearance."""
    seen: dict[str, None] = {}
    for action in actions:
        if action.other:
            seen.setdefault(action.other, None)
    return list(seen)


async def fetch_user_info(api: ChainApi, provider: ChainProvider, name: str) -> dict[str, Any] | None:
    """The users-info row for name, or None when the account has none."""
    rows = await api.get_table_rows(
        provider,
        code=provider.users_info_table_code,
        table=USERS_INFO_TABLE,
        scope=provider.users_info_table_scope,
        lower_bound=name,
        upper_bound=name,
        limit=1,
    )
    for row in rows:
        if row.get("acc", name) == name:
            return row
    return None


def contact_from_user_info(chain_id: str, name: str, row: dict[str, Any] | None) -> Contact:
    row = row or {}
    return Contact(
        chain_id=chain_id,
        name=name,
        nick_name=str(row.get("name") or ""),
        avatar=str(row.get("avatar") or ""),
        verified=bool(row.get("verified")),
    )


class SyncOrchestrator:
    """Runs the sync pipeline against the collections owned by a WalletContext."""

    def __init__(self, ctx: WalletContext) -> None:
        self._ctx = ctx

    async def _concurrent(self, operation: Callable[[], Awaitable[Any]], name: str) -> Any:
        result = await self._ctx.scheduler.concurrent(operation, name=name)
        return result.unwrap()

    # stage 1
    async def fetch_account(self, provider: ChainProvider, name: str) -> Account:
        data = await self._concurrent(lambda: self._ctx.api.get_account(provider, name), "get_account")
        try:
            return account_from_chain(provider.chain_id, data)
        except (KeyError, TypeError, ValueError) as e:
            raise ChainError("malformed account response", endpoint="/v1/chain/get_account", account=name) from e

    # stage 2
    async def refresh_user_info(self, account: Account) -> Account:
        provider = self._ctx.provider_for(account.chain_id)
        row = await self._concurrent(lambda: fetch_user_info(self._ctx.api, provider, account.name), "get_user_info")
        updated = dataclasses.replace(
            account,
            nick_name=str((row or {}).get("name") or ""),
            avatar=str((row or {}).get("avatar") or ""),
            verified=bool((row or {}).get("verified")),
        )
        self._ctx.accounts.update(lambda items: [updated if a.id == updated.id else a for a in items])
        active = self._ctx.active_account.get()
        if active is not None and active.id == updated.id:
            self._ctx.active_account.set(updated)
        self._ctx.events.emit(ACCOUNT_DID_UPDATE, updated)
        return updated

    # stage 3
    async def fetch_balances(self, provider: ChainProvider, account: Account) -> list[TokenBalance]:
        raw = await self._concurrent(
            lambda: self._ctx.api.get_currency_balances(provider, account.name), "get_currency_balances"
        )
        try:
            balances = [balance_from_history(account, entry) for entry in raw]
        except (KeyError, TypeError, ValueError) as e:
            raise HistoryError("malformed balance entry", endpoint="/v2/state/get_tokens", account=account.name) from e
        placeholders = [
            placeholder_contract(b) for b in balances if self._ctx.token_contracts.find(b.token_contract_id) is None
        ]
        if placeholders:
            self._ctx.token_contracts.upsert_many(placeholders)
        self._ctx.token_balances.upsert_many(balances)
        return balances

    # stage 4
    async def fetch_transfer_actions(self, provider: ChainProvider, account: Account) -> list[TokenTransferAction]:
        balances = self._ctx.token_balances.filter(lambda b: b.account_id == account.id)

        def _op(balance: TokenBalance) -> Callable[[], Awaitable[list[TokenTransferAction]]]:
            async def _fetch() -> list[TokenTransferAction]:
                raw = await self._ctx.api.get_transfer_actions(provider, account.name, balance.contract, balance.symbol)
                mapped = (transfer_action_from_history(account, balance, r) for r in raw)
                return [a for a in mapped if a is not None]

            return _fetch

        results = await self._ctx.scheduler.fan_out([_op(b) for b in balances], name="get_transfer_actions")
        union: list[TokenTransferAction] = []
        for balance, result in zip(balances, results):
            if result.ok:
                union.extend(result.value or ())
            else:
                logger.warning(
                    "transfer_history_fetch_failed",
                    account_id=account.id,
                    token_balance_id=balance.id,
                    kind=result.error.kind.value,
                    error=result.error.message,
                )
        if union:
            self._ctx.token_transfer_actions.update(lambda items: merge_transfer_actions(items, union))
        return union

    # stage 5
    async def fetch_contacts(self, provider: ChainProvider, account: Account) -> list[Contact]:
        names = distinct_counterparties(
            self._ctx.token_transfer_actions.filter(lambda a: a.account_id == account.id)
        )

        def _op(name: str) -> Callable[[], Awaitable[Contact]]:
            async def _fetch() -> Contact:
                row = await fetch_user_info(self._ctx.api, provider, name)
                return contact_from_user_info(provider.chain_id, name, row)

            return _fetch

        results = await self._ctx.scheduler.fan_out([_op(n) for n in names], name="get_contact_info")
        contacts: list[Contact] = []
        for name, result in zip(names, results):
            if result.ok and result.value is not None:
                contacts.append(result.value)
            else:
                logger.warning("contact_fetch_failed", account_id=account.id, contact=name, error=str(result.error))
        if contacts:
            self._ctx.contacts.upsert_many(contacts)
        return contacts

    async def sync_account(self, account: Account) -> Account:
        """Run stages 1-6 for account; raises on a stage 1-3 failure."""
        log = bind_account(account.id)
        provider = self._ctx.provider_for(account.chain_id)
        log.info("sync_account_started", chain_id=account.chain_id)

        fetched = await self.fetch_account(provider, account.name)
        self._ctx.accounts.upsert(fetched)
        current = self._ctx.accounts.find(fetched.id) or fetched
        current = await self.refresh_user_info(current)
        balances = await self.fetch_balances(provider, current)
        actions = await self.fetch_transfer_actions(provider, current)
        contacts = await self.fetch_contacts(provider, current)

        await self._ctx.persist()
        self._ctx.events.emit(SYNC_COMPLETED, current)
        log.info(
            "sync_account_completed",
            balances=len(balances),
            transfer_actions=len(actions),
            contacts=len(contacts),
        )
        return current

    async def sync_all_accounts(self) -> dict[str, Result[Account]]:
        """Sync every known account in turn; one failure never blocks the rest."""
        results: dict[str, Result[Account]] = {}
        for account in self._ctx.accounts.get():
            try:
                results[account.id] = Result.success(await self.sync_account(account))
            except WalletError as e:
                logger.warning("sync_account_failed", account_id=account.id, kind=e.kind.value, error=e.message)
                results[account.id] = Result.failure(e)
        failed = sum(1 for r in results.values() if not r.ok)
        logger.info("sync_all_completed", accounts=len(results), failed=failed)
        return results

    async def fetch_requirements(self) -> None:
        """Chain providers, token contracts, then exchange rates (best-effort)."""
        base_url = self._ctx.settings.base_url
        data = await self._concurrent(lambda: self._ctx.api.get_json(f"{base_url}/v1/chain/info"), "get_chain_providers")
        if not isinstance(data, dict):
            raise ChainError("unexpected chain provider list", endpoint="/v1/chain/info")
        try:
            providers = [chain_provider_from_dict(v) for v in data.values()]
        except (KeyError, TypeError) as e:
            raise ChainError("malformed chain provider", endpoint="/v1/chain/info") from e
        # providers are immutable once fetched: only unknown chain ids are added
        def _add_new(items: tuple[ChainProvider, ...]) -> list[ChainProvider]:
            known = {i.id for i in items}
            return list(items) + [p for p in providers if p.id not in known]

        self._ctx.chain_providers.update(_add_new)

        data = await self._concurrent(lambda: self._ctx.api.get_json(f"{base_url}/v1/chain/tokens"), "get_token_contracts")
        if not isinstance(data, dict):
            raise ChainError("unexpected token contract list", endpoint="/v1/chain/tokens")
        try:
            contracts = [token_contract_from_dict(v) for v in data.values()]
        except (KeyError, TypeError, ValueError) as e:
            raise ChainError("malformed token contract", endpoint="/v1/chain/tokens") from e
        self._ctx.token_contracts.upsert_many(contracts)
        logger.info("requirements_fetched", chain_providers=len(providers), token_contracts=len(contracts))

        try:
            await self.update_exchange_rates()
        except WalletError as e:
            logger.warning("exchange_rates_update_failed", kind=e.kind.value, error=e.message)
        await self._ctx.persist()

    async def update_exchange_rates(self) -> int:
        """Set rates on known contracts of the current chain; returns how many changed."""
        provider = self._ctx.chain_provider
        if provider is None:
            raise ValidationError("no chain provider")
        if not provider.exchange_rate_url:
            raise ValidationError("chain provider has no exchange rate url", chain_id=provider.chain_id)
        data = await self._concurrent(lambda: self._ctx.api.get_json(provider.exchange_rate_url), "get_exchange_rates")
        if not isinstance(data, list):
            raise ChainError("unexpected exchange rate list", endpoint=provider.exchange_rate_url)
        rates = {
            f"{provider.chain_id}:{entry['contract']}:{entry['symbol']}": {
                str(k).upper(): float(v) for k, v in (entry.get("rates") or {}).items()
            }
            for entry in data
            if isinstance(entry, dict) and entry.get("contract") and entry.get("symbol")
        }
        changed = 0

        def _apply(items: tuple[TokenContract, ...]) -> list[TokenContract]:
            nonlocal changed
            out = []
            for contract in items:
                new_rates = rates.get(contract.id)
                if new_rates:
                    changed += 1
                    contract = dataclasses.replace(contract, rates=new_rates)
                out.append(contract)
            return out

        self._ctx.token_contracts.update(_apply)
        logger.info("exchange_rates_updated", chain_id=provider.chain_id, contracts=changed)
        return changed

    async def find_accounts(self, key: PrivateKey | str) -> list[Account]:
        """Accounts whose permissions hold key, enriched with permissions and profile when reachable."""
        provider = self._ctx.chain_provider
        if provider is None:
            raise ValidationError("no chain provider")
        public_key = key.public_key if isinstance(key, PrivateKey) else key
        names = await self._concurrent(
            lambda: self._ctx.api.get_key_accounts(provider, public_key), "get_key_accounts"
        )
        if not names:
            raise HistoryError("no accounts found for key", endpoint="/v2/state/get_key_accounts")

        def _op(name: str) -> Callable[[], Awaitable[Account]]:
            async def _fetch() -> Account:
                account = account_from_chain(provider.chain_id, await self._ctx.api.get_account(provider, name))
                row = await fetch_user_info(self._ctx.api, provider, name)
                profile = contact_from_user_info(provider.chain_id, name, row)
                return dataclasses.replace(
                    account, nick_name=profile.nick_name, avatar=profile.avatar, verified=profile.verified
                )

            return _fetch

        results = await self._ctx.scheduler.fan_out([_op(n) for n in names], name="find_accounts")
        accounts = []
        for name, result in zip(names, results):
            if result.ok and result.value is not None:
                accounts.append(result.value)
            else:
                logger.warning("key_account_enrich_failed", account=name, error=str(result.error))
                accounts.append(Account(chain_id=provider.chain_id, name=name))
        return accounts
