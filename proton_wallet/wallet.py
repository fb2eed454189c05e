"""
WalletContext: the one object that owns wallet state.

Built once from Settings and passed around explicitly. It owns the event
bus, the scheduler, the canonical collections and the collaborators
(ChainApi, KeyValueStore, SecretStore), and wires the sync orchestrator,
transaction signer and signing-request engine to them.

    ctx = WalletContext.from_settings(get_settings())
    await ctx.sync.fetch_requirements()
    await ctx.sync.sync_all_accounts()
    await ctx.aclose()
"""

from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from proton_wallet.chain.abi import TRANSFER_ACTION, Asset, is_valid_name
from proton_wallet.chain.client import ChainApi, ChainClient
from proton_wallet.chain.keys import PrivateKey
from proton_wallet.chain.transaction import Action, PermissionLevel, TransactionSigner
from proton_wallet.config import Settings, get_settings
from proton_wallet.core.events import Collection, EventBus
from proton_wallet.core.exceptions import ValidationError
from proton_wallet.models import (
    PENDING_SEQUENCE,
    Account,
    ChainProvider,
    Contact,
    Session,
    TokenBalance,
    TokenContract,
    TokenTransferAction,
    utc_now,
)
from proton_wallet.scheduler import OperationScheduler
from proton_wallet.signing_request.engine import ActiveRequest, Authenticator, SigningRequestEngine
from proton_wallet.storage.collections import CollectionStore, ValueStore
from proton_wallet.storage.kv import KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore
from proton_wallet.storage.vault import MemorySecretStore, SecretStore, SqliteSecretStore, retrieve_private_key
from proton_wallet.sync.merge import ACCOUNT_PROFILE_PRESERVE, TOKEN_CONTRACT_PRESERVE
from proton_wallet.sync.orchestrator import SyncOrchestrator
from proton_wallet.wallet_logging import get_logger

logger = get_logger(__name__)

# persisted key -> collection attribute
PERSISTED_COLLECTIONS = {
    "accounts": ("accounts", Account),
    "chainProviders": ("chain_providers", ChainProvider),
    "tokenContracts": ("token_contracts", TokenContract),
    "tokenBalances": ("token_balances", TokenBalance),
    "tokenTransferActions": ("token_transfer_actions", TokenTransferAction),
    "contacts": ("contacts", Contact),
    "esrSessions": ("esr_sessions", Session),
}
ACCOUNT_KEY = "account"
CHAIN_PROVIDER_KEY = "chainProvider"


class WalletContext:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        api: ChainApi | None = None,
        kv: KeyValueStore | None = None,
        vault: SecretStore | None = None,
        authenticator: Authenticator | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.events = EventBus()
        self.scheduler = OperationScheduler(self.settings.max_concurrency)
        self._owns_api = api is None
        self.api: ChainApi = api if api is not None else ChainClient(timeout=self.settings.http_timeout_sec)
        self.kv = kv if kv is not None else MemoryKeyValueStore()
        self.vault = vault if vault is not None else MemorySecretStore()

        self.chain_providers: CollectionStore[ChainProvider] = CollectionStore(Collection.CHAIN_PROVIDERS, self.events)
        self.token_contracts: CollectionStore[TokenContract] = CollectionStore(
            Collection.TOKEN_CONTRACTS, self.events, preserve=TOKEN_CONTRACT_PRESERVE
        )
        self.token_balances: CollectionStore[TokenBalance] = CollectionStore(Collection.TOKEN_BALANCES, self.events)
        self.token_transfer_actions: CollectionStore[TokenTransferAction] = CollectionStore(
            Collection.TOKEN_TRANSFER_ACTIONS, self.events
        )
        self.contacts: CollectionStore[Contact] = CollectionStore(Collection.CONTACTS, self.events)
        self.esr_sessions: CollectionStore[Session] = CollectionStore(Collection.ESR_SESSIONS, self.events)
        self.accounts: CollectionStore[Account] = CollectionStore(
            Collection.ACCOUNTS, self.events, preserve=ACCOUNT_PROFILE_PRESERVE
        )
        self.active_account: ValueStore[Account] = ValueStore(Collection.ACTIVE_ACCOUNT, self.events)
        self.active_request: ValueStore[ActiveRequest] = ValueStore(Collection.ACTIVE_REQUEST, self.events)

        self.signer = TransactionSigner(self.api, self.scheduler, self.settings.transaction_expiration_sec)
        self.sync = SyncOrchestrator(self)
        self.esr = SigningRequestEngine(self, authenticator)

    @classmethod
    def from_settings(cls, settings: Settings, *, authenticator: Authenticator | None = None) -> "WalletContext":
        """Context on the SQLite stores at settings.db_path. Requires a vault key."""
        if not settings.vault_key:
            raise ValidationError("vault key is not configured", setting="PROTON_VAULT_KEY")
        ctx = cls(
            settings,
            kv=SqliteKeyValueStore(settings.db_path),
            vault=SqliteSecretStore(settings.db_path, settings.vault_key),
            authenticator=authenticator,
        )
        ctx.load_all()
        return ctx

    async def aclose(self) -> None:
        await self.scheduler.aclose()
        if self._owns_api and isinstance(self.api, ChainClient):
            await self.api.aclose()

    def subscribe(self, name: str, handler: Callable[..., None]) -> Callable[[], None]:
        return self.events.subscribe(name, handler)

    # lookups

    def provider_for(self, chain_id: str) -> ChainProvider:
        provider = self.chain_providers.find(chain_id)
        if provider is None:
            raise ValidationError("no chain provider for chain", chain_id=chain_id)
        return provider

    @property
    def chain_provider(self) -> ChainProvider | None:
        """Provider of the active account, else the first known provider."""
        account = self.active_account.get()
        if account is not None:
            return self.chain_providers.find(account.chain_id)
        providers = self.chain_providers.get()
        return providers[0] if providers else None

    def require_active_account(self) -> Account:
        account = self.active_account.get()
        if account is None:
            raise ValidationError("no active account")
        return account

    # persistence

    def _snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {}
        for key, (attr, _model) in PERSISTED_COLLECTIONS.items():
            store: CollectionStore[Any] = getattr(self, attr)
            snapshot[key] = [item.to_dict() for item in store.get()]
        account = self.active_account.get()
        snapshot[ACCOUNT_KEY] = account.to_dict() if account else None
        provider = self.chain_provider
        snapshot[CHAIN_PROVIDER_KEY] = provider.to_dict() if provider else None
        return snapshot

    def _write(self, snapshot: dict[str, Any]) -> None:
        for key, value in snapshot.items():
            self.kv.set(key, value)

    def save_all(self) -> None:
        self._write(self._snapshot())

    async def persist(self) -> None:
        """save_all from a coroutine: state is captured on the loop, the store writes run in the executor."""
        snapshot = self._snapshot()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, snapshot)

    def load_all(self) -> None:
        for key, (attr, model) in PERSISTED_COLLECTIONS.items():
            items = []
            for raw in self.kv.get(key) or ():
                try:
                    items.append(model.from_dict(raw))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("persisted_item_skipped", key=key, error=str(e))
            getattr(self, attr).replace_all(items)
        raw_account = self.kv.get(ACCOUNT_KEY)
        if raw_account:
            try:
                self.active_account.set(Account.from_dict(raw_account))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("persisted_item_skipped", key=ACCOUNT_KEY, error=str(e))
        raw_provider = self.kv.get(CHAIN_PROVIDER_KEY)
        if raw_provider and self.chain_providers.find(str(raw_provider.get("chain_id"))) is None:
            self.chain_providers.upsert(ChainProvider.from_dict(raw_provider))
        logger.info(
            "wallet_state_loaded",
            accounts=len(self.accounts),
            token_balances=len(self.token_balances),
            esr_sessions=len(self.esr_sessions),
        )

    # accounts and keys

    @staticmethod
    def generate_private_key() -> PrivateKey:
        return PrivateKey.generate()

    async def set_active_account(self, account: Account) -> Account:
        """Make account active, clearing per-account state when it changes, then sync it."""
        current = self.active_account.get()
        if current is not None and current.id != account.id:
            self.token_balances.clear()
            self.token_transfer_actions.clear()
            self.esr_sessions.clear()
            self.active_request.set(None)
        self.accounts.upsert(account)
        self.active_account.set(self.accounts.find(account.id) or account)
        logger.info("active_account_set", account_id=account.id)
        return await self.sync.sync_account(self.active_account.get() or account)

    async def store_private_key(self, private_key: PrivateKey | str, account: Account) -> Account:
        """Store key for account (it must hold the key) and make account active."""
        key = PrivateKey.from_string(private_key) if isinstance(private_key, str) else private_key
        if not account.is_key_associated(key.public_key):
            raise ValidationError("key is not associated with account", account=account.name)
        self.vault.store_secret(key.public_key, key.to_string())
        logger.info("private_key_stored", account_id=account.id, public_key=key.public_key)
        return await self.set_active_account(account)

    async def update_user_defined_name(self, name: str) -> Account:
        """Sign the account name with the active key, post the new display name, refetch profile."""
        account = self.require_active_account()
        name = (name or "").strip()
        if not name:
            raise ValidationError("name must be non-empty")
        self.provider_for(account.chain_id)
        private_key = retrieve_private_key(self.vault, account)
        payload = {
            "name": name,
            "signature": private_key.sign(account.name.encode("utf-8")),
            "public_key": private_key.public_key,
        }
        url = f"{self.settings.base_url}/v1/chain/accounts/{account.name}"
        result = await self.scheduler.sequential(lambda: self.api.post_json(url, payload), name="update_account_name")
        result.unwrap()
        return await self.sync.refresh_user_info(account)

    # transfers

    async def transfer(
        self, to: str, quantity: float | Decimal | str, token_contract: TokenContract, memo: str = ""
    ) -> TokenTransferAction:
        """
        Send quantity of token_contract's token from the active account.

        The balance check happens before any network call. On success the
        transfer is recorded in history right away, ahead of the next sync.
        """
        account = self.require_active_account()
        provider = self.provider_for(account.chain_id)
        if token_contract.chain_id != account.chain_id:
            raise ValidationError("token contract is on another chain", token_contract_id=token_contract.id)
        if not is_valid_name(to):
            raise ValidationError("invalid recipient", to=to)
        balance = self.token_balances.find(f"{account.id}:{token_contract.contract}:{token_contract.symbol}")
        if balance is None:
            raise ValidationError("no balance for token", token_contract_id=token_contract.id)

        try:
            asset = Asset.from_amount(quantity, token_contract.precision, token_contract.symbol)
        except (InvalidOperation, ValueError) as e:
            raise ValidationError("invalid quantity", quantity=str(quantity)) from e
        if asset.units <= 0:
            raise ValidationError("quantity must be positive", quantity=str(asset))
        available = Decimal(str(balance.amount))
        if asset.decimal > available:
            raise ValidationError(
                "insufficient balance", quantity=str(asset), balance=str(available), token_contract_id=token_contract.id
            )

        private_key = retrieve_private_key(self.vault, account)
        action = Action(
            account=token_contract.contract,
            name=TRANSFER_ACTION,
            authorization=(PermissionLevel(actor=account.name),),
            data={"from": account.name, "to": to, "quantity": str(asset), "memo": memo},
        )
        _signed, push = await self.signer.sign_and_push(provider, [action], private_key)

        record = TokenTransferAction(
            chain_id=account.chain_id,
            account_id=account.id,
            token_balance_id=balance.id,
            token_contract_id=token_contract.id,
            contract=token_contract.contract,
            trx_id=push.transaction_id,
            global_sequence=PENDING_SEQUENCE,
            date=utc_now().strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3],
            sent=True,
            from_account=account.name,
            to_account=to,
            quantity=str(asset),
            memo=memo,
        )
        self.token_transfer_actions.upsert(record)
        await self.persist()
        logger.info(
            "transfer_sent",
            account_id=account.id,
            to=to,
            quantity=str(asset),
            transaction_id=push.transaction_id,
        )
        return record
