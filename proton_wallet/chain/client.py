"""
Chain and history service client.

ChainApi is the transport boundary the engine talks to; ChainClient is the
httpx implementation. Calls return decoded JSON (lists/dicts) except get_info,
which returns ChainInfo. Mapping into domain entities happens in the sync and
signing-request layers.

Errors: httpx failures and non-2xx responses -> TransportError; malformed
payloads -> ChainError (chain RPC) or HistoryError (history service).
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from proton_wallet.core.exceptions import ChainError, HistoryError, TransportError
from proton_wallet.models import ChainInfo, ChainProvider, parse_chain_time
from proton_wallet.wallet_logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 15.0
DEFAULT_ACTIONS_LIMIT = 100


class ChainApi(Protocol):
    async def get_info(self, provider: ChainProvider) -> ChainInfo: ...

    async def get_account(self, provider: ChainProvider, account_name: str) -> dict[str, Any]: ...

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
    ) -> list[dict[str, Any]]: ...

    async def get_key_accounts(self, provider: ChainProvider, public_key: str) -> list[str]: ...

    async def get_currency_balances(self, provider: ChainProvider, account_name: str) -> list[dict[str, Any]]: ...

    async def get_transfer_actions(
        self, provider: ChainProvider, account_name: str, contract: str, symbol: str
    ) -> list[dict[str, Any]]: ...

    async def get_raw_abi(self, provider: ChainProvider, account_name: str) -> dict[str, Any]: ...

    async def push_transaction(self, provider: ChainProvider, signed: dict[str, Any]) -> dict[str, Any]: ...

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any: ...

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any: ...


def filter_key_account_names(names: list[str]) -> list[str]:
    """Drop reserved/system names (containing '.'); keep order, drop duplicates."""
    out: list[str] = []
    for name in names:
        if not isinstance(name, str) or "." in name or name in out:
            continue
        out.append(name)
    return out


def chain_info_from_dict(data: dict[str, Any]) -> ChainInfo:
    try:
        return ChainInfo(
            chain_id=str(data["chain_id"]),
            head_block_num=int(data["head_block_num"]),
            head_block_id=str(data["head_block_id"]),
            head_block_time=parse_chain_time(str(data["head_block_time"])),
            last_irreversible_block_num=int(data.get("last_irreversible_block_num") or 0),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ChainError("malformed get_info response", endpoint="/v1/chain/get_info", reason=str(e)) from e


class ChainClient:
    """ChainApi over one shared httpx.AsyncClient."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
        actions_limit: int = DEFAULT_ACTIONS_LIMIT,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self.actions_limit = actions_limit

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.debug("http_request_failed", method=method, url=url, error=str(e))
            raise TransportError(f"{method} {url} failed: {e}", url=url) from e
        if resp.status_code >= 400:
            raise TransportError(
                f"{method} {url} returned {resp.status_code}",
                url=url,
                status_code=resp.status_code,
                body=resp.text[:500],
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned non-JSON body", url=url, status_code=resp.status_code) from e

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", url, params=params)

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any:
        return await self._request("POST", url, json=payload)

    async def _chain(self, provider: ChainProvider, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        data = await self.post_json(f"{provider.chain_url.rstrip('/')}{path}", payload)
        if not isinstance(data, dict):
            raise ChainError("unexpected chain response", endpoint=path)
        return data

    async def _history(self, provider: ChainProvider, path: str, params: dict[str, Any]) -> dict[str, Any]:
        data = await self.get_json(f"{provider.state_history_url.rstrip('/')}{path}", params)
        if not isinstance(data, dict):
            raise HistoryError("unexpected history response", endpoint=path)
        return data

    async def get_info(self, provider: ChainProvider) -> ChainInfo:
        return chain_info_from_dict(await self._chain(provider, "/v1/chain/get_info", {}))

    async def get_account(self, provider: ChainProvider, account_name: str) -> dict[str, Any]:
        data = await self._chain(provider, "/v1/chain/get_account", {"account_name": account_name})
        if not isinstance(data.get("permissions"), list):
            raise ChainError("get_account response missing permissions", endpoint="/v1/chain/get_account", account=account_name)
        return data

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
        payload = {
            "json": True,
            "code": code,
            "table": table,
            "scope": scope,
            "lower_bound": lower_bound,
            "upper_bound": upper_bound,
            "limit": limit,
        }
        data = await self._chain(provider, "/v1/chain/get_table_rows", payload)
        rows = data.get("rows")
        if not isinstance(rows, list):
            raise ChainError("get_table_rows response missing rows", endpoint="/v1/chain/get_table_rows", table=table)
        return rows

    async def get_key_accounts(self, provider: ChainProvider, public_key: str) -> list[str]:
        data = await self._history(provider, "/v2/state/get_key_accounts", {"public_key": public_key})
        names = data.get("account_names")
        if not isinstance(names, list):
            raise HistoryError("get_key_accounts response missing account_names", endpoint="/v2/state/get_key_accounts")
        return filter_key_account_names(names)

    async def get_currency_balances(self, provider: ChainProvider, account_name: str) -> list[dict[str, Any]]:
        data = await self._history(provider, "/v2/state/get_tokens", {"account": account_name})
        tokens = data.get("tokens")
        if not isinstance(tokens, list):
            raise HistoryError("get_tokens response missing tokens", endpoint="/v2/state/get_tokens", account=account_name)
        return tokens

    async def get_transfer_actions(
        self, provider: ChainProvider, account_name: str, contract: str, symbol: str
    ) -> list[dict[str, Any]]:
        params = {
            "account": account_name,
            "filter": f"{contract}:transfer",
            "transfer.symbol": symbol,
            "limit": self.actions_limit,
            "sort": "desc",
        }
        data = await self._history(provider, "/v2/history/get_actions", params)
        actions = data.get("actions")
        if not isinstance(actions, list):
            raise HistoryError("get_actions response missing actions", endpoint="/v2/history/get_actions", account=account_name)
        return actions

    async def get_raw_abi(self, provider: ChainProvider, account_name: str) -> dict[str, Any]:
        data = await self._chain(provider, "/v1/chain/get_abi", {"account_name": account_name})
        abi = data.get("abi")
        if not isinstance(abi, dict):
            raise ChainError("account has no abi", endpoint="/v1/chain/get_abi", account=account_name)
        return abi

    async def push_transaction(self, provider: ChainProvider, signed: dict[str, Any]) -> dict[str, Any]:
        data = await self._chain(provider, "/v1/chain/push_transaction", signed)
        if not data.get("transaction_id"):
            raise ChainError("push_transaction response missing transaction_id", endpoint="/v1/chain/push_transaction")
        return data
