"""
Signing-request engine.

handle(uri) parses the request and prepares it for the user:
  identity requests -> requester profile, zero-action proposal
  action requests   -> ABIs fetched per contract (fan-out), display lines

accept() resolves against fresh chain info, signs with the signer's active
key, broadcasts when asked and dispatches the callback. decline() drops the
in-flight request. Identity accepts leave a Session that revoke() removes.

Only one request is in flight per context. Every await re-checks that the
request being worked on is still the in-flight one; a superseded request is
abandoned with a SigningRequestError (stage="stale").
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from proton_wallet.chain.abi import Abi, Asset
from proton_wallet.chain.transaction import (
    ACTIVE_PERMISSION,
    Action,
    PushResult,
    Transaction,
    TransactionHeader,
    build_header,
    sign_transaction,
)
from proton_wallet.core.exceptions import SigningRequestError, ValidationError, WalletError
from proton_wallet.models import Account, ChainProvider, Contact, Session, TokenContract
from proton_wallet.signing_request.uri import (
    RequestCallback,
    SigningRequest,
    decode_signing_request,
    resolve_authorization,
    resolve_placeholders,
)
from proton_wallet.storage.vault import retrieve_private_key
from proton_wallet.sync.orchestrator import contact_from_user_info, fetch_user_info
from proton_wallet.wallet_logging import get_logger

if TYPE_CHECKING:
    from proton_wallet.wallet import WalletContext

logger = get_logger(__name__)

Authenticator = Callable[[str], Awaitable[bool]]

REJECTED_MESSAGE = "User rejected request"


async def allow_all(reason: str) -> bool:
    return True


class RequestState(str, enum.Enum):
    PARSED = "parsed"
    IDENTITY = "identity"
    ACTION = "action"
    RESOLVED = "resolved"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    CALLBACK_DISPATCHED = "callback_dispatched"
    COMPLETED = "completed"
    DECLINED = "declined"


DECLINABLE_STATES = frozenset({RequestState.PARSED, RequestState.IDENTITY, RequestState.ACTION, RequestState.RESOLVED})


@dataclass(frozen=True)
class DisplayAction:
    """One line of the proposal shown to the user."""

    contract: str
    name: str
    summary: str
    data: dict[str, Any]
    is_transfer: bool = False
    converted_amount: float | None = None
    currency: str = ""


@dataclass(frozen=True)
class ResolvedRequest:
    header: TransactionHeader
    transaction: Transaction
    callback: RequestCallback | None
    display_actions: tuple[DisplayAction, ...] = ()


@dataclass
class ActiveRequest:
    """The in-flight request pair. request_id identifies it across awaits."""

    uri: str
    request: SigningRequest
    signer: Account
    state: RequestState = RequestState.PARSED
    requester_profile: Contact | None = None
    actions: tuple[Action, ...] = ()
    display_actions: tuple[DisplayAction, ...] = ()
    resolved: ResolvedRequest | None = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class DispatchResult:
    """What accept() produced. url is set for foreground callbacks only."""

    signatures: tuple[str, ...]
    transaction: Transaction
    transaction_id: str | None = None
    block_num: int | None = None
    url: str | None = None
    session: Session | None = None


def substitute_placeholders(template: str, payload: dict[str, str]) -> str:
    """Replace every {{key}} in template with payload[key]."""
    out = template
    for key, value in payload.items():
        out = out.replace("{{" + key + "}}", value)
    return out


def callback_payload(
    uri: str,
    request: SigningRequest,
    signer: Account,
    transaction: Transaction,
    signatures: tuple[str, ...],
    block_num: int | None = None,
) -> dict[str, str]:
    payload = {
        "sig": signatures[0] if signatures else "",
        "tx": transaction.id,
        "sid": request.sid,
        "sa": signer.name,
        "sp": ACTIVE_PERMISSION,
        "rbn": str(transaction.header.ref_block_num),
        "rid": str(transaction.header.ref_block_prefix),
        "req": uri,
    }
    for i, sig in enumerate(signatures[1:], start=1):
        payload[f"sig{i}"] = sig
    if block_num is not None:
        payload["bn"] = str(block_num)
    return payload


def transfer_display(
    contract: str, data: dict[str, Any], token_contract: TokenContract | None, currency: str
) -> DisplayAction:
    asset = Asset.parse(data["quantity"])
    rate = token_contract.rate(currency) if token_contract is not None else 0.0
    converted = round(asset.amount * rate, 2) if rate else None
    summary = f"Transfer {asset} to {data['to']}"
    if converted is not None:
        summary += f" ({converted:.2f} {currency})"
    return DisplayAction(
        contract=contract,
        name="transfer",
        summary=summary,
        data=data,
        is_transfer=True,
        converted_amount=converted,
        currency=currency if converted is not None else "",
    )


class SigningRequestEngine:
    """Parse, resolve, sign and dispatch signing requests for one WalletContext."""

    def __init__(self, ctx: WalletContext, authenticator: Authenticator | None = None) -> None:
        self._ctx = ctx
        self.authenticator = authenticator or allow_all

    @property
    def active(self) -> ActiveRequest | None:
        return self._ctx.active_request.get()

    def _ensure_current(self, active: ActiveRequest) -> None:
        current = self._ctx.active_request.get()
        if current is None or current.request_id != active.request_id:
            raise SigningRequestError("signing request was superseded", stage="stale", sid=active.request.sid)

    def _clear(self, active: ActiveRequest) -> None:
        current = self._ctx.active_request.get()
        if current is not None and current.request_id == active.request_id:
            self._ctx.active_request.set(None)

    def _take(self, request_id: str | None) -> ActiveRequest:
        active = self._ctx.active_request.get()
        if active is None:
            raise ValidationError("no signing request in flight")
        if request_id is not None and active.request_id != request_id:
            raise SigningRequestError("signing request was superseded", stage="stale", sid=active.request.sid)
        return active

    def _signer_for(self, chain_id: str) -> Account:
        active = self._ctx.active_account.get()
        if active is not None and active.chain_id == chain_id:
            return active
        for account in self._ctx.accounts.get():
            if account.chain_id == chain_id:
                return account
        raise ValidationError("no local account for request chain", chain_id=chain_id)

    def parse(self, uri: str) -> tuple[SigningRequest, Account]:
        request = decode_signing_request(uri)
        return request, self._signer_for(request.chain_id)

    async def handle(self, uri: str) -> ActiveRequest:
        """Parse uri and prepare it as the in-flight request."""
        request, signer = self.parse(uri)
        provider = self._ctx.provider_for(request.chain_id)
        active = ActiveRequest(uri=uri, request=request, signer=signer)
        self._ctx.active_request.set(active)
        logger.info(
            "signing_request_parsed",
            chain_id=request.chain_id,
            requester=request.requester,
            sid=request.sid,
            identity=request.is_identity,
            actions=len(request.actions),
        )
        try:
            if request.is_identity:
                await self._identity_branch(provider, active)
            else:
                await self._action_branch(provider, active)
        except WalletError:
            self._clear(active)
            raise
        return active

    async def _identity_branch(self, provider: ChainProvider, active: ActiveRequest) -> None:
        name = active.request.requester
        result = await self._ctx.scheduler.concurrent(
            lambda: fetch_user_info(self._ctx.api, provider, name), name="get_requester_info"
        )
        row = result.unwrap()
        self._ensure_current(active)
        active.requester_profile = contact_from_user_info(provider.chain_id, name, row)
        active.state = RequestState.IDENTITY
        self._ctx.active_request.set(active)

    async def _action_branch(self, provider: ChainProvider, active: ActiveRequest) -> None:
        request = active.request
        contracts = request.contracts

        def _op(contract: str) -> Callable[[], Awaitable[Abi]]:
            async def _fetch() -> Abi:
                return Abi.from_dict(contract, await self._ctx.api.get_raw_abi(provider, contract))

            return _fetch

        results = await self._ctx.scheduler.fan_out([_op(c) for c in contracts], name="get_raw_abi")
        self._ensure_current(active)
        abis: dict[str, Abi] = {}
        for contract, result in zip(contracts, results):
            if result.ok and result.value is not None:
                abis[contract] = result.value
            else:
                logger.warning("abi_fetch_failed", contract=contract, sid=request.sid, error=str(result.error))

        known_contracts = {c.contract for c in self._ctx.token_contracts.get() if c.chain_id == request.chain_id}
        currency = self._ctx.settings.display_currency
        kept: list[Action] = []
        display: list[DisplayAction] = []
        for action in request.actions:
            abi = abis.get(action.account)
            if abi is None or action.account not in known_contracts:
                logger.info("signing_request_action_dropped", contract=action.account, action=action.name)
                continue
            try:
                data = abi.decode_action(action.name, action.data)
            except (KeyError, ValueError) as e:
                logger.info("signing_request_action_undecodable", contract=action.account, action=action.name, error=str(e))
                continue
            if abi.is_token_transfer(action.name):
                symbol = Asset.parse(data["quantity"]).symbol
                token = self._ctx.token_contracts.find(f"{request.chain_id}:{action.account}:{symbol}")
                display.append(transfer_display(action.account, data, token, currency))
            else:
                display.append(
                    DisplayAction(contract=action.account, name=action.name, summary=f"{action.account}::{action.name}", data=data)
                )
            kept.append(Action(account=action.account, name=action.name, authorization=action.authorization, data=data))

        if not display:
            raise SigningRequestError("no displayable actions", stage="resolve", sid=request.sid)
        active.actions = tuple(kept)
        active.display_actions = tuple(display)
        active.state = RequestState.ACTION
        self._ctx.active_request.set(active)

    async def _resolve(self, provider: ChainProvider, active: ActiveRequest) -> ResolvedRequest:
        info = await self._ctx.signer.fetch_chain_info(provider)
        self._ensure_current(active)
        header = build_header(info, self._ctx.settings.transaction_expiration_sec)
        signer = active.signer.name
        actions = tuple(
            Action(
                account=a.account,
                name=a.name,
                authorization=tuple(resolve_authorization(level, signer) for level in a.authorization),
                data=resolve_placeholders(a.data, signer),
            )
            for a in active.actions
        )
        return ResolvedRequest(
            header=header,
            transaction=Transaction(header=header, actions=actions),
            callback=active.request.callback,
            display_actions=active.display_actions,
        )

    async def accept(self, request_id: str | None = None) -> DispatchResult:
        """Authenticate, resolve, sign, broadcast when asked and dispatch the callback."""
        active = self._take(request_id)
        request = active.request
        if not await self.authenticator(f"Sign request from {request.requester}"):
            self._clear(active)
            raise ValidationError("authentication failed", sid=request.sid)
        self._ensure_current(active)

        provider = self._ctx.provider_for(request.chain_id)
        try:
            resolved = await self._resolve(provider, active)
            active.resolved = resolved
            active.state = RequestState.RESOLVED

            private_key = retrieve_private_key(self._ctx.vault, active.signer, ACTIVE_PERMISSION)
            signed = sign_transaction(resolved.transaction, request.chain_id, private_key)
            active.state = RequestState.SIGNED

            push: PushResult | None = None
            if request.broadcast:
                push = await self._ctx.signer.push(provider, signed)
                self._ensure_current(active)
                active.state = RequestState.BROADCAST

            session = await self._record_session(active) if request.is_identity else None
            url = await self._dispatch_callback(active, resolved.transaction, signed.signatures, push)
            if request.callback is not None:
                active.state = RequestState.CALLBACK_DISPATCHED
        finally:
            self._clear(active)

        active.state = RequestState.COMPLETED
        logger.info("signing_request_completed", sid=request.sid, requester=request.requester, broadcast=push is not None)
        return DispatchResult(
            signatures=signed.signatures,
            transaction=resolved.transaction,
            transaction_id=push.transaction_id if push else None,
            block_num=push.block_num if push else None,
            url=url,
            session=session,
        )

    async def _record_session(self, active: ActiveRequest) -> Session:
        request = active.request
        session = Session(
            requester=request.requester,
            signer=active.signer.name,
            chain_id=request.chain_id,
            sid=request.sid,
            callback_url=substitute_placeholders(request.callback.url, {"sid": request.sid}) if request.callback else "",
            rs=request.info.get("rs", ""),
        )
        self._ctx.esr_sessions.upsert(session)
        await self._ctx.persist()
        logger.info("esr_session_recorded", sid=session.sid, requester=session.requester, signer=session.signer)
        return session

    async def _dispatch_callback(
        self,
        active: ActiveRequest,
        transaction: Transaction,
        signatures: tuple[str, ...],
        push: PushResult | None,
    ) -> str | None:
        callback = active.request.callback
        if callback is None:
            return None
        payload = callback_payload(
            active.uri, active.request, active.signer, transaction, signatures, push.block_num if push else None
        )
        url = substitute_placeholders(callback.url, payload)
        if not callback.background:
            return url
        result = await self._ctx.scheduler.concurrent(
            lambda: self._ctx.api.post_json(url, payload), name="post_esr_callback"
        )
        if not result.ok:
            logger.warning("esr_callback_failed", sid=active.request.sid, error=str(result.error))
            raise SigningRequestError("callback post failed", stage="callback", sid=active.request.sid) from result.error
        return None

    async def decline(self, request_id: str | None = None) -> None:
        active = self._take(request_id)
        if active.state not in DECLINABLE_STATES:
            raise SigningRequestError("request can no longer be declined", stage=active.state.value, sid=active.request.sid)
        active.state = RequestState.DECLINED
        self._clear(active)
        callback = active.request.callback
        if callback is not None and callback.background:
            payload = {"rejected": REJECTED_MESSAGE, "sid": active.request.sid}
            url = substitute_placeholders(callback.url, payload)
            result = await self._ctx.scheduler.concurrent(
                lambda: self._ctx.api.post_json(url, payload), name="post_esr_rejection"
            )
            if not result.ok:
                logger.warning("esr_rejection_post_failed", sid=active.request.sid, error=str(result.error))
        logger.info("signing_request_declined", sid=active.request.sid, requester=active.request.requester)

    async def revoke(self, sid: str) -> Session:
        """Remove a session locally; the requester is notified best-effort."""
        session = self._ctx.esr_sessions.find(sid)
        if session is None:
            raise ValidationError("unknown session", sid=sid)
        if session.callback_url:
            payload = {"sid": session.sid, "sa": session.signer, "sp": ACTIVE_PERMISSION, "rs": session.rs, "revoked": "true"}
            result = await self._ctx.scheduler.concurrent(
                lambda: self._ctx.api.post_json(session.callback_url, payload), name="post_esr_revoke"
            )
            if not result.ok:
                logger.warning("esr_revoke_post_failed", sid=sid, error=str(result.error))
        self._ctx.esr_sessions.remove(sid)
        await self._ctx.persist()
        logger.info("esr_session_revoked", sid=sid, requester=session.requester)
        return session

    def sessions(self) -> tuple[Session, ...]:
        return self._ctx.esr_sessions.get()
