"""
Merge engine: upsert a freshly fetched collection into the canonical one.

Pure functions, no I/O. Rules:
- incoming item with a known identity replaces the canonical item, except
  that every field named in `preserve` is carried forward from the canonical
  item when the incoming value is empty (None, 0, "", {}, ...);
- incoming item with an unknown identity is appended;
- canonical items absent from incoming are kept: absence from one fetch is
  not proof of removal.

Canonical order is kept; new items are appended in incoming order. Applying
the same incoming twice gives the same result as applying it once.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Iterable, TypeVar

from proton_wallet.models import Account, TokenContract, TokenTransferAction

T = TypeVar("T")

TOKEN_CONTRACT_PRESERVE = frozenset({"rates"})
ACCOUNT_PROFILE_PRESERVE = frozenset({"nick_name", "avatar", "verified"})


def default_key(item: Any) -> str:
    return item.id


def _carry_forward(old: T, new: T, preserve: frozenset[str]) -> T:
    if not preserve:
        return new
    carried = {
        name: getattr(old, name)
        for name in preserve
        if not getattr(new, name, None) and getattr(old, name, None)
    }
    if not carried:
        return new
    return dataclasses.replace(new, **carried)  # type: ignore[type-var]


def merge(
    canonical: Iterable[T],
    incoming: Iterable[T],
    preserve: frozenset[str] = frozenset(),
    key: Callable[[T], str] = default_key,
) -> list[T]:
    merged: list[T] = list(canonical)
    index = {key(item): i for i, item in enumerate(merged)}
    for item in incoming:
        k = key(item)
        i = index.get(k)
        if i is None:
            index[k] = len(merged)
            merged.append(item)
        else:
            merged[i] = _carry_forward(merged[i], item, preserve)
    return merged


def merge_token_contracts(canonical: Iterable[TokenContract], incoming: Iterable[TokenContract]) -> list[TokenContract]:
    return merge(canonical, incoming, TOKEN_CONTRACT_PRESERVE)


def merge_accounts(canonical: Iterable[Account], incoming: Iterable[Account]) -> list[Account]:
    """Permissions-only fetches keep the locally known profile fields."""
    return merge(canonical, incoming, ACCOUNT_PROFILE_PRESERVE)


def merge_transfer_actions(
    canonical: Iterable[TokenTransferAction], incoming: Iterable[TokenTransferAction]
) -> list[TokenTransferAction]:
    """
    History merge. A pending record (sent from this wallet, not yet sequenced)
    is replaced in place by the sequenced record history reports for the same
    account and transaction.
    """
    canonical = list(canonical)
    incoming = list(incoming)
    known = {a.id for a in canonical}
    sequenced = {(a.account_id, a.trx_id): a for a in incoming if not a.is_pending}
    settled: list[TokenTransferAction] = []
    for action in canonical:
        replacement = sequenced.get((action.account_id, action.trx_id)) if action.is_pending else None
        if replacement is None:
            settled.append(action)
        elif replacement.id not in known:
            known.add(replacement.id)
            settled.append(replacement)
    return merge(settled, incoming)
