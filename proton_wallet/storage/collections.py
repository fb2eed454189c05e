"""
Canonical collections with explicit change events.

CollectionStore replaces mutable list properties: every write goes through
get/upsert/replace_all/remove/clear under one lock and emits will_set before
and did_set after the change. Readers get tuples, never the live list.
ValueStore is the single-value variant (active account, active request).
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, Iterable, TypeVar

from proton_wallet.core.events import Collection, EventBus, did_set, will_set
from proton_wallet.sync.merge import default_key, merge

T = TypeVar("T")


class CollectionStore(Generic[T]):
    def __init__(
        self,
        collection: Collection,
        events: EventBus,
        *,
        preserve: frozenset[str] = frozenset(),
        key: Callable[[T], str] = default_key,
    ) -> None:
        self.collection = collection
        self._events = events
        self._preserve = preserve
        self._key = key
        self._items: tuple[T, ...] = ()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._items)

    def get(self) -> tuple[T, ...]:
        return self._items

    def find(self, item_id: str) -> T | None:
        for item in self._items:
            if self._key(item) == item_id:
                return item
        return None

    def filter(self, predicate: Callable[[T], bool]) -> list[T]:
        return [item for item in self._items if predicate(item)]

    def _set(self, items: tuple[T, ...]) -> tuple[T, ...]:
        self._events.emit(will_set(self.collection), items)
        self._items = items
        self._events.emit(did_set(self.collection), items)
        return items

    def upsert(self, item: T) -> tuple[T, ...]:
        return self.upsert_many([item])

    def upsert_many(self, items: Iterable[T]) -> tuple[T, ...]:
        with self._lock:
            return self._set(tuple(merge(self._items, items, self._preserve, self._key)))

    def replace_all(self, items: Iterable[T]) -> tuple[T, ...]:
        with self._lock:
            return self._set(tuple(items))

    def update(self, mutate: Callable[[tuple[T, ...]], Iterable[T]]) -> tuple[T, ...]:
        """Read-modify-write under the store lock."""
        with self._lock:
            return self._set(tuple(mutate(self._items)))

    def remove(self, item_id: str) -> T | None:
        with self._lock:
            removed = self.find(item_id)
            if removed is None:
                return None
            self._set(tuple(i for i in self._items if self._key(i) != item_id))
            return removed

    def clear(self) -> None:
        with self._lock:
            self._set(())


class ValueStore(Generic[T]):
    def __init__(self, collection: Collection, events: EventBus) -> None:
        self.collection = collection
        self._events = events
        self._value: T | None = None
        self._lock = threading.RLock()

    def get(self) -> T | None:
        return self._value

    def set(self, value: T | None) -> None:
        with self._lock:
            self._events.emit(will_set(self.collection), value)
            self._value = value
            self._events.emit(did_set(self.collection), value)
