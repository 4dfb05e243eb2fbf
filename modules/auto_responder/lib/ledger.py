from __future__ import annotations

from collections import OrderedDict

from .store import LEDGER_KEY, Store

DEFAULT_LEDGER_CAP = 10_000


class DedupLedger:
    """
    Persistent, insertion-ordered set of entry ids that already received a response.

    Backed by a Store under LEDGER_KEY as a JSON list (oldest first). When the
    cap is exceeded the oldest ids are evicted. `mark` writes through immediately
    so a crash never loses a recorded submission.
    """

    def __init__(self, store: Store, *, cap: int = DEFAULT_LEDGER_CAP, key: str = LEDGER_KEY) -> None:
        if cap <= 0:
            raise ValueError("ledger cap must be >= 1")
        self._store = store
        self._key = key
        self.cap = cap
        raw = store.get(key, []) or []
        self._ids: OrderedDict[str, None] = OrderedDict()
        for item in raw if isinstance(raw, list) else []:
            self._ids[str(item)] = None
        if self._evict():
            self._flush()

    def has(self, entry_id: str) -> bool:
        return str(entry_id) in self._ids

    def __contains__(self, entry_id: object) -> bool:
        return str(entry_id) in self._ids

    def mark(self, entry_id: str) -> None:
        key = str(entry_id)
        if key in self._ids:
            return
        self._ids[key] = None
        self._evict()
        self._flush()

    def count(self) -> int:
        return len(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def ids(self) -> list[str]:
        return list(self._ids)

    def clear(self) -> None:
        self._ids.clear()
        self._store.delete(self._key)

    def _evict(self) -> bool:
        evicted = False
        while len(self._ids) > self.cap:
            self._ids.popitem(last=False)
            evicted = True
        return evicted

    def _flush(self) -> None:
        self._store.set(self._key, list(self._ids))
