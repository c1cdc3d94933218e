from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from cachetools import TTLCache

from log_setup import log_event
from utils import record_id

log = logging.getLogger(__name__)


def _sha256_16(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def cache_prefix(namespace: str, *, scope: list[str] | None = None) -> str:
    ns = str(namespace or "").strip().upper()
    scope = scope or []
    parts = [ns] + [str(s or "").strip() for s in scope if str(s or "").strip()]
    return ":".join(parts) + ":"


def make_cache_key(namespace: str, *, scope: list[str] | None = None, params: dict[str, Any] | None = None) -> str:
    params = params or {}
    try:
        blob = json.dumps(params, sort_keys=True, separators=(",", ":"))
    except Exception:
        blob = str(params)
    return cache_prefix(namespace, scope=scope) + _sha256_16(blob)


@dataclass(frozen=True)
class CollectionEntry:
    """One cached collection: ordered records plus the server's ``total`` count.

    Entries are values. The updaters below return new entries and never touch
    the records of the entry they were called on.
    """

    records: tuple[dict[str, Any], ...] = ()
    total: int = 0
    stale: bool = False
    version: int = 0

    def copy(self) -> "CollectionEntry":
        return replace(self, records=tuple(copy.deepcopy(r) for r in self.records))

    def ids(self) -> list[str]:
        return [record_id(r) for r in self.records]

    def find(self, rid: str) -> Optional[dict[str, Any]]:
        for r in self.records:
            if record_id(r) == str(rid):
                return copy.deepcopy(r)
        return None

    def prepend(self, record: dict[str, Any]) -> "CollectionEntry":
        return replace(self, records=(copy.deepcopy(record),) + self.copy().records, total=self.total + 1)

    def replace_record(self, rid: str, record: dict[str, Any]) -> "CollectionEntry":
        out = []
        for r in self.copy().records:
            out.append(copy.deepcopy(record) if record_id(r) == str(rid) else r)
        return replace(self, records=tuple(out))

    def patch_record(self, rid: str, patch: dict[str, Any]) -> "CollectionEntry":
        out = []
        for r in self.copy().records:
            if record_id(r) == str(rid):
                r = {**r, **copy.deepcopy(patch)}
            out.append(r)
        return replace(self, records=tuple(out))

    def remove_record(self, rid: str) -> "CollectionEntry":
        kept = tuple(r for r in self.copy().records if record_id(r) != str(rid))
        removed = len(self.records) - len(kept)
        return replace(self, records=kept, total=max(0, self.total - removed))


Listener = Callable[[str, CollectionEntry], None]


@dataclass
class _Generations:
    by_prefix: dict[str, int] = field(default_factory=dict)

    def bump(self, prefix: str) -> None:
        self.by_prefix[prefix] = self.by_prefix.get(prefix, 0) + 1

    def for_key(self, key: str) -> int:
        return sum(g for p, g in self.by_prefix.items() if key.startswith(p))


class ResourceCache:
    def __init__(self, *, ttl: int | None = None, max_items: int | None = None):
        ttl = int(ttl if ttl is not None else 300)
        max_items = int(max_items if max_items is not None else 10000)
        ttl = max(1, min(86400, ttl))
        max_items = max(100, min(200_000, max_items))
        self._cache: TTLCache = TTLCache(maxsize=max_items, ttl=ttl)
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._generations = _Generations()

    @classmethod
    def from_config(cls, cfg) -> "ResourceCache":
        return cls(ttl=cfg.CACHE_TTL_SECONDS, max_items=cfg.CACHE_MAX_ITEMS)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def read(self, key: str) -> Optional[CollectionEntry]:
        with self._lock:
            entry = self._cache.get(key)
            return entry.copy() if entry is not None else None

    def write(self, key: str, updater: Callable[[CollectionEntry], CollectionEntry]) -> CollectionEntry:
        with self._lock:
            current = self._cache.get(key)
            base = current.copy() if current is not None else CollectionEntry()
            updated = updater(base)
            if not isinstance(updated, CollectionEntry):
                raise TypeError("cache updater must return a CollectionEntry")
            stored = replace(updated.copy(), version=(current.version if current is not None else 0) + 1)
            self._cache[key] = stored
            listeners = list(self._listeners)

        self._notify(listeners, key, stored)
        return stored.copy()

    def _notify(self, listeners: list[Listener], key: str, entry: CollectionEntry) -> None:
        for listener in listeners:
            try:
                listener(key, entry.copy())
            except Exception:
                log.exception("cache listener failed key=%s", key)

    def put(self, key: str, entry: CollectionEntry) -> CollectionEntry:
        return self.write(key, lambda _current: entry)

    def invalidate(self, prefix: str) -> int:
        pfx = str(prefix or "")
        if not pfx:
            return 0
        marked = 0
        with self._lock:
            for k in [k for k in self._cache.keys() if str(k).startswith(pfx)]:
                entry = self._cache.get(k)
                if entry is None:
                    continue
                self._cache[k] = replace(entry, stale=True)
                marked += 1
        return marked

    def evict(self, prefix: str) -> int:
        """Drop every entry under ``prefix``; listeners get an empty entry per removed key."""
        pfx = str(prefix or "")
        if not pfx:
            return 0
        removed: list[str] = []
        with self._lock:
            for k in [k for k in self._cache.keys() if str(k).startswith(pfx)]:
                try:
                    del self._cache[k]
                    removed.append(k)
                except KeyError:
                    pass
            listeners = list(self._listeners)

        for k in removed:
            self._notify(listeners, k, CollectionEntry())
        return len(removed)

    def cancel(self, prefix: str) -> None:
        """Make any fetch under ``prefix`` that is already running drop its result."""
        with self._lock:
            self._generations.bump(str(prefix or ""))

    def fetch(self, key: str, loader: Callable[[], dict[str, Any]], *, force: bool = False) -> CollectionEntry:
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None and not entry.stale and not force:
                return entry.copy()
            generation = self._generations.for_key(key)

        result = loader() or {}
        records = tuple(copy.deepcopy(r) for r in (result.get("records") or []))
        total = result.get("total")
        fresh = CollectionEntry(records=records, total=int(total if total is not None else len(records)))

        with self._lock:
            if self._generations.for_key(key) != generation:
                log_event(log, "fetch_discarded", level=logging.DEBUG, key=key)
                current = self._cache.get(key)
                return current.copy() if current is not None else fresh
        return self.put(key, fresh)
