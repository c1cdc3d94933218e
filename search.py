from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

from kv_store import KeyValueStore
from utils import parse_json_maybe

log = logging.getLogger(__name__)

RECENT_SEARCHES_KEY = "recentSearches"
DEFAULT_RECENT_LIMIT = 12
ACTION_TYPE = "action"


@dataclass(frozen=True)
class SearchEntry:
    type: str
    id: str
    title: str
    subtitle: str = ""

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["SearchEntry"]:
        if not isinstance(raw, dict):
            return None
        entry_type = str(raw.get("type") or "").strip()
        entry_id = str(raw.get("id") or "").strip()
        if not entry_type or not entry_id:
            return None
        return cls(
            type=entry_type,
            id=entry_id,
            title=str(raw.get("title") or ""),
            subtitle=str(raw.get("subtitle") or ""),
        )

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class RecentSearches:
    """Most-recent-first quick-search selections, persisted as a JSON array.

    Action entries (commands such as "create job") are only meaningful in the
    session that produced them and are dropped when the history is loaded.
    """

    def __init__(self, store: KeyValueStore, *, key: str = RECENT_SEARCHES_KEY, limit: int = DEFAULT_RECENT_LIMIT):
        self._store = store
        self._key = key
        self._limit = max(1, int(limit))
        self._lock = threading.Lock()

    def load(self) -> list[SearchEntry]:
        raw = self._store.get(self._key)
        data = parse_json_maybe(raw, fallback=[])
        if not isinstance(data, list):
            log.warning("ignoring malformed %s value", self._key)
            return []
        out: list[SearchEntry] = []
        for item in data:
            entry = SearchEntry.from_dict(item)
            if entry is None or entry.type == ACTION_TYPE:
                continue
            out.append(entry)
        return out[: self._limit]

    def save(self, entries: Iterable[SearchEntry]) -> None:
        items = [e.to_dict() for e in list(entries)[: self._limit]]
        self._store.set(self._key, json.dumps(items, separators=(",", ":")))

    def add(self, entry: SearchEntry) -> list[SearchEntry]:
        with self._lock:
            current = [e for e in self.load() if (e.type, e.id) != (entry.type, entry.id)]
            updated = [entry] + current
            self.save(updated)
            return updated[: self._limit]

    def clear(self) -> None:
        self._store.remove(self._key)


_TOKEN_RE = re.compile(r"[^\w]+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_RE.split(str(text or "").lower()) if t]


def score(query: str, entry: SearchEntry) -> int:
    q = str(query or "").strip().lower()
    if not q:
        return 0
    title = entry.title.lower()
    subtitle = entry.subtitle.lower()

    points = 0
    if title == q:
        points += 100
    elif title.startswith(q):
        points += 60
    elif q in title:
        points += 40

    for token in tokenize(q):
        if token in title:
            points += 10
        elif token in subtitle:
            points += 5
    return points


def quick_search(query: str, items: Iterable[SearchEntry], limit: int = 10) -> list[SearchEntry]:
    scored = [(score(query, item), idx, item) for idx, item in enumerate(items)]
    ranked = sorted((s for s in scored if s[0] > 0), key=lambda s: (-s[0], s[1]))
    return [item for _, _, item in ranked[: max(0, int(limit))]]
