from __future__ import annotations

import logging
from typing import Optional

from cache_layer import ResourceCache
from kv_store import KeyValueStore
from log_setup import log_event
from mutations.resources import RESOURCES

log = logging.getLogger(__name__)

CURRENT_WORKSPACE_KEY = "currentWorkspaceId"


class WorkspaceSelection:
    def __init__(self, store: KeyValueStore, cache: ResourceCache):
        self._store = store
        self._cache = cache

    def current(self) -> Optional[str]:
        value = str(self._store.get(CURRENT_WORKSPACE_KEY) or "").strip()
        return value or None

    def select(self, workspace_id: str) -> str:
        new_id = str(workspace_id or "").strip()
        if not new_id:
            raise ValueError("workspace id is required")
        previous = self.current()
        self._store.set(CURRENT_WORKSPACE_KEY, new_id)
        if previous and previous != new_id:
            evicted = self._evict_scope(previous)
            log_event(log, "workspace_changed", previous=previous, current=new_id, evicted=evicted)
        return new_id

    def clear(self) -> None:
        previous = self.current()
        self._store.remove(CURRENT_WORKSPACE_KEY)
        if previous:
            self._evict_scope(previous)

    def _evict_scope(self, workspace_id: str) -> int:
        return sum(self._cache.evict(spec.scope_prefix(workspace_id)) for spec in RESOURCES.values())
