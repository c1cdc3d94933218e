from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import requests

from cache_layer import ResourceCache
from config import Config, get_config
from kv_store import KeyValueStore, open_kv_store
from log_setup import setup_logging
from mutations import LoggingNotifier, MutationCoordinator, Notifier, UndoBroker, build_coordinators
from search import RecentSearches
from services.http_client import HttpResourceClient
from workspace import WorkspaceSelection


@dataclass
class AppState:
    cfg: Config
    cache: ResourceCache
    notifier: Notifier
    undo: UndoBroker
    store: KeyValueStore
    coordinators: dict[str, MutationCoordinator]
    workspace: WorkspaceSelection
    recent_searches: RecentSearches

    def resource(self, resource_type: str) -> MutationCoordinator:
        return self.coordinators[str(resource_type or "").strip().lower()]


def create_app_state(
    cfg: Optional[Config] = None,
    *,
    session: Optional[requests.Session] = None,
    notifier: Optional[Notifier] = None,
    store: Optional[KeyValueStore] = None,
) -> AppState:
    cfg = cfg or get_config()
    cfg.validate()
    setup_logging(cfg.LOG_LEVEL)

    http = session or requests.Session()
    cache = ResourceCache.from_config(cfg)
    notifier = notifier or LoggingNotifier()
    undo = UndoBroker()
    store = store or open_kv_store(cfg)

    coordinators = build_coordinators(
        lambda spec: HttpResourceClient.from_config(spec, cfg, session=http),
        cache,
        notifier,
        undo,
        cfg=cfg,
    )
    return AppState(
        cfg=cfg,
        cache=cache,
        notifier=notifier,
        undo=undo,
        store=store,
        coordinators=coordinators,
        workspace=WorkspaceSelection(store, cache),
        recent_searches=RecentSearches(store, limit=cfg.RECENT_SEARCH_LIMIT),
    )
