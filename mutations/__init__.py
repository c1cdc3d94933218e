from __future__ import annotations

from typing import Callable

from cache_layer import ResourceCache
from mutations.coordinator import MutationContext, MutationCoordinator, MutationState, ResourceClient
from mutations.notifier import LoggingNotifier, Notification, Notifier, RecordingNotifier
from mutations.resources import RESOURCES, ResourceSpec, get_resource
from mutations.undo import UndoBroker, UndoToken, is_valid


def build_coordinators(
    client_factory: Callable[[ResourceSpec], ResourceClient],
    cache: ResourceCache,
    notifier: Notifier,
    undo: UndoBroker | None = None,
    *,
    cfg=None,
) -> dict[str, MutationCoordinator]:
    kwargs = {}
    if cfg is not None:
        kwargs = {
            "undo_delete_seconds": cfg.UNDO_DELETE_SECONDS,
            "undo_transition_seconds": cfg.UNDO_TRANSITION_SECONDS,
        }
    return {
        name: MutationCoordinator(spec, client_factory(spec), cache, notifier, undo=undo, **kwargs)
        for name, spec in RESOURCES.items()
    }


__all__ = [
    "LoggingNotifier",
    "MutationContext",
    "MutationCoordinator",
    "MutationState",
    "Notification",
    "Notifier",
    "RecordingNotifier",
    "ResourceClient",
    "ResourceSpec",
    "UndoBroker",
    "UndoToken",
    "build_coordinators",
    "get_resource",
    "is_valid",
]
