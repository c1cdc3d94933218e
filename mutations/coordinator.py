from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from cache_layer import CollectionEntry, ResourceCache
from log_setup import log_event
from mutations.notifier import ERROR, SUCCESS, Notifier
from mutations.resources import ResourceSpec
from mutations.undo import KIND_DELETE, KIND_TRANSITION, UndoBroker, UndoToken
from utils import ResourceError, clone_record, new_temp_id, record_id, without_id

log = logging.getLogger(__name__)

DEFAULT_UNDO_DELETE_SECONDS = 8.0
DEFAULT_UNDO_TRANSITION_SECONDS = 5.0


class ResourceClient(Protocol):
    def create(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, record_id: str, patch: dict[str, Any]) -> dict[str, Any]: ...

    def delete(self, record_id: str) -> None: ...

    def list(self, scope_id: str, filters: dict[str, Any]) -> dict[str, Any]: ...


class MutationState(str, enum.Enum):
    IDLE = "IDLE"
    SPECULATING = "SPECULATING"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    SETTLED = "SETTLED"


_NEXT_STATES = {
    MutationState.IDLE: {MutationState.SPECULATING},
    MutationState.SPECULATING: {MutationState.COMMITTED, MutationState.ROLLED_BACK},
    MutationState.COMMITTED: {MutationState.SETTLED},
    MutationState.ROLLED_BACK: {MutationState.SETTLED},
    MutationState.SETTLED: set(),
}


@dataclass
class MutationContext:
    operation: str
    key: str
    previous_snapshot: Optional[CollectionEntry] = None
    deleted_record: Optional[dict[str, Any]] = None
    temp_id: str = ""
    speculative_version: int = 0
    state: MutationState = MutationState.IDLE
    history: list[MutationState] = field(default_factory=lambda: [MutationState.IDLE])
    consumed: bool = False

    def advance(self, state: MutationState) -> None:
        if state not in _NEXT_STATES[self.state]:
            raise RuntimeError(f"invalid mutation transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def consume(self) -> Optional[CollectionEntry]:
        if self.consumed:
            raise RuntimeError("mutation context already consumed")
        self.consumed = True
        return self.previous_snapshot


class MutationCoordinator:
    """Optimistic create/update/delete for one resource type.

    Every operation runs the same cycle: cancel in-flight reads for the scope,
    snapshot the cached list, write the speculative list, call the client,
    then commit the server's answer or restore the snapshot. The cycle always
    ends by marking every list of the scope stale.

    Mutations on the same key are not serialized. A rollback restores the
    snapshot its own mutation captured, even when a later mutation has
    written over the speculative state in the meantime.
    """

    def __init__(
        self,
        spec: ResourceSpec,
        client: ResourceClient,
        cache: ResourceCache,
        notifier: Notifier,
        *,
        undo: UndoBroker | None = None,
        undo_delete_seconds: float = DEFAULT_UNDO_DELETE_SECONDS,
        undo_transition_seconds: float = DEFAULT_UNDO_TRANSITION_SECONDS,
    ):
        self.spec = spec
        self.client = client
        self.cache = cache
        self.notifier = notifier
        self.undo = undo
        self.undo_delete_seconds = float(undo_delete_seconds)
        self.undo_transition_seconds = float(undo_transition_seconds)
        self.last_context: Optional[MutationContext] = None

    # Reads

    def list(self, scope_id: str, filters: dict[str, Any] | None = None, *, force: bool = False) -> CollectionEntry:
        key = self.spec.list_key(scope_id, filters)
        return self.cache.fetch(key, lambda: self.client.list(scope_id, dict(filters or {})), force=force)

    def cached(self, scope_id: str, params: dict[str, Any] | None = None) -> Optional[CollectionEntry]:
        return self.cache.read(self.spec.list_key(scope_id, params))

    def find(self, scope_id: str, rid: str, params: dict[str, Any] | None = None) -> Optional[dict[str, Any]]:
        entry = self.cached(scope_id, params)
        return entry.find(rid) if entry is not None else None

    # Mutations

    def create(
        self,
        scope_id: str,
        payload: dict[str, Any],
        *,
        params: dict[str, Any] | None = None,
        notify: bool = True,
    ) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise ResourceError("BAD_REQUEST", f"{self.spec.label} payload must be an object")

        body = without_id(payload)
        if scope_id and self.spec.scope_field:
            body.setdefault(self.spec.scope_field, scope_id)

        temp_id = new_temp_id()
        speculative = {**clone_record(body), "id": temp_id}

        def _commit(entry: CollectionEntry, created: Any) -> CollectionEntry:
            rid = record_id(created)
            if not rid:
                log_event(log, "create_without_id", level=logging.WARNING, resource=self.spec.resource_type)
                return entry.remove_record(temp_id)
            if temp_id in entry.ids():
                if rid in entry.ids():
                    return entry.remove_record(temp_id)
                return entry.replace_record(temp_id, created)
            if rid in entry.ids():
                return entry.replace_record(rid, created)
            return entry.prepend(created)

        ctx = MutationContext(operation="create", key=self.spec.list_key(scope_id, params), temp_id=temp_id)
        created = self._run(
            ctx,
            scope_id=scope_id,
            verb="create",
            speculate=lambda entry: entry.prepend(speculative),
            call=lambda: self.client.create(clone_record(body)),
            commit=_commit,
            notify=notify,
        )
        if notify:
            self.notifier.show(f"{self.spec.label} created", type=SUCCESS)
        return created

    def update(
        self,
        scope_id: str,
        rid: str,
        patch: dict[str, Any],
        *,
        params: dict[str, Any] | None = None,
        notify: bool = True,
    ) -> dict[str, Any]:
        if not isinstance(patch, dict) or not patch:
            raise ResourceError("BAD_REQUEST", f"{self.spec.label} update must change at least one field")
        rid = str(rid or "")
        if not rid:
            raise ResourceError("BAD_REQUEST", f"{self.spec.label} id is required")

        changes = without_id(patch)

        def _commit(entry: CollectionEntry, updated: Any) -> CollectionEntry:
            if isinstance(updated, dict) and updated:
                return entry.replace_record(rid, {**updated, "id": record_id(updated) or rid})
            return entry

        ctx = MutationContext(operation="update", key=self.spec.list_key(scope_id, params))
        updated = self._run(
            ctx,
            scope_id=scope_id,
            verb="update",
            speculate=lambda entry: entry.patch_record(rid, changes),
            call=lambda: self.client.update(rid, clone_record(changes)),
            commit=_commit,
            notify=notify,
        )
        if notify:
            self.notifier.show(f"{self.spec.label} updated", type=SUCCESS)
        return updated

    def delete(
        self,
        scope_id: str,
        rid: str,
        *,
        params: dict[str, Any] | None = None,
        notify: bool = True,
        on_undo_expire: Optional[Callable[[UndoToken], Any]] = None,
    ) -> Optional[UndoToken]:
        rid = str(rid or "")
        record = self.find(scope_id, rid, params)
        if record is None:
            raise ResourceError("NOT_FOUND", f"{self.spec.label} not found", 404)

        ctx = MutationContext(operation="delete", key=self.spec.list_key(scope_id, params), deleted_record=record)
        self._run(
            ctx,
            scope_id=scope_id,
            verb="delete",
            speculate=lambda entry: entry.remove_record(rid),
            call=lambda: self.client.delete(rid),
            commit=lambda entry, _result: entry,
            notify=notify,
        )

        token = None
        if self.undo is not None:
            deleted = clone_record(ctx.deleted_record or {})
            token = self.undo.offer(
                deleted,
                lambda: self.create(scope_id, without_id(deleted), params=params, notify=False),
                resource_type=self.spec.resource_type,
                ttl_seconds=self.undo_delete_seconds,
                kind=KIND_DELETE,
                on_expire=on_undo_expire,
            )
        if notify:
            self._show_with_undo(f"{self.spec.label} deleted", token, self.undo_delete_seconds)
        return token

    def move_stage(
        self,
        scope_id: str,
        rid: str,
        new_stage: str,
        *,
        params: dict[str, Any] | None = None,
        notify: bool = True,
        show_undo: bool = True,
        on_undo_expire: Optional[Callable[[UndoToken], Any]] = None,
    ) -> Optional[UndoToken]:
        rid = str(rid or "")
        record = self.find(scope_id, rid, params)
        if record is None:
            raise ResourceError("NOT_FOUND", f"{self.spec.label} not found", 404)
        field_name = self.spec.stage_field
        previous_stage = record.get(field_name)

        def _commit(entry: CollectionEntry, updated: Any) -> CollectionEntry:
            if isinstance(updated, dict) and updated:
                return entry.replace_record(rid, {**updated, "id": record_id(updated) or rid})
            return entry

        ctx = MutationContext(operation="move_stage", key=self.spec.list_key(scope_id, params))
        self._run(
            ctx,
            scope_id=scope_id,
            verb="move",
            speculate=lambda entry: entry.patch_record(rid, {field_name: new_stage}),
            call=lambda: self.client.update(rid, {field_name: new_stage}),
            commit=_commit,
            notify=notify,
        )

        token = None
        if show_undo and self.undo is not None:
            token = self.undo.offer(
                record,
                lambda: self.update(scope_id, rid, {field_name: previous_stage}, params=params, notify=False),
                resource_type=self.spec.resource_type,
                ttl_seconds=self.undo_transition_seconds,
                kind=KIND_TRANSITION,
                on_expire=on_undo_expire,
            )
        if notify:
            self._show_with_undo(f"Moved to {new_stage}", token, self.undo_transition_seconds)
        return token

    # Lifecycle

    def _run(
        self,
        ctx: MutationContext,
        *,
        scope_id: str,
        verb: str,
        speculate: Callable[[CollectionEntry], CollectionEntry],
        call: Callable[[], Any],
        commit: Callable[[CollectionEntry, Any], CollectionEntry],
        notify: bool,
    ) -> Any:
        self.last_context = ctx
        prefix = self.spec.scope_prefix(scope_id)

        self.cache.cancel(prefix)
        ctx.previous_snapshot = self.cache.read(ctx.key)
        written = self.cache.write(ctx.key, speculate)
        ctx.speculative_version = written.version
        ctx.advance(MutationState.SPECULATING)
        self._log(ctx)

        try:
            result = call()
        except Exception as e:
            self._rollback(ctx)
            message = ResourceError.from_exception(e).message
            if notify:
                self.notifier.show(f"Failed to {verb} {self.spec.label.lower()}: {message}", type=ERROR)
            self._settle(ctx, prefix)
            raise

        ctx.consume()
        self.cache.write(ctx.key, lambda entry: commit(entry, result))
        ctx.advance(MutationState.COMMITTED)
        self._log(ctx)
        self._settle(ctx, prefix)
        return result

    def _rollback(self, ctx: MutationContext) -> None:
        snapshot = ctx.consume()
        current = self.cache.read(ctx.key)
        if current is not None and current.version != ctx.speculative_version:
            log_event(
                log,
                "stale_rollback",
                level=logging.WARNING,
                resource=self.spec.resource_type,
                key=ctx.key,
                expected_version=ctx.speculative_version,
                found_version=current.version,
            )
        if snapshot is None:
            self.cache.evict(ctx.key)
        else:
            self.cache.put(ctx.key, snapshot)
        ctx.advance(MutationState.ROLLED_BACK)
        self._log(ctx)

    def _settle(self, ctx: MutationContext, prefix: str) -> None:
        self.cache.invalidate(prefix)
        ctx.advance(MutationState.SETTLED)
        self._log(ctx)

    def _show_with_undo(self, message: str, token: Optional[UndoToken], duration: float) -> None:
        if token is None:
            self.notifier.show(message, type=SUCCESS)
            return
        undo = self.undo
        self.notifier.show(
            message,
            type=SUCCESS,
            duration=duration,
            action=lambda: undo.invoke(token),
            action_label="Undo",
        )

    def _log(self, ctx: MutationContext) -> None:
        log_event(
            log,
            "mutation",
            level=logging.DEBUG,
            resource=self.spec.resource_type,
            op=ctx.operation,
            state=ctx.state.value,
            key=ctx.key,
        )
