import copy
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClient:
    """In-memory resource backend. ``fail`` maps an operation name to the exception it raises."""

    def __init__(self, records=None):
        self.records = {str(r["id"]): copy.deepcopy(r) for r in (records or [])}
        self.calls = []
        self.fail = {}
        self.during_call = None
        self._next_id = 100

    def _enter(self, op, *args):
        self.calls.append((op,) + args)
        if self.during_call is not None:
            self.during_call(op)
        exc = self.fail.get(op)
        if exc is not None:
            raise exc

    def create(self, payload):
        self._enter("create", copy.deepcopy(payload))
        self._next_id += 1
        record = {**copy.deepcopy(payload), "id": str(self._next_id)}
        self.records[record["id"]] = record
        return copy.deepcopy(record)

    def update(self, record_id, patch):
        self._enter("update", record_id, copy.deepcopy(patch))
        record = {**self.records.get(str(record_id), {"id": str(record_id)}), **copy.deepcopy(patch)}
        self.records[str(record_id)] = record
        return copy.deepcopy(record)

    def delete(self, record_id):
        self._enter("delete", record_id)
        self.records.pop(str(record_id), None)

    def list(self, scope_id, filters):
        self._enter("list", scope_id, copy.deepcopy(filters))
        records = [copy.deepcopy(r) for r in self.records.values()]
        return {"records": records, "total": len(records)}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def cache():
    from cache_layer import ResourceCache

    return ResourceCache(ttl=3600, max_items=1000)


@pytest.fixture()
def notifier():
    from mutations.notifier import RecordingNotifier

    return RecordingNotifier()


@pytest.fixture()
def undo(clock):
    from mutations.undo import UndoBroker

    return UndoBroker(clock=clock)


@pytest.fixture()
def make_coordinator(cache, notifier, undo):
    from mutations.coordinator import MutationCoordinator
    from mutations.resources import get_resource

    def _make(resource_type="candidate", records=None, *, seed=True, scope="ws-1"):
        spec = get_resource(resource_type)
        client = FakeClient(records)
        coord = MutationCoordinator(spec, client, cache, notifier, undo=undo)
        if seed:
            coord.list(scope)
        return coord, client

    return _make
