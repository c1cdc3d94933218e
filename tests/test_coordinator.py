from __future__ import annotations

import logging

import pytest

from mutations.coordinator import MutationState
from utils import ResourceError, is_temp_id


def test_create_swaps_temp_id_for_server_id(make_coordinator, notifier):
    coord, client = make_coordinator("job", [{"id": "1", "title": "Engineer"}])
    seen = {}

    def _during(op):
        if op == "create":
            entry = coord.cached("ws-1")
            seen["ids"] = entry.ids()
            seen["total"] = entry.total

    client.during_call = _during
    created = coord.create("ws-1", {"title": "Designer"})

    assert is_temp_id(seen["ids"][0])
    assert seen["ids"][1:] == ["1"]
    assert seen["total"] == 2

    entry = coord.cached("ws-1")
    assert entry.ids() == [created["id"], "1"]
    assert entry.total == 2
    assert not any(is_temp_id(i) for i in entry.ids())
    assert created["workspaceId"] == "ws-1"
    assert notifier.messages() == ["Job created"]
    assert coord.last_context.history == [
        MutationState.IDLE,
        MutationState.SPECULATING,
        MutationState.COMMITTED,
        MutationState.SETTLED,
    ]


def test_create_failure_restores_previous_list_exactly(make_coordinator, notifier):
    coord, client = make_coordinator("job", [{"id": "1", "title": "Engineer", "tags": ["a"]}])
    before = coord.cached("ws-1")
    client.fail["create"] = ResourceError("BAD_REQUEST", "Title is required", 400)

    with pytest.raises(ResourceError) as exc:
        coord.create("ws-1", {"title": ""})

    assert exc.value.status == 400
    after = coord.cached("ws-1")
    assert after.records == before.records
    assert after.total == before.total
    assert notifier.last.type == "error"
    assert notifier.last.message == "Failed to create job: Title is required"
    assert coord.last_context.history[-2:] == [MutationState.ROLLED_BACK, MutationState.SETTLED]


def test_create_failure_without_cached_list_leaves_nothing_behind(make_coordinator):
    coord, client = make_coordinator("interview", seed=False)
    client.fail["create"] = ResourceError("INTERNAL", "Server exploded", 500)

    with pytest.raises(ResourceError):
        coord.create("ws-1", {"candidateId": "c1"})

    assert coord.cached("ws-1") is None


def test_failed_create_on_empty_cache_tells_listeners(make_coordinator, cache):
    coord, client = make_coordinator("job", seed=False)
    seen = []
    cache.subscribe(lambda key, entry: seen.append(entry.ids()))
    client.fail["create"] = ResourceError("INTERNAL", "Server exploded", 500)

    with pytest.raises(ResourceError):
        coord.create("ws-1", {"title": "Designer"})

    assert len(seen) == 2
    assert is_temp_id(seen[0][0])
    assert seen[-1] == []
    assert coord.cached("ws-1") is None


def test_transport_failure_reports_generic_network_message(make_coordinator, notifier):
    coord, client = make_coordinator("application", [{"id": "1", "stage": "Applied"}])
    client.fail["update"] = ConnectionError("socket closed")

    with pytest.raises(ConnectionError):
        coord.update("ws-1", "1", {"notes": "x"})

    assert coord.find("ws-1", "1") == {"id": "1", "stage": "Applied"}
    assert "Network error" in notifier.last.message


def test_update_commits_server_record(make_coordinator, notifier):
    coord, client = make_coordinator("job", [{"id": "1", "title": "Engineer", "status": "draft"}])
    client.records["1"]["updatedAt"] = "2026-01-01T00:00:00.000Z"

    updated = coord.update("ws-1", "1", {"title": "Senior Engineer"})

    assert updated["updatedAt"] == "2026-01-01T00:00:00.000Z"
    assert coord.find("ws-1", "1") == updated
    assert notifier.last.message == "Job updated"


def test_update_requires_changes_before_any_call(make_coordinator):
    coord, client = make_coordinator("job", [{"id": "1"}])
    calls_before = list(client.calls)

    with pytest.raises(ResourceError) as exc:
        coord.update("ws-1", "1", {})

    assert exc.value.code == "BAD_REQUEST"
    assert client.calls == calls_before


def test_move_stage_success(make_coordinator, notifier):
    coord, client = make_coordinator("candidate", [{"id": "1", "stage": "Applied"}])

    token = coord.move_stage("ws-1", "1", "Interview")

    assert list(coord.cached("ws-1").records) == [{"id": "1", "stage": "Interview"}]
    assert notifier.last.message == "Moved to Interview"
    assert notifier.last.action is not None
    assert notifier.last.duration == 5.0
    assert token.kind == "transition"


def test_move_stage_failure_reverts(make_coordinator, notifier):
    coord, client = make_coordinator("candidate", [{"id": "1", "stage": "Applied"}])
    client.fail["update"] = ResourceError("NETWORK", "Network error")

    with pytest.raises(ResourceError):
        coord.move_stage("ws-1", "1", "Interview")

    assert list(coord.cached("ws-1").records) == [{"id": "1", "stage": "Applied"}]
    assert notifier.last.type == "error"
    assert "Network error" in notifier.last.message


def test_move_stage_undo_moves_back(make_coordinator, notifier, clock):
    coord, client = make_coordinator("candidate", [{"id": "1", "stage": "Applied"}])
    coord.move_stage("ws-1", "1", "Interview")

    clock.advance(4.9)
    assert notifier.last.action() is True

    assert client.calls[-1] == ("update", "1", {"stage": "Applied"})
    assert coord.find("ws-1", "1")["stage"] == "Applied"


def test_move_stage_undo_window_is_five_seconds(make_coordinator, notifier, clock):
    coord, client = make_coordinator("candidate", [{"id": "1", "stage": "Applied"}])
    coord.move_stage("ws-1", "1", "Interview")

    clock.advance(5.0)
    assert notifier.last.action() is False
    assert coord.find("ws-1", "1")["stage"] == "Interview"


def test_move_stage_undo_expiry_callback(make_coordinator, undo, clock):
    coord, _client = make_coordinator("candidate", [{"id": "1", "stage": "Applied"}])
    expired = []

    token = coord.move_stage("ws-1", "1", "Interview", on_undo_expire=expired.append)
    clock.advance(5.0)

    assert undo.sweep() == 1
    assert [t.token_id for t in expired] == [token.token_id]
    assert coord.find("ws-1", "1")["stage"] == "Interview"


def test_move_stage_without_undo(make_coordinator, notifier, undo):
    coord, _client = make_coordinator("application", [{"id": "1", "stage": "Applied"}])

    token = coord.move_stage("ws-1", "1", "Offer", show_undo=False)

    assert token is None
    assert notifier.last.action is None
    assert undo.pending() == []


def test_delete_then_undo_recreates_record(make_coordinator, notifier, clock):
    records = [
        {"id": "1", "name": "Ada", "stage": "Applied"},
        {"id": "2", "name": "Grace", "stage": "Screen"},
    ]
    coord, client = make_coordinator("candidate", records)
    total_before = coord.cached("ws-1").total

    coord.delete("ws-1", "2")

    entry = coord.cached("ws-1")
    assert "2" not in entry.ids()
    assert entry.total == total_before - 1
    assert notifier.last.message == "Candidate deleted"
    assert notifier.last.duration == 8.0

    clock.advance(7.5)
    assert notifier.last.action() is True

    op, payload = client.calls[-1]
    assert op == "create"
    assert "id" not in payload
    assert payload["name"] == "Grace"
    assert payload["stage"] == "Screen"

    entry = coord.cached("ws-1")
    assert entry.total == total_before
    restored = [r for r in entry.records if r["name"] == "Grace"]
    assert len(restored) == 1
    assert restored[0]["id"] != "2"
    assert not is_temp_id(restored[0]["id"])


def test_undo_runs_once(make_coordinator, notifier):
    coord, client = make_coordinator("job", [{"id": "1", "title": "Engineer"}])
    coord.delete("ws-1", "1")
    undo_action = notifier.last.action

    assert undo_action() is True
    assert undo_action() is False
    assert [c[0] for c in client.calls].count("create") == 1


def test_undo_after_expiry_is_noop(make_coordinator, notifier, clock):
    coord, client = make_coordinator("interview", [{"id": "1", "status": "scheduled"}])
    coord.delete("ws-1", "1")

    clock.advance(8.0)
    assert notifier.last.action() is False

    assert "create" not in [c[0] for c in client.calls]
    assert coord.cached("ws-1").ids() == []


def test_failed_undo_is_logged_not_raised(make_coordinator, notifier, caplog):
    coord, client = make_coordinator("job", [{"id": "1", "title": "Engineer"}])
    coord.delete("ws-1", "1")
    shown = len(notifier.notifications)
    client.fail["create"] = ResourceError("CONFLICT", "Duplicate job", 409)

    with caplog.at_level(logging.WARNING):
        assert notifier.last.action() is False

    assert any("undo_failed" in r.getMessage() for r in caplog.records)
    assert coord.cached("ws-1").ids() == []
    assert len(notifier.notifications) == shown


def test_delete_failure_restores_record(make_coordinator, notifier, undo):
    coord, client = make_coordinator("flow_template", [{"id": "1"}, {"id": "2"}])
    client.fail["delete"] = ResourceError("FORBIDDEN", "Template in use", 403)

    with pytest.raises(ResourceError):
        coord.delete("ws-1", "2")

    entry = coord.cached("ws-1")
    assert entry.ids() == ["1", "2"]
    assert entry.total == 2
    assert notifier.last.message == "Failed to delete flow template: Template in use"
    assert undo.pending() == []


def test_delete_unknown_record_is_rejected_before_call(make_coordinator):
    coord, client = make_coordinator("job", [{"id": "1"}])
    calls_before = list(client.calls)

    with pytest.raises(ResourceError) as exc:
        coord.delete("ws-1", "404")

    assert exc.value.code == "NOT_FOUND"
    assert client.calls == calls_before


def test_settle_marks_every_filter_variant_stale(make_coordinator):
    coord, client = make_coordinator("job", [{"id": "1", "status": "open"}])
    coord.list("ws-1", {"status": "open"})
    coord.list("ws-2")

    coord.update("ws-1", "1", {"title": "x"})

    assert coord.cached("ws-1").stale is True
    assert coord.cached("ws-1", {"status": "open"}).stale is True
    assert coord.cached("ws-2").stale is False


def test_list_reads_through_and_refetches_when_stale(make_coordinator):
    coord, client = make_coordinator("job", [{"id": "1"}])
    lists = lambda: [c for c in client.calls if c[0] == "list"]

    coord.list("ws-1")
    assert len(lists()) == 1

    coord.update("ws-1", "1", {"title": "x"})
    entry = coord.list("ws-1")

    assert len(lists()) == 2
    assert entry.stale is False
    assert entry.find("1")["title"] == "x"


def test_rollback_restores_own_snapshot_over_later_write(make_coordinator, caplog):
    coord, client = make_coordinator("candidate", [{"id": "1", "stage": "Applied"}])

    def _interleaved(op):
        client.during_call = None
        coord.update("ws-1", "1", {"stage": "Offer"}, notify=False)
        raise ResourceError("CONFLICT", "Stale write", 409)

    client.during_call = _interleaved
    with caplog.at_level(logging.WARNING):
        with pytest.raises(ResourceError):
            coord.update("ws-1", "1", {"stage": "Interview"})

    assert coord.find("ws-1", "1")["stage"] == "Applied"
    assert any("stale_rollback" in r.getMessage() for r in caplog.records)


def test_update_during_list_fetch_survives_fetched_page(make_coordinator):
    coord, client = make_coordinator("job", [{"id": "1", "title": "Engineer"}])
    server_before = dict(client.records["1"])

    def _mutate_mid_fetch(op):
        if op != "list":
            return
        client.during_call = None
        coord.update("ws-1", "1", {"title": "Staff Engineer"}, notify=False)
        # the page on the wire was built before the update landed
        client.records["1"] = server_before

    client.during_call = _mutate_mid_fetch
    entry = coord.list("ws-1", force=True)

    assert entry.find("1")["title"] == "Staff Engineer"
    assert coord.find("ws-1", "1")["title"] == "Staff Engineer"
    assert coord.cached("ws-1").stale is True


def test_create_during_list_fetch_keeps_new_record(make_coordinator):
    coord, client = make_coordinator("job", [{"id": "1", "title": "Engineer"}])
    created = {}

    def _mutate_mid_fetch(op):
        if op != "list":
            return
        client.during_call = None
        created.update(coord.create("ws-1", {"title": "Designer"}, notify=False))
        client.records.pop(created["id"])

    client.during_call = _mutate_mid_fetch
    entry = coord.list("ws-1", force=True)

    assert entry.ids() == [created["id"], "1"]
    assert entry.total == 2
    assert coord.cached("ws-1").ids() == [created["id"], "1"]
