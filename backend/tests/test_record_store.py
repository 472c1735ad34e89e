"""Record store accessor tests (in-memory backend)."""

import asyncio
import time

import pytest
from firebase_admin import exceptions as firebase_exceptions

from drugwatch.core.exceptions import RecordNotFound, StaleRecordError, StoreWriteError, TransitionRejected
from drugwatch.services.record_store import InMemoryRecordStore, apply_patch, run_write, translate_errors


class TestBasicOperations:
    """Point reads, writes and partial patches."""

    def test_set_and_get_nested_path(self, store):
        store.set("submissions/a/meta", {"facilityName": "X"})
        assert store.get("submissions/a") == {"meta": {"facilityName": "X"}}
        assert store.get("submissions/missing") is None

    def test_get_returns_a_copy(self, store):
        store.set("a", {"b": 1})
        store.get("a")["b"] = 2
        assert store.get("a") == {"b": 1}

    def test_push_keys_are_time_ordered(self, store):
        keys = [store.push("notifications", {"n": i}) for i in range(5)]
        assert keys == sorted(keys)
        assert len(set(keys)) == 5

    def test_update_patches_disjoint_fields(self, store):
        store.set("r", {"meta": {"a": 1, "b": 2}, "x": 1})
        store.update("r", {"meta/b": 3, "x": None, "y": "new"})
        assert store.get("r") == {"meta": {"a": 1, "b": 3}, "y": "new"}

    def test_apply_patch_creates_intermediate_nodes(self):
        assert apply_patch({}, {"a/b/c": 1}) == {"a": {"b": {"c": 1}}}


class TestQuery:
    def make_store(self):
        return InMemoryRecordStore({
            "submissions": {
                "k1": {"meta": {"createdAt": 30}},
                "k2": {"meta": {"createdAt": 10}},
                "k3": {"meta": {"createdAt": 20}},
                "k4": {"meta": {}},
            }
        })

    def test_ascending_by_child(self):
        rows = self.make_store().query("submissions", "meta/createdAt")
        assert [k for k, _ in rows] == ["k4", "k2", "k3", "k1"]

    def test_end_at_is_inclusive_and_limit_takes_the_last(self):
        rows = self.make_store().query("submissions", "meta/createdAt", end_at=20, limit_to_last=2)
        assert [k for k, _ in rows] == ["k2", "k3"]

    def test_snapshot_is_newest_first(self):
        rows = self.make_store().snapshot("submissions", "meta/createdAt")
        assert [k for k, _ in rows] == ["k1", "k3", "k2", "k4"]


class TestPatchRecord:
    """Revision-checked patches."""

    def test_increments_revision(self, store):
        store.set("submissions/a", {"meta": {"status": "submitted"}, "revision": 0})
        updated = store.patch_record("submissions/a", {"meta/status": "done"}, expected_revision=0)
        assert updated["revision"] == 1
        assert store.get("submissions/a/meta/status") == "done"

    def test_stale_revision_is_rejected(self, store):
        store.set("submissions/a", {"meta": {}, "revision": 3})
        with pytest.raises(StaleRecordError) as exc:
            store.patch_record("submissions/a", {"meta/status": "done"}, expected_revision=2)
        assert exc.value.status_code == 409
        assert exc.value.actual == 3
        assert store.get("submissions/a/revision") == 3

    def test_missing_record(self, store):
        with pytest.raises(RecordNotFound):
            store.patch_record("submissions/nope", {"x": 1})
        assert store.get("submissions/nope") is None

    def test_failed_precondition_writes_nothing(self, store):
        store.set("submissions/a", {"meta": {}, "revision": 0})

        def reject(current):
            raise TransitionRejected("no")

        with pytest.raises(TransitionRejected):
            store.patch_record("submissions/a", {"meta/status": "x"}, precondition=reject)
        assert store.get("submissions/a") == {"meta": {}, "revision": 0}

    def test_legacy_string_revision(self, store):
        store.set("submissions/a", {"revision": "4"})
        assert store.patch_record("submissions/a", {"x": 1}, expected_revision=4)["revision"] == 5


class TestReserveSequence:
    def test_counts_up_from_one(self, store):
        assert [store.reserve_sequence("docNo") for _ in range(3)] == [1, 2, 3]
        assert store.reserve_sequence("serialNumber") == 1
        assert store.get("counters/docNo") == 3


class TestListen:
    """Live subscriptions deliver full snapshots."""

    def test_initial_snapshot_and_changes(self, store):
        store.set("submissions/a", {"meta": {"createdAt": 1}})
        received = []
        sub = store.listen("submissions", received.append, order_by="meta/createdAt")
        store.set("submissions/b", {"meta": {"createdAt": 2}})

        assert [[k for k, _ in rows] for rows in received] == [["a"], ["b", "a"]]
        sub.close()

    def test_close_detaches_listener(self, store):
        received = []
        sub = store.listen("submissions", received.append)
        sub.close()
        sub.close()
        store.set("submissions/a", {"x": 1})
        assert len(received) == 1
        assert sub.closed

    def test_unrelated_paths_do_not_fire(self, store):
        received = []
        store.listen("submissions", received.append)
        store.set("counters/docNo", 1)
        assert len(received) == 1

    def test_failing_callback_does_not_break_writes(self, store):
        def broken(rows):
            if rows:
                raise RuntimeError("boom")

        store.listen("submissions", broken)
        store.set("submissions/a", {"x": 1})
        assert store.get("submissions/a") == {"x": 1}


class TestWriteErrors:
    def test_timeout_race(self):
        with pytest.raises(StoreWriteError) as exc:
            asyncio.run(run_write(time.sleep, 0.3, timeout=0.01))
        assert exc.value.status_code == 504
        assert "took too long" in exc.value.message

    def test_run_write_returns_result(self, store):
        assert asyncio.run(run_write(store.reserve_sequence, "docNo")) == 1

    def test_permission_denied_is_translated(self):
        with pytest.raises(StoreWriteError) as exc:
            with translate_errors("Write"):
                raise firebase_exceptions.PermissionDeniedError("denied")
        assert exc.value.status_code == 403
        assert "may not be allowed to write here" in exc.value.message

    def test_unavailable_is_translated(self):
        with pytest.raises(StoreWriteError) as exc:
            with translate_errors("Write"):
                raise firebase_exceptions.UnavailableError("offline")
        assert exc.value.status_code == 503
