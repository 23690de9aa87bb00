"""Tests for undo, redo and restore over the snapshot log."""

import pytest

from storyforge.constants import HISTORY_KEY
from storyforge.history import UndoRedoController
from storyforge.snapshots import SnapshotStore
from storyforge.tracker import ChangeTracker

from conftest import FakeHost


@pytest.fixture
def rig(storage):
    """Host, store, tracker and controller wired the way the engine wires them."""
    host = FakeHost({"v": "A"})
    store = SnapshotStore(storage)
    tracker = ChangeTracker(host, store)
    history = UndoRedoController(store, host, tracker, storage)
    tracker.on_commit = history.record_commit
    tracker.tick()
    return host, store, tracker, history


def _edit(rig, value):
    host, _, tracker, _ = rig
    host.state = {"v": value}
    tracker.tick()


class TestUndo:
    def test_nothing_to_undo_at_start(self, rig):
        _, _, _, history = rig
        assert history.undo()["status"] == "nothing_to_undo"
        assert not history.can_undo

    def test_undo_restores_prior_content(self, rig):
        host, _, _, history = rig
        _edit(rig, "B")
        result = history.undo()
        assert result["status"] == "undone"
        assert host.state == {"v": "A"}

    def test_undo_captures_unsaved_edit(self, rig):
        host, store, _, history = rig
        host.state = {"v": "B"}  # not ticked yet
        assert history.undo()["status"] == "undone"
        assert host.state == {"v": "A"}
        assert any(s.data == {"v": "B"} for s in store.list())
        assert history.can_redo

    def test_repeated_undo_walks_back(self, rig):
        host, _, _, history = rig
        _edit(rig, "B")
        _edit(rig, "C")
        history.undo()
        assert host.state == {"v": "B"}
        history.undo()
        assert host.state == {"v": "A"}
        assert history.undo()["status"] == "nothing_to_undo"

    def test_undo_does_not_commit_restored_state_again(self, rig):
        _, store, tracker, history = rig
        _edit(rig, "B")
        history.undo()
        count = len(store)
        assert tracker.tick() is None
        assert len(store) == count

    def test_write_failure(self, rig):
        host, _, _, history = rig
        _edit(rig, "B")
        host.accept = False
        result = history.undo()
        assert result["status"] == "write_failed"
        assert host.state == {"v": "B"}
        assert not history.can_redo


class TestRedo:
    def test_redo_after_undo(self, rig):
        host, _, _, history = rig
        _edit(rig, "B")
        history.undo()
        result = history.redo()
        assert result["status"] == "redone"
        assert host.state == {"v": "B"}

    def test_redo_chain(self, rig):
        host, _, _, history = rig
        _edit(rig, "B")
        _edit(rig, "C")
        history.undo()
        history.undo()
        history.redo()
        assert host.state == {"v": "B"}
        history.redo()
        assert host.state == {"v": "C"}
        assert history.redo()["status"] == "nothing_to_redo"

    def test_new_edit_clears_redo(self, rig):
        _, _, _, history = rig
        _edit(rig, "B")
        history.undo()
        _edit(rig, "D")
        assert not history.can_redo
        assert history.redo()["status"] == "nothing_to_redo"

    def test_undo_after_redo(self, rig):
        host, _, _, history = rig
        _edit(rig, "B")
        history.undo()
        history.redo()
        history.undo()
        assert host.state == {"v": "A"}

    def test_redo_missing_snapshot(self, rig):
        _, store, _, history = rig
        _edit(rig, "B")
        history.undo()
        store.delete(history.redo_stack[-1])
        result = history.redo()
        assert result["status"] == "missing"


class TestRestore:
    def test_restore_by_id(self, rig):
        host, store, _, history = rig
        first_id = store.list()[0].id
        _edit(rig, "B")
        _edit(rig, "C")

        result = history.restore(first_id)
        assert result["status"] == "restored"
        assert result["snapshot_id"] == first_id
        assert host.state == {"v": "A"}

        # The replaced state is one redo away
        history.redo()
        assert host.state == {"v": "C"}

    def test_restore_unknown(self, rig):
        _, _, _, history = rig
        assert history.restore("snap_missing")["status"] == "not_found"


class TestStackPersistence:
    def test_stacks_survive_reload(self, rig, storage):
        host, store, tracker, history = rig
        _edit(rig, "B")
        history.undo()
        assert storage.get_item(HISTORY_KEY) is not None

        reloaded_store = SnapshotStore(storage)
        reloaded_tracker = ChangeTracker(host, reloaded_store)
        reloaded_tracker.mark_baseline(host.state)
        reloaded = UndoRedoController(reloaded_store, host, reloaded_tracker, storage)
        assert reloaded.redo_stack == history.redo_stack
        assert reloaded.redo()["status"] == "redone"
        assert host.state == {"v": "B"}

    def test_corrupt_stacks_start_empty(self, storage):
        storage.set_item(HISTORY_KEY, "[1, 2")
        host = FakeHost({"v": "A"})
        store = SnapshotStore(storage)
        history = UndoRedoController(store, host, ChangeTracker(host, store), storage)
        assert history.undo_stack == []
        assert history.redo_stack == []

    def test_prune_drops_deleted_ids(self, rig):
        _, store, _, history = rig
        _edit(rig, "B")
        gone = history.undo_stack[0]
        store.delete(gone)
        history.prune()
        assert gone not in history.undo_stack

    def test_reset(self, rig):
        _, _, _, history = rig
        _edit(rig, "B")
        history.undo()
        history.reset()
        assert history.undo_stack == []
        assert not history.can_redo
