"""Tests for change detection and the autosave loop."""

import asyncio

from storyforge.interface import GraphHost
from storyforge.snapshots import SnapshotStore, content_hash
from storyforge.tracker import AutosaveLoop, ChangeTracker

from conftest import FakeHost


def test_fake_host_satisfies_protocol():
    assert isinstance(FakeHost(), GraphHost)


class TestChangeTracker:
    def test_no_graph_skips(self, storage):
        tracker = ChangeTracker(FakeHost(None), SnapshotStore(storage))
        assert tracker.tick() is None

    def test_commits_only_on_change(self, storage):
        host = FakeHost({"v": 1})
        store = SnapshotStore(storage)
        committed = []
        tracker = ChangeTracker(host, store, on_commit=committed.append)

        first = tracker.tick()
        assert first is not None
        assert tracker.tick() is None

        host.state = {"v": 2}
        second = tracker.tick()
        assert second not in (None, first)
        assert committed == [first, second]
        assert len(store) == 2
        assert tracker.baseline == content_hash({"v": 2})

    def test_mark_baseline_suppresses_commit(self, storage):
        host = FakeHost({"v": 1})
        store = SnapshotStore(storage)
        tracker = ChangeTracker(host, store)
        tracker.mark_baseline({"v": 1})
        assert tracker.tick() is None
        assert len(store) == 0
        assert not tracker.has_pending_changes()

    def test_reset_baseline_recommits(self, storage):
        host = FakeHost({"v": 1})
        store = SnapshotStore(storage)
        tracker = ChangeTracker(host, store)
        tracker.tick()
        store.clear()
        tracker.reset_baseline()
        assert tracker.has_pending_changes()
        assert tracker.tick() is not None
        assert len(store) == 1


class FlakyTracker:
    """Tracker stand-in whose first tick raises."""

    def __init__(self):
        self.calls = 0

    def tick(self):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("boom")
        return None


class TestAutosaveLoop:
    def test_ticks_on_interval(self, storage):
        host = FakeHost({"v": 0})
        store = SnapshotStore(storage)
        tracker = ChangeTracker(host, store)
        loop = AutosaveLoop(tracker, interval=0.01, initial_delay=0.0)

        async def scenario():
            loop.start()
            assert loop.running
            await asyncio.sleep(0.05)
            host.state = {"v": 1}
            await asyncio.sleep(0.05)
            loop.stop()

        asyncio.run(scenario())
        assert not loop.running
        assert [s.data for s in store.list()] == [{"v": 0}, {"v": 1}]

    def test_initial_delay(self, storage):
        host = FakeHost({"v": 0})
        store = SnapshotStore(storage)
        loop = AutosaveLoop(ChangeTracker(host, store), interval=10, initial_delay=0.2)

        async def scenario():
            loop.start()
            await asyncio.sleep(0.05)
            before = len(store)
            await asyncio.sleep(0.3)
            loop.stop()
            return before

        assert asyncio.run(scenario()) == 0
        assert len(store) == 1

    def test_restart_replaces_task(self):
        tracker = FlakyTracker()
        tracker.calls = 1  # skip the failing first tick
        loop = AutosaveLoop(tracker, interval=10, initial_delay=0.0)

        async def scenario():
            loop.start()
            first_task = loop._task
            loop.start()
            await asyncio.sleep(0.05)
            cancelled = first_task.cancelled()
            loop.stop()
            return cancelled

        assert asyncio.run(scenario()) is True
        # Only the replacement task ticked
        assert tracker.calls == 2

    def test_failing_tick_keeps_loop_alive(self):
        tracker = FlakyTracker()
        loop = AutosaveLoop(tracker, interval=0.01, initial_delay=0.0)

        async def scenario():
            loop.start()
            await asyncio.sleep(0.1)
            running = loop.running
            loop.stop()
            return running

        assert asyncio.run(scenario()) is True
        assert tracker.calls >= 2

    def test_before_tick_runs_ahead_of_tick(self, storage):
        host = FakeHost({"v": 0})
        store = SnapshotStore(storage)
        seen = []

        def refresh():
            host.state = {"v": len(seen)}
            seen.append(len(store))

        loop = AutosaveLoop(
            ChangeTracker(host, store), interval=0.01, initial_delay=0.0, before_tick=refresh
        )

        async def scenario():
            loop.start()
            await asyncio.sleep(0.05)
            loop.stop()

        asyncio.run(scenario())
        assert seen[:2] == [0, 1]
        assert store.list()[0].data == {"v": 0}

    def test_stop_is_idempotent(self):
        loop = AutosaveLoop(FlakyTracker())
        loop.stop()
        loop.stop()
        assert not loop.running
