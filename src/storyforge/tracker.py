"""Change detection and the periodic autosave loop.

The tracker compares a content hash of the live graph against the hash it
saw last; only a real change commits a snapshot. The loop is an asyncio
task that calls the tracker on a fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .constants import AUTOSAVE_INITIAL_DELAY_SECONDS, AUTOSAVE_INTERVAL_SECONDS
from .interface import GraphHost
from .snapshots import SnapshotStore, content_hash

logger = logging.getLogger(__name__)


class ChangeTracker:
    """Commits a snapshot whenever the live graph's content changes.

    Args:
        host: Source of the live graph
        store: Snapshot log to append to
        on_commit: Called with the snapshot id after each commit
    """

    def __init__(
        self,
        host: GraphHost,
        store: SnapshotStore,
        on_commit: Callable[[str], None] | None = None,
    ):
        self.host = host
        self.store = store
        self.on_commit = on_commit
        self._last_hash: str | None = None

    @property
    def baseline(self) -> str | None:
        """Content hash of the last committed (or restored) state."""
        return self._last_hash

    def mark_baseline(self, state: dict) -> None:
        """Treat ``state`` as already captured, so the next tick skips it."""
        self._last_hash = content_hash(state)

    def reset_baseline(self) -> None:
        """Forget the baseline so the next tick commits whatever is live."""
        self._last_hash = None

    def has_pending_changes(self) -> bool:
        state = self.host.read_current_graph()
        return state is not None and content_hash(state) != self._last_hash

    def tick(self) -> str | None:
        """Commit the live graph if it changed since the last tick.

        Returns:
            The committed snapshot id, or None when nothing was committed
        """
        state = self.host.read_current_graph()
        if state is None:
            return None

        digest = content_hash(state)
        if digest == self._last_hash:
            return None

        snapshot_id = self.store.append(state)
        self._last_hash = digest
        if self.on_commit is not None:
            self.on_commit(snapshot_id)
        return snapshot_id


class AutosaveLoop:
    """Runs ChangeTracker.tick() on a fixed interval inside an event loop.

    ``start()`` must be called while an asyncio loop is running. Starting a
    running loop replaces its task instead of adding a second one.

    ``before_tick`` runs ahead of every tick, inside the same error guard.
    """

    def __init__(
        self,
        tracker: ChangeTracker,
        interval: float = AUTOSAVE_INTERVAL_SECONDS,
        initial_delay: float = AUTOSAVE_INITIAL_DELAY_SECONDS,
        before_tick: Callable[[], object] | None = None,
    ):
        self.tracker = tracker
        self.before_tick = before_tick
        self.interval = interval
        self.initial_delay = initial_delay
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Autosave started (every {self.interval}s)")

    def stop(self) -> None:
        """Cancel future ticks. Already committed snapshots are kept."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Autosave stopped")

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            self._safe_tick()
            await asyncio.sleep(self.interval)

    def _safe_tick(self) -> None:
        try:
            if self.before_tick is not None:
                self.before_tick()
            self.tracker.tick()
        except Exception:
            # Keep autosaving; the next tick retries the same content
            logger.exception("Autosave tick failed")
