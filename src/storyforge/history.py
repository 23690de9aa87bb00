"""Undo, redo and explicit restore over the snapshot log.

Two stacks of snapshot ids sit on top of the SnapshotStore:
- undo_stack: states the author moved into (commits and move targets)
- redo_stack: states the author moved away from by undoing or restoring

Every move first pushes the live graph into the log, so the move itself
can be undone, then writes the chosen snapshot back through the host and
re-baselines the change tracker so the next autosave tick does not commit
the restored state a second time.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from .constants import HISTORY_KEY
from .errors import StorageError
from .interface import GraphHost
from .models import Snapshot
from .snapshots import SnapshotStore, canonical_json

if TYPE_CHECKING:
    from .storage import LocalStorage
    from .tracker import ChangeTracker

logger = logging.getLogger(__name__)


class UndoRedoController:
    """Moves the live graph backward and forward through snapshot history.

    All operations return a status dict; "nothing to undo/redo" is a
    status, not an exception.
    """

    def __init__(
        self,
        store: SnapshotStore,
        host: GraphHost,
        tracker: "ChangeTracker",
        storage: "LocalStorage | None" = None,
    ):
        """Initialize the controller.

        Args:
            store: Snapshot log
            host: Owner of the live graph
            tracker: Change tracker to re-baseline after each move
            storage: Where to persist the stacks (None keeps them in memory)
        """
        self.store = store
        self.host = host
        self.tracker = tracker
        self.storage = storage
        self.undo_stack: list[str] = []
        self.redo_stack: list[str] = []
        self._load_stacks()

    # --- Stack persistence ---

    def _load_stacks(self) -> None:
        if self.storage is None:
            return
        try:
            raw = self.storage.get_item(HISTORY_KEY)
        except StorageError as e:
            logger.warning(f"Cannot read history stacks: {e}")
            return
        if not raw:
            return
        try:
            stacks = json.loads(raw)
            self.undo_stack = [str(i) for i in stacks.get("undo", [])]
            self.redo_stack = [str(i) for i in stacks.get("redo", [])]
        except (json.JSONDecodeError, AttributeError, TypeError) as e:
            logger.warning(f"Ignoring corrupt history stacks: {e}")
            self.undo_stack, self.redo_stack = [], []

    def reload(self) -> None:
        """Re-read both stacks from storage."""
        self.undo_stack, self.redo_stack = [], []
        self._load_stacks()

    def _save_stacks(self) -> None:
        # Ids of evicted or deleted snapshots are dead weight
        self.undo_stack = [i for i in self.undo_stack if i in self.store]
        self.redo_stack = [i for i in self.redo_stack if i in self.store]
        if self.storage is None:
            return
        payload = json.dumps({"undo": self.undo_stack, "redo": self.redo_stack})
        try:
            self.storage.set_item(HISTORY_KEY, payload)
        except StorageError as e:
            logger.warning(f"Failed to save history stacks: {e}")

    # --- Tracker callback ---

    def record_commit(self, snapshot_id: str) -> None:
        """A fresh edit was committed: it joins history and the undone future is dropped."""
        self.undo_stack.append(snapshot_id)
        if self.redo_stack:
            logger.info(f"New edit discards {len(self.redo_stack)} redo step(s)")
        self.redo_stack.clear()
        self._save_stacks()

    # --- Queries ---

    @property
    def can_redo(self) -> bool:
        return bool(self.redo_stack)

    @property
    def current_id(self) -> str | None:
        """Snapshot the live graph was last committed as or moved into."""
        return self.undo_stack[-1] if self.undo_stack else None

    @property
    def can_undo(self) -> bool:
        current = self.host.read_current_graph()
        return current is not None and self._find_undo_target(current) is not None

    def _undone_future(self) -> set[str]:
        contents = set()
        for snapshot_id in self.redo_stack:
            snapshot = self.store.get(snapshot_id)
            if snapshot is not None:
                contents.add(canonical_json(snapshot.data))
        return contents

    def _find_undo_target(self, current: dict) -> Snapshot | None:
        """Newest snapshot that differs from the live graph and is not undone future."""
        current_content = canonical_json(current)
        future = self._undone_future()
        for snapshot in reversed(self.store.list()):
            content = canonical_json(snapshot.data)
            if content != current_content and content not in future:
                return snapshot
        return None

    # --- Moves ---

    def undo(self) -> dict:
        """Step back to the newest snapshot that differs from the live graph."""
        # Capture unsaved edits first; a fresh edit also clears the redo stack
        self.tracker.tick()

        current = self.host.read_current_graph()
        if current is None:
            return {"status": "nothing_to_undo"}

        target = self._find_undo_target(current)
        if target is None:
            return {"status": "nothing_to_undo"}

        current_id = self.store.append(current)
        self.redo_stack.append(current_id)
        if not self._write(target):
            self.redo_stack.pop()
            self._save_stacks()
            return {"status": "write_failed", "snapshot_id": target.id}

        self.undo_stack.append(target.id)
        self._save_stacks()
        logger.info(f"Undo to snapshot {target.id}")
        return self._result("undone", target)

    def redo(self) -> dict:
        """Return to the state most recently moved away from."""
        # A fresh unsaved edit commits here and discards the redo stack
        self.tracker.tick()
        if not self.redo_stack:
            return {"status": "nothing_to_redo"}

        snapshot_id = self.redo_stack.pop()
        target = self.store.get(snapshot_id)
        if target is None:
            self._save_stacks()
            return {"status": "missing", "snapshot_id": snapshot_id}

        current = self.host.read_current_graph()
        if current is not None:
            self.store.append(current)

        if not self._write(target):
            self.redo_stack.append(snapshot_id)
            self._save_stacks()
            return {"status": "write_failed", "snapshot_id": snapshot_id}

        self.undo_stack.append(target.id)
        self._save_stacks()
        logger.info(f"Redo to snapshot {target.id}")
        return self._result("redone", target)

    def restore(self, snapshot_id: str) -> dict:
        """Jump to a snapshot picked from the history list."""
        target = self.store.get(snapshot_id)
        if target is None:
            return {"status": "not_found", "snapshot_id": snapshot_id}

        current = self.host.read_current_graph()
        if current is not None:
            self.redo_stack.append(self.store.append(current))

        if not self._write(target):
            if current is not None:
                self.redo_stack.pop()
            self._save_stacks()
            return {"status": "write_failed", "snapshot_id": snapshot_id}

        self.undo_stack.append(target.id)
        self._save_stacks()
        logger.info(f"Restored snapshot {target.id}")
        return self._result("restored", target)

    def prune(self) -> None:
        """Drop stack entries whose snapshots were deleted or evicted."""
        self._save_stacks()

    def reset(self) -> None:
        """Forget both stacks (used when the log is cleared)."""
        self.undo_stack.clear()
        self.redo_stack.clear()
        self._save_stacks()

    def _write(self, target: Snapshot) -> bool:
        if not self.host.write_graph(target.data):
            logger.warning(f"Host rejected snapshot {target.id}")
            return False
        # Baseline what the host now holds, so the next tick sees no change
        live = self.host.read_current_graph()
        self.tracker.mark_baseline(live if live is not None else target.data)
        return True

    @staticmethod
    def _result(status: str, target: Snapshot) -> dict:
        return {
            "status": status,
            "snapshot_id": target.id,
            "title": target.meta.title,
            "timestamp": target.timestamp.isoformat(),
        }
