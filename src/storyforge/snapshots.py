"""Bounded, deduplicated log of story graph snapshots.

The log lives in local storage under the ``snapshots`` key as a JSON array
(oldest first) and is rewritten on every mutating call. Snapshots are
addressed by stable ids, never by position, because eviction and deletion
shift positions.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from typing import Callable

from pydantic import ValidationError

from .constants import LAST_SAVED_KEY, MAX_SNAPSHOTS, SNAPSHOTS_KEY
from .errors import StorageError
from .models import Snapshot, SnapshotMeta, utc_now
from .storage import LocalStorage

logger = logging.getLogger(__name__)


def canonical_json(state: dict) -> str:
    """Deterministic serialization used to compare graph contents."""
    return json.dumps(
        state, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )


def content_hash(state: dict) -> str:
    """Content address of a graph state (deduplication only, not security)."""
    return hashlib.sha1(canonical_json(state).encode("utf-8")).hexdigest()


def _story_title(state: dict) -> str | None:
    metadata = state.get("storyMetadata")
    if isinstance(metadata, dict):
        title = metadata.get("title")
        if isinstance(title, str):
            return title
    return None


class SnapshotStore:
    """Append-mostly snapshot log with FIFO eviction.

    Storage failures never propagate: reads fall back to an empty log and
    failed writes are logged while the in-memory log stays authoritative.
    """

    def __init__(
        self,
        storage: LocalStorage,
        max_snapshots: int = MAX_SNAPSHOTS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.max_snapshots = max_snapshots
        self._clock = clock
        self._snapshots: list[Snapshot] = self._load()

    # --- Persistence ---

    def _load(self) -> list[Snapshot]:
        try:
            raw = self.storage.get_item(SNAPSHOTS_KEY)
        except StorageError as e:
            logger.warning(f"Cannot read snapshot log, starting empty: {e}")
            return []
        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt snapshot log, starting empty: {e}")
            return []
        if not isinstance(entries, list):
            logger.warning("Snapshot log is not a list, starting empty")
            return []

        snapshots = []
        for entry in entries:
            try:
                snapshots.append(Snapshot.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping malformed snapshot: {e.error_count()} errors")
        return snapshots[-self.max_snapshots:]

    def reload(self) -> None:
        """Re-read the log from storage to pick up commits made by another process."""
        self._snapshots = self._load()

    def _save(self, committed_at: datetime | None = None) -> None:
        payload = json.dumps([s.to_json_dict() for s in self._snapshots])
        try:
            self.storage.set_item(SNAPSHOTS_KEY, payload)
            if committed_at is not None:
                self.storage.set_item(LAST_SAVED_KEY, committed_at.isoformat())
        except StorageError as e:
            logger.warning(f"Failed to save snapshots: {e}")

    # --- Operations ---

    def append(self, state: dict) -> str:
        """Record a graph state and return its snapshot id.

        Identical content to the newest snapshot only refreshes that
        snapshot's timestamp and returns its existing id.
        """
        now = self._clock()
        serialized = canonical_json(state)

        latest = self.latest
        if latest is not None and canonical_json(latest.data) == serialized:
            self._snapshots[-1] = latest.model_copy(update={"timestamp": now})
            self._save(committed_at=now)
            return latest.id

        snapshot = Snapshot(
            timestamp=now,
            data=json.loads(serialized),  # deep copy
            meta=SnapshotMeta(title=_story_title(state)),
        )
        self._snapshots.append(snapshot)
        evicted = 0
        while len(self._snapshots) > self.max_snapshots:
            self._snapshots.pop(0)
            evicted += 1

        self._save(committed_at=now)
        logger.info(
            f"Committed snapshot {snapshot.id}"
            + (f", evicted {evicted} oldest" if evicted else "")
        )
        return snapshot.id

    def list(self) -> list[Snapshot]:
        """All snapshots, oldest first."""
        return list(self._snapshots)

    def get(self, snapshot_id: str) -> Snapshot | None:
        for snapshot in self._snapshots:
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    def resolve(self, id_or_prefix: str) -> Snapshot | None:
        """Find a snapshot by full id or unique id prefix."""
        exact = self.get(id_or_prefix)
        if exact is not None:
            return exact
        matches = [s for s in self._snapshots if s.id.startswith(id_or_prefix)]
        return matches[0] if len(matches) == 1 else None

    def delete(self, snapshot_id: str) -> bool:
        remaining = [s for s in self._snapshots if s.id != snapshot_id]
        if len(remaining) == len(self._snapshots):
            return False
        self._snapshots = remaining
        self._save()
        return True

    def clear(self) -> None:
        self._snapshots = []
        try:
            self.storage.remove_item(SNAPSHOTS_KEY)
        except StorageError as e:
            logger.warning(f"Failed to clear snapshots: {e}")

    @property
    def latest(self) -> Snapshot | None:
        return self._snapshots[-1] if self._snapshots else None

    @property
    def last_saved(self) -> datetime | None:
        """Timestamp of the last commit, as recorded in storage."""
        try:
            raw = self.storage.get_item(LAST_SAVED_KEY)
        except StorageError as e:
            logger.warning(f"Cannot read last-saved marker: {e}")
            return None
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed last-saved marker: {raw!r}")
            return None

    def __len__(self) -> int:
        return len(self._snapshots)

    def __contains__(self, snapshot_id: object) -> bool:
        return any(s.id == snapshot_id for s in self._snapshots)
