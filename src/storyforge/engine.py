"""Story engine - owns the live graph and wires storage, history and autosave."""

from __future__ import annotations

import importlib.resources
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from .analytics import ScenePreview, StoryAnalytics, analyze, find_all_paths, preview_scene
from .config import EditorSettings
from .constants import STORY_DATA_KEY
from .errors import FormatError, StorageError
from .exchange import encode_shared_scene, export_json, import_json, parse_story, share_url
from .graph import StoryGraph
from .history import UndoRedoController
from .interface import ChangeReason, StateChanged, StateChangedSignal
from .models import StoryData
from .snapshots import SnapshotStore, canonical_json
from .storage import LocalStorage
from .tracker import AutosaveLoop, ChangeTracker

logger = logging.getLogger(__name__)

DB_FILE_NAME = "storyforge.db"


def load_sample_stories() -> dict[str, dict]:
    """Load the bundled sample stories, keyed by sample name."""
    data_file = importlib.resources.files("storyforge.data").joinpath("sample_stories.json")
    with data_file.open("r", encoding="utf-8") as f:
        return json.load(f)


class StoryEngine:
    """Main entry point for story editing.

    Owns the single live StoryGraph and implements the GraphHost contract
    for the history machinery. Every graph mutation is written to local
    storage immediately; snapshots are committed by the change tracker
    (``save_now()`` or the autosave loop).

    Thread-safety: designed for one cooperative event loop. Each CLI
    process opens its own engine on the shared story directory;
    ``reload()`` picks up what the others wrote.
    """

    def __init__(self, story_dir: Path, settings: EditorSettings | None = None):
        self.story_dir = story_dir
        self.settings = settings or EditorSettings()

        self.storage = LocalStorage(
            story_dir / DB_FILE_NAME,
            quota_bytes=self.settings.storage_quota_bytes,
        )
        self.signal = StateChangedSignal()
        self.graph = StoryGraph(self._load_graph() or StoryData(), on_change=self._persist)

        self.snapshots = SnapshotStore(self.storage, max_snapshots=self.settings.max_snapshots)
        self.tracker = ChangeTracker(self, self.snapshots)
        self.history = UndoRedoController(self.snapshots, self, self.tracker, self.storage)
        self.tracker.on_commit = self.history.record_commit

        self._autosave: AutosaveLoop | None = None
        self._watcher: AutosaveLoop | None = None
        self._baseline_from_history()

    # --- Live graph persistence ---

    def _load_graph(self) -> StoryData | None:
        """Read the stored live graph. None when it is missing or unreadable."""
        try:
            raw = self.storage.get_item(STORY_DATA_KEY)
        except StorageError as e:
            logger.error(f"Failed to load story: {e}")
            return None
        if not raw:
            return None
        try:
            return StoryData.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Stored story is corrupt: {e.error_count()} errors")
            return None

    def _persist(self) -> None:
        """Write the live graph to storage. Failures leave memory untouched."""
        try:
            self.storage.set_item(STORY_DATA_KEY, json.dumps(self.graph.to_dict()))
        except StorageError as e:
            logger.error(f"Failed to save story: {e}")

    def _baseline_from_history(self) -> None:
        """Skip committing a live graph the history already accounts for.

        That is the newest snapshot, or the one the last undo, redo or
        restore moved into. Anything else is an unsaved edit and is
        committed now.
        """
        live = self.graph.to_dict()
        content = canonical_json(live)
        known = [self.snapshots.latest]
        if self.history.current_id is not None:
            known.append(self.snapshots.get(self.history.current_id))
        if any(s is not None and canonical_json(s.data) == content for s in known):
            self.tracker.mark_baseline(live)
        else:
            self.tracker.tick()

    def reload(self) -> bool:
        """Sync with storage, picking up edits and commits from other processes.

        The live graph is replaced when the stored one differs, then
        committed unless the history already holds it.

        Returns:
            True if the live graph changed
        """
        self.snapshots.reload()
        self.history.reload()
        stored = self._load_graph()
        changed = stored is not None and (
            canonical_json(stored.to_json_dict()) != canonical_json(self.graph.to_dict())
        )
        if changed:
            self.graph.replace(stored, notify=False)
            logger.info("Picked up story changes from storage")
        self._baseline_from_history()
        return changed

    # --- GraphHost contract ---

    def read_current_graph(self) -> dict | None:
        return self.graph.to_dict()

    def write_graph(self, state: dict) -> bool:
        return self._replace(state, "restore")

    def _replace(self, state: dict, reason: ChangeReason) -> bool:
        try:
            data = parse_story(state)
        except FormatError as e:
            logger.warning(f"Rejected graph write ({reason}): {e}")
            return False
        self.graph.replace(data)
        self.signal.emit(StateChanged(reason=reason))
        return True

    # --- Whole-story operations ---

    def import_story(self, text: str | bytes) -> StoryData:
        """Replace the live graph with an imported story file.

        Raises:
            FormatError: The file is not a valid story; nothing was changed
        """
        data = import_json(text)
        self.graph.replace(data)
        self.signal.emit(StateChanged(reason="import"))
        logger.info(f"Imported story '{data.story_metadata.title}'")
        return self.graph.data

    def export_story(self, indent: int | None = 2) -> str:
        return export_json(self.graph.data, indent=indent)

    def load_sample(self, key: str) -> bool:
        """Replace the live graph with a deep copy of a bundled sample."""
        samples = load_sample_stories()
        if key not in samples:
            logger.debug(f"load_sample: unknown sample {key}")
            return False
        return self._replace(samples[key], "sample")

    def analytics(self) -> StoryAnalytics:
        return analyze(self.graph.data)

    def find_paths(self) -> list[list[str]]:
        return find_all_paths(self.graph.data)

    def preview(self, scene_id: str | None = None) -> ScenePreview | None:
        """Playback view of a scene, the start scene by default."""
        scene_id = scene_id or self.graph.start_scene_id
        if scene_id is None:
            return None
        return preview_scene(self.graph.data, scene_id)

    def share_scene(self, scene_id: str, base_url: str | None = None) -> str | None:
        """Share code (or full link when ``base_url`` is given) for one scene."""
        scene = self.graph.get_scene(scene_id)
        if scene is None:
            return None
        title = self.graph.metadata.title
        if base_url:
            return share_url(base_url, scene, title)
        return encode_shared_scene(scene, title)

    # --- History ---

    def save_now(self) -> str | None:
        """Commit a snapshot if the graph changed since the last one."""
        return self.tracker.tick()

    def undo(self) -> dict:
        return self.history.undo()

    def redo(self) -> dict:
        return self.history.redo()

    def restore(self, snapshot_id: str) -> dict:
        return self.history.restore(snapshot_id)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        deleted = self.snapshots.delete(snapshot_id)
        if deleted:
            self.history.prune()
        return deleted

    def clear_history(self) -> None:
        """Drop every snapshot. The live graph is kept."""
        self.snapshots.clear()
        self.history.reset()
        # Let the next tick capture the current state as the new first entry
        self.tracker.reset_baseline()

    # --- Autosave ---

    @property
    def autosave(self) -> AutosaveLoop:
        """Lazy-load autosave loop."""
        if self._autosave is None:
            self._autosave = AutosaveLoop(
                self.tracker,
                interval=self.settings.autosave_interval,
                initial_delay=self.settings.initial_delay,
            )
        return self._autosave

    @property
    def watcher(self) -> AutosaveLoop:
        """Lazy-load autosave loop that reloads from storage before each tick."""
        if self._watcher is None:
            self._watcher = AutosaveLoop(
                self.tracker,
                interval=self.settings.autosave_interval,
                initial_delay=self.settings.initial_delay,
                before_tick=self.reload,
            )
        return self._watcher

    def close(self) -> None:
        for loop in (self._autosave, self._watcher):
            if loop is not None:
                loop.stop()
        self.storage.close()
