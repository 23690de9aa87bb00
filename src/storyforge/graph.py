"""Mutation API over the story graph.

Every mutating operation leaves the graph invariants intact before returning:
- scene ids are immutable and unique
- no choice targets a scene that this graph deleted
- a non-empty graph always has a start scene that exists

Operations that reference an unknown scene, choice or hint id are no-ops:
they return None (or False) and leave the graph untouched. So does an
update whose values fail validation.
"""

from __future__ import annotations

import logging
import random
from typing import Callable, Iterable

from pydantic import ValidationError

from .constants import (
    NEW_SCENE_MIN_X,
    NEW_SCENE_MIN_Y,
    NEW_SCENE_SPAN_X,
    NEW_SCENE_SPAN_Y,
)
from .models import Choice, Hint, Scene, StoryData, StoryMetadata

logger = logging.getLogger(__name__)

# Fields update_scene() may change. Choices and hints have their own operations.
SCENE_UPDATABLE_FIELDS = frozenset({
    "title",
    "text",
    "x",
    "y",
    "image",
    "category",
    "notes",
    "estimated_read_time",
})

METADATA_UPDATABLE_FIELDS = frozenset({
    "title",
    "description",
    "subject",
    "difficulty",
    "learning_objectives",
    "tags",
})

# Sentinel so update_choice() can tell "leave target alone" from "unlink"
_UNSET = object()


class StoryGraph:
    """Owns one StoryData and the operations that mutate it.

    Args:
        data: Initial graph (defaults to an empty story)
        on_change: Called with no arguments after every mutation that
            changed the graph. The engine uses it to persist the live graph.
    """

    def __init__(
        self,
        data: StoryData | None = None,
        on_change: Callable[[], None] | None = None,
    ):
        self._data = data if data is not None else StoryData()
        self._on_change = on_change
        self._ensure_start_scene()

    # --- Read helpers ---

    @property
    def data(self) -> StoryData:
        return self._data

    @property
    def scenes(self) -> dict[str, Scene]:
        return self._data.scenes

    @property
    def start_scene_id(self) -> str | None:
        return self._data.start_scene_id

    @property
    def metadata(self) -> StoryMetadata:
        return self._data.story_metadata

    def is_empty(self) -> bool:
        return not self._data.scenes

    def get_scene(self, scene_id: str) -> Scene | None:
        return self._data.scenes.get(scene_id)

    def to_dict(self) -> dict:
        """Deep copy of the graph as a JSON-compatible dict in file layout."""
        return self._data.to_json_dict()

    def iter_choices(self) -> Iterable[tuple[Scene, Choice]]:
        for scene in self._data.scenes.values():
            for choice in scene.choices:
                yield scene, choice

    # --- Scene operations ---

    def create_scene(
        self,
        x: float | None = None,
        y: float | None = None,
        **fields,
    ) -> Scene:
        """Create a scene with default content at a clamped position.

        Without a position the scene lands somewhere in the visible part
        of the canvas. The first scene of a graph becomes its start scene.
        """
        if x is None:
            x = random.random() * NEW_SCENE_SPAN_X + NEW_SCENE_MIN_X
        if y is None:
            y = random.random() * NEW_SCENE_SPAN_Y + NEW_SCENE_MIN_Y

        initial = {k: v for k, v in fields.items() if k in SCENE_UPDATABLE_FIELDS}
        try:
            scene = Scene.model_validate({**initial, "x": x, "y": y})
        except ValidationError as e:
            logger.warning(f"create_scene: dropped invalid fields: {e.error_count()} errors")
            scene = Scene.model_validate({"x": x, "y": y})
        self._data.scenes[scene.id] = scene

        if not self._data.start_scene_id:
            self._data.start_scene_id = scene.id

        logger.info(f"Created scene {scene.id}")
        self._changed()
        return scene

    def update_scene(self, scene_id: str, **fields) -> Scene | None:
        """Apply a partial update; values are revalidated (clamped, coerced)."""
        scene = self._data.scenes.get(scene_id)
        if scene is None:
            logger.debug(f"update_scene: unknown scene {scene_id}")
            return None

        updates = {k: v for k, v in fields.items() if k in SCENE_UPDATABLE_FIELDS}
        if not updates:
            return scene

        merged = {**scene.model_dump(), **updates}
        try:
            updated = Scene.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"update_scene: rejected values for {scene_id}: {e.error_count()} errors")
            return None
        self._data.scenes[scene_id] = updated
        self._changed()
        return updated

    def delete_scene(self, scene_id: str) -> bool:
        """Delete a scene, unlink every choice that targeted it, fix the start."""
        if scene_id not in self._data.scenes:
            logger.debug(f"delete_scene: unknown scene {scene_id}")
            return False

        del self._data.scenes[scene_id]

        for _, choice in self.iter_choices():
            if choice.target == scene_id:
                choice.target = None

        if self._data.start_scene_id == scene_id:
            self._data.start_scene_id = None
        self._ensure_start_scene()

        logger.info(f"Deleted scene {scene_id}")
        self._changed()
        return True

    def set_start_scene(self, scene_id: str) -> bool:
        if scene_id not in self._data.scenes:
            logger.debug(f"set_start_scene: unknown scene {scene_id}")
            return False
        if self._data.start_scene_id != scene_id:
            self._data.start_scene_id = scene_id
            self._changed()
        return True

    # --- Choice operations ---

    def add_choice(
        self,
        scene_id: str,
        text: str | None = None,
        target: str | None = None,
    ) -> Choice | None:
        """Append a choice to a scene. Targets that do not exist are unlinked."""
        scene = self._data.scenes.get(scene_id)
        if scene is None:
            logger.debug(f"add_choice: unknown scene {scene_id}")
            return None

        choice = Choice(target=self._existing_target(target))
        if text is not None:
            choice.text = text
        scene.choices.append(choice)
        self._changed()
        return choice

    def update_choice(
        self,
        scene_id: str,
        choice_id: str,
        text: str | None = None,
        target=_UNSET,
    ) -> Choice | None:
        """Change a choice's label and/or target.

        Pass ``target=None`` or ``target=""`` to unlink the choice.
        """
        scene = self._data.scenes.get(scene_id)
        choice = scene.get_choice(choice_id) if scene else None
        if choice is None:
            logger.debug(f"update_choice: unknown choice {scene_id}/{choice_id}")
            return None

        if text is not None:
            choice.text = text
        if target is not _UNSET:
            choice.target = self._existing_target(target)
        self._changed()
        return choice

    def delete_choice(self, scene_id: str, choice_id: str) -> bool:
        scene = self._data.scenes.get(scene_id)
        if scene is None or scene.get_choice(choice_id) is None:
            logger.debug(f"delete_choice: unknown choice {scene_id}/{choice_id}")
            return False
        scene.choices = [c for c in scene.choices if c.id != choice_id]
        self._changed()
        return True

    # --- Hint operations ---

    def add_hint(self, scene_id: str, text: str | None = None) -> Hint | None:
        scene = self._data.scenes.get(scene_id)
        if scene is None:
            logger.debug(f"add_hint: unknown scene {scene_id}")
            return None
        hint = Hint() if text is None else Hint(text=text)
        scene.hints.append(hint)
        self._changed()
        return hint

    def update_hint(self, scene_id: str, hint_id: str, text: str) -> Hint | None:
        scene = self._data.scenes.get(scene_id)
        hint = scene.get_hint(hint_id) if scene else None
        if hint is None:
            logger.debug(f"update_hint: unknown hint {scene_id}/{hint_id}")
            return None
        hint.text = text
        self._changed()
        return hint

    def delete_hint(self, scene_id: str, hint_id: str) -> bool:
        scene = self._data.scenes.get(scene_id)
        if scene is None or scene.get_hint(hint_id) is None:
            logger.debug(f"delete_hint: unknown hint {scene_id}/{hint_id}")
            return False
        scene.hints = [h for h in scene.hints if h.id != hint_id]
        self._changed()
        return True

    # --- Story-level operations ---

    def update_metadata(self, **fields) -> StoryMetadata:
        """Update story settings. Objective and tag lists are cleaned up."""
        updates = {k: v for k, v in fields.items() if k in METADATA_UPDATABLE_FIELDS}
        if updates:
            merged = {**self._data.story_metadata.model_dump(), **updates}
            try:
                self._data.story_metadata = StoryMetadata.model_validate(merged)
            except ValidationError as e:
                logger.warning(f"update_metadata: rejected values: {e.error_count()} errors")
                return self._data.story_metadata
            self._changed()
        return self._data.story_metadata

    def replace(self, data: StoryData, notify: bool = True) -> None:
        """Swap in a whole new graph (import, sample load, restore).

        ``notify=False`` skips on_change, for data that came from storage.
        """
        self._data = data
        self._ensure_start_scene()
        logger.info(f"Replaced story graph ({len(data.scenes)} scenes)")
        if notify:
            self._changed()

    # --- Internals ---

    def _existing_target(self, target: str | None) -> str | None:
        if target and target in self._data.scenes:
            return target
        if target:
            logger.debug(f"Choice target {target} does not exist, leaving unlinked")
        return None

    def _ensure_start_scene(self) -> None:
        """Point the start at an existing scene, or None for an empty graph."""
        data = self._data
        if data.start_scene_id in data.scenes:
            return
        data.start_scene_id = next(iter(data.scenes), None)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
