"""Core data models for the story graph.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
JSON field names are camelCase to stay compatible with exported story files.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from ulid import ULID

from .constants import (
    CANVAS_MAX_X,
    CANVAS_MAX_Y,
    DEFAULT_CHOICE_TEXT,
    DEFAULT_HINT_TEXT,
    DEFAULT_SCENE_TEXT,
    DEFAULT_SCENE_TITLE,
    DEFAULT_STORY_DESCRIPTION,
    DEFAULT_STORY_TITLE,
)


def generate_id(prefix: str) -> str:
    """Generate a prefixed ULID, e.g. ``scene_01J...``."""
    return f"{prefix}_{ULID()}"


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


class StoryRecord(BaseModel):
    """Base for records serialized in the story file layout."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        """Dump to a JSON-compatible dict using the file layout's field names."""
        return self.model_dump(mode="json", by_alias=True)


SceneCategory = Literal[
    "narrative",    # plain story beat
    "question",     # asks the reader something
    "information",  # explains a concept
    "decision",     # a meaningful branch point
]

# Category names written by older story files
LEGACY_CATEGORIES = {"story": "narrative", "info": "information"}

IllustrationKind = Literal["upload", "search", "emoji"]

# Flat ``imageType`` values written by older story files
LEGACY_IMAGE_KINDS = {"upload": "upload", "unsplash": "search", "emoji": "emoji"}


class Illustration(StoryRecord):
    """Optional picture attached to a scene."""

    kind: IllustrationKind
    payload: str  # data URL, remote image URL or emoji glyph


class Hint(StoryRecord):
    """A learning hint shown with a scene."""

    id: str = Field(default_factory=lambda: generate_id("hint"))
    text: str = DEFAULT_HINT_TEXT


class Choice(StoryRecord):
    """A labeled edge from its owning scene toward another scene.

    ``target`` is None while the choice is unlinked.
    """

    id: str = Field(default_factory=lambda: generate_id("choice"))
    text: str = DEFAULT_CHOICE_TEXT
    target: str | None = None

    @field_validator("target", mode="before")
    @classmethod
    def _blank_target_is_unlinked(cls, value):
        if value == "":
            return None
        return value


class Scene(StoryRecord):
    """A node in the story graph."""

    id: str = Field(default_factory=lambda: generate_id("scene"))
    title: str = DEFAULT_SCENE_TITLE
    text: str = DEFAULT_SCENE_TEXT
    x: float = 0.0
    y: float = 0.0
    choices: list[Choice] = Field(default_factory=list)
    image: Illustration | None = None
    category: SceneCategory = "narrative"
    hints: list[Hint] = Field(default_factory=list)
    notes: str = ""
    estimated_read_time: int = 1  # minutes

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_fields(cls, data):
        """Accept the flat image/imageType pair and null hint lists of old files."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        image_type = data.pop("imageType", None)
        image = data.get("image")
        if isinstance(image, str):
            if image:
                kind = LEGACY_IMAGE_KINDS.get(image_type or "upload", "upload")
                data["image"] = {"kind": kind, "payload": image}
            else:
                data["image"] = None
        if data.get("hints") is None:
            data.pop("hints", None)
        if data.get("choices") is None:
            data.pop("choices", None)
        return data

    @field_validator("x")
    @classmethod
    def _clamp_x(cls, value: float) -> float:
        return clamp(value, 0, CANVAS_MAX_X)

    @field_validator("y")
    @classmethod
    def _clamp_y(cls, value: float) -> float:
        return clamp(value, 0, CANVAS_MAX_Y)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value):
        if value is None:
            return "narrative"
        if isinstance(value, str):
            value = LEGACY_CATEGORIES.get(value, value)
            if value not in ("narrative", "question", "information", "decision"):
                return "narrative"
        return value

    @field_validator("estimated_read_time", mode="before")
    @classmethod
    def _positive_minutes(cls, value) -> int:
        try:
            minutes = int(value)
        except (TypeError, ValueError, OverflowError):
            return 1
        return minutes if minutes >= 1 else 1

    def get_choice(self, choice_id: str) -> Choice | None:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None

    def get_hint(self, hint_id: str) -> Hint | None:
        for hint in self.hints:
            if hint.id == hint_id:
                return hint
        return None

    @property
    def is_terminal(self) -> bool:
        """A scene with no outgoing choices ends a playthrough."""
        return not self.choices

    def to_summary(self) -> dict:
        """Return a compact summary of this scene."""
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "choices": len(self.choices),
            "linked": sum(1 for c in self.choices if c.target),
        }


def _clean_lines(values: list[str]) -> list[str]:
    return [v.strip() for v in values if v and v.strip()]


class StoryMetadata(StoryRecord):
    """Story-level settings."""

    title: str = DEFAULT_STORY_TITLE
    description: str = DEFAULT_STORY_DESCRIPTION
    subject: str = "General"
    difficulty: str = "Beginner"
    learning_objectives: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("learning_objectives")
    @classmethod
    def _drop_blank_objectives(cls, value: list[str]) -> list[str]:
        return _clean_lines(value)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: list[str]) -> list[str]:
        # dict.fromkeys keeps first-seen order
        return list(dict.fromkeys(_clean_lines(value)))


class StoryData(StoryRecord):
    """The whole story graph: scenes keyed by id, entry point and metadata."""

    scenes: dict[str, Scene] = Field(default_factory=dict)
    start_scene_id: str | None = None
    story_metadata: StoryMetadata = Field(default_factory=StoryMetadata)

    @model_validator(mode="before")
    @classmethod
    def _fill_scene_ids(cls, data):
        """Scenes stored without an id take the key they are filed under."""
        if not isinstance(data, dict):
            return data
        scenes = data.get("scenes")
        if isinstance(scenes, dict):
            filled = {}
            for key, scene in scenes.items():
                if isinstance(scene, dict) and not scene.get("id"):
                    scene = {**scene, "id": key}
                filled[key] = scene
            data = {**data, "scenes": filled}
        if data.get("storyMetadata") is None and data.get("story_metadata") is None:
            data = {k: v for k, v in data.items() if k not in ("storyMetadata", "story_metadata")}
        return data

    @model_validator(mode="after")
    def _keys_match_ids(self):
        for key, scene in self.scenes.items():
            if scene.id != key:
                raise ValueError(f"Scene filed under {key!r} has id {scene.id!r}")
        return self


class SnapshotMeta(StoryRecord):
    """Display metadata captured alongside a snapshot."""

    title: str | None = None


class Snapshot(StoryRecord):
    """An immutable, timestamped capture of the whole story graph.

    ``data`` holds the graph as a JSON-compatible dict in file layout.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=lambda: generate_id("snap"))
    timestamp: datetime = Field(default_factory=utc_now)
    data: dict
    meta: SnapshotMeta = Field(default_factory=SnapshotMeta)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_entry(cls, data):
        """Old history entries use ``ts`` and carry no id."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "timestamp" not in data and "ts" in data:
            data["timestamp"] = data.pop("ts")
        if not data.get("id"):
            data.pop("id", None)
        if data.get("meta") is None:
            data.pop("meta", None)
        return data

    @property
    def title(self) -> str | None:
        return self.meta.title

    def to_summary(self) -> dict:
        """Return a compact summary for history listings."""
        scenes = self.data.get("scenes") or {}
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "title": self.meta.title,
            "scenes": len(scenes) if isinstance(scenes, dict) else 0,
        }
