"""Path enumeration and story metrics.

Paths are enumerated depth-first from the start scene. Each branch keeps its
own visited set (only the scenes on the current path), so a scene can be
reached again through a different route while a directed cycle still
terminates the branch that would loop. A branch that hits a cycle is dropped
without being recorded; only branches that reach a terminal scene (no
choices) count as paths.
"""

from __future__ import annotations

import math
from collections import Counter

from pydantic import BaseModel, Field

from .constants import COMPLEXITY_REFERENCE_CHOICES
from .models import Illustration, Scene, StoryData


class StoryAnalytics(BaseModel):
    """Derived metrics shown in the analytics panel."""

    total_scenes: int = 0
    total_choices: int = 0
    total_hints: int = 0
    estimated_reading_time: int = 0  # minutes
    category_distribution: dict[str, int] = Field(default_factory=dict)
    max_choices: int = 0
    average_choices: float = 0.0
    complexity_score: int = 0  # percent, may exceed 100
    path_count: int = 0
    average_path_length: float = 0.0
    paths: list[list[str]] = Field(default_factory=list)


class ChoicePreview(BaseModel):
    id: str
    text: str
    target: str | None = None
    linked: bool = False


class ScenePreview(BaseModel):
    """What a reader sees when playing a scene."""

    id: str
    title: str
    text: str
    image: Illustration | None = None
    hints: list[str] = Field(default_factory=list)
    choices: list[ChoicePreview] = Field(default_factory=list)
    is_ending: bool = False


def resolve_start_scene(data: StoryData) -> Scene | None:
    """The scene playback and analysis begin from.

    Falls back to the first scene when the start id is unset or dangling.
    """
    if data.start_scene_id and data.start_scene_id in data.scenes:
        return data.scenes[data.start_scene_id]
    return next(iter(data.scenes.values()), None)


def find_all_paths(data: StoryData) -> list[list[str]]:
    """Enumerate every acyclic path from the start scene to a terminal scene.

    Returns:
        Paths as ordered lists of scene ids, in depth-first order with
        choices explored in list order.
    """
    start = resolve_start_scene(data)
    if start is None:
        return []

    paths: list[list[str]] = []
    # Each frame is (scene_id, path so far, ids on this branch)
    stack: list[tuple[str, list[str], frozenset[str]]] = [(start.id, [], frozenset())]

    while stack:
        scene_id, current_path, visited = stack.pop()
        if scene_id in visited:
            continue  # cycle on this branch

        scene = data.scenes.get(scene_id)
        if scene is None:
            continue

        path = current_path + [scene_id]
        if not scene.choices:
            paths.append(path)
            continue

        branch_visited = visited | {scene_id}
        next_frames = [
            (choice.target, path, branch_visited)
            for choice in scene.choices
            if choice.target and choice.target in data.scenes
        ]
        # Reversed so the first choice is explored first
        stack.extend(reversed(next_frames))

    return paths


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def analyze(data: StoryData) -> StoryAnalytics:
    """Compute scene, choice and path metrics for a story."""
    scenes = list(data.scenes.values())
    if not scenes:
        return StoryAnalytics()

    total_scenes = len(scenes)
    total_choices = sum(len(s.choices) for s in scenes)
    average_choices = total_choices / total_scenes
    paths = find_all_paths(data)

    return StoryAnalytics(
        total_scenes=total_scenes,
        total_choices=total_choices,
        total_hints=sum(len(s.hints) for s in scenes),
        estimated_reading_time=sum(max(s.estimated_read_time, 1) for s in scenes),
        category_distribution=dict(Counter(s.category for s in scenes)),
        max_choices=max(len(s.choices) for s in scenes),
        average_choices=average_choices,
        # Not clamped: branchier stories score above 100%
        complexity_score=_round_half_up(average_choices / COMPLEXITY_REFERENCE_CHOICES * 100),
        path_count=len(paths),
        average_path_length=(sum(len(p) for p in paths) / len(paths)) if paths else 0.0,
        paths=paths,
    )


def preview_scene(data: StoryData, scene_id: str) -> ScenePreview | None:
    """Build the playback view of one scene; None for an unknown id."""
    scene = data.scenes.get(scene_id)
    if scene is None:
        return None

    return ScenePreview(
        id=scene.id,
        title=scene.title,
        text=scene.text,
        image=scene.image,
        hints=[h.text for h in scene.hints],
        choices=[
            ChoicePreview(
                id=c.id,
                text=c.text,
                target=c.target,
                linked=bool(c.target and c.target in data.scenes),
            )
            for c in scene.choices
        ],
        is_ending=not scene.choices,
    )
