"""Shared test fixtures and helpers for storyforge tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from storyforge.engine import StoryEngine
from storyforge.storage import LocalStorage


# --- Fixtures ---


@pytest.fixture
def temp_story_dir():
    """Provide a temporary directory for story storage.

    Yields a Path to a temporary directory that's cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def storage(temp_story_dir):
    """Provide an open LocalStorage without a quota."""
    store = LocalStorage(temp_story_dir / "test.db")
    yield store
    store.close()


@pytest.fixture
def engine(temp_story_dir):
    """Provide a fresh StoryEngine over an empty story."""
    eng = StoryEngine(temp_story_dir)
    yield eng
    eng.close()


@pytest.fixture
def populated_engine(engine):
    """Provide a StoryEngine with the math sample loaded and committed."""
    assert engine.load_sample("mathAdventure")
    engine.save_now()
    return engine


# --- Helper Functions (not fixtures) ---


class FakeClock:
    """Deterministic clock for snapshot timestamps."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_story(links: dict[str, list[str | None]], start: str | None = None) -> dict:
    """Build a story payload from ``{scene_id: [target, ...]}``.

    Scene ids keep mapping order; ``start`` defaults to the first scene.
    """
    scenes = {}
    for scene_id, targets in links.items():
        scenes[scene_id] = {
            "id": scene_id,
            "title": scene_id.upper(),
            "choices": [
                {"id": f"{scene_id}_c{i}", "text": f"to {target}", "target": target}
                for i, target in enumerate(targets)
            ],
        }
    return {
        "scenes": scenes,
        "startSceneId": start if start is not None else next(iter(links), None),
        "storyMetadata": {"title": "Test Story"},
    }


class FakeHost:
    """In-memory GraphHost for tracker and history tests."""

    def __init__(self, state: dict | None = None, accept: bool = True):
        self.state = state
        self.accept = accept
        self.writes: list[dict] = []

    def read_current_graph(self) -> dict | None:
        return None if self.state is None else dict(self.state)

    def write_graph(self, state: dict) -> bool:
        if not self.accept:
            return False
        self.writes.append(state)
        self.state = dict(state)
        return True
