"""Settings and story directory discovery.

Everything is configured through environment variables so the CLI and
embedding applications share one source of truth.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel, Field

from .constants import (
    AUTOSAVE_INITIAL_DELAY_SECONDS,
    AUTOSAVE_INTERVAL_SECONDS,
    DEFAULT_STORAGE_QUOTA_BYTES,
    MAX_SNAPSHOTS,
)

STORY_DIR_NAME = ".storyforge"
LOG_FILE_NAME = "storyforge.log"


def get_story_dir() -> Path:
    """Find story directory from STORYFORGE_PATH env or walk up to find .storyforge."""
    if env_path := os.environ.get("STORYFORGE_PATH"):
        return Path(env_path)

    cwd = Path.cwd()
    for parent in [cwd] + list(cwd.parents):
        story_dir = parent / STORY_DIR_NAME
        if story_dir.exists():
            return story_dir

    return cwd / STORY_DIR_NAME


class EditorSettings(BaseModel):
    """Tunables for autosave, history and storage."""

    autosave_interval: float = Field(default=AUTOSAVE_INTERVAL_SECONDS, gt=0)
    initial_delay: float = Field(default=AUTOSAVE_INITIAL_DELAY_SECONDS, ge=0)
    max_snapshots: int = Field(default=MAX_SNAPSHOTS, ge=1)
    storage_quota_bytes: int | None = DEFAULT_STORAGE_QUOTA_BYTES
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EditorSettings":
        """Build settings from STORYFORGE_* environment variables.

        ``STORYFORGE_STORAGE_QUOTA=0`` disables the quota.
        """
        overrides: dict = {}
        if value := os.environ.get("STORYFORGE_AUTOSAVE_INTERVAL"):
            overrides["autosave_interval"] = float(value)
        if value := os.environ.get("STORYFORGE_MAX_SNAPSHOTS"):
            overrides["max_snapshots"] = int(value)
        if value := os.environ.get("STORYFORGE_STORAGE_QUOTA"):
            quota = int(value)
            overrides["storage_quota_bytes"] = quota if quota > 0 else None
        if value := os.environ.get("STORYFORGE_LOG_LEVEL"):
            overrides["log_level"] = value.upper()
        return cls(**overrides)


def configure_logging(story_dir: Path, level: str = "INFO") -> None:
    """Log to storyforge.log in the story directory, warnings also to stderr."""
    story_dir.mkdir(parents=True, exist_ok=True)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(story_dir / LOG_FILE_NAME),
            stderr_handler,
        ],
    )
