"""StoryForge - branching story graph editor core with autosave history."""

__version__ = "0.1.0"
