"""Shared constants for the story editor core."""

# Canvas bounds for scene positions
CANVAS_MAX_X = 1800
CANVAS_MAX_Y = 1300

# Random placement window used when a scene is created without a position
NEW_SCENE_MIN_X = 100
NEW_SCENE_SPAN_X = 800
NEW_SCENE_MIN_Y = 100
NEW_SCENE_SPAN_Y = 600

# Default content
DEFAULT_SCENE_TITLE = "New Scene"
DEFAULT_SCENE_TEXT = "Enter your scene description here..."
DEFAULT_CHOICE_TEXT = "New choice"
DEFAULT_HINT_TEXT = "Enter helpful hint here..."
DEFAULT_STORY_TITLE = "My Interactive Story"
DEFAULT_STORY_DESCRIPTION = "An educational branching narrative"
DEFAULT_SHARED_TITLE = "Shared Scene"

# Snapshot history
MAX_SNAPSHOTS = 25
AUTOSAVE_INTERVAL_SECONDS = 5.0
AUTOSAVE_INITIAL_DELAY_SECONDS = 0.2

# Local storage keys
SNAPSHOTS_KEY = "snapshots"
LAST_SAVED_KEY = "lastSaved"
HISTORY_KEY = "history"
STORY_DATA_KEY = "storyEditor_data"

# Browser local storage quota the store emulates (5 MiB)
DEFAULT_STORAGE_QUOTA_BYTES = 5 * 1024 * 1024

# Analytics: this many choices per scene scores 100% complexity
COMPLEXITY_REFERENCE_CHOICES = 3

# Time units
SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800
SECONDS_PER_MONTH = 2592000
SECONDS_PER_YEAR = 31536000
