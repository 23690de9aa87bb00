"""Exception types raised by the story editor core.

Lookups of unknown scene/choice ids are not errors: graph operations return
None/False instead. Only malformed payloads and storage failures raise.
"""


class StoryForgeError(Exception):
    """Base class for story editor errors."""


class FormatError(StoryForgeError, ValueError):
    """An imported or decoded payload failed structural validation."""


class StorageError(StoryForgeError):
    """Durable local storage could not be read or written."""
