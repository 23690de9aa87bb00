"""Story file import/export and shareable scene links.

Export writes the graph in file layout. Import validates the payload fully
before anything touches the live graph, raising FormatError otherwise.
A shared scene is a single scene plus the story title, encoded as URL-safe
base64 JSON in the ``scene`` query parameter.
"""

from __future__ import annotations

import base64
import binascii
import json
from urllib.parse import parse_qs, urlencode, urlsplit

from pydantic import ValidationError

from .constants import DEFAULT_SHARED_TITLE
from .errors import FormatError
from .models import Scene, StoryData, StoryRecord

SHARE_PARAM = "scene"


def export_json(data: StoryData, indent: int | None = 2) -> str:
    """Serialize a story in file layout."""
    return json.dumps(data.to_json_dict(), indent=indent, ensure_ascii=False)


def parse_story(payload: object) -> StoryData:
    """Validate an already-decoded story payload.

    Raises:
        FormatError: If ``scenes`` is missing or not an object, or any
            scene fails validation
    """
    if not isinstance(payload, dict):
        raise FormatError("Invalid story file format: expected a JSON object")
    if not isinstance(payload.get("scenes"), dict):
        raise FormatError("Invalid story file format: 'scenes' must be an object")
    try:
        return StoryData.model_validate(payload)
    except ValidationError as e:
        raise FormatError(f"Invalid story file format: {e.error_count()} invalid field(s)") from e


def import_json(text: str | bytes) -> StoryData:
    """Parse story file contents.

    Raises:
        FormatError: If the text is not JSON or not a valid story
    """
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FormatError(f"Error reading story file: {e}") from e
    return parse_story(payload)


class SharedScene(StoryRecord):
    """Payload of a share link."""

    scene: Scene
    story_title: str = DEFAULT_SHARED_TITLE


def encode_shared_scene(scene: Scene, story_title: str | None = None) -> str:
    """Encode a scene for a share link (URL-safe base64, no padding)."""
    shared = SharedScene(scene=scene, story_title=story_title or DEFAULT_SHARED_TITLE)
    raw = json.dumps(shared.to_json_dict(), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def share_url(base_url: str, scene: Scene, story_title: str | None = None) -> str:
    """Full link for a scene, e.g. ``https://host/editor?scene=...``."""
    separator = "&" if "?" in base_url else "?"
    query = urlencode({SHARE_PARAM: encode_shared_scene(scene, story_title)})
    return f"{base_url}{separator}{query}"


def _extract_code(link_or_code: str) -> str:
    """Accept either a bare code or a URL carrying it in the query string."""
    text = link_or_code.strip()
    if "?" in text or "://" in text:
        params = parse_qs(urlsplit(text).query)
        values = params.get(SHARE_PARAM)
        if not values:
            raise FormatError("Invalid link: no shared scene in URL")
        return values[0]
    return text


def decode_shared_scene(link_or_code: str) -> SharedScene:
    """Decode a share link or code.

    Both the standard and URL-safe base64 alphabets are accepted, with or
    without padding.

    Raises:
        FormatError: If the code is not valid base64 JSON describing a scene
    """
    code = _extract_code(link_or_code)
    if not code:
        raise FormatError("Invalid link: empty scene code")

    # parse_qs turns '+' into ' '; map the standard alphabet onto URL-safe
    code = code.replace(" ", "+").replace("+", "-").replace("/", "_")
    code += "=" * (-len(code) % 4)
    try:
        raw = base64.urlsafe_b64decode(code.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Invalid link: {e}") from e

    try:
        return SharedScene.model_validate(payload)
    except ValidationError as e:
        raise FormatError(f"Invalid link: {e.error_count()} invalid field(s)") from e
