"""Tests for story import/export and shared scene links."""

import base64
import json

import pytest

from storyforge.analytics import find_all_paths
from storyforge.errors import FormatError
from storyforge.exchange import (
    decode_shared_scene,
    encode_shared_scene,
    export_json,
    import_json,
    parse_story,
    share_url,
)
from storyforge.models import Scene, StoryData

from conftest import make_story


class TestImport:
    def test_import_valid_story(self):
        data = import_json(json.dumps(make_story({"a": ["b"], "b": []})))
        assert list(data.scenes) == ["a", "b"]
        assert data.start_scene_id == "a"
        assert data.story_metadata.title == "Test Story"

    @pytest.mark.parametrize(
        "payload",
        [
            '{"scenes": "not-an-object"}',
            '{"startSceneId": "a"}',
            "[]",
            "42",
            "not json at all",
            '{"scenes": {"a": {"x": "far away"}}}',
        ],
    )
    def test_rejects_invalid(self, payload):
        with pytest.raises(FormatError):
            import_json(payload)

    def test_format_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_story({"scenes": []})

    def test_legacy_fields_upgraded(self):
        legacy = {
            "scenes": {
                "s1": {
                    "title": "Old",
                    "text": "t",
                    "x": 10,
                    "y": 10,
                    "category": "story",
                    "image": "https://images.example/cave.jpg",
                    "imageType": "unsplash",
                    "hints": None,
                    "choices": [{"id": "c1", "text": "go", "target": ""}],
                },
                "s2": {"category": "info", "image": "🐉", "imageType": "emoji"},
                "s3": {"category": "mystery", "image": ""},
            },
            "startSceneId": "s1",
        }
        data = parse_story(legacy)
        s1, s2, s3 = data.scenes["s1"], data.scenes["s2"], data.scenes["s3"]
        assert s1.id == "s1"
        assert s1.category == "narrative"
        assert s1.image.kind == "search"
        assert s1.hints == []
        assert s1.choices[0].target is None
        assert s2.category == "information"
        assert s2.image.kind == "emoji"
        assert s3.category == "narrative"
        assert s3.image is None
        assert data.story_metadata.title == "My Interactive Story"

    @pytest.mark.parametrize("minutes", ["1e999", "-1e999", "NaN"])
    def test_non_finite_read_time_defaults_to_one(self, minutes):
        data = import_json('{"scenes": {"a": {"id": "a", "estimatedReadTime": ' + minutes + "}}}")
        assert data.scenes["a"].estimated_read_time == 1

    def test_scene_key_must_match_id(self):
        with pytest.raises(FormatError):
            import_json('{"scenes": {"k1": {"id": "other"}}, "startSceneId": "k1"}')

    def test_scene_without_id_takes_key(self):
        data = import_json('{"scenes": {"k1": {"title": "Intro"}}, "startSceneId": "k1"}')
        assert data.scenes["k1"].id == "k1"
        assert find_all_paths(data) == [["k1"]]

    def test_dangling_targets_tolerated(self):
        data = parse_story(make_story({"a": ["ghost"]}))
        assert data.scenes["a"].choices[0].target == "ghost"


class TestExport:
    def test_export_uses_file_layout(self):
        data = StoryData.model_validate(make_story({"a": ["b"], "b": []}))
        exported = json.loads(export_json(data))
        assert set(exported) == {"scenes", "startSceneId", "storyMetadata"}
        assert "estimatedReadTime" in exported["scenes"]["a"]
        assert "learningObjectives" in exported["storyMetadata"]

    def test_export_then_import_preserves_story(self):
        data = StoryData.model_validate(make_story({"a": ["b"], "b": []}))
        assert import_json(export_json(data)) == data


class TestSharedScene:
    def _scene(self) -> Scene:
        return Scene(
            id="s1",
            title="Dragon's Lair",
            text="Solve 3/4 + 1/4 ✨",
            image={"kind": "emoji", "payload": "🐉"},
            hints=[{"id": "h1", "text": "Same denominators"}],
        )

    def test_code_is_url_safe(self):
        code = encode_shared_scene(self._scene(), "Math")
        assert "=" not in code
        assert "+" not in code
        assert "/" not in code

    def test_decode_code(self):
        shared = decode_shared_scene(encode_shared_scene(self._scene(), "Math"))
        assert shared.story_title == "Math"
        assert shared.scene.title == "Dragon's Lair"
        assert shared.scene.image.payload == "🐉"

    def test_decode_full_url(self):
        url = share_url("https://editor.example/app?mode=view", self._scene(), "Math")
        assert "&scene=" in url
        assert decode_shared_scene(url).scene.id == "s1"

    def test_decode_standard_alphabet(self):
        payload = json.dumps({"scene": {"id": "s1", "title": "??>>"}, "storyTitle": "T"})
        code = base64.b64encode(payload.encode("utf-8")).decode("ascii")
        assert decode_shared_scene(code).scene.title == "??>>"

    def test_non_finite_read_time_in_link(self):
        payload = '{"scene": {"id": "s1", "estimatedReadTime": 1e999}, "storyTitle": "T"}'
        code = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")
        assert decode_shared_scene(code).scene.estimated_read_time == 1

    def test_missing_title_uses_default(self):
        shared = decode_shared_scene(encode_shared_scene(self._scene()))
        assert shared.story_title == "Shared Scene"

    @pytest.mark.parametrize(
        "link",
        [
            "",
            "!!!not-base64!!!",
            base64.urlsafe_b64encode(b"not json").decode("ascii"),
            base64.urlsafe_b64encode(b'{"storyTitle": "no scene"}').decode("ascii"),
            "https://editor.example/app?other=1",
        ],
    )
    def test_invalid_links(self, link):
        with pytest.raises(FormatError):
            decode_shared_scene(link)
