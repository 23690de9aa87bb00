"""Tests for path enumeration, story metrics and scene preview."""

from storyforge.analytics import analyze, find_all_paths, preview_scene, resolve_start_scene
from storyforge.engine import load_sample_stories
from storyforge.graph import StoryGraph
from storyforge.models import StoryData

from conftest import make_story


def _story(links, start=None) -> StoryData:
    return StoryData.model_validate(make_story(links, start))


class TestFindAllPaths:
    def test_empty_graph(self):
        assert find_all_paths(StoryData()) == []

    def test_single_terminal_scene(self):
        assert find_all_paths(_story({"a": []})) == [["a"]]

    def test_two_created_scenes_one_link(self):
        """Start defaults to the first created scene, so only one path exists."""
        graph = StoryGraph()
        s1 = graph.create_scene(0, 0)
        s2 = graph.create_scene(0, 0)
        graph.add_choice(s1.id, "next", s2.id)

        assert find_all_paths(graph.data) == [[s1.id, s2.id]]

    def test_two_cycle_terminates(self):
        data = _story({"a": ["b"], "b": ["a"]})
        paths = find_all_paths(data)
        assert paths == []
        assert all(len(p) <= len(data.scenes) for p in paths)

    def test_cycle_with_exit(self):
        data = _story({"a": ["b"], "b": ["a", "c"], "c": []})
        assert find_all_paths(data) == [["a", "b", "c"]]

    def test_diamond_revisits_across_branches(self):
        data = _story({"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []})
        assert find_all_paths(data) == [["a", "b", "d"], ["a", "c", "d"]]

    def test_unlinked_and_dangling_choices_not_explored(self):
        data = _story({"a": [None, "ghost", "b"], "b": []})
        assert find_all_paths(data) == [["a", "b"]]

    def test_scene_with_only_unlinked_choices_is_not_an_ending(self):
        data = _story({"a": [None]})
        assert find_all_paths(data) == []

    def test_dangling_start_falls_back_to_first_scene(self):
        data = StoryData.model_validate(make_story({"a": ["b"], "b": []}))
        data.start_scene_id = "gone"
        assert resolve_start_scene(data).id == "a"
        assert find_all_paths(data) == [["a", "b"]]

    def test_long_chain_has_no_recursion_limit(self):
        n = 3000
        links = {f"s{i}": [f"s{i + 1}"] for i in range(n)}
        links[f"s{n}"] = []
        paths = find_all_paths(_story(links))
        assert len(paths) == 1
        assert len(paths[0]) == n + 1

    def test_sample_paths(self):
        samples = load_sample_stories()
        math = StoryData.model_validate(samples["mathAdventure"])
        assert find_all_paths(math) == [
            ["scene_1", "scene_2", "scene_4", "scene_3", "scene_6"],
            ["scene_1", "scene_3", "scene_6"],
        ]
        lab = StoryData.model_validate(samples["scienceLab"])
        assert find_all_paths(lab) == [
            ["lab_1", "lab_2", "lab_3", "lab_4"],
            ["lab_1", "lab_3", "lab_4"],
        ]


class TestAnalyze:
    def test_empty_graph_all_zero(self):
        stats = analyze(StoryData())
        assert stats.total_scenes == 0
        assert stats.path_count == 0
        assert stats.average_path_length == 0
        assert stats.complexity_score == 0
        assert stats.category_distribution == {}

    def test_math_sample_metrics(self):
        stats = analyze(StoryData.model_validate(load_sample_stories()["mathAdventure"]))
        assert stats.total_scenes == 6
        assert stats.total_choices == 8
        assert stats.total_hints == 6
        assert stats.estimated_reading_time == 11
        assert stats.max_choices == 2
        assert stats.complexity_score == 44
        assert stats.path_count == 2
        assert stats.average_path_length == 4.0
        assert stats.category_distribution == {"narrative": 1, "question": 2, "information": 3}

    def test_complexity_rounds_half_up(self):
        # 3 choices over 2 scenes: 1.5 / 3 * 100 = 50
        stats = analyze(_story({"a": ["b", "b", "b"], "b": []}))
        assert stats.complexity_score == 50

    def test_complexity_not_clamped(self):
        stats = analyze(_story({"a": ["b"] * 6, "b": ["a"] * 6}))
        assert stats.complexity_score == 200

    def test_no_paths_average_length_zero(self):
        stats = analyze(_story({"a": ["b"], "b": ["a"]}))
        assert stats.path_count == 0
        assert stats.average_path_length == 0.0


class TestPreviewScene:
    def test_preview(self):
        data = _story({"a": ["b", None], "b": []})
        view = preview_scene(data, "a")
        assert view.title == "A"
        assert [c.linked for c in view.choices] == [True, False]
        assert view.is_ending is False
        assert preview_scene(data, "b").is_ending is True

    def test_unknown_scene(self):
        assert preview_scene(StoryData(), "nope") is None
