"""Tests for configuration loading and capability builders."""

import json

import pytest

from cardsearch_lib.config import (
    DEFAULT_CONFIG,
    DEFAULT_SEARCHIGNORE,
    ConfigError,
    build_extractor,
    build_policy,
    build_profile,
    load_config,
    read_searchignore,
    write_default_searchignore,
)
from cardsearch_lib.segment import MaxMatchSegmenter
from cardsearch_lib.text_filter import DEFAULT_POLICY


def _write_config(tmp_path, data):
    path = tmp_path / "cardsearch.json"
    path.write_text(json.dumps(data), encoding='utf-8')
    return path


class TestLoadConfig:
    """Defaults merged with a JSON file."""

    def test_defaults(self):
        config = load_config()
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_defaults_are_not_shared(self):
        load_config()["exclude_patterns"].append('**/x')
        assert DEFAULT_CONFIG["exclude_patterns"] == []

    def test_file_overrides(self, tmp_path):
        path = _write_config(tmp_path, {"search_limit": 10, "segmenter": "maxmatch"})
        config = load_config(path)
        assert config["search_limit"] == 10
        assert config["segmenter"] == "maxmatch"
        assert config["snippet_length"] == DEFAULT_CONFIG["snippet_length"]

    @pytest.mark.parametrize('data', [
        {"unknown_key": 1},
        {"search_limit": "10"},
        {"search_limit": True},
        {"search_limit": 0},
        {"file_timeout": -1},
        {"segmenter": "ictclas"},
        {"plausibility": {"max_colour": 1}},
    ])
    def test_invalid_values(self, tmp_path, data):
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, data))

    def test_not_an_object(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(_write_config(tmp_path, [1, 2]))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding='utf-8')
        with pytest.raises(ConfigError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "absent.json")


class TestSearchignore:
    """.searchignore reading and default creation."""

    def test_read_skips_comments(self, tmp_path):
        (tmp_path / ".searchignore").write_text("# comment\n\n*.log\nsecrets/\n", encoding='utf-8')
        assert read_searchignore(tmp_path) == ['*.log', 'secrets/']

    def test_read_missing(self, tmp_path):
        assert read_searchignore(tmp_path) == []

    def test_write_default_never_overwrites(self, tmp_path):
        assert write_default_searchignore(tmp_path) is True
        assert (tmp_path / ".searchignore").read_text(encoding='utf-8') == DEFAULT_SEARCHIGNORE
        assert write_default_searchignore(tmp_path) is False
        assert 'node_modules/' in read_searchignore(tmp_path)


class TestBuilders:
    """Capability objects built from settings."""

    def test_default_policy(self):
        assert build_policy(load_config()) is DEFAULT_POLICY

    def test_policy_overrides(self):
        config = load_config()
        config["plausibility"] = {"max_length": 50, "font_names": ["Consolas"]}
        policy = build_policy(config)
        assert policy.max_length == 50
        assert policy.font_names == ("Consolas",)
        assert policy.is_metadata("Consolas")

    def test_profile_encodings(self):
        config = load_config()
        config["encodings"] = ["big5"]
        assert build_profile(config).encoding_candidates == ("big5",)

    def test_maxmatch_extractor(self, monkeypatch):
        monkeypatch.setattr(
            MaxMatchSegmenter, 'from_jieba_dictionary', classmethod(lambda cls: cls(['会议']))
        )
        config = load_config()
        config["segmenter"] = "maxmatch"
        extractor = build_extractor(config)
        assert isinstance(extractor.segmenter, MaxMatchSegmenter)
        assert extractor.extract_keywords("会议") == ['会议']
