"""Tests for configuration loading and saving."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from flashquiz.config import DEFAULTS, Settings, load_settings, save_settings
from flashquiz.engine import SessionConfig


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.fuzzy_threshold == 0.4
        assert s.practice_count == 2
        assert s.shuffle_enabled is False
        assert s.quiz_timer_seconds == 20

    def test_to_dict(self):
        d = Settings().to_dict()
        assert d["tts_provider"] == "edge-tts"
        assert isinstance(d["quiz_files"], list)
        assert set(d) == set(DEFAULTS)

    def test_to_dict_roundtrip(self):
        s = Settings(fuzzy_threshold=0.1, practice_count=4)
        s2 = Settings(**s.to_dict())
        assert s2.fuzzy_threshold == 0.1
        assert s2.practice_count == 4

    def test_session_config(self):
        s = Settings(fuzzy_threshold=0.2, shuffle_enabled=True, practice_count=3)
        assert s.session_config() == SessionConfig(
            threshold=0.2, shuffle_enabled=True, practice_count=3
        )

    def test_session_config_rejects_bad_values(self):
        with pytest.raises(ValueError):
            Settings(practice_count=0).session_config()


class TestLoadSaveSettings:
    def test_load_from_file(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"fuzzy_threshold": 0.25, "auto_speak": True}))

        with patch("flashquiz.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert s.fuzzy_threshold == 0.25
        assert s.auto_speak is True
        assert s.practice_count == 2

    def test_load_missing_file(self, tmp_path):
        with patch("flashquiz.config.CONFIG_PATH", tmp_path / "nonexistent.json"):
            s = load_settings()
        assert s == Settings()

    def test_legacy_threshold_key(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"threshold": 0.3}))
        with patch("flashquiz.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert s.fuzzy_threshold == 0.3

    def test_save_creates_file(self, tmp_path):
        config_path = tmp_path / "config.json"
        with patch("flashquiz.config.CONFIG_PATH", config_path):
            save_settings(Settings(shuffle_enabled=True))
        data = json.loads(config_path.read_text())
        assert data["shuffle_enabled"] is True

    def test_unknown_keys_ignored(self, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps({"practice_count": 3, "unknown_key": "value"}))
        with patch("flashquiz.config.CONFIG_PATH", config_path):
            s = load_settings()
        assert s.practice_count == 3
        assert not hasattr(s, "unknown_key")
