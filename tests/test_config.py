"""
Unit tests for better_category_manager/config.py
"""

from pathlib import Path

import pytest

from better_category_manager.config import DEFAULT_EXPANSION_STATE_FILE, Config

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.mark.unit
class TestFromEnv:

    def test_expansion_state_defaults_to_project_cache(self, monkeypatch, tmp_path):
        monkeypatch.delenv("BCM_EXPANSION_STATE_FILE", raising=False)
        monkeypatch.chdir(tmp_path)

        settings = Config.from_env()

        assert settings.expansion_state_file == DEFAULT_EXPANSION_STATE_FILE
        assert settings.expansion_state_file.parent.name == ".cache"
        assert settings.expansion_state_file.parent.parent.resolve() == PROJECT_ROOT.resolve()
        assert tmp_path not in settings.expansion_state_file.resolve().parents

    def test_empty_state_file_disables_persistence(self, monkeypatch):
        monkeypatch.setenv("BCM_EXPANSION_STATE_FILE", "")

        assert Config.from_env().expansion_state_file is None

    def test_drag_thresholds_from_env(self, monkeypatch):
        monkeypatch.setenv("BCM_PROXIMITY_TOLERANCE", "30")
        monkeypatch.setenv("BCM_NESTING_THRESHOLD", "80")
        monkeypatch.setenv("BCM_DRAG_START_DELAY_MS", "200")
        monkeypatch.setenv("BCM_NEST_INDENT", "32")

        geometry = Config.from_env().drag_geometry

        assert geometry.proximity_tolerance == 30
        assert geometry.nesting_threshold == 80
        assert geometry.start_delay_ms == 200
        assert geometry.nest_indent == 32

    def test_defaults(self, monkeypatch):
        for name in ("BCM_NEST_INDENT", "BCM_SEARCH_DEBOUNCE_MS", "BCM_SHOW_POST_COUNTS"):
            monkeypatch.delenv(name, raising=False)

        settings = Config.from_env()

        assert settings.drag_geometry.nest_indent == 20
        assert settings.search_debounce_ms == 300
        assert settings.show_post_counts is True
        assert "[TERM_NAME]" in settings.description_prompt
