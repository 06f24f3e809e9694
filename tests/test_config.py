"""Tests for triage_app/config.py."""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from triage_app.config import (
    AppConfig,
    TriageSettings,
    load_triage_settings,
    settings_accessor,
)


REQUIRED_ENV = {
    "GITHUB_APP_ID": "123",
    "GITHUB_APP_PRIVATE_KEY_PATH": "/keys/app.pem",
    "GITHUB_APP_WEBHOOK_SECRET": "s3cret",
}


class TestAppConfigFromEnv:
    def test_required_and_defaults(self):
        with patch.dict(os.environ, REQUIRED_ENV, clear=True):
            config = AppConfig.from_env()
        assert config.app_id == 123
        assert config.webhook_secret == "s3cret"
        assert config.server_port == 3000
        assert config.debug is False
        assert config.embedding_api_url == ""

    def test_optional_overrides(self):
        env = dict(REQUIRED_ENV, SERVER_PORT="8080", FLASK_DEBUG="true",
                   TRIAGE_DB_PATH="/data/t.db", EMBEDDING_API_URL="https://e")
        with patch.dict(os.environ, env, clear=True):
            config = AppConfig.from_env()
        assert config.server_port == 8080
        assert config.debug is True
        assert config.db_path == "/data/t.db"
        assert config.embedding_api_url == "https://e"

    @pytest.mark.parametrize("missing", sorted(REQUIRED_ENV))
    def test_missing_required_exits(self, missing):
        env = {k: v for k, v in REQUIRED_ENV.items() if k != missing}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(SystemExit):
                AppConfig.from_env()


class TestTriageSettings:
    def test_defaults(self):
        settings = TriageSettings.from_mapping(None)
        assert settings.cooldown_minutes == 30
        assert settings.duplicate_threshold == 0.30
        assert settings.max_duplicate_candidates == 3
        assert settings.duplicate_label == "possible-duplicate"
        assert settings.learning_min_samples == 20

    def test_nested_under_triage_key(self):
        settings = TriageSettings.from_mapping({"triage": {"cooldown_minutes": 5}})
        assert settings.cooldown_minutes == 5

    def test_invalid_values_keep_defaults(self):
        settings = TriageSettings.from_mapping({
            "enabled": "yes",
            "cooldown_minutes": -4,
            "duplicate_threshold": "abc",
            "duplicate_label": "  ",
            "max_duplicate_candidates": 5,
        })
        assert settings.enabled is True
        assert settings.cooldown_minutes == 30
        assert settings.duplicate_threshold == 0.30
        assert settings.duplicate_label == "possible-duplicate"
        assert settings.max_duplicate_candidates == 5

    def test_adaptive_and_weights(self):
        settings = TriageSettings.from_mapping({
            "adaptive": {"min_candidates_for_gap": 5, "floor": 0.1},
            "priority_weights": {"severity": 1.0},
        })
        assert settings.adaptive.min_candidates_for_gap == 5
        assert settings.adaptive.floor == 0.1
        assert settings.adaptive.ceiling == 0.65
        assert settings.priority_weights.severity == 1.0

    def test_inverted_adaptive_bounds_ignored(self):
        settings = TriageSettings.from_mapping({"adaptive": {"floor": 0.9, "ceiling": 0.2}})
        assert settings.adaptive.floor == 0.15
        assert settings.adaptive.ceiling == 0.65

    def test_repo_overrides(self):
        settings = TriageSettings.from_mapping({
            "cooldown_minutes": 10,
            "repos": {"Octo/Busy": {"cooldown_minutes": 120, "enabled": False}},
        })
        busy = settings.for_repo("octo/busy")
        assert busy.cooldown_minutes == 120
        assert busy.enabled is False
        assert settings.for_repo("octo/quiet") is settings


class TestLoadTriageSettings:
    def test_missing_file_defaults(self, tmp_path):
        assert load_triage_settings(tmp_path / "nope.yml") == TriageSettings()

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "triage.yml"
        path.write_text("triage:\n  duplicate_threshold: 0.2\n  duplicate_label: dupe?\n")
        settings = load_triage_settings(path)
        assert settings.duplicate_threshold == 0.2
        assert settings.duplicate_label == "dupe?"

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "triage.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_triage_settings(path)


class TestSettingsAccessor:
    def test_reloads_on_mtime_change(self, tmp_path):
        path = tmp_path / "triage.yml"
        path.write_text("cooldown_minutes: 10\n")
        accessor = settings_accessor(path)
        assert accessor().cooldown_minutes == 10

        path.write_text("cooldown_minutes: 45\n")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 5))
        assert accessor().cooldown_minutes == 45

    def test_cached_when_unchanged(self, tmp_path):
        path = tmp_path / "triage.yml"
        path.write_text("cooldown_minutes: 10\n")
        accessor = settings_accessor(path)
        first = accessor()
        assert accessor() is first

    def test_broken_file_keeps_previous(self, tmp_path):
        path = tmp_path / "triage.yml"
        path.write_text("cooldown_minutes: 10\n")
        accessor = settings_accessor(path)
        accessor()
        path.write_text("cooldown_minutes: [unclosed\n")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 5))
        assert accessor().cooldown_minutes == 10

    def test_missing_file_defaults(self, tmp_path):
        assert settings_accessor(tmp_path / "absent.yml")() == TriageSettings()
