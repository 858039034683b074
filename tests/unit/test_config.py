"""Tests for momentum/config_models.py"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from momentum import CONFIG_PATH, PROJECT_ROOT
from momentum.config_models import EngineConfig, StorageConfig, load_engine_config


class TestDefaults:
    def test_defaults(self):
        config = EngineConfig()

        assert config.decomposition.min_step_minutes == 5
        assert config.decomposition.chunk_split_factor == 1.5
        assert config.suggestions.min_deferrals == 3
        assert config.suggestions.min_step_minutes == 5
        assert config.rescheduling.min_samples == 5
        assert config.nudges.daily_cap == 5
        assert config.insights.max_insights == 3

    def test_shipped_file_matches_defaults(self):
        assert load_engine_config(CONFIG_PATH) == EngineConfig()


class TestLoading:
    """Tests for reading args/engine.yaml-shaped files."""

    def test_missing_file(self, tmp_path):
        assert load_engine_config(tmp_path / "absent.yaml") == EngineConfig()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("")

        assert load_engine_config(path) == EngineConfig()

    def test_partial_override(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("nudges:\n  daily_cap: 3\n")

        config = load_engine_config(path)

        assert config.nudges.daily_cap == 3
        assert config.nudges.snooze_minutes == 60

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("nudges:\n  daily_cap: 0\n")

        with pytest.raises(ValidationError):
            load_engine_config(path)


class TestStoragePath:
    def test_relative_to_project_root(self, monkeypatch):
        monkeypatch.delenv("MOMENTUM_DB_PATH", raising=False)

        assert StorageConfig().resolved_path() == PROJECT_ROOT / "data" / "momentum.db"

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MOMENTUM_DB_PATH", str(tmp_path / "other.db"))

        assert StorageConfig().resolved_path() == tmp_path / "other.db"

    def test_absolute_path_kept(self, monkeypatch):
        monkeypatch.delenv("MOMENTUM_DB_PATH", raising=False)

        assert StorageConfig(database_path="/var/lib/momentum.db").resolved_path() == Path(
            "/var/lib/momentum.db"
        )
