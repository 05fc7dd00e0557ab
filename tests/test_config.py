import os
import sys

import pytest
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig, load_settings, save_settings
from settings_schema import SettingsSchema, validate_settings


class TestSettings:
    def test_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "missing.yaml"))
        assert settings == SettingsSchema()
        assert settings.week_start == 0
        assert settings.plateau_threshold == 0.05
        assert settings.plateau_window == 4
        assert settings.autosave_interval == 30.0
        assert settings.timer_warning_seconds == 10

    def test_round_trip(self, tmp_path):
        path = str(tmp_path / "settings.yaml")
        save_settings(SettingsSchema(week_start=6, plateau_threshold=0.1), path)
        loaded = load_settings(path)
        assert loaded.week_start == 6
        assert loaded.plateau_threshold == 0.1

    def test_partial_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("default_rest_time: 90\n")
        settings = load_settings(str(path))
        assert settings.default_rest_time == 90
        assert settings.weight_unit == "kg"

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.safe_dump({"week_start": 9}))
        with pytest.raises(ValueError):
            load_settings(str(path))
        with pytest.raises(ValueError):
            validate_settings({"autosave_interval": 0})

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            YamlConfig(str(path)).load()

    def test_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("personal_record_limit: 3\n")
        monkeypatch.setenv("KB_TRACKER_SETTINGS", str(path))
        assert load_settings().personal_record_limit == 3
