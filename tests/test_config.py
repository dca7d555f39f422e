# tests/test_config.py
import pytest

from minisiem.config import Settings, load_settings, settings_from_dict
from minisiem.errors import ConfigError


def test_yaml_overrides_defaults(tmp_path):
    path = tmp_path / "minisiem.yaml"
    path.write_text(
        "window_minutes: 10\n"
        "failed_login_threshold: 3\n"
        "allowlist:\n"
        "  - 203.0.113.0/24\n",
        encoding="utf-8",
    )

    settings = load_settings(path)

    assert settings.window_minutes == 10
    assert settings.failed_login_threshold == 3
    assert settings.allowlist == ["203.0.113.0/24"]
    assert settings.scan_interval_seconds == Settings().scan_interval_seconds


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_settings(path) == Settings()


def test_missing_explicit_file_is_an_error(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.yaml")


def test_non_mapping_is_an_error(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(path)


def test_invalid_yaml_is_an_error(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("window_minutes: [1, 2\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(path)


def test_bad_values():
    with pytest.raises(ConfigError):
        settings_from_dict({"window_minutes": "soon"})
    with pytest.raises(ConfigError):
        settings_from_dict({"failed_login_threshold": 0})
    with pytest.raises(ConfigError):
        settings_from_dict({"allowlist": "10.0.0.1"})


def test_unknown_keys_are_ignored():
    assert settings_from_dict({"colour": "blue"}) == Settings()
