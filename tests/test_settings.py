from __future__ import annotations

from pathlib import Path

import pytest

from garagectl.core.errors import SettingsLoadError, SettingsValidationError
from garagectl.core.settings import load_settings


def _write_settings(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    return tmp_path / "cfg" / "garagectl" / "settings.yaml"


def test_load_packaged_defaults() -> None:
    loaded = load_settings()
    settings = loaded.settings
    assert settings.device_name_pattern == "Garage"
    assert settings.scan_window_s == 10.0
    assert settings.command_timeout_s == 5.0
    assert settings.write_with_response is True
    assert settings.store_path is None
    assert len(loaded.sources) == 1


def test_user_settings_override_defaults(isolated_config: Path) -> None:
    _write_settings(
        isolated_config,
        """
scan_window_s: 4
write_with_response: false
store_path: ~/garage-store.json
""",
    )

    loaded = load_settings()
    settings = loaded.settings
    assert settings.scan_window_s == 4.0
    assert settings.command_timeout_s == 5.0
    assert settings.write_with_response is False
    assert settings.store_path == Path("~/garage-store.json").expanduser()
    assert loaded.sources[-1] == str(isolated_config)


def test_empty_user_file_keeps_defaults(isolated_config: Path) -> None:
    _write_settings(isolated_config, "")
    assert load_settings().settings.device_name_pattern == "Garage"


def test_invalid_value_rejected(isolated_config: Path) -> None:
    _write_settings(isolated_config, "command_timeout_s: -1\n")
    with pytest.raises(SettingsValidationError, match="command_timeout_s"):
        load_settings()


def test_unknown_key_rejected(isolated_config: Path) -> None:
    _write_settings(isolated_config, "service_uuid: 1234\n")
    with pytest.raises(SettingsValidationError):
        load_settings()


def test_invalid_boolean_rejected(isolated_config: Path) -> None:
    _write_settings(isolated_config, "write_with_response: sometimes\n")
    with pytest.raises(SettingsValidationError, match="boolean"):
        load_settings()


def test_duplicate_yaml_keys_rejected(isolated_config: Path) -> None:
    _write_settings(
        isolated_config,
        """
scan_window_s: 5
scan_window_s: 6
""",
    )
    with pytest.raises(SettingsValidationError, match="Duplicate key"):
        load_settings()


def test_non_mapping_root_rejected(isolated_config: Path) -> None:
    _write_settings(isolated_config, "- Garage\n")
    with pytest.raises(SettingsValidationError):
        load_settings()


def test_explicit_missing_path_raises(tmp_path: Path) -> None:
    with pytest.raises(SettingsLoadError):
        load_settings(tmp_path / "nope.yaml")


def test_blank_name_pattern_rejected(isolated_config: Path) -> None:
    _write_settings(isolated_config, 'device_name_pattern: "   "\n')
    with pytest.raises(SettingsValidationError, match="device_name_pattern"):
        load_settings()
