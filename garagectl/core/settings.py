"""Settings loading and validation for YAML-based garagectl settings."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from garagectl.core.errors import SettingsLoadError, SettingsValidationError
from garagectl.core.model import Settings

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise SettingsValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("garagectl.schemas").joinpath("settings.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_settings_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "garagectl/settings.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsLoadError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise SettingsValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise SettingsValidationError(f"Settings file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on"}:
            return True
        if lowered in {"false", "no", "off"}:
            return False
    raise SettingsValidationError(f"{context} must be boolean true/false")


def _build_settings(doc: dict[str, Any], source: str) -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise SettingsValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    store_path = doc.get("store_path")
    return Settings(
        device_name_pattern=doc["device_name_pattern"].strip(),
        scan_window_s=float(doc["scan_window_s"]),
        command_timeout_s=float(doc["command_timeout_s"]),
        connect_timeout_s=float(doc["connect_timeout_s"]),
        write_with_response=_normalize_bool(
            doc["write_with_response"],
            context="write_with_response",
        ),
        store_path=Path(store_path).expanduser() if store_path else None,
    )


def load_settings(path: Path | None = None) -> LoadedSettings:
    """Load packaged defaults, then overlay the user settings file if present."""
    defaults_path = resources.files("garagectl.defaults").joinpath("settings.yaml")
    merged = _read_yaml(defaults_path)
    sources = [str(defaults_path)]

    user_path = path or user_settings_path()
    if user_path.is_file():
        overrides = _read_yaml(user_path)
        for key in sorted(overrides):
            LOGGER.debug("Setting '%s' overridden by %s", key, user_path)
        merged.update(overrides)
        sources.append(str(user_path))
    elif path is not None:
        raise SettingsLoadError(f"Settings file {path} does not exist")

    return LoadedSettings(
        settings=_build_settings(merged, " + ".join(sources)),
        sources=tuple(sources),
    )
