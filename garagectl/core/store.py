"""Persisted key-value store for saved-device records."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get_string(self, key: str) -> str | None:
        """Return the stored string for key, or None."""

    def put_string(self, key: str, value: str) -> None:
        """Store value under key."""

    def remove(self, key: str) -> None:
        """Drop key if present."""


def default_store_path() -> Path:
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_data / "garagectl/store.json"


class JsonFileStore:
    """String key-value store persisted as one JSON object on disk.

    Read and write failures are logged and never raised: an unreadable or
    malformed file reads as empty, and a failed write leaves the previous
    file in place.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_store_path()

    def get_string(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def put_string(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def _read(self) -> dict[str, Any]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            LOGGER.error("Could not read store %s: %s", self.path, exc)
            return {}

        try:
            loaded = json.loads(content)
        except json.JSONDecodeError as exc:
            LOGGER.error("Store %s is not valid JSON, treating as empty: %s", self.path, exc)
            return {}

        if not isinstance(loaded, dict):
            LOGGER.error("Store %s must contain a JSON object, treating as empty", self.path)
            return {}
        return loaded

    def _write(self, data: dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            LOGGER.error("Could not write store %s: %s", self.path, exc)
