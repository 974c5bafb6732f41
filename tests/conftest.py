from __future__ import annotations

from pathlib import Path

import pytest

from fakes import FakeRadio, MemoryStore
from garagectl.core.store import JsonFileStore


@pytest.fixture
def radio() -> FakeRadio:
    return FakeRadio()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def file_store(tmp_path: Path) -> JsonFileStore:
    return JsonFileStore(tmp_path / "store.json")
