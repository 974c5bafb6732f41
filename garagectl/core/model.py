"""Core data models and fixed identifiers used across garagectl."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

SERVICE_UUID = "9ba08ea3-3fa9-4622-bae5-bdd3f0c7fedf"
CONTROL_CHAR_UUID = "427c5c12-0f90-46be-ba43-7e4a207be489"
TRIGGER_COMMAND = "TRIGGER"

DEFAULT_NAME_PATTERN = "Garage"
DEFAULT_SCAN_WINDOW_S = 10.0
DEFAULT_COMMAND_TIMEOUT_S = 5.0
DEFAULT_CONNECT_TIMEOUT_S = 10.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class OperationState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"


class ScannerState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


@dataclass(frozen=True)
class PeripheralIdentity:
    address: str
    display_name: str | None = None
    is_saved: bool = False

    @property
    def label(self) -> str:
        return self.display_name or "<unknown-device>"


@dataclass(frozen=True)
class Advertisement:
    address: str
    name: str | None
    service_uuids: tuple[str, ...] = ()


@dataclass(frozen=True)
class DetectedDevice:
    mac: str
    name: str | None


@dataclass(frozen=True)
class CommandResult:
    command: str
    address: str
    operation_id: int
    elapsed_s: float


@dataclass(frozen=True)
class Notification:
    sequence: int
    address: str
    text: str


@dataclass(frozen=True)
class Settings:
    device_name_pattern: str = DEFAULT_NAME_PATTERN
    scan_window_s: float = DEFAULT_SCAN_WINDOW_S
    command_timeout_s: float = DEFAULT_COMMAND_TIMEOUT_S
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    write_with_response: bool = True
    store_path: Path | None = None
