"""Stable public API for building tooling on top of garagectl.

This module is the supported integration surface for third-party callers
(home automation glue and scripts). Avoid importing from internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from types import TracebackType

from garagectl.core.connection import Connection
from garagectl.core.errors import (
    AlreadyInFlightError,
    CharacteristicUnavailableError,
    CommandError,
    DeviceDiscoveryError,
    DeviceSelectionError,
    GaragectlError,
    LinkFailureError,
    NotConnectedError,
    OperationTimeoutError,
    RadioUnavailableError,
    SettingsLoadError,
    SettingsValidationError,
    WriteRejectedError,
)
from garagectl.core.model import (
    CONTROL_CHAR_UUID,
    SERVICE_UUID,
    TRIGGER_COMMAND,
    CommandResult,
    ConnectionState,
    Notification,
    OperationState,
    PeripheralIdentity,
    ScannerState,
    Settings,
)
from garagectl.core.notifier import EventNotifier, StateStream, Subscription
from garagectl.core.scanner import DiscoveryCallback
from garagectl.core.service import GarageService
from garagectl.core.store import KeyValueStore
from garagectl.transports.base import RadioPlatform
from garagectl.transports.ble_gatt import BleakRadio

__all__ = [
    "GaragectlError",
    "SettingsLoadError",
    "SettingsValidationError",
    "DeviceSelectionError",
    "DeviceDiscoveryError",
    "RadioUnavailableError",
    "LinkFailureError",
    "CommandError",
    "NotConnectedError",
    "CharacteristicUnavailableError",
    "WriteRejectedError",
    "OperationTimeoutError",
    "AlreadyInFlightError",
    "SERVICE_UUID",
    "CONTROL_CHAR_UUID",
    "TRIGGER_COMMAND",
    "CommandResult",
    "Connection",
    "ConnectionState",
    "Notification",
    "OperationState",
    "PeripheralIdentity",
    "ScannerState",
    "Settings",
    "EventNotifier",
    "StateStream",
    "Subscription",
    "RadioPlatform",
    "BleakRadio",
    "Client",
]


class Client:
    """Public async client for scanning, connecting and sending commands.

    Use it as an async context manager so the scan and the link are torn down
    on exit::

        async with Client() as client:
            await client.connect_address("AA:BB:CC:DD:EE:FF")
            await client.trigger()

    State changes are observable through `client.events` without polling.
    """

    def __init__(
        self,
        *,
        radio: RadioPlatform | None = None,
        store: KeyValueStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._service = GarageService(radio=radio, store=store, settings=settings)

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self._service.aclose()

    @property
    def events(self) -> EventNotifier:
        return self._service.notifier

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return self._service.runtime_warnings

    @property
    def connection_state(self) -> ConnectionState:
        return self._service.connections.state

    @property
    def operation_state(self) -> OperationState:
        return self._service.channel.state

    async def scan(
        self,
        window_s: float | None = None,
        on_discovered: DiscoveryCallback | None = None,
    ) -> tuple[PeripheralIdentity, ...]:
        return await self._service.scan(window_s, on_discovered=on_discovered)

    def stop_scan(self) -> None:
        self._service.scanner.stop_scan()

    def list_saved(self) -> list[PeripheralIdentity]:
        return self._service.list_saved()

    def list_bonded(self) -> tuple[PeripheralIdentity, ...]:
        return self._service.list_bonded()

    def resolve_peripheral(self, device_hint: str | None = None) -> PeripheralIdentity:
        return self._service.resolve_peripheral(device_hint)

    async def connect(self, peripheral: PeripheralIdentity) -> Connection:
        return await self._service.connect(peripheral)

    async def connect_address(self, address: str) -> Connection:
        return await self._service.connect_address(address)

    def disconnect(self) -> None:
        self._service.disconnect()

    def close(self) -> None:
        self._service.close()

    async def send(self, command: str) -> CommandResult:
        return await self._service.send(command)

    async def trigger(self) -> CommandResult:
        return await self._service.trigger()

    def forget_device(self) -> str | None:
        return self._service.forget_device()
