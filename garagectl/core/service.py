"""Service layer used by the CLI and the public client."""

from __future__ import annotations

import asyncio
import shutil

from garagectl.core.channel import CommandChannel
from garagectl.core.connection import Connection, ConnectionManager
from garagectl.core.device_match import normalize_address
from garagectl.core.errors import DeviceSelectionError
from garagectl.core.model import CommandResult, PeripheralIdentity, Settings
from garagectl.core.notifier import EventNotifier
from garagectl.core.registry import DeviceRegistry
from garagectl.core.scanner import DiscoveryCallback, Scanner
from garagectl.core.settings import load_settings
from garagectl.core.store import JsonFileStore, KeyValueStore
from garagectl.transports.base import RadioPlatform
from garagectl.transports.ble_gatt import BleakRadio


class GarageService:
    def __init__(
        self,
        *,
        radio: RadioPlatform | None = None,
        store: KeyValueStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or load_settings().settings
        self.runtime_warnings = _runtime_warnings() if radio is None else ()
        self.radio = radio or BleakRadio(
            connect_timeout_s=self.settings.connect_timeout_s,
            write_with_response=self.settings.write_with_response,
        )
        self.store = store or JsonFileStore(self.settings.store_path)
        self.notifier = EventNotifier()
        self.registry = DeviceRegistry(
            self.store,
            self.radio,
            self.notifier,
            name_pattern=self.settings.device_name_pattern,
        )
        self.scanner = Scanner(
            self.radio,
            self.registry,
            self.notifier,
            name_pattern=self.settings.device_name_pattern,
            window_s=self.settings.scan_window_s,
        )
        self.connections = ConnectionManager(self.radio, self.registry, self.notifier)
        self.channel = CommandChannel(
            self.radio,
            self.connections,
            self.notifier,
            timeout_s=self.settings.command_timeout_s,
        )

    async def scan(
        self,
        window_s: float | None = None,
        on_discovered: DiscoveryCallback | None = None,
    ) -> tuple[PeripheralIdentity, ...]:
        session = await self.scanner.start_scan(window_s, on_discovered=on_discovered)
        try:
            await session.wait()
        except asyncio.CancelledError:
            self.scanner.stop_scan()
            raise
        return session.results

    def list_saved(self) -> list[PeripheralIdentity]:
        return sorted(self.registry.list_saved(), key=lambda p: p.address)

    def list_bonded(self) -> tuple[PeripheralIdentity, ...]:
        return self.registry.refresh()

    def resolve_peripheral(self, device_hint: str | None = None) -> PeripheralIdentity:
        if not device_hint:
            address = self.registry.last_connected()
            if address is None:
                raise DeviceSelectionError(
                    "No device given and no previously connected device. Use --device or 'garagectl scan'."
                )
            return self.registry.identity_for(address)

        known: dict[str, PeripheralIdentity] = {}
        for identity in self.list_saved():
            known[identity.address] = identity
        for identity in self.list_bonded():
            known[identity.address] = identity
        session = self.scanner.session
        if session is not None:
            for identity in session.results:
                known.setdefault(identity.address, identity)

        hint = device_hint.strip().lower()
        exact = known.get(normalize_address(device_hint))
        if exact is not None:
            return exact

        candidates = [
            identity
            for identity in known.values()
            if hint in identity.address.lower() or (identity.display_name and hint in identity.display_name.lower())
        ]
        if not candidates:
            if _looks_like_address(device_hint):
                return self.registry.identity_for(device_hint)
            raise DeviceSelectionError(f"No device found matching '{device_hint}'")
        if len(candidates) > 1:
            candidate_desc = ", ".join(f"{c.address} ({c.label})" for c in candidates)
            raise DeviceSelectionError(
                f"Multiple candidate devices found: {candidate_desc}. Use --device to choose one."
            )
        return candidates[0]

    async def connect(self, peripheral: PeripheralIdentity) -> Connection:
        return await self.connections.connect(peripheral)

    async def connect_address(self, address: str) -> Connection:
        return await self.connections.connect(self.registry.identity_for(address))

    def disconnect(self) -> None:
        self.connections.disconnect()

    def close(self) -> None:
        self.connections.close()

    async def aclose(self) -> None:
        self.scanner.stop_scan()
        self.connections.close()
        await self.radio.drain()

    async def send(self, command: str) -> CommandResult:
        return await self.channel.send(command)

    async def trigger(self) -> CommandResult:
        return await self.channel.trigger()

    def forget_device(self) -> str | None:
        address = self.registry.last_connected()
        self.registry.forget_last_connected()
        return address


def _looks_like_address(value: str) -> bool:
    parts = value.strip().split(":")
    return len(parts) == 6 and all(len(part) == 2 for part in parts)


def _runtime_warnings() -> tuple[str, ...]:
    warnings: list[str] = []
    if shutil.which("bluetoothctl") is None:
        warnings.append(
            "bluetoothctl not found; radio power state and bonded devices cannot be checked."
        )
    return tuple(warnings)
