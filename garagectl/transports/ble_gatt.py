"""BLE GATT radio platform backed by bleak and bluetoothctl."""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from collections.abc import Callable, Coroutine, Iterable, Sequence
from functools import partial
from typing import Any

from garagectl.core.errors import DeviceDiscoveryError, RadioUnavailableError
from garagectl.core.model import DEFAULT_CONNECT_TIMEOUT_S, Advertisement, DetectedDevice
from garagectl.transports.base import LinkListener, WriteResultCallback

_DEVICE_LINE_RE = re.compile(r"^Device\s+([0-9A-F:]{17})(?:\s+(.+))?$", re.IGNORECASE)
_POWERED_RE = re.compile(r"^\s*Powered:\s*(yes|no)\s*$", re.IGNORECASE | re.MULTILINE)
LOGGER = logging.getLogger(__name__)


def _load_bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise RadioUnavailableError(
            "BLE radio requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class BleakLink:
    """Platform handle for one BleakClient."""

    def __init__(self, address: str, listener: LinkListener) -> None:
        self.address = address
        self.listener = listener
        self.client: Any = None
        self.connect_task: asyncio.Task | None = None
        self.disconnect_task: asyncio.Task | None = None
        self.closing = False


class BleakRadio:
    def __init__(
        self,
        *,
        connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S,
        write_with_response: bool = True,
    ) -> None:
        self.connect_timeout_s = connect_timeout_s
        self.write_with_response = write_with_response
        self._scanner: Any = None
        self._scan_start: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    async def is_radio_enabled(self) -> bool:
        result = await asyncio.to_thread(_run_bluetoothctl, ["bluetoothctl", "show"])
        if result is None or result.returncode != 0:
            # Power state unknown without bluetoothctl; bleak reports adapter errors itself.
            return True
        match = _POWERED_RE.search(result.stdout)
        return match is None or match.group(1).lower() == "yes"

    def bonded_devices(self) -> list[DetectedDevice]:
        commands = [
            ["bluetoothctl", "devices", "Paired"],
            ["bluetoothctl", "paired-devices"],
        ]
        seen: set[str] = set()
        devices: list[DetectedDevice] = []
        command_errors: list[str] = []

        for cmd in commands:
            result = _run_bluetoothctl(cmd)
            if result is None:
                continue
            if result.returncode != 0:
                stderr = (result.stderr or "").strip()
                if stderr:
                    command_errors.append(f"{' '.join(cmd)} -> {stderr}")
                continue

            for line in result.stdout.splitlines():
                match = _DEVICE_LINE_RE.match(line.strip())
                if not match:
                    continue
                mac = match.group(1).upper()
                if mac in seen:
                    continue
                seen.add(mac)
                name = match.group(2).strip() if match.group(2) else None
                devices.append(DetectedDevice(mac=mac, name=name))
            if devices:
                return devices

        if command_errors:
            joined = " | ".join(command_errors)
            raise DeviceDiscoveryError(
                f"Bonded device listing failed. Ensure a working D-Bus/BlueZ session. Details: {joined}"
            )
        return devices

    def begin_scan(
        self,
        service_uuids: Iterable[str],
        on_advertisement: Callable[[Advertisement], None],
        on_failure: Callable[[str], None],
    ) -> None:
        bleak = _load_bleak()

        def _detected(device: Any, advertisement_data: Any) -> None:
            on_advertisement(
                Advertisement(
                    address=device.address,
                    name=advertisement_data.local_name or device.name,
                    service_uuids=tuple(advertisement_data.service_uuids or ()),
                )
            )

        scanner = bleak.BleakScanner(
            detection_callback=_detected,
            service_uuids=list(service_uuids),
        )
        self._scanner = scanner

        async def _start() -> bool:
            try:
                await scanner.start()
            except (bleak.exc.BleakError, OSError) as exc:
                on_failure(str(exc))
                return False
            return True

        self._scan_start = self._spawn(_start(), "scan start")

    def end_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        start, self._scan_start = self._scan_start, None
        if scanner is None:
            return

        async def _stop() -> None:
            if start is not None:
                await asyncio.wait({start})
                # A scanner that never started has nothing to stop.
                if start.cancelled() or start.exception() is not None or not start.result():
                    return
            await scanner.stop()

        self._spawn(_stop(), "scan stop")

    def open_link(self, address: str, listener: LinkListener) -> BleakLink:
        bleak = _load_bleak()
        link = BleakLink(address, listener)

        def _disconnected(_client: Any) -> None:
            if not link.closing:
                listener.on_link_lost("peripheral disconnected")

        link.client = bleak.BleakClient(
            address,
            disconnected_callback=_disconnected,
            timeout=self.connect_timeout_s,
        )
        link.connect_task = self._spawn(self._establish(link), f"connect to {address}")
        return link

    async def _establish(self, link: BleakLink) -> None:
        bleak = _load_bleak()
        try:
            await link.client.connect()
        except (bleak.exc.BleakError, TimeoutError, OSError) as exc:
            if not link.closing:
                link.listener.on_link_lost(f"connect failed: {exc}")
            return
        link.listener.on_link_established()
        link.listener.on_services_discovered([service.uuid for service in link.client.services], True)

    def disconnect_link(self, handle: BleakLink) -> None:
        if handle.closing:
            return
        handle.closing = True
        handle.disconnect_task = self._spawn(self._disconnect(handle), f"disconnect from {handle.address}")

    def close_link(self, handle: BleakLink) -> None:
        self.disconnect_link(handle)

    async def _disconnect(self, link: BleakLink) -> None:
        if link.connect_task is not None and not link.connect_task.done():
            link.connect_task.cancel()
            await asyncio.wait({link.connect_task})
        await link.client.disconnect()

    def _characteristic(self, handle: BleakLink, service_uuid: str, characteristic_uuid: str) -> Any:
        bleak = _load_bleak()
        try:
            service = handle.client.services.get_service(service_uuid)
        except bleak.exc.BleakError:
            return None
        if service is None:
            return None
        return service.get_characteristic(characteristic_uuid)

    def resolve_characteristic(self, handle: BleakLink, service_uuid: str, characteristic_uuid: str) -> bool:
        return self._characteristic(handle, service_uuid, characteristic_uuid) is not None

    def write_characteristic(
        self,
        handle: BleakLink,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
        on_result: WriteResultCallback,
    ) -> None:
        bleak = _load_bleak()

        async def _write() -> None:
            characteristic = self._characteristic(handle, service_uuid, characteristic_uuid)
            if characteristic is None:
                on_result(False, f"characteristic {characteristic_uuid} not found")
                return
            try:
                await handle.client.write_gatt_char(characteristic, data, response=self.write_with_response)
            except (bleak.exc.BleakError, TimeoutError, OSError) as exc:
                on_result(False, str(exc))
                return
            on_result(True, None)

        self._spawn(_write(), f"write to {handle.address}")

    def subscribe_notifications(self, handle: BleakLink, service_uuid: str, characteristic_uuid: str) -> None:
        characteristic = self._characteristic(handle, service_uuid, characteristic_uuid)
        if characteristic is None or "notify" not in characteristic.properties:
            return

        def _notified(_sender: Any, data: bytearray) -> None:
            handle.listener.on_notification(bytes(data))

        self._spawn(
            handle.client.start_notify(characteristic, _notified),
            f"notifications from {handle.address}",
        )

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    def _spawn(self, coro: Coroutine[Any, Any, Any], what: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(partial(self._reap, what))
        return task

    def _reap(self, what: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("BLE %s failed: %s", what, exc)


def _run_bluetoothctl(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
