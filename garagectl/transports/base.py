"""Radio platform interfaces."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Protocol

from garagectl.core.model import Advertisement, DetectedDevice

WriteResultCallback = Callable[[bool, "str | None"], None]


class LinkListener(Protocol):
    """Receives asynchronous events for one link opened with `open_link`.

    Platforms may call these from any thread.
    """

    def on_link_established(self) -> None: ...

    def on_services_discovered(self, service_uuids: Iterable[str], ok: bool = True) -> None: ...

    def on_link_lost(self, reason: str) -> None: ...

    def on_notification(self, data: bytes) -> None: ...


class RadioPlatform(Protocol):
    async def is_radio_enabled(self) -> bool:
        """Return whether the Bluetooth radio is powered and usable."""

    def bonded_devices(self) -> list[DetectedDevice]:
        """Return devices bonded with the local adapter."""

    def begin_scan(
        self,
        service_uuids: Iterable[str],
        on_advertisement: Callable[[Advertisement], None],
        on_failure: Callable[[str], None],
    ) -> None:
        """Start delivering advertisements until `end_scan`."""

    def end_scan(self) -> None:
        """Stop the running scan, if any."""

    def open_link(self, address: str, listener: LinkListener) -> Any:
        """Start connecting to address and return the link handle."""

    def disconnect_link(self, handle: Any) -> None:
        """Drop the radio link while keeping the handle allocated."""

    def close_link(self, handle: Any) -> None:
        """Drop the radio link and release the handle."""

    def resolve_characteristic(self, handle: Any, service_uuid: str, characteristic_uuid: str) -> bool:
        """Return whether the characteristic exists on the discovered services."""

    def write_characteristic(
        self,
        handle: Any,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
        on_result: WriteResultCallback,
    ) -> None:
        """Write data and report the acknowledgement through on_result."""

    def subscribe_notifications(self, handle: Any, service_uuid: str, characteristic_uuid: str) -> None:
        """Forward characteristic notifications to the link listener."""

    async def drain(self) -> None:
        """Wait for background scan and link teardown to finish."""
