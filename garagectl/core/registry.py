"""Known, saved and bonded peripheral tracking."""

from __future__ import annotations

import json
import logging

from garagectl.core.device_match import name_matches, normalize_address
from garagectl.core.errors import GaragectlError
from garagectl.core.model import DEFAULT_NAME_PATTERN, PeripheralIdentity
from garagectl.core.notifier import EventNotifier
from garagectl.core.store import KeyValueStore
from garagectl.transports.base import RadioPlatform

SAVED_DEVICES_KEY = "saved_devices"
LAST_CONNECTED_KEY = "last_connected_device"
LOGGER = logging.getLogger(__name__)


class DeviceRegistry:
    """Saved-device list and bonded-device view over a key-value store.

    Saved addresses are stored as a JSON array under ``saved_devices``. Store
    and platform failures never propagate: they are logged and read as empty.
    """

    def __init__(
        self,
        store: KeyValueStore,
        radio: RadioPlatform,
        notifier: EventNotifier,
        *,
        name_pattern: str = DEFAULT_NAME_PATTERN,
    ) -> None:
        self._store = store
        self._radio = radio
        self._notifier = notifier
        self.name_pattern = name_pattern
        # Bonded devices need a platform query and are published on refresh().
        self._notifier.saved.publish(self.list_saved())

    def list_saved(self) -> frozenset[PeripheralIdentity]:
        return frozenset(
            PeripheralIdentity(address=address, is_saved=True) for address in self._saved_addresses()
        )

    def is_saved(self, address: str) -> bool:
        return normalize_address(address) in self._saved_addresses()

    def mark_saved(self, address: str) -> None:
        address = normalize_address(address)
        saved = self._saved_addresses()
        if address in saved:
            return
        saved.append(address)
        self._store.put_string(SAVED_DEVICES_KEY, json.dumps(saved))
        LOGGER.info("Saved device %s", address)
        self._notifier.saved.publish(self.list_saved())

    def list_bonded(self, name_pattern: str | None = None) -> tuple[PeripheralIdentity, ...]:
        pattern = self.name_pattern if name_pattern is None else name_pattern
        saved = set(self._saved_addresses())
        try:
            bonded = self._radio.bonded_devices()
        except GaragectlError as exc:
            LOGGER.error("Error loading bonded devices: %s", exc)
            return ()

        identities: list[PeripheralIdentity] = []
        for device in bonded:
            address = normalize_address(device.mac)
            if not (name_matches(device.name, pattern) or address in saved):
                continue
            identities.append(
                PeripheralIdentity(address=address, display_name=device.name, is_saved=address in saved)
            )
        return tuple(identities)

    def refresh(self) -> tuple[PeripheralIdentity, ...]:
        bonded = self.list_bonded()
        self._notifier.saved.publish(self.list_saved())
        self._notifier.bonded.publish(bonded)
        return bonded

    def identity_for(self, address: str, display_name: str | None = None) -> PeripheralIdentity:
        address = normalize_address(address)
        return PeripheralIdentity(address=address, display_name=display_name, is_saved=self.is_saved(address))

    def record_last_connected(self, address: str) -> None:
        self._store.put_string(LAST_CONNECTED_KEY, normalize_address(address))

    def last_connected(self) -> str | None:
        return self._store.get_string(LAST_CONNECTED_KEY)

    def forget_last_connected(self) -> None:
        self._store.remove(LAST_CONNECTED_KEY)

    def _saved_addresses(self) -> list[str]:
        raw = self._store.get_string(SAVED_DEVICES_KEY)
        if raw is None:
            return []
        try:
            loaded = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.error("Error parsing saved devices: %s", exc)
            return []
        if not isinstance(loaded, list):
            LOGGER.error("Saved devices must be a JSON array, got %s", type(loaded).__name__)
            return []

        addresses: list[str] = []
        for item in loaded:
            if not isinstance(item, str):
                continue
            address = normalize_address(item)
            if address not in addresses:
                addresses.append(address)
        return addresses
