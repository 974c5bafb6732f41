"""Time-boxed discovery of garage door controllers."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable

from garagectl.core.device_match import advertisement_matches, normalize_address
from garagectl.core.errors import GaragectlError, RadioUnavailableError
from garagectl.core.model import (
    DEFAULT_NAME_PATTERN,
    DEFAULT_SCAN_WINDOW_S,
    SERVICE_UUID,
    Advertisement,
    PeripheralIdentity,
    ScannerState,
)
from garagectl.core.notifier import EventNotifier
from garagectl.core.registry import DeviceRegistry
from garagectl.transports.base import RadioPlatform

LOGGER = logging.getLogger(__name__)

DiscoveryCallback = Callable[[PeripheralIdentity], None]


class DiscoverySession:
    """Results of one scan, keyed by address in first-seen order."""

    def __init__(self, session_id: int, started_at: float, completed: asyncio.Future[bool]) -> None:
        self.session_id = session_id
        self.started_at = started_at
        self.completed = completed
        self.active = True
        self._results: dict[str, PeripheralIdentity] = {}

    @property
    def results(self) -> tuple[PeripheralIdentity, ...]:
        return tuple(self._results.values())

    async def wait(self) -> bool:
        """Wait for the scan to end and return its completion flag."""
        return await asyncio.shield(self.completed)


class Scanner:
    def __init__(
        self,
        radio: RadioPlatform,
        registry: DeviceRegistry,
        notifier: EventNotifier,
        *,
        service_uuid: str = SERVICE_UUID,
        name_pattern: str = DEFAULT_NAME_PATTERN,
        window_s: float = DEFAULT_SCAN_WINDOW_S,
    ) -> None:
        self._radio = radio
        self._registry = registry
        self._notifier = notifier
        self._service_uuid = service_uuid
        self._name_pattern = name_pattern
        self._window_s = window_s
        self._session_ids = itertools.count(1)
        self._session: DiscoverySession | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._on_discovered: DiscoveryCallback | None = None
        self._saved: set[str] = set()

    @property
    def state(self) -> ScannerState:
        return self._notifier.scanner_state.value

    @property
    def session(self) -> DiscoverySession | None:
        return self._session

    async def start_scan(
        self,
        window_s: float | None = None,
        on_discovered: DiscoveryCallback | None = None,
    ) -> DiscoverySession:
        """Start a scan that ends by itself after `window_s` seconds.

        Must be called from the event loop that owns this scanner. Raises
        RadioUnavailableError without touching state when the radio is off.
        """
        if not await self._radio.is_radio_enabled():
            raise RadioUnavailableError("Bluetooth radio is disabled or unavailable")

        if self.state is ScannerState.SCANNING:
            LOGGER.info("Stopping running scan before starting a new one")
            self.stop_scan()

        loop = asyncio.get_running_loop()
        window = self._window_s if window_s is None else window_s
        session = DiscoverySession(next(self._session_ids), loop.time(), loop.create_future())
        session_id = session.session_id
        self._session = session
        self._on_discovered = on_discovered
        self._saved = {identity.address for identity in self._registry.list_saved()}

        self._notifier.discovered.publish(())
        self._notifier.scanner_state.publish(ScannerState.SCANNING)
        LOGGER.info("Scanning for %.1fs (session %d)", window, session_id)

        try:
            self._radio.begin_scan(
                (self._service_uuid,),
                lambda advertisement: loop.call_soon_threadsafe(
                    self._on_advertisement, session_id, advertisement
                ),
                lambda reason: loop.call_soon_threadsafe(self._on_scan_failed, session_id, reason),
            )
        except GaragectlError:
            self._finish(session, success=False, stop_radio=False)
            raise

        self._timer = loop.call_later(window, self._on_window_elapsed, session_id)
        return session

    def stop_scan(self) -> None:
        session = self._session
        if session is None or not session.active:
            return
        LOGGER.info("Scan stopped (session %d)", session.session_id)
        self._finish(session, success=True)

    def _current(self, session_id: int) -> DiscoverySession | None:
        session = self._session
        if session is None or session.session_id != session_id or not session.active:
            return None
        return session

    def _on_advertisement(self, session_id: int, advertisement: Advertisement) -> None:
        session = self._current(session_id)
        if session is None:
            return
        if not advertisement_matches(
            advertisement,
            service_uuid=self._service_uuid,
            name_pattern=self._name_pattern,
        ):
            return

        address = normalize_address(advertisement.address)
        existing = session._results.get(address)
        if existing is not None:
            if advertisement.name and advertisement.name != existing.display_name:
                session._results[address] = PeripheralIdentity(
                    address=address,
                    display_name=advertisement.name,
                    is_saved=existing.is_saved,
                )
                self._notifier.discovered.publish(session.results)
            return

        identity = PeripheralIdentity(
            address=address,
            display_name=advertisement.name,
            is_saved=address in self._saved,
        )
        session._results[address] = identity
        LOGGER.debug("Discovered %s (%s)", address, identity.label)
        self._notifier.discovered.publish(session.results)
        if self._on_discovered is not None:
            self._on_discovered(identity)

    def _on_window_elapsed(self, session_id: int) -> None:
        session = self._current(session_id)
        if session is None:
            return
        LOGGER.info("Scan window elapsed with %d result(s)", len(session._results))
        self._finish(session, success=True)

    def _on_scan_failed(self, session_id: int, reason: str) -> None:
        session = self._current(session_id)
        if session is None:
            return
        LOGGER.error("Scan failed: %s", reason)
        self._finish(session, success=False)

    def _finish(self, session: DiscoverySession, *, success: bool, stop_radio: bool = True) -> None:
        session.active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._on_discovered = None
        if stop_radio:
            self._radio.end_scan()
        self._notifier.scanner_state.publish(ScannerState.IDLE)
        if not session.completed.done():
            session.completed.set_result(success)
