"""Lifecycle of the single active peripheral connection."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from garagectl.core.device_match import exposes_service, normalize_uuid
from garagectl.core.errors import GaragectlError, LinkFailureError
from garagectl.core.model import (
    CONTROL_CHAR_UUID,
    SERVICE_UUID,
    ConnectionState,
    Notification,
    PeripheralIdentity,
)
from garagectl.core.notifier import EventNotifier
from garagectl.core.registry import DeviceRegistry
from garagectl.transports.base import RadioPlatform

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    connection_id: int
    peripheral: PeripheralIdentity
    state: ConnectionState = ConnectionState.CONNECTING
    handle: Any = None
    link_established: bool = False
    service_uuids: frozenset[str] = frozenset()


class _LinkEvents:
    """Link listener that hops platform callbacks onto the owning event loop."""

    def __init__(self, manager: ConnectionManager, connection_id: int, loop: asyncio.AbstractEventLoop) -> None:
        self._manager = manager
        self._connection_id = connection_id
        self._loop = loop

    def on_link_established(self) -> None:
        self._loop.call_soon_threadsafe(self._manager._on_link_established, self._connection_id)

    def on_services_discovered(self, service_uuids: Iterable[str], ok: bool = True) -> None:
        self._loop.call_soon_threadsafe(
            self._manager._on_services_discovered,
            self._connection_id,
            tuple(service_uuids),
            ok,
        )

    def on_link_lost(self, reason: str) -> None:
        self._loop.call_soon_threadsafe(self._manager._on_link_lost, self._connection_id, reason)

    def on_notification(self, data: bytes) -> None:
        self._loop.call_soon_threadsafe(self._manager._on_notification, self._connection_id, bytes(data))


class ConnectionManager:
    """Owns at most one live Connection and its state machine.

    DISCONNECTED -> CONNECTING on `connect()`; CONNECTING -> CONNECTED only
    once the link is up and service discovery reported the target service;
    anything -> DISCONNECTED on link loss, failure, `disconnect()` or
    `close()`. A Connection never leaves DISCONNECTED; the next `connect()`
    creates a new one.
    """

    def __init__(
        self,
        radio: RadioPlatform,
        registry: DeviceRegistry,
        notifier: EventNotifier,
        *,
        service_uuid: str = SERVICE_UUID,
        characteristic_uuid: str = CONTROL_CHAR_UUID,
    ) -> None:
        self._radio = radio
        self._registry = registry
        self._notifier = notifier
        self._service_uuid = service_uuid
        self._characteristic_uuid = characteristic_uuid
        self._connection_ids = itertools.count(1)
        self._notification_ids = itertools.count(1)
        self._connection: Connection | None = None
        self._handle: Any = None
        self._pending: asyncio.Future[Connection] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._notifier.connection_state.value

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def has_handle(self) -> bool:
        return self._handle is not None

    async def connect(self, peripheral: PeripheralIdentity) -> Connection:
        address = peripheral.address
        if not await self._radio.is_radio_enabled():
            LOGGER.error("Can't connect to %s: Bluetooth radio unavailable", address)
            raise LinkFailureError(f"Cannot connect to {address}: Bluetooth radio is disabled or unavailable")

        previous = self._connection
        if previous is not None and previous.state is not ConnectionState.DISCONNECTED:
            LOGGER.info(
                "Tearing down connection to %s before connecting to %s",
                previous.peripheral.address,
                address,
            )
        self.close()

        self._registry.mark_saved(address)
        self._registry.record_last_connected(address)

        loop = asyncio.get_running_loop()
        connection = Connection(
            connection_id=next(self._connection_ids),
            peripheral=replace(peripheral, is_saved=True),
        )
        future: asyncio.Future[Connection] = loop.create_future()
        self._connection = connection
        self._pending = future
        self._notifier.connection_state.publish(ConnectionState.CONNECTING)
        LOGGER.info("Connecting to %s (connection %d)", address, connection.connection_id)

        try:
            handle = self._radio.open_link(address, _LinkEvents(self, connection.connection_id, loop))
        except GaragectlError as exc:
            self._fail(connection, f"Could not open link to {address}: {exc}")
        else:
            connection.handle = handle
            self._handle = handle

        try:
            return await future
        except asyncio.CancelledError:
            if self._connection is connection:
                LOGGER.info("Connect to %s cancelled", address)
                self.close()
            raise

    def disconnect(self) -> None:
        """Drop the link but keep the platform handle until `close()`."""
        connection = self._connection
        if connection is None or connection.state is ConnectionState.DISCONNECTED:
            return
        LOGGER.info("Disconnecting from %s", connection.peripheral.address)
        if self._handle is not None:
            self._radio.disconnect_link(self._handle)
        self._teardown(
            connection,
            release=False,
            error=LinkFailureError(f"Connection to {connection.peripheral.address} was disconnected"),
        )

    def close(self) -> None:
        """Drop the link and release the platform handle. Safe to repeat."""
        connection = self._connection
        if connection is not None and connection.state is not ConnectionState.DISCONNECTED:
            LOGGER.info("Closing connection to %s", connection.peripheral.address)
            self._teardown(
                connection,
                release=True,
                error=LinkFailureError(f"Connection to {connection.peripheral.address} was closed"),
            )
        elif self._handle is not None:
            self._release_handle()

    def resolve_characteristic(self, characteristic_uuid: str | None = None) -> bool:
        connection = self._connection
        if connection is None or connection.state is not ConnectionState.CONNECTED:
            return False
        if connection.handle is None:
            return False
        return self._radio.resolve_characteristic(
            connection.handle,
            self._service_uuid,
            characteristic_uuid or self._characteristic_uuid,
        )

    def _current(self, connection_id: int) -> Connection | None:
        connection = self._connection
        if connection is None or connection.connection_id != connection_id:
            return None
        if connection.state is ConnectionState.DISCONNECTED:
            return None
        return connection

    def _on_link_established(self, connection_id: int) -> None:
        connection = self._current(connection_id)
        if connection is None:
            LOGGER.debug("Ignoring link event for stale connection %d", connection_id)
            return
        connection.link_established = True
        LOGGER.info("Link established to %s, discovering services", connection.peripheral.address)

    def _on_services_discovered(self, connection_id: int, service_uuids: tuple[str, ...], ok: bool) -> None:
        connection = self._current(connection_id)
        if connection is None or connection.state is not ConnectionState.CONNECTING:
            return
        if not connection.link_established:
            LOGGER.warning("Ignoring service discovery reported before link establishment")
            return
        address = connection.peripheral.address
        if not ok:
            self._fail(connection, f"Service discovery failed on {address}")
            return
        if not exposes_service(service_uuids, self._service_uuid):
            self._fail(connection, f"Service {self._service_uuid} not found on {address}")
            return

        connection.service_uuids = frozenset(normalize_uuid(uuid) for uuid in service_uuids)
        connection.state = ConnectionState.CONNECTED
        LOGGER.info("Connected to %s", address)
        self._notifier.connection_state.publish(ConnectionState.CONNECTED)

        future, self._pending = self._pending, None
        if future is not None and not future.done():
            future.set_result(connection)

        if self._radio.resolve_characteristic(connection.handle, self._service_uuid, self._characteristic_uuid):
            self._radio.subscribe_notifications(connection.handle, self._service_uuid, self._characteristic_uuid)

    def _on_link_lost(self, connection_id: int, reason: str) -> None:
        connection = self._current(connection_id)
        if connection is None:
            return
        address = connection.peripheral.address
        LOGGER.warning("Link to %s lost: %s", address, reason)
        self._teardown(connection, release=True, error=LinkFailureError(f"Link to {address} lost: {reason}"))

    def _on_notification(self, connection_id: int, data: bytes) -> None:
        connection = self._current(connection_id)
        if connection is None:
            return
        text = data.decode("utf-8", errors="replace")
        LOGGER.info("Notification from %s: %s", connection.peripheral.address, text)
        self._notifier.notifications.publish(
            Notification(
                sequence=next(self._notification_ids),
                address=connection.peripheral.address,
                text=text,
            )
        )

    def _fail(self, connection: Connection, message: str) -> None:
        LOGGER.error(message)
        self._teardown(connection, release=True, error=LinkFailureError(message))

    def _teardown(self, connection: Connection, *, release: bool, error: GaragectlError) -> None:
        connection.state = ConnectionState.DISCONNECTED
        if release:
            self._release_handle()
        self._notifier.connection_state.publish(ConnectionState.DISCONNECTED)

        future, self._pending = self._pending, None
        if future is not None and not future.done():
            future.set_exception(error)

    def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            self._radio.close_link(handle)
