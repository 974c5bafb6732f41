"""Single-flight command writes to the control characteristic."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass

from garagectl.core.connection import ConnectionManager
from garagectl.core.errors import (
    AlreadyInFlightError,
    CharacteristicUnavailableError,
    GaragectlError,
    LinkFailureError,
    NotConnectedError,
    OperationTimeoutError,
    WriteRejectedError,
)
from garagectl.core.model import (
    CONTROL_CHAR_UUID,
    DEFAULT_COMMAND_TIMEOUT_S,
    SERVICE_UUID,
    TRIGGER_COMMAND,
    CommandResult,
    ConnectionState,
    OperationState,
)
from garagectl.core.notifier import EventNotifier
from garagectl.transports.base import RadioPlatform

LOGGER = logging.getLogger(__name__)


@dataclass(eq=False)
class PendingCommand:
    operation_id: int
    payload: str
    address: str
    issued_at: float
    future: asyncio.Future[CommandResult]
    timer: asyncio.TimerHandle | None = None


class CommandChannel:
    """Writes commands one at a time and resolves each exactly once.

    Each write is tagged with an operation id. The acknowledgement path and
    the timeout path both check that id against the pending command before
    acting, so whichever fires first wins and the other is dropped.

    Delivery is at-most-once: after a timeout the peripheral may or may not
    have received the write, and the command is not retried.
    """

    def __init__(
        self,
        radio: RadioPlatform,
        connections: ConnectionManager,
        notifier: EventNotifier,
        *,
        service_uuid: str = SERVICE_UUID,
        characteristic_uuid: str = CONTROL_CHAR_UUID,
        timeout_s: float = DEFAULT_COMMAND_TIMEOUT_S,
    ) -> None:
        self._radio = radio
        self._connections = connections
        self._notifier = notifier
        self._service_uuid = service_uuid
        self._characteristic_uuid = characteristic_uuid
        self.timeout_s = timeout_s
        self._operation_ids = itertools.count(1)
        self._pending: PendingCommand | None = None
        notifier.connection_state.subscribe(self._on_connection_state)

    @property
    def state(self) -> OperationState:
        return self._notifier.operation_state.value

    @property
    def pending(self) -> PendingCommand | None:
        return self._pending

    async def trigger(self) -> CommandResult:
        return await self.send(TRIGGER_COMMAND)

    async def send(self, command: str) -> CommandResult:
        if self._pending is not None:
            LOGGER.warning(
                "Rejecting %r: operation %d (%r) still in flight",
                command,
                self._pending.operation_id,
                self._pending.payload,
            )
            raise AlreadyInFlightError(
                f"Command {self._pending.payload!r} is still in flight; wait for it to resolve"
            )
        self._collapse()

        connection = self._connections.connection
        if connection is None or connection.state is not ConnectionState.CONNECTED:
            LOGGER.error("Can't send %r: not connected", command)
            raise NotConnectedError(f"Can't send {command!r}: not connected")
        if not self._connections.resolve_characteristic(self._characteristic_uuid):
            LOGGER.error("Characteristic %s not found", self._characteristic_uuid)
            raise CharacteristicUnavailableError(
                f"Characteristic {self._characteristic_uuid} not found on {connection.peripheral.address}"
            )

        loop = asyncio.get_running_loop()
        operation_id = next(self._operation_ids)
        pending = PendingCommand(
            operation_id=operation_id,
            payload=command,
            address=connection.peripheral.address,
            issued_at=loop.time(),
            future=loop.create_future(),
        )
        self._pending = pending
        self._notifier.operation_state.publish(OperationState.SENDING)
        LOGGER.info("Sending %r to %s (operation %d)", command, pending.address, operation_id)

        pending.timer = loop.call_later(self.timeout_s, self._on_timeout, operation_id)
        try:
            self._radio.write_characteristic(
                connection.handle,
                self._service_uuid,
                self._characteristic_uuid,
                command.encode("utf-8"),
                lambda ok, detail=None: loop.call_soon_threadsafe(
                    self._on_write_result, operation_id, ok, detail
                ),
            )
        except GaragectlError as exc:
            LOGGER.error("Write of %r failed to start: %s", command, exc)
            self._resolve(pending, OperationState.FAILED, error=WriteRejectedError(str(exc)))

        try:
            return await pending.future
        except asyncio.CancelledError:
            if self._pending is pending:
                LOGGER.warning("Send of %r cancelled by caller; delivery unknown", command)
                self._resolve(pending, OperationState.FAILED)
                self._notifier.operation_state.publish(OperationState.IDLE)
            raise

    def _collapse(self) -> None:
        if self.state in (OperationState.SUCCESS, OperationState.FAILED):
            self._notifier.operation_state.publish(OperationState.IDLE)

    def _claim(self, operation_id: int) -> PendingCommand | None:
        pending = self._pending
        if pending is None or pending.operation_id != operation_id:
            return None
        return pending

    def _on_write_result(self, operation_id: int, ok: bool, detail: str | None) -> None:
        pending = self._claim(operation_id)
        if pending is None:
            LOGGER.debug("Ignoring write result for resolved operation %d", operation_id)
            return

        loop = pending.future.get_loop()
        if ok:
            elapsed = loop.time() - pending.issued_at
            LOGGER.info("Write of %r acknowledged after %.2fs", pending.payload, elapsed)
            self._resolve(
                pending,
                OperationState.SUCCESS,
                result=CommandResult(
                    command=pending.payload,
                    address=pending.address,
                    operation_id=operation_id,
                    elapsed_s=elapsed,
                ),
            )
            return

        LOGGER.error("Write of %r failed: %s", pending.payload, detail or "unknown error")
        self._resolve(
            pending,
            OperationState.FAILED,
            error=WriteRejectedError(f"Peripheral rejected {pending.payload!r}: {detail or 'unknown error'}"),
        )

    def _on_timeout(self, operation_id: int) -> None:
        pending = self._claim(operation_id)
        if pending is None:
            return
        LOGGER.warning(
            "No acknowledgement for %r within %.1fs; delivery unknown",
            pending.payload,
            self.timeout_s,
        )
        self._resolve(
            pending,
            OperationState.FAILED,
            error=OperationTimeoutError(
                f"No acknowledgement for {pending.payload!r} within {self.timeout_s:g}s"
            ),
        )
        self._notifier.operation_state.publish(OperationState.IDLE)

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            return
        pending = self._pending
        if pending is not None:
            LOGGER.warning("Connection lost while %r was in flight", pending.payload)
            self._resolve(
                pending,
                OperationState.FAILED,
                error=LinkFailureError(f"Connection lost while sending {pending.payload!r}"),
            )
        self._notifier.operation_state.publish(OperationState.IDLE)

    def _resolve(
        self,
        pending: PendingCommand,
        state: OperationState,
        *,
        result: CommandResult | None = None,
        error: GaragectlError | None = None,
    ) -> None:
        self._pending = None
        if pending.timer is not None:
            pending.timer.cancel()
            pending.timer = None
        self._notifier.operation_state.publish(state)
        if pending.future.done():
            return
        if error is not None:
            pending.future.set_exception(error)
        else:
            pending.future.set_result(result)
