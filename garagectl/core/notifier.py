"""Replay-latest state streams for pushing state changes to observers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from garagectl.core.model import (
    ConnectionState,
    Notification,
    OperationState,
    PeripheralIdentity,
    ScannerState,
)

T = TypeVar("T")
LOGGER = logging.getLogger(__name__)


class Subscription:
    def __init__(self, stream: StateStream, observer: Callable) -> None:
        self._stream = stream
        self._observer = observer

    def cancel(self) -> None:
        self._stream._discard(self._observer)


class StateStream(Generic[T]):
    """Current value plus push delivery of every change.

    A new subscriber is called with the current value straight away and then
    with each later change, in publish order. Publishing a value equal to the
    current one is a no-op. There is no backlog: `watch()` consumers that fall
    behind only ever see the newest value.
    """

    def __init__(self, name: str, initial: T) -> None:
        self.name = name
        self._value = initial
        self._observers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def publish(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        LOGGER.debug("%s -> %s", self.name, value)
        for observer in tuple(self._observers):
            self._deliver(observer, value)

    def subscribe(self, observer: Callable[[T], None]) -> Subscription:
        self._observers.append(observer)
        self._deliver(observer, self._value)
        return Subscription(self, observer)

    async def watch(self) -> AsyncIterator[T]:
        wakeup = asyncio.Event()
        subscription = self.subscribe(lambda _value: wakeup.set())
        try:
            while True:
                await wakeup.wait()
                wakeup.clear()
                yield self._value
        finally:
            subscription.cancel()

    def _deliver(self, observer: Callable[[T], None], value: T) -> None:
        try:
            observer(value)
        except Exception:
            LOGGER.exception("Observer of %s failed", self.name)

    def _discard(self, observer: Callable[[T], None]) -> None:
        if observer in self._observers:
            self._observers.remove(observer)


@dataclass
class EventNotifier:
    """All observable garagectl state, one stream per concern."""

    connection_state: StateStream[ConnectionState] = field(
        default_factory=lambda: StateStream("connection_state", ConnectionState.DISCONNECTED)
    )
    operation_state: StateStream[OperationState] = field(
        default_factory=lambda: StateStream("operation_state", OperationState.IDLE)
    )
    scanner_state: StateStream[ScannerState] = field(
        default_factory=lambda: StateStream("scanner_state", ScannerState.IDLE)
    )
    discovered: StateStream[tuple[PeripheralIdentity, ...]] = field(
        default_factory=lambda: StateStream("discovered", ())
    )
    saved: StateStream[frozenset[PeripheralIdentity]] = field(
        default_factory=lambda: StateStream("saved", frozenset())
    )
    bonded: StateStream[tuple[PeripheralIdentity, ...]] = field(
        default_factory=lambda: StateStream("bonded", ())
    )
    notifications: StateStream[Notification | None] = field(
        default_factory=lambda: StateStream("notifications", None)
    )
