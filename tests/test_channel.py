from __future__ import annotations

import asyncio

import pytest

from fakes import Core, build_core, settle
from garagectl.core.errors import (
    AlreadyInFlightError,
    CharacteristicUnavailableError,
    LinkFailureError,
    NotConnectedError,
    OperationTimeoutError,
    WriteRejectedError,
)
from garagectl.core.model import OperationState, PeripheralIdentity

GARAGE = PeripheralIdentity(address="AA:BB:CC:DD:EE:FF", display_name="Garage")


async def _connected(**kwargs) -> Core:
    core = build_core(**kwargs)
    core.radio.auto_establish = True
    await core.connections.connect(GARAGE)
    return core


def test_trigger_acknowledged_then_next_send_collapses_success() -> None:
    async def scenario() -> None:
        core = await _connected()
        states: list[OperationState] = []
        core.notifier.operation_state.subscribe(states.append)

        task = asyncio.create_task(core.channel.trigger())
        await settle()
        assert core.channel.state is OperationState.SENDING
        assert core.radio.writes[0].data == b"TRIGGER"

        core.radio.writes[0].ack()
        result = await task
        assert result.command == "TRIGGER"
        assert result.address == GARAGE.address
        assert core.channel.state is OperationState.SUCCESS

        task = asyncio.create_task(core.channel.send("STATUS"))
        await settle()
        core.radio.writes[1].ack()
        await task

        assert states == [
            OperationState.IDLE,
            OperationState.SENDING,
            OperationState.SUCCESS,
            OperationState.IDLE,
            OperationState.SENDING,
            OperationState.SUCCESS,
        ]

    asyncio.run(scenario())


def test_timeout_fails_then_resets_and_late_ack_is_ignored() -> None:
    async def scenario() -> None:
        core = await _connected(timeout_s=0.05)
        states: list[OperationState] = []
        core.notifier.operation_state.subscribe(states.append)

        with pytest.raises(OperationTimeoutError):
            await core.channel.trigger()

        assert states == [
            OperationState.IDLE,
            OperationState.SENDING,
            OperationState.FAILED,
            OperationState.IDLE,
        ]
        assert core.channel.pending is None

        core.radio.writes[0].ack()
        await settle()
        assert core.channel.state is OperationState.IDLE
        assert len(states) == 4

    asyncio.run(scenario())


def test_default_timeout_is_five_seconds() -> None:
    core = build_core()
    assert core.channel.timeout_s == 5.0


def test_rejected_write_reports_failure() -> None:
    async def scenario() -> None:
        core = await _connected()
        task = asyncio.create_task(core.channel.trigger())
        await settle()

        core.radio.writes[0].reject("GATT write not permitted")
        with pytest.raises(WriteRejectedError, match="not permitted"):
            await task
        assert core.channel.state is OperationState.FAILED

    asyncio.run(scenario())


def test_second_send_while_in_flight_is_rejected_without_touching_timer() -> None:
    async def scenario() -> None:
        core = await _connected()
        first = asyncio.create_task(core.channel.trigger())
        await settle()
        pending = core.channel.pending
        timer = pending.timer

        with pytest.raises(AlreadyInFlightError):
            await core.channel.send("STATUS")

        assert core.channel.pending is pending
        assert pending.timer is timer
        assert not timer.cancelled()
        assert core.channel.state is OperationState.SENDING
        assert len(core.radio.writes) == 1

        core.radio.writes[0].ack()
        await first

    asyncio.run(scenario())


def test_send_when_not_connected_is_rejected_locally() -> None:
    async def scenario() -> None:
        core = build_core()
        with pytest.raises(NotConnectedError):
            await core.channel.trigger()
        assert core.channel.state is OperationState.IDLE
        assert core.radio.writes == []

    asyncio.run(scenario())


def test_missing_characteristic_is_rejected_locally() -> None:
    async def scenario() -> None:
        core = await _connected()
        core.radio.characteristics = set()

        with pytest.raises(CharacteristicUnavailableError):
            await core.channel.trigger()
        assert core.channel.state is OperationState.IDLE
        assert core.radio.writes == []

    asyncio.run(scenario())


def test_disconnect_while_sending_fails_command_in_same_step() -> None:
    async def scenario() -> None:
        core = await _connected()
        states: list[OperationState] = []
        core.notifier.operation_state.subscribe(states.append)
        task = asyncio.create_task(core.channel.trigger())
        await settle()

        core.connections.disconnect()
        assert core.channel.state is OperationState.IDLE
        assert core.channel.pending is None
        assert states[-2:] == [OperationState.FAILED, OperationState.IDLE]

        with pytest.raises(LinkFailureError):
            await task

        core.radio.writes[0].ack()
        await settle()
        assert core.channel.state is OperationState.IDLE

    asyncio.run(scenario())


def test_link_lost_while_sending_fails_command() -> None:
    async def scenario() -> None:
        core = await _connected()
        task = asyncio.create_task(core.channel.trigger())
        await settle()

        core.radio.link.listener.on_link_lost("supervision timeout")
        with pytest.raises(LinkFailureError):
            await task
        assert core.channel.state is OperationState.IDLE

    asyncio.run(scenario())


def test_stale_results_for_earlier_operation_are_ignored() -> None:
    async def scenario() -> None:
        core = await _connected()
        first = asyncio.create_task(core.channel.send("STATUS"))
        await settle()
        core.radio.writes[0].ack()
        first_result = await first

        second = asyncio.create_task(core.channel.trigger())
        await settle()
        core.radio.writes[0].reject("late duplicate")
        core.channel._on_timeout(first_result.operation_id)
        await settle()
        assert core.channel.state is OperationState.SENDING

        core.radio.writes[1].ack()
        result = await second
        assert result.operation_id == first_result.operation_id + 1
        assert core.channel.state is OperationState.SUCCESS

    asyncio.run(scenario())


def test_payload_is_sent_unchanged() -> None:
    async def scenario() -> None:
        core = await _connected()
        task = asyncio.create_task(core.channel.send("LIGHT ON"))
        await settle()
        assert core.radio.writes[0].data == b"LIGHT ON"
        core.radio.writes[0].ack()
        await task

    asyncio.run(scenario())


def test_cancelled_send_releases_the_channel() -> None:
    async def scenario() -> None:
        core = await _connected()
        states: list[OperationState] = []
        core.notifier.operation_state.subscribe(states.append)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(core.channel.trigger(), timeout=0.05)

        assert core.channel.pending is None
        assert core.channel.state is OperationState.IDLE
        assert states == [OperationState.IDLE, OperationState.SENDING, OperationState.FAILED, OperationState.IDLE]

        task = asyncio.create_task(core.channel.send("LIGHT"))
        await settle()
        assert core.radio.writes[1].data == b"LIGHT"
        core.radio.writes[0].ack()
        core.radio.writes[1].ack()
        assert (await task).command == "LIGHT"

    asyncio.run(scenario())
