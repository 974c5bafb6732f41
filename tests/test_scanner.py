from __future__ import annotations

import asyncio

import pytest

from fakes import build_core, settle
from garagectl.core.errors import RadioUnavailableError
from garagectl.core.model import SERVICE_UUID, PeripheralIdentity, ScannerState


def test_repeated_advertisements_are_deduplicated_and_window_ends_scan() -> None:
    async def scenario() -> None:
        core = build_core()
        seen: list[PeripheralIdentity] = []
        session = await core.scanner.start_scan(0.05, on_discovered=seen.append)
        assert core.scanner.state is ScannerState.SCANNING
        assert core.radio.service_filter == (SERVICE_UUID,)

        core.radio.advertise("AA:BB", "Garage", [SERVICE_UUID])
        await settle()
        core.radio.advertise("aa:bb", "Garage", [SERVICE_UUID])
        await settle()

        assert [p.address for p in session.results] == ["AA:BB"]
        assert [p.address for p in seen] == ["AA:BB"]

        assert await session.wait() is True
        assert core.scanner.state is ScannerState.IDLE
        assert session.active is False
        assert core.radio.scanning is False
        assert [p.address for p in session.results] == ["AA:BB"]

    asyncio.run(scenario())


def test_default_window_is_ten_seconds() -> None:
    async def scenario() -> None:
        core = build_core()
        session = await core.scanner.start_scan()
        loop = asyncio.get_running_loop()
        when = core.scanner._timer.when()
        assert when - session.started_at == pytest.approx(10.0, abs=0.05)
        assert loop.time() < when
        core.scanner.stop_scan()

    asyncio.run(scenario())


def test_radio_disabled_fails_before_scanning() -> None:
    async def scenario() -> None:
        core = build_core()
        core.radio.enabled = False
        with pytest.raises(RadioUnavailableError):
            await core.scanner.start_scan()
        assert core.scanner.state is ScannerState.IDLE
        assert core.radio.scan_starts == 0

    asyncio.run(scenario())


def test_filter_accepts_service_or_name_match() -> None:
    async def scenario() -> None:
        core = build_core()
        session = await core.scanner.start_scan(1.0)

        core.radio.advertise("11:11:11:11:11:11", None, [SERVICE_UUID.upper()])
        core.radio.advertise("22:22:22:22:22:22", "My garage door", [])
        core.radio.advertise("33:33:33:33:33:33", "Headphones", ["0000180f-0000-1000-8000-00805f9b34fb"])
        await settle()

        assert [p.address for p in session.results] == ["11:11:11:11:11:11", "22:22:22:22:22:22"]
        core.scanner.stop_scan()

    asyncio.run(scenario())


def test_renamed_advertisement_supersedes_identity_in_place() -> None:
    async def scenario() -> None:
        core = build_core()
        seen: list[PeripheralIdentity] = []
        session = await core.scanner.start_scan(1.0, on_discovered=seen.append)

        core.radio.advertise("11:11:11:11:11:11", None, [SERVICE_UUID])
        core.radio.advertise("22:22:22:22:22:22", "Garage", [SERVICE_UUID])
        core.radio.advertise("11:11:11:11:11:11", "Garage Left", [SERVICE_UUID])
        await settle()

        assert [p.display_name for p in session.results] == ["Garage Left", "Garage"]
        assert len(seen) == 2
        assert seen[0].display_name is None
        assert core.notifier.discovered.value == session.results
        core.scanner.stop_scan()

    asyncio.run(scenario())


def test_restart_stops_previous_scan_and_clears_results() -> None:
    async def scenario() -> None:
        core = build_core()
        first = await core.scanner.start_scan(1.0)
        core.radio.advertise("11:11:11:11:11:11", "Garage")
        await settle()
        assert len(core.notifier.discovered.value) == 1

        second = await core.scanner.start_scan(1.0)

        assert core.radio.scan_stops == 1
        assert core.radio.scan_starts == 2
        assert await first.wait() is True
        assert second.active is True
        assert second.results == ()
        assert core.notifier.discovered.value == ()
        core.scanner.stop_scan()

    asyncio.run(scenario())


def test_stop_scan_when_idle_is_a_noop() -> None:
    async def scenario() -> None:
        core = build_core()
        states: list[ScannerState] = []
        core.notifier.scanner_state.subscribe(states.append)

        core.scanner.stop_scan()
        session = await core.scanner.start_scan(1.0)
        core.scanner.stop_scan()
        core.scanner.stop_scan()

        assert states == [ScannerState.IDLE, ScannerState.SCANNING, ScannerState.IDLE]
        assert core.radio.scan_stops == 1
        assert await session.wait() is True

    asyncio.run(scenario())


def test_platform_scan_failure_completes_unsuccessfully() -> None:
    async def scenario() -> None:
        core = build_core()
        session = await core.scanner.start_scan(1.0)

        core.radio.fail_scan("scan failed: application registration failed")

        assert await session.wait() is False
        assert core.scanner.state is ScannerState.IDLE

    asyncio.run(scenario())


def test_advertisements_after_stop_are_ignored() -> None:
    async def scenario() -> None:
        core = build_core()
        session = await core.scanner.start_scan(1.0)
        core.scanner.stop_scan()

        core.radio.advertise("11:11:11:11:11:11", "Garage")
        await settle()

        assert session.results == ()

    asyncio.run(scenario())


def test_saved_devices_are_flagged() -> None:
    async def scenario() -> None:
        core = build_core()
        core.registry.mark_saved("11:11:11:11:11:11")
        session = await core.scanner.start_scan(1.0)

        core.radio.advertise("11:11:11:11:11:11", "Garage")
        core.radio.advertise("22:22:22:22:22:22", "Garage")
        await settle()

        assert [p.is_saved for p in session.results] == [True, False]
        core.scanner.stop_scan()

    asyncio.run(scenario())
