"""Address normalization and target-device matching rules."""

from __future__ import annotations

from collections.abc import Iterable

from garagectl.core.model import Advertisement


def normalize_address(address: str) -> str:
    return address.strip().upper()


def normalize_uuid(value: str) -> str:
    return value.strip().lower()


def name_matches(name: str | None, pattern: str) -> bool:
    if not name or not pattern:
        return False
    return pattern.lower() in name.lower()


def exposes_service(service_uuids: Iterable[str], service_uuid: str) -> bool:
    wanted = normalize_uuid(service_uuid)
    return any(normalize_uuid(uuid) == wanted for uuid in service_uuids)


def advertisement_matches(advertisement: Advertisement, *, service_uuid: str, name_pattern: str) -> bool:
    # Platform-side scan filters are not trusted to be exact.
    return exposes_service(advertisement.service_uuids, service_uuid) or name_matches(
        advertisement.name, name_pattern
    )
