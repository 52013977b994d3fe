"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from courier_client.bus import EventBus
from courier_client.config import CommandCenterConfig
from courier_client.scheduler import CommandScheduler
from courier_client.transport import MockRequestTransport

COMMAND_URL = "https://example.com/game/cmd"


class Recorder:
    """Collects every publication on a bus."""

    def __init__(self, bus: EventBus, path: str = EventBus.WILDCARD):
        self.events: list[tuple[str, Any]] = []
        bus.subscribe(path, self)

    def __call__(self, path: str, payload: Any) -> None:
        self.events.append((path, payload))

    @property
    def paths(self) -> list[str]:
        return [path for path, _ in self.events]

    def payloads(self, path: str) -> list[Any]:
        return [payload for p, payload in self.events if p == path]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> Recorder:
    return Recorder(bus)


@pytest.fixture
def transport() -> MockRequestTransport:
    return MockRequestTransport()


@pytest.fixture
def scheduler(bus: EventBus, transport: MockRequestTransport) -> CommandScheduler:
    return CommandScheduler(bus, CommandCenterConfig(url=COMMAND_URL), transport=transport)
