"""Shared test fixtures: real registries, fake report sinks."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import pytest_asyncio

from hostagent.events.bus import EventBus
from hostagent.processes.registry import ProcessRegistry


class RecordingSink:
    """Report sink that keeps payloads in memory. No network."""

    def __init__(self, fail: bool = False, fail_connect: bool = False):
        self.fail = fail
        self.fail_connect = fail_connect
        self.payloads = []
        self.connects: list[tuple[str, str]] = []

    async def report(self, payload):
        if self.fail:
            raise httpx.ConnectError("controller unreachable")
        self.payloads.append(payload)
        return {"ok": True}

    async def connect(self, instance_id, region):
        if self.fail_connect:
            raise httpx.ConnectError("controller unreachable")
        self.connects.append((instance_id, region))
        return {"ok": True}


async def _stop_all(registry: ProcessRegistry) -> None:
    for process_id in registry.ids():
        await registry.stop(process_id)
    await registry.aclose()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest_asyncio.fixture
async def registry(event_bus):
    reg = ProcessRegistry(event_bus=event_bus)
    yield reg
    await _stop_all(reg)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def wait_exit():
    """Poll a registry until a process reports running=False."""

    async def _wait(registry: ProcessRegistry, process_id: str, timeout: float = 5.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            view = registry.status(process_id)
            if view is not None and not view.running:
                return view
            if loop.time() > deadline:
                raise AssertionError(f"{process_id} still running after {timeout}s")
            await asyncio.sleep(0.02)

    return _wait


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True, fail_connect=True)
