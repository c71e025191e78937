# tests/conftest.py
"""Shared pytest fixtures for live simulation server tests.

This file provides common fixtures used across all test modules,
following the bottom-up testing strategy where foundation components
are tested with real dependencies wherever possible. Only the network
edges (transport, upstream catalog) are replaced with recording or
controllable doubles.
"""

import asyncio
import random
import tempfile
from pathlib import Path
from typing import Any, Generator

import pytest
import yaml

from components.catalog.clients import StaticCatalogProvider
from components.catalog.models import CatalogDevice, EndUser
from components.devices.simulated_device import SimulationSettings
from components.session.session_manager import SessionManager
from components.simulation.orchestrator import SimulationOrchestrator, SimulationRun
from components.state.device_registry import DeviceRegistry


# ----------------------------------------------------------------
# Test doubles
# ----------------------------------------------------------------
class RecordingTransport:
    """Transport that records every emitted event."""

    def __init__(self):
        self.sent: list[tuple[str, str, Any]] = []

    async def emit(self, session_id: str, event: str, data: Any = None) -> None:
        self.sent.append((session_id, event, data))

    def events_for(self, session_id: str, event: str | None = None) -> list[tuple[str, Any]]:
        return [
            (e, d)
            for sid, e, d in self.sent
            if sid == session_id and (event is None or e == event)
        ]

    def count(self, event: str) -> int:
        return sum(1 for _, e, _ in self.sent if e == event)


class AckRecorder:
    """Callable acknowledgment that records (error, result) pairs."""

    def __init__(self):
        self.calls: list[tuple[Any, Any]] = []

    def __call__(self, error, result):
        self.calls.append((error, result))

    @property
    def called(self) -> bool:
        return bool(self.calls)


class GatedProvider(StaticCatalogProvider):
    """Catalog provider whose fetches wait until the gate is opened.

    Set `fail_devices` / `fail_end_users` to an exception to make the
    corresponding fetch raise once the gate opens.
    """

    def __init__(self, devices=None, end_users=None):
        super().__init__(devices, end_users)
        self.gate = asyncio.Event()
        self.fail_devices: Exception | None = None
        self.fail_end_users: Exception | None = None
        self.device_calls = 0
        self.end_user_calls = 0

    async def get_devices(self):
        self.device_calls += 1
        await self.gate.wait()
        if self.fail_devices is not None:
            raise self.fail_devices
        return await super().get_devices()

    async def get_end_users(self):
        self.end_user_calls += 1
        await self.gate.wait()
        if self.fail_end_users is not None:
            raise self.fail_end_users
        return await super().get_end_users()


class RecordingCrm:
    """CRM mirror double; set `fail_contacts` / `fail_assets` to raise."""

    def __init__(self):
        self.contacts: list[EndUser] = []
        self.assets: list[CatalogDevice] = []
        self.fail_contacts: Exception | None = None
        self.fail_assets: Exception | None = None

    async def add_contacts(self, end_users):
        if self.fail_contacts is not None:
            raise self.fail_contacts
        self.contacts.extend(end_users)
        return len(end_users)

    async def add_assets(self, devices):
        if self.fail_assets is not None:
            raise self.fail_assets
        self.assets.extend(devices)
        return len(devices)


# ----------------------------------------------------------------
# Catalog fixtures
# ----------------------------------------------------------------
@pytest.fixture
def catalog_devices() -> list[CatalogDevice]:
    """Three thermostats with temperature/humidity thresholds."""
    return [
        CatalogDevice(
            device_id=f"thermostat-{i}",
            name=f"Thermostat {i}",
            serial=f"TS-000{i}",
            thresholds={"temperature_max": 30.0, "humidity_max": 70.0},
        )
        for i in range(1, 4)
    ]


@pytest.fixture
def end_users() -> list[EndUser]:
    return [
        EndUser(user_id="user-1", name="Ada", email="ada@example.com", device_ids=["thermostat-1"]),
        EndUser(user_id="user-2", name="Grace", email="grace@example.com", device_ids=["thermostat-2"]),
    ]


@pytest.fixture
def static_provider(catalog_devices, end_users) -> StaticCatalogProvider:
    return StaticCatalogProvider(catalog_devices, end_users)


@pytest.fixture
def gated_provider(catalog_devices, end_users) -> GatedProvider:
    return GatedProvider(catalog_devices, end_users)


@pytest.fixture
def recording_crm() -> RecordingCrm:
    return RecordingCrm()


# ----------------------------------------------------------------
# Core component fixtures
# ----------------------------------------------------------------
@pytest.fixture
def fast_settings() -> SimulationSettings:
    """Short, instant simulation runs for tests."""
    return SimulationSettings(steps=3, tick_interval=0.0, forced_fault_offset=45.0, seed=1)


@pytest.fixture
def registry(static_provider, fast_settings) -> DeviceRegistry:
    return DeviceRegistry(static_provider, fast_settings)


@pytest.fixture
async def loaded_registry(registry) -> DeviceRegistry:
    await registry.refresh()
    yield registry
    for device in registry.get_all().values():
        device.stop_simulation()


@pytest.fixture
def orchestrator(registry) -> SimulationOrchestrator:
    return SimulationOrchestrator(registry, SimulationRun(), random.Random(42))


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
async def session_manager(registry, orchestrator, transport) -> SessionManager:
    manager = SessionManager(registry, orchestrator, transport, refresh_timeout=1.0)
    yield manager
    await orchestrator.stop()
    await manager.close()


@pytest.fixture
def ack() -> AckRecorder:
    return AckRecorder()


@pytest.fixture
def make_ack():
    """Factory for additional AckRecorders within one test."""
    return AckRecorder


# ----------------------------------------------------------------
# Configuration fixtures
# ----------------------------------------------------------------
@pytest.fixture
def temp_config_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test configuration files.

    Yields:
        Path to temporary configuration directory
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_config_file(temp_config_dir):
    """Factory fixture for writing YAML configuration files.

    Returns:
        Function that writes config dict to YAML file
    """

    def _write_config(config: dict, filename: str) -> Path:
        config_file = temp_config_dir / filename
        with open(config_file, "w") as f:
            yaml.dump(config, f)
        return config_file

    return _write_config


# ----------------------------------------------------------------
# Async utilities
# ----------------------------------------------------------------
@pytest.fixture
def wait_for_condition():
    """Provide utility for waiting on async conditions.

    Returns:
        Async function that polls a condition until true or timeout
    """

    async def _wait(
        condition_fn,
        timeout: float = 1.0,
        poll_interval: float = 0.01,
        error_msg: str = "Condition not met within timeout",
    ):
        loop = asyncio.get_running_loop()
        start = loop.time()
        while loop.time() - start < timeout:
            if condition_fn():
                return
            await asyncio.sleep(poll_interval)

        raise AssertionError(error_msg)

    return _wait
