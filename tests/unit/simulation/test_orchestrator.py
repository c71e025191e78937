# tests/unit/simulation/test_orchestrator.py
"""Tests for SimulationOrchestrator and RunToken.

Uses a REAL DeviceRegistry with REAL SimulatedDevices (already tested
at the lower levels) and a seeded random source for fault selection.

Test Coverage:
- RunToken first-cancel-wins semantics
- Start: device selection, faulty device choice, double start
- Stop: idempotence, clears faults, no listener calls
- Natural completion: exactly one listener call, stale runs ignored
- Status reporting
"""

import asyncio
import random

import pytest

from components.catalog.clients import StaticCatalogProvider
from components.devices.simulated_device import SimulationSettings
from components.simulation.orchestrator import (
    RunPhase,
    RunToken,
    SimulationOrchestrator,
    SimulationRun,
)
from components.state.device_registry import DeviceRegistry


@pytest.fixture
async def slow_registry(catalog_devices):
    """Registry whose runs never finish on their own during a test."""
    registry = DeviceRegistry(
        StaticCatalogProvider(catalog_devices), SimulationSettings(steps=5, tick_interval=10)
    )
    await registry.refresh()
    yield registry
    for device in registry.get_all().values():
        device.stop_simulation()


class StopCounter:
    def __init__(self):
        self.calls = 0

    async def __call__(self):
        self.calls += 1


# ================================================================
# RUN TOKEN TESTS
# ================================================================
class TestRunToken:
    """Test the run cancellation token."""

    def test_first_cancel_wins(self):
        """Test only the first cancel fires callbacks.

        WHY: Every device in a run completes; only one may end it.
        """
        fired = []
        token = RunToken(1)
        token.add_callback(fired.append)

        assert token.cancel("a") is True
        assert token.cancel("b") is False

        assert fired == [token]
        assert token.cancelled_by == "a"

    def test_uncancelled_token(self):
        token = RunToken(7)

        assert token.cancelled is False
        assert token.cancelled_by is None


# ================================================================
# START TESTS
# ================================================================
class TestOrchestratorStart:
    """Test starting the shared run."""

    @pytest.mark.asyncio
    async def test_start_runs_all_but_initiator(self, slow_registry):
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))

        assert await orchestrator.start("thermostat-2") is True

        assert orchestrator.running
        assert orchestrator.run.devices == {"thermostat-1", "thermostat-3"}
        assert not slow_registry.get_one("thermostat-2").simulating

    @pytest.mark.asyncio
    async def test_start_without_initiator_runs_all(self, slow_registry):
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))

        await orchestrator.start()

        assert len(orchestrator.run.devices) == 3

    @pytest.mark.asyncio
    async def test_faulty_device_follows_seed(self, slow_registry):
        """Test fault selection is reproducible from the seed.

        WHY: The faulty device must be deterministic for testing and
        drawn from every device, independent of who started the run.
        """
        expected = random.Random(99).choice(sorted(slow_registry.get_all()))

        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(99))
        await orchestrator.start("thermostat-1")

        assert orchestrator.run.faulty_device_id == expected
        assert slow_registry.get_one(expected).thermometer_failed

    @pytest.mark.asyncio
    async def test_faulty_choice_independent_of_initiator(self, catalog_devices):
        """Test two runs with the same seed pick the same faulty device
        regardless of which device initiated them.
        """
        chosen = []
        for initiator in ("thermostat-1", "thermostat-3"):
            registry = DeviceRegistry(
                StaticCatalogProvider(catalog_devices),
                SimulationSettings(steps=5, tick_interval=10),
            )
            await registry.refresh()
            orchestrator = SimulationOrchestrator(registry, SimulationRun(), random.Random(5))
            await orchestrator.start(initiator)
            chosen.append(orchestrator.run.faulty_device_id)
            await orchestrator.stop()

        assert chosen[0] == chosen[1]

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, slow_registry):
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))

        assert await orchestrator.start("thermostat-1") is True
        first_token = orchestrator.run.token
        assert await orchestrator.start("thermostat-2") is False

        assert orchestrator.run.token is first_token
        assert orchestrator.run.runs_started == 1

    @pytest.mark.asyncio
    async def test_start_with_empty_registry(self, fast_settings):
        """Test that starting with no devices does nothing.

        WHY: There is no device to pick as faulty.
        """
        registry = DeviceRegistry(StaticCatalogProvider([]), fast_settings)
        orchestrator = SimulationOrchestrator(registry, SimulationRun(), random.Random(1))

        assert await orchestrator.start("anything") is False
        assert not orchestrator.running

    @pytest.mark.asyncio
    async def test_independent_runs(self, catalog_devices):
        """Test that separately injected runs do not share state."""
        registry_a = DeviceRegistry(
            StaticCatalogProvider(catalog_devices), SimulationSettings(steps=5, tick_interval=10)
        )
        registry_b = DeviceRegistry(
            StaticCatalogProvider(catalog_devices), SimulationSettings(steps=5, tick_interval=10)
        )
        await registry_a.refresh()
        await registry_b.refresh()
        a = SimulationOrchestrator(registry_a, SimulationRun(), random.Random(1))
        b = SimulationOrchestrator(registry_b, SimulationRun(), random.Random(1))

        await a.start("thermostat-1")

        assert a.running
        assert not b.running
        await a.stop()


# ================================================================
# STOP TESTS
# ================================================================
class TestOrchestratorStop:
    """Test stopping the shared run."""

    @pytest.mark.asyncio
    async def test_stop_cancels_every_device(self, slow_registry):
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))
        await orchestrator.start("thermostat-1")

        stopped = await orchestrator.stop()

        assert stopped == 2
        assert orchestrator.run.phase is RunPhase.IDLE
        assert orchestrator.run.faulty_device_id is None
        assert not any(d.simulating for d in slow_registry.get_all().values())
        assert not any(d.thermometer_failed for d in slow_registry.get_all().values())

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, slow_registry):
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))

        assert await orchestrator.stop() == 0

    @pytest.mark.asyncio
    async def test_stop_does_not_notify_listeners(self, slow_registry):
        """Test that explicit stop is not a natural completion."""
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))
        counter = StopCounter()
        orchestrator.add_stop_listener(counter)

        await orchestrator.start("thermostat-1")
        await orchestrator.stop()
        await asyncio.sleep(0.01)

        assert counter.calls == 0


# ================================================================
# NATURAL COMPLETION TESTS
# ================================================================
class TestOrchestratorCompletion:
    """Test run completion when devices finish on their own."""

    @pytest.mark.asyncio
    async def test_completion_notifies_once(self, loaded_registry, wait_for_condition):
        """Test every listener is called exactly once per run.

        WHY: Two devices finishing together must not double-broadcast.
        """
        orchestrator = SimulationOrchestrator(loaded_registry, SimulationRun(), random.Random(1))
        counter = StopCounter()
        orchestrator.add_stop_listener(counter)

        await orchestrator.start()
        await wait_for_condition(lambda: counter.calls >= 1)
        await orchestrator.wait_for_completion()
        await asyncio.sleep(0.01)

        assert counter.calls == 1
        assert not orchestrator.running
        assert orchestrator.run.token is None

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_stop(self, loaded_registry, wait_for_condition):
        orchestrator = SimulationOrchestrator(loaded_registry, SimulationRun(), random.Random(1))
        counter = StopCounter()

        async def broken():
            raise RuntimeError("listener failed")

        orchestrator.add_stop_listener(broken)
        orchestrator.add_stop_listener(counter)

        await orchestrator.start()
        await wait_for_condition(lambda: counter.calls == 1)
        await orchestrator.wait_for_completion()

        assert not orchestrator.running

    @pytest.mark.asyncio
    async def test_stale_token_is_ignored(self, slow_registry):
        """Test completion of an old run does not touch the current one.

        WHY: A device from a stopped run may still report completion
        after a new run started.
        """
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))
        counter = StopCounter()
        orchestrator.add_stop_listener(counter)

        await orchestrator.start("thermostat-1")
        old_token = orchestrator.run.token
        await orchestrator.stop()
        await orchestrator.start("thermostat-1")

        old_token.cancel("thermostat-2")
        await orchestrator.wait_for_completion()

        assert counter.calls == 0
        assert orchestrator.running
        assert orchestrator.run.token is not old_token


# ================================================================
# STATUS TESTS
# ================================================================
class TestOrchestratorStatus:
    """Test status reporting."""

    @pytest.mark.asyncio
    async def test_status_while_running(self, slow_registry):
        orchestrator = SimulationOrchestrator(slow_registry, SimulationRun(), random.Random(1))
        await orchestrator.start("thermostat-1")

        status = orchestrator.get_status()

        assert status["phase"] == "running"
        assert status["devices"] == ["thermostat-2", "thermostat-3"]
        assert status["faulty_device"] in {"thermostat-1", "thermostat-2", "thermostat-3"}
        assert status["runs_started"] == 1
