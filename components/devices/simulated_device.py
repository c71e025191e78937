# components/devices/simulated_device.py
"""
Simulated thermostat device.

Provides:
- Session binding (which viewers are watching this device)
- A finite simulation run that publishes readings every tick
- Fault injection: malfunction (ok=False) and forced thermometer failure
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from components.catalog.models import CatalogDevice
from components.observability.logging_system import AlarmPriority, get_logger

# (device_id, event, payload, bound session ids)
DevicePublisher = Callable[[str, str, dict[str, Any], set[str]], Awaitable[None]]
CompletionCallback = Callable[[str], Any]


@dataclass
class SimulationSettings:
    """Per-device simulation parameters.

    Attributes:
        steps: Ticks in one simulation run before natural completion
        tick_interval: Seconds between ticks
        forced_fault_offset: Degrees added to temperature on thermometer failure
        baseline: Initial readings
        seed: Optional seed; each device derives its own stream from it
    """

    steps: int = 30
    tick_interval: float = 1.0
    forced_fault_offset: float = 45.0
    baseline: dict[str, float] = field(
        default_factory=lambda: {"temperature": 21.0, "humidity": 40.0}
    )
    seed: int | None = None

    @classmethod
    def from_config(cls, simulation: dict[str, Any]) -> "SimulationSettings":
        steps = int(simulation.get("steps", 30))
        tick_interval = float(simulation.get("tick_interval", 1.0))
        if steps < 1:
            raise ValueError(f"simulation.steps must be >= 1, got {steps}")
        if tick_interval < 0:
            raise ValueError(f"simulation.tick_interval must be >= 0, got {tick_interval}")

        return cls(
            steps=steps,
            tick_interval=tick_interval,
            forced_fault_offset=float(simulation.get("forced_fault_offset", 45.0)),
            baseline=dict(simulation.get("baseline") or {"temperature": 21.0, "humidity": 40.0}),
            seed=simulation.get("seed"),
        )

    def rng_for(self, device_id: str) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{device_id}")


class SimulatedDevice:
    """
    A registry-owned simulated thermostat.

    Sessions reference devices by id and bind through connect()/disconnect();
    the device never holds a reference back to a session object.

    Example:
        >>> device = SimulatedDevice(CatalogDevice("t1"), publish=registry.dispatch)
        >>> device.connect("session-1")
        >>> device.start_simulation(on_complete=lambda device_id: ...)
    """

    def __init__(
        self,
        catalog: CatalogDevice,
        publish: DevicePublisher | None = None,
        settings: SimulationSettings | None = None,
    ):
        self.catalog = catalog
        self.device_id = catalog.device_id
        self.settings = settings or SimulationSettings()
        self._publish_fn = publish
        self._rng = self.settings.rng_for(self.device_id)

        self.ok = True
        self.thermometer_failed = False
        self.sessions: set[str] = set()
        self.readings: dict[str, float] = dict(self.settings.baseline)
        self.step = 0

        self._sim_task: asyncio.Task | None = None

        self.logger = get_logger(__name__, device=self.device_id)

    @property
    def simulating(self) -> bool:
        return self._sim_task is not None and not self._sim_task.done()

    def update_catalog(self, catalog: CatalogDevice) -> None:
        """Apply refreshed catalog metadata (identity is unchanged)."""
        self.catalog = catalog

    # ----------------------------------------------------------------
    # Session binding
    # ----------------------------------------------------------------

    def connect(self, session_id: str) -> None:
        self.sessions.add(session_id)
        self.logger.debug(f"Session {session_id} bound ({len(self.sessions)} total)")

    def disconnect(self, session_id: str) -> None:
        self.sessions.discard(session_id)
        self.logger.debug(f"Session {session_id} unbound ({len(self.sessions)} total)")

    # ----------------------------------------------------------------
    # Simulation
    # ----------------------------------------------------------------

    def start_simulation(self, on_complete: CompletionCallback) -> bool:
        """Begin a simulation run.

        Args:
            on_complete: Called with this device's id after the last tick.
                Not called when the run is stopped early.

        Returns:
            False if this device is already simulating
        """
        if self.simulating:
            self.logger.warning("Simulation already running, ignoring start")
            return False

        self.step = 0
        self.readings = dict(self.settings.baseline)
        self._sim_task = asyncio.create_task(
            self._simulation_loop(on_complete), name=f"simulate-{self.device_id}"
        )
        self.logger.info(
            f"Simulation started ({self.settings.steps} steps @ {self.settings.tick_interval}s)"
        )
        return True

    def stop_simulation(self) -> bool:
        """Stop the simulation run and clear any forced fault.

        Safe to call when not simulating.

        Returns:
            True if a running simulation was cancelled
        """
        was_running = self.simulating
        if was_running:
            self._sim_task.cancel()
            self.logger.info(f"Simulation stopped at step {self.step}")
        self._sim_task = None
        self.thermometer_failed = False
        return was_running

    async def _simulation_loop(self, on_complete: CompletionCallback) -> None:
        try:
            for step in range(1, self.settings.steps + 1):
                await asyncio.sleep(self.settings.tick_interval)
                self.step = step
                self._advance()
                await self._publish("deviceState", self.snapshot())
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("Simulation loop failed")
            self._sim_task = None
            return

        self._sim_task = None
        self.logger.info("Simulation completed")
        on_complete(self.device_id)

    def _advance(self) -> None:
        """Random-walk the readings one tick (slow warming drift)."""
        self.readings["temperature"] = round(
            self.readings.get("temperature", 21.0) + self._rng.uniform(-0.3, 0.6), 2
        )
        humidity = self.readings.get("humidity", 40.0) + self._rng.uniform(-1.0, 1.0)
        self.readings["humidity"] = round(min(100.0, max(0.0, humidity)), 2)

    def reported_readings(self) -> dict[str, float]:
        """Readings as the (possibly faulty) sensors report them."""
        readings = dict(self.readings)
        if self.thermometer_failed:
            readings["temperature"] = round(
                readings.get("temperature", 0.0) + self.settings.forced_fault_offset, 2
            )
        return readings

    # ----------------------------------------------------------------
    # Fault injection
    # ----------------------------------------------------------------

    async def trigger_fault(self) -> None:
        """Malfunction: device reports itself unhealthy."""
        self.ok = False
        await self.logger.log_alarm("Device malfunction", priority=AlarmPriority.MEDIUM)
        await self._publish("deviceStatus", {"ok": self.ok})

    async def trigger_forced_fault(self) -> None:
        """Thermometer failure: temperature reads high until the run stops."""
        self.thermometer_failed = True
        await self.logger.log_alarm(
            "Forced thermometer failure injected", priority=AlarmPriority.HIGH
        )
        await self._publish("deviceStatus", {"ok": self.ok, "thermometerFailed": True})

    # ----------------------------------------------------------------
    # Events
    # ----------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "ok": self.ok,
            "simulating": self.simulating,
            "step": self.step,
            "readings": self.reported_readings(),
        }

    async def _publish(self, event: str, payload: dict[str, Any]) -> None:
        if self._publish_fn is None:
            return
        await self._publish_fn(self.device_id, event, payload, set(self.sessions))
