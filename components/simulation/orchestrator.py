# components/simulation/orchestrator.py
"""
Shared simulation orchestrator.

One simulation run spans every device in the registry and every
connected session. Any device finishing its run naturally ends the run
for all of them.

Lifecycle: IDLE -> RUNNING -> IDLE
"""

from __future__ import annotations

import asyncio
import itertools
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from components.observability.logging_system import (
    EventCategory,
    EventSeverity,
    get_logger,
)
from components.state.device_registry import DeviceRegistry

logger = get_logger(__name__)

StopListener = Callable[[], Awaitable[None]]

_run_ids = itertools.count(1)


class RunPhase(Enum):
    """Simulation run phases."""

    IDLE = "idle"
    RUNNING = "running"


class RunToken:
    """
    Cancellation token shared by every device in one run.

    The first cancel() wins; later calls are ignored. Callbacks fire once,
    synchronously, from inside the first cancel().
    """

    def __init__(self, run_id: int):
        self.run_id = run_id
        self.cancelled = False
        self.cancelled_by: str | None = None
        self._callbacks: list[Callable[["RunToken"], None]] = []

    def add_callback(self, callback: Callable[["RunToken"], None]) -> None:
        self._callbacks.append(callback)

    def cancel(self, device_id: str | None = None) -> bool:
        """Cancel the run.

        Args:
            device_id: Device whose completion triggered the cancel

        Returns:
            True if this call cancelled the token, False if already cancelled
        """
        if self.cancelled:
            return False
        self.cancelled = True
        self.cancelled_by = device_id
        for callback in self._callbacks:
            callback(self)
        return True


@dataclass
class SimulationRun:
    """The process-wide simulation run.

    Attributes:
        phase: IDLE or RUNNING
        faulty_device_id: Device chosen for the forced fault (None when idle)
        devices: Ids of devices started in this run
        token: Completion token for the active run
        runs_started: Number of runs started over the lifetime of this object
    """

    phase: RunPhase = RunPhase.IDLE
    faulty_device_id: str | None = None
    devices: set[str] = field(default_factory=set)
    token: RunToken | None = None
    runs_started: int = 0

    @property
    def running(self) -> bool:
        return self.phase is RunPhase.RUNNING

    def begin(self, token: RunToken, faulty_device_id: str) -> None:
        self.phase = RunPhase.RUNNING
        self.faulty_device_id = faulty_device_id
        self.devices = set()
        self.token = token
        self.runs_started += 1

    def reset(self) -> None:
        self.phase = RunPhase.IDLE
        self.faulty_device_id = None
        self.devices = set()
        self.token = None


class SimulationOrchestrator:
    """
    Coordinates the single shared simulation run.

    The run object and the randomness source are injected, so independent
    orchestrators (and deterministic fault selection) are possible.

    Example:
        >>> orchestrator = SimulationOrchestrator(registry, SimulationRun(), random.Random(7))
        >>> orchestrator.add_stop_listener(session_manager.broadcast_simulation_stopped)
        >>> await orchestrator.start(initiating_device_id="thermostat-lobby")
        >>> await orchestrator.stop()
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        run: SimulationRun | None = None,
        rng: random.Random | None = None,
    ):
        self.registry = registry
        self.run = run if run is not None else SimulationRun()
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()
        self._stop_listeners: list[StopListener] = []
        self._completion_tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self.run.running

    def add_stop_listener(self, listener: StopListener) -> None:
        """Register a coroutine called when a run completes naturally."""
        self._stop_listeners.append(listener)

    # ----------------------------------------------------------------
    # Start / stop
    # ----------------------------------------------------------------

    async def start(self, initiating_device_id: str | None = None) -> bool:
        """Start the shared run.

        The faulty device is drawn from all registered devices before any
        device starts. Every device except the initiator is started.

        Args:
            initiating_device_id: Device of the session that asked to start

        Returns:
            True if a run was started, False if one was already running
            or the registry is empty
        """
        async with self._lock:
            if self.run.running:
                logger.debug("Simulation already running, ignoring start")
                return False

            devices = self.registry.get_all()
            if not devices:
                logger.warning("No devices registered, simulation not started")
                return False

            faulty_device_id = self._rng.choice(sorted(devices))

            token = RunToken(next(_run_ids))
            token.add_callback(self._on_token_cancelled)
            self.run.begin(token, faulty_device_id)

            for device_id, device in devices.items():
                if device_id == initiating_device_id:
                    continue
                if device.start_simulation(on_complete=token.cancel):
                    self.run.devices.add(device_id)

            await devices[faulty_device_id].trigger_forced_fault()

        await logger.log_audit(
            f"Simulation run {token.run_id} started: {len(self.run.devices)} devices, "
            f"faulty={faulty_device_id}",
            action="start_simulation",
            result="started",
            data={"initiator": initiating_device_id, "faulty": faulty_device_id},
        )
        return True

    async def stop(self) -> int:
        """Stop the shared run on every registered device.

        Safe to call when idle. Does not broadcast.

        Returns:
            Number of devices whose simulation was actually cancelled
        """
        async with self._lock:
            was_running = self.run.running
            run_id = self.run.token.run_id if self.run.token else None
            self.run.reset()

            devices = list(self.registry.get_all().values())
            stopped = sum(1 for device in devices if device.stop_simulation())

        if was_running:
            await logger.log_audit(
                f"Simulation run {run_id} stopped ({stopped} devices cancelled)",
                action="stop_simulation",
                result="stopped",
            )
        return stopped

    # ----------------------------------------------------------------
    # Natural completion
    # ----------------------------------------------------------------

    def _on_token_cancelled(self, token: RunToken) -> None:
        task = asyncio.get_running_loop().create_task(
            self._complete(token), name=f"simulation-complete-{token.run_id}"
        )
        self._completion_tasks.add(task)
        task.add_done_callback(self._completion_tasks.discard)

    async def _complete(self, token: RunToken) -> None:
        if self.run.token is not token:
            logger.debug(f"Ignoring completion of stale run {token.run_id}")
            return

        await logger.log_event(
            EventSeverity.NOTICE,
            EventCategory.SIMULATION,
            f"Simulation run {token.run_id} completed by {token.cancelled_by}",
        )

        for listener in list(self._stop_listeners):
            try:
                await listener()
            except Exception:
                logger.exception("Simulation stop listener failed")

        # A listener may have yielded long enough for a stop/start cycle
        if self.run.token is token:
            await self.stop()

    async def wait_for_completion(self) -> None:
        """Wait until pending completion handling has finished."""
        while self._completion_tasks:
            await asyncio.gather(*list(self._completion_tasks), return_exceptions=True)

    def get_status(self) -> dict:
        return {
            "phase": self.run.phase.value,
            "faulty_device": self.run.faulty_device_id,
            "devices": sorted(self.run.devices),
            "runs_started": self.run.runs_started,
        }
