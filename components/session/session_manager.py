# components/session/session_manager.py
"""
Session manager.

Binds transient real-time sessions to registry-owned devices, gates every
command on the session's registry refresh, routes device events back to
the sessions bound to each device, and broadcasts simulation termination.

Nothing in here raises into the transport: validation problems go back to
the originating session only, everything else is logged.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Coroutine

from components.catalog.sync import CatalogSync
from components.errors import (
    CommandValidationError,
    LiveSimError,
    RegistryUnavailableError,
)
from components.network.transport import Transport
from components.observability.logging_system import (
    EventCategory,
    EventSeverity,
    get_logger,
)
from components.session.session import (
    AckCallback,
    Command,
    Session,
    SessionState,
    parse_command,
)
from components.simulation.orchestrator import SimulationOrchestrator
from components.state.device_registry import DeviceRegistry

logger = get_logger(__name__)


class SessionManager:
    """
    Owns one Session per connected client.

    Example:
        >>> manager = SessionManager(registry, orchestrator, transport, catalog_sync)
        >>> await manager.on_connect("sid-1")
        >>> await manager.bind_device("sid-1", "thermostat-lobby", callback=ack)
        >>> await manager.on_disconnect("sid-1")
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        orchestrator: SimulationOrchestrator,
        transport: Transport,
        catalog_sync: CatalogSync | None = None,
        refresh_timeout: float | None = 15.0,
    ):
        """
        Args:
            registry: Device registry (refreshed once per connect)
            orchestrator: Shared simulation orchestrator
            transport: Outbound delivery to sessions
            catalog_sync: Per-connect catalog pipeline (None disables it)
            refresh_timeout: Bound on each registry refresh in seconds
        """
        self.registry = registry
        self.orchestrator = orchestrator
        self.transport = transport
        self.catalog_sync = catalog_sync
        self.refresh_timeout = refresh_timeout

        self.sessions: dict[str, Session] = {}
        self._background: set[asyncio.Task] = set()

        self._handlers = {
            "connectDevice": self._bind,
            "startSimulation": self._start_simulation,
            "stopSimulation": self._stop_simulation,
            "malfunction": self._fault,
            "disconnectDevice": self._unbind,
        }

        registry.add_listener(self.route_device_event)
        orchestrator.add_stop_listener(self.broadcast_simulation_stopped)

    # ----------------------------------------------------------------
    # Connection lifecycle
    # ----------------------------------------------------------------

    async def on_connect(self, session_id: str) -> Session:
        """Create a session and kick off registry refresh and catalog sync.

        Neither background operation blocks the caller.
        """
        existing = self.sessions.get(session_id)
        if existing is not None:
            logger.warning(f"Session {session_id} already connected")
            return existing

        session = Session(session_id)
        self.sessions[session_id] = session

        self._spawn(self._refresh_registry(session), f"registry-refresh-{session_id}")
        if self.catalog_sync is not None:
            self._spawn(self.catalog_sync.run(session_id), f"catalog-sync-{session_id}")

        await logger.log_audit(
            f"Session connected ({len(self.sessions)} active)",
            action="connect",
            result="connecting",
            session=session_id,
        )
        return session

    async def on_disconnect(self, session_id: str) -> None:
        """Unbind every device, drop queued commands, destroy the session."""
        session = self.sessions.pop(session_id, None)
        if session is None:
            return

        session.state = SessionState.CLOSED
        dropped = len(session.pending)
        session.pending.clear()

        for device_id in list(session.device_ids):
            device = self.registry.get_one(device_id)
            if device is not None:
                device.disconnect(session_id)
        unbound = len(session.device_ids)
        session.device_ids.clear()

        await logger.log_audit(
            f"Session disconnected: unbound {unbound} devices, dropped {dropped} queued commands",
            action="disconnect",
            result="closed",
            session=session_id,
        )

    async def on_error(self, session_id: str, error: Any) -> None:
        """Transport-level error; the session stays usable."""
        await logger.log_event(
            EventSeverity.WARNING,
            EventCategory.COMMUNICATION,
            f"Transport error: {error}",
            session=session_id,
        )

    # ----------------------------------------------------------------
    # Registry refresh gate
    # ----------------------------------------------------------------

    async def _refresh_registry(self, session: Session) -> None:
        try:
            await asyncio.wait_for(self.registry.refresh(), timeout=self.refresh_timeout)
        except Exception as e:
            if session.closed:
                return
            if isinstance(e, asyncio.TimeoutError):
                reason = f"timed out after {self.refresh_timeout}s"
            else:
                reason = str(e) or type(e).__name__
            session.refresh_error = RegistryUnavailableError(f"Registry unavailable: {reason}")
            session.state = SessionState.UNAVAILABLE
            await logger.log_event(
                EventSeverity.ERROR,
                EventCategory.SESSION,
                f"Registry refresh failed ({reason}); failing {len(session.pending)} queued commands",
                session=session.session_id,
            )
            while session.pending and not session.closed:
                await self._fail(session, session.pending.popleft(), session.refresh_error)
            return

        if session.closed:
            return

        # Commands that arrive while draining are appended to the same queue
        while session.pending:
            if session.closed:
                return
            await self._execute(session, session.pending.popleft())

        if not session.closed:
            session.state = SessionState.READY
            logger.debug(f"Session {session.session_id} ready")

    # ----------------------------------------------------------------
    # Inbound commands
    # ----------------------------------------------------------------

    async def submit(
        self, session_id: str, event: str, data: Any = None, ack: AckCallback | None = None
    ) -> None:
        """Accept one inbound command from the transport."""
        session = self.sessions.get(session_id)
        if session is None or session.closed:
            logger.debug(f"Discarding {event} for closed session {session_id}")
            return

        try:
            command = parse_command(event, data, ack)
        except CommandValidationError as e:
            logger.warning(f"Rejected {event} from {session_id}: {e}")
            await self._fail(session, Command(event=event, ack=ack), e)
            return

        if session.state is SessionState.CONNECTING:
            session.pending.append(command)
        elif session.state is SessionState.UNAVAILABLE:
            await self._fail(session, command, session.refresh_error)
        else:
            await self._execute(session, command)

    async def bind_device(
        self, session_id: str, device_id: str, callback: AckCallback | None = None
    ) -> None:
        await self.submit(session_id, "connectDevice", {"deviceId": device_id}, callback)

    async def unbind_device(self, session_id: str, device_id: str) -> None:
        await self.submit(session_id, "disconnectDevice", {"deviceId": device_id})

    async def on_fault(self, session_id: str, device_id: str) -> None:
        await self.submit(session_id, "malfunction", {"deviceId": device_id})

    async def start_simulation(self, session_id: str, device_id: str) -> None:
        await self.submit(session_id, "startSimulation", {"deviceId": device_id})

    async def stop_simulation(self, session_id: str) -> None:
        await self.submit(session_id, "stopSimulation")

    async def _execute(self, session: Session, command: Command) -> None:
        handler = self._handlers[command.event]
        try:
            await handler(session, command)
        except Exception as e:
            logger.exception(f"{command.event} failed for session {session.session_id}")
            error = e if isinstance(e, LiveSimError) else LiveSimError(str(e))
            await self._fail(session, command, error)
        finally:
            session.commands_processed += 1

    async def _fail(self, session: Session, command: Command, error: Exception) -> None:
        """Report an error to the originating session only."""
        if isinstance(error, LiveSimError):
            payload = error.to_payload()
        else:
            payload = {"type": "internal", "message": str(error)}
        payload["command"] = command.event

        if command.ack is not None:
            await self._acknowledge(session, command.ack, payload, None)
        else:
            await self._emit(session.session_id, "error", payload)

    # ----------------------------------------------------------------
    # Command handlers
    # ----------------------------------------------------------------

    async def _bind(self, session: Session, command: Command) -> None:
        device = self.registry.get_one(command.device_id)
        if device is None:
            # Unknown devices are not acknowledged
            logger.debug(f"connectDevice for unknown device {command.device_id}")
            return

        session.device_ids.add(command.device_id)
        device.connect(session.session_id)

        if command.ack is not None:
            await self._acknowledge(
                session,
                command.ack,
                None,
                {"ok": device.ok, "simulating": self.orchestrator.running},
            )

    async def _unbind(self, session: Session, command: Command) -> None:
        device = self.registry.get_one(command.device_id)
        if device is not None:
            device.disconnect(session.session_id)
        session.device_ids.discard(command.device_id)

    async def _fault(self, session: Session, command: Command) -> None:
        device = self.registry.get_one(command.device_id)
        if device is not None:
            await device.trigger_fault()

    async def _start_simulation(self, session: Session, command: Command) -> None:
        await self.orchestrator.start(initiating_device_id=command.device_id)

    async def _stop_simulation(self, session: Session, command: Command) -> None:
        await self.orchestrator.stop()

    # ----------------------------------------------------------------
    # Outbound
    # ----------------------------------------------------------------

    async def route_device_event(
        self, device_id: str, event: str, payload: dict[str, Any], session_ids: set[str]
    ) -> None:
        """Deliver a device event to the sessions bound to that device."""
        for session_id in session_ids:
            session = self.sessions.get(session_id)
            if session is not None and not session.closed:
                await self._emit(session_id, event, payload)

    async def broadcast(self, event: str, data: Any = None) -> int:
        """Send an event to every connected session.

        Returns:
            Number of sessions the event was sent to
        """
        targets = list(self.sessions)
        for session_id in targets:
            await self._emit(session_id, event, data)
        return len(targets)

    async def broadcast_simulation_stopped(self) -> None:
        count = await self.broadcast("stopSimulation")
        logger.info(f"Broadcast stopSimulation to {count} sessions")

    async def _emit(self, session_id: str, event: str, data: Any = None) -> None:
        try:
            await self.transport.emit(session_id, event, data)
        except Exception as e:
            logger.error(f"Failed to emit {event} to {session_id}: {e}")

    async def _acknowledge(
        self, session: Session, ack: AckCallback, error: dict | None, result: dict | None
    ) -> None:
        try:
            outcome = ack(error, result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Acknowledgment to {session.session_id} failed: {e}")

    # ----------------------------------------------------------------
    # Background tasks
    # ----------------------------------------------------------------

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error}")

    async def wait_for_background(self) -> None:
        """Wait until every refresh and catalog task has settled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Disconnect all sessions and cancel background work."""
        for session_id in list(self.sessions):
            await self.on_disconnect(session_id)
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)

    # ----------------------------------------------------------------
    # Status
    # ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        states: dict[str, int] = {}
        for session in self.sessions.values():
            states[session.state.value] = states.get(session.state.value, 0) + 1

        return {
            "active_sessions": len(self.sessions),
            "sessions_by_state": states,
            "bindings": sum(len(s.device_ids) for s in self.sessions.values()),
            "pending_commands": sum(len(s.pending) for s in self.sessions.values()),
            "simulation": self.orchestrator.get_status(),
            "devices": self.registry.get_summary(),
        }
