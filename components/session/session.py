# components/session/session.py
"""
Session records and inbound command parsing.

A session moves through CONNECTING -> READY -> CLOSED. Commands received
while CONNECTING queue until the session's registry refresh settles; if
the refresh fails the session becomes UNAVAILABLE and every queued or
later command fails with a registry-unavailable error.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from components.errors import CommandValidationError

# ack(error, result); may return an awaitable
AckCallback = Callable[[dict | None, dict | None], Awaitable[None] | None]

# Inbound event -> whether the payload must carry a deviceId
COMMANDS: dict[str, bool] = {
    "connectDevice": True,
    "startSimulation": True,
    "stopSimulation": False,
    "malfunction": True,
    "disconnectDevice": True,
}


class SessionState(Enum):
    """Session lifecycle states."""

    CONNECTING = "connecting"  # Registry refresh pending, commands queue
    READY = "ready"  # Commands execute on receipt
    UNAVAILABLE = "unavailable"  # Refresh failed, commands fail fast
    CLOSED = "closed"  # Disconnected, commands discarded


@dataclass
class Command:
    """A validated inbound command."""

    event: str
    device_id: str | None = None
    ack: AckCallback | None = None


def parse_command(event: str, data: Any, ack: AckCallback | None = None) -> Command:
    """Validate an inbound event payload.

    Raises:
        CommandValidationError: Unknown event or missing/invalid deviceId
    """
    if event not in COMMANDS:
        raise CommandValidationError(f"Unknown command: {event!r}")

    device_id = None
    if COMMANDS[event]:
        if not isinstance(data, dict):
            raise CommandValidationError(f"{event} requires an object payload with deviceId")
        device_id = data.get("deviceId")
        if not device_id or not isinstance(device_id, str):
            raise CommandValidationError(f"{event} requires a non-empty string deviceId")

    return Command(event=event, device_id=device_id, ack=ack)


@dataclass
class Session:
    """One connected client.

    Attributes:
        session_id: Transport-assigned identifier
        state: Lifecycle state
        device_ids: Devices bound by this session
        pending: Commands waiting for the registry refresh
        refresh_error: Why the refresh failed (UNAVAILABLE only)
        connected_at: Wall clock connect time
        commands_processed: Commands executed so far
    """

    session_id: str
    state: SessionState = SessionState.CONNECTING
    device_ids: set[str] = field(default_factory=set)
    pending: deque = field(default_factory=deque)
    refresh_error: Exception | None = None
    connected_at: float = field(default_factory=time.time)
    commands_processed: int = 0

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED
