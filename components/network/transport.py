# components/network/transport.py
"""Outbound transport interface used by the session manager."""

from typing import Any, Protocol


class Transport(Protocol):
    """Delivers one event to one connected session."""

    async def emit(self, session_id: str, event: str, data: Any = None) -> None: ...
