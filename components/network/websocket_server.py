# components/network/websocket_server.py
"""
WebSocket transport for the live simulation server.

Frames are JSON objects:
    inbound:  {"event": "connectDevice", "data": {"deviceId": "..."}, "ack": 7}
    outbound: {"event": "deviceState", "data": {...}}
    ack:      {"event": "ack", "data": {"ack": 7, "error": null, "result": {...}}}
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, FastAPI, WebSocket, WebSocketDisconnect

from components.observability.logging_system import get_logger
from components.session.session_manager import SessionManager

logger = get_logger(__name__)


class WebSocketTransport:
    """WebSocket connection pool keyed by session id."""

    def __init__(self):
        self.active_connections: dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, session_id: str) -> None:
        await websocket.accept()
        self.active_connections[session_id] = websocket
        logger.info(
            f"Client {session_id} connected. Total connections: {len(self.active_connections)}"
        )

    def disconnect(self, session_id: str) -> None:
        if self.active_connections.pop(session_id, None) is not None:
            logger.info(
                f"Client {session_id} disconnected. Total connections: {len(self.active_connections)}"
            )

    async def emit(self, session_id: str, event: str, data: Any = None) -> None:
        websocket = self.active_connections.get(session_id)
        if websocket is None:
            return
        try:
            await websocket.send_json({"event": event, "data": data})
        except Exception as e:
            logger.error(f"Error sending {event} to {session_id}: {e}")
            self.disconnect(session_id)

    def get_stats(self) -> dict[str, int]:
        return {"active_connections": len(self.active_connections)}


def _make_ack(transport: WebSocketTransport, session_id: str, ack_id: Any):
    async def ack(error: dict | None, result: dict | None) -> None:
        await transport.emit(
            session_id, "ack", {"ack": ack_id, "error": error, "result": result}
        )

    return ack


def create_app(
    session_manager: SessionManager,
    transport: WebSocketTransport,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    """Build the FastAPI application around a session manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if on_shutdown is not None:
            await on_shutdown()

    app = FastAPI(title="Live Device Simulation", version="0.1.0", lifespan=lifespan)
    router = APIRouter(prefix="/ws", tags=["websocket"])

    @router.websocket("/live")
    async def live_endpoint(websocket: WebSocket):
        session_id = uuid.uuid4().hex[:12]
        await transport.connect(websocket, session_id)
        await session_manager.on_connect(session_id)
        await transport.emit(session_id, "connected", {"sessionId": session_id})

        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError as e:
                    # Malformed JSON frame
                    await session_manager.on_error(session_id, e)
                    await transport.emit(
                        session_id, "error", {"type": "protocol", "message": "Invalid JSON frame"}
                    )
                    continue

                if not isinstance(message, dict) or not isinstance(message.get("event"), str):
                    await session_manager.on_error(session_id, f"Malformed frame: {message!r}")
                    await transport.emit(
                        session_id,
                        "error",
                        {"type": "protocol", "message": "Frame must be an object with an event"},
                    )
                    continue

                ack_id = message.get("ack")
                ack = _make_ack(transport, session_id, ack_id) if ack_id is not None else None
                await session_manager.submit(
                    session_id, message["event"], message.get("data"), ack
                )

        except WebSocketDisconnect:
            logger.info(f"Client {session_id} closed the connection")
        except Exception as e:
            logger.error(f"Error in WebSocket connection for {session_id}: {e}", exc_info=True)
        finally:
            transport.disconnect(session_id)
            await session_manager.on_disconnect(session_id)

    @router.get("/stats")
    async def websocket_stats():
        return {**transport.get_stats(), **session_manager.get_stats()}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(router)
    return app
