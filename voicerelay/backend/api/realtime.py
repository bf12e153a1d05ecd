"""
Realtime WebSocket Endpoint.

Each client connection gets its own RealtimeRelay paired with a fresh
upstream socket. The path comes from realtime.yaml (default /ws-client).
"""

from fastapi import APIRouter, WebSocket

from voicerelay.backend.core.logging import get_logger
from voicerelay.backend.services.relay import RealtimeRelay
from voicerelay.backend.services.upstream import UpstreamConnector

logger = get_logger(__name__)


def get_connector() -> UpstreamConnector:
    """Connector used for new sessions. Patched in tests."""
    return UpstreamConnector.from_config()


def build_realtime_router(path: str) -> APIRouter:
    """Create the router serving the client relay socket at ``path``."""
    router = APIRouter()

    @router.websocket(path)
    async def realtime_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        relay = RealtimeRelay(websocket, get_connector())
        await relay.run()

    return router
