"""
Unit Test Fixtures.

Fixtures for unit tests - all external dependencies are mocked.
Unit tests should be fast and isolated, never touching the network
or audio devices.
"""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState


# =============================================================================
# Client Socket Stand-in
# =============================================================================


class FakeClientSocket:
    """
    Stands in for an accepted Starlette WebSocket.

    ``receive`` returns queued ASGI messages; when the queue runs dry it
    blocks, like an idle browser tab.
    """

    def __init__(self, messages: list[dict[str, Any]] | None = None) -> None:
        self._incoming: asyncio.Queue | None = None
        self._initial = list(messages or [])
        self.sent: list[str] = []
        self.closed = False
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED

    def _queue(self) -> asyncio.Queue:
        if self._incoming is None:
            self._incoming = asyncio.Queue()
            for message in self._initial:
                self._incoming.put_nowait(message)
        return self._incoming

    def push_text(self, text: str) -> None:
        self._queue().put_nowait({"type": "websocket.receive", "text": text})

    def push_disconnect(self, code: int = 1000) -> None:
        self._queue().put_nowait({"type": "websocket.disconnect", "code": code})

    async def receive(self) -> dict[str, Any]:
        return await self._queue().get()

    async def send_text(self, text: str) -> None:
        self.sent.append(text)

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.application_state = WebSocketState.DISCONNECTED


@pytest.fixture
def client_socket_factory():
    """Build FakeClientSocket instances from a list of ASGI messages."""
    return FakeClientSocket


@pytest.fixture
def mock_connector() -> MagicMock:
    """UpstreamConnector whose connect() is an AsyncMock; set return_value per test."""
    connector = MagicMock()
    connector.connect = AsyncMock()
    return connector
