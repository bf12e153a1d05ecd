"""
Integration Test Fixtures.

Fixtures for integration tests - the real application with real
configuration. Only the upstream realtime API socket is replaced.
"""

import json
from collections.abc import AsyncGenerator, Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient

from voicerelay.backend.main import create_app


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """
    Create an HTTP test client for the application.

    Usage:
        async def test_health_endpoint(client: AsyncClient):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    app = create_app()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client


@pytest.fixture
def ws_app() -> Generator[TestClient, None, None]:
    """
    Create a Starlette TestClient with the lifespan running.

    Usage:
        def test_socket(ws_app: TestClient):
            with ws_app.websocket_connect("/ws-client") as ws:
                ...
    """
    with TestClient(create_app()) as test_client:
        yield test_client


# =============================================================================
# Upstream Replacement
# =============================================================================


def echo_frame(payload: str) -> str:
    """Upstream reply used by the echoing fake: wraps what it received."""
    return json.dumps({"type": "echo", "payload": json.loads(payload)})


@pytest.fixture
def patch_upstream(fake_upstream_factory):
    """
    Route new relay sessions to a fake upstream socket.

    Usage:
        def test_x(patch_upstream):
            upstream = patch_upstream(echo=echo_frame)
    """
    patches = []

    def _install(connect_error: Exception | None = None, **kwargs: Any):
        upstream = fake_upstream_factory(**kwargs)
        connector = MagicMock()
        if connect_error is not None:
            connector.connect = AsyncMock(side_effect=connect_error)
        else:
            connector.connect = AsyncMock(return_value=upstream)
        p = patch("voicerelay.backend.api.realtime.get_connector", return_value=connector)
        p.start()
        patches.append(p)
        return upstream

    yield _install

    for p in patches:
        p.stop()


@pytest.fixture
def echo():
    """The echo function for ``patch_upstream(echo=...)``."""
    return echo_frame
