"""
Root Pytest Fixtures.

Shared fixtures available to all test types.

Configuration:
    Tests load the real YAML files under config/settings/. Secrets come
    from the process environment; config/.env is never required. Use the
    ``api_key`` or ``no_api_key`` fixtures to control OPENAI_API_KEY.
"""

import asyncio
from collections.abc import Generator
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosedOK

from voicerelay.backend.core.config import get_app_config, get_settings


# =============================================================================
# Configuration Cache
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_config_cache() -> Generator[None, None, None]:
    """Clear lru_cache between tests so env changes are picked up."""
    get_settings.cache_clear()
    get_app_config.cache_clear()
    yield
    get_settings.cache_clear()
    get_app_config.cache_clear()


# =============================================================================
# Secrets
# =============================================================================


@pytest.fixture
def api_key(monkeypatch: pytest.MonkeyPatch) -> str:
    """Set a fake upstream API key for the duration of a test."""
    key = "sk-test-key"
    monkeypatch.setenv("OPENAI_API_KEY", key)
    get_settings.cache_clear()
    return key


@pytest.fixture
def no_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure no upstream API key is visible, even if config/.env sets one."""
    monkeypatch.setenv("OPENAI_API_KEY", "")
    get_settings.cache_clear()


# =============================================================================
# Realtime Events
# =============================================================================


@pytest.fixture
def sample_events() -> dict[str, dict[str, Any]]:
    """Representative upstream events, keyed by type."""
    return {
        "item_created": {
            "type": "conversation.item.created",
            "item": {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "text", "text": "Hello there"}],
            },
        },
        "audio_delta": {"type": "response.audio.delta", "delta": "AAABAA=="},
        "audio_done": {"type": "response.audio.done"},
        "transcript_done": {"type": "response.audio_transcript.done", "transcript": "Hello there"},
        "error": {"type": "error", "error": {"message": "Something broke"}},
    }


# =============================================================================
# Upstream Socket Stand-in
# =============================================================================


class FakeUpstream:
    """
    Stands in for a websockets ClientConnection to the realtime API.

    Yields ``frames`` first, then either raises ``fail_with``, ends (when
    ``close_after_frames``), or stays open until ``close()``. With ``echo``
    set, every sent payload produces one frame ``echo(payload)``.
    ``send_fails_with`` is raised from every ``send``.
    """

    def __init__(self, frames=(), fail_with=None, close_after_frames=False, echo=None, send_fails_with=None):
        self.frames = list(frames)
        self.fail_with = fail_with
        self.send_fails_with = send_fails_with
        self.close_after_frames = close_after_frames
        self.echo = echo
        self.sent: list[str] = []
        self.closed = False
        self._queue: asyncio.Queue | None = None

    def _pending(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        if self.fail_with is not None:
            raise self.fail_with
        if self.close_after_frames:
            return
        while True:
            frame = await self._pending().get()
            if frame is None:
                return
            yield frame

    async def send(self, payload: str) -> None:
        if self.send_fails_with is not None:
            raise self.send_fails_with
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(payload)
        if self.echo is not None:
            self._pending().put_nowait(self.echo(payload))

    async def close(self) -> None:
        self.closed = True
        self._pending().put_nowait(None)


@pytest.fixture
def fake_upstream_factory():
    """Build FakeUpstream instances: ``fake_upstream_factory(frames=[...])``."""
    return FakeUpstream
