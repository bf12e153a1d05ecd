"""
Relay Socket Client.

Connects to the backend relay socket, opens the session with a
``response.create`` event, sends recorded audio, and feeds every frame it
receives into a Conversation.

Usage:
    conversation = Conversation()
    client = RealtimeClient(conversation)
    if await client.connect():
        await client.listen()
"""

import asyncio
import json
from typing import Any

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException
from websockets.protocol import State

from voicerelay.backend.core.config import get_app_config
from voicerelay.backend.core.logging import get_logger, log_with_source
from voicerelay.backend.schemas.events import (
    ConversationItemCreateEvent,
    ResponseCreateEvent,
    ResponseOptions,
)
from voicerelay.client import conversation as msgs
from voicerelay.client.audio import samples_to_base64
from voicerelay.client.conversation import Conversation

logger = get_logger(__name__)


def _default_session() -> tuple[str, ResponseOptions]:
    """Client socket URL and opening response options from realtime.yaml."""
    realtime = get_app_config().realtime
    options = ResponseOptions(
        modalities=list(realtime.session.modalities),
        voice=realtime.session.voice,
        instructions=realtime.session.instructions,
    )
    return realtime.client.url, options


class RealtimeClient:
    """One client socket to the relay."""

    def __init__(
        self,
        conversation: Conversation,
        url: str | None = None,
        session: ResponseOptions | None = None,
        greet: bool = True,
        source: str = "tui",
    ) -> None:
        if url is None or session is None:
            config_url, config_session = _default_session()
            url = url or config_url
            session = session or config_session

        self.conversation = conversation
        self.url = url
        self.session = session
        self.greet = greet
        self.source = source
        self._ws: ClientConnection | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def connect(self) -> bool:
        """
        Open the socket and, when greeting, send the opening response.create.

        Returns:
            False if the relay could not be reached
        """
        try:
            self._ws = await connect(self.url, max_size=None)
        except (OSError, TimeoutError, WebSocketException) as e:
            log_with_source(logger, self.source, "error", "WebSocket error", url=self.url, error=str(e))
            self.conversation.add_system(msgs.SOCKET_ERROR)
            self.conversation.add_system(msgs.DISCONNECTED)
            return False

        log_with_source(logger, self.source, "info", "Connected to backend WebSocket", url=self.url)
        self.conversation.add_system(msgs.CONNECTED)
        if self.greet:
            await self.send_event(ResponseCreateEvent(response=self.session))
        return True

    async def listen(self) -> None:
        """Route incoming frames to the conversation until the socket closes."""
        if self._ws is None:
            return
        try:
            async for message in self._ws:
                self.conversation.handle_server_message(message)
        except ConnectionClosedError as e:
            log_with_source(logger, self.source, "error", "WebSocket error", error=str(e))
            self.conversation.add_system(msgs.SOCKET_ERROR)
        log_with_source(logger, self.source, "info", "WebSocket connection closed")
        self.conversation.add_system(msgs.DISCONNECTED)

    async def send_event(self, event: BaseModel | dict[str, Any]) -> bool:
        if not self.is_open:
            return False
        payload = event.model_dump_json(exclude_none=True) if isinstance(event, BaseModel) else json.dumps(event)
        try:
            await self._ws.send(payload)
        except ConnectionClosed:
            return False
        return True

    async def send_audio(self, audio_b64: str) -> bool:
        """
        Send a user audio message and ask for a response.

        Returns:
            False if the socket is not open; nothing is sent in that case
        """
        if not self.is_open:
            log_with_source(logger, self.source, "error", "WebSocket is not open")
            self.conversation.add_system(msgs.CONNECTION_CLOSED)
            return False

        await self.send_event(ConversationItemCreateEvent.from_audio(audio_b64))
        self.conversation.add_user_audio(audio_b64)
        await self.send_event(ResponseCreateEvent())
        self.conversation.add_system(msgs.AUDIO_SENT)
        return True

    async def process_recording(self, samples: NDArray[np.float32], sample_rate: int) -> bool:
        """Encode captured samples off the event loop and send them."""
        self.conversation.add_system(msgs.PROCESSING_AUDIO)
        loop = asyncio.get_running_loop()
        try:
            audio_b64 = await loop.run_in_executor(None, samples_to_base64, samples, sample_rate)
        except ValueError as e:
            log_with_source(logger, self.source, "error", "Audio processing failed", error=str(e))
            self.conversation.add_system(msgs.PROCESSING_FAILED)
            return False

        if not audio_b64:
            self.conversation.add_system(msgs.PROCESSING_FAILED)
            return False
        return await self.send_audio(audio_b64)

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
