"""
Conversation State.

The list of messages a client shows, and the dispatch of server events
into it. UIs subscribe to be told when the list changes.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from voicerelay.backend.core.logging import get_logger, log_with_source
from voicerelay.backend.schemas.events import (
    CONVERSATION_ITEM_CREATED,
    ERROR,
    RESPONSE_AUDIO_DELTA,
    RESPONSE_AUDIO_DONE,
    RESPONSE_AUDIO_TRANSCRIPT_DONE,
)
from voicerelay.client.audio import decode_pcm16_base64, encode_pcm16_base64

logger = get_logger(__name__)

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"

CONNECTED = "Connected to assistant."
SOCKET_ERROR = "WebSocket error occurred."
DISCONNECTED = "Disconnected from assistant."
RECORDING_STARTED = "Recording started..."
PROCESSING_AUDIO = "Processing audio..."
PROCESSING_FAILED = "Failed to process audio."
AUDIO_SENT = "Audio sent to assistant for processing."
CONNECTION_CLOSED = "Unable to send audio. Connection is closed."
MICROPHONE_UNAVAILABLE = "Microphone access denied or unavailable."
AUDIO_COMPLETED = "Audio response completed."


@dataclass
class Message:
    role: str
    text: str | None = None
    audio: str | None = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).replace(tzinfo=None).strftime("%H:%M:%S")
    )


Listener = Callable[["Conversation"], None]
AudioSink = Callable[[str], None]


class Conversation:
    """
    Displayed messages plus the in-flight assistant audio.

    ``autoplay`` receives base64 PCM16 whenever new assistant audio arrives:
    whole clips for created items, individual chunks for streamed deltas.
    """

    def __init__(self, autoplay: AudioSink | None = None) -> None:
        self.messages: list[Message] = []
        self._audio_buffer = bytearray()
        self._autoplay = autoplay
        self._listeners: list[Listener] = []
        self._handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            CONVERSATION_ITEM_CREATED: self._on_item_created,
            RESPONSE_AUDIO_DELTA: self._on_audio_delta,
            RESPONSE_AUDIO_DONE: self._on_audio_done,
            RESPONSE_AUDIO_TRANSCRIPT_DONE: self._on_transcript_done,
            ERROR: self._on_error,
        }

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in self._listeners:
            listener(self)

    def append(self, message: Message) -> None:
        self.messages.append(message)
        self._changed()

    def add_system(self, text: str) -> None:
        self.append(Message(role=SYSTEM, text=text))

    def add_user_audio(self, audio_b64: str) -> None:
        self.append(Message(role=USER, audio=audio_b64))

    def clear(self) -> None:
        self.messages.clear()
        self._audio_buffer.clear()
        self._changed()

    @property
    def last_audio(self) -> str | None:
        for message in reversed(self.messages):
            if message.audio:
                return message.audio
        return None

    def handle_server_message(self, raw: str | bytes) -> None:
        """Decode one server frame and apply it. Bad frames are logged and dropped."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            log_with_source(logger, "tui", "error", "Error parsing JSON", error=str(e))
            return

        if not isinstance(data, dict):
            log_with_source(logger, "tui", "warning", "Ignoring non-object event")
            return

        event_type = data.get("type")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("Unhandled event type", extra={"event_type": event_type})
            return
        handler(data)

    def _on_item_created(self, data: dict[str, Any]) -> None:
        item = data.get("item")
        if not isinstance(item, dict):
            log_with_source(logger, "tui", "warning", "Ignoring item without an object body")
            return
        if item.get("type") != "message" or item.get("role") != ASSISTANT:
            return

        contents = item.get("content")
        if not isinstance(contents, list):
            return
        for content in contents:
            if not isinstance(content, dict):
                logger.debug("Skipping malformed content part", extra={"part_type": type(content).__name__})
                continue
            if content.get("type") == "text":
                self.append(Message(role=ASSISTANT, text=content.get("text")))
            elif content.get("type") == "audio" and isinstance(content.get("audio"), str) and content["audio"]:
                self.append(Message(role=ASSISTANT, audio=content["audio"]))
                self._play(content["audio"])

    def _on_audio_delta(self, data: dict[str, Any]) -> None:
        # "audio_delta" is accepted for older relays that renamed the field.
        delta = data.get("delta") or data.get("audio_delta")
        if not delta:
            return
        if not isinstance(delta, str):
            log_with_source(logger, "tui", "warning", "Dropping non-string audio delta")
            return

        try:
            self._audio_buffer.extend(decode_pcm16_base64(delta))
        except ValueError as e:
            log_with_source(logger, "tui", "warning", "Dropping bad audio delta", error=str(e))
            return

        combined = encode_pcm16_base64(bytes(self._audio_buffer))
        last = self.messages[-1] if self.messages else None
        if last is not None and last.role == ASSISTANT and last.audio:
            last.audio = combined
            self._changed()
        else:
            self.append(Message(role=ASSISTANT, audio=combined))

        self._play(delta)

    def _on_audio_done(self, data: dict[str, Any]) -> None:
        logger.debug("Audio response completed")
        self.add_system(AUDIO_COMPLETED)
        self._audio_buffer.clear()

    def _on_transcript_done(self, data: dict[str, Any]) -> None:
        self.append(Message(role=ASSISTANT, text=data.get("transcript")))

    def _on_error(self, data: dict[str, Any]) -> None:
        error = data.get("error")
        message = error.get("message") if isinstance(error, dict) else error
        log_with_source(logger, "tui", "error", "Error from server", error=error)
        self.add_system(f"Error: {message}")

    def _play(self, audio_b64: str) -> None:
        if self._autoplay is None:
            return
        self._autoplay(audio_b64)
